# SPDX-FileCopyrightText: Copyright (c) 2025 NVIDIA CORPORATION & AFFILIATES. All rights reserved.
# SPDX-License-Identifier: Apache-2.0
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
# http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.

"""Point-to-point rendezvous between two ranks.

A message is a key written by the sender and an ``/ack`` key written by the
receiver once the payload has been copied out. The sender removes the ack,
the receiver removes the message, and a send returns once both are gone. At
most one message per (src, dst, type) may be in flight; a second send before
the first one is acknowledged overwrites it.
"""

import logging
import time

from ..shared_utils.log import LogConfig
from .counter import parse_int
from .exception import PayloadError, PollTimeout
from .keys import MsgType
from .polling import poll_until
from .registration import RuntimeContext

log = logging.getLogger(LogConfig.name)

ACK_VALUE = b'received'


def _wait_for_ack(ctx: RuntimeContext, msg_key: str, dest_rank: int) -> None:
    client = ctx.client
    ack_key = ctx.namespace.ack_key(msg_key)

    def ack_received():
        return True if client.get(ack_key) == ACK_VALUE else None

    # on timeout the message stays in place and may still be consumed later
    poll_until(
        ack_received,
        ctx.config.msg_retries,
        ctx.config.poll_interval,
        f'acknowledgment {ack_key} from rank {dest_rank}',
    )
    client.delete(ack_key)

    # The receiver removes the message only after its settle delay. Returning
    # earlier would let the next send on this channel be deleted by it.
    try:
        poll_until(
            lambda: True if client.get(msg_key) is None else None,
            ctx.config.msg_retries,
            ctx.config.ack_settle_delay or ctx.config.poll_interval,
            f'removal of {msg_key} by rank {dest_rank}',
        )
    except PollTimeout as ex:
        log.warning(f'rank={ctx.rank} message acknowledged but not consumed: {ex}')


def _acknowledge(ctx: RuntimeContext, msg_key: str, *consumed_keys: str) -> None:
    client = ctx.client
    client.put(ctx.namespace.ack_key(msg_key), ACK_VALUE)
    # let the sender observe the ack before the message disappears
    time.sleep(ctx.config.ack_settle_delay)
    for key in consumed_keys:
        client.delete(key)


def _byte_view(buffer, count: int, writable: bool) -> memoryview:
    view = memoryview(buffer).cast('B')
    if count < 0 or count > view.nbytes:
        raise PayloadError(f'count {count} does not fit a buffer of {view.nbytes} bytes')
    if writable and view.readonly:
        raise PayloadError('receive buffer is read-only')
    return view


def send_int(ctx: RuntimeContext, value: int, dest_rank: int) -> None:
    msg_key = ctx.namespace.msg_key(ctx.rank, dest_rank, MsgType.INT)
    ctx.client.put(msg_key, str(int(value)))
    log.debug(f'rank={ctx.rank} posted int to rank {dest_rank} at {msg_key}')
    _wait_for_ack(ctx, msg_key, dest_rank)


def recv_int(ctx: RuntimeContext, src_rank: int) -> int:
    client = ctx.client
    msg_key = ctx.namespace.msg_key(src_rank, ctx.rank, MsgType.INT)

    raw = poll_until(
        lambda: client.get(msg_key),
        ctx.config.msg_retries,
        ctx.config.poll_interval,
        f'int data {msg_key} from rank {src_rank}',
    )
    # malformed payloads are reported without acknowledging
    value = parse_int(raw, msg_key)
    _acknowledge(ctx, msg_key, msg_key)
    return value


def send_bytes(ctx: RuntimeContext, buffer, count: int, dest_rank: int) -> None:
    """Sends the first ``count`` bytes of ``buffer`` (any bytes-like object)."""
    view = _byte_view(buffer, count, writable=False)
    msg_key = ctx.namespace.msg_key(ctx.rank, dest_rank, MsgType.CHAR)

    # payload first, the metadata key signals that the message is complete
    ctx.client.put(ctx.namespace.data_key(msg_key), view[:count].tobytes())
    ctx.client.put(msg_key, f'{ctx.rank}:{dest_rank}:{count}')
    log.debug(f'rank={ctx.rank} posted {count} bytes to rank {dest_rank} at {msg_key}')
    _wait_for_ack(ctx, msg_key, dest_rank)


def recv_bytes(ctx: RuntimeContext, buffer, count: int, src_rank: int) -> int:
    """
    Receives into the first ``count`` bytes of the writable ``buffer``.

    Only ``min(received length, count)`` bytes are copied, any excess is
    dropped. Returns the number of bytes copied.
    """
    view = _byte_view(buffer, count, writable=True)
    client = ctx.client
    msg_key = ctx.namespace.msg_key(src_rank, ctx.rank, MsgType.CHAR)
    data_key = ctx.namespace.data_key(msg_key)

    def payload():
        if client.get(msg_key) is None:
            return None
        return client.get(data_key)

    data = poll_until(
        payload,
        ctx.config.msg_retries,
        ctx.config.poll_interval,
        f'char data {msg_key} from rank {src_rank}',
    )
    copy_size = min(len(data), count)
    view[:copy_size] = data[:copy_size]
    if copy_size < len(data):
        log.debug(f'rank={ctx.rank} truncated {len(data)} bytes from rank {src_rank} to {count}')

    _acknowledge(ctx, msg_key, data_key, msg_key)
    return copy_size
