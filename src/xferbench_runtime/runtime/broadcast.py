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

import logging

import numpy as np

from ..shared_utils.log import LogConfig
from .barrier import barrier
from .exception import PayloadError
from .polling import poll_until
from .registration import RuntimeContext

log = logging.getLogger(LogConfig.name)

# fixed width on the wire regardless of the platform's C int
INT_DTYPE = np.dtype('<i4')


def pack_ints(buffer, count: int) -> bytes:
    values = np.asarray(buffer)
    if values.ndim != 1 or values.shape[0] < count:
        raise PayloadError(f'buffer of shape {values.shape} holds fewer than {count} integers')
    head = values[:count]
    bounds = np.iinfo(INT_DTYPE)
    if count and (head.min() < bounds.min or head.max() > bounds.max):
        raise PayloadError(
            f'broadcast values must fit {INT_DTYPE.name}, '
            f'got range [{head.min()}, {head.max()}]'
        )
    return head.astype(INT_DTYPE).tobytes()


def unpack_ints(raw: bytes, buffer, count: int) -> None:
    if count == 0:
        return
    decoded = np.frombuffer(raw, dtype=INT_DTYPE, count=count)
    if isinstance(buffer, np.ndarray):
        buffer[:count] = decoded
    else:
        for idx, value in enumerate(decoded.tolist()):
            buffer[idx] = value


def broadcast_int(ctx: RuntimeContext, buffer, count: int, root_rank: int) -> None:
    """
    Copies ``buffer[:count]`` of ``root_rank`` into ``buffer[:count]`` of every other rank.

    The write and the final removal of the record are framed by the
    ``bcast_int_<root>_write`` and ``bcast_int_<root>_read`` barriers, every
    rank of the group has to take part.
    """
    ns = ctx.namespace
    client = ctx.client
    cfg = ctx.config

    bcast_key = ns.bcast_key(root_rank)
    barrier_id = f'bcast_int_{root_rank}'
    nbytes = count * INT_DTYPE.itemsize

    if ctx.rank == root_rank:
        client.put(bcast_key, pack_ints(buffer, count))

    barrier(ctx, f'{barrier_id}_write')

    if ctx.rank != root_rank:
        if len(buffer) < count:
            raise PayloadError(f'receive buffer holds fewer than {count} integers')

        def complete_record():
            raw = client.get(bcast_key)
            if raw is None:
                return None
            if len(raw) < nbytes:
                # a short record is not fully written yet
                log.debug(f'broadcast record {bcast_key} has {len(raw)} of {nbytes} bytes')
                return None
            return raw

        raw = poll_until(
            complete_record,
            cfg.bcast_retries,
            cfg.bcast_interval,
            f'broadcast data {bcast_key} from rank {root_rank}',
        )
        unpack_ints(raw, buffer, count)

    barrier(ctx, f'{barrier_id}_read')

    if ctx.rank == root_rank:
        client.delete(bcast_key)
