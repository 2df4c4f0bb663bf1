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

import dataclasses
import functools
import inspect
import logging
import sys
from typing import Optional, Tuple

from ..shared_utils.log import LogConfig, setup_logger
from . import barrier as _barrier
from . import broadcast as _broadcast
from . import channel as _channel
from . import reduction as _reduction
from .base import XferBenchRT
from .config import EtcdRuntimeConfig
from .exception import RegistrationError, StoreError, XferBenchRTError
from .keys import KeyNamespace
from .registration import RuntimeContext, deregister, register
from .store import CoordinationClient, EtcdCoordinationClient

log = logging.getLogger(LogConfig.name)

EXIT_FAILURE = 1


def _report_errors(failure, peer=None):
    """
    Turns runtime errors raised by the wrapped operation into ``failure``.

    Invalid buffers (``TypeError``/``ValueError``) are reported the same way,
    so no exception leaves a public operation. ``peer`` names the argument
    (peer rank or barrier id) included in the error log.
    """

    def decorator(fn):
        # position of ``peer`` among the arguments following ``self``
        peer_pos = list(inspect.signature(fn).parameters).index(peer) - 1 if peer else None

        @functools.wraps(fn)
        def wrapper(self, *args, **kwargs):
            try:
                return fn(self, *args, **kwargs)
            except (XferBenchRTError, TypeError, ValueError) as ex:
                target = ''
                if peer is not None:
                    value = args[peer_pos] if peer_pos < len(args) else kwargs.get(peer)
                    target = f' ({peer}={value})'
                log.error(f'Rank {self.get_rank()}: {fn.__name__}{target} failed: {ex}')
                return failure

        return wrapper

    return decorator


class XferBenchEtcdRT(XferBenchRT):
    r'''
    Rendezvous runtime built on an etcd coordination service.

    Construction registers the process and assigns its rank; failing to reach
    the service or to take the registration lock terminates the process.
    :py:meth:`close` deregisters the process and also runs when the runtime
    is garbage collected. Rank 0 also removes every key of the
    namespace, so rank 0 should be the last rank to close.

    Args:
        etcd_endpoints: URL of the etcd service, empty selects
            ``config.etcd_endpoints`` or ``http://localhost:2379``
        size: number of processes in the group
        config: runtime configuration, built from the environment if None
        client: coordination client to use instead of connecting to etcd
    '''

    def __init__(
        self,
        etcd_endpoints: str = '',
        size: int = 1,
        config: Optional[EtcdRuntimeConfig] = None,
        client: Optional[CoordinationClient] = None,
    ):
        super().__init__()

        if config is None:
            config = EtcdRuntimeConfig.from_env()
        if etcd_endpoints:
            config = dataclasses.replace(config, etcd_endpoints=etcd_endpoints)
        setup_logger(level=config.log_level)

        self._closed = False
        try:
            if client is None:
                log.info(f'Connecting to ETCD at {config.endpoint}')
                client = EtcdCoordinationClient(config.endpoint, lock_ttl=config.lock_ttl)
            self._ctx = register(client, KeyNamespace(config.namespace_prefix), size, config)
        except (RegistrationError, StoreError) as ex:
            log.error(f'Failed to register with the coordination service: {ex}')
            sys.exit(EXIT_FAILURE)

        self._reduce_ids = _reduction.ReduceIdGenerator(config.reduce_seed)
        self.set_rank(self._ctx.rank)
        self.set_size(self._ctx.size)

    @property
    def context(self) -> RuntimeContext:
        if self._closed:
            raise XferBenchRTError(f'runtime of rank {self.get_rank()} is closed')
        return self._ctx

    @_report_errors(failure=-1, peer='dest_rank')
    def send_int(self, value: int, dest_rank: int) -> int:
        _channel.send_int(self.context, value, dest_rank)
        return 0

    @_report_errors(failure=(-1, None), peer='src_rank')
    def recv_int(self, src_rank: int) -> Tuple[int, Optional[int]]:
        return 0, _channel.recv_int(self.context, src_rank)

    @_report_errors(failure=-1, peer='dest_rank')
    def send_char(self, buffer, count: int, dest_rank: int) -> int:
        _channel.send_bytes(self.context, buffer, count, dest_rank)
        return 0

    @_report_errors(failure=-1, peer='src_rank')
    def recv_char(self, buffer, count: int, src_rank: int) -> int:
        _channel.recv_bytes(self.context, buffer, count, src_rank)
        return 0

    @_report_errors(failure=(-1, None), peer='dest_rank')
    def reduce_sum_double(self, local_value: float, dest_rank: int) -> Tuple[int, Optional[float]]:
        ctx = self.context
        op_id = self._reduce_ids.next_id()
        return 0, _reduction.reduce_sum_double(ctx, local_value, dest_rank, op_id)

    @_report_errors(failure=-1, peer='barrier_id')
    def barrier(self, barrier_id: str) -> int:
        _barrier.barrier(self.context, barrier_id)
        return 0

    @_report_errors(failure=-1, peer='root_rank')
    def broadcast_int(self, buffer, count: int, root_rank: int) -> int:
        _broadcast.broadcast_int(self.context, buffer, count, root_rank)
        return 0

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        deregister(self._ctx)
        self._ctx.client.close()

    def __del__(self):
        """Deregisters a runtime that was dropped without :py:meth:`close`."""
        if hasattr(self, '_ctx'):
            self.close()
