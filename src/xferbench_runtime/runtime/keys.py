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

"""Key layout of the rendezvous runtime in the coordination store.

Every key lives under a namespace prefix (``xferbench/`` by default)::

    size                                  registered process count
    lock                                  registration lock name
    rank/<r>                              "active"
    msg+int_data/src=<s>/dst=<d>          scalar message
    msg+char_data/src=<s>/dst=<d>         "<s>:<d>:<len>", payload in .../data
    <message key>/ack                     "received"
    barrier/<id>/count|ready|proc-<r>     arrival count, "true", "arrived"
    bcast/int/<root>                      packed int32 array
    reduce/<opid>/rank-<r>                "%.16f" contribution
"""

import enum
from dataclasses import dataclass


class MsgType(enum.Enum):
    INT = 'int_data'
    CHAR = 'char_data'


@dataclass(frozen=True)
class KeyNamespace:
    prefix: str = 'xferbench/'

    SIZE = 'size'
    LOCK = 'lock'
    RANK = 'rank/{rank}'

    MESSAGE = '{operation}+{payload}/src={src}/dst={dst}'
    ACK = '{msg_key}/ack'
    DATA = '{msg_key}/data'

    BARRIER = 'barrier/{barrier_id}'
    BARRIER_COUNT = '{barrier_key}/count'
    BARRIER_READY = '{barrier_key}/ready'
    BARRIER_LOCK = '{barrier_key}/lock'
    BARRIER_PROC = '{barrier_key}/proc-{rank}'

    BCAST_INT = 'bcast/int/{root}'

    REDUCE = 'reduce/{op_id}'
    REDUCE_VALUE = '{reduce_key}/rank-{rank}'

    def __post_init__(self):
        if not self.prefix.endswith('/'):
            raise ValueError(f'namespace prefix must end with "/": {self.prefix!r}')

    def _key(self, relative: str) -> str:
        return f'{self.prefix}{relative}'

    @staticmethod
    def subtree(key: str) -> str:
        return key if key.endswith('/') else f'{key}/'

    @property
    def size_key(self) -> str:
        return self._key(self.SIZE)

    @property
    def lock_key(self) -> str:
        return self._key(self.LOCK)

    def rank_key(self, rank: int) -> str:
        return self._key(self.RANK.format(rank=rank))

    def msg_key(self, src: int, dst: int, msg_type: MsgType, operation: str = 'msg') -> str:
        return self._key(
            self.MESSAGE.format(operation=operation, payload=msg_type.value, src=src, dst=dst)
        )

    def ack_key(self, msg_key: str) -> str:
        return self.ACK.format(msg_key=msg_key)

    def data_key(self, msg_key: str) -> str:
        return self.DATA.format(msg_key=msg_key)

    @property
    def barrier_root(self) -> str:
        return self._key('barrier')

    def barrier_key(self, barrier_id: str) -> str:
        return self._key(self.BARRIER.format(barrier_id=barrier_id))

    def barrier_count_key(self, barrier_id: str) -> str:
        return self.BARRIER_COUNT.format(barrier_key=self.barrier_key(barrier_id))

    def barrier_ready_key(self, barrier_id: str) -> str:
        return self.BARRIER_READY.format(barrier_key=self.barrier_key(barrier_id))

    def barrier_lock_key(self, barrier_id: str) -> str:
        return self.BARRIER_LOCK.format(barrier_key=self.barrier_key(barrier_id))

    def barrier_proc_key(self, barrier_id: str, rank: int) -> str:
        return self.BARRIER_PROC.format(barrier_key=self.barrier_key(barrier_id), rank=rank)

    def bcast_key(self, root: int) -> str:
        return self._key(self.BCAST_INT.format(root=root))

    def reduce_key(self, op_id: str) -> str:
        return self._key(self.REDUCE.format(op_id=op_id))

    def reduce_value_key(self, op_id: str, rank: int) -> str:
        return self.REDUCE_VALUE.format(reduce_key=self.reduce_key(op_id), rank=rank)
