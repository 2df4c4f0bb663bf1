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

import abc
from typing import Optional, Tuple


class XferBenchRT(abc.ABC):
    r'''
    Out-of-band control channel of the transfer benchmark.

    Every operation returns ``0`` on success and ``-1`` on failure; operations
    that produce a scalar return a ``(status, value)`` pair whose value is
    None on failure. Failures are logged, never raised.
    '''

    def __init__(self):
        self._rank = -1
        self._size = 0

    def get_rank(self) -> int:
        return self._rank

    def get_size(self) -> int:
        return self._size

    def set_rank(self, rank: int) -> None:
        self._rank = rank

    def set_size(self, size: int) -> None:
        self._size = size

    @property
    def rank(self) -> int:
        return self._rank

    @property
    def size(self) -> int:
        return self._size

    @abc.abstractmethod
    def send_int(self, value: int, dest_rank: int) -> int:
        raise NotImplementedError

    @abc.abstractmethod
    def recv_int(self, src_rank: int) -> Tuple[int, Optional[int]]:
        raise NotImplementedError

    @abc.abstractmethod
    def send_char(self, buffer, count: int, dest_rank: int) -> int:
        raise NotImplementedError

    @abc.abstractmethod
    def recv_char(self, buffer, count: int, src_rank: int) -> int:
        raise NotImplementedError

    @abc.abstractmethod
    def reduce_sum_double(
        self, local_value: float, dest_rank: int
    ) -> Tuple[int, Optional[float]]:
        raise NotImplementedError

    @abc.abstractmethod
    def barrier(self, barrier_id: str) -> int:
        raise NotImplementedError

    @abc.abstractmethod
    def broadcast_int(self, buffer, count: int, root_rank: int) -> int:
        raise NotImplementedError

    def close(self) -> None:
        pass

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_value, traceback):
        self.close()
