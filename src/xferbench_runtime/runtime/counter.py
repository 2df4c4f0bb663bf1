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

from typing import Optional

from .exception import PayloadError
from .store import CoordinationClient


def parse_int(raw: bytes, key: str) -> int:
    try:
        return int(raw.decode('utf-8'))
    except (UnicodeDecodeError, ValueError) as ex:
        raise PayloadError(f'non-integer value {raw!r} at {key}') from ex


def read_counter(client: CoordinationClient, key: str) -> Optional[int]:
    raw = client.get(key)
    if raw is None:
        return None
    return parse_int(raw, key)


def bump_counter(client: CoordinationClient, key: str) -> int:
    """
    Read-then-write increment of a decimal counter, absent counts as 0.
    Returns the new value. Only safe while the caller holds a coordination lock
    that every writer of ``key`` also takes.
    """
    value = (read_counter(client, key) or 0) + 1
    client.put(key, str(value))
    return value
