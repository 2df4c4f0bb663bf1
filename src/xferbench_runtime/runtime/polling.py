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
import time
from typing import Callable, Optional, TypeVar

from ..shared_utils.log import LogConfig
from .exception import PollTimeout

log = logging.getLogger(LogConfig.name)

T = TypeVar('T')


def poll_until(
    fn: Callable[[], Optional[T]],
    retries: int,
    interval: float,
    description: str,
    sleep_fn: Callable[[float], None] = time.sleep,
) -> T:
    """
    Calls ``fn`` until it returns something other than None.

    The budget is counted in attempts: ``fn`` is called at most ``retries``
    times and every miss is followed by a ``interval`` seconds sleep, so the
    total wait before a timeout is roughly ``retries * interval``. Exceptions
    raised by ``fn`` are not retried.

    Args:
        fn: probe returning None while the awaited condition does not hold
        retries: maximum number of calls to ``fn``
        interval: sleep between two calls, in seconds
        description: what is awaited, used in log and error messages
        sleep_fn: sleep implementation, replaceable in tests

    Returns:
        The first non-None value returned by ``fn``.

    Raises:
        PollTimeout: ``fn`` returned None ``retries`` times.
    """
    for attempt in range(retries):
        result = fn()
        if result is not None:
            if attempt:
                log.debug(f'{description} satisfied after {attempt + 1} attempts')
            return result
        sleep_fn(interval)
    raise PollTimeout(description, retries, interval)
