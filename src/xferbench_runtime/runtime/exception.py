# SPDX-FileCopyrightText: NVIDIA CORPORATION & AFFILIATES
# Copyright (c) 2025 NVIDIA CORPORATION & AFFILIATES. All rights reserved.
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


class XferBenchRTError(Exception):
    r'''
    Base :py:exc:`Exception` for exceptions raised by the xferbench runtime.
    '''

    pass


class StoreError(XferBenchRTError):
    r'''
    The coordination service rejected a request or could not be reached.
    '''

    pass


class RegistrationError(XferBenchRTError):
    r'''
    Rank registration failed. Raised before a rank is assigned, callers
    are expected to terminate the process.
    '''

    pass


class PollTimeout(XferBenchRTError):
    r'''
    A polling loop exhausted its retry budget.
    '''

    def __init__(self, description: str, retries: int, interval: float):
        super().__init__(
            f'timed out waiting for {description} ({retries} attempts, {interval}s interval)'
        )
        self.description = description
        self.retries = retries
        self.interval = interval


class PayloadError(XferBenchRTError):
    r'''
    A message payload read from the store could not be decoded.
    '''

    pass


class BarrierError(XferBenchRTError):
    pass


class BarrierTimeout(BarrierError):
    pass
