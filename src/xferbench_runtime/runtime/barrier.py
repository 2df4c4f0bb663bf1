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

from ..shared_utils.log import LogConfig
from .counter import bump_counter, read_counter
from .exception import BarrierTimeout, PollTimeout
from .polling import poll_until
from .registration import RuntimeContext

log = logging.getLogger(LogConfig.name)

ARRIVED = 'arrived'
READY = b'true'


def barrier(ctx: RuntimeContext, barrier_id: str) -> None:
    """
    Blocks until all ``ctx.size`` ranks called ``barrier`` with ``barrier_id``.

    Every rank leaves a ``proc-<rank>`` marker and increments the arrival
    count. Ranks that see the count reach the group size publish the ``ready``
    flag, and everybody waits for that flag before leaving. Rank 0 removes the
    record after ``barrier_cleanup_delay``, so a barrier id may be reused only
    once that delay has elapsed.

    Raises:
        BarrierTimeout: not every rank arrived, or the ready flag was not seen,
            within the configured number of attempts.
    """
    ns = ctx.namespace
    client = ctx.client
    cfg = ctx.config

    count_key = ns.barrier_count_key(barrier_id)
    ready_key = ns.barrier_ready_key(barrier_id)
    proc_key = ns.barrier_proc_key(barrier_id, ctx.rank)

    client.put(proc_key, ARRIVED)

    # increments go through a lock, a plain read-then-write loses arrivals
    with client.lock(ns.barrier_lock_key(barrier_id), cfg.lock_timeout):
        arrived = bump_counter(client, count_key)
    log.debug(f'rank={ctx.rank} arrived at barrier {barrier_id} ({arrived}/{ctx.size})')

    observed = {'count': arrived}

    def all_arrived():
        count = read_counter(client, count_key)
        if count is None:
            return None
        observed['count'] = count
        return count if count >= ctx.size else None

    try:
        count = poll_until(
            all_arrived,
            cfg.barrier_count_retries,
            cfg.poll_interval,
            f'barrier {barrier_id} arrivals at {count_key}',
        )
    except PollTimeout as ex:
        raise BarrierTimeout(
            f'Rank {ctx.rank} timed out waiting for barrier {barrier_id} completion '
            f'(got {observed["count"]}/{ctx.size} processes)'
        ) from ex

    if count == ctx.size:
        client.put(ready_key, READY)

    try:
        poll_until(
            lambda: True if client.get(ready_key) == READY else None,
            cfg.barrier_ready_retries,
            cfg.poll_interval,
            f'barrier {barrier_id} ready flag at {ready_key}',
        )
    except PollTimeout as ex:
        raise BarrierTimeout(
            f'Rank {ctx.rank} timed out waiting for barrier {barrier_id} ready signal'
        ) from ex

    client.delete(proc_key)

    if ctx.rank == 0:
        time.sleep(cfg.barrier_cleanup_delay)
        client.delete_prefix(ns.subtree(ns.barrier_key(barrier_id)))

    log.debug(f'rank={ctx.rank} exits barrier {barrier_id}')
