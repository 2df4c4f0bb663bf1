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

import threading
import traceback

from xferbench_runtime.runtime import (
    EtcdRuntimeConfig,
    InMemoryCoordinationClient,
    XferBenchEtcdRT,
)

TEST_THREAD_JOIN_TIMEOUT_SECS = 30.0


def fast_config(**overrides) -> EtcdRuntimeConfig:
    """Config with short intervals and large attempt budgets."""
    kwargs = dict(
        poll_interval=0.01,
        msg_retries=500,
        ack_settle_delay=0.01,
        barrier_count_retries=500,
        barrier_ready_retries=500,
        barrier_cleanup_delay=0.05,
        bcast_retries=200,
        bcast_interval=0.01,
        reduce_retries=500,
        lock_timeout=10.0,
    )
    kwargs.update(overrides)
    return EtcdRuntimeConfig(**kwargs)


def make_runtime(store, size, config=None):
    return XferBenchEtcdRT(size=size, config=config or fast_config(), client=store)


def run_ranks(world_size, fn, config=None, store=None, on_finish=None):
    """
    Runs ``fn(runtime)`` on ``world_size`` threads sharing one in-memory store.

    Every thread registers its own runtime, so ranks are assigned by arrival.
    Returns ``(results, store)`` where ``results`` maps rank to the value
    returned by ``fn``. Exceptions raised in a thread are re-raised here.
    ``on_finish(store)`` runs once every rank returned, before the runtimes
    are closed with rank 0 last.
    """
    store = store or InMemoryCoordinationClient()
    config = config or fast_config()
    results = {}
    runtimes = {}
    errors = []
    lock = threading.Lock()

    def worker():
        try:
            rt = make_runtime(store, world_size, config)
            with lock:
                runtimes[rt.get_rank()] = rt
            value = fn(rt)
            with lock:
                results[rt.get_rank()] = value
        except BaseException:
            with lock:
                errors.append(traceback.format_exc())

    threads = [threading.Thread(target=worker) for _ in range(world_size)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(TEST_THREAD_JOIN_TIMEOUT_SECS)
        assert not thread.is_alive(), 'rank thread did not finish'

    if on_finish is not None and not errors:
        on_finish(store)
    for rank in sorted(runtimes, reverse=True):
        runtimes[rank].close()

    assert not errors, '\n'.join(errors)
    return results, store
