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

import time
import unittest

from xferbench_runtime.runtime import InMemoryCoordinationClient
from xferbench_runtime.runtime.keys import KeyNamespace

from .utils import fast_config, make_runtime, run_ranks

STAGGER_SECS = 0.05


class TestBarrier(unittest.TestCase):
    def test_nobody_leaves_early(self):
        world_size = 4

        def fn(rt):
            time.sleep(STAGGER_SECS * rt.get_rank())
            entered = time.monotonic()
            status = rt.barrier('stagger')
            return status, entered, time.monotonic()

        results, _ = run_ranks(world_size, fn)

        self.assertEqual(sorted(results), list(range(world_size)))
        last_entry = max(entered for _, entered, _ in results.values())
        for status, _, exited in results.values():
            self.assertEqual(status, 0)
            self.assertGreaterEqual(exited, last_entry)

    def test_many_concurrent_arrivals(self):
        world_size = 16

        def fn(rt):
            return rt.barrier('crowd')

        results, _ = run_ranks(world_size, fn)
        self.assertEqual(results, {rank: 0 for rank in range(world_size)})

    def test_record_removed_after_barrier(self):
        def fn(rt):
            return rt.barrier('b1')

        snapshot = {}
        results, _ = run_ranks(3, fn, on_finish=lambda store: snapshot.update(keys=store.keys()))
        self.assertEqual(set(results.values()), {0})
        self.assertEqual([k for k in snapshot['keys'] if '/barrier/' in k], [])

    def test_successive_barriers(self):
        def fn(rt):
            statuses = []
            for idx in range(3):
                statuses.append(rt.barrier(f'phase_{idx}'))
            return statuses

        results, _ = run_ranks(3, fn)
        for statuses in results.values():
            self.assertEqual(statuses, [0, 0, 0])

    def test_fresh_barrier_ignores_previous_state(self):
        cfg = fast_config(barrier_count_retries=50)

        def fn(rt):
            first = rt.barrier('first')
            if rt.get_rank() == 0:
                return first, None
            # rank 0 never arrives, the completed 'first' must not release it
            return first, rt.barrier('second')

        results, _ = run_ranks(2, fn, config=cfg)
        self.assertEqual(results[0], (0, None))
        self.assertEqual(results[1], (0, -1))

    def test_timeout_when_rank_missing(self):
        store = InMemoryCoordinationClient()
        cfg = fast_config(barrier_count_retries=3)
        rt0 = make_runtime(store, 2, cfg)

        self.assertEqual(rt0.barrier('lonely'), -1)
        ns = KeyNamespace()
        self.assertEqual(store.get(ns.barrier_count_key('lonely')), b'1')
        self.assertIsNone(store.get(ns.barrier_ready_key('lonely')))

    def test_timeout_when_ready_flag_missing(self):
        store = InMemoryCoordinationClient()
        cfg = fast_config(barrier_ready_retries=3)
        rt0 = make_runtime(store, 1, cfg)
        ns = KeyNamespace()
        # an over-full count means nobody sees the count hit the group size
        store.put(ns.barrier_count_key('overfull'), '5')

        self.assertEqual(rt0.barrier('overfull'), -1)
        self.assertIsNone(store.get(ns.barrier_ready_key('overfull')))

    def test_single_rank_barrier(self):
        store = InMemoryCoordinationClient()
        rt0 = make_runtime(store, 1)
        self.assertEqual(rt0.barrier('solo'), 0)
        self.assertEqual([k for k in store.keys() if '/barrier/' in k], [])
