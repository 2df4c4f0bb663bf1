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
import random
from typing import Optional

from ..shared_utils.log import LogConfig
from .exception import PayloadError, PollTimeout
from .polling import poll_until
from .registration import RuntimeContext

log = logging.getLogger(LogConfig.name)


class ReduceIdGenerator:
    r'''
    Produces reduction operation ids.

    All ranks seed the generator identically, so the n-th reduction issued
    by every rank maps to the same ``reduce/<id>`` subtree while successive
    reductions get distinct ids.
    '''

    def __init__(self, seed: int = 0):
        self._rng = random.Random(seed)
        self._issued = 0

    def next_id(self) -> str:
        self._issued += 1
        return f'{self._issued}-{self._rng.getrandbits(32):08x}'


def format_contribution(value: float) -> str:
    return f'{value:.16f}'


def parse_contribution(raw: bytes, key: str) -> float:
    try:
        return float(raw.decode('utf-8'))
    except (UnicodeDecodeError, ValueError) as ex:
        raise PayloadError(f'non-numeric contribution {raw!r} at {key}') from ex


def reduce_sum_double(
    ctx: RuntimeContext, local_value: float, dest_rank: int, op_id: str
) -> Optional[float]:
    """
    Sums ``local_value`` of all ranks at ``dest_rank``.

    Every rank publishes its contribution under ``reduce/<op_id>``. Ranks other
    than ``dest_rank`` return None right away without waiting for the
    destination. The destination consumes the ``size - 1`` foreign
    contributions, removes the whole subtree and returns the sum.
    """
    ns = ctx.namespace
    client = ctx.client
    cfg = ctx.config

    reduce_key = ns.reduce_key(op_id)
    value_key = ns.reduce_value_key(op_id, ctx.rank)

    client.put(value_key, format_contribution(local_value))

    if ctx.rank != dest_rank:
        return None

    total = float(local_value)
    expected = ctx.size - 1
    consumed = set()

    def collect():
        nonlocal total
        for key, raw in client.get_prefix(ns.subtree(reduce_key)):
            if key == value_key or key in consumed:
                continue
            total += parse_contribution(raw, key)
            client.delete(key)
            consumed.add(key)
        return True if len(consumed) >= expected else None

    try:
        poll_until(
            collect,
            cfg.reduce_retries,
            cfg.poll_interval,
            f'reduction contributions under {reduce_key}',
        )
    except PollTimeout:
        log.warning(
            f'Timeout waiting for reduction contributions '
            f'(got {len(consumed)}/{expected} contributions)'
        )
        raise
    finally:
        client.delete_prefix(ns.subtree(reduce_key))

    return total
