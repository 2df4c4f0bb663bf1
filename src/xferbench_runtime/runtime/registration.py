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
from dataclasses import dataclass

from ..shared_utils.log import LogConfig
from .config import EtcdRuntimeConfig
from .counter import bump_counter
from .exception import RegistrationError, StoreError, XferBenchRTError
from .keys import KeyNamespace
from .store import CoordinationClient

log = logging.getLogger(LogConfig.name)


@dataclass(frozen=True)
class RuntimeContext:
    """Identity of this process in the group and its handle on the store.

    Attributes:
        rank: unique rank in [0, size)
        size: declared group size
        client: coordination service client
        namespace: key layout of this benchmark run
        config: polling budgets and delays
    """

    rank: int
    size: int
    client: CoordinationClient
    namespace: KeyNamespace
    config: EtcdRuntimeConfig


def register(
    client: CoordinationClient,
    namespace: KeyNamespace,
    declared_size: int,
    config: EtcdRuntimeConfig,
) -> RuntimeContext:
    """
    Assigns the next free rank of the group.

    The registration counter is read and incremented under the group lock, so
    concurrently registering processes obtain the contiguous ranks
    ``0 .. N-1``. A ``rank/<r>`` marker is written for the new rank.

    Raises:
        RegistrationError: the service is unreachable, the lock can't be
            acquired or the stored counter is malformed. No rank is assigned.
    """
    if declared_size < 1:
        raise RegistrationError(f'group size must be positive, got {declared_size}')

    try:
        client.check_connection()
    except StoreError as ex:
        raise RegistrationError(
            f'failed to connect to coordination service at {client.endpoint}: {ex}'
        ) from ex

    try:
        with client.lock(namespace.lock_key, config.lock_timeout):
            rank = bump_counter(client, namespace.size_key) - 1
            client.put(namespace.rank_key(rank), 'active')
    except XferBenchRTError as ex:
        raise RegistrationError(f'failed to register at {namespace.lock_key}: {ex}') from ex

    log.info(f'Registered as rank {rank} item {rank + 1} of {declared_size}')
    return RuntimeContext(
        rank=rank,
        size=declared_size,
        client=client,
        namespace=namespace,
        config=config,
    )


def _best_effort(description: str, fn, *args) -> None:
    try:
        fn(*args)
    except StoreError as ex:
        log.warning(f'Teardown: failed to {description}: {ex}')


def deregister(ctx: RuntimeContext) -> None:
    """
    Removes this rank's marker. Rank 0 also removes the registration counter,
    the barrier subtree and everything else under the namespace prefix.

    Missing keys and store failures are not errors here, so calling this
    repeatedly is safe.
    """
    ns = ctx.namespace
    client = ctx.client

    _best_effort(f'remove {ns.rank_key(ctx.rank)}', client.delete, ns.rank_key(ctx.rank))

    if ctx.rank == 0:
        _best_effort(f'remove {ns.size_key}', client.delete, ns.size_key)
        barrier_subtree = ns.subtree(ns.barrier_root)
        _best_effort(f'remove {barrier_subtree}', client.delete_prefix, barrier_subtree)
        _best_effort(f'remove {ns.prefix}', client.delete_prefix, ns.prefix)

    log.debug(f'rank={ctx.rank} deregistered')
