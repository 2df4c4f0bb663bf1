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
import contextlib
import functools
import logging
import threading
import time
from typing import Any, Dict, List, Optional, Tuple, Union
from urllib.parse import urlsplit

import requests
from etcd3gw.client import Etcd3Client
from etcd3gw.exceptions import Etcd3Exception

from ..shared_utils.log import LogConfig
from .exception import StoreError

log = logging.getLogger(LogConfig.name)

Value = Union[bytes, str]


def _to_bytes(value: Value) -> bytes:
    if isinstance(value, str):
        return value.encode('utf-8')
    return bytes(value)


class CoordinationClient(abc.ABC):
    r'''
    Strongly consistent key-value store used as the only transport of the
    runtime.

    Values are returned as :py:class:`bytes`. A missing key reads as None.
    Every failure of the underlying service is reported as
    :py:exc:`StoreError`.
    '''

    @abc.abstractmethod
    def check_connection(self) -> None:
        raise NotImplementedError

    @abc.abstractmethod
    def get(self, key: str) -> Optional[bytes]:
        raise NotImplementedError

    @abc.abstractmethod
    def put(self, key: str, value: Value) -> None:
        raise NotImplementedError

    @abc.abstractmethod
    def delete(self, key: str) -> bool:
        raise NotImplementedError

    @abc.abstractmethod
    def delete_prefix(self, prefix: str) -> None:
        raise NotImplementedError

    @abc.abstractmethod
    def get_prefix(self, prefix: str) -> List[Tuple[str, bytes]]:
        raise NotImplementedError

    @abc.abstractmethod
    def acquire_lock(self, name: str, timeout: float) -> Any:
        r'''
        Blocks until the named lock is held, returns a handle for
        :py:meth:`release_lock`. Raises :py:exc:`StoreError` after
        ``timeout`` seconds.
        '''
        raise NotImplementedError

    @abc.abstractmethod
    def release_lock(self, handle: Any) -> None:
        raise NotImplementedError

    def close(self) -> None:
        pass

    @contextlib.contextmanager
    def lock(self, name: str, timeout: float):
        handle = self.acquire_lock(name, timeout)
        try:
            yield handle
        finally:
            self.release_lock(handle)


def _translate_errors(fn):
    # etcd3gw wraps only connection errors and timeouts of its requests session
    @functools.wraps(fn)
    def wrapper(self, *args, **kwargs):
        try:
            return fn(self, *args, **kwargs)
        except (Etcd3Exception, requests.exceptions.RequestException) as ex:
            target = f' of {args[0]}' if args and isinstance(args[0], str) else ''
            raise StoreError(
                f'etcd {fn.__name__}{target} failed at {self.endpoint}: '
                f'{type(ex).__name__}: {ex}'
            ) from ex

    return wrapper


class EtcdCoordinationClient(CoordinationClient):
    r'''
    etcd v3 client talking to the gRPC JSON gateway through ``etcd3gw``.

    Only the first endpoint of a comma separated list is used.
    '''

    LOCK_RETRY_INTERVAL = 0.1

    def __init__(self, endpoint: str, lock_ttl: int = 60, timeout: Optional[float] = None):
        first = endpoint.split(',')[0].strip()
        parsed = urlsplit(first if '://' in first else f'http://{first}')
        if not parsed.hostname:
            raise StoreError(f'invalid etcd endpoint {endpoint!r}')

        self.endpoint = first
        self.lock_ttl = lock_ttl
        self._client = Etcd3Client(
            host=parsed.hostname,
            port=parsed.port or 2379,
            protocol=parsed.scheme or 'http',
            timeout=timeout,
        )

    @_translate_errors
    def check_connection(self) -> None:
        self._client.status()

    @_translate_errors
    def get(self, key: str) -> Optional[bytes]:
        values = self._client.get(key)
        if not values:
            return None
        return _to_bytes(values[0])

    @_translate_errors
    def put(self, key: str, value: Value) -> None:
        self._client.put(key, _to_bytes(value))

    @_translate_errors
    def delete(self, key: str) -> bool:
        return bool(self._client.delete(key))

    @_translate_errors
    def delete_prefix(self, prefix: str) -> None:
        self._client.delete_prefix(prefix)

    @_translate_errors
    def get_prefix(self, prefix: str) -> List[Tuple[str, bytes]]:
        items = []
        for value, metadata in self._client.get_prefix(prefix):
            key = metadata['key']
            if isinstance(key, bytes):
                key = key.decode('utf-8')
            items.append((key, _to_bytes(value)))
        return sorted(items)

    @_translate_errors
    def acquire_lock(self, name: str, timeout: float) -> Any:
        lock = self._client.lock(id=name, ttl=self.lock_ttl)
        start = time.monotonic()
        while not lock.acquire():
            # every attempt grants a new lease, drop the one that lost
            if lock.lease is not None:
                lock.lease.revoke()
            if time.monotonic() - start >= timeout:
                raise StoreError(f'failed to acquire lock {name} within {timeout}s')
            time.sleep(self.LOCK_RETRY_INTERVAL)
        return lock

    @_translate_errors
    def release_lock(self, handle: Any) -> None:
        if not handle.release():
            log.warning(f'etcd lock at {self.endpoint} was not held at release')

    def close(self) -> None:
        session = getattr(self._client, 'session', None)
        if session is not None:
            session.close()


class InMemoryCoordinationClient(CoordinationClient):
    r'''
    Process-local store with the consistency of the real service.

    One instance shared by several threads emulates a group of ranks running
    against the same coordination service.
    '''

    def __init__(self):
        self.endpoint = 'memory://'
        self._data: Dict[str, bytes] = {}
        self._data_lock = threading.Lock()
        self._locks: Dict[str, threading.Lock] = {}
        self._locks_guard = threading.Lock()

    def check_connection(self) -> None:
        pass

    def get(self, key: str) -> Optional[bytes]:
        with self._data_lock:
            return self._data.get(key)

    def put(self, key: str, value: Value) -> None:
        with self._data_lock:
            self._data[key] = _to_bytes(value)

    def delete(self, key: str) -> bool:
        with self._data_lock:
            return self._data.pop(key, None) is not None

    def delete_prefix(self, prefix: str) -> None:
        with self._data_lock:
            for key in [k for k in self._data if k.startswith(prefix)]:
                del self._data[key]

    def get_prefix(self, prefix: str) -> List[Tuple[str, bytes]]:
        with self._data_lock:
            return sorted((k, v) for k, v in self._data.items() if k.startswith(prefix))

    def keys(self) -> List[str]:
        with self._data_lock:
            return sorted(self._data)

    def acquire_lock(self, name: str, timeout: float) -> Any:
        with self._locks_guard:
            lock = self._locks.setdefault(name, threading.Lock())
        if not lock.acquire(timeout=timeout):
            raise StoreError(f'failed to acquire lock {name} within {timeout}s')
        return name

    def release_lock(self, handle: Any) -> None:
        with self._locks_guard:
            lock = self._locks.get(handle)
        if lock is None or not lock.locked():
            log.warning(f'lock {handle} was not held at release')
            return
        lock.release()
