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
import unittest
from unittest.mock import MagicMock, patch

import requests
from etcd3gw.exceptions import Etcd3Exception

from xferbench_runtime.runtime.exception import StoreError
from xferbench_runtime.runtime.store import EtcdCoordinationClient, InMemoryCoordinationClient

from .utils import fast_config, make_runtime


class TestInMemoryCoordinationClient(unittest.TestCase):
    def setUp(self):
        self.store = InMemoryCoordinationClient()

    def test_get_put_delete(self):
        self.assertIsNone(self.store.get('a'))
        self.store.put('a', 'value')
        self.assertEqual(self.store.get('a'), b'value')
        self.store.put('a', b'\x00\x01')
        self.assertEqual(self.store.get('a'), b'\x00\x01')
        self.assertTrue(self.store.delete('a'))
        self.assertFalse(self.store.delete('a'))
        self.assertIsNone(self.store.get('a'))

    def test_prefix_operations(self):
        for key in ['p/a', 'p/b', 'p2/c', 'q/d']:
            self.store.put(key, key)
        self.assertEqual(self.store.get_prefix('p/'), [('p/a', b'p/a'), ('p/b', b'p/b')])
        self.store.delete_prefix('p/')
        self.assertEqual(self.store.keys(), ['p2/c', 'q/d'])

    def test_lock_excludes_other_holders(self):
        handle = self.store.acquire_lock('l', timeout=1.0)
        acquired = []

        def contender():
            try:
                self.store.acquire_lock('l', timeout=0.05)
                acquired.append(True)
            except StoreError:
                acquired.append(False)

        thread = threading.Thread(target=contender)
        thread.start()
        thread.join(5.0)
        self.assertEqual(acquired, [False])

        self.store.release_lock(handle)
        with self.store.lock('l', timeout=0.05):
            pass

    def test_release_unheld_lock_is_harmless(self):
        self.store.release_lock('never-taken')


class TestEtcdCoordinationClient(unittest.TestCase):
    def setUp(self):
        patcher = patch('xferbench_runtime.runtime.store.Etcd3Client')
        self.client_cls = patcher.start()
        self.addCleanup(patcher.stop)
        self.etcd = self.client_cls.return_value

    def test_endpoint_parsing(self):
        EtcdCoordinationClient('https://etcd.example:2380,http://other:2379')
        kwargs = self.client_cls.call_args.kwargs
        self.assertEqual(kwargs['host'], 'etcd.example')
        self.assertEqual(kwargs['port'], 2380)
        self.assertEqual(kwargs['protocol'], 'https')

    def test_endpoint_without_scheme(self):
        client = EtcdCoordinationClient('localhost')
        kwargs = self.client_cls.call_args.kwargs
        self.assertEqual((kwargs['host'], kwargs['port'], kwargs['protocol']), ('localhost', 2379, 'http'))
        self.assertEqual(client.endpoint, 'localhost')

    def test_get(self):
        client = EtcdCoordinationClient('http://localhost:2379')
        self.etcd.get.return_value = []
        self.assertIsNone(client.get('k'))
        self.etcd.get.return_value = [b'42']
        self.assertEqual(client.get('k'), b'42')

    def test_put_encodes_strings(self):
        client = EtcdCoordinationClient('http://localhost:2379')
        client.put('k', 'v')
        self.etcd.put.assert_called_once_with('k', b'v')

    def test_get_prefix(self):
        client = EtcdCoordinationClient('http://localhost:2379')
        self.etcd.get_prefix.return_value = [
            (b'2.0', {'key': b'r/rank-1'}),
            (b'1.0', {'key': b'r/rank-0'}),
        ]
        self.assertEqual(client.get_prefix('r/'), [('r/rank-0', b'1.0'), ('r/rank-1', b'2.0')])
        self.etcd.get_prefix.assert_called_once_with('r/')

    def test_delete_prefix(self):
        client = EtcdCoordinationClient('http://localhost:2379')
        client.delete_prefix('xferbench/')
        self.etcd.delete_prefix.assert_called_once_with('xferbench/')

    def test_errors_are_translated(self):
        client = EtcdCoordinationClient('http://localhost:2379')
        self.etcd.status.side_effect = Etcd3Exception('connection refused')
        with self.assertRaises(StoreError):
            client.check_connection()
        self.etcd.get.side_effect = Etcd3Exception('boom')
        with self.assertRaises(StoreError):
            client.get('k')

    def test_lock_retries_until_acquired(self):
        client = EtcdCoordinationClient('http://localhost:2379', lock_ttl=7)
        lock = MagicMock()
        lock.acquire.side_effect = [False, False, True]
        self.etcd.lock.return_value = lock
        with patch('xferbench_runtime.runtime.store.time.sleep'):
            handle = client.acquire_lock('xferbench/lock', timeout=10.0)
        self.assertIs(handle, lock)
        self.assertEqual(lock.acquire.call_count, 3)
        self.assertEqual(lock.lease.revoke.call_count, 2)
        self.etcd.lock.assert_called_once_with(id='xferbench/lock', ttl=7)
        client.release_lock(handle)
        lock.release.assert_called_once_with()

    def test_lock_timeout(self):
        client = EtcdCoordinationClient('http://localhost:2379')
        lock = MagicMock()
        lock.acquire.return_value = False
        self.etcd.lock.return_value = lock
        with self.assertRaises(StoreError):
            client.acquire_lock('xferbench/lock', timeout=0.0)
        lock.lease.revoke.assert_called_once_with()

    def test_transport_errors_are_translated(self):
        client = EtcdCoordinationClient('http://localhost:2379')
        self.etcd.put.side_effect = requests.exceptions.ChunkedEncodingError('truncated body')
        with self.assertRaises(StoreError) as cm:
            client.put('xferbench/size', '1')
        self.assertIn('put of xferbench/size', str(cm.exception))
        self.assertIn('truncated body', str(cm.exception))


class TestEtcdRuntimeErrors(unittest.TestCase):
    def setUp(self):
        patcher = patch('xferbench_runtime.runtime.store.Etcd3Client')
        self.client_cls = patcher.start()
        self.addCleanup(patcher.stop)
        self.etcd = self.client_cls.return_value
        self.etcd.get.return_value = []

    def test_store_failure_is_reported_with_key_and_peer(self):
        rt0 = make_runtime(EtcdCoordinationClient('http://localhost:2379'), 2, fast_config())
        self.assertEqual(rt0.get_rank(), 0)
        self.etcd.put.side_effect = requests.exceptions.ChunkedEncodingError('truncated body')

        with self.assertLogs('xferbench', level='ERROR') as cm:
            self.assertEqual(rt0.send_int(5, 1), -1)
        message = cm.output[-1]
        self.assertIn('send_int (dest_rank=1)', message)
        self.assertIn('xferbench/msg+int_data/src=0/dst=1', message)
        self.assertIn('truncated body', message)

    def test_peer_given_as_keyword(self):
        rt0 = make_runtime(EtcdCoordinationClient('http://localhost:2379'), 2, fast_config())
        self.etcd.get.side_effect = Etcd3Exception('unavailable')

        with self.assertLogs('xferbench', level='ERROR') as cm:
            self.assertEqual(rt0.recv_int(src_rank=1), (-1, None))
        self.assertIn('recv_int (src_rank=1)', cm.output[-1])

    def test_transport_error_during_registration_exits(self):
        self.etcd.status.side_effect = requests.exceptions.ContentDecodingError('bad gzip')
        with self.assertRaises(SystemExit) as cm:
            make_runtime(EtcdCoordinationClient('http://localhost:2379'), 2)
        self.assertEqual(cm.exception.code, 1)
