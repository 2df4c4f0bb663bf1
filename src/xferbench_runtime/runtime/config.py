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

import dataclasses
import logging
import os
from dataclasses import dataclass, fields

import yaml

from ..shared_utils.log import get_log_level

ETCD_EP_DEFAULT = "http://localhost:2379"
ETCD_EP_ENV = "XFERBENCH_ETCD_ENDPOINTS"


@dataclass
class EtcdRuntimeConfig:
    """
    Configuration of the etcd rendezvous runtime

    * `etcd_endpoints` [str] URL of the coordination service. Empty string selects the default
      `http://localhost:2379`.
    * `namespace_prefix` [str] prefix of every key used by the runtime. Must end with '/'.
    * `poll_interval` [float] sleep (in seconds) between two attempts of the message, barrier and
      reduction polling loops.
    * `msg_retries` [int] attempts made by send (waiting for the acknowledgment) and by receive
      (waiting for the message) before reporting a timeout.
    * `ack_settle_delay` [float] delay (in seconds) between writing the acknowledgment and deleting
      the received message.
    * `barrier_count_retries` [int] attempts made while waiting for every rank to arrive at a barrier.
    * `barrier_ready_retries` [int] attempts made while waiting for the barrier `ready` flag.
    * `barrier_cleanup_delay` [float] grace period (in seconds) rank 0 waits before removing a
      satisfied barrier record.
    * `bcast_retries` [int] attempts made by non-root ranks to read broadcast data.
    * `bcast_interval` [float] sleep (in seconds) between two broadcast read attempts.
    * `reduce_retries` [int] attempts made by the destination rank to collect contributions.
    * `lock_timeout` [float] time (in seconds) allowed for acquiring the registration lock.
    * `lock_ttl` [int] lease TTL (in seconds) of coordination locks.
    * `reduce_seed` [int] seed shared by all ranks to derive reduction operation ids.
    * `log_level` log level of the runtime logger, DEBUG if XFERBENCH_DEBUG is set, INFO otherwise

    Retry budgets are counted in attempts, so the time before a timeout is
    approximately `retries * interval`.
    """

    etcd_endpoints: str = ""
    namespace_prefix: str = "xferbench/"
    poll_interval: float = 1.0
    msg_retries: int = 60
    ack_settle_delay: float = 0.1
    barrier_count_retries: int = 30
    barrier_ready_retries: int = 60
    barrier_cleanup_delay: float = 5.0
    bcast_retries: int = 10
    bcast_interval: float = 0.1
    reduce_retries: int = 30
    lock_timeout: float = 60.0
    lock_ttl: int = 60
    reduce_seed: int = 0
    log_level: int = dataclasses.field(default_factory=get_log_level)

    @property
    def endpoint(self) -> str:
        return self.etcd_endpoints or ETCD_EP_DEFAULT

    @staticmethod
    def from_kwargs(ignore_not_recognized: bool = True, **kwargs) -> 'EtcdRuntimeConfig':
        """
        Create an EtcdRuntimeConfig object from keyword arguments.

        Args:
            ignore_not_recognized (bool, optional): Whether to ignore unrecognized arguments. Defaults to True.
            **kwargs: Keyword arguments representing the fields of the EtcdRuntimeConfig object.

        Returns:
            EtcdRuntimeConfig: The created EtcdRuntimeConfig object.

        Raises:
            ValueError: If there are unrecognized arguments and ignore_not_recognized is False.
        """
        fields_set = {f.name for f in fields(EtcdRuntimeConfig) if f.init}
        matching_args = {k: v for k, v in kwargs.items() if k in fields_set}
        extra_args = {k: v for k, v in kwargs.items() if k not in fields_set}
        if extra_args and not ignore_not_recognized:
            raise ValueError(f"Not recognized args: {extra_args}")
        return EtcdRuntimeConfig(**matching_args)

    @staticmethod
    def from_yaml_file(cfg_path: str, ignore_not_recognized: bool = True) -> 'EtcdRuntimeConfig':
        """
        Load the runtime configuration from a YAML file.

        YAML file should contain `etcd_runtime` section.
        `etcd_runtime` section can be at the top level or nested in any other section.

        Args:
            cfg_path (str): The path to the YAML configuration file.
            ignore_not_recognized (bool, optional): Whether to ignore unrecognized configuration options.
                Defaults to True.

        Returns:
            EtcdRuntimeConfig: The runtime configuration object.

        Raises:
            ValueError: If the 'etcd_runtime' section is not found in the config file.
        """
        with open(cfg_path, 'r') as file:
            yaml_data = yaml.safe_load(file)
            rt_cfg = EtcdRuntimeConfig._find_runtime_section(yaml_data)
            if rt_cfg:
                return EtcdRuntimeConfig.from_kwargs(
                    **rt_cfg, ignore_not_recognized=ignore_not_recognized
                )
            else:
                raise ValueError(f"'etcd_runtime' section not found in config file {cfg_path}")

    @staticmethod
    def from_env(**kwargs) -> 'EtcdRuntimeConfig':
        """
        Create a config whose endpoint is taken from XFERBENCH_ETCD_ENDPOINTS, if set.
        Explicit keyword arguments take precedence over the environment.
        """
        env_endpoints = os.environ.get(ETCD_EP_ENV, "")
        if env_endpoints and "etcd_endpoints" not in kwargs:
            kwargs["etcd_endpoints"] = env_endpoints
        return EtcdRuntimeConfig.from_kwargs(**kwargs)

    def to_yaml_file(self, cfg_path: str) -> None:
        """
        Convert the configuration object to a YAML file and save it to the specified path.

        Args:
            cfg_path (str): The path to save the YAML file.
        """
        self._fix_log_level_type()
        with open(cfg_path, 'w') as file:
            rt_cfg_dict = dataclasses.asdict(self)
            rt_cfg_dict = {'etcd_runtime': rt_cfg_dict}
            yaml.dump(rt_cfg_dict, file)

    @staticmethod
    def _find_runtime_section(yaml_data):
        if isinstance(yaml_data, dict):
            if "etcd_runtime" in yaml_data:
                return yaml_data["etcd_runtime"]
            else:
                for key, value in yaml_data.items():
                    sub_config = EtcdRuntimeConfig._find_runtime_section(value)
                    if sub_config:
                        return sub_config
        elif isinstance(yaml_data, list):
            for item in yaml_data:
                sub_config = EtcdRuntimeConfig._find_runtime_section(item)
                if sub_config:
                    return sub_config
        return None

    def _fix_log_level_type(self):
        if isinstance(self.log_level, int):
            if not (logging.DEBUG <= self.log_level <= logging.CRITICAL):
                raise ValueError(
                    f"Invalid log level value ({self.log_level}). Should be in [{logging.DEBUG} (DEBUG), {logging.FATAL} (CRITICAL)]"
                )
        elif isinstance(self.log_level, str):
            log_level_str = self.log_level.upper()
            if log_level_str in ['DEBUG', 'DBG']:
                self.log_level = logging.DEBUG
            elif log_level_str == 'INFO':
                self.log_level = logging.INFO
            elif log_level_str in ['WARNING', 'WARN']:
                self.log_level = logging.WARNING
            elif log_level_str == 'ERROR':
                self.log_level = logging.ERROR
            elif log_level_str == 'CRITICAL':
                self.log_level = logging.CRITICAL
            else:
                raise ValueError(f"Invalid log level string: {self.log_level}")
        else:
            raise ValueError(f"Invalid value for log_level: {self.log_level}")

    def _validate(self):
        if not self.namespace_prefix.endswith('/'):
            raise ValueError(f"namespace_prefix must end with '/': {self.namespace_prefix!r}")
        retry_fields = [
            'msg_retries',
            'barrier_count_retries',
            'barrier_ready_retries',
            'bcast_retries',
            'reduce_retries',
        ]
        for name in retry_fields:
            if getattr(self, name) < 1:
                raise ValueError(f"{name} must be positive, got {getattr(self, name)}")
        delay_fields = [
            'poll_interval',
            'ack_settle_delay',
            'barrier_cleanup_delay',
            'bcast_interval',
            'lock_timeout',
        ]
        for name in delay_fields:
            if getattr(self, name) < 0:
                raise ValueError(f"{name} must not be negative, got {getattr(self, name)}")
        if self.lock_ttl < 1:
            raise ValueError(f"lock_ttl must be positive, got {self.lock_ttl}")

    def __post_init__(self):
        self._fix_log_level_type()
        self._validate()
