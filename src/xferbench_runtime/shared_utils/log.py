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

"""
XferBench Runtime Singleton Logger Module

This module provides a single shared logger for the xferbench runtime with
configurable output destination and log level.

Environment Variables:
    XFERBENCH_DEBUG: Set to "1", "true", "yes", or "on" to enable DEBUG level logging
    XFERBENCH_NULL_HANDLER: Set to "1", "true", "yes", or "on" to disable logging
                            (allows applications to configure their own handlers)
    XFERBENCH_LOGFILE: Path to log file for file-based logging

Usage:
    from xferbench_runtime.shared_utils.log import setup_logger
    logger = setup_logger()  # Call once at startup

    # In other modules
    import logging
    from xferbench_runtime.shared_utils.log import LogConfig
    logger = logging.getLogger(LogConfig.name)
    logger.info("Registered")
"""

import logging
import os
import socket
from typing import Optional

_TRUTHY = ("1", "true", "yes", "on")


class LogConfig:
    """Utility class for log configuration."""

    name = "xferbench"

    @classmethod
    def get_node_id(cls):
        return socket.gethostname()

    @classmethod
    def get_logfile(cls) -> Optional[str]:
        return os.environ.get("XFERBENCH_LOGFILE", None)

    @classmethod
    def use_null_handler(cls) -> bool:
        return os.environ.get("XFERBENCH_NULL_HANDLER", "").lower() in _TRUTHY


def get_log_level() -> int:
    """
    Determine the log level based on XFERBENCH_DEBUG environment variable.
    Returns logging.DEBUG if XFERBENCH_DEBUG is set to a truthy value,
    otherwise returns logging.INFO
    """
    debug_env = os.environ.get("XFERBENCH_DEBUG", "").lower()
    return logging.DEBUG if debug_env in _TRUTHY else logging.INFO


def setup_logger(logfile=None, level: Optional[int] = None, force_reset: bool = False) -> logging.Logger:
    """
    Setup the single shared logger of the xferbench runtime.
    If XFERBENCH_NULL_HANDLER is set to a truthy value, only adds a NullHandler,
    allowing applications to configure their own handlers.
    Otherwise, configures logger to a file or stderr.

    Args:
        logfile: Optional file path for logging. If None, checks XFERBENCH_LOGFILE env var.
        level: Optional explicit log level, overrides XFERBENCH_DEBUG.
        force_reset: Drop previously installed handlers and configure again.

    Returns:
        logging.Logger: Configured logger instance
    """
    logger = logging.getLogger(LogConfig.name)

    if force_reset:
        for handler in list(logger.handlers):
            logger.removeHandler(handler)
            handler.close()

    # Return existing logger if already configured
    if logger.handlers:
        if level is not None:
            logger.setLevel(level)
        return logger

    # Prevent logs from propagating to parent loggers
    logger.propagate = False

    if LogConfig.use_null_handler():
        logger.addHandler(logging.NullHandler())
        return logger

    log_level = level if level is not None else get_log_level()
    logger.setLevel(log_level)

    logfile = logfile or LogConfig.get_logfile()

    if logfile:
        handler = logging.FileHandler(filename=logfile)
    else:
        handler = logging.StreamHandler()  # Defaults to stderr.

    handler.setLevel(log_level)

    hostname = LogConfig.get_node_id()
    formatter = logging.Formatter(
        fmt=f"%(asctime)s [%(levelname)s] [{hostname}:%(process)5s] %(filename)s:%(lineno)d %(message)s"
    )
    handler.setFormatter(formatter)
    logger.addHandler(handler)

    return logger
