# SPDX-License-Identifier: MIT
# Copyright (c) 2026 Ourochronos Contributors

"""Ambient infrastructure: configuration, logging and errors."""

from .config import SensorSettings, clear_config_cache, filter_session_options, get_config
from .exceptions import (
    ConfigException,
    EnvironmentPreparationError,
    IdentityIOError,
    SessionConnectError,
    TransportError,
    VeilException,
)

__all__ = [
    "ConfigException",
    "EnvironmentPreparationError",
    "IdentityIOError",
    "SensorSettings",
    "SessionConnectError",
    "TransportError",
    "VeilException",
    "clear_config_cache",
    "filter_session_options",
    "get_config",
]
