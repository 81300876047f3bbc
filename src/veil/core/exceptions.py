# SPDX-License-Identifier: MIT
# Copyright (c) 2026 Ourochronos Contributors

"""Custom exception hierarchy for the Veil sensor.

Provides specific exception types for the failure categories of the
transport adapter, so that fatal-to-start problems can be told apart from
recoverable session errors.
"""

from __future__ import annotations

from typing import Any


class VeilException(Exception):  # noqa: N818
    """Base exception for all Veil errors.

    All Veil-specific exceptions should inherit from this class.
    """

    def __init__(self, message: str, details: dict | None = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization."""
        return {
            "error": self.__class__.__name__,
            "message": self.message,
            "details": self.details,
        }


class ConfigException(VeilException):
    """Exception for configuration errors.

    Raised when:
    - A setting has an impossible value
    - Start properties cannot be interpreted
    """

    def __init__(self, message: str, field: str | None = None, value: Any = None):
        details = {}
        if field:
            details["field"] = field
        if value is not None:
            details["value"] = str(value)
        super().__init__(message, details)
        self.field = field
        self.value = value


class EnvironmentPreparationError(VeilException):
    """Raised when the transport working directories cannot be prepared.

    This is fatal to startup; the sensor reports ERROR and does not retry.
    """

    def __init__(self, message: str, path: str | None = None):
        super().__init__(message, {"path": path} if path else None)
        self.path = path


class IdentityIOError(VeilException):
    """Raised when the identity key file can neither be read nor written."""

    def __init__(self, message: str, path: str | None = None):
        super().__init__(message, {"path": path} if path else None)
        self.path = path


class TransportError(VeilException):
    """Exception for transport-level failures outside the send path."""

    pass


class SessionConnectError(TransportError):
    """Raised when the provider fails to build or connect a session.

    Not retried by the transport itself; recovery belongs to the lifecycle.
    """

    pass
