# SPDX-License-Identifier: MIT
# Copyright (c) 2026 Ourochronos Contributors

"""
Transport provider interfaces.

The overlay router itself (tunnel building, peer discovery, netDb) is an
opaque provider.  These protocols define the minimal surface the sensor
needs from it, whether that is a real router bridge, the in-memory
provider in :mod:`veil.transport.memory`, or a mock in tests.

Session construction is two-phase: the router hands out a *disconnected*
:class:`SessionManager` built from key material, and the session it owns is
then connected to the network separately.
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any, Protocol, runtime_checkable

# Wildcards for the (unused) protocol/port multiplexing fields
PROTO_ANY = 0
PROTO_UNSPECIFIED = 0
PORT_ANY = 0

# Provider error message meaning the session was already torn down
SESSION_ALREADY_CLOSED = "Already closed"


class ProviderSessionError(Exception):
    """Raised by provider sessions on protocol or I/O failure."""


@runtime_checkable
class SessionListener(Protocol):
    """Callbacks a provider session delivers, possibly from its own threads."""

    def message_available(
        self,
        session: Any,
        msg_id: int,
        size: int,
        proto: int = PROTO_ANY,
        from_port: int = PORT_ANY,
        to_port: int = PORT_ANY,
    ) -> None: ...

    def report_abuse(self, session: Any, severity: int) -> None: ...

    def disconnected(self, session: Any) -> None: ...

    def error_occurred(self, session: Any, message: str, cause: BaseException | None) -> None: ...


@runtime_checkable
class ProviderSession(Protocol):
    """A datagram session bound to one local destination."""

    def connect(self) -> None: ...

    def destroy_session(self) -> None: ...

    def send_message(
        self,
        destination: Any,
        payload: bytes,
        proto: int = PROTO_UNSPECIFIED,
        from_port: int = PORT_ANY,
        to_port: int = PORT_ANY,
    ) -> bool: ...

    def receive_message(self, msg_id: int) -> bytes | None: ...

    def lookup_dest(self, address: str) -> Any | None: ...

    def add_listener(self, listener: SessionListener, proto: int = PROTO_ANY, port: int = PORT_ANY) -> None: ...


@runtime_checkable
class SessionManager(Protocol):
    """Owner of a session built offline from key material."""

    @property
    def session(self) -> ProviderSession: ...

    def destroy(self) -> None: ...


@runtime_checkable
class RouterProvider(Protocol):
    """The routing provider process / in-process router."""

    def generate_key(self) -> bytes: ...

    def launch(self, hidden: bool = False) -> None: ...

    def create_disconnected_manager(
        self, key_material: bytes, options: Mapping[str, str]
    ) -> SessionManager: ...

    def raw_status(self) -> str: ...

    def restart(self) -> None: ...

    def shutdown(self) -> None: ...

    def shutdown_gracefully(self, timeout: float) -> None: ...

    def is_in_strict_country(self) -> bool: ...

    def is_hidden(self) -> bool: ...
