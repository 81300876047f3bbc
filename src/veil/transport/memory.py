# SPDX-License-Identifier: MIT
# Copyright (c) 2026 Ourochronos Contributors

"""In-memory transport provider.

A process-local stand-in for the overlay router: every :class:`MemoryRouter`
attached to the same :class:`MemoryNetwork` can reach every other one.
Suitable for development and tests; callbacks are delivered from a
separate thread, like a real router's listener thread.

Usage::

    network = MemoryNetwork()
    router = MemoryRouter(network)
    router.launch()
    manager = router.create_disconnected_manager(key, {})
    manager.session.connect()
"""

from __future__ import annotations

import itertools
import logging
import threading
from collections.abc import Mapping
from typing import Any

from veil.identity.store import derive_identity, generate_key_material
from veil.transport.provider import (
    PORT_ANY,
    PROTO_ANY,
    PROTO_UNSPECIFIED,
    SESSION_ALREADY_CLOSED,
    ProviderSessionError,
    SessionListener,
)

logger = logging.getLogger(__name__)

STATUS_UNKNOWN = "UNKNOWN"
STATUS_OK = "OK"
STATUS_DISCONNECTED = "DISCONNECTED"


class MemoryNetwork:
    """Registry of connected sessions, keyed by destination address."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._sessions: dict[str, MemorySession] = {}

    def register(self, session: MemorySession) -> None:
        with self._lock:
            self._sessions[session.address] = session

    def unregister(self, session: MemorySession) -> None:
        with self._lock:
            if self._sessions.get(session.address) is session:
                del self._sessions[session.address]

    def find(self, address: str) -> MemorySession | None:
        with self._lock:
            return self._sessions.get(address)

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions)


class MemorySession:
    """A datagram session on a :class:`MemoryNetwork`."""

    def __init__(self, router: MemoryRouter, key_material: bytes, options: Mapping[str, str]) -> None:
        self._router = router
        self.options = dict(options)
        self.address = derive_identity(key_material).address
        self._listeners: list[SessionListener] = []
        self._inbox: dict[int, bytes] = {}
        self._ids = itertools.count(1)
        self._lock = threading.Lock()
        self.connected = False
        self.closed = False

    def connect(self) -> None:
        if self.closed:
            raise ProviderSessionError(SESSION_ALREADY_CLOSED)
        if not self._router.running:
            raise ProviderSessionError("Router is not running")
        self._router.network.register(self)
        self.connected = True

    def destroy_session(self) -> None:
        if self.closed:
            raise ProviderSessionError(SESSION_ALREADY_CLOSED)
        self.closed = True
        self.connected = False
        self._router.network.unregister(self)

    def add_listener(self, listener: SessionListener, proto: int = PROTO_ANY, port: int = PORT_ANY) -> None:
        self._listeners.append(listener)

    def lookup_dest(self, address: str) -> Any | None:
        if self.closed:
            raise ProviderSessionError(SESSION_ALREADY_CLOSED)
        return address if self._router.network.find(address) is not None else None

    def send_message(
        self,
        destination: Any,
        payload: bytes,
        proto: int = PROTO_UNSPECIFIED,
        from_port: int = PORT_ANY,
        to_port: int = PORT_ANY,
    ) -> bool:
        if self.closed:
            raise ProviderSessionError(SESSION_ALREADY_CLOSED)
        if self._router.fail_sends:
            return False
        target = self._router.network.find(str(destination))
        if target is None:
            return False
        target.deliver(payload, proto, from_port, to_port)
        return True

    def deliver(self, payload: bytes, proto: int, from_port: int, to_port: int) -> int:
        """Store *payload* and notify listeners from a delivery thread."""
        with self._lock:
            msg_id = next(self._ids)
            self._inbox[msg_id] = bytes(payload)
        for listener in list(self._listeners):
            threading.Thread(
                target=listener.message_available,
                args=(self, msg_id, len(payload), proto, from_port, to_port),
                name="veil-memory-delivery",
                daemon=True,
            ).start()
        return msg_id

    def receive_message(self, msg_id: int) -> bytes | None:
        with self._lock:
            return self._inbox.pop(msg_id, None)

    def signal_disconnected(self) -> None:
        for listener in list(self._listeners):
            listener.disconnected(self)

    def signal_error(self, message: str, cause: BaseException | None = None) -> None:
        for listener in list(self._listeners):
            listener.error_occurred(self, message, cause)

    def signal_abuse(self, severity: int) -> None:
        for listener in list(self._listeners):
            listener.report_abuse(self, severity)


class MemorySessionManager:
    """Disconnected manager holding one :class:`MemorySession`."""

    def __init__(self, session: MemorySession) -> None:
        self._session = session
        self.destroyed = False

    @property
    def session(self) -> MemorySession:
        return self._session

    def destroy(self) -> None:
        self.destroyed = True


class MemoryRouter:
    """:class:`~veil.transport.provider.RouterProvider` on a :class:`MemoryNetwork`.

    ``status`` is the raw connectivity status reported to the sensor and can
    be set freely to drive the status policy.
    """

    def __init__(self, network: MemoryNetwork | None = None) -> None:
        self.network = network or MemoryNetwork()
        self.running = False
        self.hidden = False
        self.strict_country = False
        self.fail_sends = False
        self.status = STATUS_UNKNOWN
        self.managers: list[MemorySessionManager] = []
        self.counts: dict[str, int] = {
            "launch": 0,
            "restart": 0,
            "shutdown": 0,
            "shutdown_gracefully": 0,
        }

    def generate_key(self) -> bytes:
        return generate_key_material()

    def launch(self, hidden: bool = False) -> None:
        self.counts["launch"] += 1
        self.hidden = hidden
        self.running = True
        self.status = STATUS_OK
        logger.info("Memory router launched (hidden=%s)", hidden)

    def create_disconnected_manager(self, key_material: bytes, options: Mapping[str, str]) -> MemorySessionManager:
        manager = MemorySessionManager(MemorySession(self, key_material, options))
        self.managers.append(manager)
        return manager

    def raw_status(self) -> str:
        return self.status

    def restart(self) -> None:
        self.counts["restart"] += 1
        self.running = True
        self.status = STATUS_OK

    def shutdown(self) -> None:
        self.counts["shutdown"] += 1
        self._stop()

    def shutdown_gracefully(self, timeout: float) -> None:
        self.counts["shutdown_gracefully"] += 1
        self._stop()

    def _stop(self) -> None:
        self.running = False
        self.status = STATUS_DISCONNECTED

    def is_in_strict_country(self) -> bool:
        return self.strict_country

    def is_hidden(self) -> bool:
        return self.hidden
