"""Tests for veil.transport.session - SessionTransport send/receive/teardown.

Tests cover:
- Two-phase connect and connect failures
- Send result classification (never raises)
- Receive pipeline drops
- Listener callbacks turned into SessionEvents
- Idempotent destroy
"""

from __future__ import annotations

import threading
from unittest.mock import MagicMock

import pytest

from veil.core.config import filter_session_options
from veil.core.exceptions import SessionConnectError
from veil.identity.store import derive_identity, generate_key_material
from veil.transport.codec import HEADER_SIZE, DatagramCodec
from veil.transport.memory import MemoryRouter
from veil.transport.provider import SESSION_ALREADY_CLOSED, ProviderSessionError
from veil.transport.session import (
    SendError,
    SessionEvent,
    SessionEventKind,
    SessionTransport,
)

# =============================================================================
# FIXTURES
# =============================================================================


class EventSink:
    """Thread-safe collector for session events."""

    def __init__(self) -> None:
        self.events: list[SessionEvent] = []
        self._arrived = threading.Event()

    def __call__(self, event: SessionEvent) -> None:
        self.events.append(event)
        self._arrived.set()

    def wait(self, timeout: float = 2.0) -> SessionEvent:
        assert self._arrived.wait(timeout), "no session event arrived"
        return self.events[-1]


@pytest.fixture
def sink() -> EventSink:
    return EventSink()


@pytest.fixture
def transport(launched_router, identity, sink) -> SessionTransport:
    transport = SessionTransport(launched_router, sink)
    transport.connect(identity, filter_session_options({}))
    yield transport
    transport.destroy()


@pytest.fixture
def remote(launched_router):
    """A second connected transport on the same network."""
    remote_sink = EventSink()
    remote_identity = derive_identity(generate_key_material())
    transport = SessionTransport(launched_router, remote_sink)
    transport.connect(remote_identity, {})
    yield transport, remote_sink
    transport.destroy()


# =============================================================================
# CONNECT
# =============================================================================


class TestConnect:
    def test_connect_registers_listener(self, transport, launched_router, identity):
        assert transport.is_connected
        assert transport.local_peer == identity.peer
        assert launched_router.network.find(identity.address) is not None

    def test_options_reach_provider(self, launched_router, identity, sink):
        transport = SessionTransport(launched_router, sink)
        transport.connect(identity, filter_session_options({"inbound.length": "2", "junk": "x"}))

        session = launched_router.managers[-1].session
        assert session.options["inbound.length"] == "2"
        assert "junk" not in session.options

    def test_connect_failure_raises_and_destroys(self, router, identity, sink):
        # Router never launched: session connect fails
        transport = SessionTransport(router, sink)

        with pytest.raises(SessionConnectError):
            transport.connect(identity, {})

        assert not transport.is_connected
        assert router.managers[-1].destroyed

    def test_destroy_idempotent(self, transport, launched_router):
        transport.destroy()
        transport.destroy()

        assert not transport.is_connected
        assert launched_router.managers[-1].destroyed

    def test_destroy_before_connect_is_safe(self, launched_router, sink):
        SessionTransport(launched_router, sink).destroy()


# =============================================================================
# SEND
# =============================================================================


class TestSend:
    def test_send_ok(self, transport, remote):
        remote_transport, _ = remote

        result = transport.send(remote_transport.local_peer.address, b"hi")

        assert result.ok
        assert transport.get_stats()["sent"] == 1

    def test_unknown_destination(self, transport):
        stranger = derive_identity(generate_key_material())

        result = transport.send(stranger.address, b"hi")

        assert result.error is SendError.TO_PEER_NOT_FOUND

    def test_provider_refusal(self, transport, remote, launched_router):
        launched_router.fail_sends = True

        result = transport.send(remote[0].local_peer.address, b"hi")

        assert result.error is SendError.SENDING_FAILED

    def test_already_closed_session(self, transport, launched_router, identity):
        launched_router.managers[-1].session.destroy_session()

        result = transport.send(identity.address, b"hi")

        assert result.error is SendError.SESSION_CLOSED

    def test_other_provider_error(self, identity, sink):
        session = MagicMock()
        session.lookup_dest.side_effect = ProviderSessionError("I2CP error")
        provider = MagicMock()
        provider.create_disconnected_manager.return_value.session = session
        transport = SessionTransport(provider, sink)
        transport.connect(identity, {})

        result = transport.send("anywhere", b"hi")

        assert result.error is SendError.SESSION_EXCEPTION
        assert "I2CP error" in result.message

    def test_send_after_destroy(self, transport, identity):
        transport.destroy()

        result = transport.send(identity.address, b"hi")

        assert result.error is SendError.SESSION_CLOSED

    def test_datagram_is_signed(self, identity, sink):
        session = MagicMock()
        session.lookup_dest.return_value = "dest"
        session.send_message.return_value = True
        provider = MagicMock()
        provider.create_disconnected_manager.return_value.session = session
        transport = SessionTransport(provider, sink)
        transport.connect(identity, {})

        transport.send("dest", b"payload")

        datagram = session.send_message.call_args.args[1]
        sender, payload = DatagramCodec(identity).decode(datagram)
        assert sender == identity.peer
        assert payload == b"payload"


# =============================================================================
# RECEIVE
# =============================================================================


class TestReceive:
    def test_message_available_then_receive(self, transport, remote, identity):
        remote_transport, remote_sink = remote

        transport.send(remote_transport.local_peer.address, b"hello")
        event = remote_sink.wait()

        assert event.kind is SessionEventKind.MESSAGE_AVAILABLE
        sender, payload = remote_transport.receive(event.msg_id, event.size)
        assert sender == identity.peer
        assert payload == b"hello"

    def test_missing_message_dropped(self, transport):
        assert transport.receive(999) is None
        assert transport.get_stats()["dropped"] == 1

    def test_provider_error_dropped(self, identity, sink):
        session = MagicMock()
        session.receive_message.side_effect = ProviderSessionError(SESSION_ALREADY_CLOSED)
        provider = MagicMock()
        provider.create_disconnected_manager.return_value.session = session
        transport = SessionTransport(provider, sink)
        transport.connect(identity, {})

        assert transport.receive(1) is None

    def test_malformed_dropped(self, transport, launched_router):
        session = launched_router.managers[-1].session
        msg_id = session.deliver(b"\x00" * (HEADER_SIZE - 10), 0, 0, 0)

        assert transport.receive(msg_id) is None
        stats = transport.get_stats()
        assert stats["malformed_datagram"] == 1
        assert stats["dropped"] == 1

    def test_bad_signature_dropped(self, transport, launched_router, identity):
        session = launched_router.managers[-1].session
        datagram = bytearray(DatagramCodec(identity).encode(b"hello"))
        datagram[-1] ^= 0x01
        msg_id = session.deliver(bytes(datagram), 0, 0, 0)

        assert transport.receive(msg_id) is None
        assert transport.get_stats()["invalid_signature"] == 1


# =============================================================================
# LISTENER CALLBACKS
# =============================================================================


class TestListenerCallbacks:
    def test_disconnected(self, transport, launched_router, sink):
        launched_router.managers[-1].session.signal_disconnected()

        assert sink.events[-1].kind is SessionEventKind.DISCONNECTED

    def test_error(self, transport, launched_router, sink):
        cause = RuntimeError("socket")
        launched_router.managers[-1].session.signal_error("I2CP closed", cause)

        event = sink.events[-1]
        assert event.kind is SessionEventKind.ERROR
        assert event.message == "I2CP closed"
        assert event.cause is cause

    def test_abuse(self, transport, launched_router, sink):
        launched_router.managers[-1].session.signal_abuse(5)

        event = sink.events[-1]
        assert event.kind is SessionEventKind.ABUSE_REPORTED
        assert event.severity == 5

    def test_events_ignored_after_destroy(self, transport, sink):
        transport.destroy()

        transport.disconnected(None)

        assert sink.events == []
