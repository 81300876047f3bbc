# SPDX-License-Identifier: MIT
# Copyright (c) 2026 Ourochronos Contributors

"""
Session transport - wraps one provider session for the sensor.

This module manages:
- Two-phase session construction (disconnected manager, then connect)
- The outbound send path: destination lookup, datagram encoding and
  classification of provider failures into :class:`SendError` values
- The inbound receive path: fetching a message by id and decoding it
- Idempotent teardown
- Translating provider callbacks into :class:`SessionEvent` values

Provider callbacks may arrive on provider-owned threads.  The transport
does no work on that path beyond building the event and handing it to
``on_event``; the owner decides where the event is processed.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from enum import StrEnum
from typing import Any

from veil.core.exceptions import SessionConnectError
from veil.core.logging import log_fields
from veil.identity.peer import DEFAULT_NETWORK, PeerAddress
from veil.identity.store import LocalIdentity
from veil.transport.codec import CodecError, DatagramCodec
from veil.transport.provider import (
    PORT_ANY,
    PROTO_ANY,
    PROTO_UNSPECIFIED,
    SESSION_ALREADY_CLOSED,
    ProviderSession,
    ProviderSessionError,
    RouterProvider,
    SessionManager,
)

logger = logging.getLogger(__name__)


class SendError(StrEnum):
    """Why an outbound datagram was not handed to the network."""

    TO_PEER_NOT_FOUND = "TO_PEER_NOT_FOUND"
    SENDING_FAILED = "SENDING_FAILED"
    SESSION_EXCEPTION = "SESSION_EXCEPTION"
    # Provider reported the session as already torn down; usually a block
    SESSION_CLOSED = "SESSION_CLOSED"


@dataclass(frozen=True)
class SendResult:
    error: SendError | None = None
    message: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


SEND_OK = SendResult()


class SessionEventKind(StrEnum):
    MESSAGE_AVAILABLE = "message_available"
    ABUSE_REPORTED = "abuse_reported"
    DISCONNECTED = "disconnected"
    ERROR = "error"


@dataclass(frozen=True)
class SessionEvent:
    """One provider signal, detached from the provider's thread."""

    kind: SessionEventKind
    msg_id: int | None = None
    size: int = 0
    proto: int = PROTO_ANY
    severity: int = 0
    message: str | None = None
    cause: BaseException | None = None


class SessionTransport:
    """Wraps a provider session and implements the provider listener contract.

    Args:
        provider: Router that builds session managers.
        on_event: Receives every provider signal as a :class:`SessionEvent`.
            Called on whatever thread the provider uses.
        network: Network tag for decoded sender addresses.
    """

    def __init__(
        self,
        provider: RouterProvider,
        on_event: Callable[[SessionEvent], None],
        network: str = DEFAULT_NETWORK,
    ) -> None:
        self._provider = provider
        self._on_event = on_event
        self._network = network

        self._manager: SessionManager | None = None
        self._session: ProviderSession | None = None
        self._codec: DatagramCodec | None = None
        self._identity: LocalIdentity | None = None
        self._connected = False
        self._destroyed = False

        self._stats: dict[str, int] = {
            "sent": 0,
            "send_failed": 0,
            "received": 0,
            "dropped": 0,
            "codec_error": 0,
            "malformed_datagram": 0,
            "invalid_signature": 0,
        }

    @property
    def is_connected(self) -> bool:
        return self._connected and not self._destroyed

    @property
    def local_peer(self) -> PeerAddress | None:
        return self._identity.peer if self._identity else None

    def get_stats(self) -> dict[str, Any]:
        return {**self._stats, "connected": self.is_connected}

    # -------------------------------------------------------------------------
    # LIFECYCLE
    # -------------------------------------------------------------------------

    def connect(self, identity: LocalIdentity, options: Mapping[str, str]) -> ProviderSession:
        """Build the session offline from *identity*, then connect it.

        Blocking; run it off the event loop.

        Raises:
            SessionConnectError: On any provider-level failure.  The
                transport is left destroyed; retry belongs to the caller.
        """
        if self._destroyed:
            raise SessionConnectError("Transport already destroyed")

        try:
            self._manager = self._provider.create_disconnected_manager(identity.key_material, options)
            self._session = self._manager.session
            self._identity = identity
            self._codec = DatagramCodec(identity, self._network)

            logger.info("Session connecting...")
            start = time.monotonic()
            self._session.connect()
            logger.info("Session connected. Took %.1f seconds.", time.monotonic() - start)

            self._session.add_listener(self, PROTO_ANY, PORT_ANY)
        except Exception as exc:
            self.destroy()
            raise SessionConnectError(f"Unable to connect session: {exc}") from exc

        self._connected = True
        logger.info("Local destination: %s", identity.address)
        logger.info("Local destination fingerprint: %s", identity.fingerprint)
        return self._session

    def destroy(self) -> None:
        """Destroy the session, then its manager.  Safe to call repeatedly."""
        if self._destroyed:
            logger.debug("Session transport already destroyed")
            return
        self._destroyed = True
        self._connected = False

        if self._session is not None:
            try:
                self._session.destroy_session()
            except ProviderSessionError as exc:
                logger.warning("Can't destroy session: %s", exc)
        if self._manager is not None:
            try:
                self._manager.destroy()
            except Exception:
                logger.warning("Error destroying session manager", exc_info=True)
        logger.info("Session transport destroyed")

    # -------------------------------------------------------------------------
    # SEND PATH
    # -------------------------------------------------------------------------

    def send(self, destination_address: str, payload: bytes) -> SendResult:
        """Sign *payload* and send it to *destination_address*.

        Never raises; every failure is classified into a :class:`SendResult`.
        """
        session = self._session
        if session is None or self._codec is None or self._destroyed:
            self._stats["send_failed"] += 1
            return SendResult(SendError.SESSION_CLOSED, "No active session")

        try:
            destination = session.lookup_dest(destination_address)
            if destination is None:
                logger.warning("Peer destination not found")
                self._stats["send_failed"] += 1
                return SendResult(SendError.TO_PEER_NOT_FOUND, "Peer destination not found")

            datagram = self._codec.encode(payload)
            if session.send_message(destination, datagram, PROTO_UNSPECIFIED, PORT_ANY, PORT_ANY):
                self._stats["sent"] += 1
                logger.info("Message sent.")
                return SEND_OK

            logger.warning("Message sending failed.")
            self._stats["send_failed"] += 1
            return SendResult(SendError.SENDING_FAILED, "Provider refused the message")
        except ProviderSessionError as exc:
            self._stats["send_failed"] += 1
            err_msg = f"Exception while sending message: {exc}"
            logger.warning(err_msg)
            if str(exc) == SESSION_ALREADY_CLOSED:
                logger.info(
                    "Session closed. Could be no internet access or getting blocked; "
                    "assuming blocked. The router re-establishes the connection when "
                    "network access returns."
                )
                return SendResult(SendError.SESSION_CLOSED, err_msg)
            return SendResult(SendError.SESSION_EXCEPTION, err_msg)

    # -------------------------------------------------------------------------
    # RECEIVE PATH
    # -------------------------------------------------------------------------

    def receive(self, msg_id: int, size: int = 0) -> tuple[PeerAddress, bytes] | None:
        """Fetch message *msg_id* and decode it.

        Returns ``None`` when the message is gone or undecodable; the
        provider has already expired it, so nothing is retried.
        """
        session = self._session
        if session is None or self._codec is None:
            logger.warning("Message %s available but no session is active", msg_id)
            self._stats["dropped"] += 1
            return None

        try:
            raw = session.receive_message(msg_id)
        except ProviderSessionError as exc:
            logger.warning("Can't get new message from session: %s", exc)
            self._stats["dropped"] += 1
            return None
        if raw is None:
            logger.warning("Session returned a null message: msgId=%s, size=%s", msg_id, size)
            self._stats["dropped"] += 1
            return None

        try:
            sender, payload = self._codec.decode(raw)
        except CodecError as exc:
            logger.warning("Dropping datagram %s: %s", msg_id, exc, extra=log_fields(drop=exc.kind, size=len(raw)))
            self._stats[exc.kind.lower()] += 1
            self._stats["dropped"] += 1
            return None

        self._stats["received"] += 1
        logger.info("Received message from %s (%d bytes)", sender.short(), len(payload))
        return sender, payload

    # -------------------------------------------------------------------------
    # PROVIDER LISTENER
    # -------------------------------------------------------------------------

    def _emit(self, event: SessionEvent) -> None:
        if self._destroyed:
            logger.debug("Ignoring %s from destroyed session", event.kind)
            return
        self._on_event(event)

    def message_available(
        self,
        session: Any,
        msg_id: int,
        size: int,
        proto: int = PROTO_ANY,
        from_port: int = PORT_ANY,
        to_port: int = PORT_ANY,
    ) -> None:
        self._emit(SessionEvent(SessionEventKind.MESSAGE_AVAILABLE, msg_id=msg_id, size=size, proto=proto))

    def report_abuse(self, session: Any, severity: int) -> None:
        logger.warning("Session reporting abuse. Severity=%s", severity)
        self._emit(SessionEvent(SessionEventKind.ABUSE_REPORTED, severity=severity))

    def disconnected(self, session: Any) -> None:
        logger.warning("Session reporting disconnection.")
        self._emit(SessionEvent(SessionEventKind.DISCONNECTED))

    def error_occurred(self, session: Any, message: str, cause: BaseException | None) -> None:
        logger.error("Router says: %s: %s", message, cause)
        self._emit(SessionEvent(SessionEventKind.ERROR, message=message, cause=cause))
