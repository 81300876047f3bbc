# SPDX-License-Identifier: MIT
# Copyright (c) 2026 Ourochronos Contributors

"""
Relay bridge between the external message bus and the session transport.

Outbound: the bus calls :meth:`RelayBridge.send` with an envelope whose
``to`` DID carries a peer for this network; the result is a bool and any
failure is recorded on the envelope as an :class:`ErrorCode`.

Inbound: decoded datagrams become ``TEXT`` event envelopes handed to the
bus.  Hand-off is fire-and-forget; the sensor never waits on the bus.
"""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import Callable
from typing import Any, Protocol, runtime_checkable

from veil.core.logging import envelope_scope, log_fields
from veil.identity.peer import DEFAULT_NETWORK, PeerAddress
from veil.sensor.envelope import Envelope, ErrorCode, EventType
from veil.sensor.status import OperationalStatus
from veil.transport.session import SendError, SessionTransport

logger = logging.getLogger(__name__)

DEFAULT_MAX_SAFE_DATAGRAM_SIZE = 31500

_SEND_ERROR_CODES: dict[SendError, ErrorCode] = {
    SendError.TO_PEER_NOT_FOUND: ErrorCode.TO_PEER_NOT_FOUND,
    SendError.SENDING_FAILED: ErrorCode.SENDING_FAILED,
    SendError.SESSION_EXCEPTION: ErrorCode.SENDING_FAILED,
    SendError.SESSION_CLOSED: ErrorCode.SENDING_FAILED,
}


@runtime_checkable
class MessageBus(Protocol):
    """The external bus, as seen from the sensor."""

    def send_to_bus(self, envelope: Envelope) -> None: ...


class QueueBus:
    """A :class:`MessageBus` backed by an :class:`asyncio.Queue`.

    ``send_to_bus`` never blocks: when the queue is full the envelope is
    dropped with a warning.
    """

    def __init__(self, maxsize: int = 1000) -> None:
        self.queue: asyncio.Queue[Envelope] = asyncio.Queue(maxsize=maxsize)
        self.dropped = 0

    def send_to_bus(self, envelope: Envelope) -> None:
        try:
            self.queue.put_nowait(envelope)
        except asyncio.QueueFull:
            self.dropped += 1
            logger.warning("Bus queue full; dropping envelope %s", envelope.envelope_id)


class RelayBridge:
    """Translates between bus envelopes and session transport calls.

    Args:
        bus: Destination of inbound and status envelopes.
        network: Network tag a destination peer must carry.
        max_safe_datagram_size: Content above this size is sent with a warning.
        on_session_closed: Called when a send finds the session closed.
    """

    def __init__(
        self,
        bus: MessageBus,
        network: str = DEFAULT_NETWORK,
        max_safe_datagram_size: int = DEFAULT_MAX_SAFE_DATAGRAM_SIZE,
        on_session_closed: Callable[[], None] | None = None,
    ) -> None:
        self.bus = bus
        self.network = network
        self.max_safe_datagram_size = max_safe_datagram_size
        self.on_session_closed = on_session_closed
        self._transport: SessionTransport | None = None

        self._stats: dict[str, int] = {
            "sent": 0,
            "send_failed": 0,
            "relayed_inbound": 0,
            "bus_errors": 0,
        }

    def attach(self, transport: SessionTransport) -> None:
        self._transport = transport

    def detach(self) -> None:
        self._transport = None

    def get_stats(self) -> dict[str, Any]:
        return dict(self._stats)

    # -------------------------------------------------------------------------
    # OUTBOUND (bus -> network)
    # -------------------------------------------------------------------------

    async def send(self, envelope: Envelope) -> bool:
        """Send the envelope's content to its peer on this network.

        Never raises; failures set ``envelope.error_code``.
        """
        with envelope_scope(envelope.envelope_id):
            ok = await self._send(envelope)
        self._stats["sent" if ok else "send_failed"] += 1
        return ok

    async def _send(self, envelope: Envelope) -> bool:
        logger.info("Sending message...")
        to_peer = envelope.to.get_peer(self.network) if envelope.to else None
        if to_peer is None:
            logger.warning("No peer for %s found in destination", self.network)
            return envelope.fail(ErrorCode.TO_PEER_REQUIRED)
        if to_peer.network != self.network:
            logger.warning("%s requires a %s peer, got %s", self.network, self.network, to_peer.network)
            return envelope.fail(ErrorCode.TO_PEER_WRONG_NETWORK)

        content = envelope.content_bytes()
        if not content:
            logger.warning("No content found in envelope")
            return envelope.fail(ErrorCode.NO_CONTENT)
        if len(content) > self.max_safe_datagram_size:
            # TODO: split into multiple datagrams once the receive side can reassemble
            logger.warning(
                "Content is %d bytes, above the %d byte datagram limit; may have issues",
                len(content),
                self.max_safe_datagram_size,
            )

        transport = self._transport
        if transport is None:
            logger.warning("No active session")
            return envelope.fail(ErrorCode.SENDING_FAILED, "No active session")

        result = await asyncio.to_thread(transport.send, to_peer.address, content)
        if result.ok:
            return True

        error_code = _SEND_ERROR_CODES[result.error]
        logger.warning(
            "Send to %s failed",
            to_peer.short(),
            extra=log_fields(send_error=result.error, error_code=error_code, size=len(content)),
        )
        if result.error is SendError.SESSION_CLOSED and self.on_session_closed is not None:
            self.on_session_closed()
        return envelope.fail(error_code, result.message)

    async def reply(self, envelope: Envelope) -> bool:
        """Hand a reply straight to the bus."""
        self._to_bus(envelope)
        return True

    # -------------------------------------------------------------------------
    # INBOUND (network -> bus)
    # -------------------------------------------------------------------------

    def deliver_inbound(self, sender: PeerAddress, payload: bytes) -> Envelope:
        """Wrap a decoded datagram as a TEXT event and hand it to the bus."""
        try:
            content: str | bytes = payload.decode("utf-8")
        except UnicodeDecodeError:
            content = payload
        envelope = Envelope.event(EventType.TEXT, sender.fingerprint, content, from_peer=sender)
        logger.info("Relaying message from %s to notification service", sender.short())
        self._stats["relayed_inbound"] += 1
        self._to_bus(envelope)
        return envelope

    def publish_status(self, status: OperationalStatus) -> None:
        self._to_bus(Envelope.event(EventType.STATUS, "status", status.value))

    def publish_local_peer(self, peer: PeerAddress) -> None:
        logger.info("Publishing local %s peer...", self.network)
        self._to_bus(
            Envelope.event(
                EventType.STATUS_DID,
                peer.fingerprint,
                json.dumps(peer.to_dict()),
                from_peer=peer,
            )
        )

    def _to_bus(self, envelope: Envelope) -> None:
        try:
            self.bus.send_to_bus(envelope)
        except Exception:
            self._stats["bus_errors"] += 1
            logger.exception("Bus rejected envelope %s", envelope.envelope_id)
