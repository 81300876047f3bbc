# SPDX-License-Identifier: MIT
# Copyright (c) 2026 Ourochronos Contributors

"""Bus-facing message container.

An :class:`Envelope` is created per send or receive operation, mutated only
by the operation that produced it, and owned by the bus once relayed.
"""

from __future__ import annotations

import json
import time
import uuid
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any

from veil.identity.peer import DID, PeerAddress

# Bus operation that publishes events to subscribers
NOTIFICATION_PUBLISH = "notification.publish"


class EventType(StrEnum):
    """Kinds of event envelopes the sensor emits."""

    TEXT = "TEXT"
    STATUS = "STATUS"
    STATUS_DID = "STATUS_DID"


class ErrorCode(StrEnum):
    """Per-call error codes set on an envelope; never raised."""

    TO_PEER_REQUIRED = "TO_PEER_REQUIRED"
    TO_PEER_WRONG_NETWORK = "TO_PEER_WRONG_NETWORK"
    NO_CONTENT = "NO_CONTENT"
    TO_PEER_NOT_FOUND = "TO_PEER_NOT_FOUND"
    SENDING_FAILED = "SENDING_FAILED"


@dataclass
class Envelope:
    """Message exchanged with the external bus."""

    to: DID | None = None
    from_peer: PeerAddress | None = None
    content: str | bytes | None = None
    event_type: EventType | None = None
    name: str | None = None
    route: str | None = None
    error_code: ErrorCode | None = None
    error_message: str | None = None
    envelope_id: str = field(default_factory=lambda: uuid.uuid4().hex)
    created_at: float = field(default_factory=time.time)

    @classmethod
    def event(
        cls,
        event_type: EventType,
        name: str,
        content: str | bytes | None,
        from_peer: PeerAddress | None = None,
    ) -> Envelope:
        """Build an event envelope routed to the notification publisher."""
        return cls(
            from_peer=from_peer,
            content=content,
            event_type=event_type,
            name=name,
            route=NOTIFICATION_PUBLISH,
        )

    def content_bytes(self) -> bytes:
        if self.content is None:
            return b""
        if isinstance(self.content, bytes):
            return self.content
        return self.content.encode("utf-8")

    def fail(self, code: ErrorCode, message: str | None = None) -> bool:
        """Record a failure on the envelope; always returns False."""
        self.error_code = code
        self.error_message = message
        return False

    def to_dict(self) -> dict[str, Any]:
        content: Any = self.content
        if isinstance(content, bytes):
            content = content.decode("utf-8", errors="replace")
        return {
            "id": self.envelope_id,
            "to": self.to.to_dict() if self.to else None,
            "from": self.from_peer.to_dict() if self.from_peer else None,
            "content": content,
            "event_type": self.event_type.value if self.event_type else None,
            "name": self.name,
            "route": self.route,
            "error_code": self.error_code.value if self.error_code else None,
            "error_message": self.error_message,
            "created_at": self.created_at,
        }

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), separators=(",", ":"))
