# SPDX-License-Identifier: MIT
# Copyright (c) 2026 Ourochronos Contributors

"""
Health Check Task - periodic liveness checks for a running sensor.

Each cycle:
- Polls the router status through the lifecycle (and so through the
  status policy), every ``status_interval`` seconds.
- Every ``verify_interval`` seconds, sends a verifier token to the seed
  peer (or to ourselves) and waits for it to come back.  At most
  ``max_pending`` verifiers are outstanding; while that many are pending
  the cycle logs the stall and sends nothing.

Inbound verifier tokens are matched by :meth:`HealthCheckTask.verify`,
which records the round-trip latency.
"""

from __future__ import annotations

import asyncio
import logging
import secrets
import time
from collections.abc import Awaitable, Callable
from typing import Any

from veil.core.logging import log_fields
from veil.identity.peer import DEFAULT_NETWORK, DID, PeerAddress, peer_for_address
from veil.sensor.envelope import Envelope
from veil.sensor.relay import RelayBridge

logger = logging.getLogger(__name__)

VERIFIER_PREFIX = "veil-verify:"


def new_verifier_token() -> str:
    return VERIFIER_PREFIX + secrets.token_hex(16)


def is_verifier(payload: bytes | str) -> bool:
    if isinstance(payload, bytes):
        return payload.startswith(VERIFIER_PREFIX.encode("ascii"))
    return payload.startswith(VERIFIER_PREFIX)


class PendingVerifiers:
    """Outstanding verifier tokens and when they were sent."""

    def __init__(self, max_pending: int = 1, clock: Callable[[], float] = time.monotonic) -> None:
        self.max_pending = max_pending
        self._clock = clock
        self._sent: dict[str, float] = {}

    def __len__(self) -> int:
        return len(self._sent)

    def __contains__(self, token: object) -> bool:
        return token in self._sent

    @property
    def full(self) -> bool:
        return len(self._sent) >= self.max_pending

    def oldest_age(self) -> float | None:
        if not self._sent:
            return None
        return self._clock() - min(self._sent.values())

    def add(self, token: str) -> bool:
        if self.full:
            return False
        self._sent[token] = self._clock()
        return True

    def discard(self, token: str) -> None:
        self._sent.pop(token, None)

    def expire(self, max_age: float) -> list[str]:
        """Drop tokens older than *max_age* seconds; return the dropped tokens."""
        now = self._clock()
        expired = [token for token, sent_at in self._sent.items() if now - sent_at > max_age]
        for token in expired:
            del self._sent[token]
        return expired

    def match(self, token: str) -> float | None:
        """Remove *token* and return its round trip in seconds, or None."""
        sent_at = self._sent.pop(token, None)
        if sent_at is None:
            return None
        return max(0.0, self._clock() - sent_at)


class HealthCheckTask:
    """Background task driving status checks and verifier round trips.

    Args:
        relay: Bridge used to send verifier envelopes.
        local_peer: Returns the current local peer (None before a session).
        check_status: Coroutine polling the router status.
        seed_address: Verifier destination; self-addressed when unset or
            when we are the seed.
        verify_interval: Seconds between verifiers (0 disables them).
        status_interval: Seconds between status checks.
        verifier_expiry: Age after which an unanswered verifier is dropped
            (defaults to three verify intervals).
    """

    def __init__(
        self,
        relay: RelayBridge,
        local_peer: Callable[[], PeerAddress | None],
        check_status: Callable[[], Awaitable[Any]] | None = None,
        seed_address: str | None = None,
        network: str = DEFAULT_NETWORK,
        verify_interval: float = 600.0,
        status_interval: float = 60.0,
        max_pending: int = 1,
        verifier_expiry: float | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.relay = relay
        self.local_peer = local_peer
        self.check_status = check_status
        self.seed_address = seed_address
        self.network = network
        self.verify_interval = verify_interval
        self.status_interval = status_interval
        self._clock = clock
        self.pending = PendingVerifiers(max_pending=max_pending, clock=clock)
        # A verifier lost across a restart must not block the task forever
        self.verifier_expiry = verifier_expiry if verifier_expiry is not None else verify_interval * 3

        self._task: asyncio.Task | None = None
        self._stop = asyncio.Event()
        self._next_verify = 0.0
        self.last_latency: float | None = None

        self._stats: dict[str, int] = {
            "cycles": 0,
            "verifiers_sent": 0,
            "verifiers_confirmed": 0,
            "verifiers_failed": 0,
            "stalls": 0,
            "unmatched": 0,
            "expired": 0,
        }

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    def get_stats(self) -> dict[str, Any]:
        return {
            **self._stats,
            "pending": len(self.pending),
            "last_latency": self.last_latency,
            "running": self.is_running,
        }

    # -------------------------------------------------------------------------
    # LIFECYCLE
    # -------------------------------------------------------------------------

    def start(self) -> None:
        if self.is_running:
            return
        self._stop = asyncio.Event()
        self._next_verify = self._clock()
        self._task = asyncio.create_task(self._run(), name="veil-health-check")
        logger.info("Health check task running...")

    async def stop(self) -> None:
        """Signal the loop and wait for it; interrupts the interval sleep."""
        self._stop.set()
        task, self._task = self._task, None
        if task is None:
            return
        try:
            await task
        except asyncio.CancelledError:
            pass
        logger.info("Health check task stopped.")

    async def _run(self) -> None:
        # Sleep first: the lifecycle checks the status just before starting us
        while True:
            timeout = self.status_interval
            if self.verify_interval > 0:
                timeout = min(timeout, max(0.0, self._next_verify - self._clock()))
            try:
                await asyncio.wait_for(self._stop.wait(), timeout=max(timeout, 0.001))
                return
            except TimeoutError:
                pass

            try:
                await self.run_cycle()
            except Exception:
                logger.exception("Health check cycle failed")

    async def run_cycle(self) -> None:
        """One pass: status check, then a verifier if one is due."""
        self._stats["cycles"] += 1
        if self.check_status is not None:
            await self.check_status()

        if self.verify_interval > 0 and self._clock() >= self._next_verify:
            self._next_verify = self._clock() + self.verify_interval
            await self.send_verifier()

    # -------------------------------------------------------------------------
    # VERIFIERS
    # -------------------------------------------------------------------------

    def _verifier_target(self) -> PeerAddress | None:
        local = self.local_peer()
        if self.seed_address and (local is None or self.seed_address != local.address):
            try:
                return peer_for_address(self.seed_address, self.network)
            except ValueError:
                logger.warning("Seed address is not a valid destination; verifying against self")
        return local

    async def send_verifier(self) -> str | None:
        """Send a fresh verifier unless one is still outstanding.

        Returns the token sent, or None.
        """
        if self.verifier_expiry > 0:
            for token in self.pending.expire(self.verifier_expiry):
                self._stats["expired"] += 1
                logger.warning("Connection verifier %s expired without a response", token)

        if self.pending.full:
            self._stats["stalls"] += 1
            logger.warning(
                "Connection verifier still outstanding after %.0f seconds; not sending another",
                self.pending.oldest_age() or 0.0,
            )
            return None

        target = self._verifier_target()
        local = self.local_peer()
        if target is None:
            logger.debug("No local peer yet; skipping verifier")
            return None

        token = new_verifier_token()
        self.pending.add(token)
        logger.info("Sending connection verifier %s to %s", token, target.short())
        envelope = Envelope(to=DID.of(target), from_peer=local, content=token)
        if await self.relay.send(envelope):
            self._stats["verifiers_sent"] += 1
            return token

        # Not in flight, so don't let it block the next cycle
        self.pending.discard(token)
        self._stats["verifiers_failed"] += 1
        logger.warning("Connection verifier not sent: %s %s", envelope.error_code, envelope.error_message or "")
        return None

    def verify(self, payload: bytes | str) -> float | None:
        """Match an inbound payload against outstanding verifiers.

        Returns the round-trip time in seconds on a match; otherwise logs
        and returns None.
        """
        token = payload.decode("utf-8", errors="replace") if isinstance(payload, bytes) else payload
        latency = self.pending.match(token)
        if latency is None:
            self._stats["unmatched"] += 1
            logger.info("Message received (%s) not an outstanding connection verifier. Ignoring.", token[:64])
            return None
        self._stats["verifiers_confirmed"] += 1
        self.last_latency = latency
        logger.info(
            "Received connection verifier %s response in %.3f seconds.",
            token,
            latency,
            extra=log_fields(verifier=token, latency=round(latency, 3)),
        )
        return latency
