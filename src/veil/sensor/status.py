# SPDX-License-Identifier: MIT
# Copyright (c) 2026 Ourochronos Contributors

"""
Status Monitor - maps raw router connectivity to operational status.

This module manages:
- The fixed raw-status table (``STATUS_TABLE``)
- The current :class:`OperationalStatus` and change notification
- The blocked-time policy (restart after ``block_timeout`` of continuous
  unsolicited-rejection status)
- Restart escalation: soft restarts until the configured attempt, then a
  hard restart

The monitor decides; it does not act.  :meth:`StatusMonitor.evaluate`
returns a :class:`StatusDecision` and the lifecycle performs any restart.
All methods must be called from the lifecycle's event loop.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass
from enum import StrEnum
from typing import Any

logger = logging.getLogger(__name__)


class OperationalStatus(StrEnum):
    """The sensor's externally visible state."""

    STARTING = "STARTING"
    WAITING = "WAITING"
    INITIALIZING = "INITIALIZING"
    NETWORK_CONNECTING = "NETWORK_CONNECTING"
    NETWORK_CONNECTED = "NETWORK_CONNECTED"
    NETWORK_BLOCKED = "NETWORK_BLOCKED"
    NETWORK_PORT_CONFLICT = "NETWORK_PORT_CONFLICT"
    NETWORK_ERROR = "NETWORK_ERROR"
    NETWORK_STOPPED = "NETWORK_STOPPED"
    RESTARTING = "RESTARTING"
    SHUTTING_DOWN = "SHUTTING_DOWN"
    SHUTDOWN = "SHUTDOWN"
    GRACEFULLY_SHUTTING_DOWN = "GRACEFULLY_SHUTTING_DOWN"
    GRACEFULLY_SHUTDOWN = "GRACEFULLY_SHUTDOWN"
    ERROR = "ERROR"


class RawStatus(StrEnum):
    """Connectivity status as reported by the router."""

    OK = "OK"
    DIFFERENT = "DIFFERENT"
    IPV4_FIREWALLED_IPV6_OK = "IPV4_FIREWALLED_IPV6_OK"
    IPV4_SNAT_IPV6_OK = "IPV4_SNAT_IPV6_OK"
    IPV4_UNKNOWN_IPV6_OK = "IPV4_UNKNOWN_IPV6_OK"
    IPV4_FIREWALLED_IPV6_UNKNOWN = "IPV4_FIREWALLED_IPV6_UNKNOWN"
    IPV4_OK_IPV6_FIREWALLED = "IPV4_OK_IPV6_FIREWALLED"
    IPV4_UNKNOWN_IPV6_FIREWALLED = "IPV4_UNKNOWN_IPV6_FIREWALLED"
    IPV4_OK_IPV6_UNKNOWN = "IPV4_OK_IPV6_UNKNOWN"
    IPV4_SNAT_IPV6_UNKNOWN = "IPV4_SNAT_IPV6_UNKNOWN"
    IPV4_DISABLED_IPV6_OK = "IPV4_DISABLED_IPV6_OK"
    IPV4_DISABLED_IPV6_FIREWALLED = "IPV4_DISABLED_IPV6_FIREWALLED"
    IPV4_DISABLED_IPV6_UNKNOWN = "IPV4_DISABLED_IPV6_UNKNOWN"
    REJECT_UNSOLICITED = "REJECT_UNSOLICITED"
    HOSED = "HOSED"
    DISCONNECTED = "DISCONNECTED"
    UNKNOWN = "UNKNOWN"


class PolicyAction(StrEnum):
    NONE = "none"
    RESTART = "restart"
    BLOCK_TIMER = "block_timer"


@dataclass(frozen=True)
class StatusRule:
    status: OperationalStatus
    resets_restart_counter: bool = False
    action: PolicyAction = PolicyAction.NONE
    level: int = logging.INFO
    note: str = ""


_CONNECTING = OperationalStatus.NETWORK_CONNECTING
_CONNECTED = OperationalStatus.NETWORK_CONNECTED

STATUS_TABLE: dict[RawStatus, StatusRule] = {
    RawStatus.UNKNOWN: StatusRule(_CONNECTING, note="Testing network..."),
    RawStatus.IPV4_DISABLED_IPV6_UNKNOWN: StatusRule(_CONNECTING, note="IPv4 disabled, IPv6 testing..."),
    RawStatus.IPV4_FIREWALLED_IPV6_UNKNOWN: StatusRule(_CONNECTING, note="IPv4 firewalled, IPv6 testing..."),
    RawStatus.IPV4_SNAT_IPV6_UNKNOWN: StatusRule(_CONNECTING, note="IPv4 SNAT, IPv6 testing..."),
    RawStatus.IPV4_UNKNOWN_IPV6_FIREWALLED: StatusRule(_CONNECTING, note="IPv6 firewalled, IPv4 testing..."),
    RawStatus.OK: StatusRule(_CONNECTED, True, note="Connected to network."),
    RawStatus.IPV4_DISABLED_IPV6_OK: StatusRule(_CONNECTED, True, note="IPv4 disabled, IPv6 OK: connected."),
    RawStatus.IPV4_FIREWALLED_IPV6_OK: StatusRule(_CONNECTED, True, note="IPv4 firewalled, IPv6 OK: connected."),
    RawStatus.IPV4_SNAT_IPV6_OK: StatusRule(_CONNECTED, True, note="IPv4 SNAT, IPv6 OK: connected."),
    RawStatus.IPV4_UNKNOWN_IPV6_OK: StatusRule(_CONNECTED, True, note="IPv4 testing, IPv6 OK: connected."),
    RawStatus.IPV4_OK_IPV6_FIREWALLED: StatusRule(_CONNECTED, True, note="IPv6 firewalled, IPv4 OK: connected."),
    RawStatus.IPV4_OK_IPV6_UNKNOWN: StatusRule(_CONNECTED, True, note="IPv6 testing, IPv4 OK: connected."),
    RawStatus.IPV4_DISABLED_IPV6_FIREWALLED: StatusRule(
        _CONNECTED, True, level=logging.WARNING, note="IPv4 disabled, IPv6 firewalled: connected."
    ),
    RawStatus.DISCONNECTED: StatusRule(
        OperationalStatus.NETWORK_STOPPED, action=PolicyAction.RESTART, note="Disconnected from network."
    ),
    RawStatus.DIFFERENT: StatusRule(
        OperationalStatus.NETWORK_ERROR, level=logging.WARNING, note="Symmetric NAT: error connecting to network."
    ),
    RawStatus.HOSED: StatusRule(
        OperationalStatus.NETWORK_PORT_CONFLICT,
        level=logging.WARNING,
        note="Unable to open UDP port - port conflict. Verify another router instance is not running.",
    ),
    RawStatus.REJECT_UNSOLICITED: StatusRule(
        OperationalStatus.NETWORK_BLOCKED,
        action=PolicyAction.BLOCK_TIMER,
        level=logging.WARNING,
        note="Blocked. Unable to connect to network.",
    ),
}

# Anything the table doesn't know is treated as stopped
FALLBACK_RULE = StatusRule(OperationalStatus.NETWORK_STOPPED, level=logging.WARNING, note="Not connected to network.")


def rule_for(raw_status: str) -> StatusRule:
    """Look up the table entry for *raw_status*, falling back to stopped."""
    try:
        return STATUS_TABLE[RawStatus(raw_status)]
    except ValueError:
        return FALLBACK_RULE


class RestartKind(StrEnum):
    SOFT = "soft"
    HARD = "hard"


@dataclass
class RestartPolicyState:
    """Blocked-time clock and restart attempt counter."""

    blocked_since: float | None = None
    restart_attempts: int = 0


@dataclass(frozen=True)
class StatusDecision:
    """Outcome of one status evaluation.

    ``status`` is None when the evaluation reported nothing new (the
    blocked timer expired and a restart takes over).
    """

    raw_status: str
    status: OperationalStatus | None
    restart: bool = False


class StatusMonitor:
    """Owns the operational status and the restart policy state.

    Args:
        block_timeout: Seconds of continuous blocking before a restart.
        restart_attempts_until_hard_restart: Attempt number at which a
            restart becomes a hard restart.
        on_status_change: Called with each new status (fire-and-forget).
        clock: Monotonic time source, injectable for tests.
    """

    def __init__(
        self,
        block_timeout: float = 180.0,
        restart_attempts_until_hard_restart: int = 3,
        on_status_change: Callable[[OperationalStatus], None] | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.block_timeout = block_timeout
        self.restart_ceiling = restart_attempts_until_hard_restart
        self.on_status_change = on_status_change
        self._clock = clock

        self._status: OperationalStatus | None = None
        self._policy = RestartPolicyState()
        self._last_raw: str | None = None

        self._stats: dict[str, int] = {
            "evaluations": 0,
            "status_changes": 0,
            "soft_restarts": 0,
            "hard_restarts": 0,
            "block_timeouts": 0,
        }

    @property
    def status(self) -> OperationalStatus | None:
        return self._status

    @property
    def restart_attempts(self) -> int:
        return self._policy.restart_attempts

    @property
    def blocked_since(self) -> float | None:
        return self._policy.blocked_since

    @property
    def last_raw_status(self) -> str | None:
        return self._last_raw

    def get_stats(self) -> dict[str, Any]:
        blocked_since = self._policy.blocked_since
        return {
            **self._stats,
            "status": self._status.value if self._status else None,
            "raw_status": self._last_raw,
            "restart_attempts": self._policy.restart_attempts,
            "blocked_for": (self._clock() - blocked_since) if blocked_since is not None else None,
        }

    # -------------------------------------------------------------------------
    # STATUS
    # -------------------------------------------------------------------------

    def update_status(self, status: OperationalStatus) -> bool:
        """Set the current status; notify on change.  Returns True if changed."""
        if status == self._status:
            return False
        previous = self._status
        self._status = status
        self._stats["status_changes"] += 1
        logger.info("Status %s -> %s", previous.value if previous else None, status.value)
        if self.on_status_change is not None:
            try:
                self.on_status_change(status)
            except Exception:
                logger.exception("Status change callback failed")
        return True

    def evaluate(self, raw_status: str) -> StatusDecision:
        """Apply the status table and blocked-time policy to *raw_status*."""
        self._stats["evaluations"] += 1
        self._last_raw = str(raw_status)
        rule = rule_for(raw_status)
        logger.log(rule.level, "%s (router status %s)", rule.note, raw_status)

        if rule.resets_restart_counter:
            self._policy.restart_attempts = 0
            self._policy.blocked_since = None

        if rule.action is PolicyAction.BLOCK_TIMER:
            return self._evaluate_blocked(str(raw_status))

        self.update_status(rule.status)
        return StatusDecision(str(raw_status), rule.status, restart=rule.action is PolicyAction.RESTART)

    def _evaluate_blocked(self, raw_status: str) -> StatusDecision:
        now = self._clock()
        if self._policy.blocked_since is None:
            self._policy.blocked_since = now
        elif now - self._policy.blocked_since > self.block_timeout:
            logger.warning(
                "Blocked for %.0f seconds (limit %.0f); restarting",
                now - self._policy.blocked_since,
                self.block_timeout,
            )
            self._stats["block_timeouts"] += 1
            # Restart the clock to give the restart time to connect
            self._policy.blocked_since = None
            return StatusDecision(raw_status, None, restart=True)

        self.update_status(OperationalStatus.NETWORK_BLOCKED)
        return StatusDecision(raw_status, OperationalStatus.NETWORK_BLOCKED)

    def report_session_closed(self) -> None:
        """A send found the session closed: treat it as a probable block."""
        if self._policy.blocked_since is None:
            self._policy.blocked_since = self._clock()
        self.update_status(OperationalStatus.NETWORK_BLOCKED)

    # -------------------------------------------------------------------------
    # RESTART ESCALATION
    # -------------------------------------------------------------------------

    def next_restart(self, force_hard: bool = False) -> RestartKind:
        """Decide the kind of the restart about to be performed.

        Soft restarts bump the attempt counter; the attempt that reaches the
        ceiling is a hard restart. ``force_hard`` skips straight to a hard
        restart, for when there is no live session to keep.
        """
        if force_hard or self._policy.restart_attempts + 1 >= self.restart_ceiling:
            self._stats["hard_restarts"] += 1
            return RestartKind.HARD
        self._policy.restart_attempts += 1
        self._stats["soft_restarts"] += 1
        return RestartKind.SOFT

    def hard_restart_succeeded(self) -> None:
        self._policy.restart_attempts = 0
