# SPDX-License-Identifier: MIT
# Copyright (c) 2026 Ourochronos Contributors

"""Sensor runtime: lifecycle, status policy, relay and health checks."""

from .envelope import NOTIFICATION_PUBLISH, Envelope, ErrorCode, EventType
from .environment import DirectoryEnvironment, EnvironmentPreparer
from .health import HealthCheckTask, PendingVerifiers, is_verifier, new_verifier_token
from .lifecycle import LifecycleManager, LifecycleState
from .relay import MessageBus, QueueBus, RelayBridge
from .status import (
    STATUS_TABLE,
    OperationalStatus,
    PolicyAction,
    RawStatus,
    RestartKind,
    StatusDecision,
    StatusMonitor,
    StatusRule,
    rule_for,
)

__all__ = [
    "NOTIFICATION_PUBLISH",
    "STATUS_TABLE",
    "DirectoryEnvironment",
    "Envelope",
    "EnvironmentPreparer",
    "ErrorCode",
    "EventType",
    "HealthCheckTask",
    "LifecycleManager",
    "LifecycleState",
    "MessageBus",
    "OperationalStatus",
    "PendingVerifiers",
    "PolicyAction",
    "QueueBus",
    "RawStatus",
    "RelayBridge",
    "RestartKind",
    "StatusDecision",
    "StatusMonitor",
    "StatusRule",
    "is_verifier",
    "new_verifier_token",
    "rule_for",
]
