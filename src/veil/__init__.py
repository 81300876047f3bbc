# SPDX-License-Identifier: MIT
# Copyright (c) 2026 Ourochronos Contributors

"""Veil - anonymous-overlay network sensor.

Veil runs an embedded overlay router on behalf of a host, owns one
datagram session bound to a persistent local identity, and relays
envelopes between the host's message bus and remote peers.

Architecture:
  Router provider (launch / status / restart / shutdown)
    -> Session transport (signed datagrams, provider callbacks as events)
    -> Relay bridge (envelope validation, error codes, inbound events)
    -> Lifecycle manager (warm-up, status policy, restart escalation)
    -> Health check task (status polling, connection verifiers)

CLI entry point: ``veil``
"""

__version__ = "0.1.0"
