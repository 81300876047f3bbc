# SPDX-License-Identifier: MIT
# Copyright (c) 2026 Ourochronos Contributors

"""Local identity and peer addressing."""

from .peer import DEFAULT_NETWORK, DID, PeerAddress, peer_for_address
from .store import IdentityStore, LocalIdentity, derive_identity, generate_key_material

__all__ = [
    "DEFAULT_NETWORK",
    "DID",
    "IdentityStore",
    "LocalIdentity",
    "PeerAddress",
    "derive_identity",
    "generate_key_material",
    "peer_for_address",
]
