# SPDX-License-Identifier: MIT
# Copyright (c) 2026 Ourochronos Contributors

"""Peer addressing on the overlay.

A :class:`PeerAddress` is a self-certifying destination (the Base64 public
key) plus its fingerprint.  A :class:`DID` groups the addresses one party
holds on different networks, keyed by network tag.
"""

from __future__ import annotations

import base64
import hashlib
from dataclasses import dataclass, field
from typing import Any

DEFAULT_NETWORK = "I2P"


def fingerprint_for(public_key: bytes) -> str:
    """Base64 SHA-256 fingerprint of a raw public key."""
    return base64.b64encode(hashlib.sha256(public_key).digest()).decode("ascii")


def address_for(public_key: bytes) -> str:
    """Destination string for a raw public key."""
    return base64.urlsafe_b64encode(public_key).decode("ascii")


def public_key_from_address(address: str) -> bytes:
    """Inverse of :func:`address_for`.

    Raises:
        ValueError: If *address* is not valid URL-safe Base64.
    """
    return base64.urlsafe_b64decode(address.encode("ascii"))


@dataclass(frozen=True)
class PeerAddress:
    """Network-addressable identity of a remote (or the local) party."""

    address: str
    fingerprint: str
    network: str = DEFAULT_NETWORK

    @classmethod
    def from_public_key(cls, public_key: bytes, network: str = DEFAULT_NETWORK) -> PeerAddress:
        return cls(
            address=address_for(public_key),
            fingerprint=fingerprint_for(public_key),
            network=network,
        )

    def short(self) -> str:
        """Shortened fingerprint for log lines."""
        return self.fingerprint[:12]

    def to_dict(self) -> dict[str, Any]:
        return {
            "network": self.network,
            "address": self.address,
            "fingerprint": self.fingerprint,
        }


@dataclass
class DID:
    """A party's set of network peers, one per network tag."""

    peers: dict[str, PeerAddress] = field(default_factory=dict)

    @classmethod
    def of(cls, *peers: PeerAddress) -> DID:
        did = cls()
        for peer in peers:
            did.add_peer(peer)
        return did

    def add_peer(self, peer: PeerAddress, network: str | None = None) -> None:
        """Register *peer* under *network* (defaults to the peer's own tag)."""
        self.peers[network or peer.network] = peer

    def get_peer(self, network: str) -> PeerAddress | None:
        return self.peers.get(network)

    def to_dict(self) -> dict[str, Any]:
        return {name: peer.to_dict() for name, peer in self.peers.items()}


def peer_for_address(address: str, network: str = DEFAULT_NETWORK) -> PeerAddress:
    """Build a :class:`PeerAddress` from a bare destination string.

    Raises:
        ValueError: If *address* does not decode to a public key.
    """
    return PeerAddress(
        address=address,
        fingerprint=fingerprint_for(public_key_from_address(address)),
        network=network,
    )
