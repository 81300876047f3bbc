"""Tests for veil.identity.peer."""

from __future__ import annotations

import pytest

from veil.identity.peer import DID, PeerAddress, peer_for_address


class TestPeerAddress:
    def test_from_public_key(self):
        peer = PeerAddress.from_public_key(b"\x01" * 32)

        assert peer.network == "I2P"
        assert peer_for_address(peer.address) == peer

    def test_short_fingerprint(self):
        peer = PeerAddress.from_public_key(b"\x02" * 32)

        assert peer.short() == peer.fingerprint[:12]

    def test_invalid_address_raises(self):
        with pytest.raises(ValueError):
            peer_for_address("abc")


class TestDID:
    def test_of_keys_by_network(self):
        i2p = PeerAddress.from_public_key(b"\x03" * 32)
        tor = PeerAddress.from_public_key(b"\x04" * 32, network="TOR")

        did = DID.of(i2p, tor)

        assert did.get_peer("I2P") is i2p
        assert did.get_peer("TOR") is tor
        assert did.get_peer("BT") is None

    def test_add_peer_under_other_network(self):
        tor = PeerAddress.from_public_key(b"\x05" * 32, network="TOR")
        did = DID()

        did.add_peer(tor, network="I2P")

        assert did.get_peer("I2P") is tor
        assert did.to_dict()["I2P"]["network"] == "TOR"
