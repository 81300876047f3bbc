"""Tests for veil.transport.codec - signed datagram encode/decode."""

from __future__ import annotations

import pytest

from veil.identity.store import derive_identity, generate_key_material
from veil.transport.codec import (
    HEADER_SIZE,
    DatagramCodec,
    InvalidSignatureError,
    MalformedDatagramError,
)


@pytest.fixture
def codec(identity) -> DatagramCodec:
    return DatagramCodec(identity)


class TestDatagramCodec:
    def test_decode_yields_sender_and_payload(self, codec, identity):
        sender, payload = codec.decode(codec.encode(b"hello"))

        assert payload == b"hello"
        assert sender == identity.peer

    def test_other_identity_can_decode(self, codec, identity):
        other = DatagramCodec(derive_identity(generate_key_material()))

        sender, payload = other.decode(codec.encode(b"ping"))

        assert sender.address == identity.address
        assert payload == b"ping"

    def test_header_layout(self, codec):
        datagram = codec.encode(b"abc")

        assert len(datagram) == HEADER_SIZE + 3
        assert datagram[HEADER_SIZE:] == b"abc"

    def test_empty_payload(self, codec):
        _, payload = codec.decode(codec.encode(b""))

        assert payload == b""

    def test_short_datagram_malformed(self, codec):
        with pytest.raises(MalformedDatagramError) as exc_info:
            codec.decode(b"\x00" * (HEADER_SIZE - 1))

        assert exc_info.value.kind == "MALFORMED_DATAGRAM"

    def test_tampered_payload_invalid_signature(self, codec):
        datagram = bytearray(codec.encode(b"hello"))
        datagram[-1] ^= 0xFF

        with pytest.raises(InvalidSignatureError) as exc_info:
            codec.decode(bytes(datagram))

        assert exc_info.value.kind == "INVALID_SIGNATURE"

    def test_swapped_sender_invalid_signature(self, codec):
        other = DatagramCodec(derive_identity(generate_key_material()))
        forged = other.encode(b"x")[:32] + codec.encode(b"hello")[32:]

        with pytest.raises(InvalidSignatureError):
            codec.decode(forged)
