# SPDX-License-Identifier: MIT
# Copyright (c) 2026 Ourochronos Contributors

"""
Signed datagram codec.

Wire format::

    +------------------+-------------------------+-----------------+
    | 32 bytes         | 64 bytes                | payload         |
    | sender pubkey    | Ed25519 sig(payload)    | (opaque bytes)  |
    +------------------+-------------------------+-----------------+

The sender's public key *is* its destination, so a datagram is
self-certifying: decoding verifies the signature and yields the sender's
:class:`PeerAddress` together with the payload.
"""

from __future__ import annotations

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PublicKey
from cryptography.hazmat.primitives.serialization import Encoding, PublicFormat

from veil.identity.peer import DEFAULT_NETWORK, PeerAddress
from veil.identity.store import LocalIdentity

PUBLIC_KEY_SIZE = 32
SIGNATURE_SIZE = 64
HEADER_SIZE = PUBLIC_KEY_SIZE + SIGNATURE_SIZE


class CodecError(Exception):
    """Raised when encoding or decoding fails."""

    kind = "CODEC_ERROR"


class MalformedDatagramError(CodecError):
    """The datagram is structurally invalid."""

    kind = "MALFORMED_DATAGRAM"


class InvalidSignatureError(CodecError):
    """The datagram signature does not verify against its sender."""

    kind = "INVALID_SIGNATURE"


class DatagramCodec:
    """Encodes outbound payloads as signed datagrams and decodes inbound ones.

    Usage::

        codec = DatagramCodec(identity)
        datagram = codec.encode(b"hello")
        sender, payload = codec.decode(datagram)
    """

    def __init__(self, identity: LocalIdentity, network: str = DEFAULT_NETWORK) -> None:
        self._private_key = identity.private_key
        self._public_raw = self._private_key.public_key().public_bytes(Encoding.Raw, PublicFormat.Raw)
        self._network = network

    def encode(self, payload: bytes) -> bytes:
        """Wrap *payload* in a datagram signed by the local identity."""
        signature = self._private_key.sign(payload)
        return self._public_raw + signature + payload

    def decode(self, datagram: bytes) -> tuple[PeerAddress, bytes]:
        """Verify *datagram* and return ``(sender, payload)``.

        Raises:
            MalformedDatagramError: Too short or an unusable sender key.
            InvalidSignatureError: Signature verification failed.
        """
        if len(datagram) < HEADER_SIZE:
            raise MalformedDatagramError(f"Datagram too short: {len(datagram)} bytes, need at least {HEADER_SIZE}")

        sender_raw = bytes(datagram[:PUBLIC_KEY_SIZE])
        signature = bytes(datagram[PUBLIC_KEY_SIZE:HEADER_SIZE])
        payload = bytes(datagram[HEADER_SIZE:])

        try:
            sender_key = Ed25519PublicKey.from_public_bytes(sender_raw)
        except ValueError as exc:
            raise MalformedDatagramError(f"Invalid sender key: {exc}") from exc

        try:
            sender_key.verify(signature, payload)
        except InvalidSignature as exc:
            raise InvalidSignatureError("Datagram failed verification") from exc

        return PeerAddress.from_public_key(sender_raw, network=self._network), payload
