# SPDX-License-Identifier: MIT
# Copyright (c) 2026 Ourochronos Contributors

"""Local transport identity: load, generate and persist the key file.

The key file holds the raw key material as Base64 text.  When it is missing
or unreadable a fresh key is generated through the provider's key-generation
primitive and written back; any file already at that path is first renamed
with a ``.backup`` suffix.

The manager uses Ed25519 (from ``cryptography``) to derive the public
destination and fingerprint from the 32-byte private seed.
"""

from __future__ import annotations

import base64
import binascii
import logging
import os
from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path

from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PrivateKey
from cryptography.hazmat.primitives.serialization import (
    Encoding,
    NoEncryption,
    PrivateFormat,
    PublicFormat,
)

from veil.core.exceptions import IdentityIOError
from veil.identity.peer import DEFAULT_NETWORK, PeerAddress

logger = logging.getLogger(__name__)

KEY_SEED_SIZE = 32
BACKUP_SUFFIX = ".backup"


def generate_key_material() -> bytes:
    """Generate a fresh 32-byte Ed25519 private seed."""
    key = Ed25519PrivateKey.generate()
    return key.private_bytes(Encoding.Raw, PrivateFormat.Raw, NoEncryption())


@dataclass(frozen=True)
class LocalIdentity:
    """The local destination: key material plus its derived address.

    Immutable for the lifetime of the process.
    """

    key_material: bytes = field(repr=False)
    address: str
    fingerprint: str
    network: str = DEFAULT_NETWORK

    @property
    def private_key(self) -> Ed25519PrivateKey:
        return Ed25519PrivateKey.from_private_bytes(self.key_material)

    @property
    def peer(self) -> PeerAddress:
        return PeerAddress(address=self.address, fingerprint=self.fingerprint, network=self.network)


def derive_identity(key_material: bytes, network: str = DEFAULT_NETWORK) -> LocalIdentity:
    """Build a :class:`LocalIdentity` from raw key material.

    Raises:
        ValueError: If the material is not a valid Ed25519 seed.
    """
    if len(key_material) != KEY_SEED_SIZE:
        raise ValueError(f"Key material must be {KEY_SEED_SIZE} bytes, got {len(key_material)}")
    private_key = Ed25519PrivateKey.from_private_bytes(key_material)
    public_raw = private_key.public_key().public_bytes(Encoding.Raw, PublicFormat.Raw)
    peer = PeerAddress.from_public_key(public_raw, network=network)
    return LocalIdentity(
        key_material=bytes(key_material),
        address=peer.address,
        fingerprint=peer.fingerprint,
        network=network,
    )


class IdentityStore:
    """Owns the identity key file.

    Args:
        generate_key: Key-generation primitive, normally the provider's
            ``generate_key``.
        network: Network tag stamped on the derived identity.
    """

    def __init__(
        self,
        generate_key: Callable[[], bytes] = generate_key_material,
        network: str = DEFAULT_NETWORK,
    ) -> None:
        self._generate_key = generate_key
        self._network = network

    def load(self, key_file: Path) -> LocalIdentity | None:
        """Read the key file; return None if absent, unreadable or invalid."""
        try:
            text = key_file.read_text(encoding="ascii").strip()
        except FileNotFoundError:
            logger.info("Destination key file %s doesn't exist", key_file)
            return None
        except (OSError, UnicodeDecodeError) as exc:
            logger.info("Destination key file %s isn't readable: %s", key_file, exc)
            return None

        try:
            material = base64.b64decode(text, validate=True)
            return derive_identity(material, self._network)
        except (binascii.Error, ValueError) as exc:
            logger.warning("Destination key file %s is invalid: %s", key_file, exc)
            return None

    def save(self, key_file: Path, identity: LocalIdentity) -> None:
        """Persist *identity*, renaming an existing file to ``.backup`` first.

        Raises:
            IdentityIOError: If the file cannot be written.
        """
        try:
            key_file.parent.mkdir(parents=True, exist_ok=True)
            if key_file.exists():
                backup = key_file.with_name(key_file.name + BACKUP_SUFFIX)
                try:
                    key_file.replace(backup)
                except OSError as exc:
                    logger.warning("Cannot rename destination key file %s to %s: %s", key_file, backup, exc)
            fd = os.open(key_file, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
            with os.fdopen(fd, "w", encoding="ascii") as f:
                f.write(base64.b64encode(identity.key_material).decode("ascii"))
        except OSError as exc:
            raise IdentityIOError(
                f"Error writing local destination key to {key_file}: {exc}",
                path=str(key_file),
            ) from exc

    def load_or_create(self, key_file: Path) -> LocalIdentity:
        """Return the persisted identity, generating and saving one if needed.

        Raises:
            IdentityIOError: If the key could not be read and a new one
                could not be written.  Fatal to startup.
        """
        key_file = Path(key_file)
        identity = self.load(key_file)
        if identity is not None:
            logger.info("Loaded local destination %s", identity.peer.short())
            return identity

        logger.info("Creating new local destination key")
        identity = derive_identity(self._generate_key(), self._network)
        self.save(key_file, identity)
        logger.info("Saved new local destination %s to %s", identity.peer.short(), key_file)
        return identity
