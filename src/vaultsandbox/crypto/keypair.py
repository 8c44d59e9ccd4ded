"""
Inbox key pairs.

Each inbox owns one ML-KEM-768 key pair. The public key is registered with
the gateway; the secret key never leaves the process except through
caller-controlled export.

The gateway addresses inboxes on the event stream by a routing hash rather
than by address:

    routing_hash = base64url(SHA-256(public_key))
"""

from __future__ import annotations

import hashlib
from dataclasses import dataclass, field

from vaultsandbox.errors import DecryptionError

from .codec import from_base64url, to_base64url
from .constants import (
    MLKEM768_PUBLIC_KEY_OFFSET,
    MLKEM768_PUBLIC_KEY_SIZE,
    MLKEM768_SECRET_KEY_SIZE,
)
from .primitives import DEFAULT_KEM, KemBackend


@dataclass(frozen=True, slots=True)
class KeyPair:
    """
    An inbox's KEM key pair.

    Attributes:
        public_key: Encapsulation key registered with the gateway.
        secret_key: Decapsulation key. Never logged.
        public_key_b64: Unpadded base64url encoding of `public_key`.
    """

    public_key: bytes
    secret_key: bytes = field(repr=False)
    public_key_b64: str

    @classmethod
    def from_secret_key(cls, secret_key: bytes) -> KeyPair:
        """Rebuild a key pair from its secret key alone."""
        public_key = derive_public_key_from_secret(secret_key)
        return cls(
            public_key=public_key,
            secret_key=bytes(secret_key),
            public_key_b64=to_base64url(public_key),
        )

    @property
    def routing_hash(self) -> str:
        """Identifier the gateway uses for this inbox on the event stream."""
        return compute_routing_hash(self.public_key)


def generate_keypair(kem: KemBackend = DEFAULT_KEM) -> KeyPair:
    """Generate a fresh inbox key pair."""
    public_key, secret_key = kem.generate_keypair()
    return KeyPair(
        public_key=public_key,
        secret_key=secret_key,
        public_key_b64=to_base64url(public_key),
    )


def validate_keypair(keypair: KeyPair) -> bool:
    """
    Check a key pair's sizes and encoding.

    Returns False rather than raising, so callers can validate untrusted
    imports without a try block.
    """
    if not keypair.public_key or not keypair.secret_key or not keypair.public_key_b64:
        return False
    if len(keypair.public_key) != MLKEM768_PUBLIC_KEY_SIZE:
        return False
    if len(keypair.secret_key) != MLKEM768_SECRET_KEY_SIZE:
        return False
    try:
        decoded = from_base64url(keypair.public_key_b64)
    except ValueError:
        return False
    return decoded == keypair.public_key


def derive_public_key_from_secret(secret_key: bytes) -> bytes:
    """
    Extract the public key embedded in an ML-KEM secret key.

    The encapsulation key sits at bytes [1152:2336] of an ML-KEM-768
    decapsulation key, followed by its 32-byte hash and the 32-byte
    implicit-rejection seed.

    Raises:
        DecryptionError: If the secret key has the wrong length.
    """
    if len(secret_key) != MLKEM768_SECRET_KEY_SIZE:
        raise DecryptionError(
            f"Cannot derive public key: secret key has invalid length "
            f"{len(secret_key)}, expected {MLKEM768_SECRET_KEY_SIZE}"
        )
    end = MLKEM768_PUBLIC_KEY_OFFSET + MLKEM768_PUBLIC_KEY_SIZE
    return bytes(secret_key[MLKEM768_PUBLIC_KEY_OFFSET:end])


def compute_routing_hash(public_key: bytes) -> str:
    """Compute the stream routing hash of a public key."""
    return to_base64url(hashlib.sha256(public_key).digest())
