"""
Post-quantum primitive backends.

The envelope protocol only needs four operations from the outside world:

- KEM: generate a key pair, encapsulate to a public key, decapsulate with a
  secret key.
- Signatures: sign and verify a message.

The protocols below capture that contract so the decryption engine never
depends on a particular library. The default implementations wrap the
`pqcrypto` bindings of the NIST reference code for ML-KEM-768 and ML-DSA-65.
"""

from __future__ import annotations

from typing import Protocol

from pqcrypto.kem import ml_kem_768
from pqcrypto.sign import ml_dsa_65

from .codec import own_bytes


class KemBackend(Protocol):
    """Key-encapsulation mechanism contract."""

    def generate_keypair(self) -> tuple[bytes, bytes]:
        """Return a fresh `(public_key, secret_key)` pair."""
        ...

    def encapsulate(self, public_key: bytes) -> tuple[bytes, bytes]:
        """Return `(ciphertext, shared_secret)` for the given public key."""
        ...

    def decapsulate(self, ciphertext: bytes, secret_key: bytes) -> bytes:
        """Recover the shared secret from a ciphertext."""
        ...


class SignatureBackend(Protocol):
    """Digital signature contract."""

    def generate_keypair(self) -> tuple[bytes, bytes]:
        """Return a fresh `(public_key, secret_key)` pair."""
        ...

    def sign(self, message: bytes, secret_key: bytes) -> bytes:
        """Sign a message."""
        ...

    def verify(self, signature: bytes, message: bytes, public_key: bytes) -> bool:
        """Return True if the signature is valid for the message and key."""
        ...


class MlKem768:
    """ML-KEM-768 (FIPS 203) backed by `pqcrypto`."""

    name = "ML-KEM-768"

    def generate_keypair(self) -> tuple[bytes, bytes]:
        public_key, secret_key = ml_kem_768.generate_keypair()
        return bytes(public_key), bytes(secret_key)

    def encapsulate(self, public_key: bytes) -> tuple[bytes, bytes]:
        ciphertext, shared_secret = ml_kem_768.encrypt(own_bytes(public_key))
        return bytes(ciphertext), bytes(shared_secret)

    def decapsulate(self, ciphertext: bytes, secret_key: bytes) -> bytes:
        # pqcrypto takes the key first.
        return bytes(ml_kem_768.decrypt(own_bytes(secret_key), own_bytes(ciphertext)))


class MlDsa65:
    """ML-DSA-65 (FIPS 204) backed by `pqcrypto`."""

    name = "ML-DSA-65"

    def generate_keypair(self) -> tuple[bytes, bytes]:
        public_key, secret_key = ml_dsa_65.generate_keypair()
        return bytes(public_key), bytes(secret_key)

    def sign(self, message: bytes, secret_key: bytes) -> bytes:
        return bytes(ml_dsa_65.sign(own_bytes(secret_key), own_bytes(message)))

    def verify(self, signature: bytes, message: bytes, public_key: bytes) -> bool:
        return bool(
            ml_dsa_65.verify(own_bytes(public_key), own_bytes(message), own_bytes(signature))
        )


DEFAULT_KEM: KemBackend = MlKem768()
"""KEM used when callers do not inject one."""

DEFAULT_SIGNER: SignatureBackend = MlDsa65()
"""Signature scheme used when callers do not inject one."""
