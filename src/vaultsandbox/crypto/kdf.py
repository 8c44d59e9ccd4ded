"""
Envelope key derivation.

Each envelope is opened with a fresh AES-256 key derived from the KEM
shared secret using HKDF-SHA-512 (RFC 5869):

    salt = SHA-256(kem_ciphertext)
    info = context || u32_be(len(aad)) || aad
    key  = HKDF-SHA-512(ikm=shared_secret, salt, info, L=32)
"""

from __future__ import annotations

import hashlib

from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.hkdf import HKDF

from .codec import concat_bytes, own_bytes
from .constants import AAD_LENGTH_PREFIX_SIZE, AES_KEY_SIZE


def build_info(context: str, aad: bytes) -> bytes:
    """Build the HKDF info string: context, big-endian AAD length, AAD."""
    return concat_bytes(
        context.encode("utf-8"),
        len(aad).to_bytes(AAD_LENGTH_PREFIX_SIZE, "big"),
        aad,
    )


def derive_key(shared_secret: bytes, context: str, aad: bytes, kem_ciphertext: bytes) -> bytes:
    """
    Derive the AES-256 key for one envelope.

    Pure: identical inputs always produce the identical 32-byte key.

    Args:
        shared_secret: KEM shared secret (input keying material).
        context: Domain-separation tag announced by the gateway.
        aad: Envelope additional authenticated data.
        kem_ciphertext: Envelope KEM ciphertext; its SHA-256 is the salt.

    Returns:
        32-byte symmetric key.
    """
    salt = hashlib.sha256(own_bytes(kem_ciphertext)).digest()
    hkdf = HKDF(
        algorithm=hashes.SHA512(),
        length=AES_KEY_SIZE,
        salt=salt,
        info=build_info(context, own_bytes(aad)),
    )
    return hkdf.derive(own_bytes(shared_secret))
