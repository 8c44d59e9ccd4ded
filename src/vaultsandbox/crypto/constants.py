"""Cryptographic constants for the envelope protocol."""

from typing import Final

HKDF_CONTEXT: Final = "vaultsandbox:email:v1"
"""
Default domain-separation tag.

Bound into both the key-derivation info and the signed transcript. The
gateway announces the tag it uses in its server info; a mismatch makes
every envelope fail verification.
"""

MLKEM768_PUBLIC_KEY_SIZE: Final = 1184
"""ML-KEM-768 encapsulation key size in bytes."""

MLKEM768_SECRET_KEY_SIZE: Final = 2400
"""ML-KEM-768 decapsulation key size in bytes. The public key is its trailing 1184 bytes."""

MLDSA65_PUBLIC_KEY_SIZE: Final = 1952
"""ML-DSA-65 verification key size in bytes."""

AES_KEY_SIZE: Final = 32
"""AES-256 key size in bytes."""

AES_GCM_NONCE_SIZE: Final = 12
"""AES-GCM nonce size in bytes."""

AES_GCM_TAG_SIZE: Final = 16
"""AES-GCM authentication tag size in bytes (128 bits)."""

AAD_LENGTH_PREFIX_SIZE: Final = 4
"""Big-endian length prefix of the AAD inside the key-derivation info."""

MLKEM768_PUBLIC_KEY_OFFSET: Final = 1152
"""
Offset of the encapsulation key inside an ML-KEM-768 decapsulation key.

The decapsulation key is laid out as `dk_pke || ek || H(ek) || z` with
`dk_pke` being 384 * k = 1152 bytes for k = 3.
"""
