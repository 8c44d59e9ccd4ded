"""
Envelope cryptography.

Signature verification (ML-DSA-65), key encapsulation (ML-KEM-768), key
derivation (HKDF-SHA-512) and authenticated decryption (AES-256-GCM).
"""

from .codec import concat_bytes, from_base64, from_base64url, own_bytes, to_base64, to_base64url
from .constants import HKDF_CONTEXT
from .decrypt import Decryptor
from .kdf import derive_key
from .keypair import (
    KeyPair,
    compute_routing_hash,
    derive_public_key_from_secret,
    generate_keypair,
    validate_keypair,
)
from .primitives import DEFAULT_KEM, DEFAULT_SIGNER, KemBackend, MlDsa65, MlKem768, SignatureBackend
from .signature import (
    build_transcript,
    validate_server_public_key,
    verify_envelope,
    verify_envelope_safe,
)

__all__ = [
    # Codec
    "concat_bytes",
    "from_base64",
    "from_base64url",
    "own_bytes",
    "to_base64",
    "to_base64url",
    # Primitives
    "DEFAULT_KEM",
    "DEFAULT_SIGNER",
    "KemBackend",
    "MlDsa65",
    "MlKem768",
    "SignatureBackend",
    # Keys
    "KeyPair",
    "compute_routing_hash",
    "derive_public_key_from_secret",
    "generate_keypair",
    "validate_keypair",
    # Envelopes
    "HKDF_CONTEXT",
    "Decryptor",
    "build_transcript",
    "derive_key",
    "validate_server_public_key",
    "verify_envelope",
    "verify_envelope_safe",
]
