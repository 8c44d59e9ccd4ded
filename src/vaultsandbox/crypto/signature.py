"""
Envelope signature verification.

The gateway signs a canonical transcript of every envelope with ML-DSA-65:

    transcript = u8(version)
              || "kem:sig:aead:kdf"
              || context
              || ct_kem || nonce || aad || ciphertext
              || server_sig_pk

The client rebuilds the transcript from the envelope's own fields and
verifies it before any decryption is attempted.
"""

from __future__ import annotations

import logging

from vaultsandbox.errors import SignatureVerificationError
from vaultsandbox.types.envelope import Envelope

from .codec import concat_bytes, from_base64url
from .constants import HKDF_CONTEXT, MLDSA65_PUBLIC_KEY_SIZE
from .primitives import DEFAULT_SIGNER, SignatureBackend

logger = logging.getLogger(__name__)


def build_transcript(envelope: Envelope, context: str = HKDF_CONTEXT) -> bytes:
    """
    Rebuild the signed transcript of an envelope.

    Raises:
        ValueError: If a byte field is not valid base64url.
        OverflowError: If the version does not fit in one byte.
    """
    return concat_bytes(
        envelope.version.to_bytes(1, "big"),
        envelope.algorithm_suite.ciphersuite.encode("utf-8"),
        context.encode("utf-8"),
        from_base64url(envelope.kem_ciphertext),
        from_base64url(envelope.nonce),
        from_base64url(envelope.aad),
        from_base64url(envelope.ciphertext),
        from_base64url(envelope.server_signing_key),
    )


def verify_envelope(
    envelope: Envelope,
    context: str = HKDF_CONTEXT,
    signer: SignatureBackend = DEFAULT_SIGNER,
    trusted_key: str | None = None,
) -> None:
    """
    Verify an envelope's server signature.

    Every failure collapses into `SignatureVerificationError`:

    - a field that is not valid base64url
    - an exception raised by the primitive
    - a negative verification result

    Args:
        envelope: Envelope to verify.
        context: Domain-separation tag announced by the gateway.
        signer: Signature backend.
        trusted_key: Pinned base64url server signing key. When given, an
            envelope signed under any other key is rejected.

    Raises:
        SignatureVerificationError: If the signature does not verify.
    """
    if trusted_key is not None and envelope.server_signing_key != trusted_key:
        logger.error("Envelope signed by an unexpected server key")
        raise SignatureVerificationError("Envelope server key does not match the pinned server key")

    try:
        signature = from_base64url(envelope.signature)
        transcript = build_transcript(envelope, context)
        public_key = from_base64url(envelope.server_signing_key)
        valid = signer.verify(signature, transcript, public_key)
    except Exception as exc:
        raise SignatureVerificationError(f"Signature verification error: {exc}") from exc

    if not valid:
        logger.error("Envelope signature rejected; data may have been tampered with")
        raise SignatureVerificationError("Signature verification failed: data may be tampered")


def verify_envelope_safe(
    envelope: Envelope,
    context: str = HKDF_CONTEXT,
    signer: SignatureBackend = DEFAULT_SIGNER,
) -> bool:
    """Verify an envelope's signature, returning False instead of raising."""
    try:
        verify_envelope(envelope, context, signer)
    except SignatureVerificationError:
        return False
    return True


def validate_server_public_key(server_public_key: str) -> bool:
    """Check that a base64url server signing key has the ML-DSA-65 size."""
    try:
        return len(from_base64url(server_public_key)) == MLDSA65_PUBLIC_KEY_SIZE
    except ValueError:
        return False
