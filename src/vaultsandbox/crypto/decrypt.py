"""
Envelope decryption engine.

Opening an envelope is a strict four-step sequence:

1. Verify the server signature over the envelope transcript.
2. Decapsulate the KEM ciphertext with the inbox secret key.
3. Derive the AES-256 key from the shared secret (HKDF-SHA-512).
4. Decrypt the ciphertext with AES-256-GCM, using the envelope AAD as
   associated data.

Step 1 always completes before step 2 starts. A forged envelope never
reaches the KEM.
"""

from __future__ import annotations

import json
import logging
from typing import Any

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from vaultsandbox.errors import DecryptionError
from vaultsandbox.types.envelope import Envelope

from .codec import from_base64, from_base64url, own_bytes
from .constants import AES_GCM_NONCE_SIZE, HKDF_CONTEXT
from .kdf import derive_key
from .keypair import KeyPair
from .primitives import DEFAULT_KEM, DEFAULT_SIGNER, KemBackend, SignatureBackend
from .signature import verify_envelope

logger = logging.getLogger(__name__)


class Decryptor:
    """
    Verifies and opens envelopes for one gateway session.

    Attributes:
        context: Domain-separation tag bound into the transcript and the KDF.
            Must equal the tag the gateway announced.
        kem: KEM backend used for decapsulation.
        signer: Signature backend used for verification.
        trusted_key: Pinned base64url server signing key, if any.
    """

    def __init__(
        self,
        context: str = HKDF_CONTEXT,
        kem: KemBackend = DEFAULT_KEM,
        signer: SignatureBackend = DEFAULT_SIGNER,
        trusted_key: str | None = None,
    ) -> None:
        self.context = context
        self.kem = kem
        self.signer = signer
        self.trusted_key = trusted_key

    def decrypt(self, envelope: Envelope, keypair: KeyPair) -> bytes:
        """
        Verify and decrypt an envelope.

        Returns:
            The plaintext bytes.

        Raises:
            SignatureVerificationError: If the signature does not verify.
                Raised before any decryption work is done.
            DecryptionError: If decapsulation, key derivation or AEAD
                decryption fails.
        """
        verify_envelope(envelope, self.context, self.signer, self.trusted_key)

        try:
            kem_ciphertext = from_base64url(envelope.kem_ciphertext)
            nonce = from_base64url(envelope.nonce)
            aad = from_base64url(envelope.aad)
            ciphertext = from_base64url(envelope.ciphertext)
            if len(nonce) != AES_GCM_NONCE_SIZE:
                raise DecryptionError(
                    f"Nonce must be {AES_GCM_NONCE_SIZE} bytes, got {len(nonce)}"
                )

            shared_secret = self.kem.decapsulate(
                own_bytes(kem_ciphertext), own_bytes(keypair.secret_key)
            )
            key = derive_key(shared_secret, self.context, aad, kem_ciphertext)
            return AESGCM(key).decrypt(own_bytes(nonce), own_bytes(ciphertext), own_bytes(aad))
        except DecryptionError:
            raise
        except InvalidTag as exc:
            raise DecryptionError("Decryption failed: authentication tag mismatch") from exc
        except Exception as exc:
            raise DecryptionError(f"Decryption failed: {exc}") from exc

    def decrypt_json(self, envelope: Envelope, keypair: KeyPair) -> Any:
        """
        Decrypt an envelope whose plaintext is a UTF-8 JSON document.

        Used for both the metadata and the parsed-content envelopes.

        Raises:
            DecryptionError: If the plaintext is not valid JSON.
        """
        plaintext = self.decrypt(envelope, keypair)
        try:
            return json.loads(plaintext.decode("utf-8"))
        except ValueError as exc:
            raise DecryptionError(f"Failed to parse decrypted payload: {exc}") from exc

    def decrypt_raw(self, envelope: Envelope, keypair: KeyPair) -> str:
        """
        Decrypt a raw email source.

        The plaintext is itself a standard base64 string wrapping the RFC 5322
        message bytes.

        Raises:
            DecryptionError: If the plaintext is not a base64-wrapped UTF-8 message.
        """
        plaintext = self.decrypt(envelope, keypair)
        try:
            return from_base64(plaintext.decode("ascii")).decode("utf-8")
        except ValueError as exc:
            raise DecryptionError(f"Failed to decode decrypted raw email: {exc}") from exc
