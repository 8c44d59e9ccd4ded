"""
Signed, encrypted envelope as produced by the gateway.

Every encrypted payload (email metadata, parsed body, raw source) travels in
the same envelope. Byte fields are base64url strings without padding; they
are decoded only by the signature verifier and the decryption engine.

Wire shape::

    {
      "v": 1,
      "ct_kem": "...",
      "nonce": "...",
      "aad": "...",
      "ciphertext": "...",
      "sig": "...",
      "server_sig_pk": "...",
      "algs": {"kem": "...", "sig": "...", "aead": "...", "kdf": "..."}
    }
"""

from __future__ import annotations

from pydantic import Field

from .base import WireModel


class AlgorithmSuite(WireModel):
    """Algorithms the gateway used to produce an envelope."""

    kem: str
    """Key encapsulation mechanism, e.g. ML-KEM-768."""

    sig: str
    """Signature scheme, e.g. ML-DSA-65."""

    aead: str
    """Authenticated cipher, e.g. AES-256-GCM."""

    kdf: str
    """Key derivation function, e.g. HKDF-SHA-512."""

    @property
    def ciphersuite(self) -> str:
        """Canonical `kem:sig:aead:kdf` string bound into the signed transcript."""
        return f"{self.kem}:{self.sig}:{self.aead}:{self.kdf}"


class Envelope(WireModel):
    """
    An immutable encrypted payload.

    Decrypting the same envelope twice yields the same plaintext or the
    same failure.
    """

    version: int = Field(alias="v")
    """Protocol version. Serialized as a single byte in the transcript."""

    kem_ciphertext: str = Field(alias="ct_kem")
    """KEM ciphertext carrying the encapsulated shared secret."""

    nonce: str
    """AEAD nonce."""

    aad: str
    """Additional authenticated data."""

    ciphertext: str
    """AEAD ciphertext with the authentication tag appended."""

    signature: str = Field(alias="sig")
    """Server signature over the transcript."""

    server_signing_key: str = Field(alias="server_sig_pk")
    """Server signing public key the signature verifies against."""

    algorithm_suite: AlgorithmSuite = Field(alias="algs")
    """Algorithms used for this envelope."""

    def to_wire(self) -> dict[str, object]:
        """Serialize back to the gateway's JSON shape."""
        return self.model_dump(by_alias=True)
