"""Tests for envelope transcript construction and signature verification."""

from __future__ import annotations

import pytest

from tests.vaultsandbox.helpers import FakeSigner, Sealer, flip_bit
from vaultsandbox.crypto.codec import from_base64url, to_base64url
from vaultsandbox.crypto.constants import HKDF_CONTEXT, MLDSA65_PUBLIC_KEY_SIZE
from vaultsandbox.crypto.keypair import KeyPair
from vaultsandbox.crypto.signature import (
    build_transcript,
    validate_server_public_key,
    verify_envelope,
    verify_envelope_safe,
)
from vaultsandbox.errors import SignatureVerificationError
from vaultsandbox.types import AlgorithmSuite, Envelope


@pytest.fixture
def envelope(sealer: Sealer, keypair: KeyPair) -> Envelope:
    return sealer.seal(b"secret payload", keypair)


class TestBuildTranscript:
    """Tests for the signed transcript layout."""

    def test_layout(self, envelope: Envelope) -> None:
        """Version byte, ciphersuite, context, then the decoded byte fields in order."""
        expected = (
            b"\x01"
            + b"ML-KEM-768:ML-DSA-65:AES-256-GCM:HKDF-SHA-512"
            + HKDF_CONTEXT.encode()
            + from_base64url(envelope.kem_ciphertext)
            + from_base64url(envelope.nonce)
            + from_base64url(envelope.aad)
            + from_base64url(envelope.ciphertext)
            + from_base64url(envelope.server_signing_key)
        )
        assert build_transcript(envelope) == expected

    def test_signature_not_included(self, envelope: Envelope) -> None:
        """The signature field is not part of what is signed."""
        resigned = envelope.model_copy(update={"signature": "AAAA"})
        assert build_transcript(resigned) == build_transcript(envelope)

    def test_context_is_bound(self, envelope: Envelope) -> None:
        """A different context yields a different transcript."""
        assert build_transcript(envelope, "other") != build_transcript(envelope)


class TestVerifyEnvelope:
    """Tests for signature verification."""

    def test_valid_signature(self, envelope: Envelope, signer: FakeSigner) -> None:
        """An untouched envelope verifies."""
        verify_envelope(envelope, signer=signer)
        assert signer.verify_calls == 1

    @pytest.mark.parametrize("field", ["kem_ciphertext", "nonce", "aad", "ciphertext", "signature"])
    def test_tampered_field_rejected(
        self, envelope: Envelope, signer: FakeSigner, field: str
    ) -> None:
        """Flipping one bit of any signed field breaks verification."""
        tampered = envelope.model_copy(update={field: flip_bit(getattr(envelope, field))})
        with pytest.raises(SignatureVerificationError, match="tampered"):
            verify_envelope(tampered, signer=signer)

    def test_version_is_bound(self, envelope: Envelope, signer: FakeSigner) -> None:
        """Changing the protocol version breaks verification."""
        with pytest.raises(SignatureVerificationError):
            verify_envelope(envelope.model_copy(update={"version": 2}), signer=signer)

    def test_algorithms_are_bound(self, envelope: Envelope, signer: FakeSigner) -> None:
        """Downgrading the advertised algorithms breaks verification."""
        suite = AlgorithmSuite(
            kem="ML-KEM-512", sig="ML-DSA-65", aead="AES-256-GCM", kdf="HKDF-SHA-512"
        )
        with pytest.raises(SignatureVerificationError):
            verify_envelope(envelope.model_copy(update={"algorithm_suite": suite}), signer=signer)

    def test_context_mismatch(self, envelope: Envelope, signer: FakeSigner) -> None:
        """An envelope signed under one context does not verify under another."""
        with pytest.raises(SignatureVerificationError):
            verify_envelope(envelope, context="vaultsandbox:email:v2", signer=signer)

    def test_version_out_of_range(self, envelope: Envelope, signer: FakeSigner) -> None:
        """A version that does not fit one byte is a verification failure."""
        with pytest.raises(SignatureVerificationError, match="verification error"):
            verify_envelope(envelope.model_copy(update={"version": 256}), signer=signer)

    def test_malformed_signature(self, envelope: Envelope, signer: FakeSigner) -> None:
        """An undecodable signature is a verification failure, not a codec error."""
        with pytest.raises(SignatureVerificationError) as exc_info:
            verify_envelope(envelope.model_copy(update={"signature": "!!"}), signer=signer)
        assert isinstance(exc_info.value.__cause__, ValueError)

    def test_primitive_exception_wrapped(self, envelope: Envelope) -> None:
        """Exceptions from the signature backend become verification failures."""

        class BrokenSigner(FakeSigner):
            def verify(self, signature: bytes, message: bytes, public_key: bytes) -> bool:
                raise RuntimeError("backend exploded")

        with pytest.raises(SignatureVerificationError, match="backend exploded"):
            verify_envelope(envelope, signer=BrokenSigner())

    def test_pinned_key_accepted(
        self, envelope: Envelope, signer: FakeSigner, sealer: Sealer
    ) -> None:
        """An envelope signed under the pinned key verifies."""
        verify_envelope(envelope, signer=signer, trusted_key=sealer.server_sig_pk)

    def test_pinned_key_mismatch(self, envelope: Envelope, signer: FakeSigner) -> None:
        """A validly signed envelope from another server key is rejected before verifying."""
        with pytest.raises(SignatureVerificationError, match="pinned"):
            verify_envelope(envelope, signer=signer, trusted_key=to_base64url(b"\x00" * 32))
        assert signer.verify_calls == 0


class TestVerifyEnvelopeSafe:
    """Tests for the non-raising verifier."""

    def test_valid(self, envelope: Envelope, signer: FakeSigner) -> None:
        """Valid envelopes return True."""
        assert verify_envelope_safe(envelope, signer=signer)

    def test_invalid(self, envelope: Envelope, signer: FakeSigner) -> None:
        """Invalid envelopes return False."""
        tampered = envelope.model_copy(update={"signature": flip_bit(envelope.signature)})
        assert not verify_envelope_safe(tampered, signer=signer)


class TestValidateServerPublicKey:
    """Tests for server signing key shape checks."""

    def test_mldsa65_size(self) -> None:
        """A 1952-byte key is accepted."""
        assert validate_server_public_key(to_base64url(b"\x00" * MLDSA65_PUBLIC_KEY_SIZE))

    def test_wrong_size(self) -> None:
        """Any other size is rejected."""
        assert not validate_server_public_key(to_base64url(b"\x00" * 32))

    def test_undecodable(self) -> None:
        """Garbage is rejected without raising."""
        assert not validate_server_public_key("***")
