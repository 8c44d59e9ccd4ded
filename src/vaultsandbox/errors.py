"""
Exception hierarchy for the VaultSandbox client.

Failures fall into four families:

- Cryptographic: the envelope was tampered with or cannot be opened.
  Never retried.
- Waiting: no qualifying email arrived in time. Always safe to retry.
- Transport: the gateway or the event stream misbehaved. Retried with
  bounded backoff by the layer that owns the connection, then surfaced.
- Usage: the client was misconfigured or used after close.
"""

from __future__ import annotations


class VaultSandboxError(Exception):
    """
    Base exception for all client errors.

    Attributes:
        message: Human-readable error description.
    """

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self.message!r})"


class SignatureVerificationError(VaultSandboxError):
    """
    Raised when an envelope's server signature does not verify.

    Covers a false verification result, a malformed signature field, and any
    exception from the verification primitive. This may indicate tampering,
    so it is kept distinct from decryption failures.
    """


class DecryptionError(VaultSandboxError):
    """
    Raised when a verified envelope cannot be opened.

    Covers KEM decapsulation, key derivation, AEAD tag mismatch, and
    structural parse failures of the decrypted plaintext.
    """


class WaitTimeoutError(VaultSandboxError, TimeoutError):
    """Raised when a wait's deadline passes without a qualifying email."""


class ApiError(VaultSandboxError):
    """
    Raised when the gateway answers with a non-successful status.

    Attributes:
        status_code: HTTP status code returned by the gateway.
    """

    def __init__(self, status_code: int, message: str) -> None:
        self.status_code = status_code
        super().__init__(message)

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self.status_code}, {self.message!r})"


class NetworkError(VaultSandboxError):
    """Raised when the gateway cannot be reached at all."""


class ResourceNotFoundError(VaultSandboxError):
    """Raised when the target inbox or email no longer exists on the gateway."""


class InboxNotFoundError(ResourceNotFoundError):
    """Raised when an inbox is unknown or has been deleted."""


class EmailNotFoundError(ResourceNotFoundError):
    """Raised when an email is unknown or has been deleted."""


class StreamError(VaultSandboxError):
    """Raised for event-stream connection failures."""


class StreamExhaustedError(StreamError):
    """
    Raised when the event stream could not be re-established.

    Attributes:
        attempts: Number of reconnection attempts made before giving up.
    """

    def __init__(self, attempts: int) -> None:
        self.attempts = attempts
        super().__init__(
            f"Failed to establish event stream after {attempts} reconnection attempts"
        )


class ConfigurationError(VaultSandboxError):
    """Raised when the client is missing required configuration or a delivery strategy."""


class ClientClosedError(VaultSandboxError):
    """Raised to pending waits when their client or strategy is closed."""
