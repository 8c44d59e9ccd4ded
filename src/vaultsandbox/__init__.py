"""
VaultSandbox client.

Receive emails in ephemeral, quantum-safe encrypted inboxes for testing.
Every email is signed (ML-DSA-65) and encrypted (ML-KEM-768 + AES-256-GCM)
by the gateway and only ever decrypted inside this process.

Example::

    async with VaultSandboxClient(ClientConfig.from_env()) as client:
        inbox = await client.create_inbox()
        email = await inbox.wait_for_email(WaitOptions(subject="Welcome"))
"""

from .client import InboxMonitor, VaultSandboxClient
from .config import ClientConfig, PollingConfig, RetryConfig, StreamConfig
from .crypto import KeyPair, compute_routing_hash, generate_keypair, validate_keypair
from .delivery import Subscription, WaitOptions
from .email import Email, RawEmail
from .errors import (
    ApiError,
    ClientClosedError,
    ConfigurationError,
    DecryptionError,
    EmailNotFoundError,
    InboxNotFoundError,
    NetworkError,
    ResourceNotFoundError,
    SignatureVerificationError,
    StreamError,
    StreamExhaustedError,
    VaultSandboxError,
    WaitTimeoutError,
)
from .inbox import Inbox

__version__ = "0.1.0"

__all__ = [
    # Client
    "VaultSandboxClient",
    "InboxMonitor",
    "Inbox",
    "Email",
    "RawEmail",
    "Subscription",
    "WaitOptions",
    # Configuration
    "ClientConfig",
    "PollingConfig",
    "RetryConfig",
    "StreamConfig",
    # Keys
    "KeyPair",
    "compute_routing_hash",
    "generate_keypair",
    "validate_keypair",
    # Errors
    "VaultSandboxError",
    "ApiError",
    "ClientClosedError",
    "ConfigurationError",
    "DecryptionError",
    "EmailNotFoundError",
    "InboxNotFoundError",
    "NetworkError",
    "ResourceNotFoundError",
    "SignatureVerificationError",
    "StreamError",
    "StreamExhaustedError",
    "WaitTimeoutError",
]
