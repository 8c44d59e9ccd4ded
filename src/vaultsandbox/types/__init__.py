"""Data model shared by the crypto, delivery and client layers."""

from .base import CamelModel, StrictBaseModel, WireModel
from .content import Attachment, DecryptedMetadata, DecryptedParsed
from .envelope import AlgorithmSuite, Envelope
from .records import (
    EmailRecord,
    InboxRecord,
    RawEmailRecord,
    ServerInfo,
    StreamMessage,
    SyncSnapshot,
)

__all__ = [
    # Base models
    "CamelModel",
    "StrictBaseModel",
    "WireModel",
    # Envelope
    "AlgorithmSuite",
    "Envelope",
    # Gateway records
    "EmailRecord",
    "InboxRecord",
    "RawEmailRecord",
    "ServerInfo",
    "StreamMessage",
    "SyncSnapshot",
    # Decrypted payloads
    "Attachment",
    "DecryptedMetadata",
    "DecryptedParsed",
]
