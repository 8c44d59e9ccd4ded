"""Records returned by the gateway's REST and event-stream endpoints."""

from __future__ import annotations

from datetime import datetime

from pydantic import Field

from .base import WireModel
from .envelope import AlgorithmSuite, Envelope


class ServerInfo(WireModel):
    """Gateway capabilities, fetched once at session start."""

    server_sig_pk: str
    """Base64url server signing public key."""

    algs: AlgorithmSuite
    """Algorithms the gateway uses for every envelope."""

    context: str
    """Domain-separation tag bound into key derivation and the signed transcript."""

    max_ttl: int
    """Maximum inbox time-to-live in seconds."""

    default_ttl: int
    """Default inbox time-to-live in seconds."""

    sse_console: bool = False
    """Whether the gateway's SSE console is enabled."""

    allowed_domains: list[str] = Field(default_factory=list)
    """Domains inboxes may be created under."""


class InboxRecord(WireModel):
    """Inbox registration as returned by the gateway."""

    email_address: str
    """Address assigned to the inbox."""

    expires_at: datetime
    """When the gateway will delete the inbox."""

    inbox_hash: str
    """Routing hash: base64url SHA-256 of the inbox's KEM public key."""

    server_sig_pk: str
    """Server signing public key used for this inbox's envelopes."""


class SyncSnapshot(WireModel):
    """
    Lightweight change detector for an inbox.

    The digest is opaque. Only equality with the previous snapshot matters.
    """

    item_count: int = Field(alias="emailCount", ge=0)
    """Number of emails currently in the inbox."""

    digest: str = Field(alias="emailsHash")
    """Fingerprint of the inbox's email set."""


class EmailRecord(WireModel):
    """An encrypted email as listed or fetched from the gateway."""

    id: str
    inbox_id: str
    received_at: datetime | None = None
    is_read: bool = False
    encrypted_metadata: Envelope
    encrypted_parsed: Envelope | None = None


class RawEmailRecord(WireModel):
    """An encrypted raw email source."""

    id: str
    encrypted_raw: Envelope


class StreamMessage(WireModel):
    """
    A new-email notification pushed over the event stream.

    `inbox_id` is the routing hash of the target inbox, not its address.
    """

    inbox_id: str
    email_id: str
    encrypted_metadata: Envelope
