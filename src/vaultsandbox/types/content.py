"""Decrypted email payloads: the metadata and parsed-body plaintexts."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import Field, field_validator

from vaultsandbox.crypto.codec import from_base64

from .base import WireModel


class Attachment(WireModel):
    """An email attachment with its content decoded to bytes."""

    filename: str
    content_type: str
    size: int
    content_id: str | None = None
    content_disposition: str | None = None
    checksum: str | None = None
    content: bytes | None = None

    @field_validator("content", mode="before")
    @classmethod
    def _decode_content(cls, value: Any) -> Any:
        # The gateway ships attachment bodies as standard base64 strings.
        if isinstance(value, str):
            return from_base64(value)
        return value


class DecryptedMetadata(WireModel):
    """Plaintext of an email's metadata envelope."""

    from_address: str = Field(alias="from")
    to: list[str] = Field(default_factory=list)
    subject: str = ""
    received_at: datetime | None = None

    @field_validator("to", mode="before")
    @classmethod
    def _coerce_recipients(cls, value: Any) -> Any:
        if value is None:
            return []
        if isinstance(value, str):
            return [value] if value else []
        return value


class DecryptedParsed(WireModel):
    """Plaintext of an email's parsed-content envelope."""

    text: str | None = None
    html: str | None = None
    headers: dict[str, Any] = Field(default_factory=dict)
    attachments: list[Attachment] = Field(default_factory=list)
    links: list[str] = Field(default_factory=list)
    auth_results: dict[str, Any] = Field(default_factory=dict)
