"""
Decrypted emails and the loader that produces them.

An email reaches the client as an `EmailRecord` holding two envelopes:
metadata (sender, recipients, subject) and parsed content (bodies, headers,
attachments, links). Event-stream notifications only carry the metadata
envelope, so the loader fetches the full record before decrypting.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any, TypeVar

from pydantic import BaseModel, ValidationError

from vaultsandbox.crypto.decrypt import Decryptor
from vaultsandbox.delivery.registry import InboxRef
from vaultsandbox.errors import DecryptionError
from vaultsandbox.types import Attachment, DecryptedMetadata, DecryptedParsed, EmailRecord

if TYPE_CHECKING:
    from vaultsandbox.http import ApiClient

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class RawEmail:
    """Decrypted RFC 5322 source of an email."""

    id: str
    raw: str


M = TypeVar("M", bound=BaseModel)


def _validate(model: type[M], payload: Any) -> M:
    try:
        return model.model_validate(payload)
    except ValidationError as exc:
        raise DecryptionError(f"Decrypted {model.__name__} has an unexpected shape: {exc}") from exc


class Email:
    """
    A decrypted email.

    All fields are read-only. The read status changes only through
    `mark_as_read`, after the gateway has acknowledged it.
    """

    def __init__(
        self,
        record: EmailRecord,
        metadata: DecryptedMetadata,
        parsed: DecryptedParsed | None,
        inbox: InboxRef,
        api: ApiClient,
        decryptor: Decryptor,
    ) -> None:
        self.id = record.id
        self.from_address = metadata.from_address
        self.to = list(metadata.to)
        self.subject = metadata.subject
        self.received_at = metadata.received_at or record.received_at or datetime.now(UTC)
        self.metadata: dict[str, Any] = metadata.model_dump(by_alias=True)

        # Metadata-only emails have empty content.
        if parsed is None:
            parsed = DecryptedParsed()
        self.text = parsed.text
        self.html = parsed.html
        self.headers = dict(parsed.headers)
        self.attachments: list[Attachment] = list(parsed.attachments)
        self.links = list(parsed.links)
        self.auth_results = dict(parsed.auth_results)

        self._is_read = record.is_read
        self._inbox = inbox
        self._api = api
        self._decryptor = decryptor

    def __repr__(self) -> str:
        return f"Email(id={self.id!r}, from={self.from_address!r}, subject={self.subject!r})"

    @property
    def is_read(self) -> bool:
        return self._is_read

    @property
    def email_address(self) -> str:
        """Address of the inbox this email was delivered to."""
        return self._inbox.email_address

    async def mark_as_read(self) -> None:
        await self._api.mark_email_as_read(self._inbox.email_address, self.id)
        self._is_read = True
        logger.debug("Marked email %s as read", self.id)

    async def delete(self) -> None:
        await self._api.delete_email(self._inbox.email_address, self.id)
        logger.debug("Deleted email %s", self.id)

    async def get_raw(self) -> RawEmail:
        """Fetch and decrypt the original message source."""
        record = await self._api.get_raw_email(self._inbox.email_address, self.id)
        raw = self._decryptor.decrypt_raw(record.encrypted_raw, self._inbox.keypair)
        return RawEmail(id=record.id, raw=raw)


class EmailLoader:
    """
    Turns encrypted records into `Email` objects.

    Both envelopes are signature-checked before decryption by the
    decryptor. A record without its parsed envelope is completed with a
    fetch of the full email first.
    """

    def __init__(self, api: ApiClient, decryptor: Decryptor) -> None:
        self.api = api
        self.decryptor = decryptor

    async def load(self, record: EmailRecord, inbox: InboxRef) -> Email:
        """
        Decrypt one email record.

        Raises:
            SignatureVerificationError: If either envelope fails verification.
            DecryptionError: If either envelope cannot be opened or parsed.
        """
        if record.encrypted_parsed is None:
            logger.debug("Email %s arrived without content, fetching full record", record.id)
            record = await self.api.get_email(inbox.email_address, record.id)

        metadata = _validate(
            DecryptedMetadata,
            self.decryptor.decrypt_json(record.encrypted_metadata, inbox.keypair),
        )
        parsed = None
        if record.encrypted_parsed is not None:
            parsed = _validate(
                DecryptedParsed,
                self.decryptor.decrypt_json(record.encrypted_parsed, inbox.keypair),
            )
        return Email(record, metadata, parsed, inbox, self.api, self.decryptor)

    async def load_all(self, records: list[EmailRecord], inbox: InboxRef) -> list[Email]:
        """Decrypt records in order. The first failure propagates."""
        return [await self.load(record, inbox) for record in records]

    async def load_raw(self, email_id: str, inbox: InboxRef) -> RawEmail:
        record = await self.api.get_raw_email(inbox.email_address, email_id)
        raw = self.decryptor.decrypt_raw(record.encrypted_raw, inbox.keypair)
        return RawEmail(id=record.id, raw=raw)
