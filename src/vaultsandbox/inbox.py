"""An ephemeral, encrypted inbox."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import TYPE_CHECKING

from vaultsandbox.config import WAIT_TIMEOUT_MS
from vaultsandbox.crypto.keypair import KeyPair
from vaultsandbox.delivery import (
    DeliveryStrategy,
    EmailCallback,
    InboxRef,
    Subscription,
    WaitOptions,
)
from vaultsandbox.errors import ConfigurationError

if TYPE_CHECKING:
    from vaultsandbox.email import Email, EmailLoader, RawEmail
    from vaultsandbox.http import ApiClient
    from vaultsandbox.types import InboxRecord, SyncSnapshot

logger = logging.getLogger(__name__)


class Inbox:
    """
    A gateway inbox and the key pair that decrypts its emails.

    Attributes:
        email_address: Address assigned by the gateway.
        expires_at: When the gateway will delete the inbox.
        inbox_hash: Routing hash identifying the inbox on the event stream.
        server_sig_pk: Server signing key the inbox was created under.
    """

    def __init__(
        self,
        record: InboxRecord,
        keypair: KeyPair,
        api: ApiClient,
        loader: EmailLoader,
        strategy: DeliveryStrategy | None = None,
    ) -> None:
        self.email_address = record.email_address
        self.expires_at: datetime = record.expires_at
        self.inbox_hash = record.inbox_hash
        self.server_sig_pk = record.server_sig_pk
        self._keypair = keypair
        self._api = api
        self._loader = loader
        self._strategy = strategy
        logger.debug("Created inbox %s (expires %s)", self.email_address, self.expires_at)

    def __repr__(self) -> str:
        return f"Inbox({self.email_address!r})"

    @property
    def ref(self) -> InboxRef:
        """What delivery strategies need to watch this inbox."""
        return InboxRef(
            email_address=self.email_address,
            routing_hash=self.inbox_hash,
            keypair=self._keypair,
        )

    def _require_strategy(self) -> DeliveryStrategy:
        if self._strategy is None:
            raise ConfigurationError("No delivery strategy set for this inbox")
        return self._strategy

    async def list_emails(self) -> list[Email]:
        """Fetch and decrypt every email in the inbox, oldest first."""
        records = await self._api.list_emails(self.email_address)
        emails = await self._loader.load_all(records, self.ref)
        logger.debug("Decrypted %d email(s) in %s", len(emails), self.email_address)
        return emails

    async def get_email(self, email_id: str) -> Email:
        record = await self._api.get_email(self.email_address, email_id)
        return await self._loader.load(record, self.ref)

    async def get_raw_email(self, email_id: str) -> RawEmail:
        return await self._loader.load_raw(email_id, self.ref)

    async def wait_for_email(self, options: WaitOptions | None = None) -> Email:
        """
        Wait for the first email matching the options.

        Raises:
            ConfigurationError: If no delivery strategy is set.
            WaitTimeoutError: If nothing matches before the deadline.
        """
        strategy = self._require_strategy()
        email = await strategy.wait_for_email(self.ref, options or WaitOptions())
        logger.debug("Received email %s in %s", email.id, self.email_address)
        return email

    async def wait_for_email_count(self, count: int, timeout_ms: int = WAIT_TIMEOUT_MS) -> None:
        """
        Wait until the inbox holds at least `count` emails.

        Raises:
            ConfigurationError: If no delivery strategy is set.
            WaitTimeoutError: If the count is not reached before the deadline.
        """
        strategy = self._require_strategy()

        async def current_count() -> int:
            return (await self.get_sync_status()).item_count

        await strategy.waits.wait_for_count(
            current_count,
            lambda callback: strategy.subscribe(self.ref, callback),
            count,
            timeout_ms,
        )

    def on_new_email(self, callback: EmailCallback) -> Subscription:
        """
        Call `callback` for each new email.

        Must be called from a running event loop.

        Raises:
            ConfigurationError: If no delivery strategy is set.
        """
        return self._require_strategy().subscribe(self.ref, callback)

    async def get_sync_status(self) -> SyncSnapshot:
        return await self._api.get_sync_status(self.email_address)

    async def mark_email_as_read(self, email_id: str) -> None:
        await self._api.mark_email_as_read(self.email_address, email_id)

    async def delete_email(self, email_id: str) -> None:
        await self._api.delete_email(self.email_address, email_id)

    async def delete(self) -> None:
        """Delete the inbox and all of its emails on the gateway."""
        await self._api.delete_inbox(self.email_address)
        logger.debug("Deleted inbox %s", self.email_address)
