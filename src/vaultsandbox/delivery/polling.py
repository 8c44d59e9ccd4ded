"""
Adaptive polling delivery.

A wait polls the inbox's sync snapshot (email count plus digest). Only a
changed digest triggers the expensive list-and-decrypt step. The sleep
between polls adapts to activity:

    changed:    interval = base
    unchanged:  interval = min(interval * multiplier, max_backoff)
    sleep       = min(interval + U(0, interval * jitter), max_backoff, remaining)

The first poll always counts as a change.

Subscriptions poll each watched inbox on a fixed interval and fire callbacks
once per email id not seen before.
"""

from __future__ import annotations

import asyncio
import logging
import random
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from vaultsandbox.config import PollingConfig
from vaultsandbox.errors import (
    ApiError,
    ClientClosedError,
    DecryptionError,
    InboxNotFoundError,
    SignatureVerificationError,
    VaultSandboxError,
    WaitTimeoutError,
)

from .base import DeliveryStrategy, Subscription
from .registry import EmailCallback, InboxRef, InboxSubscription
from .wait import WaitOptions, find_matching

if TYPE_CHECKING:
    from vaultsandbox.email import Email, EmailLoader
    from vaultsandbox.http import ApiClient
    from vaultsandbox.types import EmailRecord, SyncSnapshot

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class Backoff:
    """
    Poll interval state for one wait.

    All values in milliseconds.
    """

    base_ms: float
    multiplier: float
    max_ms: float
    jitter_factor: float
    rng: random.Random = field(default_factory=random.Random)
    interval_ms: float = field(init=False)

    def __post_init__(self) -> None:
        self.interval_ms = self.base_ms

    def observe(self, changed: bool) -> None:
        """Reset on change, grow towards the ceiling otherwise."""
        if changed:
            self.interval_ms = self.base_ms
        else:
            self.interval_ms = min(self.interval_ms * self.multiplier, self.max_ms)

    def next_sleep_ms(self, remaining_ms: float) -> float:
        """Jittered sleep for the current interval, clipped to the ceiling and the deadline."""
        jitter = self.rng.uniform(0, self.interval_ms * self.jitter_factor)
        return max(0.0, min(self.interval_ms + jitter, self.max_ms, remaining_ms))


class PollingStrategy(DeliveryStrategy):
    """Delivery by polling the gateway's REST API."""

    def __init__(
        self,
        api: ApiClient,
        loader: EmailLoader,
        config: PollingConfig | None = None,
        *,
        rng: random.Random | None = None,
    ) -> None:
        super().__init__(api, loader)
        self.config = config or PollingConfig()
        self._rng = rng or random.Random()
        self._pollers: dict[str, asyncio.Task[None]] = {}

    def _backoff(self, options: WaitOptions) -> Backoff:
        return Backoff(
            base_ms=options.poll_interval_ms or self.config.initial_interval_ms,
            multiplier=self.config.backoff_multiplier,
            max_ms=self.config.max_backoff_ms,
            jitter_factor=self.config.jitter_factor,
            rng=self._rng,
        )

    async def wait_for_email(self, inbox: InboxRef, options: WaitOptions) -> Email:
        if self._closed:
            raise ClientClosedError("Delivery strategy is closed")
        if options.timeout_ms <= 0:
            raise WaitTimeoutError(f"No matching email received within {options.timeout_ms}ms")
        return await self.waits.run(self._poll_until_match(inbox, options))

    async def _sync(self, inbox: InboxRef) -> SyncSnapshot:
        try:
            return await self.api.get_sync_status(inbox.email_address)
        except ApiError as e:
            if e.status_code == 404:
                raise InboxNotFoundError("Inbox not found or has been deleted") from e
            raise

    async def _poll_until_match(self, inbox: InboxRef, options: WaitOptions) -> Email:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + options.timeout_ms / 1000
        backoff = self._backoff(options)
        last_digest: str | None = None

        while loop.time() < deadline:
            snapshot = await self._sync(inbox)
            changed = last_digest is None or snapshot.digest != last_digest
            if changed:
                last_digest = snapshot.digest
                if snapshot.item_count > 0:
                    records = await self.api.list_emails(inbox.email_address)
                    emails = await self._load_each(records, inbox)
                    if (match := find_matching(emails, options)) is not None:
                        return match
            backoff.observe(changed)

            remaining_ms = (deadline - loop.time()) * 1000
            if remaining_ms <= 0:
                break
            delay_ms = backoff.next_sleep_ms(remaining_ms)
            logger.debug(
                "Polled %s (changed=%s), sleeping %.0fms",
                inbox.email_address,
                changed,
                delay_ms,
            )
            await asyncio.sleep(delay_ms / 1000)

        raise WaitTimeoutError(f"No matching email received within {options.timeout_ms}ms")

    async def _load_each(self, records: list[EmailRecord], inbox: InboxRef) -> list[Email]:
        """Decrypt records, dropping any that fail verification or decryption."""
        emails = []
        for record in records:
            try:
                emails.append(await self.loader.load(record, inbox))
            except SignatureVerificationError as e:
                logger.error("Dropping email %s in %s: %s", record.id, inbox.email_address, e)
            except DecryptionError as e:
                logger.warning("Dropping email %s in %s: %s", record.id, inbox.email_address, e)
        return emails

    def subscribe(self, inbox: InboxRef, callback: EmailCallback) -> Subscription:
        if self._closed:
            raise ClientClosedError("Delivery strategy is closed")

        token, created = self.registry.add(inbox, callback)
        subscription = self.registry.get(inbox.email_address)
        if created and subscription is not None:
            task = asyncio.get_running_loop().create_task(self._watch(subscription))
            self._pollers[inbox.email_address] = task
            task.add_done_callback(self._on_poller_done)
            logger.debug("Started polling %s", inbox.email_address)

        return Subscription(lambda: self._unsubscribe(inbox.email_address, token))

    def _unsubscribe(self, inbox_key: str, token: int) -> None:
        if self.registry.remove(inbox_key, token):
            task = self._pollers.pop(inbox_key, None)
            if task is not None:
                task.cancel()
            logger.debug("Stopped polling %s", inbox_key)

    def _on_poller_done(self, task: asyncio.Task[None]) -> None:
        """Forget a finished poller and log any exception."""
        for key, poller in list(self._pollers.items()):
            if poller is task:
                del self._pollers[key]
        if not task.cancelled() and task.exception() is not None:
            logger.error("Poller crashed: %s", task.exception())

    async def _watch(self, subscription: InboxSubscription) -> None:
        """Fixed-interval poll loop feeding one inbox subscription."""
        inbox = subscription.inbox
        seen: set[str] = set()
        last_digest: str | None = None
        interval = self.config.initial_interval_ms / 1000

        while self.registry.is_active(subscription):
            try:
                snapshot = await self._sync(inbox)
                if snapshot.digest != last_digest:
                    if await self._deliver_unseen(subscription, seen):
                        last_digest = snapshot.digest
            except InboxNotFoundError as e:
                logger.warning("Stopped polling %s: %s", inbox.email_address, e)
                return
            except Exception as e:
                logger.warning("Error polling %s: %s", inbox.email_address, e)

            await asyncio.sleep(interval)

    async def _deliver_unseen(self, subscription: InboxSubscription, seen: set[str]) -> bool:
        """
        Dispatch every listed email not seen before.

        Emails that fail verification or decryption count as seen and are
        dropped. Emails that fail to load for any other reason stay unseen.

        Returns:
            Whether every listed email was settled, so the digest can be kept.
        """
        inbox = subscription.inbox
        settled = True
        records = await self.api.list_emails(inbox.email_address)
        for record in records:
            if record.id in seen:
                continue
            try:
                email = await self.loader.load(record, inbox)
            except SignatureVerificationError as e:
                seen.add(record.id)
                logger.error("Dropping email %s in %s: %s", record.id, inbox.email_address, e)
                continue
            except DecryptionError as e:
                seen.add(record.id)
                logger.warning("Dropping email %s in %s: %s", record.id, inbox.email_address, e)
                continue
            except VaultSandboxError as e:
                logger.warning(
                    "Could not load email %s in %s: %s", record.id, inbox.email_address, e
                )
                settled = False
                continue
            seen.add(record.id)
            if not self.registry.is_active(subscription):
                return settled
            await self.registry.dispatch(subscription, email)
        return settled

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self.registry.clear()
        self.waits.fail_all(lambda: ClientClosedError("Delivery strategy was closed"))

        pollers = list(self._pollers.values())
        self._pollers.clear()
        for task in pollers:
            task.cancel()
        # close() may be called from a callback running inside a poller.
        current = asyncio.current_task()
        await asyncio.gather(*(t for t in pollers if t is not current), return_exceptions=True)
