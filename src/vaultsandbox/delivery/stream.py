"""
Event-stream delivery.

One SSE connection carries notifications for every subscribed inbox. The
connection is parameterized by the set of subscribed routing hashes, so the
set and the connection are kept in step by a single `_reconcile` step:

- Set unchanged and connection alive: nothing to do.
- Set changed: tear down, then reconnect with the new set.
- Set empty: tear down only.

On a connection error the stream reconnects with exponential backoff:

    delay(attempt) = reconnect_interval_ms * backoff_multiplier^attempt

A successful open resets the attempt counter. Once the attempts are used
up the stream is exhausted:

1. Every pending wait fails with `StreamExhaustedError`.
2. The `on_error` callback, if any, receives the same error.
3. The next `subscribe` or `wait_for_email` raises it once, then the
   strategy is free to connect afresh.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from typing import TYPE_CHECKING

from pydantic import ValidationError

from vaultsandbox.config import StreamConfig
from vaultsandbox.errors import (
    ClientClosedError,
    SignatureVerificationError,
    StreamError,
    StreamExhaustedError,
    VaultSandboxError,
)
from vaultsandbox.types import EmailRecord, StreamMessage

from .base import DeliveryStrategy, Subscription
from .registry import EmailCallback, InboxRef
from .sse import (
    EventStreamConnection,
    EventStreamConnector,
    HttpxEventStreamConnector,
    StreamHandlers,
)
from .wait import WaitOptions

if TYPE_CHECKING:
    from vaultsandbox.email import Email, EmailLoader
    from vaultsandbox.http import ApiClient

logger = logging.getLogger(__name__)

StreamErrorCallback = Callable[[StreamError], None]
"""Receives fatal stream errors."""


class StreamStrategy(DeliveryStrategy):
    """Delivery over the gateway's multiplexed event stream."""

    def __init__(
        self,
        api: ApiClient,
        loader: EmailLoader,
        config: StreamConfig | None = None,
        *,
        connector: EventStreamConnector | None = None,
        on_error: StreamErrorCallback | None = None,
    ) -> None:
        super().__init__(api, loader)
        self.config = config or StreamConfig()
        self.on_error = on_error
        self._connector = connector or HttpxEventStreamConnector()
        self._owns_connector = connector is None

        self._connection: EventStreamConnection | None = None
        self._connected_hashes: tuple[str, ...] = ()
        self._generation = 0
        self._attempts = 0
        self._reconnect_handle: asyncio.TimerHandle | None = None
        self._failure: StreamError | None = None

    @property
    def connected(self) -> bool:
        """Whether a connection is currently open or opening."""
        return self._connection is not None

    @property
    def reconnect_attempts(self) -> int:
        return self._attempts

    def _check_usable(self) -> None:
        if self._closed:
            raise ClientClosedError("Delivery strategy is closed")
        if self._failure is not None:
            failure, self._failure = self._failure, None
            raise failure

    # Subscriptions

    async def wait_for_email(self, inbox: InboxRef, options: WaitOptions) -> Email:
        return await self.waits.wait_for_one(
            lambda callback: self.subscribe(inbox, callback), options
        )

    def subscribe(self, inbox: InboxRef, callback: EmailCallback) -> Subscription:
        self._check_usable()
        token, _ = self.registry.add(inbox, callback)
        self._reconcile()
        return Subscription(lambda: self._unsubscribe(inbox.email_address, token))

    def _unsubscribe(self, inbox_key: str, token: int) -> None:
        if self.registry.remove(inbox_key, token):
            self._reconcile()

    # Connection lifecycle

    def _reconcile(self) -> None:
        """Bring the connection in line with the registry's routing hashes."""
        if self._closed:
            return
        hashes = tuple(self.registry.routing_hashes())
        if not hashes:
            if self._connection is not None or self._reconnect_handle is not None:
                logger.debug("No subscriptions left, closing event stream")
            self._disconnect()
            self._connected_hashes = ()
            return

        alive = self._connection is not None or self._reconnect_handle is not None
        if alive and set(hashes) == set(self._connected_hashes):
            return

        self._disconnect()
        self._connect(hashes)

    def _connect(self, hashes: tuple[str, ...]) -> None:
        self._generation += 1
        generation = self._generation
        self._connected_hashes = hashes

        url = self.api.events_url(hashes)
        logger.debug(
            "Connecting event stream for %d inbox(es) with key %s",
            len(hashes),
            self.api.config.redacted_api_key,
        )
        handlers = StreamHandlers(
            on_open=lambda: self._on_open(generation),
            on_message=lambda data: self._on_message(generation, data),
            on_error=lambda exc: self._on_error(generation, exc),
        )
        try:
            self._connection = self._connector.connect(url, self.api.auth_headers, handlers)
        except Exception as e:
            self._on_error(generation, e)

    def _disconnect(self) -> None:
        self._generation += 1
        if self._reconnect_handle is not None:
            self._reconnect_handle.cancel()
            self._reconnect_handle = None
        if self._connection is not None:
            connection, self._connection = self._connection, None
            connection.close()

    def _is_current(self, generation: int) -> bool:
        return not self._closed and generation == self._generation

    def _on_open(self, generation: int) -> None:
        if not self._is_current(generation):
            return
        logger.debug("Event stream connected")
        self._attempts = 0

    def _on_error(self, generation: int, exc: BaseException) -> None:
        if not self._is_current(generation):
            return
        logger.debug("Event stream error: %s", exc)
        self._disconnect()

        if self._attempts < self.config.max_reconnect_attempts:
            delay_ms = self.config.reconnect_interval_ms * (
                self.config.backoff_multiplier**self._attempts
            )
            self._attempts += 1
            logger.debug(
                "Reconnecting in %.0fms (attempt %d/%d)",
                delay_ms,
                self._attempts,
                self.config.max_reconnect_attempts,
            )
            loop = asyncio.get_running_loop()
            self._reconnect_handle = loop.call_later(delay_ms / 1000, self._reconnect)
        else:
            self._exhaust()

    def _reconnect(self) -> None:
        self._reconnect_handle = None
        if self._closed:
            return
        hashes = tuple(self.registry.routing_hashes())
        if hashes:
            self._connect(hashes)

    def _exhaust(self) -> None:
        attempts = self._attempts
        error = StreamExhaustedError(attempts)
        logger.error("%s", error.message)
        self._attempts = 0
        self._failure = error

        failed = self.waits.fail_all(lambda: StreamExhaustedError(attempts))
        if failed:
            logger.debug("Failed %d pending wait(s)", failed)

        if self.on_error is not None:
            try:
                self.on_error(error)
            except Exception as e:
                logger.warning("Stream error callback failed: %s", e)

    # Messages

    async def _on_message(self, generation: int, data: str) -> None:
        if not self._is_current(generation):
            return
        try:
            message = StreamMessage.model_validate_json(data)
        except ValidationError as e:
            logger.warning("Ignoring malformed event stream message: %s", e)
            return

        subscription = self.registry.find_by_routing_hash(message.inbox_id)
        if subscription is None:
            logger.debug("No subscription for inbox %s, dropping message", message.inbox_id)
            return

        record = EmailRecord(
            id=message.email_id,
            inbox_id=message.inbox_id,
            encrypted_metadata=message.encrypted_metadata,
        )
        try:
            email = await self.loader.load(record, subscription.inbox)
        except SignatureVerificationError as e:
            logger.error("Dropping email %s: %s", message.email_id, e)
            return
        except VaultSandboxError as e:
            logger.warning("Dropping email %s: %s", message.email_id, e)
            return

        # The strategy may have closed, or the inbox been unsubscribed, while decrypting.
        if self._closed or not self.registry.is_active(subscription):
            logger.debug("Discarding email %s for inactive subscription", email.id)
            return
        await self.registry.dispatch(subscription, email)

    async def close(self) -> None:
        if self._closed:
            return
        self._disconnect()
        self._closed = True
        self.registry.clear()
        self.waits.fail_all(lambda: ClientClosedError("Delivery strategy was closed"))
        if self._owns_connector and isinstance(self._connector, HttpxEventStreamConnector):
            await self._connector.aclose()
