"""
Client entry point.

A `VaultSandboxClient` talks to one gateway. It initializes lazily: the
first call that needs decryption fetches the server info, which supplies
the signing key to pin and the context string bound into every envelope.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from collections.abc import Awaitable, Callable, Iterable

import httpx

from vaultsandbox.config import ClientConfig
from vaultsandbox.crypto.decrypt import Decryptor
from vaultsandbox.crypto.keypair import generate_keypair
from vaultsandbox.crypto.primitives import DEFAULT_KEM, DEFAULT_SIGNER, KemBackend, SignatureBackend
from vaultsandbox.delivery import (
    DeliveryStrategy,
    EventStreamConnector,
    PollingStrategy,
    StreamStrategy,
    Subscription,
)
from vaultsandbox.delivery.stream import StreamErrorCallback
from vaultsandbox.email import Email, EmailLoader
from vaultsandbox.errors import ClientClosedError, ConfigurationError
from vaultsandbox.http import ApiClient
from vaultsandbox.inbox import Inbox
from vaultsandbox.types import ServerInfo

logger = logging.getLogger(__name__)

MonitorCallback = Callable[[Inbox, Email], Awaitable[None] | None]
"""Receives every email delivered to any monitored inbox."""


class InboxMonitor:
    """
    Fan-in of new-email notifications from several inboxes.

    Listeners run in registration order; a failing listener is logged and
    does not affect the others.
    """

    def __init__(self) -> None:
        self._listeners: list[MonitorCallback] = []
        self._subscriptions: list[Subscription] = []

    def on_email(self, callback: MonitorCallback) -> None:
        self._listeners.append(callback)

    def add_subscription(self, subscription: Subscription) -> None:
        self._subscriptions.append(subscription)

    async def emit(self, inbox: Inbox, email: Email) -> None:
        for listener in list(self._listeners):
            try:
                result = listener(inbox, email)
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                logger.warning("Inbox monitor listener failed on email %s: %s", email.id, e)

    def unsubscribe(self) -> None:
        """Stop watching every inbox and drop all listeners."""
        for subscription in self._subscriptions:
            subscription.unsubscribe()
        self._subscriptions.clear()
        self._listeners.clear()


class VaultSandboxClient:
    """
    Creates inboxes and delivers their decrypted emails.

    Use as an async context manager, or call `close()` when done.
    """

    def __init__(
        self,
        config: ClientConfig,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
        connector: EventStreamConnector | None = None,
        kem: KemBackend = DEFAULT_KEM,
        signer: SignatureBackend = DEFAULT_SIGNER,
        on_stream_error: StreamErrorCallback | None = None,
    ) -> None:
        self.config = config
        self.api = ApiClient(config, transport=transport)
        self._connector = connector
        self._kem = kem
        self._signer = signer
        self._on_stream_error = on_stream_error

        self._server_info: ServerInfo | None = None
        self._loader: EmailLoader | None = None
        self._strategy: DeliveryStrategy | None = None
        self._inboxes: dict[str, Inbox] = {}
        self._init_lock = asyncio.Lock()
        self._closed = False

    async def __aenter__(self) -> VaultSandboxClient:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()

    @property
    def strategy(self) -> DeliveryStrategy | None:
        """Active delivery strategy, once initialized."""
        return self._strategy

    @property
    def inboxes(self) -> list[Inbox]:
        """Inboxes created by this client."""
        return list(self._inboxes.values())

    async def _ensure_initialized(self) -> EmailLoader:
        if self._closed:
            raise ClientClosedError("Client is closed")
        if self._loader is not None:
            return self._loader

        async with self._init_lock:
            if self._loader is None:
                info = await self.api.get_server_info()
                decryptor = Decryptor(
                    context=info.context,
                    kem=self._kem,
                    signer=self._signer,
                    trusted_key=info.server_sig_pk,
                )
                loader = EmailLoader(self.api, decryptor)
                self._strategy = self._create_strategy(loader)
                self._server_info = info
                self._loader = loader
                logger.debug(
                    "Initialized client for %s (algorithms %s)",
                    self.config.url,
                    info.algs.ciphersuite,
                )
        return self._loader

    def _create_strategy(self, loader: EmailLoader) -> DeliveryStrategy:
        if self.config.strategy in ("sse", "auto"):
            logger.debug("Using event stream delivery")
            return StreamStrategy(
                self.api,
                loader,
                self.config.stream,
                connector=self._connector,
                on_error=self._on_stream_error,
            )
        logger.debug("Using polling delivery")
        return PollingStrategy(self.api, loader, self.config.polling)

    async def create_inbox(
        self, ttl: int | None = None, email_address: str | None = None
    ) -> Inbox:
        """
        Create an inbox with a fresh key pair.

        Args:
            ttl: Inbox lifetime in seconds. Server default when omitted.
            email_address: Desired address or domain.
        """
        loader = await self._ensure_initialized()
        keypair = generate_keypair(self._kem)
        record = await self.api.create_inbox(keypair.public_key_b64, ttl, email_address)
        inbox = Inbox(record, keypair, self.api, loader, self._strategy)
        self._inboxes[inbox.email_address] = inbox
        return inbox

    async def delete_all_inboxes(self) -> int:
        """Delete every inbox owned by the API key. Returns how many were deleted."""
        deleted = await self.api.delete_all_inboxes()
        self._inboxes.clear()
        return deleted

    async def get_server_info(self) -> ServerInfo:
        return await self.api.get_server_info()

    async def check_key(self) -> bool:
        return await self.api.check_key()

    def monitor_inboxes(self, inboxes: Iterable[Inbox]) -> InboxMonitor:
        """
        Watch several inboxes through one monitor.

        Raises:
            ConfigurationError: If the client has not been initialized yet.
        """
        if self._strategy is None:
            raise ConfigurationError("No delivery strategy available; client not initialized")

        monitor = InboxMonitor()
        for inbox in inboxes:

            async def forward(email: Email, inbox: Inbox = inbox) -> None:
                await monitor.emit(inbox, email)

            monitor.add_subscription(inbox.on_new_email(forward))
        return monitor

    async def close(self) -> None:
        """Fail pending waits, drop subscriptions and release connections."""
        if self._closed:
            return
        self._closed = True
        if self._strategy is not None:
            await self._strategy.close()
        await self.api.aclose()
        self._inboxes.clear()
