"""Delivery strategy contract and the subscription handle it returns."""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Callable
from typing import TYPE_CHECKING

from .registry import EmailCallback, InboxRef, SubscriptionRegistry
from .wait import WaitCoordinator, WaitOptions

if TYPE_CHECKING:
    from vaultsandbox.email import Email, EmailLoader
    from vaultsandbox.http import ApiClient


class Subscription:
    """
    Handle for one registered new-email callback.

    `unsubscribe` is idempotent: only the first call has an effect.
    """

    def __init__(self, cancel: Callable[[], None]) -> None:
        self._cancel: Callable[[], None] | None = cancel

    @property
    def active(self) -> bool:
        return self._cancel is not None

    def unsubscribe(self) -> None:
        cancel, self._cancel = self._cancel, None
        if cancel is not None:
            cancel()


class DeliveryStrategy(ABC):
    """
    How the client learns that new emails exist.

    Implementations share a subscription registry for callbacks and a wait
    coordinator for pending waits, so that `close` can fail every wait and
    drop every callback in one place.
    """

    def __init__(self, api: ApiClient, loader: EmailLoader) -> None:
        self.api = api
        self.loader = loader
        self.registry = SubscriptionRegistry()
        self.waits = WaitCoordinator()
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    @abstractmethod
    async def wait_for_email(self, inbox: InboxRef, options: WaitOptions) -> Email:
        """
        Wait for the first email in an inbox matching the options.

        Raises:
            WaitTimeoutError: If nothing matches before the deadline.
            ClientClosedError: If the strategy closes while waiting.
        """

    @abstractmethod
    def subscribe(self, inbox: InboxRef, callback: EmailCallback) -> Subscription:
        """Call `callback` for every new email delivered to the inbox."""

    @abstractmethod
    async def close(self) -> None:
        """Fail pending waits, drop all subscriptions and release connections."""
