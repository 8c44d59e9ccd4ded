"""
Per-inbox callback registry shared by every delivery strategy.

One `InboxSubscription` exists per inbox with at least one live callback:

- Created by the first `add` for an inbox.
- Destroyed by the `remove` that empties its callback set.

Callbacks are keyed by an opaque registration token so the same function
can be registered twice and removed independently. Delivery walks the
callbacks in registration order; a failing callback is logged and never
affects its siblings.
"""

from __future__ import annotations

import inspect
import logging
from collections.abc import Awaitable, Callable, Iterator
from dataclasses import dataclass, field
from itertools import count
from typing import TYPE_CHECKING

from vaultsandbox.crypto.keypair import KeyPair

if TYPE_CHECKING:
    from vaultsandbox.email import Email

logger = logging.getLogger(__name__)

EmailCallback = Callable[["Email"], Awaitable[None] | None]
"""A new-email listener. May be a plain function or a coroutine function."""


@dataclass(frozen=True, slots=True)
class InboxRef:
    """
    Everything a strategy needs to watch and decrypt one inbox.

    Attributes:
        email_address: Inbox address, used as the registry key and REST path.
        routing_hash: Identifier the event stream uses for this inbox.
        keypair: Inbox key pair for decrypting delivered emails.
    """

    email_address: str
    routing_hash: str
    keypair: KeyPair = field(repr=False)


@dataclass(slots=True)
class InboxSubscription:
    """All live callbacks for one inbox."""

    inbox: InboxRef
    callbacks: dict[int, EmailCallback] = field(default_factory=dict)

    @property
    def inbox_key(self) -> str:
        return self.inbox.email_address

    @property
    def routing_hash(self) -> str:
        return self.inbox.routing_hash


class SubscriptionRegistry:
    """Inbox subscriptions keyed by inbox address."""

    def __init__(self) -> None:
        self._subscriptions: dict[str, InboxSubscription] = {}
        self._tokens = count(1)

    def __len__(self) -> int:
        return len(self._subscriptions)

    def __contains__(self, inbox_key: object) -> bool:
        return inbox_key in self._subscriptions

    def __iter__(self) -> Iterator[InboxSubscription]:
        return iter(list(self._subscriptions.values()))

    def get(self, inbox_key: str) -> InboxSubscription | None:
        return self._subscriptions.get(inbox_key)

    def add(self, inbox: InboxRef, callback: EmailCallback) -> tuple[int, bool]:
        """
        Register a callback for an inbox.

        Returns:
            The registration token and whether a new subscription was created.
        """
        subscription = self._subscriptions.get(inbox.email_address)
        created = subscription is None
        if subscription is None:
            subscription = InboxSubscription(inbox=inbox)
            self._subscriptions[inbox.email_address] = subscription

        token = next(self._tokens)
        subscription.callbacks[token] = callback
        return token, created

    def remove(self, inbox_key: str, token: int) -> bool:
        """
        Remove one registration.

        Unknown inboxes and tokens are ignored.

        Returns:
            True if this removal destroyed the inbox's subscription.
        """
        subscription = self._subscriptions.get(inbox_key)
        if subscription is None or subscription.callbacks.pop(token, None) is None:
            return False
        if subscription.callbacks:
            return False
        del self._subscriptions[inbox_key]
        return True

    def find_by_routing_hash(self, routing_hash: str) -> InboxSubscription | None:
        """Look up the subscription addressed by a stream message."""
        for subscription in self._subscriptions.values():
            if subscription.routing_hash == routing_hash:
                return subscription
        return None

    def routing_hashes(self) -> list[str]:
        """Non-empty routing hashes of all subscriptions, in subscription order."""
        return [s.routing_hash for s in self._subscriptions.values() if s.routing_hash]

    def is_active(self, subscription: InboxSubscription) -> bool:
        """Whether a subscription is still the registered one for its inbox."""
        return self._subscriptions.get(subscription.inbox_key) is subscription

    def clear(self) -> None:
        self._subscriptions.clear()

    async def dispatch(self, subscription: InboxSubscription, email: Email) -> None:
        """
        Deliver an email to every callback of a subscription.

        Callbacks run one after another in registration order. A callback
        removed while an earlier one runs is skipped.
        """
        for token, callback in list(subscription.callbacks.items()):
            if token not in subscription.callbacks:
                continue
            try:
                result = callback(email)
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                logger.warning(
                    "Subscription callback for %s failed on email %s: %s",
                    subscription.inbox_key,
                    email.id,
                    e,
                )
