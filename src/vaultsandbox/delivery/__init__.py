"""
Email delivery: learning that new emails exist and waiting for them.

Two interchangeable strategies share one contract:

- `StreamStrategy`: one multiplexed Server-Sent Events connection.
- `PollingStrategy`: adaptive polling of a cheap sync snapshot.
"""

from .base import DeliveryStrategy, Subscription
from .polling import Backoff, PollingStrategy
from .registry import EmailCallback, InboxRef, InboxSubscription, SubscriptionRegistry
from .sse import (
    EventStreamConnection,
    EventStreamConnector,
    HttpxEventStreamConnector,
    SseEvent,
    SseParser,
    StreamHandlers,
)
from .stream import StreamStrategy
from .wait import WaitCoordinator, WaitOptions, find_matching, matches_filters

__all__ = [
    # Contract
    "DeliveryStrategy",
    "Subscription",
    # Strategies
    "PollingStrategy",
    "StreamStrategy",
    "Backoff",
    # Registry
    "EmailCallback",
    "InboxRef",
    "InboxSubscription",
    "SubscriptionRegistry",
    # Waiting
    "WaitCoordinator",
    "WaitOptions",
    "find_matching",
    "matches_filters",
    # Event stream transport
    "EventStreamConnection",
    "EventStreamConnector",
    "HttpxEventStreamConnector",
    "SseEvent",
    "SseParser",
    "StreamHandlers",
]
