"""
Wait coordination: turn subscriptions into awaitable conditions.

Three kinds of wait are supported:

- `wait_for_one`: first delivered email passing the filters.
- `wait_for_count`: inbox holds at least N emails.
- `run`: an arbitrary wait body (the polling loop) that closes can interrupt.

Every wait owns its deadline and its subscription. Whichever finishes first
tears down the other, on every exit path. Pending waits can be failed in
bulk when their strategy closes or its stream is exhausted.
"""

from __future__ import annotations

import asyncio
import logging
import re
from collections.abc import Awaitable, Callable, Coroutine, Iterable
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, TypeVar

from vaultsandbox.config import WAIT_TIMEOUT_MS
from vaultsandbox.errors import WaitTimeoutError

from .registry import EmailCallback

if TYPE_CHECKING:
    from vaultsandbox.email import Email

    from .base import Subscription

logger = logging.getLogger(__name__)

T = TypeVar("T")

Matcher = str | re.Pattern[str]
"""A substring to look for, or a compiled pattern to search with."""

Subscribe = Callable[[EmailCallback], "Subscription"]
"""Registers a callback with a strategy and returns its handle."""


@dataclass(frozen=True, slots=True)
class WaitOptions:
    """
    How long to wait and which email to wait for.

    All filters must pass. A missing filter always passes.
    """

    timeout_ms: int = WAIT_TIMEOUT_MS
    """Deadline of the wait. Zero or negative times out immediately."""

    poll_interval_ms: int | None = None
    """Overrides the polling strategy's base interval for this wait."""

    subject: Matcher | None = None
    """Subject filter."""

    from_address: Matcher | None = None
    """Sender filter."""

    predicate: Callable[[Email], bool] | None = None
    """Custom filter, evaluated last."""


def _matches(matcher: Matcher, value: str) -> bool:
    if isinstance(matcher, str):
        return matcher in value
    return matcher.search(value) is not None


def matches_filters(email: Email, options: WaitOptions) -> bool:
    """Check an email against the subject, sender and custom filters."""
    if options.subject is not None and not _matches(options.subject, email.subject):
        return False
    if options.from_address is not None and not _matches(options.from_address, email.from_address):
        return False
    if options.predicate is not None and not options.predicate(email):
        return False
    return True


def find_matching(emails: Iterable[Email], options: WaitOptions) -> Email | None:
    """Return the first email passing the filters, in iteration order."""
    for email in emails:
        if matches_filters(email, options):
            return email
    return None


def _timeout_error(timeout_ms: int, what: str) -> WaitTimeoutError:
    return WaitTimeoutError(f"{what} within {timeout_ms}ms")


class WaitCoordinator:
    """
    Tracks the pending waits of one strategy.

    Each wait is backed by a future; resolving, rejecting or timing out the
    future ends the wait.
    """

    def __init__(self) -> None:
        self._pending: set[asyncio.Future[Any]] = set()

    @property
    def pending(self) -> int:
        """Number of waits currently in flight."""
        return len(self._pending)

    async def _await(self, future: asyncio.Future[T], timeout_ms: int, what: str) -> T:
        self._pending.add(future)
        try:
            return await asyncio.wait_for(future, timeout_ms / 1000)
        except TimeoutError as exc:
            if isinstance(exc, WaitTimeoutError):
                raise
            raise _timeout_error(timeout_ms, what) from None
        finally:
            self._pending.discard(future)

    async def wait_for_one(self, subscribe: Subscribe, options: WaitOptions) -> Email:
        """
        Wait for the first delivered email that passes the filters.

        An exception raised by a custom predicate ends the wait with that
        exception.

        Raises:
            WaitTimeoutError: If no matching email arrives in time.
        """
        what = "No matching email received"
        if options.timeout_ms <= 0:
            raise _timeout_error(options.timeout_ms, what)

        future: asyncio.Future[Email] = asyncio.get_running_loop().create_future()

        def on_email(email: Email) -> None:
            if future.done():
                return
            try:
                if matches_filters(email, options):
                    future.set_result(email)
            except Exception as exc:
                future.set_exception(exc)

        subscription = subscribe(on_email)
        try:
            return await self._await(future, options.timeout_ms, what)
        finally:
            subscription.unsubscribe()

    async def wait_for_count(
        self,
        count_items: Callable[[], Awaitable[int]],
        subscribe: Subscribe,
        count: int,
        timeout_ms: int = WAIT_TIMEOUT_MS,
    ) -> None:
        """
        Wait until an inbox holds at least `count` emails.

        The count is checked once up front and again on every new-email
        notification. An exception from a re-check ends the wait with that
        exception.

        Raises:
            WaitTimeoutError: If the count is not reached in time.
        """
        if await count_items() >= count:
            return

        what = f"Inbox did not receive {count} emails"
        if timeout_ms <= 0:
            raise _timeout_error(timeout_ms, what)

        future: asyncio.Future[None] = asyncio.get_running_loop().create_future()

        async def on_email(_email: Email) -> None:
            if future.done():
                return
            try:
                current = await count_items()
            except Exception as exc:
                if not future.done():
                    future.set_exception(exc)
                return
            logger.debug("Inbox count is now %d (waiting for %d)", current, count)
            if current >= count and not future.done():
                future.set_result(None)

        subscription = subscribe(on_email)
        try:
            await self._await(future, timeout_ms, what)
        finally:
            subscription.unsubscribe()

    async def run(self, body: Coroutine[Any, Any, T]) -> T:
        """
        Run a self-timed wait body so that `fail_all` can interrupt it.

        The body runs in its own task. Its outcome is forwarded to the
        caller; if the wait is failed first, the body is cancelled.
        """
        loop = asyncio.get_running_loop()
        future: asyncio.Future[T] = loop.create_future()
        task = loop.create_task(body)

        def forward(done: asyncio.Task[T]) -> None:
            if done.cancelled():
                if not future.done():
                    future.cancel()
                return
            exc = done.exception()
            if future.done():
                return
            if exc is not None:
                future.set_exception(exc)
            else:
                future.set_result(done.result())

        task.add_done_callback(forward)
        self._pending.add(future)
        try:
            return await future
        finally:
            self._pending.discard(future)
            task.cancel()

    def fail_all(self, make_error: Callable[[], BaseException]) -> int:
        """
        Reject every pending wait with a fresh exception from `make_error`.

        Returns:
            Number of waits rejected.
        """
        failed = 0
        for future in list(self._pending):
            if not future.done():
                future.set_exception(make_error())
                failed += 1
        self._pending.clear()
        return failed
