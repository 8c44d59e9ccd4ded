"""Tests for event-stream delivery."""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator

import pytest

from tests.vaultsandbox.helpers import (
    FakeApi,
    FakeConnector,
    Sealer,
    make_email_record,
    stream_message,
    wait_until,
)
from vaultsandbox.config import StreamConfig
from vaultsandbox.crypto import KeyPair
from vaultsandbox.delivery import InboxRef, StreamStrategy, WaitOptions
from vaultsandbox.email import Email, EmailLoader
from vaultsandbox.errors import ClientClosedError, StreamError, StreamExhaustedError

FAST = StreamConfig(reconnect_interval_ms=10, max_reconnect_attempts=2, backoff_multiplier=1.0)


@pytest.fixture
def errors() -> list[StreamError]:
    return []


@pytest.fixture
async def strategy(
    api: FakeApi, loader: EmailLoader, connector: FakeConnector, errors: list[StreamError]
) -> AsyncIterator[StreamStrategy]:
    strategy = StreamStrategy(
        api,  # type: ignore[arg-type]
        loader,
        FAST,
        connector=connector,
        on_error=errors.append,
    )
    yield strategy
    await strategy.close()


@pytest.fixture
def other_ref(keypair: KeyPair, api: FakeApi) -> InboxRef:
    ref = InboxRef("bob@vaultsandbox.test", "hash-bob", keypair)
    api.add_inbox(ref.email_address)
    return ref


def _noop(email: Email) -> None:
    pass


class TestConnectionLifecycle:
    """Tests for keeping the connection in step with the subscriptions."""

    async def test_first_subscription_connects(
        self, strategy: StreamStrategy, connector: FakeConnector, inbox_ref: InboxRef
    ) -> None:
        """The first subscription opens one authenticated connection for its inbox."""
        strategy.subscribe(inbox_ref, _noop)

        assert len(connector.connections) == 1
        assert connector.latest.inboxes == [inbox_ref.routing_hash]
        assert connector.latest.headers == {"X-API-Key": "test-api-key"}
        assert strategy.connected

    async def test_same_inbox_reuses_connection(
        self, strategy: StreamStrategy, connector: FakeConnector, inbox_ref: InboxRef
    ) -> None:
        """More callbacks for a subscribed inbox do not reconnect."""
        strategy.subscribe(inbox_ref, _noop)
        strategy.subscribe(inbox_ref, _noop)
        assert len(connector.connections) == 1

    async def test_new_inbox_reconnects(
        self,
        strategy: StreamStrategy,
        connector: FakeConnector,
        inbox_ref: InboxRef,
        other_ref: InboxRef,
    ) -> None:
        """Subscribing another inbox replaces the connection with one covering both."""
        strategy.subscribe(inbox_ref, _noop)
        first = connector.latest
        strategy.subscribe(other_ref, _noop)

        assert first.closed
        assert connector.latest.inboxes == [inbox_ref.routing_hash, "hash-bob"]
        assert len(connector.open_connections) == 1

    async def test_removing_one_inbox_reconnects_with_rest(
        self,
        strategy: StreamStrategy,
        connector: FakeConnector,
        inbox_ref: InboxRef,
        other_ref: InboxRef,
    ) -> None:
        """Dropping one of two inboxes reconnects with the remaining hash only."""
        subscription = strategy.subscribe(inbox_ref, _noop)
        strategy.subscribe(other_ref, _noop)

        subscription.unsubscribe()

        assert connector.latest.inboxes == ["hash-bob"]
        assert len(connector.open_connections) == 1

    async def test_last_unsubscribe_disconnects(
        self, strategy: StreamStrategy, connector: FakeConnector, inbox_ref: InboxRef
    ) -> None:
        """Removing the last subscription closes the connection without reopening."""
        first = strategy.subscribe(inbox_ref, _noop)
        second = strategy.subscribe(inbox_ref, _noop)

        first.unsubscribe()
        assert not connector.latest.closed

        second.unsubscribe()
        second.unsubscribe()
        assert connector.latest.closed
        assert len(connector.connections) == 1
        assert not strategy.connected

    async def test_close(
        self, strategy: StreamStrategy, connector: FakeConnector, inbox_ref: InboxRef
    ) -> None:
        """Closing disconnects and refuses further use."""
        strategy.subscribe(inbox_ref, _noop)
        await strategy.close()

        assert connector.latest.closed
        assert len(strategy.registry) == 0
        with pytest.raises(ClientClosedError):
            strategy.subscribe(inbox_ref, _noop)


class TestMessages:
    """Tests for turning stream notifications into emails."""

    async def test_delivers_decrypted_email(
        self,
        strategy: StreamStrategy,
        connector: FakeConnector,
        api: FakeApi,
        sealer: Sealer,
        inbox_ref: InboxRef,
    ) -> None:
        """A notification is completed with a fetch, decrypted and dispatched."""
        received: list[Email] = []
        strategy.subscribe(inbox_ref, received.append)
        record = make_email_record(sealer, inbox_ref, "e1", subject="Welcome", text="Hi there")
        api.deliver(inbox_ref.email_address, record)

        await connector.latest.push(stream_message(record))

        assert [email.subject for email in received] == ["Welcome"]
        assert received[0].text == "Hi there"
        assert api.get_calls == [(inbox_ref.email_address, "e1")]

    async def test_unknown_inbox_dropped(
        self,
        strategy: StreamStrategy,
        connector: FakeConnector,
        api: FakeApi,
        sealer: Sealer,
        keypair: KeyPair,
        inbox_ref: InboxRef,
    ) -> None:
        """Notifications for inboxes without a subscription are ignored."""
        received: list[Email] = []
        strategy.subscribe(inbox_ref, received.append)
        stranger = InboxRef("eve@vaultsandbox.test", "hash-eve", keypair)
        record = make_email_record(sealer, stranger, "e1")

        await connector.latest.push(stream_message(record))

        assert received == []
        assert api.get_calls == []

    async def test_malformed_message_ignored(
        self,
        strategy: StreamStrategy,
        connector: FakeConnector,
        inbox_ref: InboxRef,
        caplog: pytest.LogCaptureFixture,
    ) -> None:
        """Messages that are not notifications are logged and skipped."""
        strategy.subscribe(inbox_ref, _noop)
        await connector.latest.push('{"hello": "world"}')
        await connector.latest.push("not json")
        assert "malformed" in caplog.text

    async def test_stale_connection_ignored(
        self,
        strategy: StreamStrategy,
        connector: FakeConnector,
        api: FakeApi,
        sealer: Sealer,
        inbox_ref: InboxRef,
        other_ref: InboxRef,
    ) -> None:
        """A replaced connection can no longer deliver."""
        received: list[Email] = []
        strategy.subscribe(inbox_ref, received.append)
        stale = connector.latest
        strategy.subscribe(other_ref, _noop)
        record = make_email_record(sealer, inbox_ref, "e1")
        api.deliver(inbox_ref.email_address, record)

        await stale.push(stream_message(record))

        assert received == []

    async def test_close_while_loading(
        self,
        strategy: StreamStrategy,
        connector: FakeConnector,
        api: FakeApi,
        sealer: Sealer,
        inbox_ref: InboxRef,
    ) -> None:
        """An email still loading when the strategy closes is discarded."""
        received: list[Email] = []
        strategy.subscribe(inbox_ref, received.append)
        record = make_email_record(sealer, inbox_ref, "e1")
        api.deliver(inbox_ref.email_address, record)
        api.hold = asyncio.Event()
        push = asyncio.create_task(connector.latest.push(stream_message(record)))
        await wait_until(lambda: bool(api.get_calls))

        await strategy.close()
        api.hold.set()
        await push

        assert received == []

    async def test_unsubscribe_while_loading(
        self,
        strategy: StreamStrategy,
        connector: FakeConnector,
        api: FakeApi,
        sealer: Sealer,
        inbox_ref: InboxRef,
    ) -> None:
        """An email still loading when its inbox is unsubscribed is discarded."""
        received: list[Email] = []
        subscription = strategy.subscribe(inbox_ref, received.append)
        connection = connector.latest
        record = make_email_record(sealer, inbox_ref, "e1")
        api.deliver(inbox_ref.email_address, record)
        api.hold = asyncio.Event()
        push = asyncio.create_task(connection.push(stream_message(record)))
        await wait_until(lambda: bool(api.get_calls))

        subscription.unsubscribe()
        assert connection.closed
        api.hold.set()
        await push

        assert received == []

    async def test_wait_for_email(
        self,
        strategy: StreamStrategy,
        connector: FakeConnector,
        api: FakeApi,
        sealer: Sealer,
        inbox_ref: InboxRef,
    ) -> None:
        """A wait resolves on the first matching notification and then unsubscribes."""
        task = asyncio.create_task(
            strategy.wait_for_email(inbox_ref, WaitOptions(subject="Reset", timeout_ms=1000))
        )
        await asyncio.sleep(0)
        for email_id, subject in [("e1", "Welcome"), ("e2", "Password Reset")]:
            record = make_email_record(sealer, inbox_ref, email_id, subject=subject)
            api.deliver(inbox_ref.email_address, record)
            await connector.latest.push(stream_message(record))

        email = await task

        assert email.id == "e2"
        assert len(strategy.registry) == 0
        assert connector.latest.closed


class TestReconnect:
    """Tests for reconnection and exhaustion."""

    async def test_error_schedules_reconnect(
        self, strategy: StreamStrategy, connector: FakeConnector, inbox_ref: InboxRef
    ) -> None:
        """A dropped connection is re-established after the backoff delay."""
        strategy.subscribe(inbox_ref, _noop)
        connector.latest.fail()

        assert connector.latest.closed
        assert strategy.reconnect_attempts == 1
        await asyncio.sleep(0.05)

        assert len(connector.connections) == 2
        assert connector.latest.inboxes == [inbox_ref.routing_hash]

    async def test_open_resets_attempts(
        self, strategy: StreamStrategy, connector: FakeConnector, inbox_ref: InboxRef
    ) -> None:
        """A successful open forgets earlier failures."""
        strategy.subscribe(inbox_ref, _noop)
        connector.latest.fail()
        await asyncio.sleep(0.05)

        connector.latest.open()

        assert strategy.reconnect_attempts == 0

    async def test_subscribe_during_backoff_does_not_reconnect(
        self, strategy: StreamStrategy, connector: FakeConnector, inbox_ref: InboxRef
    ) -> None:
        """A pending reconnect for the same inboxes is not duplicated."""
        strategy.subscribe(inbox_ref, _noop)
        connector.latest.fail()
        strategy.subscribe(inbox_ref, _noop)
        await asyncio.sleep(0.05)

        assert len(connector.connections) == 2

    async def test_connect_failure_retried(
        self, strategy: StreamStrategy, connector: FakeConnector, inbox_ref: InboxRef
    ) -> None:
        """A connector that raises is treated like a dropped connection."""
        connector.fail_connect = True
        strategy.subscribe(inbox_ref, _noop)
        assert strategy.reconnect_attempts == 1

        connector.fail_connect = False
        await asyncio.sleep(0.05)
        assert len(connector.connections) == 1

    async def test_exhaustion(
        self,
        strategy: StreamStrategy,
        connector: FakeConnector,
        inbox_ref: InboxRef,
        errors: list[StreamError],
    ) -> None:
        """Running out of attempts fails waits, reports the error and raises it once."""
        task = asyncio.create_task(strategy.wait_for_email(inbox_ref, WaitOptions(timeout_ms=5000)))
        await asyncio.sleep(0)

        for _ in range(FAST.max_reconnect_attempts):
            connector.latest.fail()
            await asyncio.sleep(0.05)
        connector.latest.fail()

        with pytest.raises(StreamExhaustedError) as exc_info:
            await task
        assert exc_info.value.attempts == 2
        assert len(errors) == 1
        assert isinstance(errors[0], StreamExhaustedError)
        assert errors[0].attempts == 2

        with pytest.raises(StreamExhaustedError):
            strategy.subscribe(inbox_ref, _noop)

        strategy.subscribe(inbox_ref, _noop)
        assert not connector.latest.closed
        assert strategy.reconnect_attempts == 0

    async def test_error_callback_failure_isolated(
        self, api: FakeApi, loader: EmailLoader, connector: FakeConnector, inbox_ref: InboxRef
    ) -> None:
        """A raising error callback does not break exhaustion handling."""

        def broken(error: StreamError) -> None:
            raise RuntimeError("callback bug")

        strategy = StreamStrategy(
            api,  # type: ignore[arg-type]
            loader,
            StreamConfig(max_reconnect_attempts=0),
            connector=connector,
            on_error=broken,
        )
        strategy.subscribe(inbox_ref, _noop)
        connector.latest.fail()

        with pytest.raises(StreamExhaustedError):
            strategy.subscribe(inbox_ref, _noop)
        await strategy.close()
