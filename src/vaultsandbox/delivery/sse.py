"""
Server-Sent Events transport for the gateway event stream.

The stream is a long-lived `GET` whose body is a sequence of text frames:

    : comment
    event: message
    id: 42
    data: {"inboxId": "...", ...}
    <blank line>

A frame is dispatched on the blank line. Multiple `data:` lines are joined
with newlines. Only frames of the default `message` type reach the handler.

Connector contract:

- `connect(url, headers, handlers)` starts a connection and returns at once.
- The connection reports back through `on_open`, `on_message` and `on_error`.
- The end of the response body is an error: the gateway never closes a
  healthy stream.
- `close()` is synchronous and idempotent. No handler fires after it.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass
from typing import Protocol

import httpx

from vaultsandbox.errors import StreamError

logger = logging.getLogger(__name__)

CONNECT_TIMEOUT_SECS = 10.0
"""Timeout for establishing the stream. Reads never time out."""


@dataclass(frozen=True, slots=True)
class SseEvent:
    """One dispatched SSE frame."""

    data: str
    event: str = "message"
    id: str | None = None
    retry: int | None = None


class SseParser:
    """Incremental line-oriented SSE frame parser."""

    def __init__(self) -> None:
        self._data: list[str] = []
        self._event = ""
        self._id: str | None = None
        self._retry: int | None = None

    def feed_line(self, line: str) -> SseEvent | None:
        """
        Consume one line (without its terminator).

        Returns:
            The completed event when `line` is the blank line ending a frame
            that carried data, otherwise None.
        """
        if not line:
            return self._dispatch()
        if line.startswith(":"):
            return None

        name, sep, value = line.partition(":")
        if sep and value.startswith(" "):
            value = value[1:]

        match name:
            case "data":
                self._data.append(value)
            case "event":
                self._event = value
            case "id":
                if "\0" not in value:
                    self._id = value
            case "retry":
                if value.isdigit():
                    self._retry = int(value)
        return None

    def _dispatch(self) -> SseEvent | None:
        data, event = self._data, self._event
        self._data, self._event = [], ""
        if not data:
            return None
        return SseEvent(
            data="\n".join(data), event=event or "message", id=self._id, retry=self._retry
        )


@dataclass(frozen=True, slots=True)
class StreamHandlers:
    """Callbacks a connection reports to."""

    on_open: Callable[[], None]
    on_message: Callable[[str], Awaitable[None]]
    on_error: Callable[[BaseException], None]


class EventStreamConnection(Protocol):
    """A live stream. Closing it silences all of its handlers."""

    def close(self) -> None: ...


class EventStreamConnector(Protocol):
    """Opens authenticated event-stream connections."""

    def connect(
        self, url: str, headers: Mapping[str, str], handlers: StreamHandlers
    ) -> EventStreamConnection: ...


class HttpxEventStreamConnection:
    """An SSE connection read by a background task."""

    def __init__(
        self,
        client: httpx.AsyncClient,
        url: str,
        headers: Mapping[str, str],
        handlers: StreamHandlers,
    ) -> None:
        self._client = client
        self._url = url
        self._headers = {
            **headers,
            "Accept": "text/event-stream",
            "Cache-Control": "no-cache",
        }
        self._handlers = handlers
        self._closed = False
        self._task: asyncio.Task[None] | None = None

    @property
    def closed(self) -> bool:
        return self._closed

    def start(self) -> None:
        """Start reading. Must be called from a running event loop."""
        self._task = asyncio.get_running_loop().create_task(self._run())

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        # The reader may be closing its own connection from inside a handler.
        if self._task is not None and self._task is not asyncio.current_task():
            self._task.cancel()

    async def _run(self) -> None:
        try:
            async with self._client.stream("GET", self._url, headers=self._headers) as response:
                if response.status_code != 200:
                    raise StreamError(f"Event stream rejected with HTTP {response.status_code}")
                if self._closed:
                    return
                self._handlers.on_open()

                parser = SseParser()
                async for line in response.aiter_lines():
                    event = parser.feed_line(line)
                    if event is None or event.event != "message":
                        continue
                    await self._handlers.on_message(event.data)
                    if self._closed:
                        return
            raise StreamError("Event stream ended")
        except asyncio.CancelledError:
            raise
        except Exception as e:
            if self._closed:
                return
            logger.debug("Event stream connection failed: %s", e)
            self._handlers.on_error(e)


class HttpxEventStreamConnector:
    """
    Opens SSE connections over an `httpx.AsyncClient`.

    The connector owns its client unless one is injected.
    """

    def __init__(self, client: httpx.AsyncClient | None = None) -> None:
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(
            timeout=httpx.Timeout(None, connect=CONNECT_TIMEOUT_SECS)
        )

    def connect(
        self, url: str, headers: Mapping[str, str], handlers: StreamHandlers
    ) -> HttpxEventStreamConnection:
        connection = HttpxEventStreamConnection(self._client, url, headers, handlers)
        connection.start()
        return connection

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()
