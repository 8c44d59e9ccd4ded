"""
HTTP client for the VaultSandbox gateway REST API.

Every request carries the `X-API-Key` header. Requests that fail with a
retryable status are retried with exponential backoff:

    delay(attempt) = retry_delay_ms * 2^attempt

Everything else is mapped onto the client's exception hierarchy:

- no response at all           -> NetworkError
- 404 mentioning an inbox      -> InboxNotFoundError
- 404 mentioning an email      -> EmailNotFoundError
- any other non-2xx status     -> ApiError
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable, Iterable
from typing import Any
from urllib.parse import quote, urlencode

import httpx
from pydantic import TypeAdapter

from vaultsandbox.config import ClientConfig
from vaultsandbox.errors import (
    ApiError,
    EmailNotFoundError,
    InboxNotFoundError,
    NetworkError,
    VaultSandboxError,
)
from vaultsandbox.types import (
    EmailRecord,
    InboxRecord,
    RawEmailRecord,
    ServerInfo,
    SyncSnapshot,
)

logger = logging.getLogger(__name__)

API_KEY_HEADER = "X-API-Key"
"""Header carrying the API key on every request, including the event stream."""

EVENTS_ENDPOINT = "/api/events"
"""Server-Sent Events endpoint multiplexing new-email notifications."""

_EMAIL_LIST = TypeAdapter(list[EmailRecord])

Sleep = Callable[[float], Awaitable[None]]


def _inbox_path(email_address: str) -> str:
    return f"/api/inboxes/{quote(email_address, safe='')}"


def _email_path(email_address: str, email_id: str) -> str:
    return f"{_inbox_path(email_address)}/emails/{quote(email_id, safe='')}"


def _error_message(response: httpx.Response) -> str:
    """Extract the gateway's `{"error": ...}` message, falling back to the reason phrase."""
    try:
        body = response.json()
    except ValueError:
        body = None
    if isinstance(body, dict) and isinstance(body.get("error"), str):
        return body["error"]
    return response.reason_phrase or f"HTTP {response.status_code}"


def map_error(response: httpx.Response) -> VaultSandboxError:
    """Convert a non-successful response into a client exception."""
    status = response.status_code
    message = _error_message(response)
    if status == 404:
        lowered = message.lower()
        if "inbox" in lowered:
            return InboxNotFoundError(message)
        if "email" in lowered:
            return EmailNotFoundError(message)
    return ApiError(status, message)


class ApiClient:
    """
    Thin async wrapper over the gateway REST API.

    Owns one `httpx.AsyncClient`. Use as an async context manager or call
    `aclose()` when done.
    """

    def __init__(
        self,
        config: ClientConfig,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self.config = config
        self._sleep = sleep
        self._http = httpx.AsyncClient(
            base_url=config.url,
            headers={API_KEY_HEADER: config.api_key, "Content-Type": "application/json"},
            timeout=config.request_timeout_secs,
            transport=transport,
        )

    @property
    def base_url(self) -> str:
        return self.config.url

    @property
    def auth_headers(self) -> dict[str, str]:
        """Headers the event stream must send to authenticate."""
        return {API_KEY_HEADER: self.config.api_key}

    async def __aenter__(self) -> ApiClient:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._http.aclose()

    async def _request(self, method: str, path: str, *, json: Any = None) -> httpx.Response:
        retry = self.config.retry
        attempt = 0
        while True:
            try:
                response = await self._http.request(method, path, json=json)
            except httpx.RequestError as exc:
                raise NetworkError(f"Network error during {method} {path}: {exc}") from exc

            if response.is_success:
                return response

            if attempt < retry.max_retries and response.status_code in retry.retry_on:
                delay_ms = retry.retry_delay_ms * 2**attempt
                logger.debug(
                    "%s %s returned %d, retrying in %dms (attempt %d/%d)",
                    method,
                    path,
                    response.status_code,
                    delay_ms,
                    attempt + 1,
                    retry.max_retries,
                )
                attempt += 1
                await self._sleep(delay_ms / 1000)
                continue

            raise map_error(response)

    @staticmethod
    def _parse(validate: Callable[[Any], Any], response: httpx.Response) -> Any:
        # pydantic.ValidationError is a ValueError, as is a JSON decode error.
        try:
            return validate(response.json())
        except (ValueError, TypeError, AttributeError) as exc:
            raise ApiError(response.status_code, f"Malformed response body: {exc}") from exc

    # Server

    async def get_server_info(self) -> ServerInfo:
        """Fetch the gateway's algorithms, signing key and context string."""
        response = await self._request("GET", "/api/server-info")
        return self._parse(ServerInfo.model_validate, response)

    async def check_key(self) -> bool:
        """Return whether the configured API key is accepted."""
        response = await self._request("GET", "/api/check-key")
        return bool(self._parse(lambda body: body.get("ok", False), response))

    # Inboxes

    async def create_inbox(
        self,
        public_key_b64: str,
        ttl: int | None = None,
        email_address: str | None = None,
    ) -> InboxRecord:
        """
        Register a new inbox for the given KEM public key.

        Args:
            public_key_b64: Base64url ML-KEM-768 public key.
            ttl: Inbox lifetime in seconds. Server default when omitted.
            email_address: Desired address or domain.
        """
        payload: dict[str, Any] = {"clientKemPk": public_key_b64}
        if ttl is not None:
            payload["ttl"] = ttl
        if email_address is not None:
            payload["emailAddress"] = email_address
        response = await self._request("POST", "/api/inboxes", json=payload)
        return self._parse(InboxRecord.model_validate, response)

    async def delete_inbox(self, email_address: str) -> None:
        await self._request("DELETE", _inbox_path(email_address))

    async def delete_all_inboxes(self) -> int:
        """Delete every inbox owned by the API key. Returns how many were deleted."""
        response = await self._request("DELETE", "/api/inboxes")
        return int(self._parse(lambda body: body.get("deleted", 0), response))

    async def get_sync_status(self, email_address: str) -> SyncSnapshot:
        """Fetch the inbox's count-and-digest change detector."""
        response = await self._request("GET", f"{_inbox_path(email_address)}/sync")
        return self._parse(SyncSnapshot.model_validate, response)

    # Emails

    async def list_emails(self, email_address: str) -> list[EmailRecord]:
        response = await self._request("GET", f"{_inbox_path(email_address)}/emails")
        return self._parse(_EMAIL_LIST.validate_python, response)

    async def get_email(self, email_address: str, email_id: str) -> EmailRecord:
        response = await self._request("GET", _email_path(email_address, email_id))
        return self._parse(EmailRecord.model_validate, response)

    async def get_raw_email(self, email_address: str, email_id: str) -> RawEmailRecord:
        response = await self._request("GET", f"{_email_path(email_address, email_id)}/raw")
        return self._parse(RawEmailRecord.model_validate, response)

    async def mark_email_as_read(self, email_address: str, email_id: str) -> None:
        await self._request("PATCH", f"{_email_path(email_address, email_id)}/read")

    async def delete_email(self, email_address: str, email_id: str) -> None:
        await self._request("DELETE", _email_path(email_address, email_id))

    # Event stream

    def events_url(self, routing_hashes: Iterable[str]) -> str:
        """Build the event stream URL subscribed to the given inbox routing hashes."""
        query = urlencode({"inboxes": ",".join(routing_hashes)}, safe=",")
        return f"{self.base_url}{EVENTS_ENDPOINT}?{query}"
