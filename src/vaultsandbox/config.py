"""
Client configuration.

Defaults for delivery (polling and event stream), HTTP retry and timeouts.
All durations in milliseconds unless the name says otherwise.

Configuration can be built in code, loaded from YAML, or read from the
environment:

    VAULTSANDBOX_URL        Gateway base URL (required)
    VAULTSANDBOX_API_KEY    API key (required)
    VAULTSANDBOX_STRATEGY   sse | polling | auto (optional)
"""

from __future__ import annotations

import os
from collections.abc import Mapping
from pathlib import Path
from typing import Any, Final, Literal

import yaml
from pydantic import Field, field_validator

from vaultsandbox.errors import ConfigurationError
from vaultsandbox.types.base import StrictBaseModel

POLL_INITIAL_INTERVAL_MS: Final = 2000
"""First poll interval, and the interval restored after every change."""

POLL_MAX_BACKOFF_MS: Final = 30000
"""Ceiling for the poll interval and for each individual sleep."""

POLL_BACKOFF_MULTIPLIER: Final = 1.5
"""Interval growth factor after a poll that saw no change."""

POLL_JITTER_FACTOR: Final = 0.3
"""Maximum random extension of each sleep, as a fraction of the interval."""

STREAM_RECONNECT_INTERVAL_MS: Final = 5000
"""Delay before the first reconnection attempt."""

STREAM_MAX_RECONNECT_ATTEMPTS: Final = 10
"""Reconnection attempts before the stream is declared exhausted."""

STREAM_BACKOFF_MULTIPLIER: Final = 2.0
"""Reconnection delay growth factor per failed attempt."""

HTTP_MAX_RETRIES: Final = 3
"""Retries for a request that failed with a retryable status."""

HTTP_RETRY_DELAY_MS: Final = 1000
"""Delay before the first retry; doubled on each subsequent one."""

HTTP_RETRY_ON: Final = (408, 429, 500, 502, 503, 504)
"""Statuses worth retrying: timeouts, throttling and transient server errors."""

REQUEST_TIMEOUT_SECS: Final = 30.0
"""Timeout for one HTTP request."""

WAIT_TIMEOUT_MS: Final = 30000
"""Default deadline of a wait."""

Strategy = Literal["sse", "polling", "auto"]
"""Delivery strategy selector. `auto` selects the event stream."""


class PollingConfig(StrictBaseModel):
    """Adaptive polling parameters."""

    initial_interval_ms: int = Field(default=POLL_INITIAL_INTERVAL_MS, gt=0)
    max_backoff_ms: int = Field(default=POLL_MAX_BACKOFF_MS, gt=0)
    backoff_multiplier: float = Field(default=POLL_BACKOFF_MULTIPLIER, ge=1.0)
    jitter_factor: float = Field(default=POLL_JITTER_FACTOR, ge=0.0)


class StreamConfig(StrictBaseModel):
    """Event stream reconnection parameters."""

    reconnect_interval_ms: int = Field(default=STREAM_RECONNECT_INTERVAL_MS, gt=0)
    max_reconnect_attempts: int = Field(default=STREAM_MAX_RECONNECT_ATTEMPTS, ge=0)
    backoff_multiplier: float = Field(default=STREAM_BACKOFF_MULTIPLIER, ge=1.0)


class RetryConfig(StrictBaseModel):
    """HTTP retry parameters."""

    max_retries: int = Field(default=HTTP_MAX_RETRIES, ge=0)
    retry_delay_ms: int = Field(default=HTTP_RETRY_DELAY_MS, ge=0)
    retry_on: tuple[int, ...] = HTTP_RETRY_ON


class ClientConfig(StrictBaseModel):
    """
    Everything needed to talk to one gateway.

    The API key is excluded from the repr so configs can be logged safely.
    """

    url: str
    """Gateway base URL, e.g. `https://smtp.vaultsandbox.com`."""

    api_key: str = Field(repr=False)
    """API key sent as the `X-API-Key` header."""

    strategy: Strategy = "auto"
    """Delivery strategy for waits and subscriptions."""

    polling: PollingConfig = Field(default_factory=PollingConfig)
    stream: StreamConfig = Field(default_factory=StreamConfig)
    retry: RetryConfig = Field(default_factory=RetryConfig)

    request_timeout_secs: float = Field(default=REQUEST_TIMEOUT_SECS, gt=0)
    """Timeout for one HTTP request."""

    @field_validator("url")
    @classmethod
    def _strip_trailing_slash(cls, value: str) -> str:
        if not value:
            raise ValueError("url must not be empty")
        return value.rstrip("/")

    @field_validator("api_key")
    @classmethod
    def _require_api_key(cls, value: str) -> str:
        if not value:
            raise ValueError("api_key must not be empty")
        return value

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> ClientConfig:
        """
        Build a config from `VAULTSANDBOX_*` environment variables.

        Raises:
            ConfigurationError: If the URL or API key is missing.
        """
        env = os.environ if environ is None else environ
        url = env.get("VAULTSANDBOX_URL")
        api_key = env.get("VAULTSANDBOX_API_KEY")
        if not url:
            raise ConfigurationError("VAULTSANDBOX_URL is not set")
        if not api_key:
            raise ConfigurationError("VAULTSANDBOX_API_KEY is not set")

        data: dict[str, Any] = {"url": url, "api_key": api_key}
        if strategy := env.get("VAULTSANDBOX_STRATEGY"):
            data["strategy"] = strategy
        return cls.model_validate(data)

    @classmethod
    def from_yaml_file(cls, path: Path | str) -> ClientConfig:
        """
        Load configuration from a YAML file.

        Keys may be snake_case or camelCase.

        Raises:
            FileNotFoundError: If the file does not exist.
            yaml.YAMLError: If the file is not valid YAML.
            pydantic.ValidationError: If the data fails validation.
        """
        path = Path(path)
        with path.open(encoding="utf-8") as f:
            data = yaml.safe_load(f)
        return cls.model_validate(data)

    @classmethod
    def from_yaml(cls, content: str) -> ClientConfig:
        """Load configuration from a YAML string."""
        return cls.model_validate(yaml.safe_load(content))

    @property
    def redacted_api_key(self) -> str:
        """The API key reduced to a 4-character prefix, for logs."""
        return f"{self.api_key[:4]}..."
