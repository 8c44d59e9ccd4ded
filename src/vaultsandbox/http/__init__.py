"""Gateway REST client."""

from .client import API_KEY_HEADER, EVENTS_ENDPOINT, ApiClient, map_error

__all__ = [
    "API_KEY_HEADER",
    "EVENTS_ENDPOINT",
    "ApiClient",
    "map_error",
]
