"""
Byte and string conversions shared by the crypto layer.

The gateway encodes envelope fields as base64url without padding and
attachment/raw bodies as standard base64. Decoders here are strict: any
character outside the alphabet raises `ValueError` instead of being
silently dropped.
"""

from __future__ import annotations

import base64


def to_base64url(data: bytes) -> str:
    """Encode bytes as unpadded base64url."""
    return base64.urlsafe_b64encode(data).rstrip(b"=").decode("ascii")


def from_base64url(value: str) -> bytes:
    """
    Decode unpadded (or padded) base64url.

    Raises:
        ValueError: If the input is not valid base64url.
    """
    padding = -len(value) % 4
    try:
        return base64.b64decode(value + "=" * padding, altchars=b"-_", validate=True)
    except ValueError as exc:
        raise ValueError(f"Invalid base64url data: {exc}") from exc


def to_base64(data: bytes) -> str:
    """Encode bytes as padded standard base64."""
    return base64.b64encode(data).decode("ascii")


def from_base64(value: str) -> bytes:
    """
    Decode standard base64.

    Raises:
        ValueError: If the input is not valid base64.
    """
    try:
        return base64.b64decode(value, validate=True)
    except ValueError as exc:
        raise ValueError(f"Invalid base64 data: {exc}") from exc


def concat_bytes(*parts: bytes | bytearray | memoryview) -> bytes:
    """Concatenate buffers into one independently owned `bytes` object."""
    return b"".join(parts)


def own_bytes(data: bytes | bytearray | memoryview) -> bytes:
    """
    Return an independently owned, immutable copy of a buffer.

    Slices of a `memoryview` and mutable `bytearray`s alias their parent
    storage. Primitives receive plain `bytes` so they never observe a view
    into a larger buffer, nor a buffer mutated after the call.
    """
    if type(data) is bytes:
        return data
    return bytes(data)
