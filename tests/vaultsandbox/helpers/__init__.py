"""Shared test helpers for the VaultSandbox client."""

from .builders import (
    make_email_record,
    make_inbox_ref,
    make_metadata,
    make_parsed,
    make_raw_record,
    stream_message,
)
from .client import POLLING_CONFIG, make_client
from .crypto import DEFAULT_SUITE, FakeKem, FakeSigner, Sealer, flip_bit, make_keypair
from .gateway import FakeGateway
from .mocks import TEST_CONFIG, FakeApi, FakeConnection, FakeConnector, wait_until

__all__ = [
    # Crypto
    "DEFAULT_SUITE",
    "FakeKem",
    "FakeSigner",
    "Sealer",
    "flip_bit",
    "make_keypair",
    # Builders
    "make_email_record",
    "make_inbox_ref",
    "make_metadata",
    "make_parsed",
    "make_raw_record",
    "stream_message",
    # Client
    "POLLING_CONFIG",
    "make_client",
    # Mocks
    "TEST_CONFIG",
    "FakeApi",
    "FakeConnection",
    "FakeConnector",
    "FakeGateway",
    "wait_until",
]
