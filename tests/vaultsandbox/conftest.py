"""Fixtures wiring the client's layers to in-memory fakes."""

from __future__ import annotations

from collections.abc import AsyncIterator

import pytest

from tests.vaultsandbox.helpers import (
    FakeApi,
    FakeConnector,
    FakeGateway,
    FakeKem,
    FakeSigner,
    Sealer,
    make_client,
    make_inbox_ref,
    make_keypair,
)
from vaultsandbox.client import VaultSandboxClient
from vaultsandbox.crypto import Decryptor, KeyPair
from vaultsandbox.delivery import InboxRef
from vaultsandbox.email import EmailLoader


@pytest.fixture
def kem() -> FakeKem:
    return FakeKem()


@pytest.fixture
def signer() -> FakeSigner:
    return FakeSigner()


@pytest.fixture
def sealer(kem: FakeKem, signer: FakeSigner) -> Sealer:
    return Sealer(kem=kem, signer=signer)


@pytest.fixture
def keypair(kem: FakeKem) -> KeyPair:
    return make_keypair(kem)


@pytest.fixture
def decryptor(kem: FakeKem, signer: FakeSigner, sealer: Sealer) -> Decryptor:
    return Decryptor(kem=kem, signer=signer, trusted_key=sealer.server_sig_pk)


@pytest.fixture
def inbox_ref(keypair: KeyPair) -> InboxRef:
    return make_inbox_ref(keypair)


@pytest.fixture
def api(inbox_ref: InboxRef) -> FakeApi:
    api = FakeApi()
    api.add_inbox(inbox_ref.email_address)
    return api


@pytest.fixture
def loader(api: FakeApi, decryptor: Decryptor) -> EmailLoader:
    return EmailLoader(api, decryptor)  # type: ignore[arg-type]


@pytest.fixture
def connector() -> FakeConnector:
    return FakeConnector()


@pytest.fixture
def gateway(sealer: Sealer) -> FakeGateway:
    return FakeGateway(sealer)


@pytest.fixture
async def client(
    gateway: FakeGateway, kem: FakeKem, signer: FakeSigner, connector: FakeConnector
) -> AsyncIterator[VaultSandboxClient]:
    client = make_client(gateway, kem, signer, connector)
    yield client
    await client.close()
