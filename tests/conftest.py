"""Shared test fixtures: a fake ledger gateway, a wallet and a controller."""

from __future__ import annotations

import pytest
from _fakes import CONTRACT, FakeIdentityProvider, FakeLedger

from ledgertodo.controller import TodoController
from ledgertodo.ledger import LedgerSchema


@pytest.fixture()
def ledger() -> FakeLedger:
    return FakeLedger()


@pytest.fixture()
def provider() -> FakeIdentityProvider:
    return FakeIdentityProvider()


@pytest.fixture()
def schema() -> LedgerSchema:
    return LedgerSchema(contract_address=CONTRACT)


@pytest.fixture()
def controller(
    ledger: FakeLedger, provider: FakeIdentityProvider, schema: LedgerSchema
) -> TodoController:
    return TodoController(provider, ledger, schema)
