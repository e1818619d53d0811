"""Tests for identity providers and the identity binding."""

from __future__ import annotations

import pytest
from _fakes import FakeIdentityProvider, FakeLedger

from ledgertodo.errors import IdentityUnavailable
from ledgertodo.identity import IdentityBinding, IdentityProvider, WalletIdentityProvider


class TestWalletIdentityProvider:
    def test_satisfies_protocol(self, ledger: FakeLedger) -> None:
        assert isinstance(WalletIdentityProvider(ledger), IdentityProvider)

    async def test_first_account_wins(self, ledger: FakeLedger) -> None:
        ledger.accounts = ["0xAAA", "0xBBB"]

        assert await WalletIdentityProvider(ledger).request_account() == "0xAAA"
        assert ledger.methods() == ["wallet/requestAccounts"]

    async def test_declined(self, ledger: FakeLedger) -> None:
        ledger.declined = True

        with pytest.raises(IdentityUnavailable, match="declined"):
            await WalletIdentityProvider(ledger).request_account()

    async def test_no_accounts(self, ledger: FakeLedger) -> None:
        ledger.accounts = []

        with pytest.raises(IdentityUnavailable, match="no accounts"):
            await WalletIdentityProvider(ledger).request_account()

    async def test_unreachable_wallet(self, ledger: FakeLedger) -> None:
        async def _down(*args, **kwargs):
            raise ConnectionError("Ledger gateway connection closed")

        ledger.request = _down

        with pytest.raises(IdentityUnavailable, match="unreachable"):
            await WalletIdentityProvider(ledger).request_account()

    def test_account_change_notifications(self, ledger: FakeLedger) -> None:
        provider = WalletIdentityProvider(ledger)
        seen: list[str | None] = []

        def handler(account: str | None) -> None:
            seen.append(account)

        provider.on_account_changed(handler)

        ledger.emit("wallet/accountsChanged", {"accounts": ["0xBBB", "0xCCC"]})
        ledger.emit("wallet/accountsChanged", {"accounts": []})

        assert seen == ["0xBBB", None]

    def test_remove_listener(self, ledger: FakeLedger) -> None:
        provider = WalletIdentityProvider(ledger)
        seen: list[str | None] = []

        def handler(account: str | None) -> None:
            seen.append(account)

        provider.on_account_changed(handler)
        provider.remove_account_listener(handler)

        ledger.emit("wallet/accountsChanged", {"accounts": ["0xBBB"]})

        assert seen == []
        assert ledger.subscribers["wallet/accountsChanged"] == []

    def test_duplicate_listener_registered_once(self, ledger: FakeLedger) -> None:
        provider = WalletIdentityProvider(ledger)
        seen: list[str | None] = []

        def handler(account: str | None) -> None:
            seen.append(account)

        provider.on_account_changed(handler)
        provider.on_account_changed(handler)
        ledger.emit("wallet/accountsChanged", {"accounts": ["0xBBB"]})

        assert seen == ["0xBBB"]
        assert len(ledger.subscribers["wallet/accountsChanged"]) == 1

        provider.remove_account_listener(handler)
        assert ledger.subscribers["wallet/accountsChanged"] == []


class TestIdentityBinding:
    async def test_resolve_sets_current(self) -> None:
        binding = IdentityBinding(FakeIdentityProvider("0xAAA"))
        assert binding.current is None

        assert await binding.resolve() == "0xAAA"
        assert binding.current == "0xAAA"

    async def test_resolve_without_provider(self) -> None:
        with pytest.raises(IdentityUnavailable, match="No identity provider"):
            await IdentityBinding(None).resolve()

    async def test_resolve_propagates_decline(self) -> None:
        binding = IdentityBinding(FakeIdentityProvider(None))

        with pytest.raises(IdentityUnavailable):
            await binding.resolve()
        assert binding.current is None

    async def test_provider_crash_becomes_unavailable(self) -> None:
        provider = FakeIdentityProvider("0xAAA")

        async def _crash() -> str:
            raise KeyError("accounts")

        provider.request_account = _crash
        binding = IdentityBinding(provider)

        with pytest.raises(IdentityUnavailable, match="Identity provider failed") as excinfo:
            await binding.resolve()
        assert isinstance(excinfo.value.__cause__, KeyError)
        assert binding.current is None

    async def test_changes_replace_current(self) -> None:
        provider = FakeIdentityProvider("0xAAA")
        binding = IdentityBinding(provider)
        await binding.resolve()
        seen: list[str | None] = []
        binding.bind(seen.append)

        provider.switch("0xBBB")
        provider.switch("0xBBB")
        provider.switch(None)

        assert seen == ["0xBBB", None]
        assert binding.current is None

    async def test_rebind_replaces_handler(self) -> None:
        provider = FakeIdentityProvider("0xAAA")
        binding = IdentityBinding(provider)
        first: list[str | None] = []
        second: list[str | None] = []

        binding.bind(first.append)
        binding.bind(second.append)
        provider.switch("0xBBB")

        assert first == []
        assert second == ["0xBBB"]
        assert len(provider.handlers) == 1

    def test_close_unsubscribes(self) -> None:
        provider = FakeIdentityProvider("0xAAA")
        binding = IdentityBinding(provider)
        binding.bind(lambda account: None)

        binding.close()

        assert provider.handlers == []
