"""Account identity: the provider protocol and the binding that tracks it."""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import Any, Protocol, runtime_checkable

from ledgertodo.errors import IdentityUnavailable
from ledgertodo.transport import GatewayError, LedgerTransport

log = logging.getLogger(__name__)

AccountHandler = Callable[[str | None], None]

# EIP-1193 "user rejected the request"
USER_REJECTED = 4001

ACCOUNTS_CHANGED = "wallet/accountsChanged"


@runtime_checkable
class IdentityProvider(Protocol):
    """Source of the active account and of account-change events."""

    async def request_account(self) -> str: ...

    def on_account_changed(self, handler: AccountHandler) -> None: ...

    def remove_account_listener(self, handler: AccountHandler) -> None: ...


def _first_account(accounts: Any) -> str | None:
    if isinstance(accounts, list) and accounts and isinstance(accounts[0], str) and accounts[0]:
        return accounts[0]
    return None


class WalletIdentityProvider:
    """Identity provider backed by the wallet endpoint of the ledger gateway.

    ``wallet/requestAccounts`` prompts for access; the first account is
    the active one.  The gateway pushes ``wallet/accountsChanged``
    notifications with the new account list (empty when disconnected).
    """

    def __init__(self, transport: LedgerTransport, *, timeout: float | None = 120) -> None:
        self._transport = transport
        self._timeout = timeout
        # handler -> notification adapter registered with the transport
        self._adapters: dict[AccountHandler, Callable[[dict[str, Any]], None]] = {}

    async def request_account(self) -> str:
        try:
            accounts = await self._transport.request(
                "wallet/requestAccounts", {}, timeout=self._timeout
            )
        except GatewayError as exc:
            if exc.code == USER_REJECTED:
                raise IdentityUnavailable("Account access was declined") from exc
            raise IdentityUnavailable(f"Wallet request failed: {exc}") from exc
        except (ConnectionError, TimeoutError, OSError, RuntimeError) as exc:
            raise IdentityUnavailable(f"Wallet unreachable: {exc}") from exc

        account = _first_account(accounts)
        if account is None:
            raise IdentityUnavailable("Wallet returned no accounts")
        return account

    def on_account_changed(self, handler: AccountHandler) -> None:
        if handler in self._adapters:
            return

        def _adapter(params: dict[str, Any]) -> None:
            handler(_first_account(params.get("accounts")))

        self._adapters[handler] = _adapter
        self._transport.subscribe(ACCOUNTS_CHANGED, _adapter)

    def remove_account_listener(self, handler: AccountHandler) -> None:
        adapter = self._adapters.pop(handler, None)
        if adapter is not None:
            self._transport.unsubscribe(ACCOUNTS_CHANGED, adapter)


class IdentityBinding:
    """Tracks the currently bound account and forwards provider changes.

    ``current`` is ``None`` until the first successful :meth:`resolve`
    and whenever the provider reports that no account is active.
    """

    def __init__(self, provider: IdentityProvider | None) -> None:
        self._provider = provider
        self._handler: AccountHandler | None = None
        self.current: str | None = None

    async def resolve(self) -> str:
        if self._provider is None:
            raise IdentityUnavailable("No identity provider available")
        try:
            account = await self._provider.request_account()
        except IdentityUnavailable:
            raise
        except Exception as exc:
            log.exception("Identity provider failed")
            raise IdentityUnavailable(f"Identity provider failed: {exc}") from exc
        if not account:
            raise IdentityUnavailable("Identity provider returned no account")
        self.current = account
        log.info("Bound identity %s", account)
        return account

    def bind(self, handler: AccountHandler) -> None:
        """Subscribe *handler* to account changes (replaces any previous one)."""
        if self._provider is None:
            return
        self.close()
        self._handler = handler
        self._provider.on_account_changed(self._on_change)

    def close(self) -> None:
        """Unsubscribe from the provider."""
        if self._provider is not None and self._handler is not None:
            self._provider.remove_account_listener(self._on_change)
        self._handler = None

    def _on_change(self, account: str | None) -> None:
        if account == self.current:
            return
        log.info("Identity changed from %s to %s", self.current, account)
        self.current = account or None
        if self._handler is not None:
            self._handler(self.current)
