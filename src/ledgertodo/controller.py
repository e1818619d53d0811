"""Synchronization controller between the todo contract and a local view.

Every ledger interaction is a *gated operation*: clear the last error,
take the :class:`~ledgertodo.gate.MutationGate`, optionally run one write
(submit + confirm), then re-list the whole item set and swap it into the
cache.  Failures land in ``last_error``; the cache keeps its last good
value and the gate is always released.

Identity switches bump a generation counter.  A gated operation that
finishes under an older generation has its refresh discarded, and a
reload for the new identity runs as soon as the gate is free.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import AsyncIterator, Awaitable, Callable, Coroutine
from typing import Any

from ledgertodo.cache import ListCache
from ledgertodo.config import LedgerConfig
from ledgertodo.edit import EditSession
from ledgertodo.errors import Busy, IdentityUnavailable, LedgerTodoError, ValidationFailure
from ledgertodo.gate import MutationGate
from ledgertodo.identity import IdentityBinding, IdentityProvider, WalletIdentityProvider
from ledgertodo.ledger import LedgerClient, LedgerSchema
from ledgertodo.models import ControllerState, EditState, Err, Item, Ok, Result
from ledgertodo.transport import JsonLineTransport, LedgerTransport

log = logging.getLogger(__name__)

ChangeHandler = Callable[[ControllerState], None]
Operation = Callable[[LedgerClient], Awaitable[None]]


class TodoController:
    """Owns the cache, edit session, error channel and gate for one user."""

    def __init__(
        self,
        provider: IdentityProvider | None,
        transport: LedgerTransport,
        schema: LedgerSchema,
    ) -> None:
        self._identity = IdentityBinding(provider)
        self._transport = transport
        self._schema = schema
        self._client: LedgerClient | None = None
        self._cache = ListCache()
        self._edit = EditSession()
        self._gate = MutationGate(on_change=lambda _busy: self._notify())
        self._last_error: str | None = None
        self._generation = 0
        self._reload_pending = False
        self._change_handlers: list[ChangeHandler] = []
        self._tasks: set[asyncio.Task[Any]] = set()

    # -- Projections --

    @property
    def bound_identity(self) -> str | None:
        return self._identity.current

    @property
    def items(self) -> tuple[Item, ...]:
        return self._cache.items

    @property
    def busy(self) -> bool:
        return self._gate.busy

    @property
    def last_error(self) -> str | None:
        return self._last_error

    @property
    def editing(self) -> EditState | None:
        return self._edit.state

    @property
    def can_commit(self) -> bool:
        """Whether a save control for the current edit should be enabled."""
        return self._edit.can_commit and not self._gate.busy

    @property
    def state(self) -> ControllerState:
        return ControllerState(
            bound_identity=self.bound_identity,
            items=self.items,
            busy=self.busy,
            last_error=self.last_error,
            editing=self.editing,
            can_commit=self.can_commit,
        )

    def on_change(self, handler: ChangeHandler) -> None:
        """Register a handler called with a fresh state snapshot on every change."""
        self._change_handlers.append(handler)

    def remove_change_handler(self, handler: ChangeHandler) -> None:
        if handler in self._change_handlers:
            self._change_handlers.remove(handler)

    # -- Lifecycle --

    async def start(self) -> Result[tuple[Item, ...]]:
        """Resolve the account, subscribe to changes and run the initial load."""
        self._set_error(None)
        try:
            account = await self._identity.resolve()
        except IdentityUnavailable as exc:
            log.warning("Cannot bind identity: %s", exc)
            self._set_error(str(exc))
            return Err(exc)

        self._identity.bind(self._on_identity_changed)
        self._rebind(account)
        return await self.refresh()

    async def close(self) -> None:
        """Unsubscribe from the identity provider and wait for background work."""
        self._identity.close()
        await self.drain()

    async def __aenter__(self) -> TodoController:
        await self.start()
        return self

    async def __aexit__(self, *exc: object) -> None:
        await self.close()

    def dispatch(self, command: Coroutine[Any, Any, Any]) -> asyncio.Task[Any]:
        """Run *command* fire-and-forget; completion shows up in the projections."""
        task = asyncio.get_running_loop().create_task(command)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def drain(self) -> None:
        """Wait until every dispatched command and background reload finished."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    # -- Commands --

    async def refresh(self) -> Result[tuple[Item, ...]]:
        return await self._gated("fetch todos")

    async def create_item(self, content: str) -> Result[tuple[Item, ...]]:
        return await self._gated("create todo", lambda client: client.create(content))

    async def toggle_completion(self, item_id: str) -> Result[tuple[Item, ...]]:
        return await self._gated("toggle todo", lambda client: client.toggle_completion(item_id))

    async def delete_item(self, item_id: str) -> Result[tuple[Item, ...]]:
        return await self._gated("delete todo", lambda client: client.delete(item_id))

    def start_edit(self, item: Item) -> EditState:
        state = self._edit.start_edit(item)
        self._notify()
        return state

    def set_draft(self, content: str) -> EditState | None:
        state = self._edit.set_draft(content)
        self._notify()
        return state

    def cancel_edit(self) -> None:
        self._edit.cancel_edit()
        self._notify()

    async def commit_edit(self) -> Result[tuple[Item, ...]]:
        """Write the draft to the ledger; the edit closes only once confirmed.

        With nothing being edited this is a no-op: no ledger call and no
        state change.
        """
        edit = self._edit.state
        if edit is None:
            return Err(ValidationFailure("No todo is being edited"))

        async def _update(client: LedgerClient) -> None:
            await client.update(edit.item_id, edit.draft_content)
            self._edit.finish(edit)

        return await self._gated("update todo", _update)

    # -- Internal --

    async def _gated(
        self, action: str, operation: Operation | None = None
    ) -> Result[tuple[Item, ...]]:
        if self._gate.busy:
            log.warning("Rejected %s: another ledger operation is in progress", action)
            return Err(Busy("Another ledger operation is still in progress"))

        client = self._client
        if client is None:
            exc = IdentityUnavailable("No account connected")
            self._set_error(f"Failed to {action}: {exc}")
            return Err(exc)

        generation = self._generation
        self._last_error = None
        result: Result[tuple[Item, ...]]
        try:
            async with self._gate.hold():
                if operation is not None:
                    await operation(client)
                if generation == self._generation:
                    items = await client.list()
                    if generation == self._generation:
                        self._cache.replace(items)
                        log.info("Loaded %d todos for %s", len(items), client.account)
                    else:
                        log.info("Discarding stale refresh for %s", client.account)
                else:
                    log.info("Skipping refresh for %s: identity changed", client.account)
                result = Ok(self._cache.items)
        except LedgerTodoError as exc:
            self._record_failure(action, exc, generation)
            result = Err(exc)
        except Exception as exc:
            log.exception("Unexpected failure during %s", action)
            self._record_failure(action, exc, generation)
            result = Err(exc)

        if self._reload_pending:
            self._reload_pending = False
            if self._client is not None:
                reload = await self._gated("fetch todos")
                if operation is None or isinstance(result, Ok):
                    result = reload
        self._notify()
        return result

    def _record_failure(self, action: str, exc: Exception, generation: int) -> None:
        if generation != self._generation:
            log.warning("Dropping %s failure from previous identity: %s", action, exc)
            return
        log.warning("Failed to %s: %s", action, exc)
        self._last_error = f"Failed to {action}: {exc}"

    def _rebind(self, account: str | None) -> None:
        self._generation += 1
        self._cache.clear()
        self._edit.cancel_edit()
        self._client = (
            LedgerClient(self._transport, self._schema, account) if account is not None else None
        )

    def _on_identity_changed(self, account: str | None) -> None:
        self._rebind(account)
        if account is not None:
            if self._gate.busy:
                self._reload_pending = True
            else:
                self.dispatch(self.refresh())
        self._notify()

    def _set_error(self, message: str | None) -> None:
        self._last_error = message
        self._notify()

    def _notify(self) -> None:
        if not self._change_handlers:
            return
        snapshot = self.state
        for handler in list(self._change_handlers):
            try:
                handler(snapshot)
            except Exception:
                log.exception("Change handler error")


@contextlib.asynccontextmanager
async def connect(config: LedgerConfig) -> AsyncIterator[TodoController]:
    """Open the gateway transport and a started controller bound to its wallet."""
    async with JsonLineTransport(config.endpoint) as transport:
        provider = WalletIdentityProvider(transport, timeout=config.request_timeout)
        controller = TodoController(provider, transport, config.schema())
        async with controller:
            yield controller
