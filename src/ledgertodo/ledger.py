"""Typed gateway to the todo contract.

Reads go through ``ledger/call``.  Writes are two-phase: ``ledger/send``
submits a transaction and returns its hash, then ``ledger/wait`` blocks
until the transaction is mined with the configured number of
confirmations.  A write only counts as done once confirmation succeeds,
because a ``list()`` issued earlier may not observe it yet.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any

from jsonschema import Draft202012Validator, ValidationError

from ledgertodo.errors import ReadFailure, SubmitFailure, ValidationFailure
from ledgertodo.models import Item
from ledgertodo.transport import GatewayError, LedgerTransport

log = logging.getLogger(__name__)

DEFAULT_FUNCTIONS: dict[str, str] = {
    "list": "getUserTodos",
    "create": "createTodo",
    "update": "updateTodo",
    "toggle": "toggleCompleted",
    "delete": "deleteTodo",
}

ITEM_RECORD_SCHEMA: dict[str, Any] = {
    "$schema": "https://json-schema.org/draft/2020-12/schema",
    "type": "object",
    "required": ["id", "content", "completed", "creator"],
    "properties": {
        "id": {
            "oneOf": [
                {"type": "integer", "minimum": 0},
                {"type": "string", "pattern": "^[0-9]+$"},
            ]
        },
        "content": {"type": "string"},
        "completed": {"type": "boolean"},
        "creator": {"type": "string", "minLength": 1},
    },
}

# Transport-level failures that are reported, never propagated raw.
_TRANSPORT_ERRORS = (GatewayError, ConnectionError, TimeoutError, OSError, RuntimeError)


@dataclass(frozen=True)
class LedgerSchema:
    """ABI-equivalent description of the contract the client talks to."""

    contract_address: str
    functions: dict[str, str] = field(default_factory=lambda: dict(DEFAULT_FUNCTIONS))
    record_schema: dict[str, Any] = field(default_factory=lambda: ITEM_RECORD_SCHEMA)
    confirmations: int = 1
    timeout: float | None = 120

    def function(self, operation: str) -> str:
        return self.functions.get(operation, DEFAULT_FUNCTIONS[operation])


@dataclass(frozen=True)
class PendingOperation:
    """Handle for a submitted but not yet confirmed transaction."""

    tx_hash: str
    function: str
    args: tuple[Any, ...] = ()


def _require_content(content: str) -> str:
    if not isinstance(content, str) or not content.strip():
        raise ValidationFailure("Todo content must not be empty")
    return content


def _ledger_id(item_id: str) -> int | str:
    """Contract ids are uint256; send them as integers when they look like one."""
    return int(item_id) if isinstance(item_id, str) and item_id.isdigit() else item_id


class LedgerClient:
    """Reads and writes one account's todos on the contract.

    Bound to a single account for its whole life; an account switch
    builds a new client.
    """

    def __init__(self, transport: LedgerTransport, schema: LedgerSchema, account: str) -> None:
        self._transport = transport
        self._schema = schema
        self._validator = Draft202012Validator(schema.record_schema)
        self.account = account

    # -- Reads --

    async def list(self) -> list[Item]:
        """Return every item the bound account owns.

        All-or-nothing: a single undecodable record fails the whole read.
        """
        function = self._schema.function("list")
        try:
            result = await self._transport.request(
                "ledger/call",
                self._call_params(function, ()),
                timeout=self._schema.timeout,
            )
        except _TRANSPORT_ERRORS as exc:
            raise ReadFailure(f"{function} failed: {exc}") from exc

        if not isinstance(result, list):
            raise ReadFailure(f"{function} returned {type(result).__name__}, expected a list")

        items: list[Item] = []
        for record in result:
            try:
                self._validator.validate(record)
            except ValidationError as exc:
                raise ReadFailure(f"Malformed todo record: {exc.message}") from exc
            items.append(Item.from_record(record))
        log.debug("%s returned %d items for %s", function, len(items), self.account)
        return items

    # -- Writes --

    async def create(self, content: str) -> None:
        await self._write("create", _require_content(content))

    async def update(self, item_id: str, content: str) -> None:
        await self._write("update", _ledger_id(item_id), _require_content(content))

    async def toggle_completion(self, item_id: str) -> None:
        await self._write("toggle", _ledger_id(item_id))

    async def delete(self, item_id: str) -> None:
        await self._write("delete", _ledger_id(item_id))

    async def submit(self, function: str, args: tuple[Any, ...]) -> PendingOperation:
        """Phase one: hand the transaction to the ledger."""
        try:
            result = await self._transport.request(
                "ledger/send",
                self._call_params(function, args),
                timeout=self._schema.timeout,
            )
        except _TRANSPORT_ERRORS as exc:
            raise SubmitFailure(f"{function} rejected: {exc}", phase="submit") from exc

        tx_hash = result.get("txHash") if isinstance(result, dict) else None
        if not isinstance(tx_hash, str) or not tx_hash:
            raise SubmitFailure(f"{function} returned no transaction hash", phase="submit")
        log.debug("Submitted %s as %s", function, tx_hash)
        return PendingOperation(tx_hash=tx_hash, function=function, args=args)

    async def confirm(self, pending: PendingOperation) -> dict[str, Any]:
        """Phase two: wait until the transaction is mined and succeeded."""
        try:
            receipt = await self._transport.request(
                "ledger/wait",
                {"txHash": pending.tx_hash, "confirmations": self._schema.confirmations},
                timeout=self._schema.timeout,
            )
        except _TRANSPORT_ERRORS as exc:
            raise SubmitFailure(
                f"{pending.function} submitted as {pending.tx_hash} but not confirmed: {exc}",
                phase="confirm",
                pending=pending,
            ) from exc

        if not isinstance(receipt, dict) or receipt.get("status") != 1:
            raise SubmitFailure(
                f"{pending.function} transaction {pending.tx_hash} reverted",
                phase="confirm",
                pending=pending,
            )
        return receipt

    # -- Internal --

    async def _write(self, operation: str, *args: Any) -> None:
        pending = await self.submit(self._schema.function(operation), args)
        await self.confirm(pending)
        log.info("%s confirmed (%s)", pending.function, pending.tx_hash)

    def _call_params(self, function: str, args: tuple[Any, ...]) -> dict[str, Any]:
        return {
            "to": self._schema.contract_address,
            "from": self.account,
            "function": function,
            "args": list(args),
        }
