"""Render-ready copy of the ledger's item set."""

from __future__ import annotations

from collections.abc import Iterable

from ledgertodo.models import Item


class ListCache:
    """Holds the last successfully listed items for the bound identity.

    Contents are only ever replaced as a whole; readers get an immutable
    tuple and never observe a half-applied refresh.
    """

    def __init__(self) -> None:
        self._items: tuple[Item, ...] = ()

    @property
    def items(self) -> tuple[Item, ...]:
        return self._items

    def replace(self, items: Iterable[Item]) -> None:
        self._items = tuple(items)

    def clear(self) -> None:
        self._items = ()
