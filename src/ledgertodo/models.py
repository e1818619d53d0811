"""Value types shared across the controller."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Generic, TypeVar

T = TypeVar("T")


@dataclass(frozen=True, slots=True)
class Item:
    """One ledger-backed task record."""

    id: str
    content: str
    completed: bool
    owner: str

    @classmethod
    def from_record(cls, record: dict[str, Any]) -> Item:
        """Decode an on-ledger ``{id, content, completed, creator}`` record.

        Ids arrive as integers (or decimal strings) and are kept as
        strings so callers never do arithmetic on them.
        """
        return cls(
            id=str(record["id"]),
            content=record["content"],
            completed=bool(record["completed"]),
            owner=record["creator"],
        )


@dataclass(frozen=True, slots=True)
class EditState:
    item_id: str
    draft_content: str


@dataclass(frozen=True, slots=True)
class Ok(Generic[T]):
    value: T = None  # type: ignore[assignment]

    @property
    def ok(self) -> bool:
        return True


@dataclass(frozen=True, slots=True)
class Err:
    error: Exception

    @property
    def ok(self) -> bool:
        return False

    @property
    def message(self) -> str:
        return str(self.error)


Result = Ok[T] | Err


@dataclass(frozen=True)
class ControllerState:
    """Read-only snapshot of every projection the presentation layer renders."""

    bound_identity: str | None = None
    items: tuple[Item, ...] = field(default_factory=tuple)
    busy: bool = False
    last_error: str | None = None
    editing: EditState | None = None
    can_commit: bool = False
