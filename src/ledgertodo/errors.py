"""Failure taxonomy for the ledger-backed todo controller."""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from ledgertodo.ledger import PendingOperation


class LedgerTodoError(Exception):
    """Base class for every failure the controller can surface."""


class IdentityUnavailable(LedgerTodoError):
    """No identity provider, or the user declined account access."""


class ValidationFailure(LedgerTodoError):
    """A local precondition failed; the ledger was never contacted."""


class ReadFailure(LedgerTodoError):
    """Listing items failed (transport, RPC or decoding error)."""


class SubmitFailure(LedgerTodoError):
    """A write was rejected at submission or failed to confirm.

    ``phase`` is ``"submit"`` when the ledger never accepted the
    transaction and ``"confirm"`` when it was accepted but did not
    confirm.  In the latter case ``pending`` holds the handle that was
    returned by submission.
    """

    def __init__(
        self,
        message: str,
        *,
        phase: str = "submit",
        pending: PendingOperation | None = None,
    ) -> None:
        super().__init__(message)
        self.phase = phase
        self.pending = pending

    @property
    def submitted(self) -> bool:
        return self.pending is not None


class Busy(LedgerTodoError):
    """Another gated operation is already in flight."""


class ConfigError(LedgerTodoError, ValueError):
    """The ledger configuration file is unreadable or malformed."""
