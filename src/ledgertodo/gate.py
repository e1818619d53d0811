"""Single-flight gate for ledger operations."""

from __future__ import annotations

import contextlib
import logging
from collections.abc import AsyncIterator, Callable

from ledgertodo.errors import Busy

log = logging.getLogger(__name__)


class MutationGate:
    """At most one gated operation (load or write) in flight at a time.

    No queueing and no reentrancy: a second :meth:`acquire` while held
    raises :class:`Busy`.  Use :meth:`hold` so release happens on every
    exit path.
    """

    def __init__(self, on_change: Callable[[bool], None] | None = None) -> None:
        self._busy = False
        self._on_change = on_change

    @property
    def busy(self) -> bool:
        return self._busy

    def acquire(self) -> None:
        if self._busy:
            raise Busy("Another ledger operation is still in progress")
        self._set(True)

    def release(self) -> None:
        self._set(False)

    @contextlib.asynccontextmanager
    async def hold(self) -> AsyncIterator[None]:
        self.acquire()
        try:
            yield
        finally:
            self.release()

    def _set(self, busy: bool) -> None:
        if busy == self._busy:
            return
        self._busy = busy
        if self._on_change is not None:
            try:
                self._on_change(busy)
            except Exception:
                log.exception("Gate change handler error")
