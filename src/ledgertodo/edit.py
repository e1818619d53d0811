"""Local draft-edit state for a single item."""

from __future__ import annotations

from ledgertodo.models import EditState, Item


class EditSession:
    """Idle, or editing exactly one item with an unsaved draft.

    Committing is the controller's job: it runs the update through the
    gate and calls :meth:`finish` only once the ledger confirmed it.
    """

    def __init__(self) -> None:
        self.state: EditState | None = None

    @property
    def can_commit(self) -> bool:
        """True when there is a draft worth saving (non-blank)."""
        return self.state is not None and bool(self.state.draft_content.strip())

    def start_edit(self, item: Item) -> EditState:
        # Any draft for a previously edited item is dropped, not merged.
        self.state = EditState(item_id=item.id, draft_content=item.content)
        return self.state

    def set_draft(self, content: str) -> EditState | None:
        if self.state is None:
            return None
        self.state = EditState(item_id=self.state.item_id, draft_content=content)
        return self.state

    def cancel_edit(self) -> None:
        self.state = None

    def finish(self, committed: EditState) -> None:
        """Return to idle if *committed* is still the active edit."""
        if self.state == committed:
            self.state = None
