from __future__ import annotations

import time
from typing import Callable, Optional

from compendium.auth import AccessGate
from compendium.catalog import require_section_key
from compendium.editing import DraftEditor, EditorState, log_editor_timing
from compendium.errors import CommitResult, CompendiumError, EditorBusyError
from compendium.models import Section
from compendium.notifications import ToastChannel
from compendium.store import RemoteStore

SectionSaved = Callable[[str, str], None]


class SectionEditor(DraftEditor):
    """
    Draft/commit for one section's free text.

    viewing -> editing (draft seeded from committed content) -> saving -> viewing on success,
    back to editing with `error` set on failure. Nothing is shown as saved before the store
    confirms the overwrite.
    """

    action = "edit section"

    def __init__(
        self,
        store: RemoteStore,
        gate: AccessGate,
        section: Section,
        *,
        on_saved: Optional[SectionSaved] = None,
        toasts: Optional[ToastChannel] = None,
    ) -> None:
        super().__init__(store, gate, toasts=toasts)
        self.spec = require_section_key(section.section_key)
        self.character_id = section.character_id
        self.content = section.content or ""
        self.draft = self.content
        self._on_saved = on_saved

    @property
    def section_key(self) -> str:
        return self.spec.key

    @property
    def title(self) -> str:
        return self.spec.title

    def begin_edit(self) -> None:
        self._enter_edit()
        self.draft = self.content

    def update_draft(self, text: str) -> None:
        if self.state is EditorState.EDITING:
            self.draft = text or ""

    def cancel(self) -> None:
        self._leave_edit()
        self.draft = self.content

    async def save(self) -> CommitResult:
        self._gate.require_editor(self.action)
        if self.busy:
            return CommitResult.failure(EditorBusyError())
        if self.state is not EditorState.EDITING:
            return CommitResult.skipped()

        start = time.perf_counter()
        pending = self.draft
        self.state = EditorState.SAVING
        try:
            await self._store.update_section_content(self.character_id, self.section_key, pending)
        except CompendiumError as exc:
            log_editor_timing("section_editor", "save", start, key=self.section_key, ok=False)
            return self._fail(exc)

        log_editor_timing("section_editor", "save", start, key=self.section_key, ok=True)
        if self._detached:
            return self._skip_detached("Saved after the page was closed.")
        self.content = pending
        self.draft = pending
        self.state = EditorState.VIEWING
        self.error = None
        if self._on_saved is not None:
            self._on_saved(self.section_key, pending)
        message = f"{self.title} saved."
        self._toasts.success(message)
        return CommitResult.success(message)
