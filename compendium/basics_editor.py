from __future__ import annotations

import time
from typing import Callable, Optional

from compendium.auth import AccessGate
from compendium.editing import DraftEditor, EditorState, log_editor_timing
from compendium.errors import CommitResult, CompendiumError, EditorBusyError, ValidationError
from compendium.models import Character, RosterEntry
from compendium.notifications import ToastChannel
from compendium.store import DEFAULT_CHARACTER_TYPE, RemoteStore

BasicsSaved = Callable[[str, str], None]

SAVED_MESSAGES: dict[str, str] = {
    "name": "Name updated.",
    "intro": "Introduction saved.",
}


class BasicsFieldEditor(DraftEditor):
    """Draft/commit for the character's name or intro, same protocol as a section."""

    def __init__(
        self,
        store: RemoteStore,
        gate: AccessGate,
        character: Character,
        field_name: str,
        *,
        on_saved: Optional[BasicsSaved] = None,
        toasts: Optional[ToastChannel] = None,
    ) -> None:
        if field_name not in SAVED_MESSAGES:
            raise ValidationError(f"Unsupported character field '{field_name}'.", field=field_name)
        super().__init__(store, gate, toasts=toasts)
        self.action = f"edit {field_name}"
        self.character_id = character.id
        self.field_name = field_name
        self.value: str = getattr(character, field_name) or ""
        self.draft = self.value
        self._on_saved = on_saved

    def begin_edit(self) -> None:
        self._enter_edit()
        self.draft = self.value

    def update_draft(self, text: str) -> None:
        if self.state is EditorState.EDITING:
            self.draft = text or ""

    def cancel(self) -> None:
        self._leave_edit()
        self.draft = self.value

    async def save(self) -> CommitResult:
        self._gate.require_editor(self.action)
        if self.busy:
            return CommitResult.failure(EditorBusyError())
        if self.state is not EditorState.EDITING:
            return CommitResult.skipped()

        pending = self.draft.strip() if self.field_name == "name" else self.draft
        if self.field_name == "name" and not pending:
            exc = ValidationError("Name cannot be empty.", field="name")
            self.error = exc.user_message
            return CommitResult.failure(exc)

        start = time.perf_counter()
        self.state = EditorState.SAVING
        try:
            await self._store.update_character_basics(self.character_id, {self.field_name: pending})
        except CompendiumError as exc:
            log_editor_timing("basics_editor", "save", start, field=self.field_name, ok=False)
            return self._fail(exc)

        log_editor_timing("basics_editor", "save", start, field=self.field_name, ok=True)
        if self._detached:
            return self._skip_detached("Saved after the page was closed.")
        self.value = pending
        self.draft = pending
        self.state = EditorState.VIEWING
        self.error = None
        if self._on_saved is not None:
            self._on_saved(self.field_name, pending)
        message = SAVED_MESSAGES[self.field_name]
        self._toasts.success(message)
        return CommitResult.success(message)


async def create_character(
    store: RemoteStore,
    gate: AccessGate,
    name: str,
    character_type: str = "",
    created_by: Optional[str] = None,
) -> RosterEntry:
    """
    Create a character (the store seeds its sections) and return the roster entry to append.
    Raises ValidationError for a blank name before any I/O.
    """
    gate.require_editor("create character")
    clean_name = (name or "").strip()
    if not clean_name:
        raise ValidationError("Name cannot be empty.", field="name")
    clean_type = (character_type or "").strip() or DEFAULT_CHARACTER_TYPE
    start = time.perf_counter()
    character = await store.create_character(clean_name, clean_type, created_by or gate.user_id)
    log_editor_timing("basics_editor", "create_character", start, character_id=character.id)
    return RosterEntry.from_character(character)
