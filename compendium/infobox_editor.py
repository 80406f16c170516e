from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
import logging
import time
from typing import Callable, Dict, Iterable, List, Mapping, Optional, Tuple

from compendium.auth import AccessGate
from compendium.catalog import (
    INFOBOX_KEYS,
    InfoboxFieldSpec,
    InfoboxGroup,
    grouped_infobox,
    infobox_map,
    require_infobox_key,
)
from compendium.editing import DraftEditor, EditorState, log_editor_timing
from compendium.errors import CompendiumError, EditorBusyError
from compendium.models import InfoboxField
from compendium.notifications import ToastChannel
from compendium.store import RemoteStore

logger = logging.getLogger(__name__)

InfoboxSaved = Callable[[Dict[str, str]], None]


@dataclass(frozen=True)
class InfoboxSaveResult:
    """Outcome of one batch: which keys the store accepted and which it did not."""

    saved_keys: Tuple[str, ...] = ()
    failed: Dict[str, CompendiumError] = field(default_factory=dict)
    message: str = ""

    @property
    def ok(self) -> bool:
        return bool(self.saved_keys) and not self.failed

    @property
    def partial(self) -> bool:
        return bool(self.saved_keys) and bool(self.failed)

    @property
    def failed_keys(self) -> Tuple[str, ...]:
        return tuple(self.failed)


class InfoboxEditor(DraftEditor):
    """
    One draft over every catalog field at once.

    Save sends one upsert per catalog key concurrently and waits for all of them. Only the keys the
    store confirmed are committed to the displayed values; if any key failed the editor stays in
    edit mode with the unsaved draft intact and reports the failed keys.
    """

    action = "edit infobox"

    def __init__(
        self,
        store: RemoteStore,
        gate: AccessGate,
        character_id: str,
        rows: Iterable[InfoboxField],
        *,
        on_saved: Optional[InfoboxSaved] = None,
        toasts: Optional[ToastChannel] = None,
    ) -> None:
        super().__init__(store, gate, toasts=toasts)
        self.character_id = character_id
        self.committed: Dict[str, str] = infobox_map((row.field_key, row.field_value) for row in rows)
        self.draft: Dict[str, str] = dict(self.committed)
        self._on_saved = on_saved

    def begin_edit(self) -> None:
        self._enter_edit()
        self.draft = dict(self.committed)

    def set_field(self, field_key: str, value: str) -> None:
        require_infobox_key(field_key)
        if self.state is EditorState.EDITING:
            self.draft[field_key] = value or ""

    def set_fields(self, values: Mapping[str, str]) -> None:
        for key, value in values.items():
            self.set_field(key, value)

    def cancel(self) -> None:
        self._leave_edit()
        self.draft = dict(self.committed)

    def display_values(self) -> Dict[str, str]:
        return self.draft if self.state is not EditorState.VIEWING else self.committed

    def display_rows(self) -> List[Tuple[InfoboxGroup, List[Tuple[InfoboxFieldSpec, str]]]]:
        return grouped_infobox(self.display_values())

    async def save(self) -> InfoboxSaveResult:
        self._gate.require_editor(self.action)
        if self.busy:
            busy = EditorBusyError()
            return InfoboxSaveResult(failed={"*": busy}, message=busy.user_message)
        if self.state is not EditorState.EDITING:
            return InfoboxSaveResult()

        start = time.perf_counter()
        pending = {key: self.draft.get(key, "") or "" for key in INFOBOX_KEYS}
        self.state = EditorState.SAVING
        results = await asyncio.gather(
            *(self._store.upsert_infobox_field(self.character_id, key, pending[key]) for key in INFOBOX_KEYS),
            return_exceptions=True,
        )

        saved: List[str] = []
        failed: Dict[str, CompendiumError] = {}
        unexpected: Optional[BaseException] = None
        for key, result in zip(INFOBOX_KEYS, results):
            if isinstance(result, CompendiumError):
                failed[key] = result
            elif isinstance(result, BaseException):
                unexpected = unexpected or result
            else:
                saved.append(key)
        log_editor_timing("infobox_editor", "save", start, saved=len(saved), failed=len(failed))

        if unexpected is not None:
            self.state = EditorState.EDITING
            raise unexpected

        if self._detached:
            self.state = EditorState.VIEWING
            return InfoboxSaveResult(tuple(saved), failed, "Saved after the page was closed.")

        saved_values = {key: pending[key] for key in saved}
        self.committed.update(saved_values)
        if saved_values and self._on_saved is not None:
            self._on_saved(saved_values)

        if failed:
            self.state = EditorState.EDITING
            self.draft = pending
            labels = ", ".join(require_infobox_key(key).label for key in failed)
            message = f"Some fields could not be saved: {labels}. Try again."
            self.error = message
            self._toasts.error(message)
            logger.warning("Infobox save for %s failed for keys %s", self.character_id, list(failed))
            return InfoboxSaveResult(tuple(saved), failed, message)

        self.state = EditorState.VIEWING
        self.error = None
        self.draft = dict(self.committed)
        message = "Infobox saved."
        self._toasts.success(message)
        return InfoboxSaveResult(tuple(saved), {}, message)
