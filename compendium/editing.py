from __future__ import annotations

from enum import Enum
import logging
import time
from typing import Optional

from compendium.auth import AccessGate
from compendium.errors import CommitResult, CompendiumError, EditorBusyError
from compendium.notifications import ToastChannel
from compendium.store import RemoteStore

timing_logger = logging.getLogger("uvicorn.error")


class EditorState(str, Enum):
    VIEWING = "viewing"
    EDITING = "editing"
    SAVING = "saving"


def log_editor_timing(editor: str, event_name: str, start: float, **fields: object) -> None:
    elapsed_ms = (time.perf_counter() - start) * 1000.0
    if fields:
        field_text = " ".join(f"{key}={value}" for key, value in fields.items())
        timing_logger.info("%s.timing event=%s ms=%.2f %s", editor, event_name, elapsed_ms, field_text)
        return
    timing_logger.info("%s.timing event=%s ms=%.2f", editor, event_name, elapsed_ms)


class DraftEditor:
    """
    Shared draft/commit plumbing: the state machine, the last error, the busy flag and detachment.

    A detached editor still lets its in-flight request finish but drops the local commit
    (the page it belonged to is gone).
    """

    action = "edit"

    def __init__(self, store: RemoteStore, gate: AccessGate, *, toasts: Optional[ToastChannel] = None) -> None:
        self._store = store
        self._gate = gate
        self._toasts = toasts if toasts is not None else ToastChannel()
        self.state = EditorState.VIEWING
        self.error: Optional[str] = None
        self._detached = False

    @property
    def gate(self) -> AccessGate:
        return self._gate

    @property
    def editing(self) -> bool:
        return self.state is not EditorState.VIEWING

    @property
    def busy(self) -> bool:
        return self.state is EditorState.SAVING

    @property
    def detached(self) -> bool:
        return self._detached

    def detach(self) -> None:
        self._detached = True

    def _enter_edit(self) -> None:
        self._gate.require_editor(self.action)
        if self.busy:
            raise EditorBusyError()
        self.state = EditorState.EDITING
        self.error = None

    def _leave_edit(self) -> None:
        if self.busy:
            raise EditorBusyError()
        self.state = EditorState.VIEWING
        self.error = None

    def _skip_detached(self, message: str) -> CommitResult:
        self.state = EditorState.VIEWING
        return CommitResult.skipped(message)

    def _fail(self, exc: CompendiumError) -> CommitResult:
        self.state = EditorState.EDITING
        self.error = exc.user_message
        if not self._detached:
            self._toasts.error(exc.user_message)
        return CommitResult.failure(exc)
