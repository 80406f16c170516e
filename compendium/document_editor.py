from __future__ import annotations

import time
from typing import Iterable, List, Optional

from compendium.auth import AccessGate
from compendium.editing import DraftEditor, EditorState, log_editor_timing
from compendium.errors import CommitResult, CompendiumError, EditorBusyError, ValidationError
from compendium.models import Document
from compendium.notifications import ToastChannel
from compendium.store import RemoteStore

EDITABLE_FIELDS: tuple[str, ...] = ("doc_name", "doc_url")
REQUIRED_MESSAGE = "Document name and URL are required."


def normalize_document_url(url: str) -> str:
    cleaned = (url or "").strip()
    if cleaned.startswith("http"):
        return cleaned
    return f"https://{cleaned}"


def _require_name_and_url(name: str, url: str) -> tuple[str, str]:
    clean_name = (name or "").strip()
    clean_url = (url or "").strip()
    if not clean_name:
        raise ValidationError(REQUIRED_MESSAGE, field="doc_name")
    if not clean_url:
        raise ValidationError(REQUIRED_MESSAGE, field="doc_url")
    return clean_name, clean_url


class DocumentListEditor(DraftEditor):
    """
    The ordered list of linked documents for one character.

    The list is seeded once from the loaded aggregate and afterwards only changed by this editor's
    own confirmed operations: added rows are appended at the end, deleted rows filtered out by id.
    Row edits are applied to the visible row directly; a snapshot taken when editing starts is
    put back on cancel.
    """

    action = "edit documents"

    def __init__(
        self,
        store: RemoteStore,
        gate: AccessGate,
        character_id: str,
        documents: Iterable[Document],
        *,
        toasts: Optional[ToastChannel] = None,
    ) -> None:
        super().__init__(store, gate, toasts=toasts)
        self.character_id = character_id
        self.documents: List[Document] = [doc.copy() for doc in documents]
        self.edit_id: Optional[str] = None
        self._snapshot: Optional[Document] = None
        # each trigger has its own in-flight marker; edit-save uses the SAVING state
        self.adding = False
        self._deleting: set[str] = set()

    def deleting(self, document_id: str) -> bool:
        return document_id in self._deleting

    def find(self, document_id: str) -> Optional[Document]:
        for doc in self.documents:
            if doc.id == document_id:
                return doc
        return None

    def _reject(self, exc: CompendiumError) -> CommitResult:
        self.error = exc.user_message
        return CommitResult.failure(exc)

    def _remote_failure(self, exc: CompendiumError) -> CommitResult:
        self.error = exc.user_message
        if not self._detached:
            self._toasts.error(exc.user_message)
        return CommitResult.failure(exc)

    async def add(self, name: str, url: str) -> CommitResult:
        self._gate.require_editor("add document")
        try:
            clean_name, clean_url = _require_name_and_url(name, url)
        except ValidationError as exc:
            return self._reject(exc)
        if self.adding:
            return CommitResult.failure(EditorBusyError())

        start = time.perf_counter()
        self.adding = True
        try:
            created = await self._store.insert_document(
                self.character_id,
                clean_name,
                normalize_document_url(clean_url),
                len(self.documents),
            )
        except CompendiumError as exc:
            log_editor_timing("document_editor", "add", start, ok=False)
            return self._remote_failure(exc)
        finally:
            self.adding = False

        log_editor_timing("document_editor", "add", start, ok=True)
        if self._detached:
            return CommitResult.skipped("Saved after the page was closed.")
        self.documents.append(created)
        self.error = None
        self._toasts.success("Document added.")
        return CommitResult.success("Document added.")

    def begin_edit(self, document_id: str) -> None:
        doc = self.find(document_id)
        if doc is None:
            raise ValidationError("Document not found.", field="id")
        if self.edit_id is not None and self.edit_id != document_id:
            self.cancel_edit()
        self._enter_edit()
        self.edit_id = document_id
        self._snapshot = doc.copy()

    def edit_field(self, document_id: str, field_name: str, value: str) -> None:
        if field_name not in EDITABLE_FIELDS:
            raise ValidationError(f"Unknown document field '{field_name}'.", field=field_name)
        if self.state is not EditorState.EDITING or document_id != self.edit_id:
            return
        doc = self.find(document_id)
        if doc is not None:
            setattr(doc, field_name, value or "")

    def cancel_edit(self) -> None:
        self._leave_edit()
        if self._snapshot is not None:
            self.documents = [
                self._snapshot.copy() if doc.id == self._snapshot.id else doc for doc in self.documents
            ]
        self.edit_id = None
        self._snapshot = None

    async def save_edit(self) -> CommitResult:
        self._gate.require_editor("edit document")
        if self.busy:
            return CommitResult.failure(EditorBusyError())
        if self.state is not EditorState.EDITING or self.edit_id is None:
            return CommitResult.skipped()
        doc = self.find(self.edit_id)
        if doc is None:
            return self._reject(ValidationError("Document not found.", field="id"))
        try:
            clean_name, clean_url = _require_name_and_url(doc.doc_name, doc.doc_url)
        except ValidationError as exc:
            return self._reject(exc)

        start = time.perf_counter()
        self.state = EditorState.SAVING
        try:
            await self._store.update_document(doc.id, clean_name, clean_url)
        except CompendiumError as exc:
            log_editor_timing("document_editor", "save_edit", start, document_id=doc.id, ok=False)
            return self._fail(exc)

        log_editor_timing("document_editor", "save_edit", start, document_id=doc.id, ok=True)
        if self._detached:
            return self._skip_detached("Saved after the page was closed.")
        doc.doc_name = clean_name
        doc.doc_url = clean_url
        self.state = EditorState.VIEWING
        self.edit_id = None
        self._snapshot = None
        self.error = None
        self._toasts.success("Document updated.")
        return CommitResult.success("Document updated.")

    async def delete(self, document_id: str, *, confirmed: bool) -> CommitResult:
        self._gate.require_editor("delete document")
        if not confirmed:
            return CommitResult.skipped()
        if document_id in self._deleting:
            return CommitResult.failure(EditorBusyError())

        start = time.perf_counter()
        self._deleting.add(document_id)
        try:
            await self._store.delete_document(document_id)
        except CompendiumError as exc:
            log_editor_timing("document_editor", "delete", start, document_id=document_id, ok=False)
            return self._remote_failure(exc)
        finally:
            self._deleting.discard(document_id)

        log_editor_timing("document_editor", "delete", start, document_id=document_id, ok=True)
        if self._detached:
            return CommitResult.skipped("Removed after the page was closed.")
        self.documents = [doc for doc in self.documents if doc.id != document_id]
        if self.edit_id == document_id:
            self.state = EditorState.VIEWING
            self.edit_id = None
            self._snapshot = None
        self.error = None
        self._toasts.success("Document removed.")
        return CommitResult.success("Document removed.")
