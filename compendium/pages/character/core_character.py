from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
import html
import logging
import time
from typing import List, Optional, Sequence, Tuple
from urllib.parse import quote, urlsplit

from compendium.auth import AccessGate, SessionContext
from compendium.catalog import INFOBOX_KEYS
from compendium.document_editor import DocumentListEditor
from compendium.errors import AggregateLoadError, CommitResult, EditorBusyError, ValidationError
from compendium.image_pipeline import ImageUpload
from compendium.infobox_editor import InfoboxEditor, InfoboxSaveResult
from compendium.loader import load_roster
from compendium.login_logic import RequestAuthService
from compendium.models import Document, RosterEntry
from compendium.notifications import Toast
from compendium.section_editor import SectionEditor
from compendium.services import Services
from compendium.workspace import CharacterWorkspace, open_character

logger = logging.getLogger(__name__)
timing_logger = logging.getLogger("uvicorn.error")

EMPTY_VALUE = "—"
LINK_SCHEMES = ("http", "https")


def _log_timing(event_name: str, start: float, **fields: object) -> None:
    elapsed_ms = (time.perf_counter() - start) * 1000.0
    if fields:
        field_text = " ".join(f"{key}={value}" for key, value in fields.items())
        timing_logger.info("character.core.timing event=%s ms=%.2f %s", event_name, elapsed_ms, field_text)
        return
    timing_logger.info("character.core.timing event=%s ms=%.2f", event_name, elapsed_ms)


@dataclass
class CharacterPageState:
    """Per-client state of one /character page: the session context plus the open workspace."""

    context: SessionContext
    workspace: Optional[CharacterWorkspace] = None
    roster: List[RosterEntry] = field(default_factory=list)
    error: str = ""

    @property
    def gate(self) -> AccessGate:
        return self.context.gate

    @property
    def can_mutate(self) -> bool:
        return self.workspace is not None and self.context.gate.can_mutate

    def close(self) -> None:
        if self.workspace is not None:
            self.workspace.close()
        self.context.close()


def close_page_state(state: Optional[CharacterPageState]) -> None:
    if state is not None:
        state.close()


async def open_page_state(services: Services, request, character_id: str) -> CharacterPageState:
    total_start = time.perf_counter()
    context = SessionContext(RequestAuthService(request, services.store, services.events))
    gate = await context.start()
    state = CharacterPageState(context=context)

    roster_result, workspace = await asyncio.gather(
        load_roster(services.store),
        _open_workspace(services, gate, character_id),
    )
    state.roster = roster_result.entries
    if isinstance(workspace, AggregateLoadError):
        state.error = workspace.user_message
    else:
        state.workspace = workspace
        workspace.roster = state.roster
    _log_timing(
        "open_page_state",
        total_start,
        character_id=character_id or "<none>",
        ok=state.workspace is not None,
        capability=gate.capability.value,
    )
    return state


async def _open_workspace(services: Services, gate: AccessGate, character_id: str):
    if not character_id:
        return AggregateLoadError("")
    try:
        return await open_character(services.store, services.storage, gate, character_id)
    except AggregateLoadError as exc:
        return exc


# -- rendering ---------------------------------------------------------------


def _paragraphs(text_value: str) -> str:
    return "".join(f"<p>{html.escape(line)}</p>" for line in (text_value or "").split("\n") if line.strip())


def render_toast(toast: Optional[Toast]) -> str:
    if toast is None:
        return ""
    return f'<div class="toast toast--{html.escape(toast.level)}" role="status">{html.escape(toast.message)}</div>'


def render_error(message: str) -> str:
    if not message:
        return ""
    return f'<div class="char-missing">{html.escape(message)}</div>'


def render_title(workspace: CharacterWorkspace) -> str:
    view = workspace.view
    subtitle = view.infobox_values().get("titles", "")
    subtitle_html = f'<div class="page-subtitle">{html.escape(subtitle)}</div>' if subtitle else ""
    character_type = html.escape(view.character.type or "")
    return (
        f'<div class="page-title-area"><div class="page-title">{html.escape(view.character.name)}</div>'
        f'<div class="page-type">{character_type}</div>{subtitle_html}</div>'
    )


def render_intro(workspace: CharacterWorkspace, can_mutate: bool) -> str:
    intro = workspace.view.character.intro
    if intro.strip():
        return f'<div class="page-intro-text">{_paragraphs(intro)}</div>'
    hint = 'Click "Edit intro" to write an introduction.' if can_mutate else "Introduction not yet written."
    return f'<div class="page-intro-text"><p class="section-placeholder">{hint}</p></div>'


def render_portrait(workspace: CharacterWorkspace) -> str:
    image_url = workspace.image_pipeline.image_url
    name = workspace.view.character.name
    if image_url:
        return (
            f'<div class="portrait"><img class="portrait-img" src="{html.escape(image_url, quote=True)}" '
            f'alt="{html.escape(name, quote=True)}" loading="lazy" /></div>'
        )
    initial = html.escape((name or "?")[0].upper())
    return (
        '<div class="portrait portrait--empty">'
        f'<div class="placeholder-symbol">{initial}</div><div class="placeholder-text">No image yet</div></div>'
    )


def render_infobox(editor: InfoboxEditor, name: str) -> str:
    blocks = [f'<div class="infobox-header">{html.escape(name)}</div>']
    for group, rows in editor.display_rows():
        blocks.append(f'<div class="infobox-section-label">{html.escape(group.title)}</div>')
        for spec, value in rows:
            value_class = "infobox-value" if value else "infobox-value empty"
            blocks.append(
                f'<div class="infobox-row"><span class="infobox-label">{html.escape(spec.label)}</span>'
                f'<span class="{value_class}">{html.escape(value or EMPTY_VALUE)}</span></div>'
            )
    return f'<div class="infobox">{"".join(blocks)}</div>'


def _link_url(url: str) -> Optional[str]:
    # urls are stored as typed by an editor; only web links become anchors
    cleaned = (url or "").strip()
    try:
        scheme = urlsplit(cleaned).scheme.lower()
    except ValueError:
        return None
    return cleaned if scheme in LINK_SCHEMES else None


def render_documents(editor: DocumentListEditor, can_mutate: bool) -> str:
    if not editor.documents:
        empty = "No documents yet. Use the form below to add one." if can_mutate else "No documents attached."
        return f'<div class="doc-list doc-list--empty">{empty}</div>'
    items = []
    for doc in editor.documents:
        name = html.escape(doc.doc_name)
        url = _link_url(doc.doc_url)
        if url is None:
            items.append(f'<li class="doc-item"><span class="doc-unlinked">{name}</span></li>')
            continue
        href = html.escape(url, quote=True)
        items.append(
            f'<li class="doc-item"><a href="{href}" target="_blank" rel="noopener noreferrer" '
            f'title="{href}">{name}</a></li>'
        )
    return f'<ul class="doc-list">{"".join(items)}</ul>'


def document_choices(documents: Sequence[Document]) -> List[Tuple[str, str]]:
    return [(doc.doc_name or doc.doc_url, doc.id) for doc in documents]


def render_section(editor: SectionEditor, can_mutate: bool) -> str:
    heading = f'<h2 class="section-title">{html.escape(editor.title)}</h2>'
    if editor.content.strip():
        body = f'<div class="section-body">{_paragraphs(editor.content)}</div>'
    else:
        hint = "Nothing written yet. Click edit to add content." if can_mutate else "Nothing written yet."
        body = f'<div class="section-body"><p class="section-placeholder">{hint}</p></div>'
    return f'<section class="wiki-section" id="{html.escape(editor.section_key)}">{heading}{body}</section>'


def render_roster_sidebar(roster: Sequence[RosterEntry], active_id: str) -> str:
    if not roster:
        return '<nav class="roster-sidebar"><div class="roster-empty">No characters yet.</div></nav>'
    links = []
    for entry in roster:
        active = " is-active" if entry.id == active_id else ""
        href = f"/character/?id={quote(entry.id, safe='')}"
        links.append(
            f'<a class="roster-link{active}" href="{href}">{html.escape(entry.name)}'
            f'<span class="roster-type">{html.escape(entry.type)}</span></a>'
        )
    return f'<nav class="roster-sidebar">{"".join(links)}</nav>'


# -- actions -----------------------------------------------------------------
# Each takes the open workspace plus raw widget values and reports through the toast channel.


def _report(workspace: CharacterWorkspace, result: CommitResult) -> CommitResult:
    # remote failures already toasted by the editor; local rejections are toasted here
    if isinstance(result.error, (ValidationError, EditorBusyError)):
        workspace.toasts.error(result.message)
    return result


def begin_basics(workspace: CharacterWorkspace, field_name: str) -> None:
    _basics_editor(workspace, field_name).begin_edit()


def cancel_basics(workspace: CharacterWorkspace, field_name: str) -> None:
    _basics_editor(workspace, field_name).cancel()


async def save_basics(workspace: CharacterWorkspace, field_name: str, value: str) -> CommitResult:
    editor = _basics_editor(workspace, field_name)
    editor.update_draft(value)
    return _report(workspace, await editor.save())


def _basics_editor(workspace: CharacterWorkspace, field_name: str):
    return workspace.name_editor if field_name == "name" else workspace.intro_editor


def begin_section(workspace: CharacterWorkspace, section_key: str) -> None:
    workspace.section_editors[section_key].begin_edit()


def cancel_section(workspace: CharacterWorkspace, section_key: str) -> None:
    workspace.section_editors[section_key].cancel()


async def save_section(workspace: CharacterWorkspace, section_key: str, value: str) -> CommitResult:
    editor = workspace.section_editors[section_key]
    editor.update_draft(value)
    return _report(workspace, await editor.save())


def begin_infobox(workspace: CharacterWorkspace) -> None:
    workspace.infobox_editor.begin_edit()


def cancel_infobox(workspace: CharacterWorkspace) -> None:
    workspace.infobox_editor.cancel()


async def save_infobox(workspace: CharacterWorkspace, values: Sequence[str]) -> InfoboxSaveResult:
    editor = workspace.infobox_editor
    editor.set_fields(dict(zip(INFOBOX_KEYS, values)))
    return await editor.save()


async def upload_image(workspace: CharacterWorkspace, file_path: Optional[str]) -> Optional[CommitResult]:
    if not file_path:
        return None
    upload = ImageUpload.from_path(file_path)
    return _report(workspace, await workspace.image_pipeline.upload(upload))


async def remove_image(workspace: CharacterWorkspace, confirmed: bool) -> CommitResult:
    result = await workspace.image_pipeline.remove(confirmed=bool(confirmed))
    if not confirmed:
        workspace.toasts.info("Tick the confirmation box to remove the image.")
    return _report(workspace, result)


async def add_document(workspace: CharacterWorkspace, name: str, url: str) -> CommitResult:
    return _report(workspace, await workspace.document_editor.add(name, url))


def begin_document_edit(workspace: CharacterWorkspace, document_id: Optional[str]) -> None:
    if not document_id:
        workspace.toasts.info("Pick a document first.")
        return
    workspace.document_editor.begin_edit(document_id)


def cancel_document_edit(workspace: CharacterWorkspace) -> None:
    workspace.document_editor.cancel_edit()


async def save_document_edit(workspace: CharacterWorkspace, name: str, url: str) -> CommitResult:
    editor = workspace.document_editor
    if editor.edit_id is not None:
        editor.edit_field(editor.edit_id, "doc_name", name)
        editor.edit_field(editor.edit_id, "doc_url", url)
    return _report(workspace, await editor.save_edit())


async def delete_document(workspace: CharacterWorkspace, document_id: Optional[str], confirmed: bool) -> Optional[CommitResult]:
    if not document_id:
        workspace.toasts.info("Pick a document first.")
        return None
    result = await workspace.document_editor.delete(document_id, confirmed=bool(confirmed))
    if not confirmed:
        workspace.toasts.info("Tick the confirmation box to remove the document.")
    return _report(workspace, result)
