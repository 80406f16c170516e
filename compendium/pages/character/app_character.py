from __future__ import annotations

from dataclasses import dataclass
import inspect
import logging
import time
from typing import Any, Callable, Dict, List, Optional, Tuple

import gradio as gr

from compendium.catalog import INFOBOX_GROUPS, INFOBOX_KEYS, SECTION_CATALOG
from compendium.css.utils import load_css
from compendium.errors import CompendiumError, PermissionDeniedError
from compendium.page_timing import timed_page_load
from compendium.pages.character.core_character import (
    EMPTY_VALUE,
    CharacterPageState,
    add_document,
    begin_basics,
    begin_document_edit,
    begin_infobox,
    begin_section,
    cancel_basics,
    cancel_document_edit,
    cancel_infobox,
    cancel_section,
    close_page_state,
    delete_document,
    document_choices,
    open_page_state,
    remove_image,
    render_documents,
    render_error,
    render_infobox,
    render_intro,
    render_portrait,
    render_roster_sidebar,
    render_section,
    render_title,
    render_toast,
    save_basics,
    save_document_edit,
    save_infobox,
    save_section,
    upload_image,
)
from compendium.pages.header import render_header
from compendium.services import Services

logger = logging.getLogger(__name__)
timing_logger = logging.getLogger("uvicorn.error")

PAGE_ROUTE = "/character"
SEED_ALL = frozenset({"name", "intro", "infobox", "image", "doc_add", "doc_edit", "doc_delete", "sections"})


def _log_timing(event_name: str, start: float, **fields: object) -> None:
    elapsed_ms = (time.perf_counter() - start) * 1000.0
    if fields:
        field_text = " ".join(f"{key}={value}" for key, value in fields.items())
        timing_logger.info("character.page.timing event=%s ms=%.2f %s", event_name, elapsed_ms, field_text)
        return
    timing_logger.info("character.page.timing event=%s ms=%.2f", event_name, elapsed_ms)


@dataclass
class SectionWidgets:
    html: Any
    box: Any
    edit: Any
    save: Any
    cancel: Any


@dataclass
class CharacterWidgets:
    toast_html: Any
    sidebar_html: Any
    error_html: Any
    page_col: Any
    title_html: Any
    rename_btn: Any
    name_row: Any
    name_box: Any
    intro_html: Any
    intro_box: Any
    intro_edit: Any
    intro_save: Any
    intro_cancel: Any
    portrait_html: Any
    image_controls: Any
    image_file: Any
    image_confirm: Any
    infobox_html: Any
    infobox_edit: Any
    infobox_form: Any
    infobox_boxes: List[Any]
    documents_html: Any
    doc_controls: Any
    new_doc_name: Any
    new_doc_url: Any
    doc_select: Any
    doc_edit_form: Any
    doc_name_box: Any
    doc_url_box: Any
    doc_confirm: Any
    sections: Dict[str, SectionWidgets]

    def outputs(self) -> List[Any]:
        components = [
            self.toast_html,
            self.sidebar_html,
            self.error_html,
            self.page_col,
            self.title_html,
            self.rename_btn,
            self.name_row,
            self.name_box,
            self.intro_html,
            self.intro_box,
            self.intro_edit,
            self.intro_save,
            self.intro_cancel,
            self.portrait_html,
            self.image_controls,
            self.image_file,
            self.image_confirm,
            self.infobox_html,
            self.infobox_edit,
            self.infobox_form,
            *self.infobox_boxes,
            self.documents_html,
            self.doc_controls,
            self.new_doc_name,
            self.new_doc_url,
            self.doc_select,
            self.doc_edit_form,
            self.doc_name_box,
            self.doc_url_box,
            self.doc_confirm,
        ]
        for section in self.sections.values():
            components.extend([section.html, section.box, section.edit, section.save, section.cancel])
        return components


def _render(state: Optional[CharacterPageState], w: CharacterWidgets, seed=frozenset()) -> Dict[Any, Any]:
    """
    Updates for every dynamic widget. Text boxes only receive a value when their editor is in `seed`
    so that re-rendering after one editor's save never clobbers another editor's unsaved typing.
    """
    start = time.perf_counter()
    workspace = state.workspace if state is not None else None
    updates: Dict[Any, Any] = {
        w.sidebar_html: render_roster_sidebar(
            state.roster if state is not None else [],
            workspace.character_id if workspace is not None else "",
        ),
    }
    if workspace is None:
        updates[w.toast_html] = ""
        updates[w.error_html] = gr.update(value=render_error(state.error if state else "Character not found."), visible=True)
        updates[w.page_col] = gr.update(visible=False)
        return updates

    can_mutate = state.can_mutate
    updates[w.toast_html] = render_toast(workspace.toasts.consume())
    updates[w.error_html] = gr.update(value="", visible=False)
    updates[w.page_col] = gr.update(visible=True)

    name_editor = workspace.name_editor
    updates[w.title_html] = render_title(workspace)
    updates[w.rename_btn] = gr.update(visible=can_mutate and not name_editor.editing)
    updates[w.name_row] = gr.update(visible=can_mutate and name_editor.editing)
    updates[w.name_box] = gr.update(value=name_editor.draft) if "name" in seed else gr.update()

    intro_editor = workspace.intro_editor
    updates[w.intro_html] = gr.update(value=render_intro(workspace, can_mutate), visible=not intro_editor.editing)
    updates[w.intro_box] = (
        gr.update(value=intro_editor.draft, visible=intro_editor.editing)
        if "intro" in seed
        else gr.update(visible=intro_editor.editing)
    )
    updates[w.intro_edit] = gr.update(visible=can_mutate and not intro_editor.editing)
    updates[w.intro_save] = gr.update(visible=can_mutate and intro_editor.editing)
    updates[w.intro_cancel] = gr.update(visible=can_mutate and intro_editor.editing)

    updates[w.portrait_html] = render_portrait(workspace)
    updates[w.image_controls] = gr.update(visible=can_mutate)
    updates[w.image_file] = gr.update(value=None) if "image" in seed else gr.update()
    updates[w.image_confirm] = gr.update(value=False) if "image" in seed else gr.update()

    infobox = workspace.infobox_editor
    updates[w.infobox_html] = gr.update(
        value=render_infobox(infobox, workspace.view.character.name),
        visible=not infobox.editing,
    )
    updates[w.infobox_edit] = gr.update(visible=can_mutate and not infobox.editing)
    updates[w.infobox_form] = gr.update(visible=can_mutate and infobox.editing)
    for key, box in zip(INFOBOX_KEYS, w.infobox_boxes):
        updates[box] = gr.update(value=infobox.draft.get(key, "")) if "infobox" in seed else gr.update()

    documents = workspace.document_editor
    updates[w.documents_html] = render_documents(documents, can_mutate)
    updates[w.doc_controls] = gr.update(visible=can_mutate)
    updates[w.new_doc_name] = gr.update(value="") if "doc_add" in seed else gr.update()
    updates[w.new_doc_url] = gr.update(value="") if "doc_add" in seed else gr.update()
    updates[w.doc_select] = gr.update(choices=document_choices(documents.documents), value=documents.edit_id)
    updates[w.doc_edit_form] = gr.update(visible=can_mutate and documents.edit_id is not None)
    editing_doc = documents.find(documents.edit_id) if documents.edit_id else None
    if "doc_edit" in seed:
        updates[w.doc_name_box] = gr.update(value=editing_doc.doc_name if editing_doc else "")
        updates[w.doc_url_box] = gr.update(value=editing_doc.doc_url if editing_doc else "")
    else:
        updates[w.doc_name_box] = gr.update()
        updates[w.doc_url_box] = gr.update()
    updates[w.doc_confirm] = gr.update(value=False) if "doc_delete" in seed else gr.update()

    for key, widgets in w.sections.items():
        editor = workspace.section_editors[key]
        updates[widgets.html] = gr.update(value=render_section(editor, can_mutate), visible=not editor.editing)
        seeded = "sections" in seed or key in seed
        updates[widgets.box] = (
            gr.update(value=editor.draft, visible=editor.editing) if seeded else gr.update(visible=editor.editing)
        )
        updates[widgets.edit] = gr.update(visible=can_mutate and not editor.editing)
        updates[widgets.save] = gr.update(visible=can_mutate and editor.editing)
        updates[widgets.cancel] = gr.update(visible=can_mutate and editor.editing)

    _log_timing("render", start, character_id=workspace.character_id, can_mutate=can_mutate)
    return updates


def _build_widgets() -> Tuple[CharacterWidgets, Dict[str, Any]]:
    toast_html = gr.HTML(elem_id="char-toast")
    with gr.Row(elem_id="char-layout"):
        with gr.Column(scale=1, min_width=200):
            sidebar_html = gr.HTML()
        with gr.Column(scale=5):
            error_html = gr.HTML(visible=False)
            with gr.Column(visible=False) as page_col:
                title_html = gr.HTML()
                rename_btn = gr.Button("✎ Rename", visible=False, size="sm")
                with gr.Row(visible=False) as name_row:
                    name_box = gr.Textbox(show_label=False, scale=4, container=False)
                    name_save = gr.Button("Save", variant="primary", scale=0, min_width=80)
                    name_cancel = gr.Button("Cancel", scale=0, min_width=80)

                with gr.Row():
                    with gr.Column(scale=3):
                        intro_html = gr.HTML()
                        intro_box = gr.Textbox(
                            lines=6,
                            visible=False,
                            show_label=False,
                            placeholder="Write a brief introduction about this character...",
                        )
                        with gr.Row():
                            intro_edit = gr.Button("✎ Edit intro", visible=False, size="sm")
                            intro_save = gr.Button("Save", visible=False, variant="primary", size="sm")
                            intro_cancel = gr.Button("Cancel", visible=False, size="sm")

                    with gr.Column(scale=2, elem_classes=["infobox-col"]):
                        portrait_html = gr.HTML()
                        with gr.Column(visible=False) as image_controls:
                            image_file = gr.File(label="Upload portrait", file_types=["image"], type="filepath")
                            with gr.Row():
                                image_confirm = gr.Checkbox(label="Confirm removal", value=False)
                                image_remove = gr.Button("Remove image", size="sm")

                        infobox_html = gr.HTML()
                        infobox_edit = gr.Button("✎ Edit infobox", visible=False, size="sm")
                        with gr.Column(visible=False) as infobox_form:
                            infobox_boxes = []
                            for group in INFOBOX_GROUPS:
                                gr.Markdown(f"**{group.title}**")
                                for spec in group.fields:
                                    infobox_boxes.append(gr.Textbox(label=spec.label, placeholder=EMPTY_VALUE))
                            with gr.Row():
                                infobox_save = gr.Button("Save infobox", variant="primary", size="sm")
                                infobox_cancel = gr.Button("Cancel", size="sm")

                        gr.HTML('<div class="infobox-section-label">External Documents</div>')
                        documents_html = gr.HTML()
                        with gr.Column(visible=False) as doc_controls:
                            new_doc_name = gr.Textbox(label="Document name", placeholder="Document name...")
                            new_doc_url = gr.Textbox(label="URL", placeholder="https://...")
                            doc_add = gr.Button("Add document", size="sm")
                            doc_select = gr.Dropdown(label="Document", choices=[], value=None, interactive=True)
                            with gr.Row():
                                doc_edit = gr.Button("✎ Edit", size="sm")
                                doc_confirm = gr.Checkbox(label="Confirm removal", value=False)
                                doc_delete = gr.Button("Remove", size="sm")
                            with gr.Column(visible=False) as doc_edit_form:
                                doc_name_box = gr.Textbox(label="Document name")
                                doc_url_box = gr.Textbox(label="URL")
                                with gr.Row():
                                    doc_save = gr.Button("Save", variant="primary", size="sm")
                                    doc_cancel = gr.Button("Cancel", size="sm")

                sections: Dict[str, SectionWidgets] = {}
                for spec in SECTION_CATALOG:
                    with gr.Column(elem_classes=["wiki-section-col"]):
                        section_html = gr.HTML()
                        section_box = gr.Textbox(lines=10, visible=False, label=spec.title)
                        with gr.Row():
                            section_edit = gr.Button(f"✎ Edit {spec.title}", visible=False, size="sm")
                            section_save = gr.Button("Save", visible=False, variant="primary", size="sm")
                            section_cancel = gr.Button("Cancel", visible=False, size="sm")
                    sections[spec.key] = SectionWidgets(
                        section_html, section_box, section_edit, section_save, section_cancel
                    )

    widgets = CharacterWidgets(
        toast_html=toast_html,
        sidebar_html=sidebar_html,
        error_html=error_html,
        page_col=page_col,
        title_html=title_html,
        rename_btn=rename_btn,
        name_row=name_row,
        name_box=name_box,
        intro_html=intro_html,
        intro_box=intro_box,
        intro_edit=intro_edit,
        intro_save=intro_save,
        intro_cancel=intro_cancel,
        portrait_html=portrait_html,
        image_controls=image_controls,
        image_file=image_file,
        image_confirm=image_confirm,
        infobox_html=infobox_html,
        infobox_edit=infobox_edit,
        infobox_form=infobox_form,
        infobox_boxes=infobox_boxes,
        documents_html=documents_html,
        doc_controls=doc_controls,
        new_doc_name=new_doc_name,
        new_doc_url=new_doc_url,
        doc_select=doc_select,
        doc_edit_form=doc_edit_form,
        doc_name_box=doc_name_box,
        doc_url_box=doc_url_box,
        doc_confirm=doc_confirm,
        sections=sections,
    )
    # buttons that only trigger events; their appearance never changes
    triggers = {
        "name_save": name_save,
        "name_cancel": name_cancel,
        "image_remove": image_remove,
        "infobox_save": infobox_save,
        "infobox_cancel": infobox_cancel,
        "doc_add": doc_add,
        "doc_edit": doc_edit,
        "doc_delete": doc_delete,
        "doc_save": doc_save,
        "doc_cancel": doc_cancel,
    }
    return widgets, triggers


def make_character_app(services: Services) -> gr.Blocks:
    stylesheet = load_css("compendium.css")
    with gr.Blocks(title="Character", css=stylesheet or None) as app:
        page_state = gr.State(None, delete_callback=close_page_state)
        hdr = gr.HTML()
        w, t = _build_widgets()
        outputs = [page_state, *w.outputs()]

        async def _load_character_page(request: gr.Request):
            total_start = time.perf_counter()
            character_id = str(request.query_params.get("id", "")).strip()
            state = await open_page_state(services, request, character_id)
            header_html = render_header(PAGE_ROUTE, request, state.gate)
            _log_timing("load_character_page.total", total_start, character_id=character_id or "<none>")
            return {hdr: header_html, page_state: state, **_render(state, w, SEED_ALL)}

        def _action(event: str, func: Callable[..., Any], seed=frozenset(), mutates: bool = True):
            """Wrap a core action as a Gradio callback that re-renders the page afterwards."""

            async def _callback(state: Optional[CharacterPageState], *values):
                start = time.perf_counter()
                workspace = state.workspace if state is not None else None
                if workspace is None:
                    return {page_state: state, **_render(state, w)}
                if mutates and not state.can_mutate:
                    workspace.toasts.error(PermissionDeniedError(event).user_message)
                    return {page_state: state, **_render(state, w)}
                try:
                    result = func(workspace, *values)
                    if inspect.isawaitable(result):
                        result = await result
                    succeeded = getattr(result, "ok", True)
                except CompendiumError as exc:
                    logger.info("Character page action %s rejected: %s", event, exc)
                    workspace.toasts.error(exc.user_message)
                    succeeded = False
                _log_timing(event, start, character_id=workspace.character_id, ok=succeeded)
                # failed actions keep whatever the user typed
                return {page_state: state, **_render(state, w, seed if succeeded else frozenset())}

            _callback.__name__ = event
            return timed_page_load(PAGE_ROUTE, _callback, label=event)

        app.load(timed_page_load(PAGE_ROUTE, _load_character_page), outputs=[hdr, *outputs])

        w.rename_btn.click(
            _action("begin_rename", lambda ws: begin_basics(ws, "name"), {"name"}),
            inputs=[page_state],
            outputs=outputs,
        )
        t["name_save"].click(
            _action("save_name", lambda ws, value: save_basics(ws, "name", value)),
            inputs=[page_state, w.name_box],
            outputs=outputs,
        )
        t["name_cancel"].click(
            _action("cancel_rename", lambda ws: cancel_basics(ws, "name"), {"name"}),
            inputs=[page_state],
            outputs=outputs,
        )

        w.intro_edit.click(
            _action("begin_intro", lambda ws: begin_basics(ws, "intro"), {"intro"}),
            inputs=[page_state],
            outputs=outputs,
        )
        w.intro_save.click(
            _action("save_intro", lambda ws, value: save_basics(ws, "intro", value)),
            inputs=[page_state, w.intro_box],
            outputs=outputs,
        )
        w.intro_cancel.click(
            _action("cancel_intro", lambda ws: cancel_basics(ws, "intro"), {"intro"}),
            inputs=[page_state],
            outputs=outputs,
        )

        w.image_file.upload(
            _action("upload_image", upload_image, {"image"}),
            inputs=[page_state, w.image_file],
            outputs=outputs,
        )
        t["image_remove"].click(
            _action("remove_image", remove_image, {"image"}),
            inputs=[page_state, w.image_confirm],
            outputs=outputs,
        )

        w.infobox_edit.click(
            _action("begin_infobox", begin_infobox, {"infobox"}),
            inputs=[page_state],
            outputs=outputs,
        )
        t["infobox_save"].click(
            _action("save_infobox", lambda ws, *values: save_infobox(ws, values)),
            inputs=[page_state, *w.infobox_boxes],
            outputs=outputs,
        )
        t["infobox_cancel"].click(
            _action("cancel_infobox", cancel_infobox, {"infobox"}),
            inputs=[page_state],
            outputs=outputs,
        )

        t["doc_add"].click(
            _action("add_document", add_document, {"doc_add"}),
            inputs=[page_state, w.new_doc_name, w.new_doc_url],
            outputs=outputs,
        )
        t["doc_edit"].click(
            _action("begin_document_edit", begin_document_edit, {"doc_edit"}),
            inputs=[page_state, w.doc_select],
            outputs=outputs,
        )
        t["doc_save"].click(
            _action("save_document_edit", save_document_edit),
            inputs=[page_state, w.doc_name_box, w.doc_url_box],
            outputs=outputs,
        )
        t["doc_cancel"].click(
            _action("cancel_document_edit", cancel_document_edit, {"doc_edit"}),
            inputs=[page_state],
            outputs=outputs,
        )
        t["doc_delete"].click(
            _action("delete_document", delete_document, {"doc_delete"}),
            inputs=[page_state, w.doc_select, w.doc_confirm],
            outputs=outputs,
        )

        for key, widgets in w.sections.items():
            widgets.edit.click(
                _action(f"begin_section_{key}", lambda ws, _key=key: begin_section(ws, _key), {key}),
                inputs=[page_state],
                outputs=outputs,
            )
            widgets.save.click(
                _action(f"save_section_{key}", lambda ws, value, _key=key: save_section(ws, _key, value)),
                inputs=[page_state, widgets.box],
                outputs=outputs,
            )
            widgets.cancel.click(
                _action(f"cancel_section_{key}", lambda ws, _key=key: cancel_section(ws, _key), {key}),
                inputs=[page_state],
                outputs=outputs,
            )

    return app
