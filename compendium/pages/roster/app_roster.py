from __future__ import annotations

import html
import logging
import time

import gradio as gr

from compendium.css.utils import load_css
from compendium.page_timing import timed_page_load
from compendium.pages.header import render_header
from compendium.pages.roster.core_roster import (
    RosterPageState,
    character_href,
    close_roster_state,
    create_entry,
    filtered_cards,
    open_roster_state,
)
from compendium.services import Services

logger = logging.getLogger(__name__)
timing_logger = logging.getLogger("uvicorn.error")

PAGE_ROUTE = "/wiki"


def _log_timing(event_name: str, start: float, **fields: object) -> None:
    elapsed_ms = (time.perf_counter() - start) * 1000.0
    if fields:
        field_text = " ".join(f"{key}={value}" for key, value in fields.items())
        timing_logger.info("roster.page.timing event=%s ms=%.2f %s", event_name, elapsed_ms, field_text)
        return
    timing_logger.info("roster.page.timing event=%s ms=%.2f", event_name, elapsed_ms)


def _search_roster_cards(state: RosterPageState | None, query: str):
    if state is None:
        return gr.update()
    return gr.update(value=filtered_cards(state, query or ""))


def make_roster_app(services: Services) -> gr.Blocks:
    stylesheet = load_css("compendium.css")
    with gr.Blocks(title="Characters", css=stylesheet or None) as app:
        page_state = gr.State(None, delete_callback=close_roster_state)
        hdr = gr.HTML()

        with gr.Column(elem_id="roster-shell"):
            gr.HTML("<h2>Characters</h2>")
            search_box = gr.Textbox(
                placeholder="Search by name or type...",
                show_label=False,
                container=False,
                elem_id="roster-search",
            )
            cards_html = gr.HTML(elem_id="roster-cards")
            with gr.Accordion("New character", open=False, visible=False) as create_panel:
                new_name = gr.Textbox(label="Name", placeholder="Character name")
                new_type = gr.Textbox(label="Type", placeholder="Character")
                create_btn = gr.Button("Create", variant="primary")
                create_status = gr.HTML()

        async def _load_roster_page(request: gr.Request):
            total_start = time.perf_counter()
            state = await open_roster_state(services, request)
            query = str(request.query_params.get("q", "")).strip()
            header_html = render_header(PAGE_ROUTE, request, state.gate)
            _log_timing("load_roster_page.total", total_start, entries=len(state.roster), query=bool(query))
            return (
                header_html,
                state,
                gr.update(value=query),
                gr.update(value=filtered_cards(state, query)),
                gr.update(visible=state.gate.can_mutate),
            )

        async def _create_character(state: RosterPageState | None, name: str, character_type: str, query: str):
            if state is None:
                return state, gr.update(), gr.update(), gr.update(), gr.update()
            entry, message = await create_entry(services, state, name, character_type)
            if entry is None:
                status = f'<div class="toast toast--error">{html.escape(message)}</div>'
                return state, gr.update(), gr.update(value=status), gr.update(), gr.update()
            status = (
                f'<div class="toast toast--success">{html.escape(message)} '
                f'<a href="{character_href(entry.id)}">Open page</a></div>'
            )
            return (
                state,
                gr.update(value=filtered_cards(state, query or "")),
                gr.update(value=status),
                gr.update(value=""),
                gr.update(value=""),
            )

        app.load(
            timed_page_load(PAGE_ROUTE, _load_roster_page),
            outputs=[hdr, page_state, search_box, cards_html, create_panel],
        )
        search_box.input(
            timed_page_load(PAGE_ROUTE, _search_roster_cards, label="search_roster"),
            inputs=[page_state, search_box],
            outputs=[cards_html],
            show_progress=False,
        )
        create_btn.click(
            timed_page_load(PAGE_ROUTE, _create_character, label="create_character"),
            inputs=[page_state, new_name, new_type, search_box],
            outputs=[page_state, cards_html, create_status, new_name, new_type],
        )

    return app
