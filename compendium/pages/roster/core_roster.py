from __future__ import annotations

from dataclasses import dataclass, field
import html
import logging
import time
from typing import List, Optional, Sequence, Tuple
from urllib.parse import quote

from compendium.auth import AccessGate, SessionContext
from compendium.basics_editor import create_character
from compendium.errors import CompendiumError
from compendium.loader import load_roster
from compendium.login_logic import RequestAuthService
from compendium.models import RosterEntry
from compendium.roster_search import search_roster
from compendium.services import Services

logger = logging.getLogger(__name__)
timing_logger = logging.getLogger("uvicorn.error")

INTRO_PREVIEW_CHARS = 140


def _log_timing(event_name: str, start: float, **fields: object) -> None:
    elapsed_ms = (time.perf_counter() - start) * 1000.0
    if fields:
        field_text = " ".join(f"{key}={value}" for key, value in fields.items())
        timing_logger.info("roster.core.timing event=%s ms=%.2f %s", event_name, elapsed_ms, field_text)
        return
    timing_logger.info("roster.core.timing event=%s ms=%.2f", event_name, elapsed_ms)


@dataclass
class RosterPageState:
    context: SessionContext
    roster: List[RosterEntry] = field(default_factory=list)
    error: str = ""

    @property
    def gate(self) -> AccessGate:
        return self.context.gate

    def close(self) -> None:
        self.context.close()


def close_roster_state(state: Optional[RosterPageState]) -> None:
    if state is not None:
        state.close()


async def open_roster_state(services: Services, request) -> RosterPageState:
    start = time.perf_counter()
    context = SessionContext(RequestAuthService(request, services.store, services.events))
    await context.start()
    result = await load_roster(services.store)
    state = RosterPageState(context=context, roster=result.entries)
    if result.error is not None:
        state.error = "Could not load characters."
    _log_timing("open_roster_state", start, entries=len(state.roster), ok=result.error is None)
    return state


def character_href(character_id: str) -> str:
    return f"/character/?id={quote(character_id, safe='')}"


def _preview(intro: str) -> str:
    flat = " ".join((intro or "").split())
    if len(flat) <= INTRO_PREVIEW_CHARS:
        return flat
    return f"{flat[: INTRO_PREVIEW_CHARS - 3]}..."


def render_cards(entries: Sequence[RosterEntry], *, query: str = "", error: str = "") -> str:
    start = time.perf_counter()
    if error:
        return f'<div class="roster-empty">{html.escape(error)}</div>'
    if not entries:
        message = f'No characters match "{query.strip()}".' if (query or "").strip() else "No characters yet."
        return f'<div class="roster-empty">{html.escape(message)}</div>'

    cards: List[str] = []
    for entry in entries:
        name = html.escape(entry.name or "Unnamed")
        image = (
            f'<img class="roster-card__image" src="{html.escape(entry.image_url, quote=True)}" alt="{name}" loading="lazy" />'
            if entry.image_url
            else ""
        )
        cards.append(
            f'<a class="roster-card" href="{character_href(entry.id)}">{image}'
            f'<h3 class="roster-card__title">{name}</h3>'
            f'<div class="roster-card__type">{html.escape(entry.type)}</div>'
            f'<div class="roster-card__intro">{html.escape(_preview(entry.intro))}</div></a>'
        )
    html_value = f'<div class="roster-grid">{"".join(cards)}</div>'
    _log_timing("render_cards", start, entries=len(entries), html_bytes=len(html_value))
    return html_value


def filtered_cards(state: RosterPageState, query: str) -> str:
    return render_cards(search_roster(state.roster, query), query=query, error=state.error)


async def create_entry(
    services: Services, state: RosterPageState, name: str, character_type: str
) -> Tuple[Optional[RosterEntry], str]:
    """Create a character and append it to the loaded roster. Returns (entry, message)."""
    try:
        entry = await create_character(services.store, state.gate, name, character_type)
    except CompendiumError as exc:
        logger.info("Character creation rejected: %s", exc)
        return None, exc.user_message
    state.roster.append(entry)
    return entry, f"Created {entry.name}."
