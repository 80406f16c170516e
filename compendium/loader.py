from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
import logging
import time
from typing import Dict, List, Mapping, Optional

from compendium.catalog import infobox_map, is_infobox_key, is_section_key
from compendium.errors import AggregateLoadError, RemoteError
from compendium.models import Character, Document, InfoboxField, RosterEntry, Section
from compendium.store import RemoteStore

logger = logging.getLogger(__name__)
timing_logger = logging.getLogger("uvicorn.error")


def _log_timing(event_name: str, start: float, **fields: object) -> None:
    elapsed_ms = (time.perf_counter() - start) * 1000.0
    if fields:
        field_text = " ".join(f"{key}={value}" for key, value in fields.items())
        timing_logger.info("loader.timing event=%s ms=%.2f %s", event_name, elapsed_ms, field_text)
        return
    timing_logger.info("loader.timing event=%s ms=%.2f", event_name, elapsed_ms)


@dataclass
class CharacterView:
    """One character with its three owned collections, as handed to the editors."""

    character: Character
    sections: List[Section] = field(default_factory=list)
    infobox: List[InfoboxField] = field(default_factory=list)
    documents: List[Document] = field(default_factory=list)

    @property
    def character_id(self) -> str:
        return self.character.id

    def section(self, section_key: str) -> Optional[Section]:
        for section in self.sections:
            if section.section_key == section_key:
                return section
        return None

    def infobox_values(self) -> Dict[str, str]:
        return infobox_map((row.field_key, row.field_value) for row in self.infobox)

    def apply_section_content(self, section_key: str, content: str) -> None:
        section = self.section(section_key)
        if section is not None:
            section.content = content

    def apply_infobox(self, values: Mapping[str, str]) -> None:
        merged = {row.field_key: row.field_value for row in self.infobox}
        merged.update({key: value for key, value in values.items() if is_infobox_key(key)})
        self.infobox = [
            InfoboxField(character_id=self.character_id, field_key=key, field_value=value)
            for key, value in merged.items()
        ]

    def apply_basics(self, fields: Mapping[str, Optional[str]]) -> None:
        for key, value in fields.items():
            if key == "image_url":
                self.character.image_url = value or None
            elif key in {"name", "intro", "type"}:
                setattr(self.character, key, value or "")


@dataclass(frozen=True)
class LoadResult:
    view: Optional[CharacterView] = None
    error: Optional[AggregateLoadError] = None

    @property
    def ok(self) -> bool:
        return self.error is None and self.view is not None


@dataclass(frozen=True)
class RosterResult:
    entries: List[RosterEntry] = field(default_factory=list)
    error: Optional[RemoteError] = None


def _raise_if_not_exception(results) -> None:
    for result in results:
        if isinstance(result, BaseException) and not isinstance(result, Exception):
            raise result


async def load_character(store: RemoteStore, character_id: str) -> LoadResult:
    """
    Fetch the character row, sections, infobox rows and documents concurrently.

    Any failed fetch (or a missing character) fails the whole aggregate: the caller gets no view,
    even when three of the four fetches succeeded. Section and infobox rows whose keys are not in
    the catalog are dropped here so nothing downstream ever sees them.
    """
    start = time.perf_counter()
    results = await asyncio.gather(
        store.fetch_character(character_id),
        store.fetch_sections(character_id),
        store.fetch_infobox(character_id),
        store.fetch_documents(character_id),
        return_exceptions=True,
    )
    _raise_if_not_exception(results)

    first_error = next((result for result in results if isinstance(result, Exception)), None)
    if first_error is not None:
        logger.warning("Loading character %s failed: %s", character_id, first_error)
        _log_timing("load_character", start, character_id=character_id, ok=False)
        return LoadResult(error=AggregateLoadError(character_id, first_error))

    character, sections, infobox, documents = results
    if character is None:
        _log_timing("load_character", start, character_id=character_id, ok=False)
        return LoadResult(error=AggregateLoadError(character_id))

    known_sections = sorted(
        (section for section in sections if is_section_key(section.section_key)),
        key=lambda section: section.display_order,
    )
    known_infobox = [row for row in infobox if is_infobox_key(row.field_key)]
    dropped = (len(sections) - len(known_sections)) + (len(infobox) - len(known_infobox))
    if dropped:
        logger.info("Dropped %d uncatalogued rows for character %s", dropped, character_id)

    view = CharacterView(
        character=character,
        sections=known_sections,
        infobox=known_infobox,
        documents=list(documents),
    )
    _log_timing(
        "load_character",
        start,
        character_id=character_id,
        ok=True,
        sections=len(known_sections),
        documents=len(view.documents),
    )
    return LoadResult(view=view)


async def load_roster(store: RemoteStore) -> RosterResult:
    start = time.perf_counter()
    try:
        entries = await store.fetch_roster()
    except RemoteError as exc:
        logger.warning("Loading roster failed: %s", exc)
        _log_timing("load_roster", start, ok=False)
        return RosterResult(error=exc)
    _log_timing("load_roster", start, ok=True, count=len(entries))
    return RosterResult(entries=list(entries))
