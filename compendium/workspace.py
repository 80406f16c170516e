from __future__ import annotations

import logging
import time
from typing import Callable, Dict, List, Optional

from compendium.auth import AccessGate
from compendium.basics_editor import BasicsFieldEditor
from compendium.catalog import SECTION_CATALOG
from compendium.document_editor import DocumentListEditor
from compendium.image_pipeline import ImagePipeline
from compendium.infobox_editor import InfoboxEditor
from compendium.loader import CharacterView, load_character
from compendium.models import Document, RosterEntry, Section
from compendium.notifications import ToastChannel
from compendium.object_storage import ObjectStorage
from compendium.section_editor import SectionEditor
from compendium.store import RemoteStore

logger = logging.getLogger(__name__)


class CharacterWorkspace:
    """
    Everything one open character page needs: the loaded view, one editor per content shape and
    the toast channel they share. Each editor's success callback patches the view in place;
    nothing is re-fetched.
    """

    def __init__(
        self,
        store: RemoteStore,
        storage: ObjectStorage,
        gate: AccessGate,
        view: CharacterView,
        *,
        roster: Optional[List[RosterEntry]] = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.view = view
        self.gate = gate
        self.roster = roster if roster is not None else []
        self.toasts = ToastChannel()
        self.closed = False
        character = view.character

        self.name_editor = BasicsFieldEditor(
            store, gate, character, "name", on_saved=self._basics_saved, toasts=self.toasts
        )
        self.intro_editor = BasicsFieldEditor(
            store, gate, character, "intro", on_saved=self._basics_saved, toasts=self.toasts
        )
        self.section_editors: Dict[str, SectionEditor] = {}
        for spec in SECTION_CATALOG:
            section = view.section(spec.key)
            if section is None:
                # tolerate characters created before a catalog entry existed
                section = Section(character.id, spec.key, spec.title, "", spec.order)
            self.section_editors[spec.key] = SectionEditor(
                store, gate, section, on_saved=view.apply_section_content, toasts=self.toasts
            )
        self.infobox_editor = InfoboxEditor(
            store, gate, character.id, view.infobox, on_saved=view.apply_infobox, toasts=self.toasts
        )
        self.document_editor = DocumentListEditor(store, gate, character.id, view.documents, toasts=self.toasts)
        self.image_pipeline = ImagePipeline(
            store,
            storage,
            gate,
            character.id,
            character.image_url,
            on_changed=self._image_changed,
            toasts=self.toasts,
            clock=clock,
        )

    @property
    def character_id(self) -> str:
        return self.view.character_id

    @property
    def documents(self) -> List[Document]:
        return self.document_editor.documents

    def _roster_entry(self) -> Optional[RosterEntry]:
        for entry in self.roster:
            if entry.id == self.character_id:
                return entry
        return None

    def _basics_saved(self, field_name: str, value: str) -> None:
        self.view.apply_basics({field_name: value})
        entry = self._roster_entry()
        if entry is not None and field_name == "name":
            entry.name = value

    def _image_changed(self, url: Optional[str]) -> None:
        self.view.apply_basics({"image_url": url})
        entry = self._roster_entry()
        if entry is not None:
            entry.image_url = url

    def editors(self) -> list:
        return [
            self.name_editor,
            self.intro_editor,
            *self.section_editors.values(),
            self.infobox_editor,
            self.document_editor,
            self.image_pipeline,
        ]

    def close(self) -> None:
        """Detach every editor: requests already in flight finish, their local commits are dropped."""
        if self.closed:
            return
        self.closed = True
        for editor in self.editors():
            editor.detach()
        logger.info("Closed workspace for character %s", self.character_id)


async def open_character(
    store: RemoteStore,
    storage: ObjectStorage,
    gate: AccessGate,
    character_id: str,
    *,
    roster: Optional[List[RosterEntry]] = None,
    clock: Callable[[], float] = time.time,
) -> CharacterWorkspace:
    """Load the aggregate and build its editors; raises AggregateLoadError when loading fails."""
    result = await load_character(store, character_id)
    if result.error is not None:
        raise result.error
    return CharacterWorkspace(store, storage, gate, result.view, roster=roster, clock=clock)
