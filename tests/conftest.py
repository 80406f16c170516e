from __future__ import annotations

import asyncio
import itertools
from typing import Dict, List, Mapping, Optional, Sequence

import pytest

from compendium.auth import AccessGate
from compendium.catalog import SECTION_CATALOG
from compendium.errors import CompendiumError, RemoteError
from compendium.models import Character, Document, InfoboxField, Profile, RosterEntry, Section


class FakeStore:
    """In-memory RemoteStore. Every call is recorded; `fail()` makes a method raise."""

    def __init__(self) -> None:
        self.characters: Dict[str, Character] = {}
        self.sections: Dict[str, List[Section]] = {}
        self.infobox: Dict[str, Dict[str, str]] = {}
        self.documents: Dict[str, List[Document]] = {}
        self.profiles: Dict[str, Profile] = {}
        self.calls: List[tuple] = []
        self.failures: Dict[str, CompendiumError] = {}
        self.failing_infobox_keys: set[str] = set()
        # when set, every call waits on it after being recorded
        self.hold: Optional[asyncio.Event] = None
        self._ids = itertools.count(1)

    def fail(self, method: str, error: Optional[CompendiumError] = None) -> None:
        self.failures[method] = error or RemoteError(f"{method} failed")

    def calls_to(self, method: str) -> List[tuple]:
        return [call for call in self.calls if call[0] == method]

    async def _record(self, method: str, *args) -> None:
        self.calls.append((method, *args))
        if self.hold is not None:
            await self.hold.wait()
        error = self.failures.get(method)
        if error is not None:
            raise error

    def add_character(
        self,
        name: str,
        *,
        character_type: str = "Character",
        intro: str = "",
        image_url: Optional[str] = None,
        character_id: Optional[str] = None,
    ) -> Character:
        character_id = character_id or f"char-{next(self._ids)}"
        character = Character(id=character_id, name=name, type=character_type, intro=intro, image_url=image_url)
        self.characters[character_id] = character
        self.sections[character_id] = [
            Section(character_id, spec.key, spec.title, "", spec.order, id=f"sec-{next(self._ids)}")
            for spec in SECTION_CATALOG
        ]
        self.infobox[character_id] = {}
        self.documents[character_id] = []
        return character

    # -- reads -------------------------------------------------------------

    async def fetch_character(self, character_id: str) -> Optional[Character]:
        await self._record("fetch_character", character_id)
        character = self.characters.get(character_id)
        return Character(**vars(character)) if character is not None else None

    async def fetch_sections(self, character_id: str) -> List[Section]:
        await self._record("fetch_sections", character_id)
        return [Section(**vars(section)) for section in self.sections.get(character_id, [])]

    async def fetch_infobox(self, character_id: str) -> List[InfoboxField]:
        await self._record("fetch_infobox", character_id)
        return [
            InfoboxField(character_id, key, value) for key, value in self.infobox.get(character_id, {}).items()
        ]

    async def fetch_documents(self, character_id: str) -> List[Document]:
        await self._record("fetch_documents", character_id)
        return [doc.copy() for doc in self.documents.get(character_id, [])]

    async def fetch_roster(self) -> List[RosterEntry]:
        await self._record("fetch_roster")
        return sorted(
            (RosterEntry.from_character(character) for character in self.characters.values()),
            key=lambda entry: entry.name,
        )

    async def get_profile(self, user_id: str) -> Optional[Profile]:
        await self._record("get_profile", user_id)
        return self.profiles.get(user_id)

    # -- writes ------------------------------------------------------------

    async def create_character(self, name: str, character_type: str, created_by: Optional[str]) -> Character:
        await self._record("create_character", name, character_type, created_by)
        character = self.add_character(name, character_type=character_type)
        character.created_by = created_by
        return Character(**vars(character))

    async def update_character_basics(self, character_id: str, fields: Mapping[str, Optional[str]]) -> None:
        await self._record("update_character_basics", character_id, dict(fields))
        character = self.characters.get(character_id)
        if character is None:
            raise RemoteError(f"character {character_id!r} not found")
        for key, value in fields.items():
            setattr(character, key, value)

    async def update_section_content(self, character_id: str, section_key: str, content: str) -> None:
        await self._record("update_section_content", character_id, section_key, content)
        for section in self.sections.get(character_id, []):
            if section.section_key == section_key:
                section.content = content
                return
        raise RemoteError(f"section {section_key!r} not found")

    async def upsert_infobox_field(self, character_id: str, field_key: str, field_value: str) -> None:
        await self._record("upsert_infobox_field", character_id, field_key, field_value)
        if field_key in self.failing_infobox_keys:
            raise RemoteError(f"upsert {field_key} failed")
        self.infobox.setdefault(character_id, {})[field_key] = field_value

    async def insert_document(self, character_id: str, doc_name: str, doc_url: str, display_order: int) -> Document:
        await self._record("insert_document", character_id, doc_name, doc_url, display_order)
        document = Document(f"doc-{next(self._ids)}", character_id, doc_name, doc_url, display_order)
        self.documents.setdefault(character_id, []).append(document)
        return document.copy()

    async def update_document(self, document_id: str, doc_name: str, doc_url: str) -> None:
        await self._record("update_document", document_id, doc_name, doc_url)
        for documents in self.documents.values():
            for document in documents:
                if document.id == document_id:
                    document.doc_name = doc_name
                    document.doc_url = doc_url
                    return
        raise RemoteError(f"document {document_id!r} not found")

    async def delete_document(self, document_id: str) -> None:
        await self._record("delete_document", document_id)
        for character_id, documents in self.documents.items():
            self.documents[character_id] = [doc for doc in documents if doc.id != document_id]

    async def ensure_profile(self, user_id: str, email: str, username: str) -> Profile:
        await self._record("ensure_profile", user_id, email, username)
        if user_id not in self.profiles:
            self.profiles[user_id] = Profile(user_id=user_id, username=username, role="reader", email=email)
        return self.profiles[user_id]


class FakeStorage:
    """In-memory ObjectStorage recording remove/upload calls."""

    def __init__(self) -> None:
        self.objects: Dict[str, bytes] = {}
        self.calls: List[tuple] = []
        self.fail_remove = False
        self.fail_upload = False

    def calls_to(self, method: str) -> List[tuple]:
        return [call for call in self.calls if call[0] == method]

    async def remove(self, paths: Sequence[str]) -> None:
        self.calls.append(("remove", list(paths)))
        if self.fail_remove:
            raise RemoteError("remove failed")
        for path in paths:
            self.objects.pop(path, None)

    async def upload(self, path: str, data: bytes, *, content_type: Optional[str], overwrite: bool) -> str:
        self.calls.append(("upload", path, content_type, overwrite))
        if self.fail_upload:
            raise RemoteError("upload failed")
        self.objects[path] = data
        return path

    def public_url(self, path: str) -> str:
        return f"/media/{path}"


def make_gate(role: Optional[str], user_id: str = "user-1") -> AccessGate:
    if role is None:
        return AccessGate.anonymous()
    return AccessGate(Profile(user_id=user_id, username=user_id.title(), role=role))


@pytest.fixture
def store() -> FakeStore:
    return FakeStore()


@pytest.fixture
def storage() -> FakeStorage:
    return FakeStorage()


@pytest.fixture
def editor_gate() -> AccessGate:
    return make_gate("editor", "eddie")


@pytest.fixture
def reader_gate() -> AccessGate:
    return make_gate("reader", "rita")


@pytest.fixture
def character(store: FakeStore) -> Character:
    return store.add_character("Ravana", character_type="Rakshasa", intro="King of Lanka.")
