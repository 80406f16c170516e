from __future__ import annotations

import logging
import os
import threading
import time
from typing import Any, Callable, ContextManager, Dict, List, Mapping, Optional, Protocol
from uuid import uuid4

from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
from starlette.concurrency import run_in_threadpool

from compendium.catalog import SECTION_CATALOG, require_infobox_key, require_section_key
from compendium.db import is_truthy, readonly_session_scope, session_scope
from compendium.errors import RemoteError, ValidationError
from compendium.models import Character, Document, InfoboxField, Profile, RosterEntry, Section

logger = logging.getLogger(__name__)
timing_logger = logging.getLogger("uvicorn.error")

DEFAULT_CHARACTER_TYPE = "Character"
DEFAULT_ROLE = "reader"
BASICS_FIELDS: tuple[str, ...] = ("name", "intro", "type", "image_url")

SCHEMA_BOOTSTRAP = is_truthy(os.getenv("COMPENDIUM_SCHEMA_BOOTSTRAP", "1"))
_SCHEMA_LOCK = threading.Lock()
_SCHEMA_READY = False

SessionScope = Callable[[], ContextManager[Session]]

_SCHEMA_STATEMENTS: tuple[str, ...] = (
    """
    CREATE TABLE IF NOT EXISTS profiles (
        id TEXT PRIMARY KEY,
        email TEXT NOT NULL DEFAULT '',
        username TEXT NOT NULL,
        role TEXT NOT NULL DEFAULT 'reader',
        created_at TIMESTAMP NOT NULL DEFAULT CURRENT_TIMESTAMP
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS characters (
        id TEXT PRIMARY KEY,
        name TEXT NOT NULL,
        type TEXT NOT NULL DEFAULT 'Character',
        intro TEXT NOT NULL DEFAULT '',
        image_url TEXT,
        created_by TEXT,
        created_at TIMESTAMP NOT NULL DEFAULT CURRENT_TIMESTAMP
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS character_sections (
        id TEXT PRIMARY KEY,
        character_id TEXT NOT NULL REFERENCES characters(id) ON DELETE CASCADE,
        section_key TEXT NOT NULL,
        title TEXT NOT NULL,
        content TEXT NOT NULL DEFAULT '',
        display_order INTEGER NOT NULL DEFAULT 0,
        UNIQUE (character_id, section_key)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS character_infobox (
        id TEXT PRIMARY KEY,
        character_id TEXT NOT NULL REFERENCES characters(id) ON DELETE CASCADE,
        field_key TEXT NOT NULL,
        field_value TEXT NOT NULL DEFAULT '',
        UNIQUE (character_id, field_key)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS character_documents (
        id TEXT PRIMARY KEY,
        character_id TEXT NOT NULL REFERENCES characters(id) ON DELETE CASCADE,
        doc_name TEXT NOT NULL,
        doc_url TEXT NOT NULL,
        display_order INTEGER NOT NULL DEFAULT 0,
        created_at TIMESTAMP NOT NULL DEFAULT CURRENT_TIMESTAMP
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_character_sections_character_id ON character_sections(character_id)",
    "CREATE INDEX IF NOT EXISTS idx_character_documents_character_id ON character_documents(character_id)",
    "CREATE INDEX IF NOT EXISTS idx_characters_name ON characters(name)",
)


class RemoteStore(Protocol):
    async def fetch_character(self, character_id: str) -> Optional[Character]: ...

    async def fetch_sections(self, character_id: str) -> List[Section]: ...

    async def fetch_infobox(self, character_id: str) -> List[InfoboxField]: ...

    async def fetch_documents(self, character_id: str) -> List[Document]: ...

    async def fetch_roster(self) -> List[RosterEntry]: ...

    async def create_character(self, name: str, character_type: str, created_by: Optional[str]) -> Character: ...

    async def update_character_basics(self, character_id: str, fields: Mapping[str, Optional[str]]) -> None: ...

    async def update_section_content(self, character_id: str, section_key: str, content: str) -> None: ...

    async def upsert_infobox_field(self, character_id: str, field_key: str, field_value: str) -> None: ...

    async def insert_document(
        self, character_id: str, doc_name: str, doc_url: str, display_order: int
    ) -> Document: ...

    async def update_document(self, document_id: str, doc_name: str, doc_url: str) -> None: ...

    async def delete_document(self, document_id: str) -> None: ...

    async def get_profile(self, user_id: str) -> Optional[Profile]: ...

    async def ensure_profile(self, user_id: str, email: str, username: str) -> Profile: ...


def _log_timing(event_name: str, start: float, **fields: object) -> None:
    elapsed_ms = (time.perf_counter() - start) * 1000.0
    if fields:
        field_text = " ".join(f"{key}={value}" for key, value in fields.items())
        timing_logger.info("store.timing event=%s ms=%.2f %s", event_name, elapsed_ms, field_text)
        return
    timing_logger.info("store.timing event=%s ms=%.2f", event_name, elapsed_ms)


def _new_id() -> str:
    return str(uuid4())


def ensure_schema(session: Session) -> None:
    for statement in _SCHEMA_STATEMENTS:
        session.execute(text(statement))


def bootstrap_schema(write_scope: SessionScope = session_scope) -> None:
    global _SCHEMA_READY
    if _SCHEMA_READY:
        return
    with _SCHEMA_LOCK:
        if _SCHEMA_READY:
            return
        if not SCHEMA_BOOTSTRAP:
            _SCHEMA_READY = True
            return
        start = time.perf_counter()
        with write_scope() as session:
            ensure_schema(session)
        _SCHEMA_READY = True
        _log_timing("bootstrap_schema", start)


def normalize_basics(fields: Mapping[str, Optional[str]]) -> Dict[str, Optional[str]]:
    unknown = sorted(set(fields) - set(BASICS_FIELDS))
    if unknown:
        raise ValidationError(f"Unsupported character fields: {', '.join(unknown)}")
    normalized: Dict[str, Optional[str]] = {}
    for key, value in fields.items():
        if key == "image_url":
            normalized[key] = (value or "").strip() or None
        elif key == "name":
            name = (value or "").strip()
            if not name:
                raise ValidationError("Name cannot be empty.", field="name")
            normalized[key] = name
        elif key == "type":
            normalized[key] = (value or "").strip() or DEFAULT_CHARACTER_TYPE
        else:
            normalized[key] = value or ""
    return normalized


class SqlRemoteStore:
    """
    RemoteStore over SQLAlchemy sessions.

    Every call runs its blocking session work in the Starlette thread pool so that several
    awaits issued together (the aggregate loader, the infobox batch) overlap on the wire.
    """

    def __init__(
        self,
        *,
        write_scope: SessionScope = session_scope,
        read_scope: SessionScope = readonly_session_scope,
    ) -> None:
        self._write_scope = write_scope
        self._read_scope = read_scope

    async def _run(self, event_name: str, func: Callable[..., Any], *args: Any) -> Any:
        start = time.perf_counter()
        try:
            return await run_in_threadpool(func, *args)
        except SQLAlchemyError as exc:
            logger.warning("store.%s failed: %s", event_name, exc)
            raise RemoteError(f"{event_name} failed") from exc
        finally:
            _log_timing(event_name, start)

    # -- reads -------------------------------------------------------------

    def _fetch_character_sync(self, character_id: str) -> Optional[Character]:
        with self._read_scope() as session:
            row = session.execute(
                text(
                    """
                    SELECT id, name, type, intro, image_url, created_by, created_at
                    FROM characters
                    WHERE id = :id
                    """
                ),
                {"id": character_id},
            ).mappings().one_or_none()
            return Character.from_row(row) if row is not None else None

    async def fetch_character(self, character_id: str) -> Optional[Character]:
        return await self._run("fetch_character", self._fetch_character_sync, character_id)

    def _fetch_sections_sync(self, character_id: str) -> List[Section]:
        with self._read_scope() as session:
            rows = session.execute(
                text(
                    """
                    SELECT id, character_id, section_key, title, content, display_order
                    FROM character_sections
                    WHERE character_id = :character_id
                    ORDER BY display_order
                    """
                ),
                {"character_id": character_id},
            ).mappings().all()
            return [Section.from_row(row) for row in rows]

    async def fetch_sections(self, character_id: str) -> List[Section]:
        return await self._run("fetch_sections", self._fetch_sections_sync, character_id)

    def _fetch_infobox_sync(self, character_id: str) -> List[InfoboxField]:
        with self._read_scope() as session:
            rows = session.execute(
                text(
                    """
                    SELECT character_id, field_key, field_value
                    FROM character_infobox
                    WHERE character_id = :character_id
                    """
                ),
                {"character_id": character_id},
            ).mappings().all()
            return [InfoboxField.from_row(row) for row in rows]

    async def fetch_infobox(self, character_id: str) -> List[InfoboxField]:
        return await self._run("fetch_infobox", self._fetch_infobox_sync, character_id)

    def _fetch_documents_sync(self, character_id: str) -> List[Document]:
        with self._read_scope() as session:
            rows = session.execute(
                text(
                    """
                    SELECT id, character_id, doc_name, doc_url, display_order
                    FROM character_documents
                    WHERE character_id = :character_id
                    ORDER BY display_order, created_at
                    """
                ),
                {"character_id": character_id},
            ).mappings().all()
            return [Document.from_row(row) for row in rows]

    async def fetch_documents(self, character_id: str) -> List[Document]:
        return await self._run("fetch_documents", self._fetch_documents_sync, character_id)

    def _fetch_roster_sync(self) -> List[RosterEntry]:
        with self._read_scope() as session:
            rows = session.execute(
                text(
                    """
                    SELECT id, name, type, intro, image_url, created_at
                    FROM characters
                    ORDER BY name
                    """
                )
            ).mappings().all()
            return [RosterEntry.from_row(row) for row in rows]

    async def fetch_roster(self) -> List[RosterEntry]:
        return await self._run("fetch_roster", self._fetch_roster_sync)

    def _get_profile_sync(self, user_id: str) -> Optional[Profile]:
        with self._read_scope() as session:
            row = session.execute(
                text("SELECT id, email, username, role FROM profiles WHERE id = :id"),
                {"id": user_id},
            ).mappings().one_or_none()
            return Profile.from_row(row) if row is not None else None

    async def get_profile(self, user_id: str) -> Optional[Profile]:
        return await self._run("get_profile", self._get_profile_sync, user_id)

    # -- writes ------------------------------------------------------------

    def _create_character_sync(self, name: str, character_type: str, created_by: Optional[str]) -> Character:
        character_id = _new_id()
        with self._write_scope() as session:
            session.execute(
                text(
                    """
                    INSERT INTO characters (id, name, type, intro, created_by)
                    VALUES (:id, :name, :type, '', :created_by)
                    """
                ),
                {"id": character_id, "name": name, "type": character_type, "created_by": created_by},
            )
            # the section catalog is seeded in the same transaction as the character row
            session.execute(
                text(
                    """
                    INSERT INTO character_sections (id, character_id, section_key, title, content, display_order)
                    VALUES (:id, :character_id, :section_key, :title, '', :display_order)
                    """
                ),
                [
                    {
                        "id": _new_id(),
                        "character_id": character_id,
                        "section_key": spec.key,
                        "title": spec.title,
                        "display_order": spec.order,
                    }
                    for spec in SECTION_CATALOG
                ],
            )
            row = session.execute(
                text(
                    """
                    SELECT id, name, type, intro, image_url, created_by, created_at
                    FROM characters
                    WHERE id = :id
                    """
                ),
                {"id": character_id},
            ).mappings().one()
            return Character.from_row(row)

    async def create_character(self, name: str, character_type: str, created_by: Optional[str]) -> Character:
        clean_name = (name or "").strip()
        if not clean_name:
            raise ValidationError("Name cannot be empty.", field="name")
        clean_type = (character_type or "").strip() or DEFAULT_CHARACTER_TYPE
        return await self._run("create_character", self._create_character_sync, clean_name, clean_type, created_by)

    def _update_basics_sync(self, character_id: str, fields: Dict[str, Optional[str]]) -> None:
        assignments = ", ".join(f"{key} = :{key}" for key in fields)
        with self._write_scope() as session:
            result = session.execute(
                text(f"UPDATE characters SET {assignments} WHERE id = :character_id"),
                {**fields, "character_id": character_id},
            )
            if not result.rowcount:
                raise RemoteError(f"character {character_id!r} not found")

    async def update_character_basics(self, character_id: str, fields: Mapping[str, Optional[str]]) -> None:
        normalized = normalize_basics(fields)
        if not normalized:
            return
        await self._run("update_character_basics", self._update_basics_sync, character_id, normalized)

    def _update_section_sync(self, character_id: str, section_key: str, content: str) -> None:
        with self._write_scope() as session:
            result = session.execute(
                text(
                    """
                    UPDATE character_sections
                    SET content = :content
                    WHERE character_id = :character_id
                      AND section_key = :section_key
                    """
                ),
                {"content": content, "character_id": character_id, "section_key": section_key},
            )
            if not result.rowcount:
                raise RemoteError(f"section {section_key!r} not found for character {character_id!r}")

    async def update_section_content(self, character_id: str, section_key: str, content: str) -> None:
        require_section_key(section_key)
        await self._run("update_section_content", self._update_section_sync, character_id, section_key, content or "")

    def _upsert_infobox_sync(self, character_id: str, field_key: str, field_value: str) -> None:
        with self._write_scope() as session:
            session.execute(
                text(
                    """
                    INSERT INTO character_infobox (id, character_id, field_key, field_value)
                    VALUES (:id, :character_id, :field_key, :field_value)
                    ON CONFLICT (character_id, field_key)
                    DO UPDATE SET field_value = excluded.field_value
                    """
                ),
                {
                    "id": _new_id(),
                    "character_id": character_id,
                    "field_key": field_key,
                    "field_value": field_value,
                },
            )

    async def upsert_infobox_field(self, character_id: str, field_key: str, field_value: str) -> None:
        require_infobox_key(field_key)
        await self._run("upsert_infobox_field", self._upsert_infobox_sync, character_id, field_key, field_value or "")

    def _insert_document_sync(self, character_id: str, doc_name: str, doc_url: str, display_order: int) -> Document:
        document_id = _new_id()
        with self._write_scope() as session:
            session.execute(
                text(
                    """
                    INSERT INTO character_documents (id, character_id, doc_name, doc_url, display_order)
                    VALUES (:id, :character_id, :doc_name, :doc_url, :display_order)
                    """
                ),
                {
                    "id": document_id,
                    "character_id": character_id,
                    "doc_name": doc_name,
                    "doc_url": doc_url,
                    "display_order": display_order,
                },
            )
            row = session.execute(
                text(
                    """
                    SELECT id, character_id, doc_name, doc_url, display_order
                    FROM character_documents
                    WHERE id = :id
                    """
                ),
                {"id": document_id},
            ).mappings().one()
            return Document.from_row(row)

    async def insert_document(self, character_id: str, doc_name: str, doc_url: str, display_order: int) -> Document:
        return await self._run(
            "insert_document", self._insert_document_sync, character_id, doc_name, doc_url, int(display_order)
        )

    def _update_document_sync(self, document_id: str, doc_name: str, doc_url: str) -> None:
        with self._write_scope() as session:
            result = session.execute(
                text("UPDATE character_documents SET doc_name = :doc_name, doc_url = :doc_url WHERE id = :id"),
                {"doc_name": doc_name, "doc_url": doc_url, "id": document_id},
            )
            if not result.rowcount:
                raise RemoteError(f"document {document_id!r} not found")

    async def update_document(self, document_id: str, doc_name: str, doc_url: str) -> None:
        await self._run("update_document", self._update_document_sync, document_id, doc_name, doc_url)

    def _delete_document_sync(self, document_id: str) -> None:
        with self._write_scope() as session:
            session.execute(text("DELETE FROM character_documents WHERE id = :id"), {"id": document_id})

    async def delete_document(self, document_id: str) -> None:
        await self._run("delete_document", self._delete_document_sync, document_id)

    def _ensure_profile_sync(self, user_id: str, email: str, username: str) -> Profile:
        with self._write_scope() as session:
            # an existing role is never touched here; role assignment happens outside the app
            session.execute(
                text(
                    """
                    INSERT INTO profiles (id, email, username, role)
                    VALUES (:id, :email, :username, :role)
                    ON CONFLICT (id) DO NOTHING
                    """
                ),
                {"id": user_id, "email": email, "username": username, "role": DEFAULT_ROLE},
            )
            row = session.execute(
                text("SELECT id, email, username, role FROM profiles WHERE id = :id"),
                {"id": user_id},
            ).mappings().one()
            return Profile.from_row(row)

    async def ensure_profile(self, user_id: str, email: str, username: str) -> Profile:
        return await self._run("ensure_profile", self._ensure_profile_sync, user_id, email or "", username or user_id)
