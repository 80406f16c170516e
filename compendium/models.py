from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Any, Mapping, Optional


def _text(value: object) -> str:
    return "" if value is None else str(value)


def _optional_text(value: object) -> Optional[str]:
    text_value = _text(value).strip()
    return text_value or None


def _timestamp(value: object) -> str:
    if isinstance(value, datetime):
        return value.isoformat()
    return _text(value)


def _int(value: object) -> int:
    try:
        return int(value)  # type: ignore[arg-type]
    except (TypeError, ValueError):
        return 0


@dataclass
class Character:
    id: str
    name: str
    type: str = "Character"
    intro: str = ""
    image_url: Optional[str] = None
    created_at: str = ""
    created_by: Optional[str] = None

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "Character":
        return cls(
            id=_text(row.get("id")),
            name=_text(row.get("name")),
            type=_text(row.get("type")) or "Character",
            intro=_text(row.get("intro")),
            image_url=_optional_text(row.get("image_url")),
            created_at=_timestamp(row.get("created_at")),
            created_by=_optional_text(row.get("created_by")),
        )


@dataclass
class Section:
    character_id: str
    section_key: str
    title: str
    content: str = ""
    display_order: int = 0
    id: Optional[str] = None

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "Section":
        return cls(
            id=_optional_text(row.get("id")),
            character_id=_text(row.get("character_id")),
            section_key=_text(row.get("section_key")),
            title=_text(row.get("title")),
            content=_text(row.get("content")),
            display_order=_int(row.get("display_order")),
        )


@dataclass(frozen=True)
class InfoboxField:
    character_id: str
    field_key: str
    field_value: str = ""

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "InfoboxField":
        return cls(
            character_id=_text(row.get("character_id")),
            field_key=_text(row.get("field_key")),
            field_value=_text(row.get("field_value")),
        )


@dataclass
class Document:
    id: str
    character_id: str
    doc_name: str
    doc_url: str
    display_order: int = 0

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "Document":
        return cls(
            id=_text(row.get("id")),
            character_id=_text(row.get("character_id")),
            doc_name=_text(row.get("doc_name")),
            doc_url=_text(row.get("doc_url")),
            display_order=_int(row.get("display_order")),
        )

    def copy(self) -> "Document":
        return replace(self)


@dataclass(frozen=True)
class Profile:
    user_id: str
    username: str
    role: str = "reader"
    email: str = ""

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "Profile":
        return cls(
            user_id=_text(row.get("id")),
            username=_text(row.get("username")),
            role=_text(row.get("role")).strip().lower() or "reader",
            email=_text(row.get("email")),
        )


@dataclass
class RosterEntry:
    id: str
    name: str
    type: str = "Character"
    intro: str = ""
    image_url: Optional[str] = None
    created_at: str = ""

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "RosterEntry":
        return cls(
            id=_text(row.get("id")),
            name=_text(row.get("name")),
            type=_text(row.get("type")) or "Character",
            intro=_text(row.get("intro")),
            image_url=_optional_text(row.get("image_url")),
            created_at=_timestamp(row.get("created_at")),
        )

    @classmethod
    def from_character(cls, character: Character) -> "RosterEntry":
        return cls(
            id=character.id,
            name=character.name,
            type=character.type,
            intro=character.intro,
            image_url=character.image_url,
            created_at=character.created_at,
        )


@dataclass
class SessionInfo:
    user_id: str
    email: str = ""
    display_name: str = ""
    extra: dict = field(default_factory=dict)
