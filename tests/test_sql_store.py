import asyncio

import pytest
from sqlalchemy import text

from compendium.catalog import SECTION_CATALOG
from compendium.db import bind_engine, create_engine_for_url, session_scope
from compendium.errors import RemoteError, ValidationError
from compendium.store import SqlRemoteStore, ensure_schema, normalize_basics


@pytest.fixture
def sql_store(tmp_path):
    engine = create_engine_for_url(f"sqlite:///{tmp_path / 'compendium.db'}")
    bind_engine(engine)
    with session_scope() as session:
        ensure_schema(session)
    yield SqlRemoteStore()
    bind_engine(None)
    engine.dispose()


def run(coro):
    return asyncio.run(coro)


def test_create_character_seeds_sections(sql_store):
    character = run(sql_store.create_character("  Vibhishana ", "", "eddie"))

    assert character.name == "Vibhishana"
    assert character.type == "Character"
    assert character.created_by == "eddie"
    sections = run(sql_store.fetch_sections(character.id))
    assert [s.section_key for s in sections] == [spec.key for spec in SECTION_CATALOG]
    assert all(s.content == "" for s in sections)


def test_create_character_rejects_blank_name(sql_store):
    with pytest.raises(ValidationError):
        run(sql_store.create_character("  ", "Deva", None))


def test_fetch_missing_character_is_none(sql_store):
    assert run(sql_store.fetch_character("missing")) is None


def test_update_basics_and_roster_order(sql_store):
    zed = run(sql_store.create_character("Zed", "Demon", None))
    run(sql_store.create_character("Angada", "Vanara", None))

    run(sql_store.update_character_basics(zed.id, {"intro": "Last in line.", "image_url": "  "}))

    loaded = run(sql_store.fetch_character(zed.id))
    assert loaded.intro == "Last in line."
    assert loaded.image_url is None
    assert [entry.name for entry in run(sql_store.fetch_roster())] == ["Angada", "Zed"]


def test_update_basics_rejects_unknown_fields(sql_store):
    character = run(sql_store.create_character("Zed", "Demon", None))
    with pytest.raises(ValidationError):
        run(sql_store.update_character_basics(character.id, {"created_by": "someone"}))


def test_update_basics_on_missing_character_is_remote_error(sql_store):
    with pytest.raises(RemoteError):
        run(sql_store.update_character_basics("missing", {"intro": "x"}))


def test_section_update_is_idempotent(sql_store):
    character = run(sql_store.create_character("Sita", "", None))
    for _ in range(2):
        run(sql_store.update_section_content(character.id, "biography", "Daughter of the earth."))

    sections = {s.section_key: s.content for s in run(sql_store.fetch_sections(character.id))}
    assert sections["biography"] == "Daughter of the earth."


def test_section_update_without_row_is_remote_error(sql_store):
    with pytest.raises(RemoteError):
        run(sql_store.update_section_content("missing", "biography", "x"))


def test_infobox_upsert_round_trip(sql_store):
    character = run(sql_store.create_character("Sita", "", None))
    run(sql_store.upsert_infobox_field(character.id, "born", "Mithila"))
    run(sql_store.upsert_infobox_field(character.id, "born", "Janakpur"))

    rows = run(sql_store.fetch_infobox(character.id))
    assert [(row.field_key, row.field_value) for row in rows] == [("born", "Janakpur")]


def test_infobox_rejects_unknown_key(sql_store):
    with pytest.raises(ValidationError):
        run(sql_store.upsert_infobox_field("c", "shoe_size", "12"))


def test_documents_insert_update_delete(sql_store):
    character = run(sql_store.create_character("Sita", "", None))
    first = run(sql_store.insert_document(character.id, "Epic", "https://example.com/epic", 0))
    second = run(sql_store.insert_document(character.id, "Notes", "https://example.com/notes", 1))

    run(sql_store.update_document(second.id, "Notes v2", "https://example.com/v2"))
    run(sql_store.delete_document(first.id))
    run(sql_store.delete_document("already-gone"))

    docs = run(sql_store.fetch_documents(character.id))
    assert [(d.doc_name, d.doc_url, d.display_order) for d in docs] == [("Notes v2", "https://example.com/v2", 1)]
    with pytest.raises(RemoteError):
        run(sql_store.update_document(first.id, "x", "https://x"))


def test_ensure_profile_never_changes_role(sql_store):
    profile = run(sql_store.ensure_profile("ed@example.com", "ed@example.com", "Ed"))
    assert profile.role == "reader"

    with session_scope() as session:
        session.execute(text("UPDATE profiles SET role = 'editor' WHERE id = :id"), {"id": "ed@example.com"})

    again = run(sql_store.ensure_profile("ed@example.com", "ed@example.com", "Edward"))
    assert again.role == "editor"
    assert again.username == "Ed"
    assert run(sql_store.get_profile("nobody")) is None


def test_normalize_basics():
    assert normalize_basics({"type": " ", "image_url": ""}) == {"type": "Character", "image_url": None}
    with pytest.raises(ValidationError):
        normalize_basics({"name": "  "})
