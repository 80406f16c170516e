import asyncio

import pytest

from compendium.catalog import SECTION_CATALOG
from compendium.errors import AggregateLoadError
from compendium.image_pipeline import ImageUpload
from compendium.loader import load_roster
from compendium.workspace import open_character


def _open(store, storage, gate, character_id, roster=None):
    return asyncio.run(open_character(store, storage, gate, character_id, roster=roster, clock=lambda: 2.0))


def test_open_builds_one_editor_per_shape(store, storage, editor_gate, character):
    workspace = _open(store, storage, editor_gate, character.id)

    assert list(workspace.section_editors) == [spec.key for spec in SECTION_CATALOG]
    assert workspace.name_editor.value == "Ravana"
    assert workspace.intro_editor.value == "King of Lanka."
    assert workspace.documents == []
    assert len(workspace.editors()) == 2 + len(SECTION_CATALOG) + 3


def test_missing_section_rows_get_placeholders(store, storage, editor_gate, character):
    store.sections[character.id] = store.sections[character.id][:2]

    workspace = _open(store, storage, editor_gate, character.id)

    assert workspace.section_editors["appearances"].content == ""
    assert workspace.section_editors["appearances"].title == "Appearances"


def test_open_raises_on_load_failure(store, storage, editor_gate, character):
    store.fail("fetch_infobox")
    with pytest.raises(AggregateLoadError):
        _open(store, storage, editor_gate, character.id)


def test_successful_commits_update_view_and_roster(store, storage, editor_gate, character):
    roster = asyncio.run(load_roster(store)).entries
    workspace = _open(store, storage, editor_gate, character.id, roster=roster)

    async def scenario():
        workspace.name_editor.begin_edit()
        workspace.name_editor.update_draft("Dashagriva")
        await workspace.name_editor.save()

        section = workspace.section_editors["etymology"]
        section.begin_edit()
        section.update_draft("He who roars.")
        await section.save()

        workspace.infobox_editor.begin_edit()
        workspace.infobox_editor.set_field("titles", "Lankeshwar")
        await workspace.infobox_editor.save()

    asyncio.run(scenario())

    view = workspace.view
    assert view.character.name == "Dashagriva"
    assert roster[0].name == "Dashagriva"
    assert view.section("etymology").content == "He who roars."
    assert view.infobox_values()["titles"] == "Lankeshwar"
    assert workspace.toasts.latest.message == "Infobox saved."


def test_image_change_updates_roster_entry(store, storage, editor_gate, character):
    roster = asyncio.run(load_roster(store)).entries
    workspace = _open(store, storage, editor_gate, character.id, roster=roster)

    asyncio.run(workspace.image_pipeline.upload(ImageUpload("p.png", "image/png", b"\x89PNG")))

    assert roster[0].image_url == f"/media/{character.id}/portrait.png?t=2000"
    assert workspace.view.character.image_url == roster[0].image_url


def test_close_detaches_every_editor(store, storage, editor_gate, character):
    workspace = _open(store, storage, editor_gate, character.id)
    section = workspace.section_editors["biography"]
    section.begin_edit()
    section.update_draft("late")

    async def scenario():
        store.hold = asyncio.Event()
        task = asyncio.create_task(section.save())
        await asyncio.sleep(0)
        workspace.close()
        store.hold.set()
        return await task

    result = asyncio.run(scenario())

    assert workspace.closed
    assert all(editor.detached for editor in workspace.editors())
    assert not result.ok
    assert workspace.view.section("biography").content == ""
    assert workspace.toasts.latest is None
