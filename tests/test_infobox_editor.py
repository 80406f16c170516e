import asyncio

import pytest

from compendium.catalog import INFOBOX_KEYS
from compendium.editing import EditorState
from compendium.errors import ValidationError
from compendium.infobox_editor import InfoboxEditor
from compendium.models import InfoboxField
from compendium.notifications import ToastChannel


def _editor(store, gate, character, **kwargs):
    rows = [InfoboxField(character.id, "species", "Rakshasa"), InfoboxField(character.id, "born", "Lanka")]
    return InfoboxEditor(store, gate, character.id, rows, **kwargs)


def test_save_upserts_every_catalog_key(store, editor_gate, character):
    saved = []
    editor = _editor(store, editor_gate, character, on_saved=saved.append)
    editor.begin_edit()
    editor.set_field("weapon", "Chandrahas")

    result = asyncio.run(editor.save())

    assert result.ok
    assert editor.state is EditorState.VIEWING
    upserted = [call[2] for call in store.calls_to("upsert_infobox_field")]
    assert sorted(upserted) == sorted(INFOBOX_KEYS)
    assert editor.committed["weapon"] == "Chandrahas"
    assert editor.committed["species"] == "Rakshasa"
    assert saved[0]["weapon"] == "Chandrahas"


def test_upsert_then_read_returns_written_value(store, editor_gate, character):
    editor = _editor(store, editor_gate, character)
    editor.begin_edit()
    editor.set_field("vahan", "Pushpaka Vimana")
    asyncio.run(editor.save())

    rows = asyncio.run(store.fetch_infobox(character.id))
    assert {row.field_key: row.field_value for row in rows}["vahan"] == "Pushpaka Vimana"


def test_partial_failure_commits_only_saved_keys(store, editor_gate, character):
    store.failing_infobox_keys = {"weapon"}
    saved = []
    toasts = ToastChannel()
    editor = _editor(store, editor_gate, character, on_saved=saved.append, toasts=toasts)
    editor.begin_edit()
    editor.set_field("weapon", "Chandrahas")
    editor.set_field("allies", "Kumbhakarna")

    result = asyncio.run(editor.save())

    assert result.partial
    assert not result.ok
    assert result.failed_keys == ("weapon",)
    assert "weapon" not in result.saved_keys
    assert editor.state is EditorState.EDITING
    assert editor.committed["allies"] == "Kumbhakarna"
    assert editor.committed["weapon"] == ""
    assert editor.draft["weapon"] == "Chandrahas"
    assert "Weapon(s)" in editor.error
    assert toasts.latest.level == "error"
    assert "weapon" not in saved[0]


def test_cancel_restores_committed_values(store, editor_gate, character):
    editor = _editor(store, editor_gate, character)
    editor.begin_edit()
    editor.set_field("species", "Deva")
    assert editor.display_values()["species"] == "Deva"

    editor.cancel()

    assert editor.display_values()["species"] == "Rakshasa"
    assert store.calls == []


def test_unknown_field_key_is_rejected(store, editor_gate, character):
    editor = _editor(store, editor_gate, character)
    editor.begin_edit()
    with pytest.raises(ValidationError):
        editor.set_field("shoe_size", "12")


def test_display_rows_are_grouped(store, editor_gate, character):
    editor = _editor(store, editor_gate, character)
    groups = editor.display_rows()
    assert groups[0][0].title == "Biographical"
    assert dict((spec.key, value) for spec, value in groups[0][1])["born"] == "Lanka"
