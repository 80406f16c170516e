import asyncio

import pytest

from compendium.editing import EditorState
from compendium.errors import EditorBusyError, PermissionDeniedError, RemoteError, ValidationError
from compendium.models import Section
from compendium.notifications import ToastChannel
from compendium.section_editor import SectionEditor


def _editor(store, gate, character, **kwargs):
    section = Section(character.id, "biography", "Biography", "Born in Lanka.", 0)
    return SectionEditor(store, gate, section, **kwargs)


def test_save_commits_only_after_store_confirms(store, editor_gate, character):
    saved = []
    toasts = ToastChannel()
    editor = _editor(store, editor_gate, character, on_saved=lambda key, text: saved.append((key, text)), toasts=toasts)

    editor.begin_edit()
    assert editor.state is EditorState.EDITING
    assert editor.draft == "Born in Lanka."
    editor.update_draft("Son of Vishrava.")
    assert editor.content == "Born in Lanka."

    result = asyncio.run(editor.save())

    assert result.ok
    assert editor.state is EditorState.VIEWING
    assert editor.content == "Son of Vishrava."
    assert saved == [("biography", "Son of Vishrava.")]
    assert toasts.latest.message == "Biography saved."
    assert store.calls_to("update_section_content") == [
        ("update_section_content", character.id, "biography", "Son of Vishrava.")
    ]


def test_failed_save_stays_in_edit_mode(store, editor_gate, character):
    store.fail("update_section_content")
    toasts = ToastChannel()
    editor = _editor(store, editor_gate, character, toasts=toasts)
    editor.begin_edit()
    editor.update_draft("Unsaved words")

    result = asyncio.run(editor.save())

    assert not result.ok
    assert isinstance(result.error, RemoteError)
    assert editor.state is EditorState.EDITING
    assert editor.draft == "Unsaved words"
    assert editor.content == "Born in Lanka."
    assert editor.error == RemoteError.user_message
    assert toasts.latest.level == "error"


def test_cancel_discards_draft(store, editor_gate, character):
    editor = _editor(store, editor_gate, character)
    editor.begin_edit()
    editor.update_draft("scratch")
    editor.cancel()

    assert editor.state is EditorState.VIEWING
    assert editor.draft == editor.content == "Born in Lanka."
    assert store.calls == []


def test_saving_same_content_twice_is_idempotent(store, editor_gate, character):
    editor = _editor(store, editor_gate, character)
    for _ in range(2):
        editor.begin_edit()
        editor.update_draft("Ten heads.")
        assert asyncio.run(editor.save()).ok

    biography = next(s for s in store.sections[character.id] if s.section_key == "biography")
    assert biography.content == editor.content == "Ten heads."


def test_reader_cannot_edit(store, reader_gate, character):
    editor = _editor(store, reader_gate, character)
    with pytest.raises(PermissionDeniedError):
        editor.begin_edit()
    with pytest.raises(PermissionDeniedError):
        asyncio.run(editor.save())
    assert store.calls == []


def test_unknown_section_key_is_rejected(store, editor_gate, character):
    with pytest.raises(ValidationError):
        SectionEditor(store, editor_gate, Section(character.id, "trivia", "Trivia"))


def test_second_save_while_in_flight_is_busy(store, editor_gate, character):
    editor = _editor(store, editor_gate, character)
    editor.begin_edit()
    editor.update_draft("Once")

    async def scenario():
        store.hold = asyncio.Event()
        first = asyncio.create_task(editor.save())
        await asyncio.sleep(0)
        second = await editor.save()
        with pytest.raises(EditorBusyError):
            editor.cancel()
        store.hold.set()
        return await first, second

    first, second = asyncio.run(scenario())
    assert first.ok
    assert isinstance(second.error, EditorBusyError)
    assert len(store.calls_to("update_section_content")) == 1


def test_detached_editor_drops_late_commit(store, editor_gate, character):
    saved = []
    editor = _editor(store, editor_gate, character, on_saved=lambda key, text: saved.append(text))
    editor.begin_edit()
    editor.update_draft("After navigation")

    async def scenario():
        store.hold = asyncio.Event()
        task = asyncio.create_task(editor.save())
        await asyncio.sleep(0)
        editor.detach()
        store.hold.set()
        return await task

    result = asyncio.run(scenario())
    assert not result.ok
    assert result.error is None
    assert saved == []
    assert editor.content == "Born in Lanka."
    assert editor.state is EditorState.VIEWING
    # the write itself still reached the store
    assert len(store.calls_to("update_section_content")) == 1
