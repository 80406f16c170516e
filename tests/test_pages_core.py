import asyncio

from compendium.auth import SessionContext
from compendium.catalog import INFOBOX_KEYS
from compendium.pages.character.core_character import (
    add_document,
    begin_document_edit,
    delete_document,
    document_choices,
    remove_image,
    render_documents,
    render_infobox,
    render_portrait,
    render_roster_sidebar,
    render_section,
    render_toast,
    save_basics,
    save_document_edit,
    save_infobox,
)
from compendium.loader import load_roster
from compendium.models import SessionInfo
from compendium.pages.roster.core_roster import RosterPageState, create_entry, filtered_cards, render_cards
from compendium.services import Services
from compendium.workspace import open_character


class _StaticAuth:
    """An AuthService that is always signed in as one profile."""

    def __init__(self, profile):
        self.profile = profile

    async def current_session(self):
        return SessionInfo(user_id=self.profile.user_id)

    def on_session_change(self, callback):
        return lambda: None

    async def get_profile(self, user_id):
        return self.profile

    async def sign_out(self):
        return None


def _workspace(store, storage, gate, character):
    return asyncio.run(open_character(store, storage, gate, character.id))


def test_render_escapes_user_content(store, storage, editor_gate, character):
    store.add_character("<script>alert(1)</script>", character_type="Demon")
    roster = asyncio.run(load_roster(store)).entries

    sidebar = render_roster_sidebar(roster, character.id)

    assert "<script>" not in sidebar
    assert "&lt;script&gt;" in sidebar
    assert "is-active" in sidebar


def test_section_and_portrait_placeholders(store, storage, editor_gate, character):
    workspace = _workspace(store, storage, editor_gate, character)

    section_html = render_section(workspace.section_editors["biography"], can_mutate=True)
    assert "Click edit to add content" in section_html
    assert "No image yet" in render_portrait(workspace)


def test_save_basics_reports_validation_through_toast(store, storage, editor_gate, character):
    workspace = _workspace(store, storage, editor_gate, character)
    workspace.name_editor.begin_edit()

    result = asyncio.run(save_basics(workspace, "name", "   "))

    assert not result.ok
    assert render_toast(workspace.toasts.consume()) == (
        '<div class="toast toast--error" role="status">Name cannot be empty.</div>'
    )


def test_save_infobox_maps_widget_values_by_key_order(store, storage, editor_gate, character):
    workspace = _workspace(store, storage, editor_gate, character)
    workspace.infobox_editor.begin_edit()
    values = [""] * len(INFOBOX_KEYS)
    values[INFOBOX_KEYS.index("weapon")] = "Chandrahas"

    result = asyncio.run(save_infobox(workspace, values))

    assert result.ok
    assert "Chandrahas" in render_infobox(workspace.infobox_editor, "Ravana")


def test_document_actions(store, storage, editor_gate, character):
    workspace = _workspace(store, storage, editor_gate, character)

    assert asyncio.run(add_document(workspace, "Letter", "example.com/x")).ok
    doc_id = workspace.documents[0].id
    assert document_choices(workspace.documents) == [("Letter", doc_id)]
    assert 'href="https://example.com/x"' in render_documents(workspace.document_editor, True)

    begin_document_edit(workspace, doc_id)
    assert asyncio.run(save_document_edit(workspace, "Letter v2", "https://example.com/y")).ok
    assert workspace.documents[0].doc_name == "Letter v2"

    declined = asyncio.run(delete_document(workspace, doc_id, False))
    assert not declined.ok
    assert workspace.toasts.latest.level == "info"
    assert asyncio.run(delete_document(workspace, doc_id, True)).ok
    assert workspace.documents == []


def test_pick_a_document_first(store, storage, editor_gate, character):
    workspace = _workspace(store, storage, editor_gate, character)

    assert asyncio.run(delete_document(workspace, None, True)) is None
    assert workspace.toasts.latest.message == "Pick a document first."


def test_remove_image_needs_confirmation(store, storage, editor_gate, character):
    workspace = _workspace(store, storage, editor_gate, character)

    asyncio.run(remove_image(workspace, False))

    assert storage.calls == []
    assert "confirmation" in workspace.toasts.latest.message


def test_roster_cards_filter_and_empty_state(store, character):
    store.add_character("Rama", character_type="Deva")
    roster = asyncio.run(load_roster(store)).entries

    html_value = render_cards(roster)
    assert html_value.count('class="roster-card"') == 2
    assert f'href="/character/?id={character.id}"' in html_value
    assert "No characters match &quot;garuda&quot;." in render_cards([], query="garuda")
    assert "Could not load characters." in render_cards(roster, error="Could not load characters.")


def test_create_entry_appends_to_roster(store, storage, editor_gate):
    services = Services(store=store, storage=storage, events=None)
    context = SessionContext(_StaticAuth(editor_gate.profile))
    asyncio.run(context.start())
    state = RosterPageState(context=context)

    entry, message = asyncio.run(create_entry(services, state, "Sita", ""))

    assert message == "Created Sita."
    assert state.roster == [entry]
    assert "Sita" in filtered_cards(state, "sit")


def test_create_entry_reports_blank_name(store, storage, editor_gate):
    services = Services(store=store, storage=storage, events=None)
    context = SessionContext(_StaticAuth(editor_gate.profile))
    asyncio.run(context.start())
    state = RosterPageState(context=context)

    entry, message = asyncio.run(create_entry(services, state, "  ", "Deva"))

    assert entry is None
    assert message == "Name cannot be empty."
    assert state.roster == []


def test_only_web_urls_render_as_links(store, storage, editor_gate, character):
    workspace = _workspace(store, storage, editor_gate, character)
    asyncio.run(add_document(workspace, "Letter", "example.com/x"))
    doc_id = workspace.documents[0].id
    begin_document_edit(workspace, doc_id)
    assert asyncio.run(save_document_edit(workspace, "Letter", "javascript:alert(1)")).ok

    html_value = render_documents(workspace.document_editor, False)

    assert "javascript:" not in html_value
    assert "<a " not in html_value
    assert '<span class="doc-unlinked">Letter</span>' in html_value
