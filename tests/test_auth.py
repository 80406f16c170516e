import asyncio

import pytest

from compendium.auth import AccessGate, Capability, SessionContext, can_mutate, capability_for
from compendium.errors import PermissionDeniedError, RemoteError
from compendium.models import Profile, SessionInfo


def _profile(role):
    return Profile(user_id="u1", username="Uma", role=role)


@pytest.mark.parametrize(
    "role, capability, mutates",
    [
        ("reader", Capability.READER, False),
        ("editor", Capability.EDITOR, True),
        ("admin", Capability.ADMIN, True),
        ("EDITOR ", Capability.EDITOR, True),
        ("superuser", Capability.READER, False),
        ("", Capability.READER, False),
    ],
)
def test_role_maps_to_capability(role, capability, mutates):
    assert capability_for(_profile(role)) is capability
    assert can_mutate(_profile(role)) is mutates


def test_missing_profile_is_reader():
    assert capability_for(None) is Capability.READER
    assert can_mutate(None) is False


def test_gate_require_editor():
    AccessGate(_profile("editor")).require_editor("edit section")
    with pytest.raises(PermissionDeniedError) as info:
        AccessGate.anonymous().require_editor("edit section")
    assert info.value.action == "edit section"


def test_anonymous_gate_has_no_identity():
    gate = AccessGate.anonymous()
    assert gate.user_id is None
    assert gate.username == ""
    assert gate.can_mutate is False


class FakeAuth:
    def __init__(self, session=None, profiles=None):
        self.session = session
        self.profiles = profiles or {}
        self.callbacks = []
        self.profile_error = None
        self.signed_out = False

    async def current_session(self):
        return self.session

    def on_session_change(self, callback):
        self.callbacks.append(callback)

        def _unsubscribe():
            self.callbacks.remove(callback)

        return _unsubscribe

    async def get_profile(self, user_id):
        if self.profile_error is not None:
            raise self.profile_error
        return self.profiles.get(user_id)

    async def sign_out(self):
        self.signed_out = True
        self.session = None

    async def emit(self, session):
        for callback in list(self.callbacks):
            await callback(session)


def test_session_context_start_and_close():
    auth = FakeAuth(SessionInfo(user_id="u1"), {"u1": _profile("editor")})
    context = SessionContext(auth)

    gate = asyncio.run(context.start())

    assert gate.can_mutate
    assert context.started
    assert len(auth.callbacks) == 1
    context.close()
    assert auth.callbacks == []
    assert not context.started


def test_session_context_follows_change_notifications():
    auth = FakeAuth(None, {"u1": _profile("admin")})
    context = SessionContext(auth)

    async def scenario():
        await context.start()
        assert context.gate.capability is Capability.READER
        await auth.emit(SessionInfo(user_id="u1"))
        assert context.gate.capability is Capability.ADMIN
        await auth.emit(None)
        return context.gate

    gate = asyncio.run(scenario())
    assert gate.capability is Capability.READER
    assert context.session is None


def test_session_context_profile_failure_falls_back_to_reader():
    auth = FakeAuth(SessionInfo(user_id="u1"), {"u1": _profile("editor")})
    auth.profile_error = RemoteError("profiles unavailable")
    context = SessionContext(auth)

    gate = asyncio.run(context.start())

    assert gate.capability is Capability.READER
    assert context.session is not None


def test_sign_out_resets_gate():
    auth = FakeAuth(SessionInfo(user_id="u1"), {"u1": _profile("editor")})
    context = SessionContext(auth)

    async def scenario():
        await context.start()
        await context.sign_out()

    asyncio.run(scenario())
    assert auth.signed_out
    assert context.gate.can_mutate is False
