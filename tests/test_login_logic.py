import asyncio

import pytest
from starlette.requests import Request

from compendium.auth import SessionContext
from compendium.login_logic import (
    RequestAuthService,
    SessionEvents,
    _persist_user,
    _resolve_user_id,
    _sanitize_redirect_target,
    get_user,
    session_info_from_user,
)
from compendium.models import Profile


def _request(session=None, host="wiki.example.com"):
    scope = {
        "type": "http",
        "method": "GET",
        "path": "/wiki/",
        "query_string": b"",
        "headers": [(b"host", host.encode())],
        "session": session if session is not None else {},
    }
    return Request(scope)


class _GradioRequest:
    """Mimics gr.Request, which wraps the Starlette request."""

    def __init__(self, request):
        self.request = request


def test_publish_reaches_only_that_users_subscribers():
    events = SessionEvents()
    seen = []

    async def watcher(session):
        seen.append(("ed", session))

    async def other(session):
        seen.append(("other", session))

    events.subscribe("ed", watcher)
    unsubscribe = events.subscribe("someone-else", other)
    asyncio.run(events.publish("ed", None))

    assert seen == [("ed", None)]
    unsubscribe()
    assert events.subscriber_count == 1


def test_failing_subscriber_does_not_block_others():
    events = SessionEvents()
    seen = []

    async def broken(session):
        raise RuntimeError("page gone")

    async def healthy(session):
        seen.append(session)

    events.subscribe("ed", broken)
    events.subscribe("ed", healthy)
    asyncio.run(events.publish("ed", None))

    assert seen == [None]


def test_session_info_from_user():
    assert session_info_from_user(None) is None
    assert session_info_from_user({"email": "x"}) is None
    info = session_info_from_user({"user_id": "ed@example.com", "name": "Ed", "role": "editor"})
    assert info.user_id == "ed@example.com"
    assert info.display_name == "Ed"


def test_get_user_reads_gradio_and_starlette_requests():
    request = _request({"user": {"user_id": "ed"}})
    assert get_user(request) == {"user_id": "ed"}
    assert get_user(_GradioRequest(request)) == {"user_id": "ed"}
    assert get_user(object()) is None


@pytest.mark.parametrize(
    "userinfo, expected",
    [
        ({"email": "Ed@Example.com", "sub": "123"}, "ed@example.com"),
        ({"sub": "123"}, "123"),
        ({"name": "Ed Ward"}, "ed-ward"),
    ],
)
def test_resolve_user_id(userinfo, expected):
    assert _resolve_user_id(userinfo) == expected


def test_resolve_user_id_requires_something():
    with pytest.raises(ValueError):
        _resolve_user_id({})


def test_persist_user_creates_reader_profile(store):
    user = asyncio.run(_persist_user(store, {"email": "sita@example.com", "name": "Sita"}))

    assert user == {"user_id": "sita@example.com", "email": "sita@example.com", "name": "Sita", "role": "reader"}
    assert store.profiles["sita@example.com"].role == "reader"


def test_request_auth_service_drives_session_context(store):
    store.profiles["ed"] = Profile(user_id="ed", username="Ed", role="editor")
    events = SessionEvents()
    session = {"user": {"user_id": "ed", "name": "Ed"}}
    context = SessionContext(RequestAuthService(_request(session), store, events))

    async def scenario():
        gate = await context.start()
        assert gate.can_mutate
        # a sign-out from another tab reaches this context through the broadcaster
        await events.publish("ed", None)
        return context.gate

    gate = asyncio.run(scenario())
    assert not gate.can_mutate
    context.close()
    assert events.subscriber_count == 0


def test_sign_out_clears_session_and_notifies(store):
    events = SessionEvents()
    session = {"user": {"user_id": "ed"}}
    notified = []

    async def watcher(info):
        notified.append(info)

    events.subscribe("ed", watcher)
    asyncio.run(RequestAuthService(_request(session), store, events).sign_out())

    assert "user" not in session
    assert notified == [None]


@pytest.mark.parametrize(
    "candidate, expected",
    [
        ("/character/?id=abc", "/character/?id=abc"),
        ("//evil.example.com/x", None),
        ("https://wiki.example.com/wiki/", "https://wiki.example.com/wiki/"),
        ("https://evil.example.com/wiki/", None),
        ("javascript:alert(1)", None),
        ("", None),
    ],
)
def test_sanitize_redirect_target(candidate, expected):
    assert _sanitize_redirect_target(candidate, _request()) == expected
