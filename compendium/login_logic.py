from typing import Any, Callable, Dict, List, Optional

import logging
import os
import time
from urllib.parse import urlsplit, urlunsplit

from authlib.integrations.starlette_client import OAuth
from starlette.requests import Request
from starlette.requests import Request as StarletteRequest
from starlette.responses import RedirectResponse

from compendium.auth import SessionCallback
from compendium.db import make_code
from compendium.models import Profile, SessionInfo
from compendium.store import RemoteStore

oauth = OAuth()
logger = logging.getLogger(__name__)
timing_logger = logging.getLogger("uvicorn.error")
login_providers: List[Dict[str, Any]] = []
_DEFAULT_REDIRECT_PATH = "/wiki/"
_ALLOWED_REDIRECT_HOSTS: tuple[str, ...] = tuple(
    host.strip().lower()
    for host in os.getenv("LOGIN_ALLOWED_REDIRECT_HOSTS", "").split(",")
    if host.strip()
)


def _log_timing(event_name: str, start: float, **fields: object) -> None:
    elapsed_ms = (time.perf_counter() - start) * 1000.0
    if fields:
        field_text = " ".join(f"{key}={value}" for key, value in fields.items())
        timing_logger.info("login_logic.timing event=%s ms=%.2f %s", event_name, elapsed_ms, field_text)
        return
    timing_logger.info("login_logic.timing event=%s ms=%.2f", event_name, elapsed_ms)


def register_oauth_provider(*args, **kwargs):
    login_providers.append(kwargs)
    return oauth.register(*args, **kwargs)


class SessionEvents:
    """
    Process-wide sign-in / sign-out broadcaster.

    Subscribers are keyed by the user they watch; `publish` awaits each matching callback and
    logs (rather than propagates) a failing subscriber so one broken page cannot block a login.
    """

    def __init__(self) -> None:
        self._subscribers: Dict[int, tuple[Optional[str], SessionCallback]] = {}
        self._next_token = 0

    def subscribe(self, user_id: Optional[str], callback: SessionCallback) -> Callable[[], None]:
        token = self._next_token
        self._next_token += 1
        self._subscribers[token] = (user_id, callback)

        def _unsubscribe() -> None:
            self._subscribers.pop(token, None)

        return _unsubscribe

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    async def publish(self, user_id: str, session: Optional[SessionInfo]) -> None:
        start = time.perf_counter()
        targets = [cb for watched, cb in list(self._subscribers.values()) if watched == user_id]
        for callback in targets:
            try:
                await callback(session)
            except Exception:
                logger.exception("Session change subscriber failed for %s", user_id)
        _log_timing("session_events.publish", start, user_id=user_id, delivered=len(targets))


def session_info_from_user(user: Optional[Dict[str, Any]]) -> Optional[SessionInfo]:
    if not user or not user.get("user_id"):
        return None
    return SessionInfo(
        user_id=str(user["user_id"]),
        email=str(user.get("email") or ""),
        display_name=str(user.get("name") or ""),
        extra={"role": user.get("role")},
    )


def get_user(request: Any) -> Optional[dict]:
    """Session user dict for a Gradio request (wrapping Starlette) or a plain Starlette request."""
    if hasattr(request, "request") and hasattr(request.request, "session"):
        return request.request.session.get("user")
    if isinstance(request, StarletteRequest):
        return request.session.get("user")
    return None


def _session_of(request: Any) -> Optional[dict]:
    if hasattr(request, "request") and hasattr(request.request, "session"):
        return request.request.session
    if isinstance(request, StarletteRequest):
        return request.session
    return None


class RequestAuthService:
    """AuthService over one client's Starlette session."""

    def __init__(self, request: Any, store: RemoteStore, events: SessionEvents) -> None:
        self._request = request
        self._store = store
        self._events = events

    async def current_session(self) -> Optional[SessionInfo]:
        return session_info_from_user(get_user(self._request))

    def on_session_change(self, callback: SessionCallback) -> Callable[[], None]:
        user = get_user(self._request) or {}
        return self._events.subscribe(user.get("user_id"), callback)

    async def get_profile(self, user_id: str) -> Optional[Profile]:
        return await self._store.get_profile(user_id)

    async def sign_out(self) -> None:
        session = _session_of(self._request)
        if session is None:
            return
        user = session.pop("user", None)
        if user and user.get("user_id"):
            await self._events.publish(str(user["user_id"]), None)


def _resolve_user_id(userinfo: Dict[str, Any]) -> str:
    email = (userinfo.get("email") or "").strip()
    if email:
        return email.lower()
    sub = (userinfo.get("sub") or "").strip()
    if sub:
        return sub
    name = (userinfo.get("name") or "").strip()
    if name:
        return make_code(name, default_prefix="user")
    raise ValueError("Unable to determine user identifier from login response")


async def _persist_user(store: RemoteStore, userinfo: Dict[str, Any]) -> Dict[str, Any]:
    """
    Ensure the signed-in account has a profile row and return the compact session payload.
    """
    start = time.perf_counter()
    user_id = _resolve_user_id(userinfo)
    email = (userinfo.get("email") or "").strip() or user_id
    username = (userinfo.get("name") or "").strip() or email.split("@")[0]
    profile = await store.ensure_profile(user_id, email, username)
    _log_timing("persist_user", start, user_id=user_id, role=profile.role)
    return {
        "user_id": profile.user_id,
        "email": profile.email or email,
        "name": profile.username or username,
        "role": profile.role,
    }


def add_login_routes(app, *, store: RemoteStore, events: SessionEvents, home_route: str = "/wiki"):
    @app.get("/logout")
    async def logout(request: Request):
        user = request.session.pop("user", None)
        if user and user.get("user_id"):
            await events.publish(str(user["user_id"]), None)
        return RedirectResponse(f"{home_route}/")

    for p in login_providers:
        name = p["name"]
        start_route_name = f"auth_start_{name}"
        cb_route_name = f"auth_callback_{name}"

        @app.get(f"/auth/{name}", name=start_route_name)
        async def auth_start(
            request: Request,
            redirect_to: Optional[str] = None,
            _name=name,
            _cb=cb_route_name,
        ):
            client = oauth.create_client(_name)
            redirect_uri = request.url_for(_cb)
            _update_login_redirect_target(request, redirect_to, default_target=f"{home_route}/")
            if request.session.get("user"):
                return RedirectResponse(_resolve_login_redirect_target(request, fallback=f"{home_route}/"))
            return await client.authorize_redirect(request, redirect_uri)

        @app.get(f"/auth/{name}/callback", name=cb_route_name)
        async def auth_callback(request: Request, _name=name):
            client = oauth.create_client(_name)
            token = await client.authorize_access_token(request)
            userinfo = token.get("userinfo") or await client.parse_id_token(request, token)
            user = await _persist_user(store, dict(userinfo))
            request.session["user"] = user
            await events.publish(user["user_id"], session_info_from_user(user))
            return RedirectResponse(_resolve_login_redirect_target(request, fallback=f"{home_route}/"))


def _update_login_redirect_target(request: Request, candidate: Optional[str], default_target: str) -> None:
    """
    Store a sanitized redirect target to use after login, or the default when absent/invalid.
    """
    target = _sanitize_redirect_target(candidate, request)
    if not target:
        target = _sanitize_redirect_target(default_target, request) or default_target
    request.session["post_login_redirect"] = target


def _resolve_login_redirect_target(request: Request, fallback: str) -> str:
    target = request.session.pop("post_login_redirect", None)
    sanitized = _sanitize_redirect_target(target, request)
    if sanitized:
        return sanitized
    return _sanitize_redirect_target(fallback, request) or fallback or _DEFAULT_REDIRECT_PATH


def _sanitize_redirect_target(candidate: Optional[str], request: Optional[Request]) -> Optional[str]:
    """
    Allow relative paths or whitelisted hosts; block protocol-relative / malformed URLs.
    """
    if not candidate:
        return None
    target = candidate.strip()
    if not target or target.startswith("//"):
        return None
    if target.startswith("/"):
        return target

    parsed = urlsplit(target)
    if parsed.scheme not in {"https", "http"}:
        return None
    host = (parsed.hostname or "").lower()
    if not host:
        return None

    if _ALLOWED_REDIRECT_HOSTS:
        allowed_hosts = _ALLOWED_REDIRECT_HOSTS
    else:
        request_host = ((request.url.hostname or "").lower() if request else "") or ""
        allowed_hosts = (request_host,) if request_host else ()

    if host not in allowed_hosts:
        return None
    return urlunsplit(parsed)
