from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
import logging
import time
from typing import Awaitable, Callable, Optional, Protocol

from compendium.errors import CompendiumError, PermissionDeniedError
from compendium.models import Profile, SessionInfo

logger = logging.getLogger(__name__)
timing_logger = logging.getLogger("uvicorn.error")


class Capability(str, Enum):
    READER = "reader"
    EDITOR = "editor"
    ADMIN = "admin"


ROLE_CAPABILITIES: dict[str, Capability] = {
    "reader": Capability.READER,
    "editor": Capability.EDITOR,
    "admin": Capability.ADMIN,
}
MUTATING_CAPABILITIES: frozenset[Capability] = frozenset({Capability.EDITOR, Capability.ADMIN})

SessionCallback = Callable[[Optional[SessionInfo]], Awaitable[None]]


def _log_timing(event_name: str, start: float, **fields: object) -> None:
    elapsed_ms = (time.perf_counter() - start) * 1000.0
    if fields:
        field_text = " ".join(f"{key}={value}" for key, value in fields.items())
        timing_logger.info("auth.timing event=%s ms=%.2f %s", event_name, elapsed_ms, field_text)
        return
    timing_logger.info("auth.timing event=%s ms=%.2f", event_name, elapsed_ms)


def capability_for(profile: Optional[Profile]) -> Capability:
    if profile is None:
        return Capability.READER
    return ROLE_CAPABILITIES.get((profile.role or "").strip().lower(), Capability.READER)


def can_mutate(profile: Optional[Profile]) -> bool:
    return capability_for(profile) in MUTATING_CAPABILITIES


@dataclass(frozen=True)
class AccessGate:
    """
    Read-only view of who is acting. Editors receive one of these instead of reaching for
    session state themselves; no network I/O happens here.
    """

    profile: Optional[Profile] = None

    @classmethod
    def anonymous(cls) -> "AccessGate":
        return cls(None)

    @property
    def capability(self) -> Capability:
        return capability_for(self.profile)

    @property
    def can_mutate(self) -> bool:
        return can_mutate(self.profile)

    @property
    def user_id(self) -> Optional[str]:
        return self.profile.user_id if self.profile is not None else None

    @property
    def username(self) -> str:
        return self.profile.username if self.profile is not None else ""

    def require_editor(self, action: str) -> None:
        if not self.can_mutate:
            raise PermissionDeniedError(action)


class AuthService(Protocol):
    async def current_session(self) -> Optional[SessionInfo]: ...

    def on_session_change(self, callback: SessionCallback) -> Callable[[], None]: ...

    async def get_profile(self, user_id: str) -> Optional[Profile]: ...

    async def sign_out(self) -> None: ...


class SessionContext:
    """
    Session and profile for one connected client.

    `start()` reads the current session, loads its profile and subscribes to change
    notifications; `close()` unsubscribes. Consumers read `gate`, never the session itself.
    """

    def __init__(self, auth: AuthService) -> None:
        self._auth = auth
        self._session: Optional[SessionInfo] = None
        self._gate = AccessGate.anonymous()
        self._unsubscribe: Optional[Callable[[], None]] = None

    @property
    def gate(self) -> AccessGate:
        return self._gate

    @property
    def session(self) -> Optional[SessionInfo]:
        return self._session

    @property
    def started(self) -> bool:
        return self._unsubscribe is not None

    async def start(self) -> AccessGate:
        if self._unsubscribe is None:
            self._unsubscribe = self._auth.on_session_change(self._on_change)
        await self._apply(await self._auth.current_session())
        return self._gate

    def close(self) -> None:
        unsubscribe, self._unsubscribe = self._unsubscribe, None
        if unsubscribe is not None:
            unsubscribe()

    async def sign_out(self) -> None:
        await self._auth.sign_out()
        await self._apply(None)

    async def _on_change(self, session: Optional[SessionInfo]) -> None:
        await self._apply(session)

    async def _apply(self, session: Optional[SessionInfo]) -> None:
        start = time.perf_counter()
        self._session = session
        if session is None:
            self._gate = AccessGate.anonymous()
            _log_timing("session_context.apply", start, signed_in=False)
            return
        try:
            profile = await self._auth.get_profile(session.user_id)
        except CompendiumError as exc:
            # fail closed: an unreadable profile browses as a reader
            logger.warning("Profile lookup failed for %s: %s", session.user_id, exc)
            profile = None
        self._gate = AccessGate(profile)
        _log_timing(
            "session_context.apply",
            start,
            signed_in=True,
            capability=self._gate.capability.value,
        )
