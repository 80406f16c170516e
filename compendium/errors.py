from __future__ import annotations

from dataclasses import dataclass
from typing import Optional


class CompendiumError(Exception):
    """Base class for every failure raised by the editing core."""

    user_message = "Something went wrong."

    def __init__(self, message: str = "", *, user_message: Optional[str] = None) -> None:
        super().__init__(message or self.user_message)
        if user_message is not None:
            self.user_message = user_message


class ValidationError(CompendiumError):
    """Local, pre-network rejection. No I/O was attempted."""

    def __init__(self, message: str, *, field: Optional[str] = None) -> None:
        super().__init__(message, user_message=message)
        self.field = field


class RemoteError(CompendiumError):
    """A store or storage call failed."""

    user_message = "Could not save your changes. Try again."


class AggregateLoadError(CompendiumError):
    user_message = "Character not found."

    def __init__(self, character_id: str, cause: Optional[BaseException] = None) -> None:
        detail = f"failed to load character {character_id!r}"
        if cause is not None:
            detail = f"{detail}: {cause}"
        super().__init__(detail)
        self.character_id = character_id
        self.cause = cause


class PermissionDeniedError(CompendiumError):
    user_message = "You need editor access to do that."

    def __init__(self, action: str) -> None:
        super().__init__(f"editor capability required for {action}")
        self.action = action


class EditorBusyError(CompendiumError):
    user_message = "Still saving, please wait."


@dataclass(frozen=True)
class CommitResult:
    ok: bool
    error: Optional[CompendiumError] = None
    message: str = ""

    @classmethod
    def success(cls, message: str = "") -> "CommitResult":
        return cls(ok=True, message=message)

    @classmethod
    def failure(cls, error: CompendiumError) -> "CommitResult":
        return cls(ok=False, error=error, message=error.user_message)

    @classmethod
    def skipped(cls, message: str = "") -> "CommitResult":
        # user declined a confirmation; nothing was sent
        return cls(ok=False, message=message)
