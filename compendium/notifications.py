from __future__ import annotations

from dataclasses import dataclass
import logging
from typing import Optional

logger = logging.getLogger(__name__)

SUCCESS = "success"
ERROR = "error"
INFO = "info"


@dataclass(frozen=True)
class Toast:
    level: str
    message: str


class ToastChannel:
    """Holds at most one pending toast; a newer message replaces the one not yet shown."""

    def __init__(self) -> None:
        self._latest: Optional[Toast] = None

    @property
    def latest(self) -> Optional[Toast]:
        return self._latest

    def push(self, level: str, message: str) -> None:
        if not message:
            return
        if level == ERROR:
            logger.info("toast error: %s", message)
        self._latest = Toast(level, message)

    def success(self, message: str) -> None:
        self.push(SUCCESS, message)

    def error(self, message: str) -> None:
        self.push(ERROR, message)

    def info(self, message: str) -> None:
        self.push(INFO, message)

    def consume(self) -> Optional[Toast]:
        toast, self._latest = self._latest, None
        return toast
