from __future__ import annotations

from dataclasses import dataclass

from compendium.login_logic import SessionEvents
from compendium.object_storage import GcsObjectStorage, ObjectStorage
from compendium.store import RemoteStore, SqlRemoteStore


@dataclass(frozen=True)
class Services:
    """The collaborators every page is built with; created once in app.py and passed down."""

    store: RemoteStore
    storage: ObjectStorage
    events: SessionEvents


def build_services() -> Services:
    return Services(store=SqlRemoteStore(), storage=GcsObjectStorage(), events=SessionEvents())
