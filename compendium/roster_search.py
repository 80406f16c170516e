from __future__ import annotations

from typing import List, Sequence

from compendium.models import RosterEntry


def matches(entry: RosterEntry, query: str) -> bool:
    needle = (query or "").strip().lower()
    if not needle:
        return True
    return needle in (entry.name or "").lower() or needle in (entry.type or "").lower()


def search_roster(roster: Sequence[RosterEntry], query: str) -> List[RosterEntry]:
    """
    Case-insensitive substring filter over name or type.

    Leading and trailing whitespace is dropped from the query first, so a query of only spaces
    counts as empty and keeps the whole roster. Inner spaces stay part of the needle.
    """
    if not (query or "").strip():
        return list(roster)
    return [entry for entry in roster if matches(entry, query)]
