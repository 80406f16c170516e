from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Iterable, List, Mapping, Optional, Tuple

from compendium.errors import ValidationError


@dataclass(frozen=True)
class SectionSpec:
    key: str
    title: str
    order: int


@dataclass(frozen=True)
class InfoboxFieldSpec:
    key: str
    label: str
    group: str


@dataclass(frozen=True)
class InfoboxGroup:
    key: str
    title: str
    fields: Tuple[InfoboxFieldSpec, ...]


SECTION_CATALOG: tuple[SectionSpec, ...] = (
    SectionSpec("biography", "Biography", 0),
    SectionSpec("physical", "Physical Description", 1),
    SectionSpec("personality", "Personality", 2),
    SectionSpec("abilities", "Abilities & Skills", 3),
    SectionSpec("relationships", "Relationships", 4),
    SectionSpec("etymology", "Etymology", 5),
    SectionSpec("appearances", "Appearances", 6),
)


def _group(key: str, title: str, *fields: Tuple[str, str]) -> InfoboxGroup:
    return InfoboxGroup(key, title, tuple(InfoboxFieldSpec(k, label, key) for k, label in fields))


INFOBOX_GROUPS: tuple[InfoboxGroup, ...] = (
    _group(
        "biographical",
        "Biographical",
        ("born", "Born"),
        ("died", "Died"),
        ("age", "Age"),
        ("nicknames", "Nicknames"),
        ("birthplace", "Birthplace"),
        ("status", "Status"),
    ),
    _group(
        "physical",
        "Physical",
        ("species", "Species"),
        ("gender", "Gender"),
        ("height", "Height"),
        ("eyes", "Eye Colour"),
        ("hair", "Hair Colour"),
        ("build", "Build"),
    ),
    _group(
        "relationships",
        "Relationships",
        ("family", "Family"),
        ("allies", "Allies"),
        ("enemies", "Enemies"),
        ("master", "Master / Guru"),
        ("lover", "Beloved"),
    ),
    _group(
        "magical",
        "Magical Characteristics",
        ("divinity", "Divinity"),
        ("weapon", "Weapon(s)"),
        ("powers", "Powers"),
        ("astra", "Astra"),
        ("vahan", "Vahan (Mount)"),
    ),
    _group(
        "affiliation",
        "Affiliation",
        ("allegiance", "Allegiance"),
        ("faction", "Faction"),
        ("titles", "Titles"),
        ("position", "Position"),
    ),
)

SECTION_REGISTRY: dict[str, SectionSpec] = {spec.key: spec for spec in SECTION_CATALOG}
INFOBOX_REGISTRY: dict[str, InfoboxFieldSpec] = {
    field.key: field for group in INFOBOX_GROUPS for field in group.fields
}
INFOBOX_KEYS: tuple[str, ...] = tuple(INFOBOX_REGISTRY)


def is_section_key(key: Optional[str]) -> bool:
    return (key or "") in SECTION_REGISTRY


def is_infobox_key(key: Optional[str]) -> bool:
    return (key or "") in INFOBOX_REGISTRY


def require_section_key(key: str) -> SectionSpec:
    spec = SECTION_REGISTRY.get(key or "")
    if spec is None:
        raise ValidationError(f"Unknown section '{key}'.", field="section_key")
    return spec


def require_infobox_key(key: str) -> InfoboxFieldSpec:
    spec = INFOBOX_REGISTRY.get(key or "")
    if spec is None:
        raise ValidationError(f"Unknown infobox field '{key}'.", field="field_key")
    return spec


def empty_infobox_map() -> Dict[str, str]:
    return {key: "" for key in INFOBOX_KEYS}


def infobox_map(pairs: Iterable[Tuple[str, Optional[str]]]) -> Dict[str, str]:
    """
    Merge (field_key, field_value) pairs over an all-empty map.
    Keys outside the catalog are dropped; None becomes "".
    """
    merged = empty_infobox_map()
    for key, value in pairs:
        if key in INFOBOX_REGISTRY:
            merged[key] = value or ""
    return merged


def grouped_infobox(values: Mapping[str, str]) -> List[Tuple[InfoboxGroup, List[Tuple[InfoboxFieldSpec, str]]]]:
    return [
        (group, [(field, values.get(field.key, "") or "") for field in group.fields])
        for group in INFOBOX_GROUPS
    ]
