from __future__ import annotations

import re
import unicodedata
from dataclasses import dataclass, field
from typing import Iterable, Optional, Sequence

from cueboard.services.sound_library import UNCATEGORIZED, Sound


SORT_BY_VALUES = ("name", "category", "custom")
SORT_ORDER_VALUES = ("asc", "desc")

_DIGITS = re.compile(r"(\d+)")


def natural_key(value: str) -> tuple:
    """Case-insensitive key that compares digit runs as numbers.

    ``re.split`` with a capture group alternates text and digit runs, so text
    always sits at even positions and numbers at odd ones.
    """
    normalized = unicodedata.normalize("NFKC", value or "").casefold()
    parts = _DIGITS.split(normalized)
    return tuple(int(part) if idx % 2 else part for idx, part in enumerate(parts))


@dataclass
class OrderResult:
    ids: list[str]
    groups: Optional[list[tuple[str, list[str]]]] = None

    def to_json(self) -> dict:
        payload: dict = {"ids": list(self.ids)}
        if self.groups is not None:
            payload["groups"] = [{"category": name, "ids": list(ids)} for name, ids in self.groups]
        return payload


@dataclass
class _Group:
    name: str
    first_seen: int
    sounds: list[Sound] = field(default_factory=list)


def _normalize_sort_by(value: object) -> str:
    return value if value in SORT_BY_VALUES else "name"


def _normalize_sort_order(value: object) -> str:
    return value if value in SORT_ORDER_VALUES else "asc"


def _sort_by_name(sounds: Iterable[Sound], descending: bool) -> list[Sound]:
    # sorted() stays stable with reverse=True, so equal names keep input order.
    return sorted(sounds, key=lambda s: natural_key(s.name), reverse=descending)


def _sort_custom(sounds: Sequence[Sound], custom_order: Sequence[str]) -> list[Sound]:
    positions: dict[str, int] = {}
    for idx, sid in enumerate(custom_order):
        positions.setdefault(sid, idx)
    absent = len(positions)

    def _key(sound: Sound) -> tuple:
        pos = positions.get(sound.id)
        if pos is None:
            return (1, absent, natural_key(sound.name))
        return (0, pos, ())

    return sorted(sounds, key=_key)


def _group_order(groups: list[_Group], custom_category_order: Sequence[str]) -> list[_Group]:
    """Named categories by natural name, uncategorized last, unless a custom category order is set."""
    if custom_category_order:
        positions: dict[str, int] = {}
        for idx, name in enumerate(custom_category_order):
            positions.setdefault(name, idx)
        listed = sorted((g for g in groups if g.name in positions), key=lambda g: positions[g.name])
        trailing = sorted((g for g in groups if g.name not in positions), key=lambda g: g.first_seen)
        return listed + trailing
    named = sorted((g for g in groups if g.name != UNCATEGORIZED), key=lambda g: natural_key(g.name))
    return named + [g for g in groups if g.name == UNCATEGORIZED]


def resolve_order(
    sounds: Sequence[Sound],
    sort_by: str = "name",
    sort_order: str = "asc",
    custom_order: Optional[Sequence[str]] = None,
    custom_category_order: Optional[Sequence[str]] = None,
) -> OrderResult:
    sort_by = _normalize_sort_by(sort_by)
    descending = _normalize_sort_order(sort_order) == "desc"
    custom_order = list(custom_order or [])
    custom_category_order = list(custom_category_order or [])

    if sort_by == "custom":
        if not custom_order:
            return OrderResult(ids=[s.id for s in _sort_by_name(sounds, False)])
        return OrderResult(ids=[s.id for s in _sort_custom(sounds, custom_order)])

    if sort_by == "name":
        return OrderResult(ids=[s.id for s in _sort_by_name(sounds, descending)])

    by_name: dict[str, _Group] = {}
    for sound in sounds:
        group = by_name.get(sound.group)
        if group is None:
            group = by_name[sound.group] = _Group(name=sound.group, first_seen=len(by_name))
        group.sounds.append(sound)

    groups: list[tuple[str, list[str]]] = []
    ids: list[str] = []
    for group in _group_order(list(by_name.values()), custom_category_order):
        group_ids = [s.id for s in _sort_by_name(group.sounds, descending)]
        groups.append((group.name, group_ids))
        ids.extend(group_ids)
    return OrderResult(ids=ids, groups=groups)


def resolve_for_settings(sounds: Sequence[Sound], settings: dict) -> OrderResult:
    return resolve_order(
        sounds,
        sort_by=settings.get("sortBy") or "name",
        sort_order=settings.get("sortOrder") or "asc",
        custom_order=settings.get("customOrder") or [],
        custom_category_order=settings.get("customCategoryOrder") or [],
    )
