# File: reqlog/core/levels.py
# Purpose: Severity table, tag → level mapping and "most severe tag wins"
#          level resolution for tagged application events.

from __future__ import annotations

import math
from types import MappingProxyType
from typing import Iterable, Mapping, Optional

LEVELS: Mapping[str, int] = MappingProxyType({
    "trace": 10,
    "debug": 20,
    "info": 30,
    "warn": 40,
    "error": 50,
    "fatal": 60,
})

SILENT = "silent"
SILENT_VALUE = math.inf

LEVEL_NAMES: Mapping[int, str] = MappingProxyType({v: k for k, v in LEVELS.items()})


def level_value(name: str) -> float:
    """Numeric value of a level name, including ``silent``."""
    if name == SILENT:
        return SILENT_VALUE
    try:
        return LEVELS[name]
    except KeyError:
        raise ValueError(f"unknown log level: {name!r}") from None


def build_tag_levels(overrides: Optional[Mapping[str, str]] = None) -> Mapping[str, str]:
    """
    Build the read-only tag → level map.

    Every level name maps to itself so a tag literally named "warn" resolves
    to warn; overrides are laid on top.
    """
    tag_levels = {name: name for name in LEVELS}
    for tag, level in (overrides or {}).items():
        if level not in LEVELS:
            raise ValueError(f"tag {tag!r} maps to unknown log level {level!r}")
        tag_levels[tag] = level
    return MappingProxyType(tag_levels)


def resolve_level(tags: Iterable[str], default: str, tag_levels: Mapping[str, str]) -> str:
    """Return the most severe level among matched tags, or default when none match."""
    if isinstance(tags, str):
        tags = [tags]

    best = -1
    for tag in tags or ():
        if not isinstance(tag, str):
            continue
        name = tag_levels.get(tag)
        if name is None:
            continue
        value = LEVELS[name]
        if value > best:
            best = value

    if best < 0:
        return default
    return LEVEL_NAMES[best]
