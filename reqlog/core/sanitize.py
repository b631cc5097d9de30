# File: reqlog/core/sanitize.py
# Purpose: Convert arbitrary nested values into JSON-safe equivalents without
#          raising. Cycles become "[Circular]", numbers JSON cannot carry
#          faithfully become marked strings, and nesting is capped.
#
# Contents:
#   - safe_json(value, key="")

from __future__ import annotations

import math
from decimal import Decimal
from typing import Any, List, Tuple

CIRCULAR = "[Circular]"
UNSERIALIZABLE = "[Unserializable]"
TOO_DEEP = "[Too Deep]"

# Containers nested deeper than this are replaced with TOO_DEEP
MAX_DEPTH = 100

# Largest integer a double can hold exactly (JSON consumers parse numbers as doubles)
MAX_SAFE_INTEGER = 2 ** 53 - 1

_JSON_KEY_TYPES = (str, int, float, bool)


def safe_json(value: Any, key: str = "") -> Any:
    """
    Return a JSON-safe version of value.

    Containers are copied only when something inside them changed; otherwise
    the original object is returned as-is. Sanitizing an already sanitized
    value returns it unchanged.
    """
    try:
        result, _ = _sanitize(value, key, [])
    except RecursionError:
        return TOO_DEEP
    return result


def _sanitize(value: Any, key: str, path: List[Any]) -> Tuple[Any, bool]:
    if value is None:
        return value, False

    original = value
    changed = False

    hook = _json_hook(value)
    if hook is not None:
        try:
            value = hook(key)
        except Exception:
            return UNSERIALIZABLE, True
        changed = value is not original

    if isinstance(value, (dict, list, tuple)):
        if any(seen is original for seen in path):
            return CIRCULAR, True
        if len(path) >= MAX_DEPTH:
            return TOO_DEEP, True

        path.append(original)
        try:
            if isinstance(value, dict):
                value, child_changed = _sanitize_mapping(value, path)
            else:
                value, child_changed = _sanitize_sequence(value, path)
        finally:
            path.pop()
        return value, changed or child_changed

    if isinstance(value, float):
        if not math.isfinite(value):
            return None, True
        return value, changed

    if _is_big_number(value):
        return f"{value}n", True

    return value, changed


def _sanitize_mapping(mapping: dict, path: List[Any]) -> Tuple[Any, bool]:
    items = []
    changed = False
    for k, v in mapping.items():
        new_key = k if isinstance(k, _JSON_KEY_TYPES) or k is None else _text(k)
        new_value, child_changed = _sanitize(v, str(new_key), path)
        if child_changed or new_key is not k:
            changed = True
        items.append((new_key, new_value))

    if not changed:
        return mapping, False
    return dict(items), True


def _sanitize_sequence(sequence, path: List[Any]) -> Tuple[Any, bool]:
    items = []
    changed = False
    for index, v in enumerate(sequence):
        new_value, child_changed = _sanitize(v, str(index), path)
        changed = changed or child_changed
        items.append(new_value)

    if not changed:
        return sequence, False
    return items, True


def _json_hook(value: Any):
    if isinstance(value, type):
        return None
    try:
        hook = getattr(value, "__json__", None)
    except Exception:
        return None
    return hook if callable(hook) else None


def _is_big_number(value: Any) -> bool:
    if isinstance(value, bool):
        return False
    if isinstance(value, int):
        return abs(value) > MAX_SAFE_INTEGER
    return isinstance(value, Decimal)


def _text(value: Any) -> str:
    try:
        return str(value)
    except Exception:
        return UNSERIALIZABLE
