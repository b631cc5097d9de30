# ──────────────────────────────────────────────────────────────────────────────
# File: reqlog/core/serialize.py
# Purpose: Flatten exceptions (including cause chains) into log-friendly dicts.
#
# Guarantees
#   • Never raises; non-exceptions pass through, made JSON-safe.
#   • Cause chains are walked once; cycles terminate with ": ...".
#   • HTTP errors (starlette/FastAPI HTTPException) get a label that names
#     the error they wrap.
#
# Contents:
#   - ErrorKind, ErrorShape, classify()
#   - error_message(), error_stack()
#   - serialize_error()
# ──────────────────────────────────────────────────────────────────────────────

from __future__ import annotations

import traceback
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional

from fastapi import HTTPException as FastAPIHTTPException
from starlette.exceptions import HTTPException as StarletteHTTPException

from .sanitize import safe_json

RICH_LABEL = "HTTPException"

_RICH_BASES = (StarletteHTTPException, FastAPIHTTPException)


class ErrorKind(str, Enum):
    GENERIC = "generic"
    RICH_HTTP = "rich_http"
    OTHER = "other"


@dataclass(frozen=True)
class ErrorShape:
    """An error classified once, with the pieces the serializer needs."""

    kind: ErrorKind
    error: Any
    cause: Optional[BaseException] = None
    status_code: Optional[int] = None
    custom_name: Optional[str] = None


def classify(value: Any) -> ErrorShape:
    if not isinstance(value, BaseException):
        return ErrorShape(ErrorKind.OTHER, value)

    if isinstance(value, StarletteHTTPException):
        cause = value.__cause__
        data = getattr(value, "data", None)
        if cause is None and isinstance(data, BaseException):
            cause = data
        name = getattr(value, "name", None)
        return ErrorShape(
            ErrorKind.RICH_HTTP,
            value,
            cause=cause,
            status_code=value.status_code,
            custom_name=name if isinstance(name, str) else None,
        )

    return ErrorShape(ErrorKind.GENERIC, value, cause=value.__cause__)


def error_label(shape: ErrorShape) -> str:
    error = shape.error
    if shape.kind is not ErrorKind.RICH_HTTP:
        return type(error).__name__

    base = None
    if type(error) in _RICH_BASES:
        cause = shape.cause
        if isinstance(cause, BaseException) and type(cause) is not Exception:
            base = type(cause).__name__
        elif shape.custom_name and shape.custom_name != type(error).__name__:
            base = shape.custom_name
    else:
        base = type(error).__name__

    return f"{RICH_LABEL}({base})" if base else RICH_LABEL


def error_message(error: Any) -> str:
    """Human message of an error; HTTP errors use their detail."""
    try:
        if isinstance(error, StarletteHTTPException):
            return str(error.detail)
        return str(error)
    except Exception:
        return f"<unprintable {type(error).__name__} object>"


def error_stack(error: BaseException) -> Optional[str]:
    """Formatted traceback of a raised exception, or None if it was never raised."""
    if error.__traceback__ is None:
        return None
    try:
        lines = traceback.format_exception(type(error), error, error.__traceback__, chain=False)
    except Exception:
        return None
    return "".join(lines).rstrip("\n")


def serialize_error(error: Any, with_stack: bool = True) -> Any:
    shape = classify(error)
    if shape.kind is ErrorKind.OTHER:
        return safe_json(error)

    data = getattr(error, "data", None)
    code = getattr(error, "code", None)
    if shape.kind is ErrorKind.RICH_HTTP:
        if data is not None and data is shape.cause:
            data = None
        if code is None:
            code = shape.status_code

    stack = error_stack(error)

    serialized: Dict[str, Any] = {
        "type": error_label(shape),
        "message": error_message(error),
    }
    if code is not None:
        serialized["code"] = safe_json(code)
    if data is not None:
        serialized["data"] = safe_json(data)
    if with_stack and stack is not None:
        serialized["stack"] = stack

    # A root without a trace keeps the record stack-free all the way down
    with_stack = with_stack and isinstance(stack, str)

    return _add_causes(serialized, error, shape.cause, with_stack)


def _add_causes(serialized: Dict[str, Any], root: BaseException, cause: Any, with_stack: bool) -> Dict[str, Any]:
    seen = {id(root)}
    while cause is not None:
        if id(cause) in seen:
            serialized["message"] += ": ..."
            if with_stack:
                serialized["stack"] += "\ncauses have become circular..."
            break

        serialized["message"] += ": " + error_message(cause)
        if not isinstance(cause, BaseException):
            break

        seen.add(id(cause))
        if with_stack:
            serialized["stack"] += "\ncaused by: " + (error_stack(cause) or "<unknown>")

        cause = classify(cause).cause

    return serialized
