# ─────────────────────────────────────────────────────────────────────────────
# File: settings.py
# Directory: reqlog/services
# Purpose: Registration options and per-route property maps, validated with
#          pydantic; defaults read from the environment (.env supported).
#
# Upstream:
#   - ENV: REQLOG_LEVEL, REQLOG_CRLF, REQLOG_NAME
#   - Imports: dotenv, pydantic
#
# Downstream:
#   - reqlog.services.plugin
#
# Contents:
#   - Options, RouteProperties, Redaction
#   - parse_options(), parse_route_properties()
# ─────────────────────────────────────────────────────────────────────────────
from __future__ import annotations

from typing import Any, Callable, Dict, List, Literal, Mapping, Optional, Tuple, Union

from dotenv import load_dotenv
from pydantic import BaseModel, ConfigDict, Field, StrictBool, ValidationError, field_validator

from ..core.levels import LEVELS, SILENT
from ..core.logging import REDACTED
from ..utils.env import get_bool, get_choice, get_str
from .errors import ConfigurationError

# === Load .env file (if any) before defaults are read ===
load_dotenv()

Level = Literal["trace", "debug", "info", "warn", "error", "fatal"]
Threshold = Literal["trace", "debug", "info", "warn", "error", "fatal", "silent"]
PropertyPath = Union[str, Tuple[str, ...]]

THRESHOLDS: List[str] = [*LEVELS, SILENT]


def _default_level() -> str:
    return get_choice("REQLOG_LEVEL", THRESHOLDS, "info")


def _default_crlf() -> bool:
    return get_bool("REQLOG_CRLF", False)


def _default_name() -> Optional[str]:
    return get_str("REQLOG_NAME")


class RouteProperties(BaseModel):
    """
    Fields copied from the request context into the logged ``req`` / ``res``.

    Keys are output field names; values are dotted paths ("headers.x-real-ip")
    or explicit segment sequences for names that contain dots.
    """

    model_config = ConfigDict(extra="forbid", frozen=True)

    req: Dict[str, PropertyPath] = Field(default_factory=dict)
    res: Dict[str, PropertyPath] = Field(default_factory=dict)

    @field_validator("req", "res", mode="before")
    @classmethod
    def _none_is_empty(cls, value: Any) -> Any:
        return {} if value is None else value

    @field_validator("req", "res")
    @classmethod
    def _valid_paths(cls, value: Dict[str, PropertyPath]) -> Dict[str, PropertyPath]:
        for field, path in value.items():
            segments = path.split(".") if isinstance(path, str) else path
            if not field or not segments or any(not segment for segment in segments):
                raise ValueError(f"invalid property path for {field!r}: {path!r}")
        return value


class Redaction(BaseModel):
    model_config = ConfigDict(extra="forbid")

    paths: List[str]
    censor: Union[str, Callable[[Any], Any]] = REDACTED
    remove: StrictBool = False


class Options(BaseModel):
    """Validated registration options for :func:`reqlog.register`."""

    model_config = ConfigDict(extra="forbid", arbitrary_types_allowed=True)

    log_response: Optional[Callable[..., Any]] = None
    tag_levels: Dict[str, Level] = Field(default_factory=dict)
    stream: Optional[Any] = None

    # Logger options
    name: Optional[str] = Field(default_factory=_default_name)
    level: Threshold = Field(default_factory=_default_level)
    enabled: StrictBool = True
    crlf: StrictBool = Field(default_factory=_default_crlf)
    timestamp: Union[StrictBool, Callable[[], Any]] = True
    message_key: str = "msg"
    redact: Optional[Redaction] = None

    properties: RouteProperties = Field(default_factory=RouteProperties)

    # Reported in server-started / server-stopped records
    host: Optional[str] = None
    port: Optional[int] = None

    @field_validator("stream")
    @classmethod
    def _writable(cls, value: Any) -> Any:
        if value is not None and not callable(getattr(value, "write", None)):
            raise ValueError("stream must expose a write() method")
        return value

    @field_validator("redact", mode="before")
    @classmethod
    def _redact_shorthand(cls, value: Any) -> Any:
        if isinstance(value, str):
            return {"paths": [value]}
        if isinstance(value, (list, tuple)):
            return {"paths": list(value)}
        return value

    @field_validator("message_key")
    @classmethod
    def _message_key(cls, value: str) -> str:
        if not value:
            raise ValueError("message_key must be a non-empty string")
        return value

    def redaction(self) -> Optional[Dict[str, Any]]:
        if self.redact is None:
            return None
        return {"paths": self.redact.paths, "censor": self.redact.censor, "remove": self.redact.remove}


def parse_options(options: Optional[Mapping[str, Any]] = None) -> Options:
    try:
        return Options.model_validate(dict(options or {}))
    except ValidationError as err:
        raise ConfigurationError(f"invalid reqlog options: {err}") from err


def parse_route_properties(req: Any = None, res: Any = None) -> RouteProperties:
    try:
        return RouteProperties.model_validate({"req": req, "res": res})
    except ValidationError as err:
        raise ConfigurationError(f"invalid route log properties: {err}") from err
