# ──────────────────────────────────────────────────────────────────────────────
# File: reqlog/services/context.py
# Purpose: Read-only snapshots of a finished request and of the server,
#          as seen by translators, the response gate and property maps.
#
# Notes
#   • Built from the ASGI scope once the request completes; never mutated.
#   • reach() resolves dotted paths ("headers.x-real-ip") or explicit
#     segment sequences against mappings, attributes and list indexes.
# ──────────────────────────────────────────────────────────────────────────────

from __future__ import annotations

import os
import socket
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Mapping, Optional, Sequence, Union

from starlette.datastructures import Headers, QueryParams


def now_ms() -> int:
    return int(time.time() * 1000)


def reach(obj: Any, path: Union[str, Sequence[str]]) -> Any:
    """
    Walk obj along path; return None as soon as a step is missing.

    Mappings are indexed by key, sequences by integer segment, anything else
    by attribute.
    """
    segments = path.split(".") if isinstance(path, str) else list(path)
    current = obj
    for segment in segments:
        if current is None:
            return None
        if isinstance(current, Mapping):
            current = current.get(segment)
        elif isinstance(current, (list, tuple)) and isinstance(segment, str) and segment.lstrip("-").isdigit():
            index = int(segment)
            current = current[index] if -len(current) <= index < len(current) else None
        elif isinstance(segment, str) and not segment.startswith("_"):
            try:
                current = getattr(current, segment, None)
            except Exception:
                return None
        else:
            return None
    return current


@dataclass(frozen=True)
class AuthState:
    is_authenticated: bool
    is_authorized: bool = False
    credentials: Any = None
    strategy: Optional[str] = None


@dataclass(frozen=True)
class RouteInfo:
    path: str
    id: Optional[str] = None
    vhost: Optional[str] = None
    realm: Optional[str] = None


@dataclass(frozen=True)
class ResponseInfo:
    status_code: int
    headers: Headers = field(default_factory=Headers)
    error: Optional[BaseException] = None


@dataclass(frozen=True)
class RequestContext:
    """Snapshot of a request after it completed (or was aborted)."""

    id: str
    method: str
    path: str
    query_string: str = ""
    remote_address: Optional[str] = None
    headers: Headers = field(default_factory=Headers)
    query: QueryParams = field(default_factory=QueryParams)
    params: Mapping[str, Any] = field(default_factory=dict)
    state: Mapping[str, Any] = field(default_factory=dict)
    auth: Optional[AuthState] = None
    route: Optional[RouteInfo] = None
    response: Optional[ResponseInfo] = None
    received: int = 0
    responded: Optional[int] = None
    endpoint: Optional[Callable[..., Any]] = None

    @property
    def url_path(self) -> str:
        """Path plus query string, as requested."""
        return f"{self.path}?{self.query_string}" if self.query_string else self.path

    def lookup(self, path: Union[str, Sequence[str]]) -> Any:
        return reach(self, path)


@dataclass
class ServerInfo:
    """Identity of the running server, reported on lifecycle and meta records."""

    id: str
    created: int
    started: int = 0
    host: str = ""
    port: Optional[int] = None
    protocol: str = "http"

    @classmethod
    def create(cls, host: Optional[str] = None, port: Optional[int] = None, protocol: str = "http") -> "ServerInfo":
        created = now_ms()
        hostname = host or socket.gethostname()
        return cls(
            id=f"{socket.gethostname()}:{os.getpid()}:{_base36(created)}",
            created=created,
            host=hostname,
            port=port,
            protocol=protocol,
        )

    @property
    def uri(self) -> Optional[str]:
        if self.port is None:
            return None
        return f"{self.protocol}://{self.host}:{self.port}"

    def as_dict(self) -> Dict[str, Any]:
        info = {
            "id": self.id,
            "created": self.created,
            "started": self.started,
            "host": self.host,
            "port": self.port,
            "protocol": self.protocol,
            "uri": self.uri,
        }
        return {k: v for k, v in info.items() if v is not None}


def _base36(number: int) -> str:
    digits = "0123456789abcdefghijklmnopqrstuvwxyz"
    out = ""
    while number:
        number, rem = divmod(number, 36)
        out = digits[rem] + out
    return out or "0"
