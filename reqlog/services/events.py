# ──────────────────────────────────────────────────────────────────────────────
# File: reqlog/services/events.py
# Purpose: In-process event hub the logging handlers subscribe to, plus the
#          helpers application code calls to log against the server or the
#          current request.
#
# Event names
#   response           RequestContext of a completed/aborted request
#   request.error      Event (implementation flag set for unhandled exceptions)
#   request.internal   Event, framework diagnostics for one request
#   request.app        Event, request_log() from application code
#   log.internal       Event, framework diagnostics for the server
#   log.app            Event, server_log() from application code
#   start / stop       no payload
# ──────────────────────────────────────────────────────────────────────────────

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Sequence, Union

from .context import now_ms
from .errors import ConfigurationError

RESPONSE = "response"
REQUEST_ERROR = "request.error"
REQUEST_INTERNAL = "request.internal"
REQUEST_APP = "request.app"
LOG_INTERNAL = "log.internal"
LOG_APP = "log.app"
START = "start"
STOP = "stop"

# Scope key holding the in-flight request tracker (see middleware)
SCOPE_KEY = "reqlog.request"

Tags = Union[str, Sequence[str]]
Handler = Callable[..., Any]


@dataclass(frozen=True)
class Event:
    tags: List[str]
    channel: str
    data: Any = None
    error: Optional[BaseException] = None
    request: Optional[str] = None
    implementation: bool = False
    timestamp: int = field(default_factory=now_ms)


def normalize_tags(tags: Optional[Tags]) -> List[str]:
    if tags is None:
        return []
    if isinstance(tags, str):
        return [tags]
    return list(tags)


class ServerEvents:
    """Synchronous pub/sub keyed by event name. Handlers run in emit order."""

    def __init__(self):
        self._listeners: Dict[str, List[Handler]] = {}

    def on(self, name: str, handler: Handler) -> None:
        self._listeners.setdefault(name, []).append(handler)

    def remove_listener(self, name: str, handler: Handler) -> None:
        handlers = self._listeners.get(name)
        if handlers and handler in handlers:
            handlers.remove(handler)

    def has_listeners(self, name: str) -> bool:
        return bool(self._listeners.get(name))

    def emit(self, name: str, *args: Any) -> None:
        for handler in list(self._listeners.get(name, ())):
            handler(*args)


# ╔══════════════════════════════════════════════════════════════════════════╗
# ║ Application logging API                                                  ║
# ╚══════════════════════════════════════════════════════════════════════════╝

def _plugin_for(app: Any):
    plugin = getattr(getattr(app, "state", None), "reqlog", None)
    if plugin is None:
        raise ConfigurationError("request logging is not registered on this application")
    return plugin


def _emit_server(app: Any, name: str, channel: str, tags: Optional[Tags], data: Any, error: Optional[BaseException]) -> None:
    events = _plugin_for(app).events
    if not events.has_listeners(name):
        return
    events.emit(name, Event(tags=normalize_tags(tags), channel=channel, data=data, error=error))


def _emit_request(request: Any, name: str, channel: str, tags: Optional[Tags], data: Any, error: Optional[BaseException]) -> None:
    events = _plugin_for(request.app).events
    if not events.has_listeners(name):
        return
    tracker = request.scope.get(SCOPE_KEY)
    request_id = tracker.id if tracker is not None else None
    events.emit(name, Event(tags=normalize_tags(tags), channel=channel, data=data, error=error, request=request_id))


def server_log(app: Any, tags: Optional[Tags], data: Any = None, error: Optional[BaseException] = None) -> None:
    """Log a server-wide application event; level follows the tags."""
    _emit_server(app, LOG_APP, "app", tags, data, error)


def server_internal(app: Any, tags: Optional[Tags], data: Any = None, error: Optional[BaseException] = None) -> None:
    _emit_server(app, LOG_INTERNAL, "internal", tags, data, error)


def request_log(request: Any, tags: Optional[Tags], data: Any = None, error: Optional[BaseException] = None) -> None:
    """Log an application event tied to the current request; level follows the tags."""
    _emit_request(request, REQUEST_APP, "app", tags, data, error)


def request_internal(request: Any, tags: Optional[Tags], data: Any = None, error: Optional[BaseException] = None) -> None:
    _emit_request(request, REQUEST_INTERNAL, "internal", tags, data, error)
