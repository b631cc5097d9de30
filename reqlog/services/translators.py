# ──────────────────────────────────────────────────────────────────────────────
# File: reqlog/services/translators.py
# Purpose: Turn server events into structured log records, one translator per
#          event category, each run behind a fault boundary.
#
# Guarantees
#   • A failing translator (or gate, or write) yields one "reqlog-error"
#     fatal record on the event logger; nothing reaches the request.
#   • Values from application code are sanitized before they are logged.
#
# Contents:
#   - on_response(), log_response_error()
#   - on_request_error(), on_request_internal(), on_request_app()
#   - on_log_internal(), on_log_app(), on_server_state()
#   - Outcome, attempt(), FaultBoundary
# ──────────────────────────────────────────────────────────────────────────────

from __future__ import annotations

import logging
import traceback
from typing import Any, Callable, Dict, NamedTuple, Optional

from ..core.levels import LEVELS, resolve_level
from ..core.logging import LevelLogger
from ..core.sanitize import safe_json
from ..core.serialize import error_message
from .context import RequestContext, ServerInfo, now_ms
from .events import Event
from .settings import RouteProperties

logger = logging.getLogger("reqlog.translators")

ROUTE_PROPERTIES_ATTR = "__reqlog_properties__"

RESPONSE_ERROR_TAGS = ("request", "response", "error")


def _compact(values: Dict[str, Any]) -> Dict[str, Any]:
    return {k: v for k, v in values.items() if v is not None}


# ╔══════════════════════════════════════════════════════════════════════════╗
# ║ Response                                                                 ║
# ╚══════════════════════════════════════════════════════════════════════════╝

def log_response_error(event_logger: LevelLogger, context: RequestContext) -> None:
    """Trace the error behind a non-5xx response when trace output is on."""
    response = context.response
    error = response.error if response is not None else None
    if error is not None and response.status_code < 500 and event_logger.is_level_enabled("trace"):
        event_logger.trace({
            "request": context.id,
            "tags": list(RESPONSE_ERROR_TAGS),
            "err": error,
        }, "request-internal")


def _req_fields(context: RequestContext) -> Dict[str, Any]:
    req = {
        "id": context.id,
        "method": context.method.lower(),
        "path": context.url_path,
        "clientIp": context.remote_address,
    }

    auth = context.auth
    if auth is not None:
        req["auth"] = _compact({
            "valid": auth.is_authenticated,
            "access": auth.is_authorized if auth.is_authenticated else None,
            "credentials": safe_json(auth.credentials),
            "strategy": auth.strategy or None,
        })

    return _compact(req)


def _route_fields(context: RequestContext) -> Dict[str, Any]:
    route = context.route
    if route is None:
        return {}
    return _compact({
        "id": route.id,
        "vhost": route.vhost,
        "path": route.path,
        "realm": route.realm,
    })


def _res_fields(context: RequestContext, event_logger: LevelLogger) -> Dict[str, Any]:
    response = context.response
    responded = context.responded or now_ms()
    res: Dict[str, Any] = {
        "statusCode": response.status_code,
        "delay": responded - context.received,
    }

    error = response.error
    if error is not None:
        res["reason"] = f"{type(error).__name__}: {error_message(error)}"
        data = getattr(error, "data", None)
        if data:
            res["data"] = safe_json(data)
        log_response_error(event_logger, context)

    return res


def route_properties(context: RequestContext, default: RouteProperties) -> RouteProperties:
    configured = getattr(context.endpoint, ROUTE_PROPERTIES_ATTR, None)
    return configured if isinstance(configured, RouteProperties) else default


def apply_properties(target: Dict[str, Any], mapping: Dict[str, Any], context: RequestContext) -> None:
    for field, path in mapping.items():
        value = context.lookup(path)
        if value is not None:
            target[field] = safe_json(value, field)


def default_level(status_code: int) -> str:
    if status_code >= 500:
        return "error"
    if status_code >= 400:
        return "warn"
    return "info"


def on_response(
    response_logger: LevelLogger,
    event_logger: LevelLogger,
    gate: Optional[Callable[[RequestContext], Any]],
    properties: RouteProperties,
    context: RequestContext,
) -> None:
    response = context.response
    level = None

    if response is not None and gate is not None:
        result = gate(context)
        if not result:
            # Response line suppressed; the associated error may still be traced
            return log_response_error(event_logger, context)
        if isinstance(result, str):
            if result in LEVELS:
                level = result
            else:
                logger.warning("reqlog: log_response returned unknown level %r; using the status default", result)

    props = route_properties(context, properties)

    req = _req_fields(context)
    apply_properties(req, props.req, context)
    route = _route_fields(context)

    if response is None:
        response_logger.debug({"req": req, "route": route}, "request-aborted")
        return

    res = _res_fields(context, event_logger)
    apply_properties(res, props.res, context)

    level = level or default_level(response.status_code)
    getattr(response_logger, level)({"req": req, "route": route, "res": res}, "request-response")


# ╔══════════════════════════════════════════════════════════════════════════╗
# ║ Request / server events                                                  ║
# ╚══════════════════════════════════════════════════════════════════════════╝

def on_request_error(event_logger: LevelLogger, event: Event) -> None:
    level = "fatal" if event.implementation else "error"
    getattr(event_logger, level)({
        "request": event.request,
        "tags": safe_json(event.tags),
        "err": event.error,
    }, "request-error")


def on_request_internal(event_logger: LevelLogger, event: Event) -> None:
    event_logger.debug({
        "request": event.request,
        "tags": safe_json(event.tags),
        "data": safe_json(event.data),
        "err": event.error,
    }, "request-internal")


def on_request_app(event_logger: LevelLogger, tag_levels, event: Event) -> None:
    level = resolve_level(event.tags, "info", tag_levels)
    getattr(event_logger, level)({
        "request": event.request,
        "tags": safe_json(event.tags),
        "data": safe_json(event.data),
        "err": event.error,
    }, "request-app")


def on_log_internal(event_logger: LevelLogger, server: ServerInfo, event: Event) -> None:
    event_logger.debug({
        "server": server.id,
        "tags": safe_json(event.tags),
        "data": safe_json(event.data),
        "err": event.error,
    }, "log-internal")


def on_log_app(event_logger: LevelLogger, tag_levels, server: ServerInfo, event: Event) -> None:
    level = resolve_level(event.tags, "info", tag_levels)
    getattr(event_logger, level)({
        "server": server.id,
        "tags": safe_json(event.tags),
        "data": safe_json(event.data),
        "err": event.error,
    }, "log-app")


def on_server_state(event_logger: LevelLogger, server: ServerInfo, state: str) -> None:
    event_logger.info(server.as_dict(), f"server-{state}")


# ╔══════════════════════════════════════════════════════════════════════════╗
# ║ Fault boundary                                                           ║
# ╚══════════════════════════════════════════════════════════════════════════╝

class Outcome(NamedTuple):
    ok: bool
    error: Optional[Exception] = None


def attempt(fn: Callable[..., Any], *args: Any) -> Outcome:
    """Run fn and report success or the exception it raised."""
    try:
        fn(*args)
    except Exception as err:
        return Outcome(False, err)
    return Outcome(True)


class FaultBoundary:
    """
    Wraps translators so that their failures become one fatal meta record.

    The report path only touches the event logger and the server id, never
    the translator being protected.
    """

    def __init__(self, event_logger: LevelLogger, server: ServerInfo):
        self.event_logger = event_logger
        self.server = server

    def guard(self, name: str, fn: Callable[..., Any], *bound: Any) -> Callable[..., None]:
        def guarded(*args: Any) -> None:
            outcome = attempt(fn, *bound, *args)
            if not outcome.ok:
                self.report(name, outcome.error)

        guarded.__name__ = name
        guarded.__qualname__ = name
        return guarded

    def report(self, name: str, error: Exception) -> None:
        try:
            message = error_message(error) or f"Unknown throw during: {name}"
            self.event_logger.fatal({
                "server": self.server.id,
                "type": type(error).__name__,
                "message": message,
                "stack": "".join(traceback.format_exception(type(error), error, error.__traceback__)),
            }, "reqlog-error")
        except Exception:
            # Last resort: the event logger itself is broken
            logger.exception("reqlog: %s failed and the failure could not be logged", name)
