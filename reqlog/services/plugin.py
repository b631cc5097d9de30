# ──────────────────────────────────────────────────────────────────────────────
# File: reqlog/services/plugin.py
# Purpose: Install request logging on a FastAPI/Starlette app and expose the
#          runtime handle (loggers, tag levels, gate, property maps).
#
# Upstream:
#   - Imports: fastapi/starlette (middleware install), reqlog.core.*
#
# Downstream:
#   - app.state.reqlog (RequestLog)
#   - reqlog.routes.levels (admin endpoints)
#
# Contents:
#   - RequestLog
#   - register()
#   - log_properties()
# ──────────────────────────────────────────────────────────────────────────────

from __future__ import annotations

import logging
import sys
from typing import Any, Callable, Mapping, Optional

from ..core.levels import SILENT, build_tag_levels
from ..core.logging import LevelLogger, destination
from ..core.serialize import serialize_error
from .context import RequestContext, ServerInfo, now_ms
from .errors import ConfigurationError
from .events import (
    LOG_APP,
    LOG_INTERNAL,
    REQUEST_APP,
    REQUEST_ERROR,
    REQUEST_INTERNAL,
    RESPONSE,
    START,
    STOP,
    ServerEvents,
)
from .middleware import RequestLogMiddleware, capture_exception_handlers
from .settings import Options, RouteProperties, parse_options, parse_route_properties
from .subscriptions import SubscriptionManager
from .translators import (
    ROUTE_PROPERTIES_ATTR,
    FaultBoundary,
    on_log_app,
    on_log_internal,
    on_request_app,
    on_request_error,
    on_request_internal,
    on_response,
    on_server_state,
)

logger = logging.getLogger("reqlog.plugin")


class RequestLog:
    """
    Runtime handle stored on ``app.state.reqlog``.

    Mutable at runtime:
      - response_logger.level / event_logger.level (the latter re-plans
        which verbose handlers are subscribed)
      - log_response (response gate)
      - properties (server-wide default property map)
    """

    def __init__(
        self,
        options: Options,
        response_logger: LevelLogger,
        event_logger: LevelLogger,
        server: ServerInfo,
    ):
        self.options = options
        self.response_logger = response_logger
        self.event_logger = event_logger
        self.server = server
        self.tag_levels = build_tag_levels(options.tag_levels)
        self.log_response: Optional[Callable[[RequestContext], Any]] = options.log_response
        self.properties: RouteProperties = options.properties
        self.events = ServerEvents()
        self.boundary = FaultBoundary(event_logger, server)
        # True once the app's Exception/500 handler is wrapped (see middleware)
        self.defer_server_errors = False

        guard = self.boundary.guard
        self.events.on(RESPONSE, guard("on_response", self._translate_response))
        self.events.on(REQUEST_ERROR, guard("on_request_error", on_request_error, event_logger))
        self.events.on(START, guard("on_server_state", on_server_state, event_logger, server, "started"))
        self.events.on(STOP, guard("on_server_state", on_server_state, event_logger, server, "stopped"))

        self.subscriptions = SubscriptionManager(self.events, {
            "debug": [
                (REQUEST_INTERNAL, guard("on_request_internal", on_request_internal, event_logger)),
                (LOG_INTERNAL, guard("on_log_internal", on_log_internal, event_logger, server)),
            ],
            "info": [
                (REQUEST_APP, guard("on_request_app", on_request_app, event_logger, self.tag_levels)),
                (LOG_APP, guard("on_log_app", on_log_app, event_logger, self.tag_levels, server)),
            ],
        })
        event_logger.on_level_change(self.subscriptions.on_level_change)
        self.subscriptions.on_level_change(event_logger.level, event_logger.level_value)

    def _translate_response(self, context: RequestContext) -> None:
        on_response(self.response_logger, self.event_logger, self.log_response, self.properties, context)

    # ── Lifecycle ------------------------------------------------------------

    def server_started(self) -> None:
        self.server.started = now_ms()
        self.events.emit(START)

    def server_stopped(self) -> None:
        self.server.started = 0
        self.events.emit(STOP)


def _loggers(options: Options):
    common = dict(
        level=options.level if options.enabled else SILENT,
        name=options.name,
        timestamp=options.timestamp,
        message_key=options.message_key,
        crlf=options.crlf,
        serializers={"err": serialize_error},
        redaction=options.redaction(),
    )
    if options.stream is not None:
        shared = destination(options.stream)
        return LevelLogger(shared, **common), LevelLogger(shared, **common)
    return (
        LevelLogger(destination(sys.stdout), **common),
        LevelLogger(destination(sys.stderr), **common),
    )


def register(app, **options: Any) -> RequestLog:
    """
    Install request logging on app and return the runtime handle.

    Raises ConfigurationError for invalid options or a second registration.

    Example:
        >>> app = FastAPI()
        >>> reqlog.register(app, level="debug", tag_levels={"audit": "warn"})
    """
    if getattr(app.state, "reqlog", None) is not None:
        raise ConfigurationError("request logging is already registered on this application")

    settings = parse_options(options)
    response_logger, event_logger = _loggers(settings)
    server = ServerInfo.create(host=settings.host, port=settings.port)

    handle = RequestLog(settings, response_logger, event_logger, server)
    capture_exception_handlers(app, handle)
    app.add_middleware(RequestLogMiddleware, handle=handle)
    app.state.reqlog = handle

    logger.info("reqlog registered server=%s level=%s", server.id, event_logger.level)
    return handle


def log_properties(*, req: Optional[Mapping[str, Any]] = None, res: Optional[Mapping[str, Any]] = None):
    """
    Attach a property map to an endpoint; replaces the server-wide default.

    Example:
        >>> @app.get("/items")
        ... @log_properties(req={"clientIp": "headers.x-real-ip"})
        ... def items(): ...
    """
    properties = parse_route_properties(req, res)

    def decorator(endpoint):
        setattr(endpoint, ROUTE_PROPERTIES_ATTR, properties)
        return endpoint

    return decorator
