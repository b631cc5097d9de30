# ──────────────────────────────────────────────────────────────────────────────
# File: reqlog/services/middleware.py
# Purpose: ASGI adapter that turns lifespan and HTTP traffic into server events
#          (start, stop, response, request.error, request.internal).
#
# Guarantees
#   • Pure ASGI (no BaseHTTPMiddleware): streaming bodies are not buffered.
#   • Unhandled exceptions are logged once as implementation faults and
#     re-raised; the app (ServerErrorMiddleware) still produces the 500.
#   • ClientDisconnect is not treated as an application error.
#
# Notes
#   • The in-flight tracker lives at scope["reqlog.request"] so exception
#     handlers and request_log() can find the request id.
#   • Exception handlers are wrapped at registration; handlers added to the
#     app afterwards are not captured.
#   • Unmatched-path 404 responses are logged without a reason.
# ──────────────────────────────────────────────────────────────────────────────

from __future__ import annotations

import inspect
import logging
import uuid
from enum import Enum
from typing import Any, Callable, Dict, Optional

from fastapi import FastAPI
from fastapi.exception_handlers import http_exception_handler
from starlette.concurrency import run_in_threadpool
from starlette.datastructures import Headers, QueryParams
from starlette.exceptions import HTTPException
from starlette.requests import ClientDisconnect
from starlette.responses import PlainTextResponse, Response
from starlette.types import ASGIApp, Message, Receive, Scope, Send

from .context import AuthState, RequestContext, ResponseInfo, RouteInfo, now_ms
from .events import (
    LOG_INTERNAL,
    REQUEST_ERROR,
    REQUEST_INTERNAL,
    RESPONSE,
    SCOPE_KEY,
    Event,
)

logger = logging.getLogger("reqlog.middleware")


# ╔══════════════════════════════════════════════════════════════════════════╗
# ║ Request tracking                                                         ║
# ╚══════════════════════════════════════════════════════════════════════════╝

class RequestTracker:
    """Mutable per-request bookkeeping; frozen into a RequestContext at the end."""

    def __init__(self, scope: Scope):
        self.scope = scope
        self.id = uuid.uuid4().hex
        self.received = now_ms()
        self.responded: Optional[int] = None
        self.status_code: Optional[int] = None
        self.headers: Headers = Headers()
        self.error: Optional[BaseException] = None
        self.completed = False
        self.aborted = False
        # Set while the app's Exception/500 handler owes the response line
        self.deferred = False

    @property
    def started(self) -> bool:
        return self.status_code is not None

    def on_send(self, message: Message) -> None:
        if message["type"] == "http.response.start":
            self.status_code = message["status"]
            self.headers = Headers(raw=message.get("headers") or [])
        elif message["type"] == "http.response.body" and not message.get("more_body", False):
            self.completed = True
            self.responded = now_ms()

    def adopt(self, response: Optional[Response]) -> None:
        """Take status and headers from a response sent outside this middleware."""
        self.status_code = getattr(response, "status_code", None) or 500
        raw = getattr(response, "raw_headers", None)
        self.headers = Headers(raw=raw) if raw else Headers()
        self.completed = True
        self.responded = now_ms()

    def on_receive(self, message: Message) -> bool:
        """Record a disconnect; True when it cut the request short."""
        if message["type"] == "http.disconnect" and not self.completed and not self.aborted:
            self.aborted = True
            return True
        return False

    def snapshot(self) -> RequestContext:
        scope = self.scope
        response = None
        if self.started and not self.aborted:
            response = ResponseInfo(status_code=self.status_code, headers=self.headers, error=self.error)

        client = scope.get("client")
        return RequestContext(
            id=self.id,
            method=scope.get("method", "GET"),
            path=scope.get("path", "/"),
            query_string=(scope.get("query_string") or b"").decode("latin-1"),
            remote_address=client[0] if client else None,
            headers=Headers(scope=scope),
            query=QueryParams(scope.get("query_string") or b""),
            params=dict(scope.get("path_params") or {}),
            state=dict(scope.get("state") or {}),
            auth=auth_state(scope),
            route=route_info(scope),
            response=response,
            received=self.received,
            responded=self.responded,
            endpoint=scope.get("endpoint"),
        )


def route_info(scope: Scope) -> Optional[RouteInfo]:
    route = scope.get("route")
    path = getattr(route, "path", None)
    if route is None or path is None:
        return None

    tags = getattr(route, "tags", None) or []
    realm = tags[0] if tags else None
    if isinstance(realm, Enum):
        realm = realm.value
    return RouteInfo(
        path=path,
        id=getattr(route, "operation_id", None),
        vhost=None,
        realm=str(realm) if realm is not None else None,
    )


def auth_state(scope: Scope) -> Optional[AuthState]:
    """Auth block from Starlette's AuthenticationMiddleware (None when not installed)."""
    if "auth" not in scope and "user" not in scope:
        return None

    user = scope.get("user")
    credentials = scope.get("auth")
    authenticated = bool(getattr(user, "is_authenticated", False))
    scopes = list(getattr(credentials, "scopes", None) or [])
    return AuthState(
        is_authenticated=authenticated,
        is_authorized=authenticated and bool(scopes),
        credentials={"user": getattr(user, "display_name", None), "scopes": scopes} if authenticated else None,
        strategy=getattr(user, "strategy", None),
    )


# ╔══════════════════════════════════════════════════════════════════════════╗
# ║ Exception handler capture                                                ║
# ╚══════════════════════════════════════════════════════════════════════════╝

def _is_async(handler: Callable[..., Any]) -> bool:
    return inspect.iscoroutinefunction(handler) or inspect.iscoroutinefunction(getattr(handler, "__call__", None))


async def _run_handler(handler: Callable[..., Any], request, exc):
    """Call a sync or async exception handler the way Starlette would."""
    if _is_async(handler):
        return await handler(request, exc)
    return await run_in_threadpool(handler, request, exc)


async def plain_http_exception_handler(request, exc: HTTPException) -> Response:
    """Starlette's own plain-text HTTPException response."""
    if exc.status_code in {204, 304}:
        return Response(status_code=exc.status_code, headers=exc.headers)
    return PlainTextResponse(exc.detail, status_code=exc.status_code, headers=exc.headers)


def capture_handler(handle, handler: Callable[..., Any]) -> Callable[..., Any]:
    """Wrap an exception handler so the handled error is attached to the response."""

    async def captured(request, exc):
        response = await _run_handler(handler, request, exc)

        tracker = request.scope.get(SCOPE_KEY)
        if tracker is not None:
            # Routing misses (no endpoint) carry no error on the response
            if "endpoint" in request.scope:
                tracker.error = exc
            status_code = getattr(response, "status_code", 500)
            if status_code >= 500:
                handle.events.emit(REQUEST_ERROR, Event(
                    tags=["internal", "error"],
                    channel="error",
                    error=exc,
                    request=tracker.id,
                ))
        return response

    captured.__reqlog_captured__ = True
    return captured


def capture_server_error_handler(handle, handler: Callable[..., Any]) -> Callable[..., Any]:
    """
    Wrap the app's Exception/500 handler.

    It runs in ServerErrorMiddleware, outside RequestLogMiddleware, so the
    response line of a failed request is written here once the handler has
    produced its response.
    """

    async def captured(request, exc):
        response = None
        try:
            response = await _run_handler(handler, request, exc)
        finally:
            tracker = request.scope.get(SCOPE_KEY)
            if tracker is not None and tracker.deferred:
                tracker.deferred = False
                tracker.adopt(response)
                handle.events.emit(RESPONSE, tracker.snapshot())
        return response

    captured.__reqlog_captured__ = True
    return captured


def capture_exception_handlers(app, handle) -> None:
    handlers: Dict[Any, Callable[..., Any]] = app.exception_handlers
    if isinstance(app, FastAPI):
        handlers.setdefault(HTTPException, http_exception_handler)
    else:
        handlers.setdefault(HTTPException, plain_http_exception_handler)

    for key, handler in list(handlers.items()):
        if getattr(handler, "__reqlog_captured__", False):
            continue
        if key in (Exception, 500):
            handlers[key] = capture_server_error_handler(handle, handler)
            handle.defer_server_errors = True
        else:
            handlers[key] = capture_handler(handle, handler)


# ╔══════════════════════════════════════════════════════════════════════════╗
# ║ Middleware                                                               ║
# ╚══════════════════════════════════════════════════════════════════════════╝

class RequestLogMiddleware:
    """
    Emit server events for every lifespan transition and HTTP request.

    Installed by reqlog.register() as the outermost user middleware.
    """

    def __init__(self, app: ASGIApp, handle):
        self.app = app
        self.handle = handle

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] == "lifespan":
            await self.lifespan(scope, receive, send)
        elif scope["type"] == "http":
            await self.http(scope, receive, send)
        else:
            await self.app(scope, receive, send)

    # ── Lifespan ---------------------------------------------------------------

    async def lifespan(self, scope: Scope, receive: Receive, send: Send) -> None:
        handle = self.handle

        async def send_wrapper(message: Message) -> None:
            kind = message["type"]
            if kind == "lifespan.startup.complete":
                handle.server_started()
            elif kind == "lifespan.shutdown.complete":
                handle.server_stopped()
            elif kind.endswith(".failed"):
                handle.events.emit(LOG_INTERNAL, Event(
                    tags=["lifespan", "error"],
                    channel="internal",
                    data={"message": message.get("message", "")},
                ))
            await send(message)

        await self.app(scope, receive, send_wrapper)

    # ── HTTP -----------------------------------------------------------------

    async def http(self, scope: Scope, receive: Receive, send: Send) -> None:
        events = self.handle.events
        tracker = RequestTracker(scope)
        scope[SCOPE_KEY] = tracker

        async def receive_wrapper() -> Message:
            message = await receive()
            if tracker.on_receive(message):
                self.closed(tracker)
            return message

        async def send_wrapper(message: Message) -> None:
            tracker.on_send(message)
            await send(message)

        try:
            await self.app(scope, receive_wrapper, send_wrapper)
        except ClientDisconnect:
            if not tracker.aborted:
                tracker.aborted = True
                self.closed(tracker)
        except Exception as exc:
            tracker.error = exc
            events.emit(REQUEST_ERROR, Event(
                tags=["internal", "implementation", "error"],
                channel="error",
                error=exc,
                request=tracker.id,
                implementation=True,
            ))
            if tracker.started:
                logger.warning("reqlog: request %s failed after the response started", tracker.id)
                events.emit(RESPONSE, tracker.snapshot())
            elif self.handle.defer_server_errors:
                tracker.deferred = True
            else:
                # ServerErrorMiddleware answers with its default 500
                tracker.adopt(None)
                events.emit(RESPONSE, tracker.snapshot())
            raise

        events.emit(RESPONSE, tracker.snapshot())

    def closed(self, tracker: RequestTracker) -> None:
        self.handle.events.emit(REQUEST_INTERNAL, Event(
            tags=["request", "closed", "error"],
            channel="internal",
            request=tracker.id,
        ))
