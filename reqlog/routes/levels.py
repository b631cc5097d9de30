# ──────────────────────────────────────────────────────────────────────────────
# File: levels.py
# Directory: reqlog/routes
# Purpose: Admin endpoints to inspect and change log thresholds at runtime.
# Security: None built in; mount behind your own auth dependency in production.
#
# Upstream:
#   - Imports: fastapi, pydantic
#   - State: app.state.reqlog (set by reqlog.register)
#
# Contents:
#   - GET /logging/levels
#   - PUT /logging/levels/{target}
# ──────────────────────────────────────────────────────────────────────────────

from __future__ import annotations

from typing import Any, Dict

from fastapi import APIRouter, HTTPException, Request
from pydantic import BaseModel

from ..services.events import SCOPE_KEY
from ..services.settings import Threshold

router = APIRouter(prefix="/logging", tags=["logging"])

TARGETS = {"response": "response_logger", "event": "event_logger"}


class LevelUpdate(BaseModel):
    level: Threshold


def _detail(request: Request, code: str, message: str, **extra: Any) -> Dict[str, Any]:
    """Error body carrying the id reqlog gave this request (None when not tracked)."""
    tracker = request.scope.get(SCOPE_KEY)
    detail: Dict[str, Any] = {"code": code, "message": message, "request_id": getattr(tracker, "id", None)}
    detail.update(extra)
    return detail


def _handle(request: Request):
    handle = getattr(request.app.state, "reqlog", None)
    if handle is None:
        raise HTTPException(
            status_code=503,
            detail=_detail(
                request,
                "reqlog_not_registered",
                "Request logging is not installed on this app.",
                hint="Call reqlog.register(app) before mounting this router.",
            ),
        )
    return handle


def _snapshot(handle) -> Dict[str, Any]:
    return {
        "response": handle.response_logger.level,
        "event": handle.event_logger.level,
        "tag_levels": dict(handle.tag_levels),
    }


@router.get("/levels")
def get_levels(request: Request):
    """Current thresholds of both loggers and the effective tag → level map."""
    return _snapshot(_handle(request))


@router.put("/levels/{target}")
def set_level(target: str, body: LevelUpdate, request: Request):
    handle = _handle(request)
    attr = TARGETS.get(target)
    if attr is None:
        raise HTTPException(
            status_code=404,
            detail=_detail(
                request,
                "unknown_logger",
                f"No logger named {target!r}.",
                targets=sorted(TARGETS),
            ),
        )
    getattr(handle, attr).level = body.level
    return _snapshot(handle)
