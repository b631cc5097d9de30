# ──────────────────────────────────────────────────────────────────────────────
# File: main.py
# Purpose: Demo FastAPI app wired with reqlog (request/event JSON logging)
#
# Guarantees
#   • One JSON line per response on stdout; events/errors on stderr.
#   • Admin endpoints under /logging change thresholds at runtime.
#   • ClientDisconnect is not treated as an application error.
#
# Notes
#   • REQLOG_LEVEL / REQLOG_NAME / REQLOG_CRLF (or .env) set the defaults.
#   • Run: uvicorn main:app --port 8000
# ──────────────────────────────────────────────────────────────────────────────

from __future__ import annotations

# ── Stdlib --------------------------------------------------------------------
import logging
import os
from contextlib import asynccontextmanager
from typing import Optional

# ── Third-party ---------------------------------------------------------------
from fastapi import FastAPI, HTTPException, Request

# ── Local ---------------------------------------------------------------------
import reqlog
from reqlog.routes.levels import router as levels_router

# ── Logging -------------------------------------------------------------------
logger = logging.getLogger("reqlog.demo")


# ╔══════════════════════════════════════════════════════════════════════════╗
# ║ Gate                                                                     ║
# ╚══════════════════════════════════════════════════════════════════════════╝

QUIET_PATHS = ("/livez", "/readyz")


def log_response(context) -> object:
    """Skip health probes; anything slower than 2s is logged as a warning."""
    if context.path in QUIET_PATHS:
        return False
    delay = (context.responded or context.received) - context.received
    if delay > 2000 and context.response.status_code < 400:
        return "warn"
    return True


# ╔══════════════════════════════════════════════════════════════════════════╗
# ║ App Factory                                                              ║
# ╚══════════════════════════════════════════════════════════════════════════╝

def create_app() -> FastAPI:
    @asynccontextmanager
    async def lifespan(app: FastAPI):
        reqlog.server_log(app, ["startup", "info"], {"pid": os.getpid()})
        yield

    app = FastAPI(title="reqlog demo", lifespan=lifespan)

    reqlog.register(
        app,
        log_response=log_response,
        tag_levels={"audit": "warn"},
        redact=["req.auth.credentials"],
        properties={"req": {"agent": "headers.user-agent"}},
    )

    @app.get("/livez", tags=["health"])
    def livez():
        return {"ok": True}

    @app.get("/readyz", tags=["health"])
    def readyz():
        return {"ok": True}

    @app.get("/items/{item_id}", tags=["items"], operation_id="get_item")
    @reqlog.log_properties(req={"clientIp": "headers.x-real-ip", "item": "params.item_id"})
    def get_item(item_id: int, request: Request, q: Optional[str] = None):
        reqlog.request_log(request, ["items", "debug"], {"item_id": item_id, "q": q})
        if item_id == 0:
            raise HTTPException(status_code=404, detail="Item not found")
        return {"id": item_id, "q": q}

    @app.post("/audit", tags=["audit"])
    def audit(request: Request):
        reqlog.request_log(request, ["audit"], {"action": "touch"})
        return {"ok": True}

    @app.get("/boom")
    def boom():
        raise RuntimeError("boom")

    app.include_router(levels_router)

    logger.info("reqlog demo app created")
    return app


app = create_app()
