# File: conftest.py
# Directory: tests
# Purpose: Shared test fixtures: a capturing log stream and a small FastAPI app
#          factory with reqlog registered on it.
#
# Notes:
# - Apps are driven with TestClient *without* the context manager unless a
#   test wants lifespan (server-started / server-stopped) lines.
# - REQLOG_* env vars are cleared so a developer's .env cannot leak in.

import json

import pytest
from fastapi import FastAPI

import reqlog


class CaptureStream:
    """Writable stream that keeps every line reqlog writes."""

    def __init__(self):
        self.lines = []

    def write(self, data):
        self.lines.append(data)

    @property
    def records(self):
        return [json.loads(line) for line in self.lines]

    def clear(self):
        self.lines.clear()


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch):
    for name in ("REQLOG_LEVEL", "REQLOG_CRLF", "REQLOG_NAME"):
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def stream():
    return CaptureStream()


@pytest.fixture
def prepare_server(stream):
    """Build an app with reqlog registered; routes are added by the test."""

    def _prepare(**options):
        options.setdefault("stream", stream)
        app = FastAPI()
        reqlog.register(app, **options)
        return app

    return _prepare
