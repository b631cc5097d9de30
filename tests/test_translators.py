# File: test_translators.py
# Directory: tests
# Purpose: Event → record translation on hand-built request contexts, and the
#          fault boundary that turns translator failures into meta records.

import json

import pytest
from starlette.datastructures import Headers

from reqlog.core.levels import build_tag_levels
from reqlog.core.logging import LevelLogger
from reqlog.core.serialize import serialize_error
from reqlog.services.context import AuthState, RequestContext, ResponseInfo, RouteInfo, ServerInfo
from reqlog.services.events import Event
from reqlog.services.settings import RouteProperties
from reqlog.services.translators import (
    FaultBoundary,
    Outcome,
    attempt,
    default_level,
    on_log_app,
    on_request_app,
    on_request_error,
    on_response,
    on_server_state,
)


class Lines:
    def __init__(self):
        self.lines = []

    def write(self, line):
        self.lines.append(line)

    @property
    def records(self):
        return [json.loads(line) for line in self.lines]


@pytest.fixture
def out():
    return Lines()


@pytest.fixture
def loggers(out):
    def _make(level="info"):
        common = dict(level=level, timestamp=False, serializers={"err": serialize_error})
        return LevelLogger(out, **common), LevelLogger(out, **common)
    return _make


def _context(status=200, error=None, **overrides):
    values = dict(
        id="r1",
        method="GET",
        path="/items/7",
        query_string="q=1",
        remote_address="10.0.0.1",
        headers=Headers({"x-real-ip": "1.2.3.4"}),
        route=RouteInfo(path="/items/{item_id}", id="get_item", realm="items"),
        response=ResponseInfo(status_code=status, error=error) if status is not None else None,
        received=1000,
        responded=1025,
    )
    values.update(overrides)
    return RequestContext(**values)


def test_default_level_by_status():
    assert [default_level(s) for s in (200, 302, 400, 404, 500, 503)] == ["info", "info", "warn", "warn", "error", "error"]


def test_response_record_shape(out, loggers):
    response_logger, event_logger = loggers()
    on_response(response_logger, event_logger, None, RouteProperties(), _context())
    assert out.records == [{
        "level": 30,
        "req": {"id": "r1", "method": "get", "path": "/items/7?q=1", "clientIp": "10.0.0.1"},
        "route": {"id": "get_item", "path": "/items/{item_id}", "realm": "items"},
        "res": {"statusCode": 200, "delay": 25},
        "msg": "request-response",
    }]


def test_unrouted_request_has_empty_route(out, loggers):
    response_logger, event_logger = loggers()
    on_response(response_logger, event_logger, None, RouteProperties(), _context(status=404, route=None))
    record = out.records[0]
    assert record["level"] == 40
    assert record["route"] == {}


def test_aborted_request_logged_at_debug(out, loggers):
    response_logger, event_logger = loggers("debug")
    on_response(response_logger, event_logger, None, RouteProperties(), _context(status=None))
    assert out.records == [{
        "level": 20,
        "req": {"id": "r1", "method": "get", "path": "/items/7?q=1", "clientIp": "10.0.0.1"},
        "route": {"id": "get_item", "path": "/items/{item_id}", "realm": "items"},
        "msg": "request-aborted",
    }]


def test_auth_block(out, loggers):
    response_logger, event_logger = loggers()
    auth = AuthState(is_authenticated=True, is_authorized=True, credentials={"user": "ann", "scopes": ["read"]}, strategy="bearer")
    on_response(response_logger, event_logger, None, RouteProperties(), _context(auth=auth))
    assert out.records[0]["req"]["auth"] == {
        "valid": True,
        "access": True,
        "credentials": {"user": "ann", "scopes": ["read"]},
        "strategy": "bearer",
    }


def test_unauthenticated_auth_block_omits_access(out, loggers):
    response_logger, event_logger = loggers()
    on_response(response_logger, event_logger, None, RouteProperties(), _context(auth=AuthState(is_authenticated=False)))
    assert out.records[0]["req"]["auth"] == {"valid": False}


def test_error_reason_and_data(out, loggers):
    response_logger, event_logger = loggers()
    error = ValueError("broken")
    error.data = {"field": "name"}
    on_response(response_logger, event_logger, None, RouteProperties(), _context(status=500, error=error))
    res = out.records[0]["res"]
    assert out.records[0]["level"] == 50
    assert res["reason"] == "ValueError: broken"
    assert res["data"] == {"field": "name"}


def test_associated_error_traced_for_non_5xx(out, loggers):
    response_logger, event_logger = loggers("trace")
    on_response(response_logger, event_logger, None, RouteProperties(), _context(status=400, error=ValueError("bad")))
    trace, response = out.records
    assert trace["level"] == 10
    assert trace["msg"] == "request-internal"
    assert trace["request"] == "r1"
    assert trace["tags"] == ["request", "response", "error"]
    assert trace["err"]["type"] == "ValueError"
    assert response["res"]["reason"] == "ValueError: bad"


def test_associated_error_not_traced_for_5xx_or_above_trace(out, loggers):
    response_logger, event_logger = loggers("trace")
    on_response(response_logger, event_logger, None, RouteProperties(), _context(status=500, error=ValueError("x")))
    assert [r["msg"] for r in out.records] == ["request-response"]

    out.lines.clear()
    response_logger, event_logger = loggers("debug")
    on_response(response_logger, event_logger, None, RouteProperties(), _context(status=400, error=ValueError("x")))
    assert [r["msg"] for r in out.records] == ["request-response"]


def test_gate_false_suppresses_but_still_traces(out, loggers):
    response_logger, event_logger = loggers("trace")
    on_response(response_logger, event_logger, lambda ctx: False, RouteProperties(), _context(status=400, error=ValueError("x")))
    assert [r["msg"] for r in out.records] == ["request-internal"]


def test_gate_level_override_and_true(out, loggers):
    response_logger, event_logger = loggers()
    on_response(response_logger, event_logger, lambda ctx: "fatal", RouteProperties(), _context(status=200))
    on_response(response_logger, event_logger, lambda ctx: True, RouteProperties(), _context(status=503))
    assert [r["level"] for r in out.records] == [60, 50]


def test_gate_unknown_level_uses_status_default(out, loggers):
    response_logger, event_logger = loggers()
    on_response(response_logger, event_logger, lambda ctx: "loud", RouteProperties(), _context(status=404))
    [record] = out.records
    assert record["msg"] == "request-response"
    assert record["level"] == 40


def test_gate_not_consulted_for_aborted_requests(out, loggers):
    response_logger, event_logger = loggers("debug")
    calls = []
    on_response(response_logger, event_logger, calls.append, RouteProperties(), _context(status=None))
    assert calls == []
    assert out.records[0]["msg"] == "request-aborted"


def test_property_map_overrides_and_skips_missing(out, loggers):
    response_logger, event_logger = loggers()
    props = RouteProperties(
        req={"clientIp": "headers.x-real-ip", "agent": "headers.user-agent"},
        res={"route": ("route", "id")},
    )
    on_response(response_logger, event_logger, None, props, _context())
    record = out.records[0]
    assert record["req"]["clientIp"] == "1.2.3.4"
    assert "agent" not in record["req"]
    assert record["res"]["route"] == "get_item"


def test_request_error_levels(out, loggers):
    _, event_logger = loggers()
    err = TypeError("fail")
    on_request_error(event_logger, Event(tags=["internal", "implementation", "error"], channel="error", error=err, request="r1", implementation=True))
    on_request_error(event_logger, Event(tags=["internal", "error"], channel="error", error=err, request="r1"))
    fatal, error = out.records
    assert fatal["level"] == 60 and error["level"] == 50
    assert fatal["msg"] == "request-error"
    assert fatal["err"] == {"type": "TypeError", "message": "fail"}
    assert list(fatal) == ["level", "request", "tags", "err", "msg"]


def test_app_event_tags_are_sanitized(out, loggers):
    _, event_logger = loggers()
    tags = ["my"]
    tags.append(tags)
    on_request_app(event_logger, build_tag_levels({"my": "warn"}), Event(tags=tags, channel="app", request="r1"))
    [record] = out.records
    assert record["level"] == 40
    assert record["tags"] == ["my", "[Circular]"]


def test_app_events_resolve_tag_levels(out, loggers):
    _, event_logger = loggers()
    tag_levels = build_tag_levels({"my": "warn"})
    server = ServerInfo(id="srv", created=1)
    on_log_app(event_logger, tag_levels, server, Event(tags=["my", "app"], channel="app", data={"n": 2 ** 64}))
    on_request_app(event_logger, tag_levels, Event(tags=["other"], channel="app", request="r1"))
    log_app, request_app = out.records
    assert log_app == {"level": 40, "server": "srv", "tags": ["my", "app"], "data": {"n": "18446744073709551616n"}, "msg": "log-app"}
    assert request_app == {"level": 30, "request": "r1", "tags": ["other"], "msg": "request-app"}


def test_server_state_record(out, loggers):
    _, event_logger = loggers()
    server = ServerInfo(id="srv", created=5, started=6, host="localhost", port=8000)
    on_server_state(event_logger, server, "started")
    assert out.records == [{
        "level": 30,
        "id": "srv",
        "created": 5,
        "started": 6,
        "host": "localhost",
        "port": 8000,
        "protocol": "http",
        "uri": "http://localhost:8000",
        "msg": "server-started",
    }]


# ── Fault boundary ------------------------------------------------------------

def test_attempt_outcomes():
    assert attempt(lambda: None) == Outcome(True)
    outcome = attempt(lambda x: 1 / x, 0)
    assert not outcome.ok
    assert isinstance(outcome.error, ZeroDivisionError)


def test_attempt_lets_base_exceptions_through():
    def cancel():
        raise KeyboardInterrupt

    with pytest.raises(KeyboardInterrupt):
        attempt(cancel)


def test_guard_reports_failure_as_meta_record(out, loggers):
    _, event_logger = loggers()
    boundary = FaultBoundary(event_logger, ServerInfo(id="srv", created=1))

    def explode(event):
        raise RuntimeError("translator broke")

    boundary.guard("on_request_app", explode)("event")
    record = out.records[0]
    assert record["level"] == 60
    assert record["msg"] == "reqlog-error"
    assert record["server"] == "srv"
    assert record["type"] == "RuntimeError"
    assert record["message"] == "translator broke"
    assert "RuntimeError: translator broke" in record["stack"]


def test_guard_names_translator_for_empty_message(out, loggers):
    _, event_logger = loggers()
    boundary = FaultBoundary(event_logger, ServerInfo(id="srv", created=1))

    def explode():
        raise RuntimeError()

    boundary.guard("on_server_state", explode)()
    assert out.records[0]["message"] == "Unknown throw during: on_server_state"


def test_guard_passes_bound_args_first(out, loggers):
    _, event_logger = loggers()
    boundary = FaultBoundary(event_logger, ServerInfo(id="srv", created=1))
    seen = []
    boundary.guard("t", lambda a, b, c: seen.append((a, b, c)), 1, 2)(3)
    assert seen == [(1, 2, 3)]
    assert out.lines == []


def test_guard_survives_broken_event_logger(caplog):
    class Broken:
        def write(self, line):
            raise OSError("closed")

    boundary = FaultBoundary(LevelLogger(Broken()), ServerInfo(id="srv", created=1))

    def explode():
        raise ValueError("x")

    with caplog.at_level("ERROR", logger="reqlog.translators"):
        boundary.guard("on_log_app", explode)()
    assert "on_log_app" in caplog.text
