# File: test_logging.py
# Directory: tests
# Purpose: LevelLogger line format, thresholds, level-change listeners,
#          destinations and redaction.

import io
import json
import sys

import pytest

from reqlog.core.logging import (
    FileDescriptorDestination,
    LevelLogger,
    StreamDestination,
    destination,
    redact,
)


class Lines:
    def __init__(self):
        self.lines = []

    def write(self, line):
        self.lines.append(line)


def test_field_order_and_line_ending():
    out = Lines()
    log = LevelLogger(out, name="svc", timestamp=lambda: 1)
    log.info({"a": 1, "skip": None, "b": "two"}, "hello")
    assert out.lines == ['{"level":30,"time":1,"name":"svc","a":1,"b":"two","msg":"hello"}\n']


def test_crlf_and_message_key():
    out = Lines()
    log = LevelLogger(out, timestamp=False, crlf=True, message_key="message")
    log.warn({}, "careful")
    assert out.lines == ['{"level":40,"message":"careful"}\r\n']


def test_default_timestamp_is_epoch_ms():
    out = Lines()
    LevelLogger(out).info(None, "x")
    record = json.loads(out.lines[0])
    assert list(record) == ["level", "time", "msg"]
    assert record["time"] > 10 ** 12


def test_threshold_filters_lower_levels():
    out = Lines()
    log = LevelLogger(out, level="warn", timestamp=False)
    log.info({}, "dropped")
    log.error({}, "kept")
    log.fatal({}, "kept")
    assert [json.loads(line)["level"] for line in out.lines] == [50, 60]
    assert log.is_level_enabled("warn")
    assert not log.is_level_enabled("info")


def test_silent_disables_everything():
    out = Lines()
    log = LevelLogger(out, level="silent")
    log.fatal({}, "nothing")
    assert out.lines == []
    assert log.level_value == float("inf")


def test_level_change_notifies_listeners():
    calls = []
    log = LevelLogger(Lines(), level="info")
    log.on_level_change(lambda *args: calls.append(args))
    log.level = "debug"
    log.level = "silent"
    assert calls == [("debug", 20, "info", 30), ("silent", float("inf"), "debug", 20)]


def test_unknown_level_rejected():
    log = LevelLogger(Lines())
    with pytest.raises(ValueError):
        log.level = "chatty"
    assert log.level == "info"


def test_serializers_apply_per_field():
    out = Lines()
    log = LevelLogger(out, timestamp=False, serializers={"err": lambda e: {"type": type(e).__name__}})
    log.error({"err": KeyError("k")}, "boom")
    assert json.loads(out.lines[0])["err"] == {"type": "KeyError"}


def test_unencodable_values_are_stringified():
    out = Lines()
    log = LevelLogger(out, timestamp=False)
    log.info({"obj": object()}, "x")
    assert json.loads(out.lines[0])["obj"].startswith("<object object")


def test_write_errors_propagate():
    class Broken:
        def write(self, line):
            raise OSError("disk full")

    with pytest.raises(OSError):
        LevelLogger(Broken()).info({}, "x")


def test_redaction_paths():
    out = Lines()
    log = LevelLogger(out, timestamp=False, redaction={"paths": ["req.auth.credentials", "*.secret"]})
    log.info({"req": {"auth": {"credentials": {"user": "u"}, "valid": True}}, "x": {"secret": 1}}, "r")
    record = json.loads(out.lines[0])
    assert record["req"]["auth"] == {"credentials": "[Redacted]", "valid": True}
    assert record["x"] == {"secret": "[Redacted]"}


def test_redact_remove_and_callable_censor():
    record = {"a": {"b": "secret", "c": 1}}
    assert redact(record, ["a.b"], remove=True) == {"a": {"c": 1}}
    assert redact(record, ["a.b"], censor=lambda v: v[:2] + "***") == {"a": {"b": "se***", "c": 1}}
    assert record == {"a": {"b": "secret", "c": 1}}


def test_destination_for_generic_streams():
    text = io.StringIO()
    target = destination(text)
    assert isinstance(target, StreamDestination)
    target.write("line\n")
    assert text.getvalue() == "line\n"

    raw = io.BytesIO()
    destination(raw).write("bytes\n")
    assert raw.getvalue() == b"bytes\n"


def test_destination_for_patched_std_stream(monkeypatch):
    monkeypatch.setattr(sys, "stdout", io.StringIO())
    assert isinstance(destination(sys.stdout), StreamDestination)


def test_file_descriptor_destination(tmp_path):
    path = tmp_path / "out.log"
    with open(path, "wb") as fh:
        FileDescriptorDestination(fh.fileno()).write('{"level":30}\n')
    assert path.read_text() == '{"level":30}\n'
