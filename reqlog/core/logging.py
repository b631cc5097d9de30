# File: logging.py
# Directory: reqlog/core
# Purpose: Leveled JSON-lines logger. One JSON object per line, pino-style
#          numeric levels (trace=10 … fatal=60), runtime-mutable threshold
#          with change notifications.
#
# Upstream:
#   - Imports: json, logging, os
#   - Callers: reqlog.services.plugin, reqlog.services.translators
#
# Downstream:
#   - stdout / stderr or any writable stream
#
# Contents:
#   - destination(stream)
#   - JsonLineFormatter, DestinationHandler
#   - LevelLogger
#   - redact()

from __future__ import annotations

import io
import json
import logging
import os
import sys
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence, Union

from .levels import LEVELS, SILENT, SILENT_VALUE, level_value

LevelListener = Callable[[str, float, Optional[str], Optional[float]], None]

REDACTED = "[Redacted]"


# ╔══════════════════════════════════════════════════════════════════════════╗
# ║ Destinations                                                             ║
# ╚══════════════════════════════════════════════════════════════════════════╝

class FileDescriptorDestination:
    """Writes encoded lines straight to a file descriptor."""

    def __init__(self, fd: int):
        self.fd = fd

    def write(self, line: str) -> None:
        data = line.encode("utf-8")
        while data:
            written = os.write(self.fd, data)
            data = data[written:]


class StreamDestination:
    """Writes lines to a generic (text or binary) stream and flushes."""

    def __init__(self, stream: Any):
        self.stream = stream
        mode = getattr(stream, "mode", "")
        self.binary = isinstance(stream, (io.RawIOBase, io.BufferedIOBase)) or (
            isinstance(mode, str) and "b" in mode
        )

    def write(self, line: str) -> None:
        self.stream.write(line.encode("utf-8") if self.binary else line)
        flush = getattr(self.stream, "flush", None)
        if callable(flush):
            flush()


def destination(stream: Any):
    """
    Pick the writer for a stream.

    The process's own stdout/stderr get the file-descriptor path, unless the
    stream has been swapped out or its write() patched by the host.
    """
    if _is_pristine_std_stream(stream):
        return FileDescriptorDestination(stream.fileno())
    return StreamDestination(stream)


def _is_pristine_std_stream(stream: Any) -> bool:
    if stream is None or stream not in (sys.__stdout__, sys.__stderr__):
        return False
    if "write" in getattr(stream, "__dict__", {}):
        return False
    try:
        stream.flush()
        stream.fileno()
    except (AttributeError, OSError, ValueError):
        return False
    return True


# ╔══════════════════════════════════════════════════════════════════════════╗
# ║ Formatting                                                               ║
# ╚══════════════════════════════════════════════════════════════════════════╝

def _fallback(obj: Any) -> Any:
    """json.dumps default: stringify whatever json cannot encode."""
    try:
        return str(obj)
    except Exception:
        return "<unserializable>"


def redact(
    record: Dict[str, Any],
    paths: Sequence[str],
    censor: Union[str, Callable[[Any], Any]] = REDACTED,
    remove: bool = False,
) -> Dict[str, Any]:
    """Return a copy of record with the dotted paths censored (``*`` matches any key)."""
    for path in paths:
        record = _redact_path(record, path.split("."), censor, remove)
    return record


def _redact_path(node: Any, segments: List[str], censor, remove: bool) -> Any:
    if not isinstance(node, dict) or not segments:
        return node

    head, rest = segments[0], segments[1:]
    keys = list(node) if head == "*" else [head]
    copy = None
    for key in keys:
        if key not in node:
            continue
        if copy is None:
            copy = dict(node)
        if rest:
            copy[key] = _redact_path(node[key], rest, censor, remove)
        elif remove:
            del copy[key]
        else:
            copy[key] = censor(node[key]) if callable(censor) else censor
    return node if copy is None else copy


class JsonLineFormatter(logging.Formatter):
    """
    Render a LogRecord as a single JSON line.

    Field order: level, time, name, the caller's fields, message. Fields whose
    value is None are left out.
    """

    def __init__(
        self,
        *,
        name: Optional[str] = None,
        timestamp: Union[bool, Callable[[], Any]] = True,
        message_key: str = "msg",
        crlf: bool = False,
        serializers: Optional[Mapping[str, Callable[[Any], Any]]] = None,
        redaction: Optional[Mapping[str, Any]] = None,
    ):
        super().__init__()
        self.name = name
        self.timestamp = timestamp
        self.message_key = message_key
        self.end = "\r\n" if crlf else "\n"
        self.serializers = dict(serializers or {})
        self.redaction = redaction

    def format(self, record: logging.LogRecord) -> str:
        line: Dict[str, Any] = {"level": record.levelno}
        if callable(self.timestamp):
            line["time"] = self.timestamp()
        elif self.timestamp:
            line["time"] = int(record.created * 1000)
        if self.name:
            line["name"] = self.name

        fields = getattr(record, "fields", None) or {}
        for key, value in fields.items():
            if value is None:
                continue
            serializer = self.serializers.get(key)
            line[key] = serializer(value) if serializer else value

        if record.msg is not None:
            line[self.message_key] = record.msg

        if self.redaction:
            line = redact(line, **self.redaction)

        return json.dumps(line, default=_fallback, ensure_ascii=False, separators=(",", ":")) + self.end


class DestinationHandler(logging.Handler):
    """Hands formatted lines to a destination. Write errors propagate to the caller."""

    def __init__(self, target):
        super().__init__()
        self.destination = target

    def emit(self, record: logging.LogRecord) -> None:
        self.destination.write(self.format(record))


# ╔══════════════════════════════════════════════════════════════════════════╗
# ║ Logger                                                                   ║
# ╚══════════════════════════════════════════════════════════════════════════╝

class LevelLogger:
    """
    Leveled structured logger bound to one destination.

    Wraps a private (unregistered) ``logging.Logger`` so that records flow
    through the standard handler/formatter machinery, while the threshold is
    kept here so it can be any of the named levels or ``silent``.

    Example:
        >>> log = LevelLogger(StreamDestination(sys.stdout), level="debug")
        >>> log.info({"user": 1}, "signed-in")
        {"level":30,"time":1729240245123,"user":1,"msg":"signed-in"}
    """

    def __init__(
        self,
        target,
        *,
        level: str = "info",
        name: Optional[str] = None,
        timestamp: Union[bool, Callable[[], Any]] = True,
        message_key: str = "msg",
        crlf: bool = False,
        serializers: Optional[Mapping[str, Callable[[Any], Any]]] = None,
        redaction: Optional[Mapping[str, Any]] = None,
    ):
        self._logger = logging.Logger(name or "reqlog")
        self._logger.propagate = False

        handler = DestinationHandler(target)
        handler.setFormatter(JsonLineFormatter(
            name=name,
            timestamp=timestamp,
            message_key=message_key,
            crlf=crlf,
            serializers=serializers,
            redaction=redaction,
        ))
        self._logger.addHandler(handler)

        self._listeners: List[LevelListener] = []
        self._level = level
        self._level_value = level_value(level)

    # ── Threshold -------------------------------------------------------------

    @property
    def level(self) -> str:
        return self._level

    @level.setter
    def level(self, name: str) -> None:
        value = level_value(name)
        previous, previous_value = self._level, self._level_value
        self._level, self._level_value = name, value
        for listener in list(self._listeners):
            listener(name, value, previous, previous_value)

    @property
    def level_value(self) -> float:
        return self._level_value

    @property
    def levels(self) -> Mapping[str, float]:
        return {**LEVELS, SILENT: SILENT_VALUE}

    @property
    def logger(self) -> logging.Logger:
        """The underlying stdlib logger (extra handlers may be attached)."""
        return self._logger

    def on_level_change(self, listener: LevelListener) -> None:
        """Call listener(level, value, previous_level, previous_value) on every level set."""
        self._listeners.append(listener)

    def is_level_enabled(self, name: str) -> bool:
        return LEVELS[name] >= self._level_value

    # ── Emitters --------------------------------------------------------------

    def _log(self, name: str, fields: Optional[Mapping[str, Any]], msg: Optional[str]) -> None:
        if not self.is_level_enabled(name):
            return
        self._logger.log(LEVELS[name], msg, extra={"fields": fields})

    def trace(self, fields: Optional[Mapping[str, Any]] = None, msg: Optional[str] = None) -> None:
        self._log("trace", fields, msg)

    def debug(self, fields: Optional[Mapping[str, Any]] = None, msg: Optional[str] = None) -> None:
        self._log("debug", fields, msg)

    def info(self, fields: Optional[Mapping[str, Any]] = None, msg: Optional[str] = None) -> None:
        self._log("info", fields, msg)

    def warn(self, fields: Optional[Mapping[str, Any]] = None, msg: Optional[str] = None) -> None:
        self._log("warn", fields, msg)

    def error(self, fields: Optional[Mapping[str, Any]] = None, msg: Optional[str] = None) -> None:
        self._log("error", fields, msg)

    def fatal(self, fields: Optional[Mapping[str, Any]] = None, msg: Optional[str] = None) -> None:
        self._log("fatal", fields, msg)
