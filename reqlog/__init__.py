"""
reqlog: structured, leveled JSON request/event logging for FastAPI and
Starlette applications.

    >>> import reqlog
    >>> app = FastAPI()
    >>> reqlog.register(app, level="info")
"""

from .core.levels import LEVELS, resolve_level
from .core.sanitize import safe_json
from .core.serialize import serialize_error
from .services.errors import ConfigurationError
from .services.events import request_internal, request_log, server_internal, server_log
from .services.plugin import RequestLog, log_properties, register

__version__ = "1.0.0"

__all__ = [
    "LEVELS",
    "ConfigurationError",
    "RequestLog",
    "log_properties",
    "register",
    "request_internal",
    "request_log",
    "resolve_level",
    "safe_json",
    "serialize_error",
    "server_internal",
    "server_log",
]
