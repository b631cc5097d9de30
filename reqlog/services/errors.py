"""Configuration error raised by register() and log_properties()."""
from __future__ import annotations


class ConfigurationError(ValueError):
    """Invalid registration options or route property maps."""
