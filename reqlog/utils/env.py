# ──────────────────────────────────────────────────────────────────────────────
# File: reqlog/utils/env.py
# Purpose: Safe env readers that ignore malformed values (e.g. "yes please")
#          and fall back to stable defaults. Keep tiny and dependency-free.
# ──────────────────────────────────────────────────────────────────────────────
from __future__ import annotations
import os
from typing import List, Optional

_TRUE = {"1", "true", "yes", "on"}
_FALSE = {"0", "false", "no", "off"}


def get_str(name: str, default: Optional[str] = None) -> Optional[str]:
    """Env value stripped of whitespace; empty or unset → default."""
    v = (os.getenv(name) or "").strip()
    return v or default


def get_bool(name: str, default: bool) -> bool:
    v = (os.getenv(name) or "").strip().lower()
    if v in _TRUE: return True
    if v in _FALSE: return False
    return default


def get_choice(name: str, choices: List[str], default: str) -> str:
    v = (os.getenv(name) or "").strip().lower()
    return v if v in choices else default
