# ──────────────────────────────────────────────────────────────────────────────
# File: reqlog/core/__init__.py
# Purpose: Package marker with NO eager submodule imports (prevents circulars).
# ──────────────────────────────────────────────────────────────────────────────
__all__: list[str] = []
