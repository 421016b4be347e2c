"""Case file parsers."""

from __future__ import annotations

from .matpower import load_case

__all__ = ["load_case"]
