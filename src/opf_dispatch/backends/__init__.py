"""
OPF backends.

Each backend serves one backend family. The process-wide registry holds the
built-in ones; callers may build their own `BackendRegistry` to swap engines.

This subpackage imports the solver libraries lazily (inside `solve`), so it is
safe to import without PyPSA or PYPOWER installed.
"""

from __future__ import annotations

from .base import BackendRequest, BackendResult, OPFBackend, module_available
from .registry import BackendRegistry, build_registry, default_registry

__all__ = [
    "BackendRegistry",
    "BackendRequest",
    "BackendResult",
    "OPFBackend",
    "build_registry",
    "default_registry",
    "module_available",
]
