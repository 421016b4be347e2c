from __future__ import annotations

"""
Backend contract.

A backend is one external OPF engine serving one backend family (see
`opf_dispatch.formulation.BACKEND_FAMILIES`). The dispatcher hands it a
normalized `BackendRequest` and gets a `BackendResult` back.

Contract
--------
- `probe()` is cheap-ish and side-effect free (import checks); it is called once
  per registry and cached.
- `solve()` is synchronous. Numerical failures (non-convergence, infeasibility,
  solver exceptions) are reported with `success=False`, never raised.
- `g` / `jac` may be left as None when the engine does not compute them.
"""

import importlib.util
from dataclasses import dataclass
from typing import Any

from opf_dispatch.config import OPFOptions
from opf_dispatch.formulation import AlgorithmSpec
from opf_dispatch.problem import LinearConstraints
from opf_dispatch.tables import CaseTables


@dataclass(frozen=True)
class BackendRequest:
    case: CaseTables
    options: OPFOptions
    algorithm: AlgorithmSpec | None = None  # None on the DC path
    constraints: LinearConstraints | None = None  # generalized families only


@dataclass(frozen=True)
class BackendResult:
    case: CaseTables
    f: float
    success: bool
    info: Any
    g: Any = None
    jac: Any = None


class OPFBackend:
    """Base class for OPF backends; subclasses set `name`/`family` and implement `solve`."""

    name: str = ""
    family: str = ""
    required_modules: tuple[str, ...] = ()

    def probe(self) -> bool:
        """Return True if every required module can be imported."""
        return all(module_available(m) for m in self.required_modules)

    def solve(self, request: BackendRequest) -> BackendResult:
        raise NotImplementedError

    def __repr__(self) -> str:
        return f"{type(self).__name__}(name={self.name!r}, family={self.family!r})"


def module_available(name: str) -> bool:
    """True if `name` is importable (without importing it)."""
    try:
        return importlib.util.find_spec(name) is not None
    except (ImportError, ValueError):
        return False
