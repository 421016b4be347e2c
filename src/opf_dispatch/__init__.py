"""
opf_dispatch package.

The repository uses a `src/` layout. Library code lives under `src/opf_dispatch`.

Public API
----------
- `run_opf` / `run_opf_case` / `opf`: solve OPF with automatic formulation and backend selection.
- `OPFOptions`, `CaseTables`, `LinearConstraints`: inputs.
- `OPFResult`: uniform result of every backend.
"""

from __future__ import annotations

from .config import OPFOptions
from .opf import opf, run_opf, run_opf_case, solve_problem
from .problem import LinearConstraints, OPFProblem, build_problem
from .results import OPFResult
from .tables import CaseTables

__all__ = [
    "__version__",
    "CaseTables",
    "LinearConstraints",
    "OPFOptions",
    "OPFProblem",
    "OPFResult",
    "build_problem",
    "opf",
    "run_opf",
    "run_opf_case",
    "solve_problem",
]

__version__ = "0.1.0"
