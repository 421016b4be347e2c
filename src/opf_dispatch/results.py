from __future__ import annotations

"""
Uniform OPF result.

Whatever backend ran, callers get an `OPFResult` with the same fields:
- `g` is always a 1-D float array (empty when the backend does not compute constraint values).
- `jac` is always a SciPy CSR matrix (empty 0x0 when absent).
"""

import logging
import math
from dataclasses import dataclass
from typing import Any

import numpy as np
import scipy.sparse as sp

from opf_dispatch.backends.base import BackendResult
from opf_dispatch.formulation import FORMULATION_DC, Resolution
from opf_dispatch.tables import CaseTables
from opf_dispatch.tables import bus as bs
from opf_dispatch.tables import gen as gn

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class OPFResult:
    case: CaseTables
    f: float
    success: bool
    info: Any
    et: float
    g: np.ndarray
    jac: sp.csr_matrix
    algorithm: int | None
    formulation: str
    backend: str

    # MATPOWER-style accessors
    @property
    def bus(self) -> np.ndarray:
        return self.case.bus

    @property
    def gen(self) -> np.ndarray:
        return self.case.gen

    @property
    def branch(self) -> np.ndarray:
        return self.case.branch

    @property
    def gencost(self) -> np.ndarray:
        return self.case.gencost

    @property
    def base_mva(self) -> float:
        return self.case.base_mva

    def to_summary(self) -> dict[str, Any]:
        """JSON-friendly summary (no tables)."""
        case = self.case
        active = case.active_gen_mask
        total_pg = (
            float(np.sum(case.gen[active, gn.PG])) if case.n_gen and active.any() else 0.0
        )
        total_pd = float(np.sum(case.bus[:, bs.PD])) if case.n_bus else 0.0
        return {
            "success": bool(self.success),
            "objective": None if not math.isfinite(self.f) else float(self.f),
            "info": _jsonable(self.info),
            "elapsed_sec": float(self.et),
            "algorithm": None if self.algorithm is None else int(self.algorithm),
            "formulation": str(self.formulation),
            "backend": str(self.backend),
            "n_bus": int(case.n_bus),
            "n_gen": int(case.n_gen),
            "n_branch": int(case.branch.shape[0]),
            "n_constraints": int(self.g.size),
            "total_generation_mw": total_pg,
            "total_demand_mw": total_pd,
        }


def _jsonable(value: Any) -> Any:
    if isinstance(value, (bool, int, str)) or value is None:
        return value
    if isinstance(value, float):
        return value if math.isfinite(value) else None
    if isinstance(value, np.generic):
        return _jsonable(value.item())
    return str(value)


def normalize_g(g: Any) -> np.ndarray:
    if g is None:
        return np.zeros(0, dtype=float)
    return np.asarray(g, dtype=float).reshape(-1)


def _is_block_stack(jac: Any) -> bool:
    if isinstance(jac, np.ndarray):
        return jac.dtype == object and jac.ndim == 1
    return isinstance(jac, (list, tuple)) and any(sp.issparse(b) for b in jac)


def normalize_jac(jac: Any) -> sp.csr_matrix:
    if jac is None:
        return sp.csr_matrix((0, 0), dtype=float)
    if sp.issparse(jac):
        return sp.csr_matrix(jac, dtype=float)
    if _is_block_stack(jac):
        # row blocks, e.g. equality then inequality constraint Jacobians
        blocks = [sp.csr_matrix(b, dtype=float) for b in jac if b is not None]
        if not blocks:
            return sp.csr_matrix((0, 0), dtype=float)
        return sp.vstack(blocks, format="csr")
    arr = np.asarray(jac, dtype=float)
    if arr.size == 0:
        return sp.csr_matrix((0, 0), dtype=float)
    return sp.csr_matrix(np.atleast_2d(arr))


def normalize_result(
    raw: BackendResult, *, resolution: Resolution, backend: str, et: float
) -> OPFResult:
    """
    Map a backend result to the uniform OPFResult.

    DC results never carry constraint values or a Jacobian, whatever the backend returned.
    """
    dc = resolution.formulation == FORMULATION_DC
    return OPFResult(
        case=raw.case,
        f=float(raw.f) if raw.f is not None else float("nan"),
        success=bool(raw.success),
        info=raw.info,
        et=max(0.0, float(et)),
        g=normalize_g(None if dc else raw.g),
        jac=normalize_jac(None if dc else raw.jac),
        algorithm=resolution.algorithm_code,
        formulation=resolution.formulation,
        backend=str(backend),
    )
