from __future__ import annotations

"""
AC OPF backends on PYPOWER's primal-dual interior point solver (PIPS).

PYPOWER ships two PIPS variants, selected through its own OPF_ALG option:
- 560: PIPS
- 565: PIPS, step-controlled

Both take generalized linear constraints (A, l, u) and accept any mix of
polynomial and piecewise-linear costs, so one class serves all four AC
backend families; the family only decides which variant runs and how the
iteration limit is defaulted.

When no in-service generator has a polynomial active-power cost (always the
case after piecewise-linear conversion), a zero-cost anchor generator is added
for the solve and stripped from the results again.
"""

import logging
from typing import Any

import numpy as np
import scipy.sparse as sp

from opf_dispatch.config import OPFOptions
from opf_dispatch.formulation import (
    FAMILY_GENERALIZED_A,
    FAMILY_GENERALIZED_B,
    FAMILY_RESTRICTED_LP,
    FAMILY_RESTRICTED_NLP,
)
from opf_dispatch.tables import CaseTables
from opf_dispatch.tables import cost as cc
from opf_dispatch.tables import gen as gn

from .base import BackendRequest, BackendResult, OPFBackend

logger = logging.getLogger(__name__)

PYPOWER_ALG_PIPS = 560
PYPOWER_ALG_PIPS_SC = 565

# Iteration cap of the restricted NLP family when the caller leaves it at 0.
_RESTRICTED_NLP_BASE_IT = 150


def _ppopt_overrides(
    options: OPFOptions, *, n_bus: int, pypower_alg: int, restricted_nlp: bool = False
) -> dict[str, Any]:
    """
    Translate OPF options into PYPOWER `ppoption` keyword arguments.

    - Verbosity 1 (the default) keeps PYPOWER quiet; higher levels are passed on, shifted by one.
    - `constr_max_it == 0` keeps PYPOWER's own iteration limit, except for the
      restricted NLP family, which uses 2 * n_bus + 150.
    - Result printing is always off (reporting is done by `opf_dispatch.reporting`).
    """
    kw: dict[str, Any] = {
        "VERBOSE": max(0, int(options.verbose) - 1),
        "OUT_ALL": 0,
        "OPF_ALG": int(pypower_alg),
        "OPF_VIOLATION": float(options.opf_violation),
        "RETURN_RAW_DER": 1,
    }
    max_it = int(options.constr_max_it)
    if max_it == 0 and restricted_nlp:
        max_it = 2 * int(n_bus) + _RESTRICTED_NLP_BASE_IT
    if max_it > 0:
        kw["PDIPM_MAX_IT"] = max_it
    return kw


def _case_to_ppc(case: CaseTables) -> dict[str, Any]:
    ppc = case.to_mapping()
    ppc["version"] = "2"
    return ppc


def _lacks_polynomial_p_cost(case: CaseTables) -> bool:
    """True if generators are in service but none has a polynomial active-power cost."""
    n = case.n_gen
    active = case.active_gen_mask
    if n == 0 or case.gencost.shape[0] < n or not np.any(active):
        return False
    return not bool(np.any(case.gencost[:n, cc.MODEL][active] == cc.POLYNOMIAL))


def _add_anchor_generator(ppc: dict[str, Any], case: CaseTables) -> int:
    """
    Append an in-service generator pinned at zero output with a zero polynomial cost.

    PYPOWER's PIPS cost function evaluates the polynomial costs of the active-power
    block unconditionally and breaks when that block is empty (every cost
    piecewise-linear). The anchor shares the bus of the first in-service generator,
    cannot inject anything and costs nothing, so the optimum is unchanged.

    Returns the anchor's row index in the generator table.
    """
    n = case.n_gen
    gen = ppc["gen"]
    host = gen[int(np.flatnonzero(case.active_gen_mask)[0])]
    row = np.zeros(gen.shape[1], dtype=float)
    for col in (gn.GEN_BUS, gn.VG, gn.MBASE):
        row[col] = host[col]
    row[gn.GEN_STATUS] = 1.0
    ppc["gen"] = np.vstack([gen, row])

    gencost = ppc["gencost"]
    if gencost.shape[1] <= cc.COST:
        gencost = np.hstack([gencost, np.zeros((gencost.shape[0], 1))])
    cost_row = np.zeros((1, gencost.shape[1]), dtype=float)
    cost_row[0, cc.MODEL] = cc.POLYNOMIAL
    cost_row[0, cc.NCOST] = 1
    blocks = [gencost[:n], cost_row]
    if gencost.shape[0] >= 2 * n:
        blocks += [gencost[n : 2 * n], cost_row]
    ppc["gencost"] = np.vstack(blocks)
    return n


def _widen_for_anchor(A: Any, *, n_bus: int, n_gen: int) -> Any:
    """Insert zero columns for the anchor's Pg and Qg into a (Va, Vm, Pg, Qg, ...) constraint matrix."""
    A = sp.csr_matrix(A, dtype=float)
    p_end = 2 * n_bus + n_gen
    q_end = p_end + n_gen
    if A.shape[1] < q_end:
        return A
    z = sp.csr_matrix((A.shape[0], 1), dtype=float)
    return sp.hstack([A[:, :p_end], z, A[:, p_end:q_end], z, A[:, q_end:]], format="csr")


def _stack_jacobian(dg: Any) -> Any:
    """PYPOWER hands the constraint Jacobian back as [equality, inequality] sparse blocks."""
    if isinstance(dg, np.ndarray) and dg.dtype == object:
        blocks = [sp.csr_matrix(b, dtype=float) for b in dg if b is not None]
        if not blocks:
            return None
        return sp.vstack(blocks, format="csr")
    return dg


def _drop_anchor_columns(jac: Any, results: dict[str, Any], anchor: int) -> Any:
    """Remove the anchor generator's Pg and Qg columns from the constraint Jacobian."""
    if not sp.issparse(jac) or jac.shape[1] == 0:
        return jac
    order = results["order"]["gen"]
    on = np.asarray(order["status"]["on"], dtype=int)
    # PYPOWER sorts in-service generators by bus; i2e maps back to in-service order.
    k = int(np.asarray(order["i2e"], dtype=int)[int(np.flatnonzero(on == anchor)[0])])
    vv = results["om"].get_idx()[0]
    drop = [int(vv["i1"]["Pg"]) + k, int(vv["i1"]["Qg"]) + k]
    keep = np.setdiff1d(np.arange(jac.shape[1]), drop)
    return sp.csr_matrix(jac)[:, keep]


class PypowerBackend(OPFBackend):
    """One PYPOWER PIPS variant serving one AC backend family."""

    required_modules = ("pypower",)

    def __init__(self, *, name: str, family: str, pypower_alg: int) -> None:
        self.name = str(name)
        self.family = str(family)
        self.pypower_alg = int(pypower_alg)

    def solve(self, request: BackendRequest) -> BackendResult:
        try:
            from pypower.opf import opf as pypower_opf
            from pypower.ppoption import ppoption
        except ImportError as e:
            raise ImportError("PYPOWER is required for the AC OPF backends.") from e

        case = request.case
        kw = _ppopt_overrides(
            request.options,
            n_bus=case.n_bus,
            pypower_alg=self.pypower_alg,
            restricted_nlp=self.family == FAMILY_RESTRICTED_NLP,
        )
        ppopt = ppoption(**kw)
        ppc = _case_to_ppc(case)
        anchor = _add_anchor_generator(ppc, case) if _lacks_polynomial_p_cost(case) else None

        constraints = request.constraints
        logger.info(
            "Solving AC OPF with %s (PYPOWER OPF_ALG=%d): buses=%d, generators=%d, "
            "branches=%d, extra constraints=%d",
            self.name,
            self.pypower_alg,
            case.n_bus,
            case.n_gen,
            int(case.branch.shape[0]),
            0 if constraints is None else constraints.n_rows,
        )
        if anchor is not None:
            logger.debug("No polynomial active-power cost; solving with anchor generator %d", anchor)

        try:
            if constraints is not None and not constraints.is_empty:
                A = constraints.A
                if anchor is not None:
                    A = _widen_for_anchor(A, n_bus=case.n_bus, n_gen=case.n_gen)
                results = pypower_opf(ppc, A, constraints.lower, constraints.upper, ppopt)
            else:
                results = pypower_opf(ppc, ppopt)
        except Exception as e:  # noqa: BLE001 - solver failures are reported, not raised
            logger.exception("PYPOWER OPF (%s) failed: %s", self.name, e)
            return BackendResult(case=case, f=float("nan"), success=False, info=f"error: {e}")

        raw = results.get("raw") or {}
        success = bool(results.get("success", False))
        info = raw.get("info", 1 if success else 0)

        jac = _stack_jacobian(raw.get("dg"))
        gen = results["gen"]
        if anchor is not None:
            jac = _drop_anchor_columns(jac, results, anchor)
            gen = gen[: case.n_gen]

        solved = case.with_tables(bus=results["bus"], gen=gen, branch=results["branch"])
        f = float(results.get("f", float("nan")))
        if success:
            logger.info("PYPOWER OPF (%s) converged: objective=%.6g", self.name, f)
        else:
            logger.warning("PYPOWER OPF (%s) did not converge (info=%s)", self.name, info)

        return BackendResult(
            case=solved,
            f=f,
            success=success,
            info=info,
            g=raw.get("g"),
            jac=jac,
        )


def builtin_pypower_backends() -> list[PypowerBackend]:
    """Default PYPOWER backends, one per AC backend family."""
    return [
        PypowerBackend(
            name="pypower-pips", family=FAMILY_GENERALIZED_A, pypower_alg=PYPOWER_ALG_PIPS
        ),
        PypowerBackend(
            name="pypower-pips-sc", family=FAMILY_GENERALIZED_B, pypower_alg=PYPOWER_ALG_PIPS_SC
        ),
        PypowerBackend(
            name="pypower-pips-restricted",
            family=FAMILY_RESTRICTED_NLP,
            pypower_alg=PYPOWER_ALG_PIPS,
        ),
        # PYPOWER has no successive-LP AC OPF; the step-controlled PIPS variant stands in.
        PypowerBackend(
            name="pypower-pips-sc-restricted",
            family=FAMILY_RESTRICTED_LP,
            pypower_alg=PYPOWER_ALG_PIPS_SC,
        ),
    ]
