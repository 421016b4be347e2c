from __future__ import annotations

"""
Polynomial -> piecewise-linear cost conversion.

Restricted piecewise-linear formulations accept one cost representation only, so
polynomial rows are replaced by `npts`-point piecewise-linear approximations over
the generator's output range before dispatch. The approximation is exact at the
breakpoints (including both bounds) and its accuracy in between is governed by
`npts`.
"""

import logging

import numpy as np

from opf_dispatch.costs import split_pq_costs, total_cost
from opf_dispatch.errors import CostConversionError
from opf_dispatch.tables.cost import COST, MODEL, NCOST, POLYNOMIAL, PW_LINEAR
from opf_dispatch.tables.gen import GEN_STATUS, PMAX, PMIN, QMAX, QMIN

logger = logging.getLogger(__name__)


def pwl_breakpoints(pmin: float, pmax: float, npts: int) -> np.ndarray:
    """
    Breakpoints of the piecewise-linear approximation over [pmin, pmax].

    When pmin > 0 the curve also passes through 0 (the unit's no-load point),
    so the grid is [0, pmin, ..., pmax] with npts entries in total.
    """
    n = int(npts)
    if n < 2:
        raise ValueError(f"npts must be >= 2, got {npts}")
    lo = float(pmin)
    hi = float(pmax)
    if not (np.isfinite(lo) and np.isfinite(hi)) or hi <= lo:
        raise ValueError(f"Degenerate output range [{lo}, {hi}]")
    if lo > 0 and n > 2:
        return np.concatenate([[0.0], np.linspace(lo, hi, n - 1)])
    return np.linspace(lo, hi, n)


def poly_to_pwl(
    polycost: np.ndarray, pmin: np.ndarray, pmax: np.ndarray, npts: int
) -> np.ndarray:
    """
    Convert polynomial cost rows to piecewise-linear rows.

    Parameters
    ----------
    polycost:
        (m, ncols) polynomial rows.
    pmin, pmax:
        (m,) output bounds per row.
    npts:
        Number of breakpoints per row.

    Returns
    -------
    np.ndarray
        (m, max(ncols, COST + 2 * npts)) rows tagged PW_LINEAR. STARTUP/SHUTDOWN
        are kept; unused trailing parameter columns are zero.
    """
    rows = np.asarray(polycost, dtype=float)
    if rows.ndim != 2:
        raise ValueError(f"polycost must be 2-D, got shape {rows.shape}")
    lo = np.asarray(pmin, dtype=float).reshape(-1)
    hi = np.asarray(pmax, dtype=float).reshape(-1)
    m = int(rows.shape[0])
    if lo.size != m or hi.size != m:
        raise ValueError(f"pmin/pmax must have {m} entries, got {lo.size}/{hi.size}")

    n = int(npts)
    ncols = max(int(rows.shape[1]), COST + 2 * n)
    out = np.zeros((m, ncols), dtype=float)
    out[:, :COST] = rows[:, :COST]
    out[:, MODEL] = PW_LINEAR
    out[:, NCOST] = n

    for i in range(m):
        if int(rows[i, MODEL]) != POLYNOMIAL:
            raise ValueError(f"Row {i} is not polynomial (MODEL={rows[i, MODEL]})")
        xx = pwl_breakpoints(lo[i], hi[i], n)
        yy = total_cost(rows[i], xx)
        out[i, COST : COST + 2 * n : 2] = xx
        out[i, COST + 1 : COST + 2 * n : 2] = yy
    return out


def _convert_block(
    block: np.ndarray,
    *,
    lo: np.ndarray,
    hi: np.ndarray,
    active: np.ndarray,
    npts: int,
    row_offset: int,
) -> np.ndarray:
    """Convert the polynomial rows of one cost block; other rows are copied verbatim."""
    poly = np.flatnonzero(block[:, MODEL] == POLYNOMIAL)
    convertible: list[int] = []
    for i in poly:
        if hi[i] > lo[i]:
            convertible.append(int(i))
        elif active[i]:
            raise CostConversionError(
                f"Cannot convert polynomial cost of gencost row {row_offset + int(i)} "
                f"to piecewise linear: degenerate output range [{lo[i]}, {hi[i]}].",
                row=row_offset + int(i),
            )
        else:
            logger.debug(
                "Keeping polynomial cost of offline generator row %d (degenerate range).",
                row_offset + int(i),
            )

    if not convertible:
        return block.copy()

    idx = np.asarray(convertible, dtype=int)
    converted = poly_to_pwl(block[idx, :], lo[idx], hi[idx], npts)
    out = np.zeros((block.shape[0], converted.shape[1]), dtype=float)
    out[:, : block.shape[1]] = block
    out[idx, :] = converted
    return out


def linearize_costs(gencost: np.ndarray, gen: np.ndarray, npts: int) -> np.ndarray:
    """
    Replace polynomial cost rows by piecewise-linear approximations.

    Active power rows span [PMIN, PMAX]; reactive power rows (second block, if
    present) span [QMIN, QMAX]. Piecewise-linear rows are left untouched and the
    original row order is kept. Returns a new array (inputs are not modified).
    """
    g = np.asarray(gen, dtype=float)
    n_gen = int(g.shape[0])
    pcost, qcost = split_pq_costs(gencost, n_gen)
    active = g[:, GEN_STATUS] > 0

    pout = _convert_block(
        pcost, lo=g[:, PMIN], hi=g[:, PMAX], active=active, npts=npts, row_offset=0
    )
    if qcost.shape[0] == 0:
        return pout

    qout = _convert_block(
        qcost, lo=g[:, QMIN], hi=g[:, QMAX], active=active, npts=npts, row_offset=n_gen
    )
    ncols = max(pout.shape[1], qout.shape[1])
    out = np.zeros((2 * n_gen, ncols), dtype=float)
    out[:n_gen, : pout.shape[1]] = pout
    out[n_gen:, : qout.shape[1]] = qout
    return out
