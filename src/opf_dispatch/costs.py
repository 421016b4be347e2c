from __future__ import annotations

"""
Generator cost table helpers.

- `classify_cost_models`: which active generators use piecewise-linear vs polynomial costs.
- `split_pq_costs`: split a cost table into active / reactive power blocks.
- `total_cost`: evaluate cost curves at given outputs.
"""

import logging
from dataclasses import dataclass

import numpy as np

from opf_dispatch.errors import CostTableShapeError, UnknownCostModelError
from opf_dispatch.tables.cost import COST, KNOWN_MODELS, MODEL, NCOST, POLYNOMIAL, PW_LINEAR

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CostModels:
    """
    Cost-table row indices of active generators, grouped by cost model.

    When the cost table carries a reactive power block (2 * n_gen rows), indices
    cover both blocks (reactive rows are offset by n_gen).
    """

    pwl_rows: np.ndarray
    poly_rows: np.ndarray
    doubled: bool

    @property
    def any_pwl(self) -> bool:
        return bool(self.pwl_rows.size)

    @property
    def any_poly(self) -> bool:
        return bool(self.poly_rows.size)

    @property
    def mixed(self) -> bool:
        return self.any_pwl and self.any_poly


def split_pq_costs(gencost: np.ndarray, n_gen: int) -> tuple[np.ndarray, np.ndarray]:
    """
    Split a cost table into (pcost, qcost).

    qcost is an empty (0, ncols) array when the table has one block only.
    """
    gc = np.asarray(gencost, dtype=float)
    n_rows = int(gc.shape[0])
    ng = int(n_gen)
    if n_rows == ng:
        return gc.copy(), np.zeros((0, gc.shape[1]), dtype=float)
    if n_rows == 2 * ng:
        return gc[:ng, :].copy(), gc[ng:, :].copy()
    raise CostTableShapeError(n_rows=n_rows, n_gen=ng)


def classify_cost_models(gencost: np.ndarray, gen_status: np.ndarray) -> CostModels:
    """
    Classify the cost rows of active generators (status > 0).

    Raises
    ------
    CostTableShapeError
        If the cost table has neither n_gen nor 2 * n_gen rows.
    UnknownCostModelError
        If an active generator's row carries a model tag other than
        PW_LINEAR (1) or POLYNOMIAL (2).
    """
    gc = np.asarray(gencost, dtype=float)
    status = np.asarray(gen_status, dtype=float).reshape(-1)
    n_gen = int(status.size)
    n_rows = int(gc.shape[0]) if gc.ndim == 2 else 0

    if n_rows not in (n_gen, 2 * n_gen):
        raise CostTableShapeError(n_rows=n_rows, n_gen=n_gen)

    doubled = n_gen > 0 and n_rows == 2 * n_gen
    active = np.flatnonzero(status > 0)
    rows = np.concatenate([active, active + n_gen]) if doubled else active

    models = gc[rows, MODEL] if rows.size else np.zeros(0, dtype=float)
    for r, m in zip(rows, models):
        if not np.isfinite(m) or int(m) != m or int(m) not in KNOWN_MODELS:
            raise UnknownCostModelError(row=int(r), model=float(m))

    out = CostModels(
        pwl_rows=rows[models == PW_LINEAR].astype(int),
        poly_rows=rows[models == POLYNOMIAL].astype(int),
        doubled=bool(doubled),
    )
    logger.debug(
        "Cost models: %d piecewise-linear, %d polynomial active rows (doubled=%s)",
        int(out.pwl_rows.size),
        int(out.poly_rows.size),
        out.doubled,
    )
    return out


def _poly_value(row: np.ndarray, x: np.ndarray) -> np.ndarray:
    n = int(row[NCOST])
    coeffs = row[COST : COST + n]
    if coeffs.size != n:
        raise ValueError(f"Polynomial cost row declares {n} coefficients, has {coeffs.size}")
    return np.polyval(coeffs, x) if n else np.zeros_like(x)


def _pwl_value(row: np.ndarray, x: np.ndarray) -> np.ndarray:
    """Piecewise-linear cost with linear extrapolation from the end segments."""
    n = int(row[NCOST])
    pts = row[COST : COST + 2 * n]
    if n < 2 or pts.size != 2 * n:
        raise ValueError(f"Piecewise-linear cost row needs >= 2 points, got NCOST={n}")
    xs = pts[0::2]
    ys = pts[1::2]
    if np.any(np.diff(xs) <= 0):
        raise ValueError("Piecewise-linear breakpoints must be strictly increasing")

    seg = np.clip(np.searchsorted(xs, x, side="right") - 1, 0, n - 2)
    slope = (ys[seg + 1] - ys[seg]) / (xs[seg + 1] - xs[seg])
    return ys[seg] + slope * (x - xs[seg])


def total_cost(cost_rows: np.ndarray, x: np.ndarray | float) -> np.ndarray:
    """
    Evaluate cost curves.

    Parameters
    ----------
    cost_rows:
        (m, ncols) cost table rows, or a single 1-D row.
    x:
        Outputs. For a single row any shape is accepted; for m rows, x must have
        m entries (one per row) or shape (m, k) for k points per row.

    Returns
    -------
    np.ndarray
        Costs with the shape of `x`.
    """
    rows = np.asarray(cost_rows, dtype=float)
    if rows.ndim == 1:
        rows = rows.reshape(1, -1)
        xx = np.asarray(x, dtype=float)[np.newaxis, ...]
        squeeze = True
    else:
        xx = np.asarray(x, dtype=float)
        squeeze = False
        if xx.shape[0] != rows.shape[0]:
            raise ValueError(
                f"x has {xx.shape[0]} entries along axis 0 for {rows.shape[0]} cost rows"
            )

    out = np.zeros(xx.shape, dtype=float)
    for i, row in enumerate(rows):
        model = int(row[MODEL])
        if model == POLYNOMIAL:
            out[i] = _poly_value(row, xx[i])
        elif model == PW_LINEAR:
            out[i] = _pwl_value(row, xx[i])
        else:
            raise UnknownCostModelError(row=i, model=float(row[MODEL]))
    return out[0] if squeeze else out
