from __future__ import annotations

import logging
import math
from typing import Any

import numpy as np

from opf_dispatch.config import DEFAULT_DC_BACKEND, DCBackendConfig
from opf_dispatch.costs import total_cost
from opf_dispatch.formulation import FAMILY_DC
from opf_dispatch.tables import CaseTables
from opf_dispatch.tables import branch as br
from opf_dispatch.tables import bus as bs
from opf_dispatch.tables import cost as cc
from opf_dispatch.tables import gen as gn

from .base import BackendRequest, BackendResult, OPFBackend

logger = logging.getLogger(__name__)

_AC_CARRIER = "AC"
_COST_MODELS = (cc.PW_LINEAR, cc.POLYNOMIAL)

_X_PU_EPS = 1e-12
_SHIFT_DEG_EPS = 1e-9


def _pad_columns(table: np.ndarray, ncols: int) -> np.ndarray:
    """Return a copy of `table` with at least `ncols` columns (zero padded)."""
    t = np.asarray(table, dtype=float)
    if t.shape[1] >= ncols:
        return t.copy()
    out = np.zeros((t.shape[0], ncols), dtype=float)
    out[:, : t.shape[1]] = t
    return out


def _gen_p_bounds_to_pypsa(
    *, gid: int, p_min_mw: float, p_max_mw: float
) -> tuple[float, float, float] | None:
    """
    Convert MATPOWER generator active power bounds into PyPSA parameters.

    Returns
    -------
    (p_nom, p_min_pu, p_max_pu) or None
        - None if the unit has no active power range (p_min == p_max == 0), e.g.
          synchronous condensers.
        - Units with p_max <= 0 and p_min < 0 (dispatchable loads) are scaled by |p_min|.

    Raises
    ------
    ValueError
        For non-finite or inconsistent bounds (p_min > p_max).
    """
    p_min = float(p_min_mw)
    p_max = float(p_max_mw)

    if not math.isfinite(p_min):
        raise ValueError(f"Invalid PMIN for gen {gid}: {p_min}")
    if not math.isfinite(p_max):
        raise ValueError(f"Invalid PMAX for gen {gid}: {p_max}")
    if p_min > p_max:
        raise ValueError(
            f"Inconsistent active power bounds for gen {gid}: PMIN={p_min} > PMAX={p_max}"
        )

    if p_max > 0.0:
        return p_max, p_min / p_max, 1.0
    if p_min < 0.0:
        p_nom = -p_min
        return p_nom, -1.0, p_max / p_nom
    return None


def _p_cost_rows(gencost: np.ndarray, n_gen: int) -> list[np.ndarray | None]:
    """Active-power cost row of each generator (first `n_gen` rows); None where the table runs short."""
    table = np.asarray(gencost, dtype=float)
    rows: list[np.ndarray | None] = [table[i] for i in range(min(n_gen, table.shape[0]))]
    return rows + [None] * (n_gen - len(rows))


def _cost_or_zero(cost_row: np.ndarray | None, p: Any) -> np.ndarray:
    """Cost of `cost_row` at outputs `p`; a missing row or an unknown cost model costs nothing."""
    p = np.asarray(p, dtype=float)
    if cost_row is None or float(cost_row[cc.MODEL]) not in _COST_MODELS:
        return np.zeros_like(p)
    return total_cost(cost_row, p)


def _marginal_cost(cost_row: np.ndarray | None, p_min: float, p_max: float) -> float:
    """
    Linear cost slope used by the DC LP: secant of the cost curve over [p_min, p_max].

    The DC backend does not validate cost models; polynomial and piecewise-linear
    curves are both reduced to this slope, anything else is free.
    """
    if p_max <= p_min:
        return 0.0
    c_lo, c_hi = _cost_or_zero(cost_row, np.array([p_min, p_max]))
    return float((c_hi - c_lo) / (p_max - p_min))


def _ensure_carrier_table(n: Any, carrier_name: str) -> None:
    """Define `carrier_name` in `n.carriers` (some PyPSA versions warn on unknown carriers)."""
    if not hasattr(n, "carriers"):
        return
    if str(carrier_name) in n.carriers.index:
        return
    n.add("Carrier", str(carrier_name))


class PyPSADCBackend(OPFBackend):
    """
    Lossless DC OPF with PyPSA + HiGHS on MATPOWER tables.

    Unit contract
    -------------
    - Bus.v_nom: BASE_KV in kV (1.0 when BASE_KV <= 0; only the product x * v_nom^2 matters).
    - Line.x: Ohm, x_ohm = x_pu * v_nom^2 / baseMVA * tap (MATPOWER-style DC tap modeling).
    - Line.s_nom: RATE_A in MVA (== MW under DC); RATE_A == 0 -> unconstrained surrogate.

    Written back
    ------------
    gen PG; bus VM (= 1), VA (degrees, reference bus angle kept), LAM_P;
    branch PF, PT (= -PF), QF = QT = 0.
    """

    name = "pypsa-highs"
    family = FAMILY_DC
    required_modules = ("pypsa", "highspy")

    def __init__(self, cfg: DCBackendConfig | None = None) -> None:
        self.cfg = cfg if cfg is not None else DEFAULT_DC_BACKEND

    def solve(self, request: BackendRequest) -> BackendResult:
        case = request.case
        try:
            n, meta = self._build_network(case)
        except ValueError as e:
            logger.error("Cannot build the DC network: %s", e)
            return BackendResult(
                case=case, f=float("nan"), success=False, info=f"error: {e}"
            )

        solver_name = str(self.cfg.highs.solver_name)
        logger.info(
            "Solving PyPSA DC OPF (%s): buses=%d, loads=%d, generators=%d, lines=%d",
            solver_name,
            int(len(n.buses.index)),
            int(len(n.loads.index)),
            int(len(n.generators.index)),
            int(len(n.lines.index)),
        )

        try:
            res = n.optimize(
                solver_name=solver_name, solver_options=self.cfg.highs.solver_options()
            )
        except Exception as e:  # noqa: BLE001 - solver failures are reported, not raised
            logger.exception("PyPSA DC OPF failed: %s", e)
            return BackendResult(
                case=case, f=float("nan"), success=False, info=f"error: {e}"
            )

        status, condition = _split_status(res)
        success = status == "ok"
        if not success:
            logger.warning("PyPSA DC OPF did not succeed: status=%s condition=%s", status, condition)
            return BackendResult(case=case, f=float("nan"), success=False, info=condition)

        solved = self._write_back(case, n, meta)
        pcost = _p_cost_rows(solved.gencost, solved.n_gen)
        f = float(
            sum(
                float(_cost_or_zero(pcost[gid], solved.gen[gid, gn.PG]))
                for gid in np.flatnonzero(solved.active_gen_mask)
            )
        )

        logger.info("PyPSA DC OPF done: status=%s, condition=%s, objective=%.6g", status, condition, f)
        return BackendResult(case=solved, f=f, success=True, info=condition)

    def _build_network(self, case: CaseTables) -> tuple[Any, dict[str, Any]]:
        try:
            import pandas as pd
            import pypsa
        except ImportError as e:
            raise ImportError("PyPSA (and pandas) is required for the DC OPF backend.") from e

        cfg = self.cfg
        unconstrained_nom = float(cfg.unconstrained_line_nom_mw)
        if not math.isfinite(unconstrained_nom) or unconstrained_nom <= 0:
            raise ValueError(
                "unconstrained_line_nom_mw must be finite and >0 "
                f"(got {cfg.unconstrained_line_nom_mw!r})"
            )

        n = pypsa.Network()
        n.set_snapshots(pd.Index([0]))
        _ensure_carrier_table(n, _AC_CARRIER)

        bus = case.bus
        gen = case.gen
        branch = case.branch
        base_mva = float(case.base_mva)

        in_service_bus = bus[:, bs.BUS_TYPE] != bs.NONE
        bus_ids = [int(b) for b in bus[in_service_bus, bs.BUS_I]]
        bus_id_set = set(bus_ids)
        v_nom_by_bus: dict[int, float] = {}
        for row in bus[in_service_bus]:
            b = int(row[bs.BUS_I])
            vn = float(row[bs.BASE_KV])
            v_nom = vn if math.isfinite(vn) and vn > 0 else 1.0
            v_nom_by_bus[b] = v_nom
            n.add("Bus", str(b), v_nom=v_nom, carrier=_AC_CARRIER)

        for row in bus[in_service_bus]:
            p = float(row[bs.PD]) + float(row[bs.GS])
            if p != 0.0:
                n.add("Load", f"load_{int(row[bs.BUS_I])}", bus=str(int(row[bs.BUS_I])), p_set=p)

        pcost = _p_cost_rows(case.gencost, case.n_gen)
        gen_names: dict[int, str] = {}
        skipped: list[int] = []
        for gid in range(case.n_gen):
            row = gen[gid]
            if row[gn.GEN_STATUS] <= 0:
                continue
            b = int(row[gn.GEN_BUS])
            if b not in bus_id_set:
                raise ValueError(f"gen {gid} refers to missing or isolated bus {b}")

            bounds = _gen_p_bounds_to_pypsa(
                gid=gid, p_min_mw=row[gn.PMIN], p_max_mw=row[gn.PMAX]
            )
            if bounds is None:
                skipped.append(gid)
                continue
            p_nom, p_min_pu, p_max_pu = bounds
            mc = _marginal_cost(pcost[gid], float(row[gn.PMIN]), float(row[gn.PMAX]))
            name = f"gen_{gid}"
            n.add(
                "Generator",
                name,
                bus=str(b),
                p_nom=float(p_nom),
                p_min_pu=float(p_min_pu),
                p_max_pu=float(p_max_pu),
                marginal_cost=float(mc),
            )
            gen_names[gid] = name

        if skipped:
            logger.debug(
                "Skipped %d active generator(s) with zero active power range: %s",
                len(skipped),
                skipped[:20],
            )
        if not gen_names:
            raise ValueError("No dispatchable in-service generators. Cannot solve DC OPF.")

        line_names: dict[int, str] = {}
        for k in range(branch.shape[0]):
            row = branch[k]
            if row[br.BR_STATUS] <= 0:
                continue
            fb = int(row[br.F_BUS])
            tb = int(row[br.T_BUS])
            if fb not in bus_id_set or tb not in bus_id_set:
                logger.debug("Skipping branch %d touching isolated/missing buses %d->%d", k, fb, tb)
                continue

            x_pu = float(row[br.BR_X])
            if not math.isfinite(x_pu) or abs(x_pu) <= _X_PU_EPS:
                raise ValueError(f"Invalid series reactance for branch {k}: x={x_pu}")

            shift = float(row[br.SHIFT]) if branch.shape[1] > br.SHIFT else 0.0
            if math.isfinite(shift) and abs(shift) > _SHIFT_DEG_EPS:
                if not cfg.allow_phase_shift:
                    raise ValueError(
                        f"Branch {k}: non-zero phase shift {shift} deg is not supported by the "
                        "DC backend. Set allow_phase_shift=True to ignore phase shifters."
                    )
                logger.warning("Branch %d phase shift %.6g deg is ignored (allow_phase_shift).", k, shift)

            tap = float(row[br.TAP]) if branch.shape[1] > br.TAP else 0.0
            if not math.isfinite(tap) or tap == 0.0:
                tap = 1.0

            v_nom = v_nom_by_bus[fb]
            x_ohm = x_pu * v_nom * v_nom / base_mva * tap

            rate = float(row[br.RATE_A])
            s_nom = rate if math.isfinite(rate) and rate > 0 else unconstrained_nom

            name = f"branch_{k}"
            n.add(
                "Line",
                name,
                bus0=str(fb),
                bus1=str(tb),
                r=0.0,
                x=float(x_ohm),
                s_nom=float(s_nom),
                carrier=_AC_CARRIER,
            )
            line_names[k] = name

        ref_rows = np.flatnonzero(bus[:, bs.BUS_TYPE] == bs.REF)
        ref = int(ref_rows[0]) if ref_rows.size else None
        meta = {"gen_names": gen_names, "line_names": line_names, "ref_row": ref}
        return n, meta

    def _write_back(self, case: CaseTables, n: Any, meta: dict[str, Any]) -> CaseTables:
        snap = n.snapshots[0]
        bus = _pad_columns(case.bus, bs.N_SOLVED_COLS)
        gen = _pad_columns(case.gen, gn.N_SOLVED_COLS)
        branch = _pad_columns(case.branch, br.N_SOLVED_COLS)

        gen[:, gn.PG] = 0.0
        gen_p = n.generators_t.p.loc[snap, :]
        for gid, name in meta["gen_names"].items():
            gen[gid, gn.PG] = float(gen_p[name])

        v_ang = n.buses_t.v_ang.loc[snap, :] if len(n.buses_t.v_ang.columns) else None
        prices = (
            n.buses_t.marginal_price.loc[snap, :]
            if hasattr(n.buses_t, "marginal_price") and len(n.buses_t.marginal_price.columns)
            else None
        )

        ref_row = meta["ref_row"]
        ang_offset = 0.0
        if ref_row is not None and v_ang is not None:
            ref_name = str(int(bus[ref_row, bs.BUS_I]))
            if ref_name in v_ang.index:
                ang_offset = float(bus[ref_row, bs.VA]) - math.degrees(float(v_ang[ref_name]))

        for i in range(bus.shape[0]):
            name = str(int(bus[i, bs.BUS_I]))
            bus[i, bs.VM] = 1.0
            if v_ang is not None and name in v_ang.index:
                bus[i, bs.VA] = math.degrees(float(v_ang[name])) + ang_offset
            if prices is not None and name in prices.index:
                bus[i, bs.LAM_P] = float(prices[name])
            bus[i, bs.LAM_Q] = 0.0

        branch[:, [br.PF, br.QF, br.PT, br.QT]] = 0.0
        p0 = n.lines_t.p0.loc[snap, :]
        for k, name in meta["line_names"].items():
            flow = float(p0[name])
            branch[k, br.PF] = flow
            branch[k, br.PT] = -flow

        return case.with_tables(bus=bus, gen=gen, branch=branch)


def _split_status(res: Any) -> tuple[str, str]:
    """PyPSA's optimize() returns (status, termination_condition)."""
    if isinstance(res, tuple) and len(res) >= 2:
        return str(res[0]), str(res[1])
    if res is None:
        return "ok", "unknown"
    return str(getattr(res, "status", res)), str(getattr(res, "termination_condition", ""))
