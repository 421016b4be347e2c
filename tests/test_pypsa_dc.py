from __future__ import annotations

import math

import numpy as np
import pytest
import scipy.sparse as sp

from conftest import BRANCH, BUS, GEN, GENCOST_MIXED, make_case
from opf_dispatch.backends.base import BackendRequest
from opf_dispatch.backends.pypsa_dc import (
    PyPSADCBackend,
    _gen_p_bounds_to_pypsa,
    _marginal_cost,
    _p_cost_rows,
    _split_status,
)
from opf_dispatch.backends.registry import build_registry
from opf_dispatch.config import DCBackendConfig, OPFOptions
from opf_dispatch.opf import run_opf
from opf_dispatch.tables import branch as br
from opf_dispatch.tables import bus as bs
from opf_dispatch.tables import cost as cc
from opf_dispatch.tables import gen as gn

GENCOST_UNKNOWN_MODEL = GENCOST_MIXED.copy()
GENCOST_UNKNOWN_MODEL[0, cc.MODEL] = 9


def test_gen_p_bounds_to_pypsa_skips_zero_range():
    assert _gen_p_bounds_to_pypsa(gid=1, p_min_mw=0.0, p_max_mw=0.0) is None


def test_gen_p_bounds_to_pypsa_returns_params_for_positive_pmax():
    p_nom, p_min_pu, p_max_pu = _gen_p_bounds_to_pypsa(gid=1, p_min_mw=-5.0, p_max_mw=10.0)
    assert p_nom == pytest.approx(10.0)
    assert p_min_pu == pytest.approx(-0.5)
    assert p_max_pu == pytest.approx(1.0)

    p_nom2, p_min_pu2, _ = _gen_p_bounds_to_pypsa(gid=2, p_min_mw=5.0, p_max_mw=10.0)
    assert p_nom2 == pytest.approx(10.0)
    assert p_min_pu2 == pytest.approx(0.5)


def test_gen_p_bounds_to_pypsa_scales_dispatchable_loads_by_pmin():
    p_nom, p_min_pu, p_max_pu = _gen_p_bounds_to_pypsa(gid=3, p_min_mw=-10.0, p_max_mw=-5.0)
    assert p_nom == pytest.approx(10.0)
    assert p_min_pu == pytest.approx(-1.0)
    assert p_max_pu == pytest.approx(-0.5)


def test_gen_p_bounds_to_pypsa_rejects_invalid_bounds():
    with pytest.raises(ValueError):
        _gen_p_bounds_to_pypsa(gid=1, p_min_mw=float("nan"), p_max_mw=10.0)

    with pytest.raises(ValueError):
        _gen_p_bounds_to_pypsa(gid=2, p_min_mw=10.0, p_max_mw=float("nan"))

    with pytest.raises(ValueError):
        _gen_p_bounds_to_pypsa(gid=3, p_min_mw=10.0, p_max_mw=5.0)


def test_marginal_cost_is_secant_over_range():
    # 0.01 x^2 + 20 x on [10, 250]
    expected = ((0.01 * 250**2 + 20 * 250) - (0.01 * 10**2 + 20 * 10)) / 240.0
    assert _marginal_cost(GENCOST_MIXED[0], 10.0, 250.0) == pytest.approx(expected)
    # piecewise linear (0, 0) -> (200, 7000)
    assert _marginal_cost(GENCOST_MIXED[1], 0.0, 200.0) == pytest.approx(35.0)
    assert _marginal_cost(GENCOST_MIXED[1], 5.0, 5.0) == 0.0


def test_split_status():
    assert _split_status(("ok", "optimal")) == ("ok", "optimal")
    assert _split_status(None) == ("ok", "unknown")
    assert _split_status("warning") == ("warning", "")


def test_marginal_cost_of_unknown_or_missing_cost_is_zero():
    row = GENCOST_MIXED[0].copy()
    row[cc.MODEL] = 9
    assert _marginal_cost(row, 10.0, 250.0) == 0.0
    assert _marginal_cost(None, 10.0, 250.0) == 0.0


def test_p_cost_rows_tolerate_short_and_long_tables():
    rows = _p_cost_rows(GENCOST_MIXED[:2], 3)
    assert len(rows) == 3
    np.testing.assert_array_equal(rows[1], GENCOST_MIXED[1])
    assert rows[2] is None

    # a reactive block (or any extra rows) is ignored
    rows = _p_cost_rows(np.vstack([GENCOST_MIXED, GENCOST_MIXED, GENCOST_MIXED[:1]]), 3)
    assert len(rows) == 3
    np.testing.assert_array_equal(rows[2], GENCOST_MIXED[2])


def test_backend_metadata():
    b = PyPSADCBackend()
    assert b.name == "pypsa-highs"
    assert b.family == "dc"
    assert b.required_modules == ("pypsa", "highspy")


def test_phase_shifter_rejected_unless_allowed():
    pytest.importorskip("pypsa")
    branch = make_case().branch.copy()
    branch[0, br.SHIFT] = 5.0
    case = make_case(branch=branch)

    with pytest.raises(ValueError, match="phase shift"):
        PyPSADCBackend()._build_network(case)

    n, meta = PyPSADCBackend(DCBackendConfig(allow_phase_shift=True))._build_network(case)
    assert len(meta["line_names"]) == 3


def test_zero_reactance_branch_rejected():
    pytest.importorskip("pypsa")
    branch = make_case().branch.copy()
    branch[1, br.BR_X] = 0.0
    with pytest.raises(ValueError, match="reactance"):
        PyPSADCBackend()._build_network(make_case(branch=branch))


def test_no_dispatchable_generators_rejected():
    pytest.importorskip("pypsa")
    gen = GEN.copy()
    gen[:, gn.GEN_STATUS] = 0
    with pytest.raises(ValueError, match="No dispatchable"):
        PyPSADCBackend()._build_network(make_case(gen=gen))


def test_unrated_branch_uses_surrogate_capacity():
    pytest.importorskip("pypsa")
    branch = make_case().branch.copy()
    branch[2, br.RATE_A] = 0.0
    cfg = DCBackendConfig(unconstrained_line_nom_mw=5e5)
    n, meta = PyPSADCBackend(cfg)._build_network(make_case(branch=branch))
    assert float(n.lines.loc[meta["line_names"][2], "s_nom"]) == pytest.approx(5e5)
    assert float(n.lines.loc[meta["line_names"][0], "s_nom"]) == pytest.approx(200.0)


def test_dc_opf_on_three_bus_case():
    pytest.importorskip("pypsa")
    pytest.importorskip("highspy")

    bus = BUS.copy()
    bus[0, bs.VA] = 7.5
    case = make_case(GENCOST_MIXED, bus=bus)

    res = PyPSADCBackend().solve(BackendRequest(case=case, options=OPFOptions(pf_dc=True)))

    assert res.success
    assert np.isfinite(res.f)
    solved = res.case
    total_pd = float(np.sum(BUS[:, bs.PD]))
    assert float(np.sum(solved.gen[:, gn.PG])) == pytest.approx(total_pd, abs=1e-5)
    assert np.all(solved.gen[:, gn.PG] >= GEN[:, gn.PMIN] - 1e-6)
    assert np.all(solved.gen[:, gn.PG] <= GEN[:, gn.PMAX] + 1e-6)
    assert solved.bus[0, bs.VA] == pytest.approx(7.5, abs=1e-6)
    np.testing.assert_allclose(solved.bus[:, bs.VM], 1.0)
    np.testing.assert_allclose(solved.branch[:, br.PT], -solved.branch[:, br.PF])
    assert solved.bus.shape[1] == bs.N_SOLVED_COLS
    assert solved.gen.shape[1] == gn.N_SOLVED_COLS
    assert solved.branch.shape[1] == br.N_SOLVED_COLS
    # inputs untouched
    assert case.bus.shape[1] == BUS.shape[1]


def _solve_dc(case, cfg: DCBackendConfig | None = None):
    return PyPSADCBackend(cfg).solve(BackendRequest(case=case, options=OPFOptions(pf_dc=True)))


def _assert_failed_with(res, text: str):
    assert res.success is False
    assert math.isnan(res.f)
    assert str(res.info).startswith("error:")
    assert text in str(res.info)


def test_bad_network_data_is_reported_as_failed_solve():
    pytest.importorskip("pypsa")

    branch = BRANCH.copy()
    branch[1, br.BR_X] = 0.0
    _assert_failed_with(_solve_dc(make_case(branch=branch)), "reactance")

    branch = BRANCH.copy()
    branch[0, br.SHIFT] = 5.0
    _assert_failed_with(_solve_dc(make_case(branch=branch)), "phase shift")

    gen = GEN.copy()
    gen[:, gn.GEN_STATUS] = 0
    _assert_failed_with(_solve_dc(make_case(gen=gen)), "No dispatchable")

    gen = GEN.copy()
    gen[0, gn.GEN_BUS] = 42
    _assert_failed_with(_solve_dc(make_case(gen=gen)), "missing or isolated bus 42")


def test_dc_run_through_registry_reports_bad_reactance_without_raising():
    pytest.importorskip("pypsa")
    pytest.importorskip("highspy")

    branch = BRANCH.copy()
    branch[0, br.BR_X] = 0.0
    res = run_opf(make_case(branch=branch), options={"pf_dc": True}, registry=build_registry())

    assert res.backend == "pypsa-highs"
    assert res.success is False
    assert str(res.info).startswith("error:")
    assert res.g.shape == (0,)
    assert res.jac.shape == (0, 0)


@pytest.mark.parametrize(
    "gencost",
    [
        pytest.param(GENCOST_UNKNOWN_MODEL, id="unknown-model"),
        pytest.param(GENCOST_MIXED[:2], id="short-table"),
    ],
)
def test_dc_run_ignores_cost_table_contents(gencost):
    pytest.importorskip("pypsa")
    pytest.importorskip("highspy")

    res = run_opf(make_case(gencost), options={"pf_dc": True}, registry=build_registry())

    assert res.success, res.info
    assert res.backend == "pypsa-highs"
    assert np.isfinite(res.f)
    assert res.g.shape == (0,)
    assert sp.isspmatrix_csr(res.jac)
    assert res.jac.shape == (0, 0)
    total_pd = float(np.sum(BUS[:, bs.PD]))
    assert float(np.sum(res.gen[:, gn.PG])) == pytest.approx(total_pd, abs=1e-5)
