from __future__ import annotations

import numpy as np
import pytest

from conftest import GENCOST_MIXED, GENCOST_POLY
from opf_dispatch.costs import classify_cost_models, split_pq_costs, total_cost
from opf_dispatch.errors import CostTableShapeError, UnknownCostModelError

ALL_ON = np.ones(3)


def test_classify_mixed_table():
    cm = classify_cost_models(GENCOST_MIXED, ALL_ON)
    assert cm.pwl_rows.tolist() == [1]
    assert cm.poly_rows.tolist() == [0, 2]
    assert cm.any_pwl and cm.any_poly and cm.mixed
    assert not cm.doubled


def test_classify_only_counts_active_generators():
    status = np.array([1.0, 0.0, 1.0])
    cm = classify_cost_models(GENCOST_MIXED, status)
    assert cm.pwl_rows.size == 0
    assert cm.poly_rows.tolist() == [0, 2]
    assert not cm.any_pwl


def test_unknown_model_on_active_row_raises():
    gc = GENCOST_POLY.copy()
    gc[1, 0] = 3
    with pytest.raises(UnknownCostModelError) as ei:
        classify_cost_models(gc, ALL_ON)
    assert ei.value.row == 1
    assert ei.value.model == 3


@pytest.mark.parametrize("tag", [0.0, 1.5, float("nan"), -2.0])
def test_any_out_of_set_tag_raises(tag):
    gc = GENCOST_POLY.copy()
    gc[2, 0] = tag
    with pytest.raises(UnknownCostModelError):
        classify_cost_models(gc, ALL_ON)


def test_unknown_model_on_offline_row_is_ignored():
    gc = GENCOST_POLY.copy()
    gc[1, 0] = 7
    cm = classify_cost_models(gc, np.array([1.0, 0.0, 1.0]))
    assert cm.poly_rows.tolist() == [0, 2]


def test_doubled_table_covers_both_blocks():
    q = GENCOST_MIXED.copy()
    q[:, 0] = [1, 2, 2]
    gc = np.vstack([GENCOST_MIXED, q])
    cm = classify_cost_models(gc, np.array([1.0, 1.0, 0.0]))
    assert cm.doubled
    assert cm.pwl_rows.tolist() == [1, 3]
    assert cm.poly_rows.tolist() == [0, 4]


def test_cost_table_shape_mismatch_raises():
    with pytest.raises(CostTableShapeError) as ei:
        classify_cost_models(GENCOST_POLY[:2], ALL_ON)
    assert ei.value.n_rows == 2
    assert ei.value.n_gen == 3

    with pytest.raises(CostTableShapeError):
        split_pq_costs(np.vstack([GENCOST_POLY, GENCOST_POLY[:1]]), 3)


def test_split_pq_costs():
    p, q = split_pq_costs(GENCOST_POLY, 3)
    assert p.shape == (3, GENCOST_POLY.shape[1])
    assert q.shape == (0, GENCOST_POLY.shape[1])

    p2, q2 = split_pq_costs(np.vstack([GENCOST_POLY, 2 * GENCOST_POLY]), 3)
    np.testing.assert_allclose(p2, GENCOST_POLY)
    np.testing.assert_allclose(q2, 2 * GENCOST_POLY)


def test_total_cost_polynomial_and_pwl():
    # 0.01 x^2 + 20 x
    assert total_cost(GENCOST_MIXED[0], 100.0) == pytest.approx(2100.0)
    # breakpoints (0, 0), (100, 3000), (200, 7000)
    assert total_cost(GENCOST_MIXED[1], 150.0) == pytest.approx(5000.0)
    assert total_cost(GENCOST_MIXED[1], 50.0) == pytest.approx(1500.0)

    values = total_cost(GENCOST_MIXED, np.array([0.0, 200.0, 10.0]))
    np.testing.assert_allclose(values, [0.0, 7000.0, 0.02 * 100 + 150.0])


def test_total_cost_rejects_unknown_model():
    row = GENCOST_POLY[0].copy()
    row[0] = 5
    with pytest.raises(UnknownCostModelError):
        total_cost(row, 1.0)
