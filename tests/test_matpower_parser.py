from __future__ import annotations

import logging

import numpy as np
import pytest

from conftest import AREAS, BRANCH, BUS, GEN, GENCOST_MIXED
from opf_dispatch.parsers import load_case
from opf_dispatch.parsers.matpower import _field_values, _parse_matrix, _strip_comments

CASE2 = """function mpc = case2
mpc.version = '2';
mpc.baseMVA = 100;

mpc.bus = [
1 3 0 0 0 0 1 1.00 0 110 1 1.05 0.95;
2 1 10 5 0 0 1 1.00 0 110 1 1.05 0.95;
];

mpc.gen = [
1 0 0 10 -10 1.00 100 1 50 0;
];

mpc.branch = [
1 2 0.01 0.05 0 100 100 100 0 0 1 -360 360;
];

mpc.gencost = [
{gencost}
];
"""


def _write(tmp_path, text, name="case2.m"):
    path = tmp_path / name
    path.write_text(text, encoding="utf-8")
    return path


def test_load_case_parses_all_tables(case3_path):
    case = load_case(case3_path)
    assert case.base_mva == 100.0
    np.testing.assert_array_equal(case.bus, BUS)
    np.testing.assert_array_equal(case.gen, GEN)
    np.testing.assert_array_equal(case.branch, BRANCH)
    np.testing.assert_array_equal(case.gencost, GENCOST_MIXED)
    np.testing.assert_array_equal(case.areas, AREAS)


def test_areas_are_optional(tmp_path):
    case = load_case(_write(tmp_path, CASE2.format(gencost="2 0 0 3 0.1 10 0;")))
    assert case.areas.size == 0
    assert case.gencost.shape == (1, 7)
    assert case.branch[0, 5] == pytest.approx(100.0)


def test_doubled_gencost_is_accepted(tmp_path):
    text = CASE2.format(gencost="2 0 0 3 0.1 10 0;\n2 0 0 2 1 0 0;")
    assert load_case(_write(tmp_path, text)).gencost.shape == (2, 7)


def test_bad_gencost_row_count_is_a_load_error(tmp_path):
    text = CASE2.format(gencost="2 0 0 2 1 0;\n2 0 0 2 1 0;\n2 0 0 2 1 0;")
    with pytest.raises(RuntimeError) as ei:
        load_case(_write(tmp_path, text))
    assert isinstance(ei.value.__cause__, ValueError)


def test_missing_gencost_is_a_load_error(tmp_path):
    text = CASE2.split("mpc.gencost")[0]
    with pytest.raises(RuntimeError):
        load_case(_write(tmp_path, text))


def test_missing_file(tmp_path):
    with pytest.raises(FileNotFoundError):
        load_case(tmp_path / "nope.m")


def test_non_m_suffix(tmp_path):
    with pytest.raises(ValueError):
        load_case(_write(tmp_path, CASE2.format(gencost="2 0 0 2 1 0;"), name="case2.txt"))


def test_non_v2_format_warns(tmp_path, caplog):
    caplog.set_level(logging.WARNING, logger="opf_dispatch.parsers.matpower")
    text = CASE2.format(gencost="2 0 0 2 1 0;").replace("'2'", "'1'")
    load_case(_write(tmp_path, text))
    assert any("version" in r.getMessage() for r in caplog.records)


def test_matrix_rows_split_on_newlines_and_continuations():
    fields = _field_values(_strip_comments("mpc.x = [\n 1, 2 ...\n 3  % comment\n 4 5 6\n];\n"))
    np.testing.assert_array_equal(_parse_matrix(fields["x"], "x"), [[1, 2, 3], [4, 5, 6]])


def test_ragged_matrix_rejected():
    with pytest.raises(ValueError, match="Inconsistent"):
        _parse_matrix("[1 2; 3]", "x")


def test_percent_inside_quotes_is_not_a_comment():
    text = _strip_comments("mpc.note = 'load 50% lower';  % trailing\nmpc.baseMVA = 100; % MVA")
    fields = _field_values(text)
    assert fields["note"] == "'load 50% lower'"
    assert fields["baseMVA"] == "100"


def test_field_values_handle_cells_and_reassignment():
    text = "mpc.bus_name = {\n'A';\n'B';\n};\nmpc.baseMVA = 10;\nmpc.baseMVA = 100\n"
    fields = _field_values(text)
    assert fields["bus_name"].startswith("{") and fields["bus_name"].endswith("}")
    assert fields["baseMVA"] == "100"


def test_unterminated_matrix_is_a_load_error(tmp_path):
    text = CASE2.format(gencost="2 0 0 2 1 0;").rsplit("];", 1)[0]
    with pytest.raises(RuntimeError) as ei:
        load_case(_write(tmp_path, text))
    assert "Unterminated value for mpc.gencost" in str(ei.value.__cause__)
