from __future__ import annotations

import json
from pathlib import Path

import pytest

from opf_dispatch.cli import EXIT_CONFIG_ERROR, EXIT_OK, _unknown_is_tail, main


@pytest.fixture
def workdir(tmp_path, monkeypatch) -> Path:
    monkeypatch.chdir(tmp_path)
    return tmp_path


def _only_run_dir(runs: Path) -> Path:
    dirs = [p for p in runs.iterdir() if p.is_dir()]
    assert len(dirs) == 1
    return dirs[0]


def test_no_command_and_no_config(workdir):
    assert main([]) == EXIT_CONFIG_ERROR


def test_missing_explicit_config(workdir):
    assert main(["--config", str(workdir / "missing.yaml"), "backends"]) == EXIT_CONFIG_ERROR


def test_solve_requires_input(workdir):
    assert main(["solve"]) == EXIT_CONFIG_ERROR
    assert not (workdir / "runs").exists()


def test_invalid_options_rejected_before_run_dir(workdir, case3_path):
    rc = main(["solve", "--input", str(case3_path), "--npts", "1"])
    assert rc == EXIT_CONFIG_ERROR
    assert not (workdir / "runs").exists()


def test_missing_case_file(workdir):
    rc = main(["--runs-dir", str(workdir / "runs"), "solve", "--input", "nope.m"])
    assert rc == EXIT_CONFIG_ERROR


def test_unknown_algorithm(workdir, case3_path):
    rc = main(["--runs-dir", str(workdir / "runs"), "solve", "--input", str(case3_path), "--alg", "999"])
    assert rc == EXIT_CONFIG_ERROR
    run_dir = _only_run_dir(workdir / "runs")
    assert (run_dir / "run.log").exists()
    assert (run_dir / "config.json").exists()
    assert not (run_dir / "results.json").exists()


def test_backends_command(workdir):
    assert main(["backends"]) == EXIT_OK


def test_default_command_from_config(workdir):
    cfg = workdir / "cfg.yaml"
    cfg.write_text("command: backends\n", encoding="utf-8")
    assert main(["--config", str(cfg)]) == EXIT_OK

    cfg.write_text("command: plot\n", encoding="utf-8")
    assert main(["--config", str(cfg)]) == EXIT_CONFIG_ERROR


def test_unknown_is_tail():
    assert _unknown_is_tail(["--a", "x", "--b"], ["--b"])
    assert not _unknown_is_tail(["--b", "--a", "x"], ["--b"])
    assert _unknown_is_tail(["--a"], [])


def test_solve_dc_case(workdir, case3_path):
    pytest.importorskip("pypsa")
    pytest.importorskip("highspy")

    runs = workdir / "runs"
    rc = main(["--runs-dir", str(runs), "solve", "--input", str(case3_path), "--dc", "1", "--out-all", "0"])
    assert rc == EXIT_OK

    run_dir = _only_run_dir(runs)
    for name in ("run.log", "argv.txt", "config.json", "config.yaml", "results.json"):
        assert (run_dir / name).exists(), name

    payload = json.loads((run_dir / "results.json").read_text(encoding="utf-8"))
    summary = payload["summary"]
    assert summary["success"] is True
    assert summary["formulation"] == "dc"
    assert summary["backend"] == "pypsa-highs"
    assert summary["algorithm"] is None
    assert summary["total_generation_mw"] == pytest.approx(250.0, abs=1e-5)
    assert len(payload["gen"]) == 3

    cfg_used = json.loads((run_dir / "config.json").read_text(encoding="utf-8"))
    assert cfg_used["opf"]["pf_dc"] is True
    assert cfg_used["opf"]["out_all"] == 0
