from __future__ import annotations

import logging
from pathlib import Path

import pytest

from opf_dispatch.config import LoggingConfig
from opf_dispatch.utils import FILE_ONLY_LOGGER_NAME, log_stage, setup_logging


def test_setup_logging_creates_run_dir(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)

    run_dir = Path(setup_logging(LoggingConfig(runs_dir="runs")))

    assert (tmp_path / "runs").is_dir()
    assert run_dir.parent == (tmp_path / "runs").resolve()
    assert (run_dir / "run.log").exists()

    logging.getLogger(FILE_ONLY_LOGGER_NAME).info("bus table goes here")
    for h in logging.getLogger("opf_dispatch").handlers:
        h.flush()
    assert "bus table goes here" in (run_dir / "run.log").read_text(encoding="utf-8")


def test_timestamp_runs_never_collide(tmp_path):
    cfg = LoggingConfig(runs_dir=str(tmp_path))
    first = setup_logging(cfg)
    second = setup_logging(cfg)
    assert first != second


def test_overwrite_mode_reuses_run_name(tmp_path):
    cfg = LoggingConfig(runs_dir=str(tmp_path), run_dir_mode="overwrite", run_name="dev")
    run_dir = Path(setup_logging(cfg))
    (run_dir / "stale.txt").write_text("x", encoding="utf-8")

    again = Path(setup_logging(cfg))
    assert again == run_dir == (tmp_path / "dev").resolve()
    assert not (again / "stale.txt").exists()


def test_invalid_settings_rejected(tmp_path):
    with pytest.raises(ValueError):
        setup_logging(LoggingConfig(runs_dir=str(tmp_path), run_dir_mode="daily"))
    with pytest.raises(ValueError):
        setup_logging(LoggingConfig(runs_dir=str(tmp_path), level_console="LOUD"))


def test_log_stage_reports_failures(caplog):
    lg = logging.getLogger("opf_dispatch.test_stage")
    caplog.set_level(logging.INFO, logger="opf_dispatch.test_stage")

    with log_stage(lg, "ok stage"):
        pass
    with pytest.raises(RuntimeError):
        with log_stage(lg, "bad stage"):
            raise RuntimeError("boom")

    messages = [r.getMessage() for r in caplog.records]
    assert any(m.startswith("==> [START] ok stage") for m in messages)
    assert any(m.startswith("<== [END] ok stage") for m in messages)
    assert any(m.startswith("<!! [FAIL] bad stage") for m in messages)


def test_original_cwd_is_none_outside_hydra():
    from opf_dispatch.utils import _try_get_original_cwd

    assert _try_get_original_cwd() is None
