"""
Solve OPF for a MATPOWER case and print the report.

Hydra composes `conf/config.yaml` with command-line overrides:

    python examples/script_demo.py
    python examples/script_demo.py opf.pf_dc=true
    python examples/script_demo.py solve.input=path/to/case.m opf.opf_alg=520
"""

from __future__ import annotations

import json
import logging
import sys
from pathlib import Path

import hydra
from omegaconf import DictConfig

# Allow running the example without installing the package:
# `python examples/script_demo.py`
_PROJECT_ROOT = Path(__file__).resolve().parents[1]
_SRC_DIR = _PROJECT_ROOT / "src"
if _SRC_DIR.is_dir():
    sys.path.insert(0, str(_SRC_DIR))

from opf_dispatch import run_opf_case
from opf_dispatch.backends import build_registry
from opf_dispatch.config import (
    DEFAULT_DC_BACKEND,
    DEFAULT_LOGGING,
    DCBackendConfig,
    HiGHSConfig,
    LoggingConfig,
    cfg_get,
    options_from_config,
)
from opf_dispatch.utils import setup_logging

logger = logging.getLogger("opf_dispatch.examples")

_CONFIG_DIR = (_PROJECT_ROOT / "conf").resolve()
_DEFAULT_CASE = _PROJECT_ROOT / "examples" / "case3_mixed.m"


def _resolve_under_project_root(p: str) -> Path:
    path = Path(p)
    return path if path.is_absolute() else (_PROJECT_ROOT / path).resolve()


def _logging_cfg(cfg: DictConfig) -> LoggingConfig:
    return LoggingConfig(
        runs_dir=str(cfg_get(cfg, "logging.runs_dir", DEFAULT_LOGGING.runs_dir)),
        level_console=str(cfg_get(cfg, "logging.level_console", DEFAULT_LOGGING.level_console)),
        level_file=str(cfg_get(cfg, "logging.level_file", DEFAULT_LOGGING.level_file)),
        run_dir_mode=str(cfg_get(cfg, "logging.run_dir_mode", DEFAULT_LOGGING.run_dir_mode)),
        run_name=str(cfg_get(cfg, "logging.run_name", DEFAULT_LOGGING.run_name)),
    )


def _dc_backend_cfg(cfg: DictConfig) -> DCBackendConfig:
    d = DEFAULT_DC_BACKEND
    return DCBackendConfig(
        highs=HiGHSConfig(
            threads=int(cfg_get(cfg, "dc_backend.threads", d.highs.threads)),
            random_seed=int(cfg_get(cfg, "dc_backend.random_seed", d.highs.random_seed)),
        ),
        unconstrained_line_nom_mw=float(
            cfg_get(cfg, "dc_backend.unconstrained_line_nom_mw", d.unconstrained_line_nom_mw)
        ),
        allow_phase_shift=bool(cfg_get(cfg, "dc_backend.allow_phase_shift", d.allow_phase_shift)),
    )


@hydra.main(config_path=str(_CONFIG_DIR), config_name="config", version_base=None)
def main(cfg: DictConfig) -> None:
    # Configure logs and create runs/<timestamp> directory
    run_dir = Path(setup_logging(_logging_cfg(cfg)))

    input_raw = str(cfg_get(cfg, "solve.input", "")).strip()
    input_path = _resolve_under_project_root(input_raw) if input_raw else _DEFAULT_CASE

    options = options_from_config(cfg)
    result = run_opf_case(
        input_path,
        options=options,
        registry=build_registry(_dc_backend_cfg(cfg)),
        report=True,
    )

    summary_path = run_dir / "summary.json"
    summary_path.write_text(
        json.dumps(result.to_summary(), indent=4, ensure_ascii=False) + "\n", encoding="utf-8"
    )
    logger.info("Summary written: %s", str(summary_path))

    if not result.success:
        logger.error("OPF did not converge: %s", result.info)


if __name__ == "__main__":
    main()
