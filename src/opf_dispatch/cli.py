from __future__ import annotations

"""
Command line interface (argparse + OmegaConf YAML defaults).

Key goals
---------
- Defaults live in `conf/config.yaml` (supports `extends:`)
- CLI flags override config values
- Each `solve` run creates a run folder and saves:
  - run.log
  - config.json / config.yaml (effective)
  - config_source.yaml (copied)
  - argv.txt
  - results.json

Exit codes
----------
0: success; 1: OPF did not converge; 2: configuration / input error.

Optional "default command" from config
--------------------------------------
If the CLI is called without a subcommand it is taken from the YAML config:

  command: solve   # or backends
"""

import argparse
import json
import logging
import shutil
import sys
from pathlib import Path
from typing import Any, Sequence

from opf_dispatch.backends.registry import build_registry
from opf_dispatch.config import (
    DEFAULT_DC_BACKEND,
    DEFAULT_LOGGING,
    DEFAULT_OPTIONS,
    HAVE_OMEGACONF,
    DCBackendConfig,
    HiGHSConfig,
    LoggingConfig,
    OmegaConf,
    OPFOptions,
    cfg_get,
    load_project_config,
)
from opf_dispatch.errors import OPFConfigurationError
from opf_dispatch.formulation import BACKEND_FAMILIES
from opf_dispatch.opf import solve_problem
from opf_dispatch.parsers.matpower import load_case
from opf_dispatch.problem import build_problem
from opf_dispatch.utils import log_stage, setup_logging

logger = logging.getLogger("opf_dispatch.cli")

_SUPPORTED_COMMANDS: tuple[str, ...] = ("solve", "backends")

EXIT_OK = 0
EXIT_NOT_CONVERGED = 1
EXIT_CONFIG_ERROR = 2


def _resolve_path(p: str) -> str:
    """Resolve a potentially-relative path against the current working directory."""
    path = Path(p)
    if path.is_absolute():
        return str(path)
    return str(path.resolve())


def _preparse_config_path(argv: Sequence[str] | None) -> str:
    pre = argparse.ArgumentParser(add_help=False)
    pre.add_argument("--config", type=str, default="conf/config.yaml")
    ns, _ = pre.parse_known_args(list(argv) if argv is not None else None)
    return str(ns.config)


def _argv_has_explicit_config_flag(argv: Sequence[str]) -> bool:
    """Return True if argv explicitly contains a --config option."""
    for t in argv:
        if t == "--config" or str(t).startswith("--config="):
            return True
    return False


def _unknown_is_tail(argv: Sequence[str], unknown: Sequence[str]) -> bool:
    """Return True if `unknown` equals the trailing slice of argv."""
    u = list(unknown)
    a = list(argv)
    if not u:
        return True
    if len(u) > len(a):
        return False
    return a[-len(u) :] == u


def _infer_default_command(cfg_loaded: Any) -> str | None:
    v = cfg_get(cfg_loaded, "command", None)
    if v is None:
        return None
    s = str(v).strip()
    return s if s else None


def build_parser(cfg: Any) -> argparse.ArgumentParser:
    """Create CLI parser (defaults are taken from the loaded YAML config)."""
    parser = argparse.ArgumentParser(
        prog="opf-dispatch",
        description="Optimal power flow with automatic formulation and backend selection.",
    )

    parser.add_argument(
        "--config",
        type=str,
        default="conf/config.yaml",
        help="Path to OmegaConf-compatible YAML config (supports `extends:`).",
    )
    parser.add_argument(
        "--runs-dir",
        type=str,
        default=str(cfg_get(cfg, "logging.runs_dir", DEFAULT_LOGGING.runs_dir)),
        help="Directory where per-run folders and run.log are created.",
    )
    parser.add_argument(
        "--run-dir-mode",
        type=str,
        default=str(cfg_get(cfg, "logging.run_dir_mode", DEFAULT_LOGGING.run_dir_mode)),
        choices=("timestamp", "overwrite"),
        help="Run directory behavior: timestamp (new folder) or overwrite (reuse run-name).",
    )
    parser.add_argument(
        "--run-name",
        type=str,
        default=str(cfg_get(cfg, "logging.run_name", DEFAULT_LOGGING.run_name)),
        help="Run folder name used when --run-dir-mode overwrite.",
    )
    parser.add_argument(
        "--log-level",
        type=str,
        default=str(cfg_get(cfg, "logging.level_console", DEFAULT_LOGGING.level_console)),
        help="Console logging level (INFO/DEBUG/WARNING/ERROR).",
    )
    parser.add_argument(
        "--log-file-level",
        type=str,
        default=str(cfg_get(cfg, "logging.level_file", DEFAULT_LOGGING.level_file)),
        help="File logging level (DEBUG recommended to include the full report).",
    )

    # DC backend (PyPSA + HiGHS)
    parser.add_argument(
        "--highs-threads",
        type=int,
        default=int(cfg_get(cfg, "dc_backend.threads", DEFAULT_DC_BACKEND.highs.threads)),
        help="HiGHS threads (1 recommended for determinism).",
    )
    parser.add_argument(
        "--highs-random-seed",
        type=int,
        default=int(
            cfg_get(cfg, "dc_backend.random_seed", DEFAULT_DC_BACKEND.highs.random_seed)
        ),
        help="HiGHS random seed.",
    )
    parser.add_argument(
        "--unconstrained-line-nom-mw",
        type=float,
        default=float(
            cfg_get(
                cfg,
                "dc_backend.unconstrained_line_nom_mw",
                DEFAULT_DC_BACKEND.unconstrained_line_nom_mw,
            )
        ),
        help="Surrogate MW limit used by the DC backend for branches with RATE_A == 0.",
    )
    parser.add_argument(
        "--allow-phase-shift",
        type=int,
        default=int(
            cfg_get(
                cfg, "dc_backend.allow_phase_shift", int(DEFAULT_DC_BACKEND.allow_phase_shift)
            )
        ),
        help="1: ignore phase shifters in the DC backend, 0: reject them.",
    )

    sub = parser.add_subparsers(dest="command", required=False)

    # ---------- solve ----------
    p_solve = sub.add_parser("solve", help="Solve OPF for one MATPOWER case.")
    p_solve.add_argument(
        "--input",
        type=str,
        default=str(cfg_get(cfg, "solve.input", "")),
        help="Path to a MATPOWER .m case file.",
    )
    p_solve.add_argument(
        "--dc",
        type=int,
        default=int(cfg_get(cfg, "opf.pf_dc", int(DEFAULT_OPTIONS.pf_dc))),
        help="1: DC OPF, 0: AC OPF.",
    )
    p_solve.add_argument(
        "--alg",
        type=int,
        default=int(cfg_get(cfg, "opf.opf_alg", DEFAULT_OPTIONS.opf_alg)),
        help="OPF algorithm code (0 = automatic).",
    )
    p_solve.add_argument(
        "--alg-poly",
        type=int,
        default=int(cfg_get(cfg, "opf.opf_alg_poly", DEFAULT_OPTIONS.opf_alg_poly)),
        help="Default algorithm for polynomial costs.",
    )
    p_solve.add_argument(
        "--alg-pwl",
        type=int,
        default=int(cfg_get(cfg, "opf.opf_alg_pwl", DEFAULT_OPTIONS.opf_alg_pwl)),
        help="Default algorithm for piecewise-linear costs.",
    )
    p_solve.add_argument(
        "--npts",
        type=int,
        default=int(cfg_get(cfg, "opf.opf_poly2pwl_pts", DEFAULT_OPTIONS.opf_poly2pwl_pts)),
        help="Breakpoints for polynomial -> piecewise-linear conversion.",
    )
    p_solve.add_argument(
        "--violation",
        type=float,
        default=float(cfg_get(cfg, "opf.opf_violation", DEFAULT_OPTIONS.opf_violation)),
        help="Constraint violation tolerance.",
    )
    p_solve.add_argument(
        "--max-it",
        type=int,
        default=int(cfg_get(cfg, "opf.constr_max_it", DEFAULT_OPTIONS.constr_max_it)),
        help="Solver iteration limit (0 = backend default).",
    )
    p_solve.add_argument(
        "--verbose",
        type=int,
        default=int(cfg_get(cfg, "opf.verbose", DEFAULT_OPTIONS.verbose)),
        help="Verbosity (0 silences the cost-model warnings).",
    )
    p_solve.add_argument(
        "--out-all",
        type=int,
        default=int(cfg_get(cfg, "opf.out_all", DEFAULT_OPTIONS.out_all)),
        help="0: summary only in the report, otherwise include bus/generator tables.",
    )

    # ---------- backends ----------
    sub.add_parser("backends", help="List OPF backends and their availability.")

    return parser


def _write_run_artifacts(
    *,
    run_dir: Path,
    cfg_source_path: Path,
    cfg_used: dict[str, Any],
    argv: Sequence[str],
) -> None:
    """Write reproducibility artifacts into the run directory."""
    run_dir.mkdir(parents=True, exist_ok=True)

    (run_dir / "argv.txt").write_text(" ".join(argv) + "\n", encoding="utf-8")

    if cfg_source_path.exists():
        shutil.copyfile(cfg_source_path, run_dir / "config_source.yaml")

    cfg_json = json.dumps(cfg_used, indent=2, ensure_ascii=False, sort_keys=True) + "\n"
    (run_dir / "config.json").write_text(cfg_json, encoding="utf-8")

    if HAVE_OMEGACONF and OmegaConf is not None:
        cfg_yaml = OmegaConf.to_yaml(OmegaConf.create(cfg_used))  # type: ignore[union-attr]
        (run_dir / "config.yaml").write_text(cfg_yaml, encoding="utf-8")
    else:
        (run_dir / "config.yaml").write_text(
            "# OmegaConf is not installed; see config.json\n", encoding="utf-8"
        )


def _setup_run_and_logging(args: argparse.Namespace) -> Path:
    """Create run directory and configure logging."""
    return Path(
        setup_logging(
            LoggingConfig(
                runs_dir=str(args.runs_dir),
                level_console=str(args.log_level),
                level_file=str(args.log_file_level),
                run_dir_mode=str(args.run_dir_mode),
                run_name=str(args.run_name),
            )
        )
    )


def _make_dc_backend_cfg(args: argparse.Namespace) -> DCBackendConfig:
    highs = HiGHSConfig(
        threads=int(args.highs_threads), random_seed=int(args.highs_random_seed)
    )
    return DCBackendConfig(
        highs=highs,
        unconstrained_line_nom_mw=float(args.unconstrained_line_nom_mw),
        allow_phase_shift=bool(int(args.allow_phase_shift)),
    )


def _make_options(args: argparse.Namespace) -> OPFOptions:
    return OPFOptions(
        pf_dc=bool(int(args.dc)),
        opf_alg=int(args.alg),
        opf_alg_poly=int(args.alg_poly),
        opf_alg_pwl=int(args.alg_pwl),
        opf_poly2pwl_pts=int(args.npts),
        opf_violation=float(args.violation),
        constr_max_it=int(args.max_it),
        verbose=int(args.verbose),
        out_all=int(args.out_all),
    )


def _logging_cfg_used(args: argparse.Namespace) -> dict[str, Any]:
    return {
        "runs_dir": str(args.runs_dir),
        "run_dir_mode": str(args.run_dir_mode),
        "run_name": str(args.run_name),
        "level_console": str(args.log_level),
        "level_file": str(args.log_file_level),
    }


def run_solve(
    args: argparse.Namespace, *, cfg_path: Path, argv: Sequence[str]
) -> int:
    """Solve OPF for one case and save results into the run folder."""
    if not str(getattr(args, "input", "")).strip():
        print(
            "[ERROR] solve requires --input or config key solve.input.", file=sys.stderr
        )
        return EXIT_CONFIG_ERROR

    try:
        options = _make_options(args)
        dc_cfg = _make_dc_backend_cfg(args)
    except (TypeError, ValueError) as e:
        print(f"[ERROR] Invalid OPF options: {e}", file=sys.stderr)
        return EXIT_CONFIG_ERROR

    run_dir = _setup_run_and_logging(args)

    cfg_used: dict[str, Any] = {
        "config_path": str(cfg_path),
        "command": "solve",
        "logging": _logging_cfg_used(args),
        "dc_backend": {
            "threads": int(dc_cfg.highs.threads),
            "random_seed": int(dc_cfg.highs.random_seed),
            "unconstrained_line_nom_mw": float(dc_cfg.unconstrained_line_nom_mw),
            "allow_phase_shift": int(dc_cfg.allow_phase_shift),
        },
        "opf": options.as_dict(),
        "solve": {"input": str(args.input)},
    }
    _write_run_artifacts(
        run_dir=run_dir, cfg_source_path=cfg_path, cfg_used=cfg_used, argv=argv
    )

    logger.info("Workflow (solve): Read Case -> Resolve Formulation -> Solve OPF -> Save Outputs")

    try:
        with log_stage(logger, "Read Case"):
            case = load_case(_resolve_path(str(args.input)))
        problem = build_problem(case, options=options)
        result = solve_problem(problem, registry=build_registry(dc_cfg), report=True)
    except (FileNotFoundError, RuntimeError, OPFConfigurationError) as e:
        logger.error("OPF configuration error: %s", e)
        return EXIT_CONFIG_ERROR

    with log_stage(logger, "Write Results (JSON)"):
        payload = {
            "summary": result.to_summary(),
            "bus": result.bus.tolist(),
            "gen": result.gen.tolist(),
            "branch": result.branch.tolist(),
        }
        results_path = run_dir / "results.json"
        results_path.write_text(
            json.dumps(payload, indent=4, ensure_ascii=False) + "\n", encoding="utf-8"
        )
        logger.info("Results written: %s", str(results_path))

    logger.info("Done. Run directory: %s", str(run_dir))
    if not result.success:
        logger.error("OPF did not converge (status=%s).", result.info)
        return EXIT_NOT_CONVERGED
    return EXIT_OK


def run_backends(args: argparse.Namespace) -> int:
    """Log every backend family, its backend and whether it can run here."""
    reg = build_registry(_make_dc_backend_cfg(args))
    names = reg.names()
    availability = reg.availability()
    for family in BACKEND_FAMILIES:
        logger.info(
            "%-15s %-28s %s",
            family,
            names.get(family, "-"),
            "available" if availability[family] else "unavailable",
        )
    return EXIT_OK


def _configure_console_logging(level: str) -> None:
    """Console-only logging for commands that do not create a run directory."""
    project_logger = logging.getLogger("opf_dispatch")
    if project_logger.handlers:
        return
    handler = logging.StreamHandler()
    handler.setFormatter(logging.Formatter("%(message)s"))
    project_logger.addHandler(handler)
    project_logger.setLevel(getattr(logging, str(level).upper(), logging.INFO))


def main(argv: Sequence[str] | None = None) -> int:
    """Main CLI entrypoint."""
    argv_list = list(argv) if argv is not None else sys.argv[1:]

    cfg_path = Path(_preparse_config_path(argv_list))
    if not cfg_path.is_absolute():
        cfg_path = (Path.cwd() / cfg_path).resolve()

    # An explicit --config must exist; the default one may be missing (built-in defaults).
    user_provided_config = _argv_has_explicit_config_flag(argv_list)

    try:
        cfg_loaded = load_project_config(cfg_path, allow_missing=not user_provided_config)
    except Exception as e:  # noqa: BLE001
        print(f"[ERROR] Failed to load config: {str(cfg_path)} ({e})", file=sys.stderr)
        return EXIT_CONFIG_ERROR

    parser = build_parser(cfg_loaded)
    args, unknown = parser.parse_known_args(argv_list)
    argv_effective = list(argv_list)

    if args.command is None:
        default_cmd = _infer_default_command(cfg_loaded)
        if default_cmd is None:
            parser.print_help(sys.stderr)
            print(
                "\n[ERROR] No command specified. Pass a subcommand (solve|backends) "
                "or set `command: <...>` at the top level of the YAML config.",
                file=sys.stderr,
            )
            return EXIT_CONFIG_ERROR
        if default_cmd not in _SUPPORTED_COMMANDS:
            print(
                f"[ERROR] Invalid config default `command: {default_cmd}`. "
                f"Supported: {', '.join(_SUPPORTED_COMMANDS)}.",
                file=sys.stderr,
            )
            return EXIT_CONFIG_ERROR
        if unknown and not _unknown_is_tail(argv_list, unknown):
            print(
                "[ERROR] Cannot infer command from config because command-specific arguments "
                f"are interleaved with global arguments. Use: opf-dispatch {default_cmd} ...",
                file=sys.stderr,
            )
            return EXIT_CONFIG_ERROR

        prefix = argv_list[: len(argv_list) - len(unknown)] if unknown else argv_list
        argv_effective = [*prefix, default_cmd, *list(unknown)]
        args = parser.parse_args(argv_effective)
    elif unknown:
        args = parser.parse_args(argv_list)

    logger.debug("CLI command=%s, argv_effective=%s", str(args.command), argv_effective)

    if args.command == "solve":
        return run_solve(args, cfg_path=cfg_path, argv=argv_effective)
    if args.command == "backends":
        _configure_console_logging(str(args.log_level))
        return run_backends(args)

    raise AssertionError(f"Unhandled command: {args.command}")


if __name__ == "__main__":
    raise SystemExit(main())
