from __future__ import annotations

"""
Central configuration for the project.

Two kinds of settings live here:

- `OPFOptions`: the per-call OPF options consumed by the formulation/dispatch core.
  On the wire they are a flat MATPOWER options vector; in Python they are a frozen
  dataclass with named fields. `from_vector` / `to_vector` keep the MATPOWER
  positions so option vectors produced by other tools stay valid.
- Ambient settings (logging, HiGHS, DC backend) used by the CLI and built-in backends.

YAML config loading
-------------------
Config files are OmegaConf-compatible YAML under `conf/`. A minimal composition
mechanism is supported:

- `extends: <path-or-list>` at the top level of a YAML file.
- `extends` paths are resolved relative to the extending file.
- Configs are merged in the given order; later configs override earlier ones.
"""

import logging
from dataclasses import asdict, dataclass, field, fields, replace
from pathlib import Path
from typing import Any, Mapping, Sequence

import numpy as np

logger = logging.getLogger(__name__)

try:
    from omegaconf import OmegaConf  # type: ignore

    HAVE_OMEGACONF: bool = True
except ImportError:
    OmegaConf = None  # type: ignore[assignment]
    HAVE_OMEGACONF = False


# 0-based positions in a MATPOWER options vector (MATPOWER docs use 1-based).
PF_DC = 9
OPF_ALG = 10
OPF_ALG_POLY = 11
OPF_ALG_PWL = 12
OPF_POLY2PWL_PTS = 13
OPF_VIOLATION = 15
CONSTR_MAX_IT = 18
VERBOSE = 30
OUT_ALL = 31

_VECTOR_FIELDS: tuple[tuple[str, int], ...] = (
    ("pf_dc", PF_DC),
    ("opf_alg", OPF_ALG),
    ("opf_alg_poly", OPF_ALG_POLY),
    ("opf_alg_pwl", OPF_ALG_PWL),
    ("opf_poly2pwl_pts", OPF_POLY2PWL_PTS),
    ("opf_violation", OPF_VIOLATION),
    ("constr_max_it", CONSTR_MAX_IT),
    ("verbose", VERBOSE),
    ("out_all", OUT_ALL),
)

MIN_VECTOR_LENGTH = VERBOSE + 1


@dataclass(frozen=True)
class OPFOptions:
    """
    Options consumed by the OPF formulation/dispatch core.

    Fields
    ------
    pf_dc:
        True -> DC OPF; no cost-model validation or algorithm resolution.
    opf_alg:
        Algorithm selector; 0 = choose automatically.
    opf_alg_poly / opf_alg_pwl:
        Default algorithms when every active cost is polynomial / when any is
        piecewise linear (used only when opf_alg == 0 and no generalized backend
        is available).
    opf_poly2pwl_pts:
        Breakpoints used when converting polynomial costs to piecewise linear.
    opf_violation:
        Constraint violation tolerance, forwarded to backends.
    constr_max_it:
        Iteration cap forwarded to backends; 0 lets the backend choose.
    verbose:
        0 silences informational/warning records emitted by the core.
    out_all:
        Report detail: -1 default, 0 summary only, 1 everything.
    """

    pf_dc: bool = False
    opf_alg: int = 0
    opf_alg_poly: int = 100
    opf_alg_pwl: int = 200
    opf_poly2pwl_pts: int = 10
    opf_violation: float = 5e-6
    constr_max_it: int = 0
    verbose: int = 1
    out_all: int = -1

    def __post_init__(self) -> None:
        object.__setattr__(self, "pf_dc", bool(self.pf_dc))
        for name in ("opf_alg", "opf_alg_poly", "opf_alg_pwl", "opf_poly2pwl_pts"):
            object.__setattr__(self, name, int(getattr(self, name)))
        object.__setattr__(self, "constr_max_it", int(self.constr_max_it))
        object.__setattr__(self, "verbose", int(self.verbose))
        object.__setattr__(self, "out_all", int(self.out_all))
        object.__setattr__(self, "opf_violation", float(self.opf_violation))

        if self.opf_poly2pwl_pts < 2:
            raise ValueError(
                f"opf_poly2pwl_pts must be >= 2, got {self.opf_poly2pwl_pts}"
            )
        if self.verbose < 0:
            raise ValueError(f"verbose must be >= 0, got {self.verbose}")
        if self.constr_max_it < 0:
            raise ValueError(f"constr_max_it must be >= 0, got {self.constr_max_it}")

    def with_overrides(self, **overrides: Any) -> "OPFOptions":
        """Return a copy with some fields replaced (unknown names raise TypeError)."""
        known = {f.name for f in fields(self)}
        unknown = set(overrides) - known
        if unknown:
            raise TypeError(f"Unknown OPF option(s): {sorted(unknown)}")
        return replace(self, **overrides)

    @classmethod
    def from_vector(cls, vec: Sequence[float] | np.ndarray) -> "OPFOptions":
        """
        Build options from a MATPOWER options vector.

        Positions not owned by this class are ignored. `out_all` is optional
        (vectors shorter than OUT_ALL+1 keep its default).
        """
        arr = np.asarray(vec, dtype=float).reshape(-1)
        if arr.size < MIN_VECTOR_LENGTH:
            raise ValueError(
                f"Options vector must have at least {MIN_VECTOR_LENGTH} entries, got {arr.size}"
            )
        values: dict[str, Any] = {}
        for name, pos in _VECTOR_FIELDS:
            if pos < arr.size:
                values[name] = arr[pos]
        values["pf_dc"] = bool(values["pf_dc"])
        return cls(**values)

    def to_vector(self, base: Sequence[float] | np.ndarray | None = None) -> np.ndarray:
        """
        Write the owned fields into a MATPOWER options vector.

        If `base` is given, it is copied and only owned positions are overwritten.
        """
        if base is None:
            arr = np.zeros(OUT_ALL + 1, dtype=float)
        else:
            arr = np.array(base, dtype=float, copy=True).reshape(-1)
            if arr.size < OUT_ALL + 1:
                arr = np.concatenate([arr, np.zeros(OUT_ALL + 1 - arr.size)])
        for name, pos in _VECTOR_FIELDS:
            arr[pos] = float(getattr(self, name))
        return arr

    def as_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class LoggingConfig:
    """
    Logging- and run-directory-related defaults for the CLI.

    Run directory mode
    ------------------
    - run_dir_mode="timestamp": create a new unique folder per run (default).
    - run_dir_mode="overwrite": reuse `runs_dir/run_name` (delete/recreate folder).
    """

    runs_dir: str = "runs"
    level_console: str = "INFO"
    level_file: str = "DEBUG"

    run_dir_mode: str = "timestamp"  # "timestamp" | "overwrite"
    run_name: str = "latest"  # used only when run_dir_mode="overwrite"


@dataclass(frozen=True)
class HiGHSConfig:
    """
    HiGHS solver configuration for the DC backend.

    Notes
    -----
    - threads=1 avoids non-deterministic parallel execution in some solver builds.
    - user_objective_scale / user_bound_scale follow HiGHS' own advice for poorly
      scaled power-grid LPs (large surrogate line limits).
    """

    solver_name: str = "highs"
    threads: int = 1
    random_seed: int = 42

    user_objective_scale: int = -1
    user_bound_scale: int = -10

    primal_feasibility_tolerance: float = 1e-9
    dual_feasibility_tolerance: float = 1e-9

    def solver_options(self) -> dict[str, Any]:
        """Return solver options in a PyPSA/linopy-friendly format (HiGHS option names)."""
        return {
            "threads": int(self.threads),
            "random_seed": int(self.random_seed),
            "user_objective_scale": int(self.user_objective_scale),
            "user_bound_scale": int(self.user_bound_scale),
            "primal_feasibility_tolerance": float(self.primal_feasibility_tolerance),
            "dual_feasibility_tolerance": float(self.dual_feasibility_tolerance),
        }


@dataclass(frozen=True)
class DCBackendConfig:
    """Settings of the built-in PyPSA + HiGHS DC OPF backend."""

    highs: HiGHSConfig = field(default_factory=HiGHSConfig)

    # PyPSA requires finite capacities; MATPOWER RATE_A == 0 means "unlimited".
    # Keep it large but not astronomically large (HiGHS scaling).
    unconstrained_line_nom_mw: float = 1e6

    # Phase shifters are ignored by the lossless DC model. False -> reject them.
    allow_phase_shift: bool = False


DEFAULT_OPTIONS = OPFOptions()
DEFAULT_LOGGING = LoggingConfig()
DEFAULT_DC_BACKEND = DCBackendConfig()


def _resolve_path(p: str | Path, *, base_dir: Path | None) -> Path:
    """Resolve a potentially-relative path against `base_dir` (or CWD if base_dir is None)."""
    path = Path(p).expanduser()
    if path.is_absolute():
        return path.resolve()
    root = base_dir if base_dir is not None else Path.cwd()
    return (root / path).resolve()


def _as_list(value: Any) -> list[str]:
    """Normalize a scalar/list config node into a list of strings."""
    if value is None:
        return []
    if isinstance(value, str):
        s = value.strip()
        return [s] if s else []
    if isinstance(value, (list, tuple)):
        out: list[str] = []
        for x in value:
            if x is None:
                continue
            sx = str(x).strip()
            if sx:
                out.append(sx)
        return out
    raise TypeError(f"extends must be a string or a list of strings; got {type(value)}")


def _load_with_extends(path: Path, *, stack: tuple[Path, ...]) -> Any:
    """Recursive loader for `extends` composition with cycle detection."""
    if not HAVE_OMEGACONF or OmegaConf is None:  # pragma: no cover - guarded by caller
        raise ImportError("OmegaConf is required to load YAML configs (install `omegaconf`).")

    p = path.resolve()
    if p in stack:
        chain = " -> ".join([*(str(x) for x in stack), str(p)])
        raise ValueError(f"Cyclic config extends detected: {chain}")

    cfg_local = OmegaConf.load(str(p))

    extends_list = _as_list(OmegaConf.select(cfg_local, "extends"))

    base_cfgs: list[Any] = []
    for ext in extends_list:
        base_path = _resolve_path(ext, base_dir=p.parent)
        if not base_path.exists():
            raise FileNotFoundError(
                f"Extended config not found: {base_path} (referenced from {p})"
            )
        base_cfgs.append(_load_with_extends(base_path, stack=(*stack, p)))

    local_container = OmegaConf.to_container(cfg_local, resolve=False)
    if not isinstance(local_container, dict):
        raise ValueError(
            f"Config root must be a mapping/object, got {type(local_container)} in {p}"
        )
    local_container.pop("extends", None)
    cfg_no_ext = OmegaConf.create(local_container)

    merged = OmegaConf.merge(*base_cfgs, cfg_no_ext) if base_cfgs else cfg_no_ext

    logger.debug(
        "Loaded config: %s (extends=%s)",
        str(p),
        extends_list if extends_list else "[]",
    )
    return merged


def load_project_config(path: str | Path, *, allow_missing: bool = True) -> Any:
    """
    Load a project YAML config with `extends` inheritance.

    Returns
    -------
    Any
        OmegaConf DictConfig, or None if allow_missing=True and the file is missing.

    Raises
    ------
    ImportError
        If OmegaConf is not installed and the file exists.
    FileNotFoundError
        If allow_missing=False and the file does not exist, or an `extends` target is missing.
    ValueError
        On cyclic `extends` chains or invalid config shapes.
    """
    cfg_path = _resolve_path(path, base_dir=None)

    if not cfg_path.exists():
        if allow_missing:
            logger.info("Config file not found, using built-in defaults: %s", str(cfg_path))
            return None
        raise FileNotFoundError(str(cfg_path))

    if not HAVE_OMEGACONF or OmegaConf is None:
        raise ImportError("OmegaConf is required to load YAML configs (install `omegaconf`).")

    return _load_with_extends(cfg_path, stack=())


def cfg_get(cfg: Any, key: str, default: Any) -> Any:
    """Safe dotted-key lookup on an OmegaConf config (None config -> default)."""
    if cfg is None or not HAVE_OMEGACONF or OmegaConf is None:
        return default
    v = OmegaConf.select(cfg, key)
    return default if v is None else v


def options_from_config(cfg: Any, *, node: str = "opf") -> OPFOptions:
    """
    Build OPFOptions from the `opf:` node of a loaded config.

    Missing keys keep their defaults; unknown keys under the node are rejected so
    that typos do not silently fall back to defaults.
    """
    section = cfg_get(cfg, node, None)
    if section is None:
        return DEFAULT_OPTIONS

    values = OmegaConf.to_container(section, resolve=True)  # type: ignore[union-attr]
    if not isinstance(values, Mapping):
        raise ValueError(f"Config node {node!r} must be a mapping, got {type(values)}")
    return DEFAULT_OPTIONS.with_overrides(**dict(values))
