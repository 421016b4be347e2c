from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from typing import Any, Mapping

import numpy as np

from .cost import COST
from .gen import GEN_STATUS

logger = logging.getLogger(__name__)

_TABLE_NAMES: tuple[str, ...] = ("bus", "gen", "branch", "areas", "gencost")


def _as_table(value: Any, *, name: str) -> np.ndarray:
    """Copy `value` into a 2-D float array; None/empty becomes a (0, 0) array."""
    if value is None:
        return np.zeros((0, 0), dtype=float)
    arr = np.array(value, dtype=float, copy=True)
    if arr.size == 0:
        return arr.reshape((0, arr.shape[1] if arr.ndim == 2 else 0))
    if arr.ndim == 1:
        arr = arr.reshape(1, -1)
    if arr.ndim != 2:
        raise ValueError(f"Table {name!r} must be 2-D, got shape {arr.shape}")
    return arr


@dataclass(frozen=True)
class CaseTables:
    """
    MATPOWER-style case data: system base plus the flat numeric tables.

    Column semantics are addressed through `opf_dispatch.tables.{bus,gen,branch,cost}`.
    Instances are treated as immutable: every table is copied on construction and
    solvers return new instances via `with_tables(...)`.
    """

    base_mva: float
    bus: np.ndarray
    gen: np.ndarray
    branch: np.ndarray
    gencost: np.ndarray
    areas: Any = None  # normalized to a (0, 0) array when absent

    def __post_init__(self) -> None:
        base = float(self.base_mva)
        if not np.isfinite(base) or base <= 0:
            raise ValueError(f"base_mva must be finite and > 0, got {self.base_mva!r}")
        object.__setattr__(self, "base_mva", base)
        for name in _TABLE_NAMES:
            object.__setattr__(self, name, _as_table(getattr(self, name), name=name))

        if self.gencost.size and self.gencost.shape[1] < COST:
            raise ValueError(
                f"gencost must have at least {COST} columns, got {self.gencost.shape[1]}"
            )
        if self.gen.size and self.gen.shape[1] <= GEN_STATUS:
            raise ValueError(
                f"gen table must have at least {GEN_STATUS + 1} columns, got {self.gen.shape[1]}"
            )

    @property
    def n_bus(self) -> int:
        return int(self.bus.shape[0])

    @property
    def n_gen(self) -> int:
        return int(self.gen.shape[0])

    @property
    def gen_status(self) -> np.ndarray:
        if self.n_gen == 0:
            return np.zeros(0, dtype=float)
        return self.gen[:, GEN_STATUS].copy()

    @property
    def active_gen_mask(self) -> np.ndarray:
        return self.gen_status > 0

    def with_tables(self, **tables: Any) -> "CaseTables":
        """Return a copy with some tables replaced (e.g. solved bus/gen/branch)."""
        unknown = set(tables) - set(_TABLE_NAMES) - {"base_mva"}
        if unknown:
            raise TypeError(f"Unknown case fields: {sorted(unknown)}")
        return replace(self, **tables)

    def copy(self) -> "CaseTables":
        return replace(self)

    @classmethod
    def from_mapping(cls, ppc: Mapping[str, Any]) -> "CaseTables":
        """Build from a MATPOWER/PYPOWER-style dict (`baseMVA`, `bus`, `gen`, ...)."""
        missing = [k for k in ("baseMVA", "bus", "gen", "branch") if k not in ppc]
        if missing:
            raise ValueError(f"Case mapping is missing required keys: {missing}")
        if "gencost" not in ppc:
            raise ValueError("Case mapping has no 'gencost' table; OPF needs generator costs.")
        return cls(
            base_mva=float(ppc["baseMVA"]),
            bus=ppc["bus"],
            gen=ppc["gen"],
            branch=ppc["branch"],
            gencost=ppc["gencost"],
            areas=ppc.get("areas"),
        )

    def to_mapping(self) -> dict[str, Any]:
        """Return a PYPOWER-style dict with copies of all tables."""
        out: dict[str, Any] = {
            "baseMVA": float(self.base_mva),
            "bus": self.bus.copy(),
            "gen": self.gen.copy(),
            "branch": self.branch.copy(),
            "gencost": self.gencost.copy(),
        }
        if self.areas.size:
            out["areas"] = self.areas.copy()
        return out
