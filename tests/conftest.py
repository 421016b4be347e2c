from __future__ import annotations

import sys
from pathlib import Path

import numpy as np
import pytest

# Ensure `src/` is importable when tests are run without installing the package.
ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"
if SRC.is_dir() and str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))

from opf_dispatch.backends.base import BackendRequest, BackendResult, OPFBackend  # noqa: E402
from opf_dispatch.backends.registry import BackendRegistry  # noqa: E402
from opf_dispatch.formulation import BACKEND_FAMILIES  # noqa: E402
from opf_dispatch.tables import CaseTables  # noqa: E402
from opf_dispatch.tables import gen as gn  # noqa: E402

DATA_DIR = Path(__file__).resolve().parent / "data"

# 3-bus case used across tests (same data as tests/data/case3_mixed.m).
BUS = np.array(
    [
        [1, 3, 0, 0, 0, 0, 1, 1, 0, 135, 1, 1.05, 0.95],
        [2, 2, 100, 30, 0, 0, 1, 1, 0, 135, 1, 1.05, 0.95],
        [3, 1, 150, 50, 0, 0, 1, 1, 0, 135, 1, 1.05, 0.95],
    ],
    dtype=float,
)
GEN = np.array(
    [
        [1, 0, 0, 300, -300, 1, 100, 1, 250, 10] + [0] * 11,
        [2, 0, 0, 300, -300, 1, 100, 1, 200, 0] + [0] * 11,
        [3, 0, 0, 100, -100, 1, 100, 1, 100, 0] + [0] * 11,
    ],
    dtype=float,
)
BRANCH = np.array(
    [
        [1, 2, 0.01, 0.1, 0.02, 200, 200, 200, 0, 0, 1, -360, 360],
        [1, 3, 0.01, 0.1, 0.02, 200, 200, 200, 0, 0, 1, -360, 360],
        [2, 3, 0.01, 0.1, 0.02, 200, 200, 200, 0, 0, 1, -360, 360],
    ],
    dtype=float,
)
GENCOST_MIXED = np.array(
    [
        [2, 0, 0, 3, 0.01, 20, 0, 0, 0, 0],
        [1, 0, 0, 3, 0, 0, 100, 3000, 200, 7000],
        [2, 0, 0, 3, 0.02, 15, 0, 0, 0, 0],
    ],
    dtype=float,
)
GENCOST_POLY = np.array(
    [
        [2, 0, 0, 3, 0.01, 20, 0],
        [2, 0, 0, 3, 0.03, 25, 0],
        [2, 0, 0, 3, 0.02, 15, 0],
    ],
    dtype=float,
)
AREAS = np.array([[1, 1]], dtype=float)


def make_case(gencost: np.ndarray | None = None, **overrides) -> CaseTables:
    tables = {
        "base_mva": 100.0,
        "bus": BUS,
        "gen": GEN,
        "branch": BRANCH,
        "gencost": GENCOST_POLY if gencost is None else gencost,
        "areas": AREAS,
    }
    tables.update(overrides)
    return CaseTables(**tables)


class FakeBackend(OPFBackend):
    """Records requests; dispatches every active generator at half its PMAX."""

    def __init__(
        self,
        name: str,
        family: str,
        *,
        available: bool = True,
        success: bool = True,
        with_derivatives: bool = False,
    ) -> None:
        self.name = name
        self.family = family
        self.available = available
        self.success = success
        self.with_derivatives = with_derivatives
        self.requests: list[BackendRequest] = []
        self.probe_calls = 0

    def probe(self) -> bool:
        self.probe_calls += 1
        return self.available

    def solve(self, request: BackendRequest) -> BackendResult:
        self.requests.append(request)
        gen = request.case.gen.copy()
        gen[:, gn.PG] = np.where(gen[:, gn.GEN_STATUS] > 0, gen[:, gn.PMAX] / 2.0, 0.0)
        g = jac = None
        if self.with_derivatives:
            g = [[0.5], [-0.25]]
            jac = np.array([[1.0, 0.0], [0.0, 2.0]])
        return BackendResult(
            case=request.case.with_tables(gen=gen),
            f=123.0 if self.success else float("nan"),
            success=self.success,
            info=1 if self.success else -1,
            g=g,
            jac=jac,
        )


@pytest.fixture
def case3() -> CaseTables:
    return make_case()


@pytest.fixture
def case3_mixed() -> CaseTables:
    return make_case(GENCOST_MIXED)


@pytest.fixture
def case3_path() -> Path:
    return DATA_DIR / "case3_mixed.m"


@pytest.fixture
def fake_registry():
    """
    Factory: `fake_registry(generalized_a=False, ...)` -> (registry, {family: FakeBackend}).

    Every family gets a fake backend; keyword flags set per-family availability.
    """

    def _make(**availability: bool) -> tuple[BackendRegistry, dict[str, FakeBackend]]:
        reg = BackendRegistry()
        backends: dict[str, FakeBackend] = {}
        for family in BACKEND_FAMILIES:
            b = FakeBackend(f"fake-{family}", family, available=availability.get(family, True))
            reg.register(b)
            backends[family] = b
        return reg, backends

    return _make


@pytest.fixture(autouse=True)
def _restore_project_logging():
    """`setup_logging` detaches project loggers from root; put them back after each test."""
    import logging

    names = ("opf_dispatch", "opf_dispatch.fileonly")
    saved = {}
    for name in names:
        lg = logging.getLogger(name)
        saved[name] = (list(lg.handlers), lg.propagate, lg.level)
    yield
    for name in names:
        lg = logging.getLogger(name)
        handlers, propagate, level = saved[name]
        for h in lg.handlers:
            if h not in handlers:
                h.close()
        lg.handlers[:] = handlers
        lg.propagate = propagate
        lg.setLevel(level)
