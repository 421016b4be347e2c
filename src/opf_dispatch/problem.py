from __future__ import annotations

"""
Canonical OPF problem and argument resolution.

Every entry point ends up with one `OPFProblem`: case tables, generalized linear
constraints (possibly empty) and options (defaulted if omitted).

Accepted positional shapes for `resolve_arguments(*args)`
---------------------------------------------------------
Tables:
    (base_mva, bus, gen, branch, areas, gencost)                      [6]
    (base_mva, bus, gen, branch, areas, gencost, options)             [7]
    (base_mva, bus, gen, branch, areas, gencost, A, l, u)             [9]
    (base_mva, bus, gen, branch, areas, gencost, A, l, u, options)    [10]
Case (CaseTables, MATPOWER-style mapping, or path to a `.m` file):
    (case)                                                            [1]
    (case, options)                                                   [2]
    (case, A, l, u)                                                   [4]
    (case, A, l, u, options)                                          [5]
"""

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Mapping, Sequence

import numpy as np
import scipy.sparse as sp

from opf_dispatch.config import DEFAULT_OPTIONS, OPFOptions
from opf_dispatch.errors import ArgumentShapeError
from opf_dispatch.tables import CaseTables

logger = logging.getLogger(__name__)

_TABLE_ARITIES = (6, 7, 9, 10)
_CASE_ARITIES = (1, 2, 4, 5)


@dataclass(frozen=True)
class LinearConstraints:
    """
    Generalized linear constraints `lower <= A @ x <= upper` on the full decision vector.

    An empty set (0 rows) means "no extra constraints".
    """

    A: sp.csr_matrix
    lower: np.ndarray
    upper: np.ndarray

    def __post_init__(self) -> None:
        A = sp.csr_matrix(self.A, dtype=float) if self.A is not None else sp.csr_matrix((0, 0))
        lower = np.asarray(
            [] if self.lower is None else self.lower, dtype=float
        ).reshape(-1)
        upper = np.asarray(
            [] if self.upper is None else self.upper, dtype=float
        ).reshape(-1)

        n_rows = int(A.shape[0])
        if lower.size != n_rows or upper.size != n_rows:
            raise ArgumentShapeError(
                f"Linear constraint bounds must have {n_rows} entries (rows of A); "
                f"got lower={lower.size}, upper={upper.size}."
            )
        if np.any(lower > upper):
            raise ValueError("Linear constraint lower bounds exceed upper bounds.")

        object.__setattr__(self, "A", A)
        object.__setattr__(self, "lower", lower)
        object.__setattr__(self, "upper", upper)

    @classmethod
    def empty(cls) -> "LinearConstraints":
        return cls(A=sp.csr_matrix((0, 0)), lower=np.zeros(0), upper=np.zeros(0))

    @property
    def is_empty(self) -> bool:
        return int(self.A.shape[0]) == 0

    @property
    def n_rows(self) -> int:
        return int(self.A.shape[0])


@dataclass(frozen=True)
class OPFProblem:
    """Canonical, fully-defaulted OPF input."""

    case: CaseTables
    constraints: LinearConstraints
    options: OPFOptions


def as_options(value: Any) -> OPFOptions:
    """
    Normalize an options argument.

    Accepts None (defaults), OPFOptions, a mapping of field overrides, or a
    MATPOWER options vector.
    """
    if value is None:
        return DEFAULT_OPTIONS
    if isinstance(value, OPFOptions):
        return value
    if isinstance(value, Mapping):
        return DEFAULT_OPTIONS.with_overrides(**dict(value))
    if isinstance(value, (np.ndarray, list, tuple)):
        return OPFOptions.from_vector(value)
    raise TypeError(f"Unsupported options type: {type(value).__name__}")


def as_constraints(value: Any) -> LinearConstraints:
    """Normalize None / LinearConstraints / (A, l, u) into LinearConstraints."""
    if value is None:
        return LinearConstraints.empty()
    if isinstance(value, LinearConstraints):
        return value
    if isinstance(value, (tuple, list)) and len(value) == 3:
        A, lower, upper = value
        return _constraints_from_parts(A, lower, upper)
    raise TypeError(
        "constraints must be None, LinearConstraints or an (A, l, u) tuple; "
        f"got {type(value).__name__}"
    )


def _constraints_from_parts(A: Any, lower: Any, upper: Any) -> LinearConstraints:
    if A is None or (not sp.issparse(A) and np.asarray(A).size == 0):
        if (lower is not None and np.asarray(lower).size) or (
            upper is not None and np.asarray(upper).size
        ):
            raise ArgumentShapeError("Bounds given for an empty constraint matrix A.")
        return LinearConstraints.empty()
    if not sp.issparse(A):
        A = np.atleast_2d(np.asarray(A, dtype=float))
    return LinearConstraints(A=A, lower=lower, upper=upper)


def as_case(value: Any) -> CaseTables:
    """Normalize a CaseTables, a MATPOWER-style mapping, or a `.m` path into CaseTables."""
    if isinstance(value, CaseTables):
        return value.copy()
    if isinstance(value, Mapping):
        return CaseTables.from_mapping(value)
    if isinstance(value, (str, os.PathLike)):
        from opf_dispatch.parsers.matpower import load_case

        return load_case(Path(value))
    raise TypeError(f"Unsupported case type: {type(value).__name__}")


def build_problem(
    case: Any, constraints: Any = None, options: Any = None
) -> OPFProblem:
    """Named entry point: build the canonical OPFProblem from keyword-style inputs."""
    return OPFProblem(
        case=as_case(case),
        constraints=as_constraints(constraints),
        options=as_options(options),
    )


def _is_case_like(value: Any) -> bool:
    return isinstance(value, (CaseTables, Mapping, str, os.PathLike))


def resolve_arguments(*args: Any) -> OPFProblem:
    """
    Resolve one of the supported positional call shapes into an OPFProblem.

    Raises
    ------
    ArgumentShapeError
        If the number/kind of arguments matches none of the supported shapes.
    """
    n = len(args)

    if n and _is_case_like(args[0]):
        if n not in _CASE_ARITIES:
            raise ArgumentShapeError(
                f"Incorrect number of OPF arguments for a case input: {n} "
                f"(expected one of {_CASE_ARITIES}).",
                arity=n,
            )
        case = args[0]
        if n == 1:
            return build_problem(case)
        if n == 2:
            return build_problem(case, options=args[1])
        constraints = _constraints_from_parts(*args[1:4])
        options = args[4] if n == 5 else None
        return build_problem(case, constraints=constraints, options=options)

    if n not in _TABLE_ARITIES:
        raise ArgumentShapeError(
            f"Incorrect number of OPF arguments: {n} "
            f"(expected one of {_TABLE_ARITIES} for table inputs or "
            f"{_CASE_ARITIES} for a case input).",
            arity=n,
        )

    base_mva, bus, gen, branch, areas, gencost = args[:6]
    try:
        case = CaseTables(
            base_mva=float(base_mva),
            bus=bus,
            gen=gen,
            branch=branch,
            gencost=gencost,
            areas=areas,
        )
    except (TypeError, ValueError) as e:
        raise ArgumentShapeError(
            f"Invalid table arguments for a {n}-argument OPF call: {e}", arity=n
        ) from e

    rest: Sequence[Any] = args[6:]
    if n == 6:
        return OPFProblem(case, LinearConstraints.empty(), DEFAULT_OPTIONS)
    if n == 7:
        return OPFProblem(case, LinearConstraints.empty(), as_options(rest[0]))
    constraints = _constraints_from_parts(*rest[:3])
    options = as_options(rest[3]) if n == 10 else DEFAULT_OPTIONS
    return OPFProblem(case, constraints, options)
