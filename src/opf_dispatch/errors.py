from __future__ import annotations

"""
Configuration errors raised before any OPF backend is invoked.

Solve-time failures (non-convergence, infeasibility) are NOT errors: they are
reported through `OPFResult.success` / `OPFResult.info`. Everything below is a
caller mistake and aborts the call.
"""

__all__ = [
    "ArgumentShapeError",
    "BackendUnavailableError",
    "CostConversionError",
    "CostTableShapeError",
    "FormulationCostMismatchError",
    "OPFConfigurationError",
    "UnknownAlgorithmError",
    "UnknownCostModelError",
    "UnsupportedConstraintsError",
]


class OPFConfigurationError(ValueError):
    """Base class for inadmissible OPF inputs / option combinations."""


class ArgumentShapeError(OPFConfigurationError, TypeError):
    """Unsupported positional argument shape for the OPF entry point."""

    def __init__(self, message: str, *, arity: int | None = None) -> None:
        super().__init__(message)
        self.arity = arity


class UnknownCostModelError(OPFConfigurationError):
    """An active generator's cost row carries a model tag outside {1, 2}."""

    def __init__(self, *, row: int, model: float) -> None:
        super().__init__(
            f"Unknown generator cost model {model!r} in gencost row {row} "
            "(expected 1 = piecewise linear or 2 = polynomial)."
        )
        self.row = int(row)
        self.model = model


class CostTableShapeError(OPFConfigurationError):
    """gencost row count is neither n_gen nor 2 * n_gen."""

    def __init__(self, *, n_rows: int, n_gen: int) -> None:
        super().__init__(
            f"gencost has {n_rows} rows; expected {n_gen} (active power only) "
            f"or {2 * n_gen} (active + reactive power)."
        )
        self.n_rows = int(n_rows)
        self.n_gen = int(n_gen)


class CostConversionError(OPFConfigurationError):
    """A polynomial cost row cannot be converted to piecewise linear."""

    def __init__(self, message: str, *, row: int) -> None:
        super().__init__(message)
        self.row = int(row)


class UnknownAlgorithmError(OPFConfigurationError):
    """Algorithm selector has no entry in the algorithm table."""

    def __init__(self, algorithm: int) -> None:
        super().__init__(f"Unknown OPF algorithm code: {algorithm!r}")
        self.algorithm = algorithm


class FormulationCostMismatchError(OPFConfigurationError):
    """Piecewise-linear costs were given to a polynomial-only formulation."""

    def __init__(self, algorithm: int) -> None:
        super().__init__(
            f"OPF algorithm {algorithm} does not handle piecewise linear cost functions."
        )
        self.algorithm = int(algorithm)


class UnsupportedConstraintsError(OPFConfigurationError):
    """Generalized linear constraints were given to a formulation that cannot take them."""

    def __init__(self, algorithm: int | None) -> None:
        what = "DC OPF" if algorithm is None else f"OPF algorithm {algorithm}"
        super().__init__(f"{what} cannot handle general linear constraints.")
        self.algorithm = algorithm


class BackendUnavailableError(OPFConfigurationError):
    """The backend required by the resolved algorithm is not installed / registered."""

    def __init__(self, backend: str, *, algorithm: int | None = None) -> None:
        if algorithm is None:
            msg = f"OPF backend {backend!r} is not available."
        else:
            msg = f"OPF algorithm {algorithm} requires backend {backend!r}, which is not available."
        super().__init__(msg)
        self.backend = str(backend)
        self.algorithm = algorithm
