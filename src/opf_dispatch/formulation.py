from __future__ import annotations

"""
Algorithm selection and formulation resolution.

Algorithm codes follow MATPOWER's numbering: the hundreds digit selects the
formulation (1 = restricted polynomial, 2 = restricted piecewise linear via
constrained cost variables, 5 = generalized) and the tens digit the solver
family within it.

Formulations
------------
- FORMULATION_DC: linearized DC OPF (selected by `OPFOptions.pf_dc`).
- FORMULATION_RESTRICTED_POLY: AC, polynomial costs only.
- FORMULATION_RESTRICTED_PWL: AC, piecewise-linear costs only (polynomials are converted).
- FORMULATION_GENERALIZED: AC, any cost model, plus caller linear constraints.

Backend families
----------------
Each algorithm maps to exactly one backend family; the registry in
`opf_dispatch.backends` holds one backend per family.
"""

import logging
from dataclasses import dataclass
from typing import Mapping

from opf_dispatch.config import OPFOptions
from opf_dispatch.costs import CostModels
from opf_dispatch.errors import (
    BackendUnavailableError,
    FormulationCostMismatchError,
    UnknownAlgorithmError,
    UnsupportedConstraintsError,
)

logger = logging.getLogger(__name__)

FORMULATION_DC = "dc"
FORMULATION_RESTRICTED_POLY = "restricted_poly"
FORMULATION_RESTRICTED_PWL = "restricted_pwl"
FORMULATION_GENERALIZED = "generalized"

FAMILY_DC = "dc"
FAMILY_GENERALIZED_A = "generalized_a"
FAMILY_GENERALIZED_B = "generalized_b"
FAMILY_RESTRICTED_NLP = "restricted_nlp"
FAMILY_RESTRICTED_LP = "restricted_lp"

BACKEND_FAMILIES: tuple[str, ...] = (
    FAMILY_DC,
    FAMILY_GENERALIZED_A,
    FAMILY_GENERALIZED_B,
    FAMILY_RESTRICTED_NLP,
    FAMILY_RESTRICTED_LP,
)

ALG_GENERALIZED_A = 500
ALG_GENERALIZED_B = 520


@dataclass(frozen=True)
class AlgorithmSpec:
    """One row of the algorithm table."""

    code: int
    formulation: str
    family: str
    label: str


ALGORITHMS: dict[int, AlgorithmSpec] = {
    spec.code: spec
    for spec in (
        AlgorithmSpec(100, FORMULATION_RESTRICTED_POLY, FAMILY_RESTRICTED_NLP, "standard, constrained NLP"),
        AlgorithmSpec(120, FORMULATION_RESTRICTED_POLY, FAMILY_RESTRICTED_LP, "standard, dense LP"),
        AlgorithmSpec(140, FORMULATION_RESTRICTED_POLY, FAMILY_RESTRICTED_LP, "standard, sparse LP (relaxed)"),
        AlgorithmSpec(160, FORMULATION_RESTRICTED_POLY, FAMILY_RESTRICTED_LP, "standard, sparse LP (full)"),
        AlgorithmSpec(200, FORMULATION_RESTRICTED_PWL, FAMILY_RESTRICTED_NLP, "CCV, constrained NLP"),
        AlgorithmSpec(220, FORMULATION_RESTRICTED_PWL, FAMILY_RESTRICTED_LP, "CCV, dense LP"),
        AlgorithmSpec(240, FORMULATION_RESTRICTED_PWL, FAMILY_RESTRICTED_LP, "CCV, sparse LP (relaxed)"),
        AlgorithmSpec(260, FORMULATION_RESTRICTED_PWL, FAMILY_RESTRICTED_LP, "CCV, sparse LP (full)"),
        AlgorithmSpec(ALG_GENERALIZED_A, FORMULATION_GENERALIZED, FAMILY_GENERALIZED_A, "generalized, interior point"),
        AlgorithmSpec(ALG_GENERALIZED_B, FORMULATION_GENERALIZED, FAMILY_GENERALIZED_B, "generalized, step-controlled interior point"),
    )
}


@dataclass(frozen=True)
class Resolution:
    """Outcome of formulation resolution for one OPF call."""

    formulation: str
    family: str
    algorithm: AlgorithmSpec | None
    needs_pwl_conversion: bool = False

    @property
    def algorithm_code(self) -> int | None:
        return None if self.algorithm is None else int(self.algorithm.code)


DC_RESOLUTION = Resolution(formulation=FORMULATION_DC, family=FAMILY_DC, algorithm=None)


def lookup_algorithm(code: int) -> AlgorithmSpec:
    """Return the algorithm table entry for `code` (UnknownAlgorithmError if absent)."""
    try:
        return ALGORITHMS[int(code)]
    except (KeyError, TypeError, ValueError):
        raise UnknownAlgorithmError(code) from None


def select_algorithm(
    options: OPFOptions, cost_models: CostModels, availability: Mapping[str, bool]
) -> int:
    """
    Return the algorithm code to run.

    An explicit `options.opf_alg` is returned unchanged. When it is 0 the choice is,
    in priority order: generalized backend A, generalized backend B (if available),
    then `opf_alg_pwl` if any active generator has a piecewise-linear cost, else
    `opf_alg_poly`.
    """
    if int(options.opf_alg) != 0:
        return int(options.opf_alg)

    if availability.get(FAMILY_GENERALIZED_A, False):
        alg = ALG_GENERALIZED_A
    elif availability.get(FAMILY_GENERALIZED_B, False):
        alg = ALG_GENERALIZED_B
    elif cost_models.any_pwl:
        alg = int(options.opf_alg_pwl)
        if cost_models.any_poly and options.verbose:
            logger.warning(
                "Not all generators use the same cost model; all will be converted "
                "to piecewise linear."
            )
    else:
        alg = int(options.opf_alg_poly)

    logger.debug("OPF algorithm not set; selected %d", alg)
    return alg


def resolve_formulation(
    options: OPFOptions,
    cost_models: CostModels | None,
    availability: Mapping[str, bool],
    *,
    has_constraints: bool = False,
    backend_names: Mapping[str, str] | None = None,
) -> Resolution:
    """
    Resolve the formulation and backend family for one OPF call.

    Parameters
    ----------
    options:
        OPF options (DC flag, selectors, verbosity).
    cost_models:
        Output of `classify_cost_models`; ignored (may be None) on the DC path.
    availability:
        Backend family -> installed/registered flag.
    has_constraints:
        True if the caller supplied non-empty generalized linear constraints.
    backend_names:
        Optional backend family -> backend name, used in error messages.

    Raises
    ------
    UnknownAlgorithmError, FormulationCostMismatchError,
    UnsupportedConstraintsError, BackendUnavailableError
    """
    if options.pf_dc:
        if has_constraints:
            raise UnsupportedConstraintsError(None)
        _require_available(FAMILY_DC, availability, algorithm=None, names=backend_names)
        return DC_RESOLUTION

    if cost_models is None:
        raise ValueError("cost_models is required for AC OPF resolution")

    code = select_algorithm(options, cost_models, availability)
    spec = lookup_algorithm(code)

    if cost_models.any_pwl and spec.formulation == FORMULATION_RESTRICTED_POLY:
        raise FormulationCostMismatchError(spec.code)

    if has_constraints and spec.formulation != FORMULATION_GENERALIZED:
        raise UnsupportedConstraintsError(spec.code)

    _require_available(
        spec.family, availability, algorithm=spec.code, names=backend_names
    )

    needs_conversion = (
        spec.formulation == FORMULATION_RESTRICTED_PWL and cost_models.any_poly
    )
    resolution = Resolution(
        formulation=spec.formulation,
        family=spec.family,
        algorithm=spec,
        needs_pwl_conversion=bool(needs_conversion),
    )
    logger.debug(
        "Resolved OPF algorithm %d (%s): formulation=%s family=%s convert_pwl=%s",
        spec.code,
        spec.label,
        resolution.formulation,
        resolution.family,
        resolution.needs_pwl_conversion,
    )
    return resolution


def _require_available(
    family: str,
    availability: Mapping[str, bool],
    *,
    algorithm: int | None,
    names: Mapping[str, str] | None,
) -> None:
    if not availability.get(family, False):
        name = (names or {}).get(family, family)
        raise BackendUnavailableError(name, algorithm=algorithm)
