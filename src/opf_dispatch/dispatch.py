from __future__ import annotations

"""
Solver dispatch: hand a resolved OPF problem to the backend of its family.

Only the generalized families receive the caller's linear constraints; the
resolver has already rejected constraints for every other formulation.
"""

import logging

from opf_dispatch.backends.base import BackendRequest, BackendResult
from opf_dispatch.backends.registry import BackendRegistry
from opf_dispatch.formulation import FORMULATION_GENERALIZED, Resolution
from opf_dispatch.problem import OPFProblem

logger = logging.getLogger(__name__)


def build_request(problem: OPFProblem, resolution: Resolution) -> BackendRequest:
    constraints = (
        problem.constraints if resolution.formulation == FORMULATION_GENERALIZED else None
    )
    return BackendRequest(
        case=problem.case,
        options=problem.options,
        algorithm=resolution.algorithm,
        constraints=constraints,
    )


def dispatch(
    problem: OPFProblem, resolution: Resolution, registry: BackendRegistry
) -> tuple[BackendResult, str]:
    """
    Run the backend of `resolution.family` once.

    Returns
    -------
    (BackendResult, backend name)
    """
    backend = registry.get(resolution.family)
    request = build_request(problem, resolution)
    logger.debug(
        "Dispatching to %r (algorithm=%s, constraints=%s)",
        backend,
        resolution.algorithm_code,
        "none" if request.constraints is None else request.constraints.n_rows,
    )
    result = backend.solve(request)
    return result, backend.name
