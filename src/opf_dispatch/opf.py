from __future__ import annotations

"""
OPF entry points.

Pipeline
--------
1) resolve arguments into an `OPFProblem` (no timing)
2) classify generator cost models (AC only)
3) resolve formulation / algorithm / backend family, validate the combination
4) convert polynomial costs to piecewise linear if the formulation needs it
5) dispatch to the backend, normalize the result
6) optionally report (successful runs only)

Configuration errors (see `opf_dispatch.errors`) are raised before step 5.
Solver failures come back as `OPFResult.success == False`.

Entry points
------------
- `run_opf(case, constraints=None, options=None)`: keyword-style.
- `run_opf_case(path, ...)`: load a MATPOWER `.m` file and solve it.
- `opf(*args)`: positional MATPOWER-style call shapes (see `opf_dispatch.problem`).
- `solve_problem(problem)`: canonical form used by all of the above.
"""

import logging
import time
from dataclasses import replace
from pathlib import Path
from typing import Any, Callable

from opf_dispatch.backends.registry import BackendRegistry, default_registry
from opf_dispatch.config import OPFOptions
from opf_dispatch.costs import classify_cost_models
from opf_dispatch.dispatch import dispatch
from opf_dispatch.formulation import resolve_formulation
from opf_dispatch.linearize import linearize_costs
from opf_dispatch.problem import OPFProblem, build_problem, resolve_arguments
from opf_dispatch.results import OPFResult, normalize_result
from opf_dispatch.utils import log_stage

logger = logging.getLogger(__name__)

Reporter = Callable[[OPFResult, OPFOptions], Any]


def solve_problem(
    problem: OPFProblem,
    *,
    registry: BackendRegistry | None = None,
    report: bool = False,
    reporter: Reporter | None = None,
) -> OPFResult:
    """
    Solve a canonical OPF problem.

    Parameters
    ----------
    problem:
        Output of `build_problem` / `resolve_arguments`.
    registry:
        Backend registry; the process-wide default registry if None.
    report:
        Print a report after a successful solve (never changes the result).
    reporter:
        Report callable `(result, options)`; `opf_dispatch.reporting.print_opf_report` if None.
    """
    reg = registry if registry is not None else default_registry()
    options = problem.options
    case = problem.case

    cost_models = None
    if not options.pf_dc:
        cost_models = classify_cost_models(case.gencost, case.gen_status)

    # et covers formulation resolution, cost conversion and the backend run
    t0 = time.perf_counter()
    resolution = resolve_formulation(
        options,
        cost_models,
        reg.availability(),
        has_constraints=not problem.constraints.is_empty,
        backend_names=reg.names(),
    )

    if resolution.needs_pwl_conversion:
        if options.verbose:
            logger.info(
                "Converting polynomial generator costs to piecewise linear (%d points).",
                int(options.opf_poly2pwl_pts),
            )
        gencost = linearize_costs(case.gencost, case.gen, int(options.opf_poly2pwl_pts))
        problem = replace(problem, case=case.with_tables(gencost=gencost))

    with log_stage(logger, f"OPF solve ({resolution.formulation}, family={resolution.family})"):
        raw, backend_name = dispatch(problem, resolution, reg)

    et = time.perf_counter() - t0
    result = normalize_result(raw, resolution=resolution, backend=backend_name, et=et)
    logger.info(
        "OPF %s: backend=%s, algorithm=%s, objective=%.6g, time=%.3f sec",
        "converged" if result.success else "did not converge",
        result.backend,
        result.algorithm,
        result.f,
        result.et,
    )

    if report and result.success:
        if reporter is None:
            from opf_dispatch.reporting import print_opf_report

            reporter = print_opf_report
        reporter(result, options)

    return result


def run_opf(
    case: Any,
    *,
    constraints: Any = None,
    options: Any = None,
    registry: BackendRegistry | None = None,
    report: bool = False,
) -> OPFResult:
    """Solve OPF for `case` (CaseTables, MATPOWER-style mapping or `.m` path)."""
    problem = build_problem(case, constraints=constraints, options=options)
    return solve_problem(problem, registry=registry, report=report)


def run_opf_case(
    path: str | Path,
    *,
    constraints: Any = None,
    options: Any = None,
    registry: BackendRegistry | None = None,
    report: bool = False,
) -> OPFResult:
    """Load a MATPOWER case file and solve OPF for it."""
    from opf_dispatch.parsers.matpower import load_case

    return run_opf(
        load_case(Path(path)),
        constraints=constraints,
        options=options,
        registry=registry,
        report=report,
    )


def opf(
    *args: Any, registry: BackendRegistry | None = None, report: bool = False
) -> OPFResult:
    """
    MATPOWER-style positional entry point.

    Examples
    --------
    opf(base_mva, bus, gen, branch, areas, gencost)
    opf(base_mva, bus, gen, branch, areas, gencost, A, l, u, options)
    opf(case, options)
    """
    problem = resolve_arguments(*args)
    return solve_problem(problem, registry=registry, report=report)
