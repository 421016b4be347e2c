from __future__ import annotations

"""
Plain-text OPF reports.

`print_opf_report` writes the summary (and, unless `out_all == 0`, the generator
and bus tables) to stdout; the full report is also written to the file-only run
log when one is configured.
"""

import logging
import math
from typing import Any, List, Sequence

import numpy as np

from opf_dispatch.config import OPFOptions
from opf_dispatch.results import OPFResult
from opf_dispatch.tables import bus as bs
from opf_dispatch.tables import gen as gn
from opf_dispatch.utils import FILE_ONLY_LOGGER_NAME

logger = logging.getLogger(__name__)


def _format_float(x: Any) -> str:
    """Format numeric values consistently for terminal output."""
    try:
        xf = float(x)
    except (TypeError, ValueError):
        return str(x)

    if math.isinf(xf):
        return "inf"
    if math.isnan(xf):
        return "nan"
    return f"{xf:.6g}"


def _format_table(headers: Sequence[str], rows: Sequence[Sequence[str]]) -> str:
    """ASCII table; first column left aligned, the rest right aligned."""
    widths = [len(h) for h in headers]
    for r in rows:
        for i, cell in enumerate(r):
            widths[i] = max(widths[i], len(cell))

    def fmt_row(values: Sequence[str]) -> str:
        out = []
        for i, v in enumerate(values):
            out.append(v.ljust(widths[i]) if i == 0 else v.rjust(widths[i]))
        return " | ".join(out)

    sep = "-+-".join("-" * w for w in widths)
    out_lines = [fmt_row(headers), sep]
    out_lines.extend(fmt_row(r) for r in rows)
    return "\n".join(out_lines)


def _column(table: np.ndarray, col: int) -> np.ndarray:
    """Column `col` of `table`, or NaNs when the table is narrower (e.g. unsolved inputs)."""
    if table.ndim != 2 or table.shape[1] <= col:
        return np.full(table.shape[0], np.nan)
    return table[:, col]


def format_opf_summary(result: OPFResult) -> str:
    s = result.to_summary()
    lines = [
        "OPF summary",
        "===========",
        f"converged:       {s['success']}",
        f"objective:       {_format_float(result.f)}",
        f"formulation:     {s['formulation']}",
        f"algorithm:       {s['algorithm'] if s['algorithm'] is not None else '-'}",
        f"backend:         {s['backend']}",
        f"status:          {s['info']}",
        f"elapsed [s]:     {_format_float(s['elapsed_sec'])}",
        f"buses:           {s['n_bus']}",
        f"generators:      {s['n_gen']}",
        f"branches:        {s['n_branch']}",
        f"generation [MW]: {_format_float(s['total_generation_mw'])}",
        f"demand [MW]:     {_format_float(s['total_demand_mw'])}",
    ]
    return "\n".join(lines)


def format_generator_table(result: OPFResult, *, max_rows: int | None = None) -> str:
    gen = result.gen
    n = gen.shape[0] if max_rows is None else min(gen.shape[0], int(max_rows))
    cols = (
        ("bus", gn.GEN_BUS),
        ("status", gn.GEN_STATUS),
        ("pg_mw", gn.PG),
        ("qg_mvar", gn.QG),
        ("pmin_mw", gn.PMIN),
        ("pmax_mw", gn.PMAX),
    )
    headers = ["gen"] + [c for c, _ in cols]
    data = [_column(gen, idx) for _, idx in cols]
    rows: List[List[str]] = []
    for i in range(n):
        rows.append([str(i)] + [_format_float(d[i]) for d in data])
    out = _format_table(headers, rows)
    if n < gen.shape[0]:
        out += f"\n... ({gen.shape[0] - n} more rows)"
    return out


def format_bus_table(result: OPFResult, *, max_rows: int | None = None) -> str:
    bus = result.bus
    n = bus.shape[0] if max_rows is None else min(bus.shape[0], int(max_rows))
    cols = (
        ("type", bs.BUS_TYPE),
        ("vm_pu", bs.VM),
        ("va_deg", bs.VA),
        ("pd_mw", bs.PD),
        ("qd_mvar", bs.QD),
        ("lam_p", bs.LAM_P),
    )
    headers = ["bus"] + [c for c, _ in cols]
    data = [_column(bus, idx) for _, idx in cols]
    rows: List[List[str]] = []
    for i in range(n):
        rows.append([_format_float(bus[i, bs.BUS_I])] + [_format_float(d[i]) for d in data])
    out = _format_table(headers, rows)
    if n < bus.shape[0]:
        out += f"\n... ({bus.shape[0] - n} more rows)"
    return out


def format_opf_report(result: OPFResult, options: OPFOptions) -> str:
    parts = [format_opf_summary(result)]
    if int(options.out_all) != 0:
        parts.append("Generators\n" + format_generator_table(result))
        parts.append("Buses\n" + format_bus_table(result))
    return "\n\n".join(parts)


def print_opf_report(result: OPFResult, options: OPFOptions) -> str:
    """Print the report to stdout and mirror it into the run log. Returns the text."""
    text = format_opf_report(result, options)
    print(text)
    logging.getLogger(FILE_ONLY_LOGGER_NAME).info("OPF report:\n%s", text)
    return text
