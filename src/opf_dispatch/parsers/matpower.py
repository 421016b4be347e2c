from __future__ import annotations

import logging
import re
from pathlib import Path
from typing import Any

import numpy as np

from opf_dispatch.tables import CaseTables

logger = logging.getLogger(__name__)

# `mpc.<field> =` at the start of a line; the value follows.
_FIELD_RE = re.compile(r"^[ \t]*mpc\.(\w+)[ \t]*=[ \t]*", re.MULTILINE)
_BRACKETS = {"[": "]", "{": "}"}


def _strip_comments(text: str) -> str:
    """Drop `%` comments line by line; a `%` inside a single-quoted string is kept."""
    lines = []
    for line in text.splitlines():
        quoted = False
        for i, ch in enumerate(line):
            if ch == "'":
                quoted = not quoted
            elif ch == "%" and not quoted:
                line = line[:i]
                break
        lines.append(line.rstrip())
    return "\n".join(lines)


def _field_values(text: str) -> dict[str, str]:
    """
    Map every `mpc.<field> = <value>` assignment to its raw value text.

    Bracketed values (`[...]` matrices, `{...}` cell arrays) run to their closing
    bracket; anything else ends at the first `;` or newline. A field assigned twice
    keeps its last value.
    """
    fields: dict[str, str] = {}
    for m in _FIELD_RE.finditer(text):
        name, start = m.group(1), m.end()
        closer = _BRACKETS.get(text[start : start + 1])
        if closer is not None:
            end = text.find(closer, start)
            if end < 0:
                raise ValueError(f"Unterminated value for mpc.{name} (missing {closer!r}).")
            fields[name] = text[start : end + 1]
        else:
            stop = re.search(r"[;\n]", text[start:])
            fields[name] = text[start : start + stop.start()] if stop else text[start:]
    return fields


def _scalar(fields: dict[str, str], name: str) -> str:
    value = fields.get(name, "").strip()
    if not value:
        raise ValueError(f"Could not find scalar 'mpc.{name}' in MATPOWER case.")
    return value.strip("'\"")


def _parse_matrix(value: str, name: str) -> np.ndarray:
    """Parse a `[ ... ]` value as a 2D float array (rows end with `;` or a newline)."""
    value = value.strip()
    if not (value.startswith("[") and value.endswith("]")):
        raise ValueError(f"mpc.{name} is not a numeric matrix.")

    body = re.sub(r"\.\.\.[ \t\r]*\n", " ", value[1:-1]).replace(",", " ")
    rows: list[list[float]] = []
    for raw_row in re.split(r"[;\n]", body):
        parts = raw_row.split()
        if not parts:
            continue
        try:
            rows.append([float(x) for x in parts])
        except ValueError as e:
            raise ValueError(f"Failed to parse numeric row in mpc.{name}: {raw_row.strip()!r}") from e

    if not rows:
        return np.zeros((0, 0), dtype=float)

    ncols = len(rows[0])
    if any(len(r) != ncols for r in rows):
        raise ValueError(
            f"Inconsistent row lengths in mpc.{name} matrix (expected {ncols})."
        )

    return np.asarray(rows, dtype=float)


def _matrix(fields: dict[str, str], name: str) -> np.ndarray:
    if name not in fields:
        raise ValueError(f"Could not find matrix 'mpc.{name}' in MATPOWER case.")
    return _parse_matrix(fields[name], name)


def _parse_matpower_m_file_to_ppc(path: Path) -> dict[str, Any]:
    """
    Parse a MATPOWER `.m` case file into a PPC dict.

    Fields:
      - version
      - baseMVA
      - bus, gen, branch, gencost (required)
      - areas (only if present in the file)
    """
    text = path.read_text(encoding="utf-8", errors="replace")
    fields = _field_values(_strip_comments(text))

    version = _scalar(fields, "version")
    if version != "2":
        logger.warning("MATPOWER case format version %r; only version 2 is tested.", version)

    base_mva_raw = _scalar(fields, "baseMVA")
    try:
        base_mva = float(base_mva_raw)
    except ValueError as e:
        raise ValueError(
            f"Failed to parse mpc.baseMVA={base_mva_raw!r} as float."
        ) from e

    bus = _matrix(fields, "bus")
    gen = _matrix(fields, "gen")
    branch = _matrix(fields, "branch")
    gencost = _matrix(fields, "gencost")

    if bus.size == 0 or branch.size == 0:
        raise ValueError(
            "MATPOWER case must contain non-empty 'bus' and 'branch' matrices."
        )
    if gencost.shape[0] not in (gen.shape[0], 2 * gen.shape[0]):
        raise ValueError(
            f"mpc.gencost has {gencost.shape[0]} rows for {gen.shape[0]} generators."
        )

    ppc: dict[str, Any] = {
        "version": version,
        "baseMVA": base_mva,
        "bus": bus,
        "gen": gen,
        "branch": branch,
        "gencost": gencost,
    }
    if "areas" in fields:
        ppc["areas"] = _matrix(fields, "areas")
    return ppc


def load_case(file_path: str | Path) -> CaseTables:
    """
    Load a MATPOWER `.m` case file into CaseTables.

    Raises
    ------
    FileNotFoundError:
        If file does not exist.
    ValueError:
        If extension is not `.m`.
    RuntimeError:
        If parsing fails.
    """
    path = Path(file_path)
    if not path.exists():
        raise FileNotFoundError(str(path))

    if path.suffix.lower() != ".m":
        raise ValueError(f"Only MATPOWER .m files are supported. Got: {path}")

    try:
        ppc = _parse_matpower_m_file_to_ppc(path)
        case = CaseTables.from_mapping(ppc)
    except Exception as e:
        logger.exception("Failed to load MATPOWER case: %s", str(path))
        raise RuntimeError(f"Failed to load MATPOWER case: {path}") from e

    logger.debug(
        "Case loaded: %d buses, %d generators, %d branches",
        case.n_bus,
        case.n_gen,
        int(case.branch.shape[0]),
    )
    return case
