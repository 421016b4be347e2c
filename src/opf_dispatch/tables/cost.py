"""
Column layout of the generator cost table (MATPOWER order, 0-based).

Parameters start at COST:
- polynomial: cn, ..., c1, c0 (highest order first, NCOST coefficients)
- piecewise linear: x0, y0, x1, y1, ... (NCOST points, increasing x)
"""

from __future__ import annotations

# cost models
PW_LINEAR = 1
POLYNOMIAL = 2

MODEL = 0
STARTUP = 1
SHUTDOWN = 2
NCOST = 3
COST = 4

KNOWN_MODELS: frozenset[int] = frozenset({PW_LINEAR, POLYNOMIAL})
