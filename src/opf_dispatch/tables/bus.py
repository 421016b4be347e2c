"""
Column layout of the bus table (MATPOWER order, 0-based).

Columns LAM_P..MU_VMIN are written by OPF backends and are usually absent
from input case files.
"""

from __future__ import annotations

# bus types
PQ = 1
PV = 2
REF = 3
NONE = 4

BUS_I = 0  # bus number
BUS_TYPE = 1
PD = 2  # real power demand (MW)
QD = 3  # reactive power demand (MVAr)
GS = 4  # shunt conductance (MW at V = 1.0 p.u.)
BS = 5  # shunt susceptance (MVAr at V = 1.0 p.u.)
BUS_AREA = 6
VM = 7  # voltage magnitude (p.u.)
VA = 8  # voltage angle (degrees)
BASE_KV = 9
ZONE = 10
VMAX = 11
VMIN = 12

# OPF outputs
LAM_P = 13  # multiplier on real power mismatch (u/MW)
LAM_Q = 14  # multiplier on reactive power mismatch (u/MVAr)
MU_VMAX = 15
MU_VMIN = 16

N_INPUT_COLS = 13
N_SOLVED_COLS = 17
