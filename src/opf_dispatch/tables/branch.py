"""Column layout of the branch table (MATPOWER order, 0-based)."""

from __future__ import annotations

F_BUS = 0
T_BUS = 1
BR_R = 2  # resistance (p.u.)
BR_X = 3  # reactance (p.u.)
BR_B = 4  # total line charging susceptance (p.u.)
RATE_A = 5  # long term rating (MVA), 0 = unlimited
RATE_B = 6
RATE_C = 7
TAP = 8  # transformer off-nominal turns ratio, 0 = line
SHIFT = 9  # transformer phase shift angle (degrees)
BR_STATUS = 10
ANGMIN = 11
ANGMAX = 12

# power flow outputs
PF = 13
QF = 14
PT = 15
QT = 16

# OPF outputs
MU_SF = 17
MU_ST = 18
MU_ANGMIN = 19
MU_ANGMAX = 20

N_INPUT_COLS = 11
N_SOLVED_COLS = 21
