"""Column layout of the generator table (MATPOWER order, 0-based)."""

from __future__ import annotations

GEN_BUS = 0
PG = 1  # real power output (MW)
QG = 2  # reactive power output (MVAr)
QMAX = 3
QMIN = 4
VG = 5  # voltage magnitude setpoint (p.u.)
MBASE = 6
GEN_STATUS = 7  # > 0 in service, <= 0 out of service
PMAX = 8
PMIN = 9
PC1 = 10
PC2 = 11
QC1MIN = 12
QC1MAX = 13
QC2MIN = 14
QC2MAX = 15
RAMP_AGC = 16
RAMP_10 = 17
RAMP_30 = 18
RAMP_Q = 19
APF = 20

# OPF outputs
MU_PMAX = 21
MU_PMIN = 22
MU_QMAX = 23
MU_QMIN = 24

N_INPUT_COLS = 10
N_SOLVED_COLS = 25
