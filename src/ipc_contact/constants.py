# MIT License (see LICENSE)
"""
Default parameters and numerical thresholds used throughout the contact code.

Lengths are in the units of the collision mesh; stiffness values scale with
the average nodal mass supplied by the caller.
"""
from __future__ import annotations

# Activation distance below which a pair of primitives is in contact.
DEFAULT_DHAT: float = 1e-3

# Broad-phase boxes are inflated by dhat / 1.99 so two boxes overlap whenever
# their primitives are closer than (slightly more than) dhat.
INFLATION_DIVISOR: float = 1.99

# Continuous collision detection.
DEFAULT_CCD_TOLERANCE: float = 1e-6
DEFAULT_CCD_MAX_ITERATIONS: int = 10_000
# Fraction of the current gap a single conservative advancement may close.
DEFAULT_CCD_CONSERVATIVE_RESCALING: float = 0.9

# Adaptive barrier stiffness (IPC, Li et al. 2020, Supplemental Sec. 3).
# kappa_min = scale * avg_mass / (4 d0 b''(d0)), with d0 = (1e-8 * bbox)^2.
MIN_BARRIER_STIFFNESS_SCALE: float = 1e11
INITIAL_DISTANCE_SCALE: float = 1e-8
MAX_BARRIER_STIFFNESS_FACTOR: float = 100.0
# Stiffness doubles when the minimum distance keeps shrinking below
# dhat_epsilon_scale * bbox_diagonal.
DHAT_EPSILON_SCALE: float = 1e-9

# Edges whose squared sine of the angle is below this are treated as parallel.
EDGE_EDGE_PARALLEL_THRESHOLD: float = 1e-10

# Step used by the finite-difference debug check at line search begin.
FINITE_DIFFERENCE_STEP: float = 1e-6
