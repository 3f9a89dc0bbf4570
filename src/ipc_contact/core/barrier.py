# MIT License (see LICENSE)
"""
Log barrier on squared distances.

Implements the IPC barrier (Li et al. 2020, Eq. 6) with d and D = dhat^2 both
squared distances:

    b(d, D) = -(d - D)^2 ln(d / D)    for 0 < d < D
    b(d, D) = 0                        for d >= D

b is C2 at d = D, positive and strictly decreasing on (0, D), and diverges
as d -> 0+. Derivatives with respect to d:

    b'(d)  = (D - d) (2 ln(d / D) - D / d + 1)
    b''(d) = (D / d + 2) D / d - 2 ln(d / D) - 3
"""
from __future__ import annotations

import numpy as np


def barrier(d: float, dhat_squared: float) -> float:
    """Barrier value for a squared distance d."""
    if d <= 0.0:
        return np.inf
    if d >= dhat_squared:
        return 0.0
    d_minus = d - dhat_squared
    return -d_minus * d_minus * np.log(d / dhat_squared)


def barrier_gradient(d: float, dhat_squared: float) -> float:
    """First derivative of the barrier with respect to d."""
    if d <= 0.0:
        return -np.inf
    if d >= dhat_squared:
        return 0.0
    D = dhat_squared
    return (D - d) * (2.0 * np.log(d / D) - D / d + 1.0)


def barrier_hessian(d: float, dhat_squared: float) -> float:
    """Second derivative of the barrier with respect to d."""
    if d <= 0.0:
        return np.inf
    if d >= dhat_squared:
        return 0.0
    D = dhat_squared
    return (D / d + 2.0) * D / d - 2.0 * np.log(d / D) - 3.0
