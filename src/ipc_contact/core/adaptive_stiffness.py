# MIT License (see LICENSE)
"""
Adaptive barrier stiffness (IPC, Li et al. 2020, Supplemental Sec. 3).

The barrier weight kappa balances the contact energy against the rest of the
objective. It is first chosen so the barrier gradient best cancels the
non-contact gradient, clamped to a range derived from the scene size and mass:

    d0       = (1e-8 * bbox_diagonal)^2
    kappa_min = scale * average_mass / (4 d0 b''(d0, dhat^2))
    kappa_max = 100 * kappa_min
    kappa     = clamp(-(g_b . g_E) / |g_b|^2, kappa_min, kappa_max)

After each accepted step of a time-dependent solve, kappa doubles (up to
kappa_max) while the minimum distance keeps shrinking below a tiny fraction
of the scene size. A quasi-static solve re-initializes instead.
"""
from __future__ import annotations
import logging
from typing import Callable

import numpy as np

from ..constants import (
    DHAT_EPSILON_SCALE,
    INITIAL_DISTANCE_SCALE,
    MAX_BARRIER_STIFFNESS_FACTOR,
    MIN_BARRIER_STIFFNESS_SCALE,
)
from .barrier import barrier_hessian

logger = logging.getLogger(__name__)


def initial_barrier_stiffness(
    bbox_diagonal: float,
    dhat: float,
    average_mass: float,
    grad_energy: np.ndarray,
    grad_barrier: np.ndarray,
    min_barrier_stiffness_scale: float = MIN_BARRIER_STIFFNESS_SCALE,
) -> tuple[float, float]:
    """
    Initial barrier stiffness and its upper bound.

    Args:
        bbox_diagonal: Bounding-box diagonal of the displaced surface.
        dhat: Activation distance.
        average_mass: Average nodal mass.
        grad_energy: Gradient of the non-contact energy.
        grad_barrier: Gradient of the unit-stiffness barrier potential.
        min_barrier_stiffness_scale: Scale of the lower bound.

    Returns:
        (barrier_stiffness, max_barrier_stiffness)

    Raises:
        ValueError: If bbox_diagonal or average_mass is not positive.
    """
    if not bbox_diagonal > 0.0:
        raise ValueError(f"bbox_diagonal must be positive, got {bbox_diagonal}")
    if not average_mass > 0.0:
        raise ValueError(f"average_mass must be positive, got {average_mass}")

    dhat_squared = dhat * dhat
    d0 = (INITIAL_DISTANCE_SCALE * bbox_diagonal) ** 2
    if d0 >= dhat_squared:
        d0 = 0.5 * dhat_squared

    min_stiffness = min_barrier_stiffness_scale * average_mass / (4.0 * d0 * barrier_hessian(d0, dhat_squared))
    max_stiffness = MAX_BARRIER_STIFFNESS_FACTOR * min_stiffness

    kappa = 1.0
    gb2 = float(grad_barrier @ grad_barrier)
    if gb2 > 0.0:
        kappa = -float(grad_barrier @ grad_energy) / gb2

    return float(min(max_stiffness, max(min_stiffness, kappa))), float(max_stiffness)


def update_barrier_stiffness(
    prev_min_distance: float,
    min_distance: float,
    max_barrier_stiffness: float,
    barrier_stiffness: float,
    bbox_diagonal: float,
    dhat_epsilon_scale: float = DHAT_EPSILON_SCALE,
) -> float:
    """
    Double the stiffness while the minimum distance keeps shrinking near zero.

    Args:
        prev_min_distance: Minimum distance after the previous step.
        min_distance: Minimum distance after this step.
        max_barrier_stiffness: Upper bound.
        barrier_stiffness: Current stiffness.
        bbox_diagonal: Bounding-box diagonal of the displaced surface.
        dhat_epsilon_scale: Fraction of the diagonal considered "near zero".

    Returns:
        The new stiffness (never lower than the current one).
    """
    eps = dhat_epsilon_scale * bbox_diagonal
    if prev_min_distance < eps and min_distance < eps and min_distance < prev_min_distance:
        return min(max_barrier_stiffness, 2.0 * barrier_stiffness)
    return barrier_stiffness


class BarrierStiffnessController:
    """
    Owns the barrier stiffness of one contact form.

    States: uninitialized (stiffness is None) and initialized.

    Attributes:
        dhat: Activation distance.
        average_mass: Average nodal mass of the body.
        barrier_stiffness: Current stiffness, None until initialized.
        max_barrier_stiffness: Upper bound, None until initialized.
    """

    def __init__(
        self,
        dhat: float,
        average_mass: float,
        energy_gradient: Callable[[np.ndarray], np.ndarray],
        barrier_gradient: Callable[[np.ndarray], np.ndarray],
        bbox_diagonal: Callable[[np.ndarray], float],
        min_barrier_stiffness_scale: float = MIN_BARRIER_STIFFNESS_SCALE,
        dhat_epsilon_scale: float = DHAT_EPSILON_SCALE,
    ) -> None:
        if not average_mass > 0.0:
            raise ValueError(f"average_mass must be positive, got {average_mass}")
        self.dhat = float(dhat)
        self.average_mass = float(average_mass)
        self._energy_gradient = energy_gradient
        self._barrier_gradient = barrier_gradient
        self._bbox_diagonal = bbox_diagonal
        self.min_barrier_stiffness_scale = float(min_barrier_stiffness_scale)
        self.dhat_epsilon_scale = float(dhat_epsilon_scale)

        self.barrier_stiffness: float | None = None
        self.max_barrier_stiffness: float | None = None

    @property
    def initialized(self) -> bool:
        return self.barrier_stiffness is not None

    def initialize(self, x: np.ndarray) -> float:
        """Choose the stiffness from the gradients at x."""
        self.barrier_stiffness, self.max_barrier_stiffness = initial_barrier_stiffness(
            self._bbox_diagonal(x),
            self.dhat,
            self.average_mass,
            np.asarray(self._energy_gradient(x), dtype=np.float64),
            np.asarray(self._barrier_gradient(x), dtype=np.float64),
            self.min_barrier_stiffness_scale,
        )
        logger.debug(
            "adaptive barrier stiffness %g (max %g)",
            self.barrier_stiffness, self.max_barrier_stiffness,
        )
        return self.barrier_stiffness

    def update(self, prev_min_distance: float, min_distance: float, time_dependent: bool, x: np.ndarray) -> float:
        """
        Update after an accepted step.

        Time-dependent solves apply the doubling rule; otherwise the
        stiffness is re-initialized at x.
        """
        if not self.initialized or not time_dependent:
            return self.initialize(x)

        prev = self.barrier_stiffness
        self.barrier_stiffness = update_barrier_stiffness(
            prev_min_distance,
            min_distance,
            self.max_barrier_stiffness,
            prev,
            self._bbox_diagonal(x),
            self.dhat_epsilon_scale,
        )
        if self.barrier_stiffness != prev:
            logger.debug("updated barrier stiffness from %g to %g", prev, self.barrier_stiffness)
        return self.barrier_stiffness
