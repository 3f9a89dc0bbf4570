# MIT License (see LICENSE)
"""
Barrier energy and stiffness control.

This subpackage provides:
    - Barrier: The log barrier on squared distances and its derivatives.
    - Potential: Value, gradient and sparse Hessian over a constraint set.
    - Adaptive stiffness: Initial barrier stiffness and its update rule.
    - Energies: Non-contact gradient providers (inertia, sums).

Typical usage:
    from ipc_contact.core import compute_barrier_potential_gradient

    g = compute_barrier_potential_gradient(V, constraint_set, dhat)
"""
from .barrier import barrier, barrier_gradient, barrier_hessian
from .potential import (
    compute_barrier_potential,
    compute_barrier_potential_gradient,
    compute_barrier_potential_hessian,
    compute_minimum_distance,
)
from .adaptive_stiffness import (
    BarrierStiffnessController,
    initial_barrier_stiffness,
    update_barrier_stiffness,
)
from .energies import CompositeGradient, InertiaGradient, NonContactGradient, average_mass

__all__ = [
    # Barrier
    "barrier",
    "barrier_gradient",
    "barrier_hessian",
    # Potential
    "compute_barrier_potential",
    "compute_barrier_potential_gradient",
    "compute_barrier_potential_hessian",
    "compute_minimum_distance",
    # Stiffness
    "BarrierStiffnessController",
    "initial_barrier_stiffness",
    "update_barrier_stiffness",
    # Energies
    "NonContactGradient",
    "InertiaGradient",
    "CompositeGradient",
    "average_mass",
]
