# MIT License (see LICENSE)
"""
Non-contact gradient providers.

The contact form needs the gradient of the rest of the objective (elastic,
inertial, body forces) to choose the initial barrier stiffness. Any callable
x -> gradient works; the helpers below cover the common terms.
"""
from __future__ import annotations
from typing import Protocol, Sequence

import numpy as np
import scipy as sp


class NonContactGradient(Protocol):
    """Gradient of the non-contact energy in solver dofs."""

    def __call__(self, x: np.ndarray) -> np.ndarray:
        ...


class InertiaGradient:
    """
    Gradient of the inertia term M x / a.

    Attributes:
        mass: Mass matrix (dense or sparse), or a per-dof lumped mass vector.
        acceleration_scaling: Time integrator scaling a (e.g. dt^2 for
            implicit Euler).
    """

    def __init__(self, mass, acceleration_scaling: float = 1.0) -> None:
        if not acceleration_scaling > 0.0:
            raise ValueError(f"acceleration_scaling must be positive, got {acceleration_scaling}")
        self.mass = mass
        self.acceleration_scaling = float(acceleration_scaling)

    def __call__(self, x: np.ndarray) -> np.ndarray:
        x = np.asarray(x, dtype=np.float64)
        if sp.sparse.issparse(self.mass) or np.ndim(self.mass) == 2:
            Mx = self.mass @ x
        else:
            Mx = np.asarray(self.mass, dtype=np.float64) * x
        return np.asarray(Mx, dtype=np.float64).reshape(-1) / self.acceleration_scaling


class CompositeGradient:
    """Sum of several gradient providers."""

    def __init__(self, terms: Sequence[NonContactGradient]) -> None:
        self.terms = list(terms)

    def __call__(self, x: np.ndarray) -> np.ndarray:
        x = np.asarray(x, dtype=np.float64)
        total = np.zeros_like(x)
        for term in self.terms:
            total += term(x)
        return total


def average_mass(mass) -> float:
    """
    Average nodal mass of a mass matrix or lumped mass vector.

    For a matrix this is the mean of its diagonal.
    """
    if sp.sparse.issparse(mass):
        diag = mass.diagonal()
    elif np.ndim(mass) == 2:
        diag = np.diag(mass)
    else:
        diag = np.asarray(mass, dtype=np.float64)
    if len(diag) == 0:
        raise ValueError("Cannot average an empty mass")
    return float(np.mean(diag))
