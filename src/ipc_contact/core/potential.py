# MIT License (see LICENSE)
"""
Barrier potential of a constraint set.

    P(V) = sum_c multiplicity_c * b(d_c(V), dhat^2)

with d_c the squared distance of constraint c for its fixed type. All
functions here use unit stiffness and work on collision vertices; the
ContactForm scales by the barrier stiffness and maps to solver dofs.

Key concepts:
- Gradient per constraint: b'(d) grad d.
- Hessian per constraint: b''(d) grad d grad d^T + b'(d) hess d, optionally
  projected onto the PSD cone before assembly.
- Per-constraint blocks are scattered into a sparse COO matrix and summed on
  conversion to CSR, so the result does not depend on evaluation order.
"""
from __future__ import annotations

import numpy as np
import scipy as sp

from ..collision.constraints import ConstraintSet
from ..util import dof_indices, project_to_psd as _project_to_psd
from .barrier import barrier, barrier_gradient, barrier_hessian


def compute_barrier_potential(V: np.ndarray, constraint_set: ConstraintSet, dhat: float) -> float:
    """Sum of barrier values over the set (unit stiffness)."""
    D = dhat * dhat
    total = 0.0
    for c in constraint_set:
        total += c.multiplicity * barrier(c.distance_squared(V), D)
    return float(total)


def compute_barrier_potential_gradient(
    V: np.ndarray, constraint_set: ConstraintSet, dhat: float
) -> np.ndarray:
    """
    Gradient of the barrier potential with respect to the flattened vertices.

    Returns:
        Dense vector of length V.size.
    """
    D = dhat * dhat
    dim = V.shape[1]
    grad = np.zeros(V.size, dtype=np.float64)
    for c in constraint_set:
        d = c.distance_squared(V)
        if d >= D:
            continue
        local = c.multiplicity * barrier_gradient(d, D) * c.distance_squared_gradient(V)
        np.add.at(grad, dof_indices(c.vertices, dim), local)
    return grad


def compute_barrier_potential_hessian(
    V: np.ndarray,
    constraint_set: ConstraintSet,
    dhat: float,
    project_to_psd: bool = False,
) -> sp.sparse.csr_matrix:
    """
    Hessian of the barrier potential with respect to the flattened vertices.

    Args:
        V: Displaced collision vertices (n, dim).
        constraint_set: Active constraints.
        dhat: Activation distance.
        project_to_psd: Clamp negative eigenvalues of every local block.

    Returns:
        Sparse (V.size, V.size) CSR matrix.
    """
    D = dhat * dhat
    dim = V.shape[1]
    ndof = V.size
    rows, cols, vals = [], [], []
    for c in constraint_set:
        d = c.distance_squared(V)
        if d >= D:
            continue
        g = c.distance_squared_gradient(V)
        H = barrier_hessian(d, D) * np.outer(g, g) + barrier_gradient(d, D) * c.distance_squared_hessian(V)
        H *= c.multiplicity
        if project_to_psd:
            H = _project_to_psd(H)
        idx = dof_indices(c.vertices, dim)
        rows.append(np.repeat(idx, len(idx)))
        cols.append(np.tile(idx, len(idx)))
        vals.append(H.reshape(-1))

    if not vals:
        return sp.sparse.csr_matrix((ndof, ndof), dtype=np.float64)
    return sp.sparse.coo_matrix(
        (np.concatenate(vals), (np.concatenate(rows), np.concatenate(cols))),
        shape=(ndof, ndof),
    ).tocsr()


def compute_minimum_distance(V: np.ndarray, constraint_set: ConstraintSet) -> float:
    """Smallest unsquared distance over the set, inf when it is empty."""
    if constraint_set.empty:
        return np.inf
    return float(np.sqrt(min(c.distance_squared(V) for c in constraint_set)))
