# MIT License (see LICENSE)
"""
Utility functions for array conversion and small linear-algebra helpers.

Provides the low-level helpers shared by the collision and barrier code:
flattening between per-vertex and per-dof layouts, bounding box measures,
and projection of small dense matrices onto the positive semi-definite cone.
"""
from __future__ import annotations

import numpy as np


def f64(x) -> np.ndarray:
    """
    Convert any array-like to a float64 numpy array.

    Used throughout the codebase to ensure consistent numeric precision
    and allow tuple/list inputs for positions and displacements.
    """
    return np.array(x, dtype=np.float64)


def unflatten(x: np.ndarray, dim: int) -> np.ndarray:
    """
    Reshape a flat dof vector [x0, y0, (z0), x1, ...] into an (n, dim) array.

    Raises:
        ValueError: If the vector length is not a multiple of dim.
    """
    x = np.asarray(x, dtype=np.float64)
    if x.ndim != 1 or x.size % dim != 0:
        raise ValueError(f"Cannot unflatten vector of size {x.size} into rows of {dim}")
    return x.reshape(-1, dim)


def flatten(V: np.ndarray) -> np.ndarray:
    """Row-major flatten of an (n, dim) array into a dof vector."""
    return np.ascontiguousarray(V, dtype=np.float64).reshape(-1)


def world_bbox_diagonal_length(V: np.ndarray) -> float:
    """
    Length of the diagonal of the axis-aligned box enclosing all vertices.

    Returns 0 for an empty vertex array.
    """
    if len(V) == 0:
        return 0.0
    return float(np.linalg.norm(V.max(axis=0) - V.min(axis=0)))


def project_to_psd(H: np.ndarray) -> np.ndarray:
    """
    Project a symmetric matrix onto the positive semi-definite cone.

    Negative eigenvalues are clamped to zero; the result is the nearest PSD
    matrix in the Frobenius norm.
    """
    H = 0.5 * (H + H.T)
    eigvals, eigvecs = np.linalg.eigh(H)
    if eigvals[0] >= 0.0:
        return H
    eigvals = np.maximum(eigvals, 0.0)
    return (eigvecs * eigvals) @ eigvecs.T


def dof_indices(vertices: np.ndarray | tuple[int, ...], dim: int) -> np.ndarray:
    """
    Global dof indices of a list of vertices, vertex-major.

    Vertex v owns dofs [v*dim, v*dim + dim).
    """
    v = np.asarray(vertices, dtype=np.int64)
    return (v[:, None] * dim + np.arange(dim)).reshape(-1)
