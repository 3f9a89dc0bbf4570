# MIT License (see LICENSE)
"""
Core type definitions for the contact subsystem.

Defines the CollisionMesh: the part of a body's boundary that takes part in
contact. The mesh is owned by the caller and never modified here. It knows

  - the rest positions of the full boundary node set,
  - which of those nodes are collision vertices,
  - the collision edges (and faces in 3D),

and maps the solver's reduced coordinates (a flat displacement vector over
the full node set) to displaced collision vertices:

    V = vertices(rest_positions + unflatten(x, dim))

Derivatives computed on collision vertices are mapped back to the full dof
layout with to_full_dof.
"""
from __future__ import annotations

import numpy as np
import scipy as sp

from .util import f64, unflatten, world_bbox_diagonal_length


def edges_from_faces(faces: np.ndarray) -> np.ndarray:
    """
    Unique undirected edges of a triangle list, each stored as (min, max).

    Args:
        faces: Integer array (k, 3).

    Returns:
        Integer array (m, 2), sorted lexicographically.
    """
    if len(faces) == 0:
        return np.zeros((0, 2), dtype=np.int64)
    e = np.concatenate([faces[:, [0, 1]], faces[:, [1, 2]], faces[:, [2, 0]]])
    e = np.sort(e, axis=1)
    return np.unique(e, axis=0)


class CollisionMesh:
    """
    Boundary surface participating in contact.

    Attributes:
        rest_positions: Full boundary node positions (n_full, dim).
        vertex_indices: Full-node index of each collision vertex (n,).
        edges: Collision edges as collision-vertex index pairs (m, 2).
        faces: Collision triangles (k, 3); empty in 2D.

    Example:
        mesh = CollisionMesh(rest, faces=tris)
        V = mesh.displace(x)          # (n, 3) displaced collision vertices
        g_full = mesh.to_full_dof(g)  # gradient in solver dofs
    """

    def __init__(
        self,
        rest_positions: np.ndarray,
        edges: np.ndarray | None = None,
        faces: np.ndarray | None = None,
        vertex_indices: np.ndarray | None = None,
    ) -> None:
        rest = f64(rest_positions)
        if rest.ndim != 2 or rest.shape[1] not in (2, 3):
            raise ValueError(f"rest_positions must have shape (n, 2) or (n, 3), got {rest.shape}")
        self.rest_positions = rest

        if vertex_indices is None:
            vertex_indices = np.arange(len(rest), dtype=np.int64)
        vertex_indices = np.asarray(vertex_indices, dtype=np.int64)
        if vertex_indices.size and (vertex_indices.min() < 0 or vertex_indices.max() >= len(rest)):
            raise ValueError("vertex_indices out of range of rest_positions")
        self.vertex_indices = vertex_indices

        n = len(vertex_indices)
        faces = np.zeros((0, 3), dtype=np.int64) if faces is None else np.asarray(faces, dtype=np.int64).reshape(-1, 3)
        if self.dim == 2 and len(faces):
            raise ValueError("2D collision meshes cannot have faces")
        if edges is None:
            edges = edges_from_faces(faces)
        edges = np.asarray(edges, dtype=np.int64).reshape(-1, 2)
        for name, arr in (("edges", edges), ("faces", faces)):
            if arr.size and (arr.min() < 0 or arr.max() >= n):
                raise ValueError(f"{name} reference vertices outside the collision mesh")
        self.edges = edges
        self.faces = faces

        self._selection: sp.sparse.csr_matrix | None = None

    @property
    def dim(self) -> int:
        """Spatial dimension (2 or 3)."""
        return int(self.rest_positions.shape[1])

    @property
    def num_vertices(self) -> int:
        """Number of collision vertices."""
        return len(self.vertex_indices)

    @property
    def full_ndof(self) -> int:
        """Number of reduced/full solver dofs (n_full * dim)."""
        return self.rest_positions.size

    @property
    def rest_vertices(self) -> np.ndarray:
        """Collision vertices at rest."""
        return self.vertices(self.rest_positions)

    def vertices(self, full_positions: np.ndarray) -> np.ndarray:
        """Select collision vertices from full node positions (n_full, dim)."""
        return full_positions[self.vertex_indices]

    def displace(self, x: np.ndarray) -> np.ndarray:
        """
        Displaced collision vertices for a reduced coordinate vector.

        Args:
            x: Flat displacement of the full node set, length n_full * dim.

        Returns:
            Array (n, dim) of displaced collision vertex positions.
        """
        U = unflatten(x, self.dim)
        if U.shape != self.rest_positions.shape:
            raise ValueError(
                f"Displacement has {x.size} dofs, expected {self.rest_positions.size}"
            )
        return self.vertices(self.rest_positions + U)

    def bbox_diagonal(self, V: np.ndarray) -> float:
        """Bounding-box diagonal of a displaced surface."""
        return world_bbox_diagonal_length(V)

    @property
    def selection_matrix(self) -> sp.sparse.csr_matrix:
        """
        Sparse map from full dofs to collision-vertex dofs.

        S has shape (n * dim, n_full * dim) with a single one per row.
        """
        if self._selection is None:
            dim = self.dim
            rows = np.arange(self.num_vertices * dim)
            cols = (self.vertex_indices[:, None] * dim + np.arange(dim)).reshape(-1)
            data = np.ones(len(rows), dtype=np.float64)
            self._selection = sp.sparse.coo_matrix(
                (data, (rows, cols)),
                shape=(len(rows), self.full_ndof),
            ).tocsr()
        return self._selection

    def to_full_dof(self, value):
        """
        Map a collision-vertex gradient or Hessian to the full dof layout.

        Vectors are scattered (S^T g); matrices are congruence-mapped
        (S^T H S). Dense and sparse matrices are both accepted.
        """
        S = self.selection_matrix
        if sp.sparse.issparse(value):
            return (S.T @ value @ S).tocsr()
        value = np.asarray(value)
        if value.ndim == 1:
            return S.T @ value
        return S.T @ (S.T @ value.T).T
