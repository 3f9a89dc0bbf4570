# MIT License (see LICENSE)
"""
Static intersection tests for a displaced surface.

Used to validate a step size returned by CCD: the surface at that step must
not self-intersect.

Key concepts:
- 2D: two non-adjacent edges intersect (touching included).
- 3D: a non-incident edge pierces a triangle. Coplanar configurations are
  reported as non-intersecting.
"""
from __future__ import annotations

import numpy as np

from ..types import CollisionMesh
from .broadphase import BroadPhase


def orient2d(a: np.ndarray, b: np.ndarray, c: np.ndarray) -> float:
    """Twice the signed area of triangle abc (positive when counter-clockwise)."""
    return float((b[0] - a[0]) * (c[1] - a[1]) - (b[1] - a[1]) * (c[0] - a[0]))


def orient3d(a: np.ndarray, b: np.ndarray, c: np.ndarray, d: np.ndarray) -> float:
    """Six times the signed volume of tetrahedron abcd."""
    return float(np.linalg.det(np.stack([b - a, c - a, d - a])))


def _on_segment(a: np.ndarray, b: np.ndarray, p: np.ndarray) -> bool:
    """For collinear a, b, p: whether p lies within the box of segment ab."""
    return bool(np.all(np.minimum(a, b) <= p) and np.all(p <= np.maximum(a, b)))


def segments_intersect(a0, a1, b0, b1) -> bool:
    """Whether two 2D segments intersect or touch."""
    d1 = orient2d(b0, b1, a0)
    d2 = orient2d(b0, b1, a1)
    d3 = orient2d(a0, a1, b0)
    d4 = orient2d(a0, a1, b1)

    if ((d1 > 0 and d2 < 0) or (d1 < 0 and d2 > 0)) and ((d3 > 0 and d4 < 0) or (d3 < 0 and d4 > 0)):
        return True

    # Collinear and touching cases
    if d1 == 0 and _on_segment(b0, b1, a0):
        return True
    if d2 == 0 and _on_segment(b0, b1, a1):
        return True
    if d3 == 0 and _on_segment(a0, a1, b0):
        return True
    if d4 == 0 and _on_segment(a0, a1, b1):
        return True
    return False


def segment_triangle_intersect(p, q, a, b, c) -> bool:
    """Whether a 3D segment pq crosses or touches triangle abc (coplanar excluded)."""
    s1 = orient3d(a, b, c, p)
    s2 = orient3d(a, b, c, q)
    if (s1 > 0 and s2 > 0) or (s1 < 0 and s2 < 0) or (s1 == 0 and s2 == 0):
        return False

    o1 = orient3d(p, q, a, b)
    o2 = orient3d(p, q, b, c)
    o3 = orient3d(p, q, c, a)
    return (o1 >= 0 and o2 >= 0 and o3 >= 0) or (o1 <= 0 and o2 <= 0 and o3 <= 0)


def has_intersections(mesh: CollisionMesh, V: np.ndarray, broad_phase: BroadPhase) -> bool:
    """
    Check a displaced surface for self-intersections.

    Args:
        mesh: Collision mesh supplying connectivity.
        V: Displaced collision vertices (n, dim).
        broad_phase: Backend used to find overlapping primitive pairs.

    Returns:
        True if any pair of non-adjacent primitives intersects.
    """
    if mesh.dim == 2:
        for i, j in broad_phase.edge_edge_pairs(mesh, V):
            a0, a1 = mesh.edges[i]
            b0, b1 = mesh.edges[j]
            if segments_intersect(V[a0], V[a1], V[b0], V[b1]):
                return True
        return False

    for e, f in broad_phase.edge_face_pairs(mesh, V):
        e0, e1 = mesh.edges[e]
        t0, t1, t2 = mesh.faces[f]
        if segment_triangle_intersect(V[e0], V[e1], V[t0], V[t1], V[t2]):
            return True
    return False
