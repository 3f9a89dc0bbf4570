# MIT License (see LICENSE)
"""
Squared distances between surface primitives and their derivatives.

Every distance type is written in one bilinear form. For the k points of a
primitive pair P = [p_0, ..., p_{k-1}] the difference vector between the two
closest points is

    r(lambda) = sum_i c_i(lambda) p_i,   c(lambda) = C0 + sum_j lambda_j C_j

with fixed integer coefficient rows C0, C_j per type. The squared distance is
min over lambda of |r|^2, which is a small linear least-squares problem:

    B = [C_j P]_j,  a = C0 P,  (B B^T) lambda = -B a

Key concepts:
- Gradient: by the envelope theorem, d|r|^2/dp_i = 2 c_i r.
- Hessian: the implicit function theorem applied to the optimality condition
  gives H = F_xx - F_xl F_ll^{-1} F_xl^T, exact for the fixed type.
- Classification: the closest features of a point-edge, point-triangle or
  edge-edge pair (true segment/triangle distance) decide which fixed type a
  constraint uses.

Distance types for a fixed classification are unconstrained in lambda, e.g. a
point-edge constraint measures the distance to the infinite line through the
edge. This matches the distance the barrier sees between rebuilds.
"""
from __future__ import annotations
from enum import Enum

import numpy as np

from ..constants import EDGE_EDGE_PARALLEL_THRESHOLD


class DistanceType(Enum):
    """Closest-feature type of a constraint."""
    POINT_POINT = "point_point"
    POINT_EDGE = "point_edge"
    POINT_TRIANGLE = "point_triangle"
    EDGE_EDGE = "edge_edge"

    @property
    def num_vertices(self) -> int:
        return _COEFFICIENTS[self][0].shape[0]


# (C0, [C_1, ..., C_m]) per type. Point order:
#   PP [p, q]; PE [p, e0, e1]; PT [p, t0, t1, t2]; EE [a0, a1, b0, b1]
_COEFFICIENTS: dict[DistanceType, tuple[np.ndarray, np.ndarray]] = {
    DistanceType.POINT_POINT: (
        np.array([1.0, -1.0]),
        np.zeros((0, 2)),
    ),
    DistanceType.POINT_EDGE: (
        np.array([1.0, -1.0, 0.0]),
        np.array([[0.0, 1.0, -1.0]]),
    ),
    DistanceType.POINT_TRIANGLE: (
        np.array([1.0, -1.0, 0.0, 0.0]),
        np.array([[0.0, 1.0, -1.0, 0.0],
                  [0.0, 1.0, 0.0, -1.0]]),
    ),
    DistanceType.EDGE_EDGE: (
        np.array([1.0, 0.0, -1.0, 0.0]),
        np.array([[-1.0, 1.0, 0.0, 0.0],
                  [0.0, 0.0, 1.0, -1.0]]),
    ),
}


def _solve(P: np.ndarray, dtype: DistanceType):
    """
    Closest-point parameters of a fixed-type pair.

    Returns:
        (c, r, B, A) where c are the point weights, r the difference vector,
        B the rows C_j P and A = B B^T.
    """
    C0, C = _COEFFICIENTS[dtype]
    a = C0 @ P
    B = C @ P
    if len(C) == 0:
        return C0, a, B, np.zeros((0, 0))
    A = B @ B.T
    lam = np.linalg.lstsq(A, -(B @ a), rcond=None)[0]
    c = C0 + lam @ C
    r = c @ P
    return c, r, B, A


def _points(P) -> np.ndarray:
    return np.asarray(P, dtype=np.float64)


def distance_squared(P, dtype: DistanceType) -> float:
    """
    Squared distance of a primitive pair for a fixed distance type.

    Args:
        P: Points of the pair (k, dim) in the type's order.
        dtype: Distance type.
    """
    _, r, _, _ = _solve(_points(P), dtype)
    return float(r @ r)


def distance_squared_gradient(P, dtype: DistanceType) -> np.ndarray:
    """Gradient of distance_squared with respect to the flattened points (k*dim,)."""
    c, r, _, _ = _solve(_points(P), dtype)
    return 2.0 * np.outer(c, r).reshape(-1)


def distance_squared_hessian(P, dtype: DistanceType) -> np.ndarray:
    """Hessian of distance_squared with respect to the flattened points (k*dim, k*dim)."""
    P = _points(P)
    c, r, B, A = _solve(P, dtype)
    dim = P.shape[1]
    H = 2.0 * np.kron(np.outer(c, c), np.eye(dim))
    C = _COEFFICIENTS[dtype][1]
    if len(C) == 0:
        return H
    F = np.stack(
        [2.0 * (np.outer(C[j], r) + np.outer(c, B[j])).reshape(-1) for j in range(len(C))],
        axis=1,
    )
    return H - F @ np.linalg.pinv(2.0 * A) @ F.T


# --- Classification -----------------------------------------------------------
#
# Each classifier returns the distance type of the closest features and the
# local indices (into the classifier's argument order) of the points that form
# the fixed-type pair.

def classify_point_edge(p, e0, e1) -> tuple[DistanceType, tuple[int, ...]]:
    """Closest features of a point and a segment: PP to an endpoint or PE."""
    p, e0, e1 = _points(p), _points(e0), _points(e1)
    e = e1 - e0
    ee = float(e @ e)
    if ee == 0.0:
        return DistanceType.POINT_POINT, (0, 1)
    t = float((p - e0) @ e) / ee
    if t <= 0.0:
        return DistanceType.POINT_POINT, (0, 1)
    if t >= 1.0:
        return DistanceType.POINT_POINT, (0, 2)
    return DistanceType.POINT_EDGE, (0, 1, 2)


def classify_point_triangle(p, t0, t1, t2) -> tuple[DistanceType, tuple[int, ...]]:
    """
    Closest features of a point and a triangle.

    PT when the projection lies strictly inside the triangle, otherwise the
    nearest edge feature (PE or PP).
    """
    P = np.stack([_points(p), _points(t0), _points(t1), _points(t2)])
    n = np.cross(P[2] - P[1], P[3] - P[1])
    if float(n @ n) > 0.0:
        C0, C = _COEFFICIENTS[DistanceType.POINT_TRIANGLE]
        B = C @ P
        lam = np.linalg.solve(B @ B.T, -(B @ (C0 @ P)))
        if lam[0] > 0.0 and lam[1] > 0.0 and lam[0] + lam[1] < 1.0:
            return DistanceType.POINT_TRIANGLE, (0, 1, 2, 3)

    best = None
    for i, j in ((1, 2), (2, 3), (3, 1)):
        dtype, local = classify_point_edge(P[0], P[i], P[j])
        idx = tuple((0, i, j)[k] for k in local)
        d = distance_squared(P[list(idx)], dtype)
        if best is None or d < best[0]:
            best = (d, dtype, idx)
    return best[1], best[2]


def classify_edge_edge(ea0, ea1, eb0, eb1) -> tuple[DistanceType, tuple[int, ...]]:
    """
    Closest features of two segments.

    Closest points strictly inside both edges give EE. Nearly parallel or
    degenerate edges, and closest points clamped to an endpoint, fall back to
    the nearest endpoint-versus-segment pair (PE or PP).
    """
    P = np.stack([_points(ea0), _points(ea1), _points(eb0), _points(eb1)])
    u = P[1] - P[0]
    v = P[3] - P[2]
    uu, vv = float(u @ u), float(v @ v)
    if uu > 0.0 and vv > 0.0:
        if P.shape[1] == 3:
            w = np.cross(u, v)
            cross2 = float(w @ w)
        else:
            cross2 = float(u[0] * v[1] - u[1] * v[0]) ** 2
        if cross2 / (uu * vv) >= EDGE_EDGE_PARALLEL_THRESHOLD:
            C0, C = _COEFFICIENTS[DistanceType.EDGE_EDGE]
            B = C @ P
            lam = np.linalg.solve(B @ B.T, -(B @ (C0 @ P)))
            if 0.0 < lam[0] < 1.0 and 0.0 < lam[1] < 1.0:
                return DistanceType.EDGE_EDGE, (0, 1, 2, 3)

    best = None
    for p, (i, j) in ((0, (2, 3)), (1, (2, 3)), (2, (0, 1)), (3, (0, 1))):
        dtype, local = classify_point_edge(P[p], P[i], P[j])
        idx = tuple((p, i, j)[k] for k in local)
        d = distance_squared(P[list(idx)], dtype)
        if best is None or d < best[0]:
            best = (d, dtype, idx)
    return best[1], best[2]


# --- True (clamped) distances -------------------------------------------------

def point_edge_distance_squared(p, e0, e1) -> float:
    """Squared distance from a point to a segment."""
    P = np.stack([_points(p), _points(e0), _points(e1)])
    dtype, idx = classify_point_edge(*P)
    return distance_squared(P[list(idx)], dtype)


def point_triangle_distance_squared(p, t0, t1, t2) -> float:
    """Squared distance from a point to a triangle."""
    P = np.stack([_points(p), _points(t0), _points(t1), _points(t2)])
    dtype, idx = classify_point_triangle(*P)
    return distance_squared(P[list(idx)], dtype)


def edge_edge_distance_squared(ea0, ea1, eb0, eb1) -> float:
    """Squared distance between two segments."""
    P = np.stack([_points(ea0), _points(ea1), _points(eb0), _points(eb1)])
    dtype, idx = classify_edge_edge(*P)
    return distance_squared(P[list(idx)], dtype)
