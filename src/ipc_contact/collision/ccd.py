# MIT License (see LICENSE)
"""
Continuous Collision Detection (CCD) for step-size limiting.

Computes the largest fraction of a linear trajectory V0 -> V1 along which no
pair of surface primitives touches. Each candidate pair is searched with
additive CCD (conservative advancement, Li et al. 2021, "Codimensional
Incremental Potential Contact", Alg. 1):

    l_p = bound on the relative speed of the pair (displacements made relative
          by subtracting their mean)
    advance t by rescaling * gap / l_p until the gap drops below
    (1 - rescaling) of the initial gap

Key concepts:
- Conservative: every reported time is collision-free, the search may stop
  short of the true time of impact.
- Step size: minimum over all candidates, 1 when there are none.
- Validation: optionally halve the step while the surface at that step has
  static intersections; fail when no positive step remains.
"""
from __future__ import annotations
import logging
from typing import Callable

import numpy as np

from ..constants import (
    DEFAULT_CCD_CONSERVATIVE_RESCALING,
    DEFAULT_CCD_MAX_ITERATIONS,
    DEFAULT_CCD_TOLERANCE,
)
from ..exceptions import StepSizeError
from ..types import CollisionMesh
from .broadphase import BroadPhase, Candidates, CandidateKind
from .distance import (
    edge_edge_distance_squared,
    point_edge_distance_squared,
    point_triangle_distance_squared,
)
from .intersection import has_intersections

logger = logging.getLogger(__name__)


def additive_ccd(
    x0: np.ndarray,
    dx: np.ndarray,
    distance_squared: Callable[..., float],
    split: int,
    tmax: float = 1.0,
    tolerance: float = DEFAULT_CCD_TOLERANCE,
    max_iterations: int = DEFAULT_CCD_MAX_ITERATIONS,
    conservative_rescaling: float = DEFAULT_CCD_CONSERVATIVE_RESCALING,
) -> float:
    """
    Conservative time of impact of one primitive pair.

    Args:
        x0: Points of the pair at the start (k, dim); the first `split` points
            belong to the first primitive.
        dx: Displacement of each point over the full step (k, dim).
        distance_squared: True squared distance of the pair, called with the
            k points as separate arguments.
        split: Number of points of the first primitive.
        tmax: Upper end of the searched interval.
        tolerance: Advances smaller than this end the search once the gap
            has shrunk below half its initial value.
        max_iterations: Iteration cap; the search ends at the current time.
        conservative_rescaling: Fraction of the gap one advance may close.

    Returns:
        A time in [0, tmax] such that the pair does not touch on [0, t).
        tmax when no contact happens before it; 0 when already touching.
    """
    d = float(np.sqrt(distance_squared(*x0)))
    if d == 0.0:
        return 0.0

    p = dx - dx.mean(axis=0)
    norms = np.linalg.norm(p, axis=1)
    l_p = float(norms[:split].max() + norms[split:].max())
    if l_p == 0.0:
        return tmax

    d0 = d
    g = (1.0 - conservative_rescaling) * d0
    t = 0.0
    t_l = conservative_rescaling * d / l_p
    for _ in range(max_iterations):
        x = x0 + (t + t_l) * p
        d = float(np.sqrt(distance_squared(*x)))
        if t > 0.0 and d < g:
            break
        # Tiny advances only end the search while the pair is closing in;
        # a pair sliding at a constant small gap keeps advancing.
        if t > 0.0 and t_l < tolerance and d < 0.5 * d0:
            break
        t += t_l
        if t >= tmax:
            return tmax
        t_l = 0.9 * d / l_p
    return t


def point_edge_ccd(x0: np.ndarray, dx: np.ndarray, **kwargs) -> float:
    """Additive CCD for points [p, e0, e1]."""
    return additive_ccd(x0, dx, point_edge_distance_squared, 1, **kwargs)


def point_triangle_ccd(x0: np.ndarray, dx: np.ndarray, **kwargs) -> float:
    """Additive CCD for points [p, t0, t1, t2]."""
    return additive_ccd(x0, dx, point_triangle_distance_squared, 1, **kwargs)


def edge_edge_ccd(x0: np.ndarray, dx: np.ndarray, **kwargs) -> float:
    """Additive CCD for points [a0, a1, b0, b1]."""
    return additive_ccd(x0, dx, edge_edge_distance_squared, 2, **kwargs)


def _candidate_vertices(mesh: CollisionMesh, kind: CandidateKind, first: int, second: int) -> list[int]:
    if kind == CandidateKind.EDGE_VERTEX:
        return [second, *mesh.edges[first]]
    if kind == CandidateKind.FACE_VERTEX:
        return [second, *mesh.faces[first]]
    return [*mesh.edges[first], *mesh.edges[second]]


_CCD_BY_KIND = {
    CandidateKind.EDGE_VERTEX: point_edge_ccd,
    CandidateKind.FACE_VERTEX: point_triangle_ccd,
    CandidateKind.EDGE_EDGE: edge_edge_ccd,
}


def compute_collision_free_stepsize(
    mesh: CollisionMesh,
    V0: np.ndarray,
    V1: np.ndarray,
    broad_phase: BroadPhase,
    tolerance: float = DEFAULT_CCD_TOLERANCE,
    max_iterations: int = DEFAULT_CCD_MAX_ITERATIONS,
    conservative_rescaling: float = DEFAULT_CCD_CONSERVATIVE_RESCALING,
    candidates: Candidates | None = None,
) -> float:
    """
    Largest step fraction in [0, 1] over which V0 -> V1 is collision-free.

    Args:
        mesh: Collision mesh supplying connectivity.
        V0: Collision vertices at the start (n, dim).
        V1: Collision vertices at the end (n, dim).
        broad_phase: Backend for a fresh candidate search.
        tolerance: CCD advance tolerance.
        max_iterations: CCD iteration cap per candidate.
        conservative_rescaling: CCD conservative rescaling.
        candidates: Candidates covering the whole trajectory; a fresh broad
                    phase with zero inflation runs when None.
    """
    if candidates is None:
        candidates = broad_phase.collision_candidates(mesh, V0, V1, inflation_radius=0.0)

    dV = V1 - V0
    step = 1.0
    for candidate in candidates:
        ids = _candidate_vertices(mesh, candidate.kind, candidate.first, candidate.second)
        t = _CCD_BY_KIND[candidate.kind](
            V0[ids], dV[ids],
            tmax=step,
            tolerance=tolerance,
            max_iterations=max_iterations,
            conservative_rescaling=conservative_rescaling,
        )
        step = min(step, t)
        if step == 0.0:
            break
    return step


def compute_max_step_size(
    mesh: CollisionMesh,
    V0: np.ndarray,
    V1: np.ndarray,
    broad_phase: BroadPhase,
    tolerance: float = DEFAULT_CCD_TOLERANCE,
    max_iterations: int = DEFAULT_CCD_MAX_ITERATIONS,
    conservative_rescaling: float = DEFAULT_CCD_CONSERVATIVE_RESCALING,
    validate: bool = True,
    candidates: Candidates | None = None,
) -> float:
    """
    Collision-free step fraction, optionally validated against intersections.

    With validation the surface at the step is reconstructed and checked for
    static intersections; while it intersects an error is logged and the step
    halved.

    Returns:
        The step fraction in (0, 1].

    Raises:
        StepSizeError: If no positive intersection-free step exists.
    """
    max_step = compute_collision_free_stepsize(
        mesh, V0, V1, broad_phase,
        tolerance=tolerance,
        max_iterations=max_iterations,
        conservative_rescaling=conservative_rescaling,
        candidates=candidates,
    )

    if validate:
        while max_step > 0.0:
            V_toi = V0 + max_step * (V1 - V0)
            if not has_intersections(mesh, V_toi, broad_phase):
                break
            linf = float(np.abs(V_toi - V0).max())
            logger.error(
                "Taking max_step=%g results in intersections (L∞=%g); halving the step",
                max_step, linf,
            )
            if linf == 0.0:
                raise StepSizeError(max_step, linf)
            max_step /= 2.0

    if max_step <= 0.0:
        linf = float(np.abs(max_step * (V1 - V0)).max()) if len(V0) else 0.0
        raise StepSizeError(max_step, linf)
    return max_step
