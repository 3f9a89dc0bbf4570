# MIT License (see LICENSE)
"""
Collision detection subsystem.

This subpackage provides:
    - Broadphase: Candidate primitive pairs from overlapping boxes.
    - Distance: Squared primitive distances, derivatives, classification.
    - Constraints: Active constraint sets and their builder.
    - CCD: Collision-free step sizes and intersection validation.

Typical usage:
    from ipc_contact.collision import make_broad_phase, ConstraintSetBuilder

    broad_phase = make_broad_phase("hash_grid")
    builder = ConstraintSetBuilder(mesh, dhat=1e-3, broad_phase=broad_phase)
    constraint_set = builder.build(V)
"""
from .broadphase import (
    BroadPhase,
    BroadPhaseMethod,
    BruteForceBroadPhase,
    Candidate,
    CandidateKind,
    Candidates,
    HashGridBroadPhase,
    SweepAndPruneBroadPhase,
    make_broad_phase,
)
from .distance import (
    DistanceType,
    classify_edge_edge,
    classify_point_edge,
    classify_point_triangle,
    distance_squared,
    distance_squared_gradient,
    distance_squared_hessian,
)
from .constraints import Constraint, ConstraintSet
from .manager import ConstraintSetBuilder
from .ccd import (
    additive_ccd,
    compute_collision_free_stepsize,
    compute_max_step_size,
)
from .intersection import has_intersections

__all__ = [
    # Broadphase
    "BroadPhase",
    "BroadPhaseMethod",
    "BruteForceBroadPhase",
    "HashGridBroadPhase",
    "SweepAndPruneBroadPhase",
    "Candidate",
    "CandidateKind",
    "Candidates",
    "make_broad_phase",
    # Distance
    "DistanceType",
    "classify_point_edge",
    "classify_point_triangle",
    "classify_edge_edge",
    "distance_squared",
    "distance_squared_gradient",
    "distance_squared_hessian",
    # Constraints
    "Constraint",
    "ConstraintSet",
    "ConstraintSetBuilder",
    # CCD
    "additive_ccd",
    "compute_collision_free_stepsize",
    "compute_max_step_size",
    "has_intersections",
]
