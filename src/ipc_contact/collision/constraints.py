# MIT License (see LICENSE)
"""
Contact constraints between surface primitives.

A constraint fixes the closest-feature pair of a candidate (point-point,
point-edge, point-triangle or edge-edge) at build time. Its squared distance
is then always evaluated with that fixed type until the set is rebuilt.

Key concepts:
- Canonical key: the distance type plus the vertex tuple in a canonical order,
  so the same feature pair found through several candidates merges into one
  constraint.
- Multiplicity: how many candidates reduced to the same key; the barrier of
  the constraint is weighted by it.
- ConstraintSet: an immutable, sorted snapshot tied to the displaced surface
  it was built for.
"""
from __future__ import annotations
from dataclasses import dataclass, field
from typing import Iterator

import numpy as np

from .distance import (
    DistanceType,
    distance_squared,
    distance_squared_gradient,
    distance_squared_hessian,
)

_TYPE_ORDER = {t: i for i, t in enumerate(DistanceType)}


def canonical_vertices(dtype: DistanceType, vertices: tuple[int, ...]) -> tuple[int, ...]:
    """
    Reorder a constraint's vertices into canonical form.

    The distance of every type is invariant under these reorderings:
    PP is symmetric, the edge of PE and the triangle of PT are unordered, and
    the two edges of EE (and their endpoints) are unordered.
    """
    v = tuple(int(i) for i in vertices)
    if dtype == DistanceType.POINT_POINT:
        return tuple(sorted(v))
    if dtype in (DistanceType.POINT_EDGE, DistanceType.POINT_TRIANGLE):
        return (v[0],) + tuple(sorted(v[1:]))
    ea = tuple(sorted(v[:2]))
    eb = tuple(sorted(v[2:]))
    return min(ea, eb) + max(ea, eb)


@dataclass(frozen=True)
class Constraint:
    """
    One active contact constraint.

    Attributes:
        dtype: Fixed distance type.
        vertices: Collision vertex indices in the type's point order.
        multiplicity: Number of candidates merged into this constraint.
    """
    dtype: DistanceType
    vertices: tuple[int, ...]
    multiplicity: int = 1

    @property
    def key(self) -> tuple:
        return (_TYPE_ORDER[self.dtype], self.vertices)

    def points(self, V: np.ndarray) -> np.ndarray:
        """Positions of the constraint's vertices in a displaced surface."""
        return V[list(self.vertices)]

    def distance_squared(self, V: np.ndarray) -> float:
        return distance_squared(self.points(V), self.dtype)

    def distance_squared_gradient(self, V: np.ndarray) -> np.ndarray:
        return distance_squared_gradient(self.points(V), self.dtype)

    def distance_squared_hessian(self, V: np.ndarray) -> np.ndarray:
        return distance_squared_hessian(self.points(V), self.dtype)


@dataclass
class ConstraintSet:
    """
    Ordered, deduplicated collection of active constraints.

    Attributes:
        constraints: Constraints sorted by canonical key.
        vertices: Copy of the displaced surface the set was built for.
    """
    constraints: list[Constraint] = field(default_factory=list)
    vertices: np.ndarray | None = None

    def __len__(self) -> int:
        return len(self.constraints)

    def __iter__(self) -> Iterator[Constraint]:
        return iter(self.constraints)

    def __getitem__(self, i: int) -> Constraint:
        return self.constraints[i]

    @property
    def empty(self) -> bool:
        return len(self.constraints) == 0

    def count(self, dtype: DistanceType) -> int:
        """Number of constraints of one distance type."""
        return sum(1 for c in self.constraints if c.dtype == dtype)

    def built_for(self, V: np.ndarray) -> bool:
        """True if the set was built for exactly this displaced surface."""
        return self.vertices is not None and np.array_equal(self.vertices, V)

    @classmethod
    def from_features(
        cls,
        features: list[tuple[DistanceType, tuple[int, ...]]],
        V: np.ndarray,
    ) -> "ConstraintSet":
        """
        Merge classified feature pairs into a sorted constraint set.

        Args:
            features: (type, vertices) of every active candidate.
            V: The displaced surface the features were classified on.
        """
        counts: dict[tuple[DistanceType, tuple[int, ...]], int] = {}
        for dtype, verts in features:
            key = (dtype, canonical_vertices(dtype, verts))
            counts[key] = counts.get(key, 0) + 1
        constraints = [Constraint(dtype, verts, n) for (dtype, verts), n in counts.items()]
        constraints.sort(key=lambda c: c.key)
        return cls(constraints, np.array(V, dtype=np.float64, copy=True))
