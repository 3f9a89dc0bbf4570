# MIT License (see LICENSE)
"""
Broad-phase candidate generation for surface contact.

Every surface primitive (vertex, edge, face) gets an axis-aligned bounding box
(AABB) enclosing its vertices at the start and, for swept queries, the end
configuration, inflated by an inflation radius. Pairs of primitives whose boxes
overlap are reported as candidates. Any pair that is not reported is
guaranteed to be farther apart than the inflation distance over the whole
motion; false positives are allowed and removed by the narrow phase.

Key concepts:
- 2D surfaces produce edge-vertex candidates.
- 3D surfaces produce edge-edge and face-vertex candidates.
- Adjacent primitives (sharing a vertex) are never candidates.
- Backends only differ in how they find overlapping boxes; all of them return
  the same, lexicographically sorted pairs.
"""
from __future__ import annotations
import itertools
from abc import ABC, abstractmethod
from collections import defaultdict
from dataclasses import dataclass, field
from enum import Enum
from typing import Iterator, NamedTuple

import numpy as np

from ..types import CollisionMesh


class BroadPhaseMethod(str, Enum):
    """Available broad-phase backends."""
    BRUTE_FORCE = "brute_force"
    HASH_GRID = "hash_grid"
    SWEEP_AND_PRUNE = "sweep_and_prune"
    SWEEP_AND_TINIEST_QUEUE_GPU = "sweep_and_tiniest_queue_gpu"


class CandidateKind(Enum):
    EDGE_VERTEX = "edge_vertex"
    EDGE_EDGE = "edge_edge"
    FACE_VERTEX = "face_vertex"


class Candidate(NamedTuple):
    """A single candidate pair: (edge, vertex), (edge, edge) or (face, vertex)."""
    kind: CandidateKind
    first: int
    second: int


def _empty_pairs() -> np.ndarray:
    return np.zeros((0, 2), dtype=np.int64)


@dataclass
class Candidates:
    """
    Result of one broad-phase query.

    Attributes:
        ev: Edge-vertex pairs (2D surfaces), shape (k, 2).
        ee: Edge-edge pairs with first < second (3D surfaces), shape (k, 2).
        fv: Face-vertex pairs (3D surfaces), shape (k, 2).
    """
    ev: np.ndarray = field(default_factory=_empty_pairs)
    ee: np.ndarray = field(default_factory=_empty_pairs)
    fv: np.ndarray = field(default_factory=_empty_pairs)

    def __len__(self) -> int:
        return len(self.ev) + len(self.ee) + len(self.fv)

    def __iter__(self) -> Iterator[Candidate]:
        for kind, pairs in (
            (CandidateKind.EDGE_VERTEX, self.ev),
            (CandidateKind.EDGE_EDGE, self.ee),
            (CandidateKind.FACE_VERTEX, self.fv),
        ):
            for a, b in pairs:
                yield Candidate(kind, int(a), int(b))

    @property
    def empty(self) -> bool:
        return len(self) == 0

    def clear(self) -> None:
        self.ev = _empty_pairs()
        self.ee = _empty_pairs()
        self.fv = _empty_pairs()


def primitive_boxes(
    V0: np.ndarray,
    V1: np.ndarray | None,
    elements: np.ndarray,
    inflation_radius: float = 0.0,
) -> tuple[np.ndarray, np.ndarray]:
    """
    AABBs of mesh primitives, optionally swept over a linear motion.

    Args:
        V0: Vertex positions at the start (n, dim).
        V1: Vertex positions at the end, or None for a static query.
        elements: Vertex indices per primitive (k, nv).
        inflation_radius: Amount added on every side of each box.

    Returns:
        (lower, upper) corner arrays, each (k, dim).
    """
    pts = V0[elements]
    if V1 is not None:
        pts = np.concatenate([pts, V1[elements]], axis=1)
    lower = pts.min(axis=1) - inflation_radius
    upper = pts.max(axis=1) + inflation_radius
    return lower, upper


def _sorted_unique(pairs: np.ndarray) -> np.ndarray:
    if len(pairs) == 0:
        return _empty_pairs()
    return np.unique(np.asarray(pairs, dtype=np.int64).reshape(-1, 2), axis=0)


def _boxes_overlap(lo_a: np.ndarray, hi_a: np.ndarray, lo_b: np.ndarray, hi_b: np.ndarray) -> bool:
    return bool(np.all(lo_a <= hi_b) and np.all(lo_b <= hi_a))


class BroadPhase(ABC):
    """
    Strategy interface for finding overlapping primitive boxes.

    Subclasses implement overlapping_pairs; the mesh-level queries, adjacency
    filtering and ordering live here so every backend reports identical sets.
    """

    #: Whether candidates from a line-search bracket may be reused for CCD.
    supports_cached_candidates: bool = True

    @abstractmethod
    def overlapping_pairs(
        self,
        lo_a: np.ndarray,
        hi_a: np.ndarray,
        lo_b: np.ndarray,
        hi_b: np.ndarray,
    ) -> np.ndarray:
        """
        Find all (i, j) such that box i of set A overlaps box j of set B.

        Touching boxes count as overlapping.

        Returns:
            Integer array (k, 2), in any order.
        """
        ...

    def self_overlapping_pairs(self, lo: np.ndarray, hi: np.ndarray) -> np.ndarray:
        """All (i, j) with i < j whose boxes in one set overlap."""
        pairs = self.overlapping_pairs(lo, hi, lo, hi)
        if len(pairs) == 0:
            return _empty_pairs()
        return pairs[pairs[:, 0] < pairs[:, 1]]

    def collision_candidates(
        self,
        mesh: CollisionMesh,
        V0: np.ndarray,
        V1: np.ndarray | None = None,
        inflation_radius: float = 0.0,
    ) -> Candidates:
        """
        Candidate primitive pairs for one configuration or a linear motion.

        Args:
            mesh: Collision mesh providing connectivity.
            V0: Collision vertices at the start (n, dim).
            V1: Collision vertices at the end, or None for a static query.
            inflation_radius: Box inflation (half the distance of interest).

        Returns:
            Sorted Candidates with adjacent pairs removed.
        """
        out = Candidates()
        if len(V0) == 0:
            return out

        vertices = np.arange(len(V0), dtype=np.int64)[:, None]
        v_lo, v_hi = primitive_boxes(V0, V1, vertices, inflation_radius)
        e_lo, e_hi = primitive_boxes(V0, V1, mesh.edges, inflation_radius)

        if mesh.dim == 2:
            if len(mesh.edges):
                pairs = self.overlapping_pairs(e_lo, e_hi, v_lo, v_hi)
                out.ev = _filter_edge_vertex(mesh.edges, pairs)
            return out

        if len(mesh.edges):
            pairs = self.self_overlapping_pairs(e_lo, e_hi)
            out.ee = _filter_edge_edge(mesh.edges, pairs)
        if len(mesh.faces):
            f_lo, f_hi = primitive_boxes(V0, V1, mesh.faces, inflation_radius)
            pairs = self.overlapping_pairs(f_lo, f_hi, v_lo, v_hi)
            out.fv = _filter_face_vertex(mesh.faces, pairs)
        return out

    def edge_face_pairs(self, mesh: CollisionMesh, V: np.ndarray) -> np.ndarray:
        """Static (edge, face) pairs of a 3D surface, excluding incident pairs."""
        if len(mesh.edges) == 0 or len(mesh.faces) == 0:
            return _empty_pairs()
        e_lo, e_hi = primitive_boxes(V, None, mesh.edges)
        f_lo, f_hi = primitive_boxes(V, None, mesh.faces)
        pairs = self.overlapping_pairs(e_lo, e_hi, f_lo, f_hi)
        if len(pairs) == 0:
            return _empty_pairs()
        e = mesh.edges[pairs[:, 0]]
        f = mesh.faces[pairs[:, 1]]
        shared = (e[:, :, None] == f[:, None, :]).any(axis=(1, 2))
        return _sorted_unique(pairs[~shared])

    def edge_edge_pairs(self, mesh: CollisionMesh, V: np.ndarray) -> np.ndarray:
        """Static (edge, edge) pairs with first < second, excluding adjacent edges."""
        if len(mesh.edges) == 0:
            return _empty_pairs()
        e_lo, e_hi = primitive_boxes(V, None, mesh.edges)
        return _filter_edge_edge(mesh.edges, self.self_overlapping_pairs(e_lo, e_hi))


def _filter_edge_vertex(edges: np.ndarray, pairs: np.ndarray) -> np.ndarray:
    if len(pairs) == 0:
        return _empty_pairs()
    e = edges[pairs[:, 0]]
    v = pairs[:, 1]
    keep = (e[:, 0] != v) & (e[:, 1] != v)
    return _sorted_unique(pairs[keep])


def _filter_edge_edge(edges: np.ndarray, pairs: np.ndarray) -> np.ndarray:
    if len(pairs) == 0:
        return _empty_pairs()
    pairs = np.sort(pairs, axis=1)
    a = edges[pairs[:, 0]]
    b = edges[pairs[:, 1]]
    shared = (a[:, :, None] == b[:, None, :]).any(axis=(1, 2))
    keep = ~shared & (pairs[:, 0] != pairs[:, 1])
    return _sorted_unique(pairs[keep])


def _filter_face_vertex(faces: np.ndarray, pairs: np.ndarray) -> np.ndarray:
    if len(pairs) == 0:
        return _empty_pairs()
    f = faces[pairs[:, 0]]
    v = pairs[:, 1]
    keep = np.all(f != v[:, None], axis=1)
    return _sorted_unique(pairs[keep])


class BruteForceBroadPhase(BroadPhase):
    """
    Test every box of A against every box of B with numpy broadcasting.

    Quadratic, but exact and simple; used as the reference backend.
    """

    def __init__(self, block_size: int = 1024) -> None:
        self.block_size = int(block_size)

    def overlapping_pairs(self, lo_a, hi_a, lo_b, hi_b) -> np.ndarray:
        if len(lo_a) == 0 or len(lo_b) == 0:
            return _empty_pairs()
        out = []
        for start in range(0, len(lo_a), self.block_size):
            stop = start + self.block_size
            overlap = np.all(
                (lo_a[start:stop, None, :] <= hi_b[None, :, :])
                & (lo_b[None, :, :] <= hi_a[start:stop, None, :]),
                axis=2,
            )
            i, j = np.nonzero(overlap)
            out.append(np.stack([i + start, j], axis=1))
        return np.concatenate(out).astype(np.int64)


def _pairs_against_all(rows: np.ndarray, lo_a, hi_a, lo_b, hi_b) -> np.ndarray:
    """(i, j) for every i in rows and every box j of B overlapping box i of A."""
    if len(rows) == 0 or len(lo_b) == 0:
        return _empty_pairs()
    overlap = np.all(
        (lo_a[rows, None, :] <= hi_b[None, :, :]) & (lo_b[None, :, :] <= hi_a[rows, None, :]),
        axis=2,
    )
    i, j = np.nonzero(overlap)
    return np.stack([rows[i], j], axis=1).astype(np.int64)


class HashGridBroadPhase(BroadPhase):
    """
    Spatial hash grid for broad-phase culling.

    Partitions space into cells of uniform size. Boxes of set A are inserted
    into all cells they overlap; each box of set B looks up the cells it
    overlaps and is tested against the boxes found there. Duplicate pairs are
    eliminated using a seen set.

    Boxes overlapping more than max_cells_per_box cells (the long swept boxes
    of a large trial step) stay out of the grid and are tested against the
    whole other set at once.

    Attributes:
        cell: Fixed cell size, or None to pick one per query from the median
              box extent.
        max_cells_per_box: Cell count above which a box is oversized.

    Example:
        broad_phase = HashGridBroadPhase()
        candidates = broad_phase.collision_candidates(mesh, V0, V1, inflation_radius=1e-3)
    """

    def __init__(self, cell_size: float | None = None, max_cells_per_box: int = 64) -> None:
        """
        Initialize the spatial hash grid.

        Args:
            cell_size: Size of each grid cell. Larger cells reduce insertion
                       cost but increase false positives. None picks twice the
                       median non-zero box extent of each query.
            max_cells_per_box: Boxes overlapping more cells than this are
                       handled outside the grid.
        """
        if max_cells_per_box < 1:
            raise ValueError(f"max_cells_per_box must be at least 1, got {max_cells_per_box}")
        self.cell = None if cell_size is None else float(cell_size)
        self.max_cells_per_box = int(max_cells_per_box)

    def _cell_size(self, lo_a, hi_a, lo_b, hi_b) -> float:
        if self.cell is not None:
            return self.cell
        extents = np.concatenate([hi_a - lo_a, hi_b - lo_b]).max(axis=1)
        positive = extents[extents > 0.0]
        if len(positive):
            return 2.0 * float(np.median(positive))
        # All boxes are points: aim for about one box per cell
        lo = np.concatenate([lo_a, lo_b]).min(axis=0)
        hi = np.concatenate([hi_a, hi_b]).max(axis=0)
        span = float((hi - lo).max())
        if span <= 0.0:
            return 1.0
        return span / float(np.ceil(len(extents) ** (1.0 / lo.size)))

    def oversized(self, lo: np.ndarray, hi: np.ndarray, cs: float) -> np.ndarray:
        """Mask of the boxes that overlap more than max_cells_per_box cells."""
        counts = np.floor(hi / cs) - np.floor(lo / cs) + 1.0
        return counts.prod(axis=1) > self.max_cells_per_box

    @staticmethod
    def _cells_for_aabb(lo: np.ndarray, hi: np.ndarray, cs: float) -> Iterator[tuple[int, ...]]:
        """
        Yield all grid cell coordinates that overlap with an AABB.

        Yields:
            Integer cell coordinates, one per axis.
        """
        i0 = np.floor(lo / cs).astype(np.int64)
        i1 = np.floor(hi / cs).astype(np.int64)
        ranges = [range(a, b + 1) for a, b in zip(i0, i1)]
        yield from itertools.product(*ranges)

    def overlapping_pairs(self, lo_a, hi_a, lo_b, hi_b) -> np.ndarray:
        if len(lo_a) == 0 or len(lo_b) == 0:
            return _empty_pairs()
        cs = self._cell_size(lo_a, hi_a, lo_b, hi_b)

        big_a = self.oversized(lo_a, hi_a, cs)
        big_b = self.oversized(lo_b, hi_b, cs)
        small_a = np.flatnonzero(~big_a)

        # Oversized A against all of B, oversized B against the rest of A
        parts = [_pairs_against_all(np.flatnonzero(big_a), lo_a, hi_a, lo_b, hi_b)]
        flipped = _pairs_against_all(np.flatnonzero(big_b), lo_b, hi_b, lo_a[small_a], hi_a[small_a])
        parts.append(np.stack([small_a[flipped[:, 1]], flipped[:, 0]], axis=1))

        grid: dict[tuple[int, ...], list[int]] = defaultdict(list)
        for i in small_a:
            for c in self._cells_for_aabb(lo_a[i], hi_a[i], cs):
                grid[c].append(int(i))

        seen: set[tuple[int, int]] = set()
        out: list[tuple[int, int]] = []
        for j in np.flatnonzero(~big_b):
            j = int(j)
            for c in self._cells_for_aabb(lo_b[j], hi_b[j], cs):
                for i in grid.get(c, ()):
                    key = (i, j)
                    if key in seen:
                        continue
                    seen.add(key)
                    if _boxes_overlap(lo_a[i], hi_a[i], lo_b[j], hi_b[j]):
                        out.append(key)
        if out:
            parts.append(np.array(out, dtype=np.int64))
        return np.concatenate(parts).astype(np.int64).reshape(-1, 2)


class SweepAndPruneBroadPhase(BroadPhase):
    """
    Sort boxes by their lower bound along the axis of largest spread and sweep.

    A box only needs testing against boxes of the other set that are still
    open (their upper bound is past the current lower bound) on that axis.
    """

    def overlapping_pairs(self, lo_a, hi_a, lo_b, hi_b) -> np.ndarray:
        na, nb = len(lo_a), len(lo_b)
        if na == 0 or nb == 0:
            return _empty_pairs()

        centers = np.concatenate([lo_a + hi_a, lo_b + hi_b])
        axis = int(np.argmax(centers.max(axis=0) - centers.min(axis=0)))

        keys = np.concatenate([lo_a[:, axis], lo_b[:, axis]])
        order = np.argsort(keys, kind="stable")

        active_a: list[int] = []
        active_b: list[int] = []
        out: list[tuple[int, int]] = []
        for idx in order:
            if idx < na:
                i = int(idx)
                start = lo_a[i, axis]
                active_b = [j for j in active_b if hi_b[j, axis] >= start]
                for j in active_b:
                    if _boxes_overlap(lo_a[i], hi_a[i], lo_b[j], hi_b[j]):
                        out.append((i, j))
                active_a.append(i)
            else:
                j = int(idx) - na
                start = lo_b[j, axis]
                active_a = [i for i in active_a if hi_a[i, axis] >= start]
                for i in active_a:
                    if _boxes_overlap(lo_a[i], hi_a[i], lo_b[j], hi_b[j]):
                        out.append((i, j))
                active_b.append(j)

        if not out:
            return _empty_pairs()
        return np.array(out, dtype=np.int64)


def make_broad_phase(method: BroadPhaseMethod | str) -> BroadPhase:
    """
    Construct the broad-phase backend for a method name.

    Raises:
        ValueError: For an unknown method.
    """
    method = BroadPhaseMethod(method)
    if method == BroadPhaseMethod.BRUTE_FORCE:
        return BruteForceBroadPhase()
    if method == BroadPhaseMethod.HASH_GRID:
        return HashGridBroadPhase()
    if method == BroadPhaseMethod.SWEEP_AND_PRUNE:
        return SweepAndPruneBroadPhase()
    if method == BroadPhaseMethod.SWEEP_AND_TINIEST_QUEUE_GPU:
        from .broadphase_gpu import GPUBroadPhase
        return GPUBroadPhase()
    raise ValueError(f"Unknown broad phase method: {method}")
