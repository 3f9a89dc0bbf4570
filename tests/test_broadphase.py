import numpy as np
import pytest

from ipc_contact.collision.broadphase import (
    BroadPhaseMethod,
    BruteForceBroadPhase,
    CandidateKind,
    Candidates,
    HashGridBroadPhase,
    SweepAndPruneBroadPhase,
    make_broad_phase,
    primitive_boxes,
)
from ipc_contact.types import CollisionMesh


CPU_BACKENDS = [BruteForceBroadPhase, HashGridBroadPhase, SweepAndPruneBroadPhase]


def two_squares_2d(gap: float):
    """Two unit squares side by side along x, separated by gap."""
    square = np.array([[0.0, 0.0], [1.0, 0.0], [1.0, 1.0], [0.0, 1.0]])
    rest = np.vstack([square, square + [1.0 + gap, 0.0]])
    loop = np.array([[0, 1], [1, 2], [2, 3], [3, 0]])
    return CollisionMesh(rest, edges=np.vstack([loop, loop + 4]))


def two_quads_3d(gap: float):
    """Two unit squares (two triangles each) stacked along z, gap apart."""
    quad = np.array([[0.0, 0.0, 0.0], [1.0, 0.0, 0.0], [1.0, 1.0, 0.0], [0.0, 1.0, 0.0]])
    rest = np.vstack([quad, quad + [0.0, 0.0, gap]])
    tris = np.array([[0, 1, 2], [0, 2, 3]])
    return CollisionMesh(rest, faces=np.vstack([tris, tris + 4]))


def test_backends_agree_in_2d():
    mesh = two_squares_2d(gap=0.05)
    V = mesh.rest_vertices
    results = [cls().collision_candidates(mesh, V, inflation_radius=0.1) for cls in CPU_BACKENDS]
    print("ev candidates", results[0].ev.tolist())
    assert len(results[0].ev) > 0
    for r in results[1:]:
        np.testing.assert_array_equal(r.ev, results[0].ev)
        assert len(r.ee) == 0 and len(r.fv) == 0


def test_backends_agree_in_3d():
    mesh = two_quads_3d(gap=0.05)
    V = mesh.rest_vertices
    results = [cls().collision_candidates(mesh, V, inflation_radius=0.1) for cls in CPU_BACKENDS]
    assert len(results[0].ee) > 0 and len(results[0].fv) > 0
    for r in results[1:]:
        np.testing.assert_array_equal(r.ee, results[0].ee)
        np.testing.assert_array_equal(r.fv, results[0].fv)
        assert len(r.ev) == 0


@pytest.mark.parametrize("cls", CPU_BACKENDS)
def test_adjacent_pairs_are_excluded(cls):
    mesh = two_quads_3d(gap=0.05)
    c = cls().collision_candidates(mesh, mesh.rest_vertices, inflation_radius=0.1)
    for e, v in c.fv:
        assert v not in mesh.faces[e]
    for a, b in c.ee:
        assert a < b
        assert not set(mesh.edges[a]) & set(mesh.edges[b])

    mesh2 = two_squares_2d(gap=0.05)
    c2 = cls().collision_candidates(mesh2, mesh2.rest_vertices, inflation_radius=0.1)
    for e, v in c2.ev:
        assert v not in mesh2.edges[e]


@pytest.mark.parametrize("cls", CPU_BACKENDS)
def test_far_apart_gives_no_candidates(cls):
    mesh = two_squares_2d(gap=5.0)
    c = cls().collision_candidates(mesh, mesh.rest_vertices, inflation_radius=0.1)
    # Only pairs within one square remain: each vertex versus the opposite edges
    for e, v in c.ev:
        assert (v < 4) == (e < 4)


@pytest.mark.parametrize("cls", CPU_BACKENDS)
def test_candidates_are_sorted(cls):
    mesh = two_quads_3d(gap=0.01)
    c = cls().collision_candidates(mesh, mesh.rest_vertices, inflation_radius=0.05)
    for arr in (c.ee, c.fv):
        keys = [tuple(p) for p in arr]
        assert keys == sorted(set(keys))


def test_swept_boxes_find_tunneling_vertex():
    """
    A vertex moving from one side of an edge to the other is a candidate of
    the swept query even though both end configurations are far apart.
    """
    rest = np.array([[0.0, 0.0], [1.0, 0.0], [0.5, 1.0]])
    mesh = CollisionMesh(rest, edges=np.array([[0, 1]]))
    V0 = rest.copy()
    V1 = rest.copy()
    V1[2] = [0.5, -1.0]
    bp = HashGridBroadPhase()
    assert len(bp.collision_candidates(mesh, V0, inflation_radius=0.0)) == 0
    c = bp.collision_candidates(mesh, V0, V1, inflation_radius=0.0)
    np.testing.assert_array_equal(c.ev, [[0, 2]])


def test_empty_mesh_gives_empty_candidates():
    mesh = CollisionMesh(np.zeros((0, 3)))
    c = BruteForceBroadPhase().collision_candidates(mesh, mesh.rest_vertices)
    assert c.empty and len(c) == 0


def test_candidates_iteration_and_clear():
    c = Candidates(ev=np.array([[0, 3], [1, 4]]))
    items = list(c)
    assert [i.kind for i in items] == [CandidateKind.EDGE_VERTEX] * 2
    assert (items[1].first, items[1].second) == (1, 4)
    c.clear()
    assert c.empty


def test_primitive_boxes_inflation():
    V0 = np.array([[0.0, 0.0], [1.0, 2.0]])
    V1 = np.array([[-1.0, 0.5], [1.0, 2.0]])
    lo, hi = primitive_boxes(V0, V1, np.array([[0, 1]]), inflation_radius=0.5)
    np.testing.assert_allclose(lo, [[-1.5, -0.5]])
    np.testing.assert_allclose(hi, [[1.5, 2.5]])


def test_make_broad_phase():
    assert isinstance(make_broad_phase("brute_force"), BruteForceBroadPhase)
    assert isinstance(make_broad_phase(BroadPhaseMethod.HASH_GRID), HashGridBroadPhase)
    assert isinstance(make_broad_phase("sweep_and_prune"), SweepAndPruneBroadPhase)
    with pytest.raises(ValueError):
        make_broad_phase("octree")


def _random_boxes(rng, n: int, dim: int, big: int):
    """n small boxes in [0, 10]^dim, the first `big` of them stretched to 3..8."""
    lo = rng.uniform(0.0, 10.0, size=(n, dim))
    size = rng.uniform(0.0, 0.5, size=(n, dim))
    size[:big] = rng.uniform(3.0, 8.0, size=(big, dim))
    return lo, lo + size


@pytest.mark.parametrize("dim", [2, 3])
@pytest.mark.parametrize("max_cells", [1, 8, 64, 10 ** 9])
def test_hash_grid_matches_brute_force_with_oversized_boxes(dim, max_cells):
    rng = np.random.default_rng(7 + dim)
    lo_a, hi_a = _random_boxes(rng, 60, dim, big=3)
    lo_b, hi_b = _random_boxes(rng, 50, dim, big=2)
    grid = HashGridBroadPhase(max_cells_per_box=max_cells)

    expected = np.unique(BruteForceBroadPhase().overlapping_pairs(lo_a, hi_a, lo_b, hi_b), axis=0)
    got = grid.overlapping_pairs(lo_a, hi_a, lo_b, hi_b)
    assert len(got) == len(np.unique(got, axis=0))  # no duplicates
    np.testing.assert_array_equal(np.unique(got, axis=0), expected)

    expected_self = np.unique(BruteForceBroadPhase().self_overlapping_pairs(lo_a, hi_a), axis=0)
    np.testing.assert_array_equal(np.unique(grid.self_overlapping_pairs(lo_a, hi_a), axis=0), expected_self)


def test_hash_grid_keeps_long_swept_boxes_out_of_the_grid():
    """
    A 6x6 sheet with one corner dragged by (4, 4, 4): only the edges at that
    corner sweep boxes spanning many cells, and they are tested outside the
    grid with the same candidates as brute force.
    """
    n = 6
    xs, ys = np.meshgrid(np.linspace(0.0, 1.0, n), np.linspace(0.0, 1.0, n), indexing="ij")
    rest = np.column_stack([xs.ravel(), ys.ravel(), np.zeros(n * n)])
    idx = np.arange(n * n).reshape(n, n)
    a, b = idx[:-1, :-1].ravel(), idx[1:, :-1].ravel()
    c, d = idx[1:, 1:].ravel(), idx[:-1, 1:].ravel()
    mesh = CollisionMesh(rest, faces=np.vstack([np.column_stack([a, b, c]), np.column_stack([a, c, d])]))

    V0 = mesh.rest_vertices
    V1 = V0.copy()
    V1[0] += [4.0, 4.0, 4.0]

    grid = HashGridBroadPhase()
    lo, hi = primitive_boxes(V0, V1, mesh.edges, 0.0)
    mask = grid.oversized(lo, hi, grid._cell_size(lo, hi, lo, hi))
    incident = (mesh.edges == 0).any(axis=1)
    assert mask[incident].all()
    assert not mask[~incident].any()

    expected = BruteForceBroadPhase().collision_candidates(mesh, V0, V1)
    got = grid.collision_candidates(mesh, V0, V1)
    assert len(got) > 0
    np.testing.assert_array_equal(got.ee, expected.ee)
    np.testing.assert_array_equal(got.fv, expected.fv)


def test_hash_grid_rejects_bad_cell_cap():
    with pytest.raises(ValueError):
        HashGridBroadPhase(max_cells_per_box=0)
