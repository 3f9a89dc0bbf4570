import logging

import numpy as np
import pytest

from ipc_contact.collision import ccd
from ipc_contact.collision.broadphase import (
    BruteForceBroadPhase,
    HashGridBroadPhase,
    SweepAndPruneBroadPhase,
)
from ipc_contact.collision.ccd import (
    compute_collision_free_stepsize,
    compute_max_step_size,
    edge_edge_ccd,
    point_edge_ccd,
    point_triangle_ccd,
)
from ipc_contact.collision.intersection import (
    has_intersections,
    segment_triangle_intersect,
    segments_intersect,
)
from ipc_contact.exceptions import StepSizeError
from ipc_contact.types import CollisionMesh


def falling_vertex_2d():
    """Vertex 1 above the edge (0,0)-(1,0), moving 2 down: contact at t = 0.5."""
    rest = np.array([[0.0, 0.0], [1.0, 0.0], [0.5, 1.0]])
    mesh = CollisionMesh(rest, edges=np.array([[0, 1]]))
    V0 = mesh.rest_vertices
    V1 = V0.copy()
    V1[2] = [0.5, -1.0]
    return mesh, V0, V1


def test_first_contact_at_half_limits_step():
    """
    Scenario: the trajectory first touches at fraction 0.5, so the safe step
    is at most 0.5 (and conservative advancement stays close to it).
    """
    mesh, V0, V1 = falling_vertex_2d()
    step = compute_collision_free_stepsize(mesh, V0, V1, HashGridBroadPhase())
    print("step", step)
    assert 0.4 < step <= 0.5


def test_separated_motion_allows_full_step():
    """
    Two squares translating side by side, always farther apart than dhat:
    no candidates, full step.
    """
    square = np.array([[0.0, 0.0], [1.0, 0.0], [1.0, 1.0], [0.0, 1.0]])
    rest = np.vstack([square, square + [2.0, 0.0]])
    loop = np.array([[0, 1], [1, 2], [2, 3], [3, 0]])
    mesh = CollisionMesh(rest, edges=np.vstack([loop, loop + 4]))
    V0 = mesh.rest_vertices
    V1 = V0 + [0.0, 3.0]
    assert compute_max_step_size(mesh, V0, V1, HashGridBroadPhase()) == 1.0


def test_point_edge_ccd_rigid_translation_never_collides():
    x0 = np.array([[0.5, 0.1], [0.0, 0.0], [1.0, 0.0]])
    dx = np.tile([3.0, -1.0], (3, 1))
    assert point_edge_ccd(x0, dx) == 1.0


def test_point_edge_ccd_already_touching():
    x0 = np.array([[0.5, 0.0], [0.0, 0.0], [1.0, 0.0]])
    dx = np.array([[0.0, -1.0], [0.0, 0.0], [0.0, 0.0]])
    assert point_edge_ccd(x0, dx) == 0.0


def test_point_edge_ccd_respects_tmax():
    x0 = np.array([[0.5, 1.0], [0.0, 0.0], [1.0, 0.0]])
    dx = np.array([[0.0, -2.0], [0.0, 0.0], [0.0, 0.0]])
    assert point_edge_ccd(x0, dx, tmax=0.2) == 0.2


def test_point_triangle_ccd_3d():
    """Vertex 1 above the triangle falling by 4: contact at t = 0.25."""
    x0 = np.array([[0.2, 0.2, 1.0], [0.0, 0.0, 0.0], [1.0, 0.0, 0.0], [0.0, 1.0, 0.0]])
    dx = np.zeros_like(x0)
    dx[0] = [0.0, 0.0, -4.0]
    t = point_triangle_ccd(x0, dx)
    assert 0.2 < t <= 0.25


def test_edge_edge_ccd_3d():
    """Edge 1 above a crossing edge, moving down by 2: contact at t = 0.5."""
    x0 = np.array([[-1.0, 0.0, 0.0], [1.0, 0.0, 0.0], [0.0, -1.0, 1.0], [0.0, 1.0, 1.0]])
    dx = np.zeros_like(x0)
    dx[2:] = [0.0, 0.0, -2.0]
    t = edge_edge_ccd(x0, dx)
    assert 0.4 < t <= 0.5


def test_mesh_step_3d_vertex_through_face():
    rest = np.array([
        [0.0, 0.0, 0.0], [1.0, 0.0, 0.0], [0.0, 1.0, 0.0],
        [0.25, 0.25, 0.5],
    ])
    mesh = CollisionMesh(rest, faces=np.array([[0, 1, 2]]))
    V0 = mesh.rest_vertices
    V1 = V0.copy()
    V1[3, 2] = -0.5
    step = compute_max_step_size(mesh, V0, V1, BruteForceBroadPhase())
    assert 0.4 < step <= 0.5


def test_touching_start_is_fatal():
    rest = np.array([[0.0, 0.0], [1.0, 0.0], [0.5, 0.0]])
    mesh = CollisionMesh(rest, edges=np.array([[0, 1]]))
    V0 = mesh.rest_vertices
    V1 = V0.copy()
    V1[2] = [0.5, -1.0]
    with pytest.raises(StepSizeError) as info:
        compute_max_step_size(mesh, V0, V1, HashGridBroadPhase())
    assert info.value.max_step == 0.0


def _crossing_bar_mesh():
    """Horizontal edge and a vertical bar moving down through it."""
    rest = np.array([[0.0, 0.0], [1.0, 0.0], [0.5, 0.5], [0.5, 1.5]])
    mesh = CollisionMesh(rest, edges=np.array([[0, 1], [2, 3]]))
    V0 = mesh.rest_vertices
    V1 = V0.copy()
    V1[2:, 1] -= 1.0
    return mesh, V0, V1


def test_validation_halves_intersecting_step(monkeypatch, caplog):
    """
    If CCD reported the full step, the surface at 1 and at 0.5 intersects;
    validation halves until 0.25.
    """
    mesh, V0, V1 = _crossing_bar_mesh()
    monkeypatch.setattr(ccd, "compute_collision_free_stepsize", lambda *args, **kwargs: 1.0)
    with caplog.at_level(logging.ERROR, logger="ipc_contact"):
        step = compute_max_step_size(mesh, V0, V1, HashGridBroadPhase(), validate=True)
    assert step == 0.25
    assert sum("results in intersections" in r.getMessage() for r in caplog.records) == 2


def test_validation_without_motion_is_fatal(monkeypatch):
    mesh, V0, _ = _crossing_bar_mesh()
    V0 = V0.copy()
    V0[2:, 1] -= 1.0  # Already crossing
    monkeypatch.setattr(ccd, "compute_collision_free_stepsize", lambda *args, **kwargs: 1.0)
    with pytest.raises(StepSizeError) as info:
        compute_max_step_size(mesh, V0, V0.copy(), HashGridBroadPhase(), validate=True)
    assert info.value.linf == 0.0


def test_validation_off_skips_intersection_check(monkeypatch):
    mesh, V0, V1 = _crossing_bar_mesh()
    monkeypatch.setattr(ccd, "compute_collision_free_stepsize", lambda *args, **kwargs: 1.0)
    assert compute_max_step_size(mesh, V0, V1, HashGridBroadPhase(), validate=False) == 1.0


def test_segment_intersections():
    a0, a1 = np.array([0.0, 0.0]), np.array([1.0, 0.0])
    assert segments_intersect(a0, a1, np.array([0.5, -1.0]), np.array([0.5, 1.0]))
    assert segments_intersect(a0, a1, np.array([0.5, 0.0]), np.array([0.5, 1.0]))
    assert not segments_intersect(a0, a1, np.array([0.5, 0.1]), np.array([0.5, 1.0]))
    assert segments_intersect(a0, a1, np.array([0.5, 0.0]), np.array([2.0, 0.0]))


def test_segment_triangle_intersections():
    t = [np.array([0.0, 0.0, 0.0]), np.array([1.0, 0.0, 0.0]), np.array([0.0, 1.0, 0.0])]
    assert segment_triangle_intersect(np.array([0.2, 0.2, -1.0]), np.array([0.2, 0.2, 1.0]), *t)
    assert not segment_triangle_intersect(np.array([0.8, 0.8, -1.0]), np.array([0.8, 0.8, 1.0]), *t)
    assert not segment_triangle_intersect(np.array([0.2, 0.2, 0.1]), np.array([0.2, 0.2, 1.0]), *t)


def test_has_intersections_mesh():
    mesh, V0, V1 = _crossing_bar_mesh()
    bp = HashGridBroadPhase()
    assert not has_intersections(mesh, V0, bp)
    assert has_intersections(mesh, V1, bp)

    rest = np.array([
        [0.0, 0.0, 0.0], [1.0, 0.0, 0.0], [0.0, 1.0, 0.0],
        [0.2, 0.2, -1.0], [0.2, 0.2, 1.0], [0.3, 0.3, 1.0],
    ])
    mesh3 = CollisionMesh(rest, faces=np.array([[0, 1, 2], [3, 4, 5]]))
    assert has_intersections(mesh3, mesh3.rest_vertices, bp)


def test_sliding_contact_is_not_cut_short():
    """
    Vertex gliding parallel to an edge at a constant gap of about 1e-7.
    The pair never gets closer, so the step must not collapse to one
    conservative advance (~0.9 gap / l_p, l_p = 1 here).
    """
    rest = np.array([[-10.0, 0.0], [10.0, 4e-7], [0.0, 3e-7]])
    mesh = CollisionMesh(rest, edges=np.array([[0, 1]]))
    V0 = mesh.rest_vertices
    V1 = V0.copy()
    V1[2] += [1.0, 2e-8]
    gap = 1e-7
    step = compute_max_step_size(mesh, V0, V1, BruteForceBroadPhase())
    print("sliding step", step)
    assert 1e3 * gap < step <= 1.0


def test_tolerance_does_not_stop_a_pair_that_keeps_its_gap():
    x0 = np.array([[0.0, 1e-7], [-10.0, 0.0], [10.0, 0.0]])
    dx = np.array([[1.0, 0.0], [0.0, 0.0], [0.0, 0.0]])
    t = point_edge_ccd(x0, dx, tolerance=1e-3, max_iterations=100)
    # 100 advances of 0.9 * 1e-7 / l_p with l_p = 1
    assert t == pytest.approx(100 * 0.9e-7, rel=1e-6)


def _random_squares_2d(rng):
    """Two jittered unit squares 2.5 apart."""
    square = np.array([[0.0, 0.0], [1.0, 0.0], [1.0, 1.0], [0.0, 1.0]])
    rest = np.vstack([square, square + [2.5, 0.0]]) + rng.uniform(-0.1, 0.1, size=(8, 2))
    loop = np.array([[0, 1], [1, 2], [2, 3], [3, 0]])
    return CollisionMesh(rest, edges=np.vstack([loop, loop + 4]))


def _random_tets_3d(rng):
    """Two jittered tetrahedron surfaces 2.5 apart."""
    tet = np.array([[0.0, 0.0, 0.0], [1.0, 0.0, 0.0], [0.0, 1.0, 0.0], [0.0, 0.0, 1.0]])
    rest = np.vstack([tet, tet + [2.5, 0.0, 0.0]]) + rng.uniform(-0.1, 0.1, size=(8, 3))
    faces = np.array([[0, 2, 1], [0, 1, 3], [0, 3, 2], [1, 2, 3]])
    return CollisionMesh(rest, faces=np.vstack([faces, faces + 4]))


@pytest.mark.parametrize("make_mesh", [_random_squares_2d, _random_tets_3d])
def test_random_trajectories_stay_intersection_free(make_mesh):
    """
    For random motions of two separated bodies every backend returns the same
    step s in (0, 1], and the interpolated surface has no intersection
    anywhere on [0, s].
    """
    rng = np.random.default_rng(2024)
    backends = [BruteForceBroadPhase(), HashGridBroadPhase(), SweepAndPruneBroadPhase()]
    for _ in range(15):
        mesh = make_mesh(rng)
        V0 = mesh.rest_vertices
        assert not has_intersections(mesh, V0, backends[0])
        V1 = V0 + rng.normal(scale=1.5, size=V0.shape)

        steps = [compute_max_step_size(mesh, V0, V1, bp) for bp in backends]
        assert steps[0] == steps[1] == steps[2]
        s = steps[0]
        assert 0.0 < s <= 1.0
        for t in np.linspace(0.0, s, 25):
            assert not has_intersections(mesh, V0 + t * (V1 - V0), backends[0])
