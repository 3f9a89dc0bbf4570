import numpy as np
import pytest

wp = pytest.importorskip("warp")

from ipc_contact.collision.broadphase import BruteForceBroadPhase, make_broad_phase
from ipc_contact.collision.broadphase_gpu import GPUBroadPhase
from ipc_contact.types import CollisionMesh


def test_gpu_matches_brute_force_3d():
    quad = np.array([[0.0, 0.0, 0.0], [1.0, 0.0, 0.0], [1.0, 1.0, 0.0], [0.0, 1.0, 0.0]])
    rest = np.vstack([quad, quad + [0.2, 0.1, 0.05]])
    tris = np.array([[0, 1, 2], [0, 2, 3]])
    mesh = CollisionMesh(rest, faces=np.vstack([tris, tris + 4]))
    V = mesh.rest_vertices

    ref = BruteForceBroadPhase().collision_candidates(mesh, V, inflation_radius=0.1)
    # Small buffer forces the relaunch path
    gpu = GPUBroadPhase(initial_capacity=2).collision_candidates(mesh, V, inflation_radius=0.1)
    np.testing.assert_array_equal(gpu.ee, ref.ee)
    np.testing.assert_array_equal(gpu.fv, ref.fv)


def test_gpu_matches_brute_force_2d():
    square = np.array([[0.0, 0.0], [1.0, 0.0], [1.0, 1.0], [0.0, 1.0]])
    rest = np.vstack([square, square + [1.02, 0.3]])
    loop = np.array([[0, 1], [1, 2], [2, 3], [3, 0]])
    mesh = CollisionMesh(rest, edges=np.vstack([loop, loop + 4]))
    V = mesh.rest_vertices

    ref = BruteForceBroadPhase().collision_candidates(mesh, V, inflation_radius=0.05)
    gpu = GPUBroadPhase().collision_candidates(mesh, V, inflation_radius=0.05)
    np.testing.assert_array_equal(gpu.ev, ref.ev)


def test_gpu_backend_does_not_share_line_search_candidates():
    bp = make_broad_phase("sweep_and_tiniest_queue_gpu")
    assert isinstance(bp, GPUBroadPhase)
    assert bp.supports_cached_candidates is False
