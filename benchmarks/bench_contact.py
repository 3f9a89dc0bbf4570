"""
Microbenchmark: time per contact iteration vs surface size and broad phase.

Two parallel triangulated sheets, dhat/2 apart, the upper one moving down.
One iteration is solution_changed + gradient + Hessian + a bracketed
max_step_size, which is what a Newton solver does per step.
Run:
  python benchmarks/bench_contact.py
"""
import time

import numpy as np

from ipc_contact import BroadPhaseMethod, CollisionMesh, ContactConfig, ContactForm, Profiler

DHAT = 1e-2


def sheet(n: int, z: float):
    """n x n vertex grid over the unit square at height z, two triangles per cell."""
    xs, ys = np.meshgrid(np.linspace(0.0, 1.0, n), np.linspace(0.0, 1.0, n), indexing="ij")
    V = np.column_stack([xs.ravel(), ys.ravel(), np.full(n * n, z)])
    idx = np.arange(n * n).reshape(n, n)
    a, b = idx[:-1, :-1].ravel(), idx[1:, :-1].ravel()
    c, d = idx[1:, 1:].ravel(), idx[:-1, 1:].ravel()
    F = np.vstack([np.column_stack([a, b, c]), np.column_stack([a, c, d])])
    return V, F


def build(n: int):
    V0, F0 = sheet(n, 0.0)
    V1, F1 = sheet(n, DHAT / 2)
    # Slight shear so the sheets are not perfectly aligned
    V1[:, 0] += 0.3 / n
    return CollisionMesh(np.vstack([V0, V1]), faces=np.vstack([F0, F1 + len(V0)]))


def run(n: int, method: BroadPhaseMethod, iters: int = 5):
    mesh = build(n)
    prof = Profiler()
    form = ContactForm(mesh, ContactConfig(dhat=DHAT, broad_phase_method=method), profiler=prof)

    x = np.zeros(mesh.full_ndof)
    dx = np.zeros_like(x)
    dx[mesh.full_ndof // 2 + 2::3] = -DHAT  # upper sheet moves down
    form.init(x)

    t0 = time.perf_counter()
    for it in range(iters):
        form.solution_changed(x)
        form.first_derivative(x)
        form.second_derivative(x)
        with form.line_search(x, x + dx):
            alpha = form.max_step_size(x, x + dx)
        x = x + 0.5 * alpha * dx
        form.solution_changed(x)
        form.post_step(it, x)
    t1 = time.perf_counter()

    return (t1 - t0) / iters, len(form.constraint_set), prof.stats.summary()


if __name__ == "__main__":
    for method in (BroadPhaseMethod.HASH_GRID, BroadPhaseMethod.SWEEP_AND_PRUNE, BroadPhaseMethod.BRUTE_FORCE):
        print(method.value)
        for n in [5, 10, 20]:
            per_iter, n_constraints, summary = run(n, method)
            print(f"  N={2 * n * n:5d}  iter={1e3 * per_iter:9.3f} ms  constraints={n_constraints}")
            for k in ["constraint_set", "barrier_gradient", "barrier_hessian", "line_search_begin", "max_step_size"]:
                if k in summary:
                    s = summary[k]
                    print(f"    {k:18s} n={s['n']:4d}  mean={s['mean_ms']:.3f}ms  max={s['max_ms']:.3f}ms")
