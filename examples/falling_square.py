"""
A unit square dropped onto a fixed floor segment.

Implicit Euler with a projected Newton solver; the contact form supplies the
barrier energy and limits every Newton step so the square never passes
through the floor.
Run:
  python examples/falling_square.py
"""
import logging

import numpy as np
from scipy.sparse.linalg import spsolve

from ipc_contact import CollisionMesh, ContactConfig, ContactForm, Profiler, setup_logging
from ipc_contact.core.energies import CompositeGradient, InertiaGradient

logger = setup_logging(logging.INFO)

dt = 1 / 60
gravity = np.array([0.0, -9.81])

floor = [[-2.0, 0.0], [3.0, 0.0]]
square = [[0.0, 0.3], [1.0, 0.3], [1.0, 1.3], [0.0, 1.3]]
mesh = CollisionMesh(
    np.array(floor + square),
    edges=np.array([[0, 1], [2, 3], [3, 4], [4, 5], [5, 2]]),
)

ndof = mesh.full_ndof
mass = np.full(ndof, 0.25)
free = np.arange(ndof) >= 4  # floor nodes 0 and 1 are pinned

x = np.zeros(ndof)
v = np.zeros(ndof)
x_tilde = np.zeros(ndof)

inertia = InertiaGradient(mass, acceleration_scaling=dt ** 2)
grad_E = CompositeGradient([inertia, lambda y: -mass * x_tilde / dt ** 2])

profiler = Profiler()
form = ContactForm(
    mesh,
    ContactConfig(dhat=1e-2, project_to_psd=True),
    energy_gradient=grad_E,
    average_mass=float(np.mean(mass)),
    profiler=profiler,
)


def energy(y):
    r = y - x_tilde
    return 0.5 * float(r @ (mass * r)) / dt ** 2 + form.value(y)


form.init(x)
t = 0.0
for step in range(90):
    x_prev = x.copy()
    x_tilde[:] = x + dt * v
    x_tilde[free] += dt ** 2 * np.tile(gravity, ndof // 2)[free]
    form.update_quantities(t, x)

    for it in range(50):
        form.solution_changed(x)
        g = grad_E(x) + form.first_derivative(x)
        H = form.second_derivative(x).tolil()
        H.setdiag(H.diagonal() + mass / dt ** 2)
        H = H.tocsr()[free][:, free]

        dx = np.zeros(ndof)
        dx[free] = -spsolve(H, g[free])
        if np.linalg.norm(dx, np.inf) < 1e-8:
            break

        x1 = x + dx
        with form.line_search(x, x1):
            alpha = form.max_step_size(x, x1)
            e0 = energy(x)
            while True:
                x_alpha = x + alpha * dx
                form.solution_changed(x_alpha)
                if energy(x_alpha) <= e0 or alpha < 1e-10:
                    break
                alpha *= 0.5
        x = x_alpha
        form.solution_changed(x)
        form.post_step(it, x)

    v = (x - x_prev) / dt
    t += dt
    if step % 10 == 0:
        V = form.compute_displaced_surface(x)
        logger.info("t=%.3f  lowest corner y=%.6f  kappa=%.3e", t, V[2:, 1].min(), form.barrier_stiffness)

profiler.log_summary()
