import numpy as np
import pytest

from ipc_contact.core.adaptive_stiffness import (
    BarrierStiffnessController,
    initial_barrier_stiffness,
    update_barrier_stiffness,
)
from ipc_contact.core.barrier import barrier_hessian


def _expected_min(bbox, dhat, mass):
    d0 = (1e-8 * bbox) ** 2
    return 1e11 * mass / (4.0 * d0 * barrier_hessian(d0, dhat * dhat))


def test_zero_barrier_gradient_gives_minimum_stiffness():
    """
    With no active contact kappa = 1 before clamping, so the result is the
    lower bound
      kappa_min = 1e11 * m / (4 d0 b''(d0)),  d0 = (1e-8 bbox)^2
    and the upper bound is 100 kappa_min.
    """
    kappa, kappa_max = initial_barrier_stiffness(1.0, 1e-3, 1.0, np.ones(4), np.zeros(4))
    kmin = _expected_min(1.0, 1e-3, 1.0)
    print("kappa", kappa, "max", kappa_max)
    assert kappa == pytest.approx(kmin)
    assert kappa_max == pytest.approx(100.0 * kmin)


def test_projection_ratio_inside_bounds():
    kmin = _expected_min(1.0, 1e-3, 1.0)
    g_b = np.array([1.0, 0.0])
    g_E = np.array([-4.0 * kmin, 3.0])
    kappa, _ = initial_barrier_stiffness(1.0, 1e-3, 1.0, g_E, g_b)
    assert kappa == pytest.approx(4.0 * kmin)


def test_projection_ratio_clamped_to_max():
    kmin = _expected_min(1.0, 1e-3, 1.0)
    kappa, kappa_max = initial_barrier_stiffness(1.0, 1e-3, 1.0, np.array([-1e3 * kmin]), np.array([1.0]))
    assert kappa == kappa_max


def test_initial_stiffness_rejects_bad_inputs():
    with pytest.raises(ValueError):
        initial_barrier_stiffness(0.0, 1e-3, 1.0, np.zeros(2), np.zeros(2))
    with pytest.raises(ValueError):
        initial_barrier_stiffness(1.0, 1e-3, 0.0, np.zeros(2), np.zeros(2))


def test_update_doubles_when_distance_keeps_shrinking():
    """
    eps = 1e-9 * bbox. prev < eps, curr < eps and curr < prev doubles kappa.
    """
    assert update_barrier_stiffness(5e-10, 2e-10, 1e9, 10.0, 1.0) == 20.0
    # Capped
    assert update_barrier_stiffness(5e-10, 2e-10, 15.0, 10.0, 1.0) == 15.0
    # Growing distance, or distances above eps, leave kappa alone
    assert update_barrier_stiffness(2e-10, 5e-10, 1e9, 10.0, 1.0) == 10.0
    assert update_barrier_stiffness(5e-3, 2e-3, 1e9, 10.0, 1.0) == 10.0


def test_update_never_lowers_stiffness():
    kappa = 3.0
    prev = 9e-10
    for curr in np.linspace(8e-10, 1e-11, 20):
        new = update_barrier_stiffness(prev, curr, 1e3, kappa, 1.0)
        assert kappa <= new <= 1e3
        kappa, prev = new, curr
    assert kappa == 1e3


def _controller(energy_scale: float):
    calls = {"init": 0}

    def energy_gradient(x):
        calls["init"] += 1
        return -energy_scale * np.ones_like(x)

    def barrier_gradient(x):
        return np.ones_like(x)

    ctrl = BarrierStiffnessController(
        dhat=1e-3,
        average_mass=1.0,
        energy_gradient=energy_gradient,
        barrier_gradient=barrier_gradient,
        bbox_diagonal=lambda x: 1.0,
    )
    return ctrl, calls


def test_controller_initialize_and_time_dependent_update():
    kmin = _expected_min(1.0, 1e-3, 1.0)
    ctrl, calls = _controller(energy_scale=2.0 * kmin)
    assert not ctrl.initialized

    x = np.zeros(4)
    ctrl.initialize(x)
    assert ctrl.initialized
    assert ctrl.barrier_stiffness == pytest.approx(2.0 * kmin)

    ctrl.update(5e-10, 2e-10, time_dependent=True, x=x)
    assert ctrl.barrier_stiffness == pytest.approx(4.0 * kmin)
    assert calls["init"] == 1


def test_controller_quasi_static_update_reinitializes():
    kmin = _expected_min(1.0, 1e-3, 1.0)
    ctrl, calls = _controller(energy_scale=2.0 * kmin)
    x = np.zeros(4)
    ctrl.initialize(x)
    ctrl.barrier_stiffness = 50.0 * kmin
    ctrl.update(5e-10, 2e-10, time_dependent=False, x=x)
    assert ctrl.barrier_stiffness == pytest.approx(2.0 * kmin)
    assert calls["init"] == 2


def test_controller_rejects_bad_mass():
    with pytest.raises(ValueError):
        BarrierStiffnessController(1e-3, 0.0, np.zeros_like, np.zeros_like, lambda x: 1.0)
