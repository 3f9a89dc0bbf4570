# MIT License (see LICENSE)
"""
The contact form: barrier energy and step-size limiting for an implicit solve.

The ContactForm is what the outer nonlinear solver talks to. It owns the
active constraint set, the cached line-search candidates, the barrier
stiffness and the previous minimum distance, and it mutates them only at the
transitions of the driver protocol:

    Idle --(value / first_derivative / second_derivative)*-->
         --line_search_begin--> LineSearch
         --(max_step_size, solution_changed, evaluations)*-->
         --line_search_end--> Idle
         --solution_changed--> --post_step--> Idle

Structure:
    - User builds a CollisionMesh and a ContactConfig.
    - User creates a ContactForm with a non-contact gradient provider and the
      average nodal mass.
    - The driver calls init(x), then follows the protocol every iteration.
"""
from __future__ import annotations
import contextlib
import logging
from enum import Enum
from typing import Iterator

import numpy as np
import scipy as sp

from .collision.broadphase import Candidates, make_broad_phase
from .collision.ccd import compute_max_step_size
from .collision.constraints import ConstraintSet
from .collision.manager import ConstraintSetBuilder
from .config import ContactConfig
from .constants import FINITE_DIFFERENCE_STEP
from .core.adaptive_stiffness import BarrierStiffnessController
from .core.energies import NonContactGradient
from .core.potential import (
    compute_barrier_potential,
    compute_barrier_potential_gradient,
    compute_barrier_potential_hessian,
    compute_minimum_distance,
)
from .exceptions import ContactProtocolError, UnsupportedConfigurationError
from .profiler import Profiler
from .types import CollisionMesh

logger = logging.getLogger(__name__)


def _zero_gradient(x: np.ndarray) -> np.ndarray:
    return np.zeros_like(x, dtype=np.float64)


class ContactFormPhase(Enum):
    """Where the driver is in its iteration."""
    IDLE = "idle"
    LINE_SEARCH = "line_search"


class ContactForm:
    """
    Barrier contact energy of one collision mesh.

    Attributes:
        mesh: Collision mesh (read-only).
        config: Contact parameters.
        broad_phase: Broad-phase backend selected by the config.
        builder: Constraint set builder with its single-slot memo.
        phase: Current protocol phase.
        prev_distance: Minimum distance after the previous step, None until
            the first post_step.
        profiler: Optional Profiler instance for timing statistics.

    Example:
        form = ContactForm(mesh, ContactConfig(dhat=1e-3), grad_E, avg_mass)
        form.init(x)
        form.solution_changed(x)
        g = form.first_derivative(x)
        with form.line_search(x, x + dx):
            alpha = form.max_step_size(x, x + dx)
    """

    def __init__(
        self,
        collision_mesh: CollisionMesh,
        config: ContactConfig | None = None,
        energy_gradient: NonContactGradient | None = None,
        average_mass: float = 1.0,
        profiler: Profiler | None = None,
    ) -> None:
        config = ContactConfig() if config is None else config
        if not config.use_adaptive_barrier_stiffness:
            raise UnsupportedConfigurationError(
                "Fixed barrier stiffness is not supported; use an adaptive barrier stiffness"
            )
        self.mesh = collision_mesh
        self.config = config
        self.profiler = profiler

        self.broad_phase = make_broad_phase(config.broad_phase_method)
        self.builder = ConstraintSetBuilder(collision_mesh, config.dhat, self.broad_phase)

        if energy_gradient is None:
            energy_gradient = _zero_gradient
        self._stiffness = BarrierStiffnessController(
            config.dhat,
            average_mass,
            energy_gradient,
            self._unit_barrier_gradient,
            self._bbox_diagonal,
            config.min_barrier_stiffness_scale,
            config.dhat_epsilon_scale,
        )

        self.phase = ContactFormPhase.IDLE
        self.prev_distance: float | None = None
        self._constraint_set: ConstraintSet | None = None
        self._candidates: Candidates | None = None

        logger.debug(
            "contact form: dhat=%g broad_phase=%s adaptive stiffness (%s)",
            config.dhat,
            config.broad_phase_method.value,
            "time dependent" if config.is_time_dependent else "re-initialized every step",
        )

    # --- State -------------------------------------------------------------------

    @property
    def dhat(self) -> float:
        return self.config.dhat

    @property
    def barrier_stiffness(self) -> float | None:
        return self._stiffness.barrier_stiffness

    @property
    def max_barrier_stiffness(self) -> float | None:
        return self._stiffness.max_barrier_stiffness

    @property
    def constraint_set(self) -> ConstraintSet | None:
        return self._constraint_set

    @property
    def cached_candidates(self) -> Candidates | None:
        """Candidates of the current line-search bracket, None outside it."""
        return self._candidates

    def _section(self, name: str):
        if self.profiler is None:
            return contextlib.nullcontext()
        return self.profiler.section(name)

    def compute_displaced_surface(self, x: np.ndarray) -> np.ndarray:
        """Displaced collision vertices for reduced coordinates x."""
        return self.mesh.displace(x)

    def _bbox_diagonal(self, x: np.ndarray) -> float:
        return self.mesh.bbox_diagonal(self.compute_displaced_surface(x))

    def _unit_barrier_gradient(self, x: np.ndarray) -> np.ndarray:
        V = self.compute_displaced_surface(x)
        cs = self.update_constraint_set(V)
        return self.mesh.to_full_dof(compute_barrier_potential_gradient(V, cs, self.dhat))

    # --- Stiffness ---------------------------------------------------------------

    def init(self, x: np.ndarray) -> None:
        """Prepare for the first solve at x."""
        self.initialize_barrier_stiffness(x)

    def initialize_barrier_stiffness(self, x: np.ndarray) -> float:
        """Choose the adaptive barrier stiffness from the gradients at x."""
        return self._stiffness.initialize(x)

    def update_quantities(self, t: float, x: np.ndarray) -> None:
        """Start of a new time step at time t: re-initialize the stiffness."""
        self.initialize_barrier_stiffness(x)

    # --- Constraint set ----------------------------------------------------------

    def update_constraint_set(self, displaced_surface: np.ndarray) -> ConstraintSet:
        """
        Rebuild the active constraint set for a displaced surface.

        Inside a line-search bracket the cached candidates are used.
        """
        with self._section("constraint_set"):
            self._constraint_set = self.builder.build(displaced_surface, self._candidates)
        return self._constraint_set

    def solution_changed(self, new_x: np.ndarray) -> None:
        """The solver moved to new_x."""
        self.update_constraint_set(self.compute_displaced_surface(new_x))

    def _checked_surface(self, x: np.ndarray) -> np.ndarray:
        if self._stiffness.barrier_stiffness is None:
            raise ContactProtocolError("Barrier stiffness is not initialized; call init(x) first")
        V = self.compute_displaced_surface(x)
        if self._constraint_set is None or not self._constraint_set.built_for(V):
            raise ContactProtocolError(
                "Constraint set is stale; call solution_changed(x) before evaluating at x"
            )
        return V

    # --- Evaluation --------------------------------------------------------------

    def value(self, x: np.ndarray) -> float:
        """Barrier energy kappa * P(x)."""
        V = self._checked_surface(x)
        return self.barrier_stiffness * compute_barrier_potential(V, self._constraint_set, self.dhat)

    def first_derivative(self, x: np.ndarray) -> np.ndarray:
        """Gradient of the barrier energy in solver dofs."""
        V = self._checked_surface(x)
        with self._section("barrier_gradient"):
            grad = compute_barrier_potential_gradient(V, self._constraint_set, self.dhat)
            return self.mesh.to_full_dof(self.barrier_stiffness * grad)

    def second_derivative(self, x: np.ndarray) -> sp.sparse.csr_matrix:
        """Hessian of the barrier energy in solver dofs."""
        V = self._checked_surface(x)
        with self._section("barrier_hessian"):
            hess = compute_barrier_potential_hessian(
                V, self._constraint_set, self.dhat, self.config.project_to_psd
            )
            return self.mesh.to_full_dof(self.barrier_stiffness * hess)

    # --- Line search -------------------------------------------------------------

    def line_search_begin(self, x0: np.ndarray, x1: np.ndarray) -> None:
        """
        Open a line-search bracket over [x0, x1].

        Caches broad-phase candidates of the whole segment, inflated by
        dhat / 1.99, for reuse by solution_changed and max_step_size.

        Raises:
            ContactProtocolError: If a bracket is already open.
        """
        if self.phase != ContactFormPhase.IDLE:
            raise ContactProtocolError("line_search_begin called inside an open line search")
        with self._section("line_search_begin"):
            self._candidates = self.broad_phase.collision_candidates(
                self.mesh,
                self.compute_displaced_surface(x0),
                self.compute_displaced_surface(x1),
                inflation_radius=self.builder.inflation_radius,
            )
        self.phase = ContactFormPhase.LINE_SEARCH

        if self.config.debug_fd:
            self._log_finite_difference(x0, x1)

    def line_search_end(self) -> None:
        """
        Close the bracket and drop its cached candidates.

        Raises:
            ContactProtocolError: If no bracket is open.
        """
        if self.phase != ContactFormPhase.LINE_SEARCH:
            raise ContactProtocolError("line_search_end called without line_search_begin")
        self._candidates = None
        self.phase = ContactFormPhase.IDLE

    @contextlib.contextmanager
    def line_search(self, x0: np.ndarray, x1: np.ndarray) -> Iterator["ContactForm"]:
        """Bracket a line search; line_search_end runs even if the body raises."""
        self.line_search_begin(x0, x1)
        try:
            yield self
        finally:
            self.line_search_end()

    def max_step_size(self, x0: np.ndarray, x1: np.ndarray) -> float:
        """
        Largest intersection-free fraction of the step x0 -> x1.

        Returns:
            A step fraction in (0, 1].

        Raises:
            StepSizeError: If no positive intersection-free step exists.
        """
        V0 = self.compute_displaced_surface(x0)
        V1 = self.compute_displaced_surface(x1)
        candidates = None
        if self._candidates is not None and self.broad_phase.supports_cached_candidates:
            candidates = self._candidates

        with self._section("max_step_size"):
            return compute_max_step_size(
                self.mesh, V0, V1, self.broad_phase,
                tolerance=self.config.ccd_tolerance,
                max_iterations=self.config.ccd_max_iterations,
                conservative_rescaling=self.config.ccd_conservative_rescaling,
                validate=self.config.validate_step,
                candidates=candidates,
            )

    # --- Step bookkeeping --------------------------------------------------------

    def post_step(self, iter_num: int, x: np.ndarray) -> None:
        """
        An iteration was accepted at x.

        Records the minimum distance and, once a previous distance exists,
        updates the barrier stiffness from it.

        Raises:
            ContactProtocolError: If a line search is still open.
        """
        if self.phase != ContactFormPhase.IDLE:
            raise ContactProtocolError("post_step called inside an open line search")
        V = self.compute_displaced_surface(x)
        cs = self.update_constraint_set(V)
        curr_distance = compute_minimum_distance(V, cs)

        if self.prev_distance is not None:
            self._stiffness.update(self.prev_distance, curr_distance, self.config.is_time_dependent, x)

        logger.debug("iteration %d: minimum distance %g", iter_num, curr_distance)
        self.prev_distance = curr_distance

    # --- Diagnostics -------------------------------------------------------------

    def _log_finite_difference(self, x0: np.ndarray, x1: np.ndarray) -> None:
        """Compare the directional finite difference of value with the gradient."""
        if self.barrier_stiffness is None:
            logger.debug("finite-difference check skipped: stiffness not initialized")
            return
        direction = x1 - x0
        h = FINITE_DIFFERENCE_STEP

        x_h = x0 + h * direction
        self.solution_changed(x_h)
        f_h = self.value(x_h)

        self.solution_changed(x0)
        f_0 = self.value(x0)
        analytic = float(self.first_derivative(x0) @ direction)
        fd = (f_h - f_0) / h
        logger.debug(
            "finite-difference check: fd=%g analytic=%g difference=%g",
            fd, analytic, abs(fd - analytic),
        )
