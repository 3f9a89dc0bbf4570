# MIT License (see LICENSE)
"""
ipc_contact - Barrier contact for implicit deformable-body solves.

This package keeps the boundary surface of a deformable body free of
interpenetration during a nonlinear solve: it builds the active contact
constraints, evaluates the barrier energy with its derivatives, tunes the
barrier stiffness and limits line-search steps with continuous collision
detection.

Main entry points:
    - ContactForm: The contact energy the outer solver talks to.
    - CollisionMesh: The boundary surface taking part in contact.
    - ContactConfig: Activation distance, CCD and broad-phase settings.

Submodules:
    - collision: Broad phase, distances, constraint sets and CCD.
    - core: Barrier potential and adaptive stiffness.

Example:
    from ipc_contact import CollisionMesh, ContactConfig, ContactForm

    mesh = CollisionMesh(rest, edges=edges)
    form = ContactForm(mesh, ContactConfig(dhat=1e-3), grad_E, avg_mass)
    form.init(x)
    form.solution_changed(x)
    g = form.first_derivative(x)
"""
from .types import CollisionMesh
from .config import ContactConfig
from .contact_form import ContactForm, ContactFormPhase
from .collision.broadphase import BroadPhaseMethod
from .exceptions import (
    ContactError,
    ContactProtocolError,
    StepSizeError,
    UnsupportedConfigurationError,
)
from .logging_config import setup_logging
from .profiler import Profiler

__all__ = [
    # Core
    "ContactForm",
    "ContactFormPhase",
    "CollisionMesh",
    "ContactConfig",
    "BroadPhaseMethod",
    # Errors
    "ContactError",
    "ContactProtocolError",
    "StepSizeError",
    "UnsupportedConfigurationError",
    # Utilities
    "setup_logging",
    "Profiler",
]
