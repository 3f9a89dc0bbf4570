# MIT License (see LICENSE)
"""
Configuration of the contact form.

ContactConfig collects every tunable parameter with validated defaults. It can
be read from and written to the solver-args dictionary layout used by the
surrounding solver:

JSON Schema Overview:
---------------------
{
  "dhat": float,                       # Activation distance, default: 1e-3
  "barrier_stiffness": "adaptive" | float,   # Only "adaptive" is supported
  "time_dependent": bool,              # Doubling update vs re-initialization
  "project_to_psd": bool,              # PSD-project local Hessian blocks
  "debug_fd": bool,                    # Finite-difference check in line search
  "CCD": {
    "broad_phase": string,             # "brute_force", "hash_grid",
                                       # "sweep_and_prune",
                                       # "sweep_and_tiniest_queue_gpu"
    "tolerance": float,                # Default: 1e-6
    "max_iterations": int,             # Default: 10000
    "conservative_rescaling": float,   # Default: 0.9
    "validate": bool                   # Check the step for intersections
  }
}
"""
from __future__ import annotations
from dataclasses import dataclass
from typing import Any

from .collision.broadphase import BroadPhaseMethod
from .constants import (
    DEFAULT_CCD_CONSERVATIVE_RESCALING,
    DEFAULT_CCD_MAX_ITERATIONS,
    DEFAULT_CCD_TOLERANCE,
    DEFAULT_DHAT,
    DHAT_EPSILON_SCALE,
    MIN_BARRIER_STIFFNESS_SCALE,
)


@dataclass(frozen=True)
class ContactConfig:
    """
    Parameters of the contact form.

    Attributes:
        dhat: Activation distance; pairs closer than this are in contact.
        use_adaptive_barrier_stiffness: Choose the barrier stiffness
            adaptively. Fixed stiffness is rejected by ContactForm.
        barrier_stiffness: Fixed stiffness value (unsupported, kept so the
            configuration round-trips).
        is_time_dependent: Dynamic solve; enables the doubling update.
        broad_phase_method: Broad-phase backend.
        ccd_tolerance: CCD advance tolerance.
        ccd_max_iterations: CCD iteration cap per candidate.
        ccd_conservative_rescaling: Fraction of the gap one CCD advance may close.
        project_to_psd: PSD-project per-constraint Hessian blocks.
        validate_step: Check CCD steps for static intersections.
        min_barrier_stiffness_scale: Scale of the minimum stiffness.
        dhat_epsilon_scale: Near-zero distance as a fraction of the bbox diagonal.
        debug_fd: Log a finite-difference gradient check in line_search_begin.
    """
    dhat: float = DEFAULT_DHAT
    use_adaptive_barrier_stiffness: bool = True
    barrier_stiffness: float | None = None
    is_time_dependent: bool = False
    broad_phase_method: BroadPhaseMethod = BroadPhaseMethod.HASH_GRID
    ccd_tolerance: float = DEFAULT_CCD_TOLERANCE
    ccd_max_iterations: int = DEFAULT_CCD_MAX_ITERATIONS
    ccd_conservative_rescaling: float = DEFAULT_CCD_CONSERVATIVE_RESCALING
    project_to_psd: bool = False
    validate_step: bool = True
    min_barrier_stiffness_scale: float = MIN_BARRIER_STIFFNESS_SCALE
    dhat_epsilon_scale: float = DHAT_EPSILON_SCALE
    debug_fd: bool = False

    def __post_init__(self) -> None:
        object.__setattr__(self, "broad_phase_method", BroadPhaseMethod(self.broad_phase_method))
        if not self.dhat > 0.0:
            raise ValueError(f"dhat must be positive, got {self.dhat}")
        if not self.ccd_tolerance > 0.0:
            raise ValueError(f"ccd_tolerance must be positive, got {self.ccd_tolerance}")
        if self.ccd_max_iterations < 1:
            raise ValueError(f"ccd_max_iterations must be at least 1, got {self.ccd_max_iterations}")
        if not 0.0 < self.ccd_conservative_rescaling < 1.0:
            raise ValueError(
                f"ccd_conservative_rescaling must be in (0, 1), got {self.ccd_conservative_rescaling}"
            )
        if not self.min_barrier_stiffness_scale > 0.0:
            raise ValueError("min_barrier_stiffness_scale must be positive")
        if not self.dhat_epsilon_scale > 0.0:
            raise ValueError("dhat_epsilon_scale must be positive")
        if self.barrier_stiffness is not None and self.barrier_stiffness < 0.0:
            raise ValueError(f"barrier_stiffness must be non-negative, got {self.barrier_stiffness}")

    @classmethod
    def from_json(cls, d: dict[str, Any]) -> "ContactConfig":
        """
        Parse the solver-args layout (see module docstring).

        Missing keys take their defaults.
        """
        ccd = d.get("CCD", {})
        stiffness = d.get("barrier_stiffness", "adaptive")
        adaptive = isinstance(stiffness, str)
        if adaptive and stiffness != "adaptive":
            raise ValueError(f"barrier_stiffness must be 'adaptive' or a number, got {stiffness!r}")

        return cls(
            dhat=float(d.get("dhat", DEFAULT_DHAT)),
            use_adaptive_barrier_stiffness=adaptive,
            barrier_stiffness=None if adaptive else float(stiffness),
            is_time_dependent=bool(d.get("time_dependent", False)),
            broad_phase_method=BroadPhaseMethod(ccd.get("broad_phase", BroadPhaseMethod.HASH_GRID.value)),
            ccd_tolerance=float(ccd.get("tolerance", DEFAULT_CCD_TOLERANCE)),
            ccd_max_iterations=int(ccd.get("max_iterations", DEFAULT_CCD_MAX_ITERATIONS)),
            ccd_conservative_rescaling=float(
                ccd.get("conservative_rescaling", DEFAULT_CCD_CONSERVATIVE_RESCALING)
            ),
            project_to_psd=bool(d.get("project_to_psd", False)),
            validate_step=bool(ccd.get("validate", True)),
            debug_fd=bool(d.get("debug_fd", False)),
        )

    def to_json(self) -> dict[str, Any]:
        """Serialize to the solver-args layout."""
        return {
            "dhat": self.dhat,
            "barrier_stiffness": "adaptive" if self.use_adaptive_barrier_stiffness else self.barrier_stiffness,
            "time_dependent": self.is_time_dependent,
            "project_to_psd": self.project_to_psd,
            "debug_fd": self.debug_fd,
            "CCD": {
                "broad_phase": self.broad_phase_method.value,
                "tolerance": self.ccd_tolerance,
                "max_iterations": self.ccd_max_iterations,
                "conservative_rescaling": self.ccd_conservative_rescaling,
                "validate": self.validate_step,
            },
        }
