# MIT License (see LICENSE)
"""
Exception hierarchy for the contact subsystem.

All contact-specific exceptions inherit from ContactError so a driver can
catch them generically. Plain precondition violations (bad dhat, bad mesh
arrays) are reported as ValueError at construction time instead.
"""
from __future__ import annotations


class ContactError(RuntimeError):
    """Base exception for all contact errors."""


class StepSizeError(ContactError):
    """
    No intersection-free step exists along the proposed trajectory.

    Raised when the collision-free step collapses to a non-positive fraction,
    or when halving it cannot remove an intersection because the tested
    configuration did not move away from the start.

    Attributes:
        max_step: The last attempted step fraction.
        linf: Infinity norm of the displacement from the start to the tested
              configuration.
    """

    def __init__(self, max_step: float, linf: float) -> None:
        self.max_step = max_step
        self.linf = linf
        super().__init__(
            f"Unable to find an intersection free step size (max_step={max_step:g} L∞={linf:g})"
        )


class UnsupportedConfigurationError(ContactError, ValueError):
    """A configuration the contact form does not implement was requested."""


class ContactProtocolError(ContactError):
    """
    A contact form method was called out of the driver's order.

    Raised e.g. for a nested line search, a line search end without a begin,
    or an evaluation on a constraint set built for a different configuration.
    """
