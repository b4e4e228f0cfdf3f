from __future__ import annotations


class VPMError(Exception):
    """Base class for errors raised by the particle-field engine."""


class ConfigurationError(VPMError, ValueError):
    """Incompatible solver settings (e.g. kernel vs. viscous scheme).

    Detected once, before the first time step, and never auto-corrected.
    """


class CapacityError(VPMError):
    """A particle was added to a field that is already at its fixed capacity."""


class EvaluationError(VPMError, RuntimeError):
    """The accelerated velocity/Jacobian evaluator failed.

    There is no automatic fallback to the direct strategy.
    """
