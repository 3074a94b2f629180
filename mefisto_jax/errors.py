# mefisto_jax/errors.py
"""
Exception taxonomy.

- ConfigurationError: invalid options or data, detected before any iteration
  runs (also raised when a non-trained object is used for prediction).
- NumericalError: a linear-algebra or NaN/Inf failure that survived the
  jitter retries of the component that raised it.
- TrainingFailed: raised by the inference engine once it has given up on a
  numerical failure. Normal termination (converged or iteration budget
  exhausted) never raises.
"""
from __future__ import annotations

from typing import Optional


class MefistoError(Exception):
    """Base class for all library errors."""


class ConfigurationError(MefistoError, ValueError):
    """Invalid configuration, mismatched inputs, or untrained model use."""


class NumericalError(MefistoError, RuntimeError):
    """Numerical failure with the responsible component identified."""

    def __init__(
        self,
        message: str,
        *,
        component: str,
        factor: Optional[int] = None,
        view: Optional[str] = None,
    ):
        self.component = component
        self.factor = factor
        self.view = view
        where = [f"component={component}"]
        if factor is not None:
            where.append(f"factor={factor}")
        if view is not None:
            where.append(f"view={view}")
        super().__init__(f"{message} ({', '.join(where)})")


class TrainingFailed(MefistoError, RuntimeError):
    """Training ended in the FAILED state."""

    def __init__(
        self,
        message: str,
        *,
        component: str,
        factor: Optional[int] = None,
        view: Optional[str] = None,
        iteration: Optional[int] = None,
    ):
        self.component = component
        self.factor = factor
        self.view = view
        self.iteration = iteration
        super().__init__(message)


__all__ = [
    "MefistoError",
    "ConfigurationError",
    "NumericalError",
    "TrainingFailed",
]
