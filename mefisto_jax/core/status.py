# mefisto_jax/core/status.py
from __future__ import annotations

from enum import Enum


class TrainingStatus(str, Enum):
    """
    Life cycle of a training run.

        UNINITIALIZED -> INITIALIZING -> ITERATING -> CONVERGED
                                                   | MAX_ITER_REACHED
                                                   | FAILED

    CONVERGED and MAX_ITER_REACHED are successful terminations.
    """
    UNINITIALIZED = "uninitialized"
    INITIALIZING = "initializing"
    ITERATING = "iterating"
    CONVERGED = "converged"
    MAX_ITER_REACHED = "max_iter_reached"
    FAILED = "failed"

    @property
    def is_trained(self) -> bool:
        return self in (TrainingStatus.CONVERGED, TrainingStatus.MAX_ITER_REACHED)


__all__ = ["TrainingStatus"]
