# mefisto_jax/inference/__init__.py
"""
Variational inference: the training loop and its convergence monitor.
"""
from ..core.status import TrainingStatus
from .convergence import ConvergenceMonitor, relative_change
from .engine import InferenceEngine, StopCheck, locate_nonfinite, train

__all__ = [
    "TrainingStatus",
    "ConvergenceMonitor",
    "relative_change",
    "InferenceEngine",
    "StopCheck",
    "locate_nonfinite",
    "train",
]
