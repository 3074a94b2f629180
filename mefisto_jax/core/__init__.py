# mefisto_jax/core/__init__.py
from .data import MultiViewData, View, prepare_data
from .state import ModelState
from .status import TrainingStatus

__all__ = [
    "MultiViewData",
    "View",
    "prepare_data",
    "ModelState",
    "TrainingStatus",
]
