# mefisto_jax/gp/__init__.py
"""
Gaussian-process prior layer.

- kernels:      unit-variance covariate kernels (registry)
- group_kernel: identity / shared / learned group correlation
- covariance:   dense, low-rank and diagonal covariance operators
- sparsify:     inducing points and the Nyström / FITC factor
- prior:        FactorPrior and smooth-component prediction
- engine:       GPEngine (hyperparameter fitting) and FittedGP (posterior)
"""
from .covariance import (
    ConditionedCovariance,
    DenseCovariance,
    DiagonalCovariance,
    LowRankCovariance,
)
from .engine import S_MAX, FittedGP, GPEngine, GPHyperparameters, lengthscale_bounds
from .group_kernel import group_kernel, sharedness
from .prior import FactorPrior, predict_smooth

__all__ = [
    "ConditionedCovariance",
    "DenseCovariance",
    "DiagonalCovariance",
    "LowRankCovariance",
    "S_MAX",
    "FittedGP",
    "GPEngine",
    "GPHyperparameters",
    "lengthscale_bounds",
    "group_kernel",
    "sharedness",
    "FactorPrior",
    "predict_smooth",
]
