# mefisto_jax/gp/kernels/__init__.py
"""
Covariate kernels.

All kernels have unit variance, k(x, x) = 1: the amount of covariate-driven
variation of a factor is carried by its smoothness scale, not the kernel.
Signature: kernel(X, Z, lengthscale) -> (N, M).
"""
from .base import register, get

from .rbf import rbf
from .matern import matern12, matern32, matern52
from .utils import scaled_sqdist

# --------------------------------------------------
# Registry
# --------------------------------------------------
register("rbf", rbf)
register("matern12", matern12)
register("matern32", matern32)
register("matern52", matern52)

__all__ = [
    "get",
    "register",
    "rbf",
    "matern12",
    "matern32",
    "matern52",
    "scaled_sqdist",
]
