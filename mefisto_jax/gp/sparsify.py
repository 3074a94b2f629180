# mefisto_jax/gp/sparsify.py
"""
Sparse GP approximation over (covariate, group) inputs.

Inducing inputs are the cross product of M covariate locations with all G
groups, so R = M * G. The factor covariance is approximated by

    Sigma ≈ s * Q + diag(s * r + (1 - s))

with Q = K_nu K_uu^{-1} K_un the Nyström projection and r the FITC
residual diag(K_nn - Q), clipped at zero. Inducing covariates are taken at
evenly spaced ranks of the sorted distinct covariate values.
"""
from __future__ import annotations

from typing import Optional

import jax.numpy as jnp
import numpy as np
from jax.scipy.linalg import solve_triangular

from .utils import jittered_cholesky


# ============================================================================
# 1. Inducing point selection
# ============================================================================

def unique_covariates(X: np.ndarray) -> np.ndarray:
    """Distinct covariate rows in lexicographic order."""
    return np.unique(np.asarray(X), axis=0)


def n_inducing_points(
    n_unique: int,
    *,
    n_inducing: Optional[int] = None,
    frac_inducing: Optional[float] = None,
) -> int:
    if n_inducing is not None:
        return int(min(n_inducing, n_unique))
    if frac_inducing is not None:
        return int(max(1, min(n_unique, round(frac_inducing * n_unique))))
    # Default: a fifth of the distinct points, at least 10
    return int(min(n_unique, max(10, n_unique // 5)))


def select_inducing_points(X: np.ndarray, n_points: int) -> np.ndarray:
    """
    Pick n_points distinct covariate rows spread evenly along the sorted
    distinct values.

    Returns:
        (M, C) inducing covariates
    """
    U = unique_covariates(X)
    if n_points >= U.shape[0]:
        return U
    idx = np.unique(np.round(np.linspace(0, U.shape[0] - 1, n_points)).astype(int))
    return U[idx]


def use_sparse(n_unique: int, sparse_gp: Optional[bool], threshold: int) -> bool:
    if sparse_gp is not None:
        return bool(sparse_gp)
    return n_unique > threshold


# ============================================================================
# 2. Nyström factor with FITC residual
# ============================================================================

def inducing_inputs(Xu: jnp.ndarray, n_groups: int):
    """Cross product of inducing covariates with group codes."""
    M = Xu.shape[0]
    Xuu = jnp.tile(Xu, (n_groups, 1))             # (M * G, C)
    gu = jnp.repeat(jnp.arange(n_groups), M)       # (M * G,)
    return Xuu, gu


def nystrom_factor(
    kernel_fn,
    X,
    gidx,
    Xu,
    lengthscale,
    Kg,
    jitter: float = 1e-6,
):
    """
    Unscaled Nyström factor F0 with F0 F0^T = K_nu K_uu^{-1} K_un and the FITC
    residual diagonal.

    Returns:
        F0: (N, M * G)
        resid: (N,) non-negative
    """
    Xuu, gu = inducing_inputs(Xu, Kg.shape[0])
    K_nu = kernel_fn(X, Xuu, lengthscale) * Kg[gidx][:, gu]
    K_uu = kernel_fn(Xuu, Xuu, lengthscale) * Kg[gu][:, gu]
    L_uu = jittered_cholesky(K_uu, jitter)
    F0 = solve_triangular(L_uu, K_nu.T, lower=True).T
    # Unit-variance covariate kernel: diag K_nn = Kg[g, g]
    diag_K = jnp.diag(Kg)[gidx]
    resid = jnp.maximum(diag_K - jnp.sum(F0 ** 2, axis=1), 0.0)
    return F0, resid


def nystrom_cross(kernel_fn, Xnew, gnew, Xu, lengthscale, Kg, jitter: float = 1e-6):
    """Nyström factor rows for new inputs, consistent with nystrom_factor."""
    Xuu, gu = inducing_inputs(Xu, Kg.shape[0])
    K_su = kernel_fn(Xnew, Xuu, lengthscale) * Kg[gnew][:, gu]
    K_uu = kernel_fn(Xuu, Xuu, lengthscale) * Kg[gu][:, gu]
    L_uu = jittered_cholesky(K_uu, jitter)
    return solve_triangular(L_uu, K_su.T, lower=True).T


__all__ = [
    "unique_covariates",
    "n_inducing_points",
    "select_inducing_points",
    "use_sparse",
    "inducing_inputs",
    "nystrom_factor",
    "nystrom_cross",
]
