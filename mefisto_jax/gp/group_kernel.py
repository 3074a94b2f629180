# mefisto_jax/gp/group_kernel.py
"""
Group kernels K_g (G, G).

- identity: every group has its own independent covariate pattern
- shared:   one pattern common to all groups
- learned:  x x^T + diag(exp(log_diag)), x (G, rank), rescaled to a
            correlation matrix. Positive semi-definite by construction and
            with unit diagonal, so the smoothness scale alone sets the
            covariate-driven variance.
"""
from __future__ import annotations

import jax.numpy as jnp
import numpy as np


def identity_kernel(n_groups: int) -> jnp.ndarray:
    return jnp.eye(n_groups)


def shared_kernel(n_groups: int) -> jnp.ndarray:
    return jnp.ones((n_groups, n_groups))


def learned_kernel(x: jnp.ndarray, log_diag: jnp.ndarray) -> jnp.ndarray:
    """
    Args:
        x: (G, rank) low-rank factor
        log_diag: (G,) log of the diagonal term

    Returns:
        (G, G) correlation matrix
    """
    K = x @ x.T + jnp.diag(jnp.exp(log_diag))
    s = jnp.sqrt(jnp.diag(K))
    return K / (s[:, None] * s[None, :])


def group_kernel(mode: str, n_groups: int, x=None, log_diag=None) -> jnp.ndarray:
    if n_groups == 1:
        return jnp.ones((1, 1))
    if mode == "identity":
        return identity_kernel(n_groups)
    if mode == "shared":
        return shared_kernel(n_groups)
    if mode == "learned":
        return learned_kernel(x, log_diag)
    raise ValueError(f"Unknown group kernel mode: {mode}")


def init_learned_params(n_factors: int, n_groups: int, rank: int):
    """
    Start every factor half-way between independent and fully shared
    (off-diagonal correlation 1/2).
    """
    x = jnp.ones((n_factors, n_groups, rank)) / jnp.sqrt(rank)
    log_diag = jnp.zeros((n_factors, n_groups))
    return x, log_diag


def sharedness(Kg) -> float:
    """
    Mean off-diagonal group correlation, clipped to [0, 1].
    A single group is fully shared by definition.
    """
    Kg = np.asarray(Kg)
    G = Kg.shape[0]
    if G == 1:
        return 1.0
    off = Kg[~np.eye(G, dtype=bool)]
    return float(np.clip(off.mean(), 0.0, 1.0))


__all__ = [
    "identity_kernel",
    "shared_kernel",
    "learned_kernel",
    "group_kernel",
    "init_learned_params",
    "sharedness",
]
