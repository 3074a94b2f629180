# mefisto_jax/gp/utils.py
"""
Numerical stability utilities for GP computations.
"""
from __future__ import annotations

import jax.numpy as jnp


def symmetrize(K: jnp.ndarray) -> jnp.ndarray:
    return 0.5 * (K + K.T)


def jittered_cholesky(K: jnp.ndarray, jitter: float) -> jnp.ndarray:
    """
    Cholesky of K + jitter * I. JIT-compatible; returns NaNs on failure.
    """
    K = symmetrize(K)
    return jnp.linalg.cholesky(K + jitter * jnp.eye(K.shape[0], dtype=K.dtype))


__all__ = ["symmetrize", "jittered_cholesky"]
