# mefisto_jax/gp/kernels/matern.py
"""
Unit-variance Matérn kernels, r = ||(x - z)/l||.

The 1e-12 inside the square root keeps gradients finite at r = 0.
"""
import jax.numpy as jnp
from .utils import scaled_sqdist


def matern12(X, Z, lengthscale):
    """k(r) = exp(-r)"""
    r = jnp.sqrt(scaled_sqdist(X, Z, lengthscale) + 1e-12)
    return jnp.exp(-r)


def matern32(X, Z, lengthscale):
    """k(r) = (1 + √3 r) exp(-√3 r)"""
    r = jnp.sqrt(scaled_sqdist(X, Z, lengthscale) + 1e-12)
    s3r = jnp.sqrt(3.0) * r
    return (1.0 + s3r) * jnp.exp(-s3r)


def matern52(X, Z, lengthscale):
    """k(r) = (1 + √5 r + 5/3 r^2) exp(-√5 r)"""
    r2 = scaled_sqdist(X, Z, lengthscale)
    r = jnp.sqrt(r2 + 1e-12)
    s5r = jnp.sqrt(5.0) * r
    return (1.0 + s5r + (5.0 / 3.0) * r2) * jnp.exp(-s5r)
