# mefisto_jax/gp/kernels/rbf.py
import jax.numpy as jnp
from .utils import scaled_sqdist


def rbf(X, Z, lengthscale):
    """
    Unit-variance squared exponential:
        k(x, z) = exp(-0.5 ||(x - z)/l||^2)
    """
    return jnp.exp(-0.5 * scaled_sqdist(X, Z, lengthscale))
