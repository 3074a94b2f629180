# mefisto_jax/likelihoods/__init__.py

from .base import register, get, available

from .gaussian import gaussian
from .bernoulli import bernoulli
from .poisson import poisson

# --------------------------------------------------
# Registry
# --------------------------------------------------
register("gaussian", gaussian)
register("bernoulli", bernoulli)
register("poisson", poisson)

__all__ = ["get", "register", "available", "gaussian", "bernoulli", "poisson"]
