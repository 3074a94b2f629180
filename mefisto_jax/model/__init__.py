# mefisto_jax/model/__init__.py
"""
Linear multi-view factor model: variational updates and ELBO.
"""
from .elbo import elbo, elbo_terms, gamma_kl
from .factor_model import (
    ViewArrays,
    init_state,
    linear_predictor,
    targets,
    update_alpha,
    update_factors,
    update_tau,
    update_weights,
    view_arrays,
)

__all__ = [
    "ViewArrays",
    "view_arrays",
    "init_state",
    "linear_predictor",
    "targets",
    "update_weights",
    "update_factors",
    "update_alpha",
    "update_tau",
    "elbo",
    "elbo_terms",
    "gamma_kl",
]
