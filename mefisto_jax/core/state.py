# mefisto_jax/core/state.py
from __future__ import annotations

from dataclasses import dataclass, replace
from typing import Any, Optional

import jax.numpy as jnp
from jax.tree_util import register_pytree_node_class, tree_leaves


@register_pytree_node_class
@dataclass(frozen=True)
class ModelState:
    """
    Variational parameters of the factor model.

    This is the only object replaced by the inference loop; every update is
    a pure function ModelState -> ModelState.

    Z_mean, Z_var:   (N, K) moments of q(Z)
    W_mean, W_var:   tuple over views of (D_v, K) moments of q(W_v)
    tau:             tuple over views of (D_v,) expected noise precision
                     (fixed Seeger-Bouchard kappa for non-Gaussian views)
    tau_a, tau_b:    tuple over views of (D_v,) Gamma posterior of tau
    alpha_a, alpha_b: (V, K) Gamma posterior of the ARD precisions
    precision:       (N, K) data precision contributions h to q(z_k)
    kl_z:            (K,) KL(q(z_k) || p(z_k)) at the last factor update
    covariates:      (N, C) covariates in use (warped when alignment is on)
    gp_raw:          unconstrained GP hyperparameters (pytree) or None
    """
    Z_mean: jnp.ndarray
    Z_var: jnp.ndarray
    W_mean: tuple
    W_var: tuple
    tau: tuple
    tau_a: tuple
    tau_b: tuple
    alpha_a: jnp.ndarray
    alpha_b: jnp.ndarray
    precision: jnp.ndarray
    kl_z: jnp.ndarray
    covariates: Optional[jnp.ndarray] = None
    gp_raw: Any = None

    # ---- pytree protocol ----
    def tree_flatten(self):
        children = (
            self.Z_mean,
            self.Z_var,
            self.W_mean,
            self.W_var,
            self.tau,
            self.tau_a,
            self.tau_b,
            self.alpha_a,
            self.alpha_b,
            self.precision,
            self.kl_z,
            self.covariates,
            self.gp_raw,
        )
        return children, None

    @classmethod
    def tree_unflatten(cls, aux, children):
        return cls(*children)

    @property
    def n_factors(self) -> int:
        return self.Z_mean.shape[1]

    @property
    def alpha(self) -> jnp.ndarray:
        return self.alpha_a / self.alpha_b

    def is_finite(self) -> bool:
        """True when every variational parameter is finite (missing covariates are NaN by design)."""
        return all(bool(jnp.all(jnp.isfinite(leaf))) for leaf in tree_leaves(self.update(covariates=None)))

    def update(self, **changes) -> ModelState:
        return replace(self, **changes)


__all__ = ["ModelState"]
