# mefisto_jax/gp/prior.py
"""
Gaussian-process prior of a single factor.

    Cov(z_i, z_j) = s * k_c(c_i, c_j) * K_g[g_i, g_j] + (1 - s) * delta_ij

The first term is the smooth (covariate-driven) component f, the second an
independent nugget. Prediction at new inputs targets f.
"""
from __future__ import annotations

from typing import Optional

import jax.numpy as jnp

from .covariance import DenseCovariance, LowRankCovariance, ConditionedCovariance
from .sparsify import nystrom_factor, nystrom_cross


class FactorPrior:
    """
    Prior covariance builder for one factor.

    Attributes may be traced arrays; every method is jit/vmap friendly.

    X: (N, C) covariates of the GP samples
    gidx: (N,) group codes
    Xu: (M, C) inducing covariates, or None for the full GP
    """

    def __init__(
        self,
        X,
        gidx,
        lengthscale,
        smoothness,
        Kg,
        kernel_fn,
        Xu=None,
        jitter: float = 1e-6,
    ):
        self.X = X
        self.gidx = gidx
        self.lengthscale = lengthscale
        self.smoothness = smoothness
        self.Kg = Kg
        self.kernel_fn = kernel_fn
        self.Xu = Xu
        self.jitter = jitter

    @property
    def sparse(self) -> bool:
        return self.Xu is not None

    def _nystrom(self):
        return nystrom_factor(
            self.kernel_fn, self.X, self.gidx, self.Xu, self.lengthscale, self.Kg, self.jitter
        )

    def covariance(self):
        s = self.smoothness
        n = self.X.shape[0]
        if not self.sparse:
            Kc = self.kernel_fn(self.X, self.X, self.lengthscale) * self.Kg[self.gidx][:, self.gidx]
            Sigma = s * Kc + (1.0 - s) * jnp.eye(n, dtype=Kc.dtype)
            return DenseCovariance(Sigma, jitter=self.jitter)
        F0, resid = self._nystrom()
        d = (1.0 - s) + s * resid + self.jitter
        return LowRankCovariance(jnp.sqrt(s) * F0, d)

    def cross(self, Xnew, gnew):
        """Cov(f(new), z(train)): (Q, N)."""
        s = self.smoothness
        if not self.sparse:
            return s * self.kernel_fn(Xnew, self.X, self.lengthscale) * self.Kg[gnew][:, self.gidx]
        F0, _ = self._nystrom()
        F_new = nystrom_cross(self.kernel_fn, Xnew, gnew, self.Xu, self.lengthscale, self.Kg, self.jitter)
        return s * (F_new @ F0.T)

    def prior_var(self, gnew):
        """Var(f(new)): (Q,)."""
        return self.smoothness * jnp.diag(self.Kg)[gnew]


def predict_smooth(
    prior: FactorPrior,
    cov,
    mean,
    Xnew,
    gnew,
    conditioned: Optional[ConditionedCovariance] = None,
    return_variance: bool = True,
):
    """
    Predictive distribution of the smooth component at new inputs.

    Given q(z) = N(mean, C) over the training inputs,

        E[f*]   = K*n Sigma^{-1} mean
        Var[f*] = k** - K*n (Sigma^{-1} - Sigma^{-1} C Sigma^{-1}) Kn*

    When `conditioned` is None the training values are treated as exact
    (C = 0), i.e. standard GP regression with the nugget as noise.

    Returns:
        mean (Q,), variance (Q,) or None
    """
    Kx = prior.cross(Xnew, gnew)           # (Q, N)
    f_mean = Kx @ cov.solve(mean)
    if not return_variance:
        return f_mean, None
    Vt = cov.solve(Kx.T)                   # (N, Q)
    explained = jnp.sum(Kx.T * Vt, axis=0)
    if conditioned is not None:
        explained = explained - jnp.sum(Vt * conditioned.matvec(Vt), axis=0)
    f_var = jnp.maximum(prior.prior_var(gnew) - explained, 0.0)
    return f_mean, f_var


__all__ = ["FactorPrior", "predict_smooth"]
