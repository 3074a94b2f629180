# mefisto_jax/gp/engine.py
"""
GP prior engine.

Learns, for every factor k, the hyperparameters of its GP prior

    Sigma_k = s_k * K_c(lengthscale_k) ∘ K_g,k + (1 - s_k) I

by maximising the expected log prior under the current factor posterior
q(z_k) = N(mu_k, diag(var_k)):

    E_q[log N(z_k; 0, Sigma_k)]
      = -1/2 [log|Sigma_k| + mu_k^T Sigma_k^{-1} mu_k + sum_n var_kn (Sigma_k^{-1})_nn] + const

Optimisation is Type-II style (optax Adam, lax.scan over steps) in an
unconstrained parametrisation, vmapped over factors:

    lengthscale = lo + (hi - lo) * sigmoid(raw_ls)
    s           = S_MAX * sigmoid(raw_s)
    K_g         = correlation(x x^T + diag(exp(raw_d)))   (learned mode)

Samples without a covariate never enter this module.
"""
from __future__ import annotations

import copy
from dataclasses import dataclass
from functools import partial
from typing import Any, Optional

import jax
import jax.numpy as jnp
import numpy as np
import optax
from jax import lax
from jax.tree_util import tree_map

from . import kernels
from .group_kernel import group_kernel, init_learned_params, sharedness
from .prior import FactorPrior, predict_smooth
from .sparsify import (
    n_inducing_points,
    select_inducing_points,
    unique_covariates,
    use_sparse,
)

# Upper bound of the smoothness scale; keeps the nugget (1 - s) away from 0.
S_MAX = 0.999


# ============================================================================
# Hyperparameter containers
# ============================================================================

@dataclass(frozen=True)
class GPHyperparameters:
    """Constrained per-factor hyperparameters plus the raw values they came from."""
    lengthscale: np.ndarray   # (K,)
    smoothness: np.ndarray    # (K,) in [0, 1]
    group_kernel: np.ndarray  # (K, G, G)
    raw: Any                  # dict pytree of unconstrained values

    @property
    def n_factors(self) -> int:
        return self.smoothness.shape[0]

    @property
    def sharedness(self) -> np.ndarray:
        return np.array([sharedness(K) for K in self.group_kernel])


def lengthscale_bounds(X: np.ndarray, max_points: int = 2000) -> tuple[float, float, float]:
    """
    Data-driven lengthscale range.

    lo = 2 * median nearest-neighbour distance between distinct covariates,
    hi = 10 * covariate span. Below lo a factor would be indistinguishable
    from noise, which would make the smoothness scale unidentifiable.

    Returns:
        (lo, hi, span)
    """
    U = unique_covariates(X)
    if U.shape[0] < 2:
        return 1e-3, 1.0, 1.0
    if U.shape[0] > max_points:
        U = U[np.round(np.linspace(0, U.shape[0] - 1, max_points)).astype(int)]
    diff = U[:, None, :] - U[None, :, :]
    D = np.sqrt(np.sum(diff ** 2, axis=-1))
    span = float(D.max())
    np.fill_diagonal(D, np.inf)
    lo = 2.0 * float(np.median(D.min(axis=1)))
    hi = 10.0 * span
    if not hi > lo:
        hi = lo * 10.0
    return lo, hi, span


# ============================================================================
# Objective and optimiser (pure, jitted)
# ============================================================================

def _constrain(raw, lo, hi, *, group_mode: str, n_groups: int):
    ls = lo + (hi - lo) * jax.nn.sigmoid(raw["ls"])
    s = S_MAX * jax.nn.sigmoid(raw["s"])
    Kg = group_kernel(group_mode, n_groups, raw["gk_x"], raw["gk_d"])
    return ls, s, Kg


def _neg_expected_log_prior(raw, mu, var, X, gidx, Xu, lo, hi, *, kernel, group_mode, n_groups, jitter):
    ls, s, Kg = _constrain(raw, lo, hi, group_mode=group_mode, n_groups=n_groups)
    prior = FactorPrior(X, gidx, ls, s, Kg, kernels.get(kernel), Xu=Xu, jitter=jitter)
    cov = prior.covariance()
    return 0.5 * (cov.logdet() + jnp.dot(mu, cov.solve(mu)) + jnp.sum(var * cov.inv_diag()))


@partial(jax.jit, static_argnames=("kernel", "group_mode", "n_groups", "steps", "lr", "jitter"))
def _optimise(raw, mu, var, X, gidx, Xu, lo, hi, *, kernel, group_mode, n_groups, steps, lr, jitter):
    """
    Adam on every factor independently (vmapped).

    Args:
        raw: dict of (K, ...) unconstrained parameters
        mu, var: (K, N) factor posterior means and variances

    Returns:
        raw_opt, energy_trace (K, steps)
    """
    objective = partial(
        _neg_expected_log_prior,
        X=X, gidx=gidx, Xu=Xu, lo=lo, hi=hi,
        kernel=kernel, group_mode=group_mode, n_groups=n_groups, jitter=jitter,
    )
    value_and_grad_fn = jax.value_and_grad(objective)
    optimizer = optax.adam(lr)

    def fit_one(raw_k, mu_k, var_k):
        opt_state = optimizer.init(raw_k)

        def step(carry, _):
            params, opt_state = carry
            val, grad = value_and_grad_fn(params, mu_k, var_k)
            # Non-finite energies or gradients must not poison the parameters
            val = jnp.where(jnp.isfinite(val), val, jnp.inf)
            grad = tree_map(lambda g: jnp.where(jnp.isfinite(g), g, 0.0), grad)
            updates, opt_state = optimizer.update(grad, opt_state, params)
            params = optax.apply_updates(params, updates)
            return (params, opt_state), val

        (params, _), trace = lax.scan(step, (raw_k, opt_state), None, length=steps)
        return params, trace

    return jax.vmap(fit_one)(raw, mu, var)


# ============================================================================
# Engine
# ============================================================================

class GPEngine:
    """
    Per-factor GP priors over (covariate, group) inputs.

    The engine is stateless with respect to training: `fit` returns a
    FittedGP and never mutates the engine.
    """

    def __init__(
        self,
        *,
        kernel: str = "rbf",
        group_mode: str = "learned",
        n_groups: int = 1,
        rank: int = 1,
        bounds: tuple[float, float, float] = (1e-3, 10.0, 1.0),
        inducing: Optional[np.ndarray] = None,
        steps: int = 100,
        lr: float = 5e-2,
        jitter: float = 1e-6,
    ):
        kernels.get(kernel)
        self.kernel = kernel
        self.group_mode = group_mode
        self.n_groups = n_groups
        self.rank = rank
        self.lo, self.hi, self.span = bounds
        self.inducing = None if inducing is None else jnp.asarray(inducing)
        self.steps = steps
        self.lr = lr
        self.jitter = jitter

    @classmethod
    def from_covariates(cls, X: np.ndarray, n_groups: int, cfg) -> GPEngine:
        """
        Build an engine for the GP samples' covariates X (no missing rows),
        deciding on the sparse approximation from the configuration.
        """
        n_unique = unique_covariates(X).shape[0]
        inducing = None
        if use_sparse(n_unique, cfg.sparse_gp, cfg.sparse_threshold):
            M = n_inducing_points(n_unique, n_inducing=cfg.n_inducing, frac_inducing=cfg.frac_inducing)
            inducing = select_inducing_points(X, M)
        return cls(
            kernel=cfg.kernel,
            group_mode=cfg.group_kernel,
            n_groups=n_groups,
            rank=cfg.group_kernel_rank,
            bounds=lengthscale_bounds(X),
            inducing=inducing,
            steps=cfg.gp_steps,
            lr=cfg.gp_lr,
            jitter=cfg.jitter,
        )

    def with_jitter(self, jitter: float) -> GPEngine:
        engine = copy.copy(self)
        engine.jitter = jitter
        return engine

    @property
    def sparse(self) -> bool:
        return self.inducing is not None

    @property
    def kernel_fn(self):
        return kernels.get(self.kernel)

    # ------------------------------------------------------------------
    # Parameters
    # ------------------------------------------------------------------
    def init_raw(self, n_factors: int, smoothness: float = 0.5, lengthscale: Optional[float] = None) -> dict:
        """Unconstrained starting point: s at the midpoint, lengthscale at 20% of the span."""
        if lengthscale is None:
            lengthscale = 0.2 * self.span
        frac = np.clip((lengthscale - self.lo) / (self.hi - self.lo), 0.01, 0.99)
        s_frac = np.clip(smoothness / S_MAX, 1e-4, 1.0 - 1e-4)
        gk_x, gk_d = init_learned_params(n_factors, self.n_groups, self.rank)
        return {
            "ls": jnp.full((n_factors,), float(np.log(frac / (1.0 - frac)))),
            "s": jnp.full((n_factors,), float(np.log(s_frac / (1.0 - s_frac)))),
            "gk_x": gk_x,
            "gk_d": gk_d,
        }

    def constrain(self, raw: dict) -> GPHyperparameters:
        ls, s, Kg = jax.vmap(
            partial(_constrain, group_mode=self.group_mode, n_groups=self.n_groups),
            in_axes=(0, None, None),
        )(raw, self.lo, self.hi)
        return GPHyperparameters(
            lengthscale=np.asarray(ls),
            smoothness=np.clip(np.asarray(s), 0.0, 1.0),
            group_kernel=np.asarray(Kg),
            raw=raw,
        )

    def prior(self, hyper: GPHyperparameters, k: int, X, gidx) -> FactorPrior:
        return FactorPrior(
            jnp.asarray(X),
            jnp.asarray(gidx),
            hyper.lengthscale[k],
            hyper.smoothness[k],
            jnp.asarray(hyper.group_kernel[k]),
            self.kernel_fn,
            Xu=self.inducing,
            jitter=self.jitter,
        )

    # ------------------------------------------------------------------
    # Fit
    # ------------------------------------------------------------------
    def fit(
        self,
        factor_values,
        covariates,
        groups,
        factor_variances=None,
        init: Optional[dict] = None,
    ) -> FittedGP:
        """
        Fit smoothness, lengthscale and group kernel of every factor.

        Args:
            factor_values: (N, K) factor means
            covariates: (N, C); rows with NaN are ignored
            groups: (N,) integer group codes
            factor_variances: (N, K) posterior variances (default 0)
            init: raw parameters to start from (warm start)

        Returns:
            FittedGP (treats the values as exact when predicting)
        """
        Z = np.asarray(factor_values, dtype=np.float64)
        if Z.ndim == 1:
            Z = Z[:, None]
        X = np.asarray(covariates, dtype=np.float64)
        if X.ndim == 1:
            X = X[:, None]
        keep = ~np.isnan(X).any(axis=1)
        X, Z = X[keep], Z[keep]
        gidx = np.asarray(groups, dtype=np.int32)[keep]
        var = np.zeros_like(Z) if factor_variances is None else np.asarray(factor_variances)[keep]

        raw = self.init_raw(Z.shape[1]) if init is None else init
        raw_opt, _ = _optimise(
            raw,
            jnp.asarray(Z.T),
            jnp.asarray(var.T),
            jnp.asarray(X),
            jnp.asarray(gidx),
            self.inducing,
            self.lo,
            self.hi,
            kernel=self.kernel,
            group_mode=self.group_mode,
            n_groups=self.n_groups,
            steps=self.steps,
            lr=self.lr,
            jitter=self.jitter,
        )
        return FittedGP(engine=self, hyper=self.constrain(raw_opt), X=X, gidx=gidx, mean=Z)


@dataclass(frozen=True)
class FittedGP:
    """
    GP hyperparameters bound to the training inputs and factor posterior.

    precision: (N, K) data precision contributions h of q(z); None treats the
    factor values as exactly observed.
    """
    engine: GPEngine
    hyper: GPHyperparameters
    X: np.ndarray
    gidx: np.ndarray
    mean: np.ndarray
    precision: Optional[np.ndarray] = None

    @property
    def smoothness(self) -> np.ndarray:
        return self.hyper.smoothness

    @property
    def group_kernel(self) -> np.ndarray:
        return self.hyper.group_kernel

    def posterior(self, new_covariates, new_groups=None, return_variance: bool = True):
        """
        Predictive mean and variance of every factor's smooth component.

        Args:
            new_covariates: (Q,) or (Q, C), observed or unobserved points
            new_groups: (Q,) integer group codes (default group 0)

        Returns:
            mean (Q, K), variance (Q, K) or None
        """
        Xnew = jnp.asarray(np.atleast_1d(np.asarray(new_covariates, dtype=np.float64)))
        if Xnew.ndim == 1:
            Xnew = Xnew[:, None]
        gnew = (
            jnp.zeros(Xnew.shape[0], dtype=jnp.int32)
            if new_groups is None
            else jnp.asarray(new_groups, dtype=jnp.int32)
        )
        means, variances = [], []
        for k in range(self.hyper.n_factors):
            prior = self.engine.prior(self.hyper, k, self.X, self.gidx)
            cov = prior.covariance()
            conditioned = None if self.precision is None else cov.condition(jnp.asarray(self.precision[:, k]))
            m, v = predict_smooth(
                prior, cov, jnp.asarray(self.mean[:, k]), Xnew, gnew,
                conditioned=conditioned, return_variance=return_variance,
            )
            means.append(m)
            variances.append(v)
        mean = np.stack([np.asarray(m) for m in means], axis=1)
        if not return_variance:
            return mean, None
        return mean, np.stack([np.asarray(v) for v in variances], axis=1)


__all__ = ["S_MAX", "GPHyperparameters", "GPEngine", "FittedGP", "lengthscale_bounds"]
