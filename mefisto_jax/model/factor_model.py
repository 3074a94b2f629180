# mefisto_jax/model/factor_model.py
"""
Variational updates of the linear factor model.

    Y_v ≈ Z W_v^T + noise,   z_k ~ GP prior (or N(0, I)),
    w_vdk ~ N(0, 1 / alpha_vk),   tau_vd ~ Gamma (Gaussian views)

Mean-field posterior q(Z) q(W) q(alpha) q(tau) with q(w_vdk) univariate and
q(z_k) jointly Gaussian over samples. Non-Gaussian views are folded in
through Seeger-Bouchard pseudo-data with fixed precision kappa.

Every function here is pure: it takes a ModelState and returns a new one.
Missing entries carry zero weight in every sufficient statistic.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Sequence

import jax
import jax.numpy as jnp
import numpy as np
from jax import lax

from ..core.data import MultiViewData
from ..core.state import ModelState
from ..gp.covariance import DiagonalCovariance
from ..likelihoods import get as get_likelihood

# Gamma prior hyperparameters (shape, rate) of alpha and tau
ALPHA_PRIOR = (1e-3, 1e-3)
TAU_PRIOR = (1e-3, 1e-3)


@dataclass(frozen=True)
class ViewArrays:
    """
    Device arrays of one view.

    Y: (N, D) with missing entries set to 0
    mask: (N, D) 1.0 where observed
    """
    name: str
    likelihood: str
    Y: jnp.ndarray
    mask: jnp.ndarray

    @property
    def lik(self):
        return get_likelihood(self.likelihood)

    @property
    def gaussian(self) -> bool:
        return self.lik.learns_noise

    @property
    def n_obs(self) -> jnp.ndarray:
        return jnp.sum(self.mask, axis=0)


def view_arrays(data: MultiViewData) -> tuple:
    out = []
    for v in data.views:
        mask = v.mask
        out.append(
            ViewArrays(
                name=v.name,
                likelihood=v.likelihood,
                Y=jnp.asarray(np.where(mask, v.data, 0.0)),
                mask=jnp.asarray(mask, dtype=jnp.float64),
            )
        )
    return tuple(out)


# ============================================================================
# Initialisation
# ============================================================================

def _pca_factors(views: Sequence[ViewArrays], n_factors: int, rng: np.random.Generator) -> np.ndarray:
    blocks = []
    for v in views:
        Y = np.asarray(v.Y)
        M = np.asarray(v.mask).astype(bool)
        if v.likelihood == "poisson":
            Y = np.log1p(Y)
        if v.likelihood != "gaussian":
            col_mean = np.where(M, Y, 0.0).sum(0) / np.maximum(M.sum(0), 1)
            Y = np.where(M, Y - col_mean[None, :], 0.0)
        norm = np.sqrt(np.sum(Y ** 2))
        blocks.append(Y / norm if norm > 0 else Y)
    X = np.concatenate(blocks, axis=1)
    U, S, _ = np.linalg.svd(X, full_matrices=False)
    n_pc = min(n_factors, int(np.sum(S > 1e-10 * S[0])) if S.size else 0)
    Z = rng.standard_normal((X.shape[0], n_factors))
    if n_pc > 0:
        Z[:, :n_pc] = U[:, :n_pc] * S[None, :n_pc]
    return (Z - Z.mean(0)) / np.maximum(Z.std(0), 1e-12)


def init_state(
    data: MultiViewData,
    views: Sequence[ViewArrays],
    n_factors: int,
    *,
    init: str = "pca",
    seed: int = 0,
) -> ModelState:
    """
    Z from PCA of the concatenated views (or standard normal draws), W as
    small zero-mean noise, ARD precisions at 1, noise precisions at the
    inverse feature variance.
    """
    rng = np.random.default_rng(seed)
    N = data.n_samples
    if init == "pca":
        Z = _pca_factors(views, n_factors, rng)
    else:
        Z = rng.standard_normal((N, n_factors))

    W_mean, W_var, tau, tau_a, tau_b = [], [], [], [], []
    for v in views:
        D = v.Y.shape[1]
        W_mean.append(jnp.asarray(0.01 * rng.standard_normal((D, n_factors))))
        W_var.append(jnp.ones((D, n_factors)))
        if v.gaussian:
            n_obs = jnp.maximum(v.n_obs, 1.0)
            mean = jnp.sum(v.Y, axis=0) / n_obs
            var = jnp.sum(v.mask * (v.Y - mean) ** 2, axis=0) / n_obs
            var = jnp.where(var > 0, var, 1.0)
            tau_a.append(jnp.ones(D))
            tau_b.append(var)
            tau.append(1.0 / var)
        else:
            _, kappa = v.lik.pseudo_data(v.Y, jnp.zeros_like(v.Y))
            tau_a.append(jnp.ones(D))
            tau_b.append(1.0 / kappa)
            tau.append(kappa)

    V = len(views)
    cov = None if data.covariates is None else jnp.asarray(data.covariates)
    return ModelState(
        Z_mean=jnp.asarray(Z),
        Z_var=jnp.zeros((N, n_factors)),
        W_mean=tuple(W_mean),
        W_var=tuple(W_var),
        tau=tuple(tau),
        tau_a=tuple(tau_a),
        tau_b=tuple(tau_b),
        alpha_a=jnp.ones((V, n_factors)),
        alpha_b=jnp.ones((V, n_factors)),
        precision=jnp.zeros((N, n_factors)),
        kl_z=jnp.zeros(n_factors),
        covariates=cov,
    )


# ============================================================================
# Targets
# ============================================================================

def linear_predictor(state: ModelState, v: int) -> jnp.ndarray:
    return state.Z_mean @ state.W_mean[v].T


def targets(state: ModelState, views: Sequence[ViewArrays]) -> tuple[tuple, tuple]:
    """
    Gaussian targets and precisions of every view.

    Gaussian views use the data and the learned noise precision; the other
    views get pseudo-data around the current linear predictor and their
    kappa precision.
    """
    Ys, taus = [], []
    for v_idx, v in enumerate(views):
        if v.gaussian:
            Ys.append(v.Y)
            taus.append(state.tau[v_idx])
        else:
            Y_tilde, kappa = v.lik.pseudo_data(v.Y, linear_predictor(state, v_idx))
            Ys.append(jnp.where(v.mask > 0, Y_tilde, 0.0))
            taus.append(kappa)
    return tuple(Ys), tuple(taus)


# ============================================================================
# Weights
# ============================================================================

@jax.jit
def _update_view_weights(Y, M, tau, EZ, EZZ, W, alpha):
    """Coordinate ascent over factors for one view. Returns (W_mean, W_var)."""
    K = W.shape[1]
    MT = M * tau[None, :]  # (N, D) masked precision

    def body(k, carry):
        W, W_var = carry
        zk = EZ[:, k]
        resid = Y - EZ @ W.T + jnp.outer(zk, W[:, k])
        prec = alpha[k] + MT.T @ EZZ[:, k]
        mean = ((MT * resid).T @ zk) / prec
        return W.at[:, k].set(mean), W_var.at[:, k].set(1.0 / prec)

    return lax.fori_loop(0, K, body, (W, jnp.zeros_like(W)))


def update_weights(state: ModelState, views: Sequence[ViewArrays], Ys, taus) -> ModelState:
    """Per-view weight updates; views are independent of each other."""
    EZ = state.Z_mean
    EZZ = state.Z_mean ** 2 + state.Z_var
    alpha = state.alpha
    W_mean, W_var = [], []
    for v_idx, v in enumerate(views):
        W, Wv = _update_view_weights(Ys[v_idx], v.mask, taus[v_idx], EZ, EZZ, state.W_mean[v_idx], alpha[v_idx])
        W_mean.append(W)
        W_var.append(Wv)
    return state.update(W_mean=tuple(W_mean), W_var=tuple(W_var))


# ============================================================================
# Factors
# ============================================================================

@jax.jit
def _factor_stats(Ys, Ms, taus, Ws, W_vars, EZ, k):
    """
    Data precision h and linear term b of q(z_k) given the other factors.

    Returns:
        h (N,), b (N,)
    """
    h = jnp.zeros(EZ.shape[0])
    b = jnp.zeros(EZ.shape[0])
    zk = EZ[:, k]
    for Y, M, tau, W, W_var in zip(Ys, Ms, taus, Ws, W_vars):
        MT = M * tau[None, :]
        wk = W[:, k]
        resid = Y - EZ @ W.T + jnp.outer(zk, wk)
        h = h + MT @ (wk ** 2 + W_var[:, k])
        b = b + (MT * resid) @ wk
    return h, b


def update_factors(
    state: ModelState,
    views: Sequence[ViewArrays],
    Ys,
    taus,
    priors: Optional[Sequence] = None,
    gp_index: Optional[np.ndarray] = None,
) -> ModelState:
    """
    Coordinate ascent over factors.

    Args:
        priors: one covariance operator per factor over the GP samples
                (None: every sample has an independent N(0, 1) prior)
        gp_index: (N_gp,) indices of the samples covered by `priors`
    """
    N, K = state.Z_mean.shape
    if priors is None or gp_index is None:
        gp_index = np.zeros(0, dtype=int)
    other_index = np.setdiff1d(np.arange(N), gp_index)
    Ms = tuple(v.mask for v in views)

    EZ, Z_var = state.Z_mean, state.Z_var
    H = jnp.zeros((N, K))
    kl = []
    for k in range(K):
        h, b = _factor_stats(Ys, Ms, taus, state.W_mean, state.W_var, EZ, k)
        kl_k = 0.0
        if gp_index.size:
            cond = priors[k].condition(h[gp_index])
            mean = cond.mean(b[gp_index])
            EZ = EZ.at[gp_index, k].set(mean)
            Z_var = Z_var.at[gp_index, k].set(cond.diag())
            kl_k = kl_k + cond.kl(mean, b[gp_index])
        if other_index.size:
            cond = DiagonalCovariance(jnp.ones(other_index.size)).condition(h[other_index])
            mean = cond.mean(b[other_index])
            EZ = EZ.at[other_index, k].set(mean)
            Z_var = Z_var.at[other_index, k].set(cond.diag())
            kl_k = kl_k + cond.kl(mean, b[other_index])
        H = H.at[:, k].set(h)
        kl.append(kl_k)
    return state.update(Z_mean=EZ, Z_var=Z_var, precision=H, kl_z=jnp.asarray(kl))


# ============================================================================
# ARD and noise
# ============================================================================

def update_alpha(state: ModelState, views: Sequence[ViewArrays]) -> ModelState:
    a0, b0 = ALPHA_PRIOR
    a, b = [], []
    for v_idx, v in enumerate(views):
        EWW = state.W_mean[v_idx] ** 2 + state.W_var[v_idx]
        a.append(jnp.full(state.n_factors, a0 + 0.5 * v.Y.shape[1]))
        b.append(b0 + 0.5 * jnp.sum(EWW, axis=0))
    return state.update(alpha_a=jnp.stack(a), alpha_b=jnp.stack(b))


@jax.jit
def _expected_sq_residual(Y, M, EZ, Z_var, W, W_var):
    """sum_n mask * E[(y - z w)^2] per feature (D,)."""
    F = EZ @ W.T
    EZZ = EZ ** 2 + Z_var
    EWW = W ** 2 + W_var
    second = EZZ @ EWW.T - (EZ ** 2) @ (W ** 2).T
    return jnp.sum(M * ((Y - F) ** 2 + second), axis=0)


def update_tau(state: ModelState, views: Sequence[ViewArrays], Ys, taus, tau_max: float = 1e6) -> ModelState:
    """Gamma update of Gaussian noise precisions; non-Gaussian views keep kappa."""
    a0, b0 = TAU_PRIOR
    tau, tau_a, tau_b = [], [], []
    for v_idx, v in enumerate(views):
        if v.gaussian:
            ss = _expected_sq_residual(v.Y, v.mask, state.Z_mean, state.Z_var, state.W_mean[v_idx], state.W_var[v_idx])
            a = a0 + 0.5 * v.n_obs
            b = b0 + 0.5 * ss
            tau.append(jnp.minimum(a / b, tau_max))
            tau_a.append(a)
            tau_b.append(b)
        else:
            tau.append(taus[v_idx])
            tau_a.append(state.tau_a[v_idx])
            tau_b.append(state.tau_b[v_idx])
    return state.update(tau=tuple(tau), tau_a=tuple(tau_a), tau_b=tuple(tau_b))


__all__ = [
    "ALPHA_PRIOR",
    "TAU_PRIOR",
    "ViewArrays",
    "view_arrays",
    "init_state",
    "linear_predictor",
    "targets",
    "update_weights",
    "update_factors",
    "update_alpha",
    "update_tau",
]
