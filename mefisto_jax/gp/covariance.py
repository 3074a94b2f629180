# mefisto_jax/gp/covariance.py
"""
Prior covariance operators for one factor.

Three structures share one interface:

- DenseCovariance:    Sigma given as a full (N, N) matrix (Cholesky based)
- LowRankCovariance:  Sigma = F F^T + diag(d), F (N, R) (Woodbury based)
- DiagonalCovariance: Sigma = diag(d)

Interface:
    solve(v)      Sigma^{-1} v            (v: (N,) or (N, Q))
    matvec(v)     Sigma v
    logdet()      log|Sigma|
    inv_diag()    diag(Sigma^{-1})
    diag()        diag(Sigma)
    condition(h)  ConditionedCovariance for the posterior
                  C = (Sigma^{-1} + diag(h))^{-1}

The conditioned operators never form Sigma^{-1}: with S = diag(sqrt(h)),

    C = Sigma - Sigma S B^{-1} S Sigma,      B = I + S Sigma S,

and for the low-rank case (e = 1/d + h)

    C = diag(1/e) + Q B_r^{-1} Q^T,   Q = F / (1 + d h),
    B_r = I + F^T diag(h / (1 + d h)) F,
    log|B| = sum log(1 + d h) + log|B_r|.

All methods are pure jnp and safe to trace under jit/vmap.
"""
from __future__ import annotations

import jax.numpy as jnp
from jax.scipy.linalg import cho_solve, solve_triangular

from .utils import symmetrize


def _scale_rows(x, s):
    return x * s if x.ndim == 1 else x * s[:, None]


def _chol_logdet(L):
    return 2.0 * jnp.sum(jnp.log(jnp.diag(L)))


# ============================================================================
# Posterior (conditioned) operators
# ============================================================================

class ConditionedCovariance:
    """Posterior covariance C = (Sigma^{-1} + diag(h))^{-1}."""

    def __init__(self, h, matvec_fn, diag, logdet_B):
        self.h = h
        self._matvec = matvec_fn
        self._diag = diag
        self.logdet_B = logdet_B  # log|I + S Sigma S| = log|Sigma| - log|C|

    def matvec(self, v):
        return self._matvec(v)

    def diag(self):
        return self._diag

    def mean(self, b):
        """Posterior mean C b for the linear term b."""
        return self._matvec(b)

    def kl(self, mean, b):
        """
        KL(N(mean, C) || N(0, Sigma)) at the optimal mean = C b.

        Uses tr(Sigma^{-1} C) = N - sum(h * diag C) and
        mean^T Sigma^{-1} mean = mean^T b - sum(h * mean^2).
        """
        var = self._diag
        h = self.h
        return 0.5 * (
            -jnp.sum(h * var)
            + jnp.dot(mean, b)
            - jnp.sum(h * mean * mean)
            + self.logdet_B
        )


# ============================================================================
# Dense
# ============================================================================

class DenseCovariance:
    def __init__(self, Sigma, jitter: float = 1e-6):
        n = Sigma.shape[0]
        self.Sigma = symmetrize(Sigma) + jitter * jnp.eye(n, dtype=Sigma.dtype)
        self.L = jnp.linalg.cholesky(self.Sigma)
        self.jitter = jitter

    @property
    def n(self) -> int:
        return self.Sigma.shape[0]

    def solve(self, v):
        return cho_solve((self.L, True), v)

    def matvec(self, v):
        return self.Sigma @ v

    def logdet(self):
        return _chol_logdet(self.L)

    def inv_diag(self):
        Linv = solve_triangular(self.L, jnp.eye(self.n, dtype=self.L.dtype), lower=True)
        return jnp.sum(Linv ** 2, axis=0)

    def diag(self):
        return jnp.diag(self.Sigma)

    def condition(self, h) -> ConditionedCovariance:
        S = jnp.sqrt(h)
        SSigma = S[:, None] * self.Sigma  # (N, N)
        B = jnp.eye(self.n, dtype=self.Sigma.dtype) + SSigma * S[None, :]
        L_B = jnp.linalg.cholesky(0.5 * (B + B.T))
        V = solve_triangular(L_B, SSigma, lower=True)  # (N, N)
        C = self.Sigma - V.T @ V
        return ConditionedCovariance(
            h=h,
            matvec_fn=lambda v: C @ v,
            diag=jnp.diag(C),
            logdet_B=_chol_logdet(L_B),
        )


# ============================================================================
# Low rank plus diagonal (Nyström / FITC)
# ============================================================================

class LowRankCovariance:
    def __init__(self, F, d):
        self.F = F  # (N, R)
        self.d = d  # (N,)
        G = F / d[:, None]
        A = jnp.eye(F.shape[1], dtype=F.dtype) + F.T @ G
        self._G = G
        self.L_A = jnp.linalg.cholesky(0.5 * (A + A.T))

    @property
    def n(self) -> int:
        return self.F.shape[0]

    def solve(self, v):
        inner = cho_solve((self.L_A, True), self._G.T @ v)
        return _scale_rows(v, 1.0 / self.d) - self._G @ inner

    def matvec(self, v):
        return self.F @ (self.F.T @ v) + _scale_rows(v, self.d)

    def logdet(self):
        return jnp.sum(jnp.log(self.d)) + _chol_logdet(self.L_A)

    def inv_diag(self):
        W = solve_triangular(self.L_A, self._G.T, lower=True)  # (R, N)
        return 1.0 / self.d - jnp.sum(W ** 2, axis=0)

    def diag(self):
        return jnp.sum(self.F ** 2, axis=1) + self.d

    def condition(self, h) -> ConditionedCovariance:
        F, d = self.F, self.d
        de = 1.0 + d * h
        e_inv = d / de  # 1 / (1/d + h)
        Q = F / de[:, None]
        B_r = jnp.eye(F.shape[1], dtype=F.dtype) + F.T @ (F * (h / de)[:, None])
        L_B = jnp.linalg.cholesky(0.5 * (B_r + B_r.T))
        W = solve_triangular(L_B, Q.T, lower=True)  # (R, N)

        def matvec(v):
            return _scale_rows(v, e_inv) + Q @ cho_solve((L_B, True), Q.T @ v)

        return ConditionedCovariance(
            h=h,
            matvec_fn=matvec,
            diag=e_inv + jnp.sum(W ** 2, axis=0),
            logdet_B=jnp.sum(jnp.log(de)) + _chol_logdet(L_B),
        )


# ============================================================================
# Diagonal (samples outside the GP)
# ============================================================================

class DiagonalCovariance:
    def __init__(self, d):
        self.d = d

    @property
    def n(self) -> int:
        return self.d.shape[0]

    def solve(self, v):
        return _scale_rows(v, 1.0 / self.d)

    def matvec(self, v):
        return _scale_rows(v, self.d)

    def logdet(self):
        return jnp.sum(jnp.log(self.d))

    def inv_diag(self):
        return 1.0 / self.d

    def diag(self):
        return self.d

    def condition(self, h) -> ConditionedCovariance:
        de = 1.0 + self.d * h
        c = self.d / de
        return ConditionedCovariance(
            h=h,
            matvec_fn=lambda v: _scale_rows(v, c),
            diag=c,
            logdet_B=jnp.sum(jnp.log(de)),
        )


__all__ = [
    "ConditionedCovariance",
    "DenseCovariance",
    "LowRankCovariance",
    "DiagonalCovariance",
]
