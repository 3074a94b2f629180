# mefisto_jax/trained.py
"""
Immutable record of a trained model.

Everything needed to interpolate, impute and export lives here as plain
numpy arrays plus JSON-friendly metadata; there are no hidden caches.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional

import numpy as np

from .core.status import TrainingStatus
from .errors import ConfigurationError
from .gp.engine import FittedGP, GPEngine, GPHyperparameters
from .gp.group_kernel import sharedness


@dataclass(frozen=True)
class TrainedModel:
    """
    Trained multi-view factor model with GP factor priors.

    Arrays
    ------
    data:            tuple over views of (N, D_v) training data (NaN = missing)
    groups:          (N,) integer group codes (order of group_names)
    covariates_raw:  (N, C) covariates as given, or None
    covariates:      (N, C) covariates used by the GP (warped when aligned)
    Z_mean, Z_var:   (N, K)
    W_mean, W_var:   tuple over views of (D_v, K)
    tau:             tuple over views of (D_v,)
    alpha:           (V, K) ARD precisions
    lengthscale, smoothness: (K,)
    group_kernel:    (K, G, G)
    precision:       (N, K) data precision of q(z) (exact interpolation variance)
    inducing:        (M, C) inducing covariates, or None
    elbo_trace:      (T,)
    """
    view_names: tuple
    group_names: tuple
    sample_ids: tuple
    feature_names: tuple
    likelihoods: tuple
    data: tuple
    groups: np.ndarray
    covariates_raw: Optional[np.ndarray]
    covariates: Optional[np.ndarray]
    Z_mean: np.ndarray
    Z_var: np.ndarray
    W_mean: tuple
    W_var: tuple
    tau: tuple
    alpha: np.ndarray
    lengthscale: Optional[np.ndarray]
    smoothness: Optional[np.ndarray]
    group_kernel: Optional[np.ndarray]
    precision: np.ndarray
    inducing: Optional[np.ndarray]
    elbo_trace: np.ndarray
    status: TrainingStatus = TrainingStatus.MAX_ITER_REACHED
    kernel: str = "rbf"
    group_mode: str = "learned"
    jitter: float = 1e-6
    metadata: dict = field(default_factory=dict)

    # ------------------------------------------------------------------
    # Shapes
    # ------------------------------------------------------------------
    @property
    def n_samples(self) -> int:
        return self.Z_mean.shape[0]

    @property
    def n_factors(self) -> int:
        return self.Z_mean.shape[1]

    @property
    def n_groups(self) -> int:
        return len(self.group_names)

    @property
    def has_gp(self) -> bool:
        return self.smoothness is not None

    @property
    def gp_rows(self) -> np.ndarray:
        """Indices of the samples covered by the GP priors."""
        if self.covariates is None:
            return np.zeros(0, dtype=int)
        return np.flatnonzero(~np.isnan(self.covariates).any(axis=1))

    # ------------------------------------------------------------------
    # Lookup helpers
    # ------------------------------------------------------------------
    def _view_index(self, view) -> int:
        if isinstance(view, (int, np.integer)):
            if not 0 <= view < len(self.view_names):
                raise ConfigurationError(f"View index {view} out of range")
            return int(view)
        if view not in self.view_names:
            raise ConfigurationError(f"Unknown view '{view}'. Available: {list(self.view_names)}")
        return self.view_names.index(view)

    def group_code(self, group) -> int:
        if isinstance(group, (int, np.integer)):
            if not 0 <= group < self.n_groups:
                raise ConfigurationError(f"Group index {group} out of range")
            return int(group)
        if group not in self.group_names:
            raise ConfigurationError(f"Unknown group '{group}'. Available: {list(self.group_names)}")
        return self.group_names.index(group)

    # ------------------------------------------------------------------
    # Accessors
    # ------------------------------------------------------------------
    def get_factors(self, group=None, return_variance: bool = False):
        """Factor means (N, K), optionally restricted to one group."""
        rows = slice(None) if group is None else self.groups == self.group_code(group)
        if return_variance:
            return self.Z_mean[rows].copy(), self.Z_var[rows].copy()
        return self.Z_mean[rows].copy()

    def get_weights(self, view=None):
        """Weights of one view (D_v, K), or a dict over all views."""
        if view is None:
            return {name: W.copy() for name, W in zip(self.view_names, self.W_mean)}
        return self.W_mean[self._view_index(view)].copy()

    def get_smoothness(self) -> Optional[np.ndarray]:
        return None if self.smoothness is None else self.smoothness.copy()

    def get_group_kernels(self) -> Optional[np.ndarray]:
        return None if self.group_kernel is None else self.group_kernel.copy()

    def get_sharedness(self) -> Optional[np.ndarray]:
        if self.group_kernel is None:
            return None
        return np.array([sharedness(Kg) for Kg in self.group_kernel])

    def variance_explained(self) -> np.ndarray:
        """
        Fraction of variance explained, R^2 = 1 - SS_res / SS_tot, per group,
        view and factor.

        Returns:
            (G, V, K); NaN for non-Gaussian views
        """
        out = np.full((self.n_groups, len(self.view_names), self.n_factors), np.nan)
        for v, (Y, W, lik) in enumerate(zip(self.data, self.W_mean, self.likelihoods)):
            if lik != "gaussian":
                continue
            for g in range(self.n_groups):
                rows = self.groups == g
                Yg = Y[rows]
                observed = ~np.isnan(Yg)
                Y0 = np.where(observed, Yg, 0.0)
                ss_tot = np.sum(Y0 ** 2)
                if ss_tot == 0:
                    continue
                for k in range(self.n_factors):
                    pred = np.outer(self.Z_mean[rows, k], W[:, k])
                    ss_res = np.sum(np.where(observed, (Y0 - pred) ** 2, 0.0))
                    out[g, v, k] = 1.0 - ss_res / ss_tot
        return out

    def top_features(self, view, factor: int, n: int = 10) -> list:
        """Features with the largest absolute weight on a factor, as (name, weight)."""
        v = self._view_index(view)
        if not 0 <= factor < self.n_factors:
            raise ConfigurationError(f"Factor {factor} out of range")
        w = self.W_mean[v][:, factor]
        order = np.argsort(-np.abs(w), kind="stable")[:n]
        return [(self.feature_names[v][j], float(w[j])) for j in order]

    # ------------------------------------------------------------------
    # GP
    # ------------------------------------------------------------------
    def fitted_gp(self) -> FittedGP:
        """Rebuild the GP posterior from the stored arrays."""
        if not self.has_gp:
            raise ConfigurationError("Model was trained without covariates; no GP posterior available.")
        rows = self.gp_rows
        engine = GPEngine(
            kernel=self.kernel,
            group_mode=self.group_mode,
            n_groups=self.n_groups,
            inducing=self.inducing,
            jitter=self.jitter,
        )
        hyper = GPHyperparameters(
            lengthscale=self.lengthscale,
            smoothness=self.smoothness,
            group_kernel=self.group_kernel,
            raw=None,
        )
        return FittedGP(
            engine=engine,
            hyper=hyper,
            X=self.covariates[rows],
            gidx=self.groups[rows],
            mean=self.Z_mean[rows],
            precision=self.precision[rows],
        )


__all__ = ["TrainedModel"]
