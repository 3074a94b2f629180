# mefisto_jax/predict.py
"""
Interpolation and imputation from a trained model.

All functions are pure: they read a TrainedModel and return new arrays.
Covariates passed here live on the scale the GP was trained on, i.e. the
reference group's scale when warping was enabled.
"""
from __future__ import annotations

from typing import Optional, Sequence

import numpy as np

from .errors import ConfigurationError
from .likelihoods import get as get_likelihood
from .trained import TrainedModel


def _require_trained(model) -> TrainedModel:
    if not isinstance(model, TrainedModel):
        raise ConfigurationError(f"Expected a trained model, got {type(model).__name__}")
    if not model.status.is_trained:
        raise ConfigurationError(f"Model is not trained (status {model.status.value})")
    return model


def _group_codes(model: TrainedModel, groups) -> list:
    if groups is None:
        return list(range(model.n_groups))
    if isinstance(groups, (str, int, np.integer)):
        groups = [groups]
    return [model.group_code(g) for g in groups]


def interpolate_factors(
    model: TrainedModel,
    new_covariates,
    groups: Optional[Sequence] = None,
    return_variance: bool = True,
):
    """
    Predict the smooth component of every factor at new covariate values.

    Args:
        model: trained model with covariates
        new_covariates: (Q,) or (Q, C) query points, seen or unseen
        groups: group names or codes to predict for (default all groups)
        return_variance: False skips the variance computation

    Returns:
        mean (G', Q, K), variance (G', Q, K) or None
    """
    model = _require_trained(model)
    if not model.has_gp:
        raise ConfigurationError("Model was trained without covariates; nothing to interpolate.")
    X = np.asarray(new_covariates, dtype=np.float64)
    if X.ndim == 1:
        X = X[:, None]
    C = model.covariates.shape[1]
    if X.ndim != 2 or X.shape[1] != C:
        raise ConfigurationError(f"Expected covariates with {C} column(s), got shape {X.shape}")
    if not np.isfinite(X).all():
        raise ConfigurationError("Query covariates must be finite")

    codes = _group_codes(model, groups)
    Q = X.shape[0]
    X_all = np.tile(X, (len(codes), 1))
    g_all = np.repeat(np.asarray(codes, dtype=np.int32), Q)
    mean, var = model.fitted_gp().posterior(X_all, g_all, return_variance=return_variance)
    mean = mean.reshape(len(codes), Q, model.n_factors)
    if var is None:
        return mean, None
    return mean, var.reshape(len(codes), Q, model.n_factors)


def _reconstruct(model: TrainedModel, Z: np.ndarray) -> dict:
    out = {}
    for name, W, lik in zip(model.view_names, model.W_mean, model.likelihoods):
        F = Z @ W.T
        out[name] = np.asarray(get_likelihood(lik).inverse_link(F))
    return out


def impute(
    model: TrainedModel,
    new_covariates=None,
    groups: Optional[Sequence] = None,
) -> dict:
    """
    Predicted observations of every view.

    Without covariates the training factors are used, giving (N, D_v) per
    view. With covariates the interpolated factor means are used, giving
    (G', Q, D_v). Non-Gaussian views are returned on the data scale (rate
    or probability). Gaussian views are on the group-centred scale used in
    training.

    Returns:
        dict view name -> predictions
    """
    model = _require_trained(model)
    if new_covariates is None:
        Z = model.Z_mean
        if groups is not None:
            Z = Z[np.isin(model.groups, _group_codes(model, groups))]
        return _reconstruct(model, Z)
    mean, _ = interpolate_factors(model, new_covariates, groups=groups, return_variance=False)
    return _reconstruct(model, mean)


def fill_missing(model: TrainedModel) -> dict:
    """Training data with every missing entry replaced by its prediction."""
    model = _require_trained(model)
    predicted = impute(model)
    return {
        name: np.where(np.isnan(Y), predicted[name], Y)
        for name, Y in zip(model.view_names, model.data)
    }


__all__ = ["interpolate_factors", "impute", "fill_missing"]
