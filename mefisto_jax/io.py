# mefisto_jax/io.py
"""
Export and import of trained models.

A bundle is a single .npz file: every array of the TrainedModel stored as
float64 / int32 without compression loss, plus one JSON string holding
names, likelihoods, options and training metadata. Loading a bundle gives a
model whose interpolation and imputation outputs equal the original's.
"""
from __future__ import annotations

import json
import logging
import os
from typing import Union

import numpy as np

from .core.status import TrainingStatus
from .errors import ConfigurationError
from .trained import TrainedModel

logger = logging.getLogger(__name__)

FORMAT_VERSION = 1

PathLike = Union[str, os.PathLike]

# Arrays that may be absent (stored only when not None)
_OPTIONAL = ("covariates_raw", "covariates", "lengthscale", "smoothness", "group_kernel", "inducing")


def save_model(model: TrainedModel, path: PathLike) -> str:
    """
    Write a trained model to `path` (".npz" is appended when missing).

    Returns:
        the path written
    """
    if not isinstance(model, TrainedModel):
        raise ConfigurationError(f"Expected a trained model, got {type(model).__name__}")
    path = os.fspath(path)
    if not path.endswith(".npz"):
        path = path + ".npz"

    arrays = {
        "groups": np.asarray(model.groups, dtype=np.int32),
        "Z_mean": np.asarray(model.Z_mean, dtype=np.float64),
        "Z_var": np.asarray(model.Z_var, dtype=np.float64),
        "alpha": np.asarray(model.alpha, dtype=np.float64),
        "precision": np.asarray(model.precision, dtype=np.float64),
        "elbo_trace": np.asarray(model.elbo_trace, dtype=np.float64),
    }
    for name in _OPTIONAL:
        value = getattr(model, name)
        if value is not None:
            arrays[name] = np.asarray(value, dtype=np.float64)
    for v in range(len(model.view_names)):
        arrays[f"data_{v}"] = np.asarray(model.data[v], dtype=np.float64)
        arrays[f"W_mean_{v}"] = np.asarray(model.W_mean[v], dtype=np.float64)
        arrays[f"W_var_{v}"] = np.asarray(model.W_var[v], dtype=np.float64)
        arrays[f"tau_{v}"] = np.asarray(model.tau[v], dtype=np.float64)

    meta = {
        "format_version": FORMAT_VERSION,
        "view_names": list(model.view_names),
        "group_names": list(model.group_names),
        "sample_ids": list(model.sample_ids),
        "feature_names": [list(f) for f in model.feature_names],
        "likelihoods": list(model.likelihoods),
        "status": model.status.value,
        "kernel": model.kernel,
        "group_mode": model.group_mode,
        "jitter": model.jitter,
        "metadata": model.metadata,
    }
    arrays["metadata"] = np.array(json.dumps(meta))
    np.savez(path, **arrays)
    logger.info(f"Saved model to {path}")
    return path


def load_model(path: PathLike) -> TrainedModel:
    """Read a bundle written by save_model."""
    path = os.fspath(path)
    with np.load(path, allow_pickle=False) as bundle:
        arrays = {key: bundle[key] for key in bundle.files}
    try:
        meta = json.loads(str(arrays.pop("metadata")))
    except KeyError as e:
        raise ConfigurationError(f"{path} is not a model bundle (no metadata)") from e
    if meta.get("format_version") != FORMAT_VERSION:
        raise ConfigurationError(f"Unsupported bundle version {meta.get('format_version')!r}")

    n_views = len(meta["view_names"])
    model = TrainedModel(
        view_names=tuple(meta["view_names"]),
        group_names=tuple(meta["group_names"]),
        sample_ids=tuple(meta["sample_ids"]),
        feature_names=tuple(tuple(f) for f in meta["feature_names"]),
        likelihoods=tuple(meta["likelihoods"]),
        data=tuple(arrays[f"data_{v}"] for v in range(n_views)),
        groups=arrays["groups"],
        covariates_raw=arrays.get("covariates_raw"),
        covariates=arrays.get("covariates"),
        Z_mean=arrays["Z_mean"],
        Z_var=arrays["Z_var"],
        W_mean=tuple(arrays[f"W_mean_{v}"] for v in range(n_views)),
        W_var=tuple(arrays[f"W_var_{v}"] for v in range(n_views)),
        tau=tuple(arrays[f"tau_{v}"] for v in range(n_views)),
        alpha=arrays["alpha"],
        lengthscale=arrays.get("lengthscale"),
        smoothness=arrays.get("smoothness"),
        group_kernel=arrays.get("group_kernel"),
        precision=arrays["precision"],
        inducing=arrays.get("inducing"),
        elbo_trace=arrays["elbo_trace"],
        status=TrainingStatus(meta["status"]),
        kernel=meta["kernel"],
        group_mode=meta["group_mode"],
        jitter=meta["jitter"],
        metadata=meta["metadata"],
    )
    logger.info(f"Loaded model from {path}")
    return model


__all__ = ["save_model", "load_model", "FORMAT_VERSION"]
