# mefisto_jax/core/data.py
"""
Data layer.

Containers for multi-view, multi-group observations with sample covariates.
This module deliberately contains no inference logic: it validates inputs,
keeps sample identity consistent across views, groups and covariates, and
applies the pre-training transformations (group centring, view scaling,
exclusion of degenerate views).

Missing observations are NaN. A sample whose covariate row contains NaN is
kept for the factor model but excluded from every GP computation.
"""
from __future__ import annotations

import warnings
from dataclasses import dataclass, field, replace
from typing import Mapping, Optional, Sequence, Union

import numpy as np

from ..errors import ConfigurationError
from ..likelihoods import get as get_likelihood

ArrayLike = Union[np.ndarray, Sequence]


@dataclass(frozen=True)
class View:
    """
    One data modality.

    data: (N, D) float array, NaN marks a missing entry
    likelihood: registered likelihood name
    """
    name: str
    data: np.ndarray
    likelihood: str = "gaussian"
    feature_names: tuple = ()

    @property
    def n_features(self) -> int:
        return self.data.shape[1]

    @property
    def mask(self) -> np.ndarray:
        """Observed-entry mask (N, D)."""
        return ~np.isnan(self.data)


@dataclass(frozen=True)
class MultiViewData:
    """
    Multi-view data view.

    - views: one View per modality, all sharing the sample axis
    - groups: (N,) group label per sample
    - covariates: (N, C) or None

    Immutable once built; transformations return new instances.
    """
    views: tuple
    sample_ids: tuple
    groups: np.ndarray
    group_names: tuple
    covariates: Optional[np.ndarray] = None
    excluded_views: tuple = field(default=())

    # ------------------------------------------------------------------
    # Construction
    # ------------------------------------------------------------------
    @classmethod
    def from_arrays(
        cls,
        views: Mapping[str, object],
        *,
        groups: Optional[Union[ArrayLike, Mapping[str, str]]] = None,
        covariates: Optional[Union[ArrayLike, Mapping[str, object]]] = None,
        likelihoods: Optional[Mapping[str, str]] = None,
        sample_ids: Optional[Sequence[str]] = None,
        feature_names: Optional[Mapping[str, Sequence[str]]] = None,
    ) -> MultiViewData:
        """
        Build and validate a data container.

        Args:
            views: view name -> (N, D) array, or view name -> (array, likelihood)
            groups: per-sample labels, or a mapping sample id -> label.
                    None puts every sample in a single group.
            covariates: (N,) / (N, C) array, or mapping sample id -> value(s).
                        Samples absent from a mapping get a missing covariate.
            likelihoods: view name -> likelihood (overrides tuple entries)
            sample_ids: sample identifiers (default "sample_0", ...)
            feature_names: view name -> feature identifiers

        Raises:
            ConfigurationError on any inconsistency.
        """
        if not views:
            raise ConfigurationError("At least one view is required.")
        likelihoods = dict(likelihoods or {})
        feature_names = dict(feature_names or {})

        built = []
        n_samples = None
        for name, value in views.items():
            if isinstance(value, tuple):
                matrix, lik = value
            else:
                matrix, lik = value, "gaussian"
            lik = likelihoods.pop(name, lik)
            try:
                Y = np.asarray(matrix, dtype=np.float64)
            except (TypeError, ValueError) as e:
                raise ConfigurationError(f"View '{name}' is not numeric: {e}") from e
            if Y.ndim != 2:
                raise ConfigurationError(f"View '{name}' must be 2-D (samples x features), got ndim={Y.ndim}")
            if n_samples is None:
                n_samples = Y.shape[0]
            elif Y.shape[0] != n_samples:
                raise ConfigurationError(
                    f"View '{name}' has {Y.shape[0]} samples, expected {n_samples}"
                )
            if np.isinf(Y).any():
                raise ConfigurationError(f"View '{name}' contains Inf values")
            try:
                likelihood = get_likelihood(lik)
            except KeyError as e:
                raise ConfigurationError(str(e)) from e
            likelihood.validate(Y, name)

            names = tuple(str(f) for f in feature_names.pop(name, (f"{name}_feature_{j}" for j in range(Y.shape[1]))))
            if len(names) != Y.shape[1]:
                raise ConfigurationError(f"View '{name}': {len(names)} feature names for {Y.shape[1]} features")
            if len(set(names)) != len(names):
                raise ConfigurationError(f"View '{name}' has duplicate feature names")
            built.append(View(name=str(name), data=Y, likelihood=lik, feature_names=names))

        if likelihoods:
            raise ConfigurationError(f"Likelihoods given for unknown views: {sorted(likelihoods)}")
        if feature_names:
            raise ConfigurationError(f"Feature names given for unknown views: {sorted(feature_names)}")

        if sample_ids is None:
            sample_ids = tuple(f"sample_{i}" for i in range(n_samples))
        else:
            sample_ids = tuple(str(s) for s in sample_ids)
            if len(sample_ids) != n_samples:
                raise ConfigurationError(f"{len(sample_ids)} sample ids for {n_samples} samples")
            if len(set(sample_ids)) != len(sample_ids):
                raise ConfigurationError("Sample ids must be unique")

        group_labels = _resolve_groups(groups, sample_ids)
        # Keep first-appearance order so the first group is the natural reference.
        group_names = tuple(dict.fromkeys(group_labels.tolist()))
        cov = _resolve_covariates(covariates, sample_ids)

        return cls(
            views=tuple(built),
            sample_ids=sample_ids,
            groups=group_labels,
            group_names=group_names,
            covariates=cov,
        )

    @classmethod
    def from_mappings(
        cls,
        views: Mapping[str, object],
        *,
        groups: Optional[Union[ArrayLike, Mapping[str, str]]] = None,
        covariates: Optional[Union[ArrayLike, Mapping[str, object]]] = None,
        likelihoods: Optional[Mapping[str, str]] = None,
        sample_ids: Optional[Sequence[str]] = None,
        feature_names: Optional[Mapping[str, Sequence[str]]] = None,
    ) -> MultiViewData:
        """
        Build from per-sample records instead of aligned matrices.

        Args:
            views: view name -> {sample id: (D,) row}, or view name ->
                   (records, likelihood)
            sample_ids: common sample order. Default: first appearance
                        across views. A sample absent from a view gets an
                        all-missing row in that view.
            groups, covariates, likelihoods, feature_names: as in from_arrays,
                        arrays follow the common sample order

        Raises:
            ConfigurationError: records for samples outside `sample_ids`,
            rows of different lengths within a view, or any from_arrays check.
        """
        if not views:
            raise ConfigurationError("At least one view is required.")
        records, view_liks = {}, {}
        for name, value in views.items():
            if isinstance(value, tuple):
                rows, view_liks[name] = value
            else:
                rows = value
            if not isinstance(rows, Mapping):
                raise ConfigurationError(f"View '{name}' must map sample ids to rows")
            records[name] = {str(k): r for k, r in rows.items()}

        if sample_ids is None:
            order = tuple(dict.fromkeys(s for rows in records.values() for s in rows))
        else:
            order = tuple(str(s) for s in sample_ids)
            known = set(order)
            for name, rows in records.items():
                unknown = set(rows) - known
                if unknown:
                    raise ConfigurationError(f"View '{name}' has records for unknown samples: {sorted(unknown)[:5]}")

        arrays = {}
        for name, rows in records.items():
            try:
                rows = {s: np.atleast_1d(np.asarray(r, dtype=np.float64)) for s, r in rows.items()}
            except (TypeError, ValueError) as e:
                raise ConfigurationError(f"View '{name}' is not numeric: {e}") from e
            widths = {r.shape for r in rows.values()}
            if len(widths) > 1:
                raise ConfigurationError(f"View '{name}' has rows of different shapes: {sorted(widths)}")
            n_features = widths.pop()[0] if widths else 0
            Y = np.full((len(order), n_features), np.nan)
            for i, s in enumerate(order):
                if s in rows:
                    Y[i] = rows[s]
            arrays[name] = (Y, view_liks[name]) if name in view_liks else Y

        return cls.from_arrays(
            arrays,
            groups=groups,
            covariates=covariates,
            likelihoods=likelihoods,
            sample_ids=order,
            feature_names=feature_names,
        )

    # ------------------------------------------------------------------
    # Views
    # ------------------------------------------------------------------
    @property
    def n_samples(self) -> int:
        return len(self.sample_ids)

    @property
    def n_groups(self) -> int:
        return len(self.group_names)

    @property
    def view_names(self) -> tuple:
        return tuple(v.name for v in self.views)

    @property
    def group_index(self) -> np.ndarray:
        """(N,) integer group code, in the order of group_names."""
        lookup = {g: i for i, g in enumerate(self.group_names)}
        return np.array([lookup[g] for g in self.groups], dtype=np.int32)

    @property
    def has_covariates(self) -> bool:
        return self.covariates is not None and bool(self.covariate_mask.any())

    @property
    def covariate_mask(self) -> np.ndarray:
        """(N,) True where the sample has a complete covariate row."""
        if self.covariates is None:
            return np.zeros(self.n_samples, dtype=bool)
        return ~np.isnan(self.covariates).any(axis=1)

    def view(self, name: str) -> View:
        for v in self.views:
            if v.name == name:
                return v
        raise KeyError(f"Unknown view '{name}'. Available: {list(self.view_names)}")

    def __len__(self) -> int:
        return self.n_samples


def _resolve_groups(groups, sample_ids) -> np.ndarray:
    n = len(sample_ids)
    if groups is None:
        return np.array(["group_0"] * n, dtype=object)
    if isinstance(groups, Mapping):
        unknown = set(map(str, groups)) - set(sample_ids)
        if unknown:
            raise ConfigurationError(f"Group labels given for unknown samples: {sorted(unknown)[:5]}")
        lookup = {str(k): str(v) for k, v in groups.items()}
        missing = [s for s in sample_ids if s not in lookup]
        if missing:
            raise ConfigurationError(f"Samples without a group: {missing[:5]}")
        return np.array([lookup[s] for s in sample_ids], dtype=object)
    labels = np.asarray([str(g) for g in groups], dtype=object)
    if labels.shape != (n,):
        raise ConfigurationError(f"Expected {n} group labels, got {labels.shape[0]}")
    return labels


def _resolve_covariates(covariates, sample_ids) -> Optional[np.ndarray]:
    n = len(sample_ids)
    if covariates is None:
        return None
    if isinstance(covariates, Mapping):
        unknown = set(map(str, covariates)) - set(sample_ids)
        if unknown:
            raise ConfigurationError(f"Covariates given for unknown samples: {sorted(unknown)[:5]}")
        lookup = {str(k): np.atleast_1d(np.asarray(v, dtype=np.float64)) for k, v in covariates.items()}
        dims = {v.shape for v in lookup.values()}
        if len(dims) > 1:
            raise ConfigurationError(f"Covariate values have inconsistent shapes: {sorted(dims)}")
        c_dim = dims.pop()[0] if dims else 1
        cov = np.full((n, c_dim), np.nan)
        for i, s in enumerate(sample_ids):
            if s in lookup:
                cov[i] = lookup[s]
    else:
        try:
            cov = np.asarray(covariates, dtype=np.float64)
        except (TypeError, ValueError) as e:
            raise ConfigurationError(f"Covariates are not numeric: {e}") from e
        if cov.ndim == 1:
            cov = cov[:, None]
        if cov.ndim != 2 or cov.shape[0] != n:
            raise ConfigurationError(f"Covariates must have shape ({n},) or ({n}, C), got {cov.shape}")
    if np.isinf(cov).any():
        raise ConfigurationError("Covariates contain Inf values")
    return cov


# ============================================================================
# Pre-training transformations
# ============================================================================

def prepare_data(
    data: MultiViewData,
    *,
    center_groups: bool = True,
    scale_views: bool = False,
) -> MultiViewData:
    """
    Return a copy ready for training.

    - Views that are entirely missing or have zero variance are excluded
      (RuntimeWarning, recorded in `excluded_views`).
    - Gaussian views are centred per group and feature (`center_groups`) and
      optionally scaled to unit total variance (`scale_views`).
    """
    kept = []
    excluded = list(data.excluded_views)
    gidx = data.group_index
    for v in data.views:
        Y = v.data
        if Y.size == 0 or v.mask.sum() == 0:
            warnings.warn(f"View '{v.name}' is empty and is excluded from training.", RuntimeWarning)
            excluded.append(v.name)
            continue
        if not np.nanvar(Y) > 0.0:
            warnings.warn(f"View '{v.name}' has zero variance and is excluded from training.", RuntimeWarning)
            excluded.append(v.name)
            continue

        if v.likelihood == "gaussian":
            Y = Y.copy()
            if center_groups:
                for g in range(data.n_groups):
                    rows = gidx == g
                    block = Y[rows]
                    observed = ~np.isnan(block)
                    counts = observed.sum(axis=0)
                    sums = np.where(observed, block, 0.0).sum(axis=0)
                    means = np.divide(sums, counts, out=np.zeros_like(sums), where=counts > 0)
                    Y[rows] = block - means[None, :]
            if scale_views:
                Y = Y / np.sqrt(np.nansum(np.nanvar(Y, axis=0)))
        kept.append(replace(v, data=Y))

    if not kept:
        raise ConfigurationError("All views were excluded; nothing to train on.")
    return replace(data, views=tuple(kept), excluded_views=tuple(excluded))


__all__ = ["View", "MultiViewData", "prepare_data"]
