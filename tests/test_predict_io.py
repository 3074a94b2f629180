import dataclasses
import warnings

import numpy as np
import pytest

from mefisto_jax import (
    ConfigurationError,
    MefistoCFG,
    MultiViewData,
    TrainingStatus,
    fill_missing,
    impute,
    interpolate_factors,
    load_model,
    save_model,
    train,
)


@pytest.fixture(scope="module")
def model():
    rng = np.random.default_rng(0)
    t = np.linspace(0.0, 1.0, 40)
    Z = np.stack([np.sin(2 * np.pi * t), np.cos(2 * np.pi * t)], axis=1)
    Z = np.concatenate([Z, Z + 0.1 * rng.normal(size=Z.shape)])
    W = rng.normal(size=(15, 2)) * 2.0
    Y = Z @ W.T + 0.1 * rng.normal(size=(80, 15))
    Y[3, 4] = np.nan
    Y[50, :3] = np.nan
    counts = rng.poisson(np.exp(0.5 * Z @ rng.normal(size=(2, 8))))
    data = MultiViewData.from_arrays(
        {"rna": Y, "counts": counts},
        likelihoods={"rna": "gaussian", "counts": "poisson"},
        groups=["a"] * 40 + ["b"] * 40,
        covariates=np.concatenate([t, t]),
    )
    cfg = MefistoCFG(n_factors=2, max_iter=30, start_opt=2, opt_freq=5, gp_steps=30)
    with warnings.catch_warnings():
        warnings.simplefilter("ignore", RuntimeWarning)
        return train(data, cfg)


def test_interpolation_shapes_and_determinism(model):
    t_new = np.linspace(-0.2, 1.2, 25)
    mean, var = interpolate_factors(model, t_new)
    assert mean.shape == (2, 25, 2) and var.shape == (2, 25, 2)
    assert np.all(var >= 0.0)
    again, _ = interpolate_factors(model, t_new)
    assert np.array_equal(mean, again)

    only_b, none = interpolate_factors(model, t_new, groups="b", return_variance=False)
    assert none is None
    np.testing.assert_allclose(only_b[0], mean[1], atol=1e-10)


def test_variance_grows_away_from_data(model):
    _, var = interpolate_factors(model, np.array([0.5, 1.5, 3.0]))
    assert np.all(var[:, 1] > var[:, 0])
    assert np.all(var[:, 2] >= var[:, 1] - 1e-10)


def test_impute_shapes(model):
    pred = impute(model)
    assert set(pred) == {"rna", "counts"}
    assert pred["rna"].shape == (80, 15)
    assert pred["counts"].shape == (80, 8)
    assert np.all(pred["counts"] > 0.0)

    only_a = impute(model, groups="a")
    assert only_a["rna"].shape == (40, 15)

    at_new = impute(model, new_covariates=np.linspace(0.0, 1.0, 7))
    assert at_new["rna"].shape == (2, 7, 15)


def test_fill_missing_replaces_only_missing(model):
    filled = fill_missing(model)
    Y = model.data[0]
    missing = np.isnan(Y)
    assert missing.sum() == 4
    assert np.all(np.isfinite(filled["rna"]))
    assert np.array_equal(filled["rna"][~missing], Y[~missing])


def test_round_trip_is_exact(model, tmp_path):
    path = save_model(model, tmp_path / "model")
    assert path.endswith(".npz")
    loaded = load_model(path)

    assert loaded.view_names == model.view_names
    assert loaded.group_names == model.group_names
    assert loaded.likelihoods == model.likelihoods
    assert loaded.status is model.status
    assert loaded.metadata == model.metadata
    for name in ("Z_mean", "Z_var", "alpha", "smoothness", "lengthscale", "group_kernel", "precision", "elbo_trace"):
        assert np.array_equal(getattr(loaded, name), getattr(model, name))
    for a, b in zip(loaded.W_mean, model.W_mean):
        assert np.array_equal(a, b)

    t_new = np.linspace(-0.5, 1.5, 11)
    m0, v0 = interpolate_factors(model, t_new)
    m1, v1 = interpolate_factors(loaded, t_new)
    assert np.array_equal(m0, m1) and np.array_equal(v0, v1)
    p0, p1 = impute(model), impute(loaded)
    for name in p0:
        assert np.array_equal(p0[name], p1[name])


def test_load_rejects_foreign_files(tmp_path):
    path = tmp_path / "other.npz"
    np.savez(path, x=np.zeros(3))
    with pytest.raises(ConfigurationError):
        load_model(path)


def test_untrained_models_are_rejected(model):
    failed = dataclasses.replace(model, status=TrainingStatus.FAILED)
    with pytest.raises(ConfigurationError):
        interpolate_factors(failed, np.array([0.5]))
    with pytest.raises(ConfigurationError):
        impute(failed)
    with pytest.raises(ConfigurationError):
        impute({"rna": np.zeros((2, 2))})
    with pytest.raises(ConfigurationError):
        interpolate_factors(model, np.ones((3, 2)))
    with pytest.raises(ConfigurationError):
        interpolate_factors(model, np.array([np.nan]))


def test_model_summaries(model):
    ve = model.variance_explained()
    assert ve.shape == (2, 2, 2)
    gauss = ve[:, 0, :]
    assert np.all(gauss <= 1.0)
    assert np.all(np.isnan(ve[:, 1, :]))
    assert gauss.sum(axis=1).max() > 0.5

    sharedness = model.get_sharedness()
    assert sharedness.shape == (2,)
    assert np.all((sharedness >= 0.0) & (sharedness <= 1.0))
    assert model.get_group_kernels().shape == (2, 2, 2)

    top = model.top_features("rna", 0, n=3)
    assert len(top) == 3
    mean, var = model.get_factors("a", return_variance=True)
    assert mean.shape == (40, 2) and var.shape == (40, 2)
