import numpy as np
import pytest

from mefisto_jax import MefistoCFG
from mefisto_jax.gp import S_MAX, GPEngine, lengthscale_bounds
from mefisto_jax.gp.sparsify import n_inducing_points, select_inducing_points, use_sparse


def _factors(N=80, seed=0):
    rng = np.random.default_rng(seed)
    t = np.linspace(0.0, 1.0, N)
    smooth = np.sin(2 * np.pi * t)
    smooth = (smooth - smooth.mean()) / smooth.std()
    noise = rng.normal(size=N)
    return t, np.stack([smooth, noise], axis=1)


def test_lengthscale_bounds():
    lo, hi, span = lengthscale_bounds(np.linspace(0, 2, 21)[:, None])
    assert np.isclose(span, 2.0)
    assert np.isclose(lo, 0.2)
    assert np.isclose(hi, 20.0)


def test_inducing_point_selection():
    X = np.repeat(np.linspace(0, 1, 50), 2)[:, None]
    assert n_inducing_points(50) == 10
    assert n_inducing_points(50, n_inducing=80) == 50
    assert n_inducing_points(50, frac_inducing=0.2) == 10
    Xu = select_inducing_points(X, 10)
    assert Xu.shape == (10, 1)
    assert np.all(np.diff(Xu[:, 0]) > 0)
    assert Xu[0, 0] == 0.0 and Xu[-1, 0] == 1.0
    assert use_sparse(2000, None, 1000) and not use_sparse(500, None, 1000)
    assert use_sparse(10, True, 1000) and not use_sparse(5000, False, 1000)


def test_smooth_factor_scores_higher():
    t, Z = _factors()
    engine = GPEngine.from_covariates(t[:, None], 1, MefistoCFG(gp_steps=200))
    fit = engine.fit(Z, t, np.zeros(len(t), dtype=int))
    s = fit.smoothness
    assert np.all((s >= 0.0) & (s <= 1.0))
    assert s[0] > 0.9
    assert s[0] - s[1] >= 0.3
    assert np.all(fit.hyper.lengthscale >= engine.lo)


def test_smoothness_in_unit_interval_for_random_inputs():
    rng = np.random.default_rng(1)
    X = rng.uniform(-5, 5, size=(30, 2))
    Z = rng.normal(size=(30, 3)) * rng.uniform(0.1, 10.0, size=3)
    groups = rng.integers(0, 3, size=30)
    engine = GPEngine.from_covariates(X, 3, MefistoCFG(gp_steps=30))
    fit = engine.fit(Z, X, groups)
    assert fit.smoothness.shape == (3,)
    assert np.all((fit.smoothness >= 0.0) & (fit.smoothness <= S_MAX))
    assert fit.group_kernel.shape == (3, 3, 3)
    for Kg in fit.group_kernel:
        assert np.min(np.linalg.eigvalsh(Kg)) > -1e-8
    assert np.all((fit.hyper.sharedness >= 0.0) & (fit.hyper.sharedness <= 1.0))


def test_posterior_extrapolation_variance_grows():
    t, Z = _factors()
    engine = GPEngine.from_covariates(t[:, None], 1, MefistoCFG(gp_steps=150))
    fit = engine.fit(Z[:, :1], t, np.zeros(len(t), dtype=int))
    mean, var = fit.posterior(np.array([0.25, 0.5, 1.5, 3.0]))
    assert mean.shape == (4, 1) and var.shape == (4, 1)
    assert abs(mean[0, 0] - Z[20, 0]) < 0.3
    assert var[0, 0] < var[2, 0] <= var[3, 0] + 1e-9
    assert var[3, 0] <= fit.smoothness[0] + 1e-9

    mean_only, none = fit.posterior(np.array([0.25]), return_variance=False)
    assert none is None
    assert np.allclose(mean_only, mean[:1])


def test_missing_covariate_rows_are_ignored():
    t, Z = _factors(N=40)
    X = t.copy()
    X[::5] = np.nan
    garbage = Z.copy()
    garbage[::5] = 1e6
    groups = np.zeros(40, dtype=int)
    engine = GPEngine.from_covariates(X[~np.isnan(X)][:, None], 1, MefistoCFG(gp_steps=20))
    full = engine.fit(garbage, X, groups)
    subset = engine.fit(Z[~np.isnan(X)], X[~np.isnan(X)], groups[~np.isnan(X)])
    assert full.X.shape == (32, 1)
    assert np.allclose(full.smoothness, subset.smoothness)
    assert np.allclose(full.hyper.lengthscale, subset.hyper.lengthscale)


@pytest.mark.parametrize("kernel", ["matern32", "matern52", "matern12"])
def test_sparse_engine_runs(kernel):
    t, Z = _factors(N=60)
    cfg = MefistoCFG(kernel=kernel, sparse_gp=True, n_inducing=15, gp_steps=50)
    engine = GPEngine.from_covariates(t[:, None], 1, cfg)
    assert engine.sparse and engine.inducing.shape == (15, 1)
    fit = engine.fit(Z, t, np.zeros(60, dtype=int))
    assert np.all(np.isfinite(fit.smoothness))
    mean, var = fit.posterior(np.linspace(-0.5, 1.5, 9))
    assert np.all(np.isfinite(mean)) and np.all(var >= 0.0)
