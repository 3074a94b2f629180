import jax.numpy as jnp
import numpy as np

import mefisto_jax  # noqa: F401
from mefisto_jax.gp import DenseCovariance, DiagonalCovariance, LowRankCovariance
from mefisto_jax.gp.kernels import rbf
from mefisto_jax.gp.prior import FactorPrior
from mefisto_jax.gp.sparsify import select_inducing_points


def _spd(n, seed=0):
    rng = np.random.default_rng(seed)
    A = rng.normal(size=(n, n))
    return A @ A.T / n + 0.5 * np.eye(n)


def _explicit_kl(m, C, S):
    n = S.shape[0]
    S_inv = np.linalg.inv(S)
    return 0.5 * (
        np.trace(S_inv @ C) + m @ S_inv @ m - n
        + np.linalg.slogdet(S)[1] - np.linalg.slogdet(C)[1]
    )


def test_dense_operations_match_numpy():
    S = _spd(12)
    cov = DenseCovariance(jnp.asarray(S), jitter=0.0)
    v = np.random.default_rng(1).normal(size=12)
    assert np.allclose(cov.solve(v), np.linalg.solve(S, v), atol=1e-8)
    assert np.allclose(cov.matvec(v), S @ v)
    assert np.isclose(float(cov.logdet()), np.linalg.slogdet(S)[1])
    assert np.allclose(cov.inv_diag(), np.diag(np.linalg.inv(S)), atol=1e-8)
    assert np.allclose(cov.diag(), np.diag(S))


def test_conditioning_matches_explicit_posterior():
    S = _spd(10, seed=2)
    rng = np.random.default_rng(3)
    h = rng.uniform(0.1, 5.0, size=10)
    b = rng.normal(size=10)
    C = np.linalg.inv(np.linalg.inv(S) + np.diag(h))
    m = C @ b

    for cov in (DenseCovariance(jnp.asarray(S), jitter=0.0),):
        cond = cov.condition(jnp.asarray(h))
        mean = cond.mean(jnp.asarray(b))
        assert np.allclose(mean, m, atol=1e-8)
        assert np.allclose(cond.diag(), np.diag(C), atol=1e-8)
        assert np.isclose(float(cond.kl(mean, jnp.asarray(b))), _explicit_kl(m, C, S), atol=1e-8)


def test_low_rank_matches_dense():
    rng = np.random.default_rng(4)
    F = rng.normal(size=(15, 3))
    d = rng.uniform(0.2, 1.0, size=15)
    S = F @ F.T + np.diag(d)
    low = LowRankCovariance(jnp.asarray(F), jnp.asarray(d))
    dense = DenseCovariance(jnp.asarray(S), jitter=0.0)

    v = rng.normal(size=(15, 2))
    assert np.allclose(low.solve(v), dense.solve(v), atol=1e-8)
    assert np.allclose(low.matvec(v), dense.matvec(v), atol=1e-8)
    assert np.isclose(float(low.logdet()), float(dense.logdet()))
    assert np.allclose(low.inv_diag(), dense.inv_diag(), atol=1e-8)
    assert np.allclose(low.diag(), dense.diag())

    h = jnp.asarray(rng.uniform(0.0, 3.0, size=15))
    b = jnp.asarray(rng.normal(size=15))
    c_low, c_dense = low.condition(h), dense.condition(h)
    assert np.allclose(c_low.diag(), c_dense.diag(), atol=1e-8)
    assert np.allclose(c_low.mean(b), c_dense.mean(b), atol=1e-8)
    assert np.isclose(float(c_low.logdet_B), float(c_dense.logdet_B), atol=1e-8)
    assert np.isclose(float(c_low.kl(c_low.mean(b), b)), float(c_dense.kl(c_dense.mean(b), b)), atol=1e-8)


def test_diagonal_prior_posterior():
    d = jnp.ones(4)
    h = jnp.array([0.0, 1.0, 3.0, 9.0])
    cond = DiagonalCovariance(d).condition(h)
    assert np.allclose(cond.diag(), 1.0 / (1.0 + np.asarray(h)))
    # no data: posterior equals prior, KL vanishes
    cond0 = DiagonalCovariance(d).condition(jnp.zeros(4))
    assert np.isclose(float(cond0.kl(jnp.zeros(4), jnp.zeros(4))), 0.0)


def test_sparse_error_shrinks_with_inducing_points():
    X = np.linspace(0.0, 1.0, 40)[:, None]
    gidx = jnp.zeros(40, dtype=jnp.int32)
    Kg = jnp.ones((1, 1))

    def prior(Xu):
        return FactorPrior(jnp.asarray(X), gidx, 0.2, 0.9, Kg, rbf, Xu=Xu, jitter=1e-6)

    exact = np.asarray(prior(None).covariance().Sigma)
    errors = []
    for M in (5, 10, 20, 40):
        Xu = jnp.asarray(select_inducing_points(X, M))
        approx = np.asarray(prior(Xu).covariance().matvec(jnp.eye(40)))
        errors.append(np.abs(approx - exact).max())

    for before, after in zip(errors, errors[1:]):
        assert after <= before + 1e-3
    assert errors[-1] < 1e-4
    # FITC keeps the diagonal exact
    approx = np.asarray(prior(jnp.asarray(select_inducing_points(X, 5))).covariance().diag())
    assert np.allclose(approx, np.diag(exact), atol=1e-8)
