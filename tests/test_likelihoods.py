import jax.numpy as jnp
import numpy as np
import pytest

import mefisto_jax  # noqa: F401
from mefisto_jax.errors import ConfigurationError
from mefisto_jax.likelihoods import available, get


def test_registry():
    assert set(available()) == {"gaussian", "poisson", "bernoulli"}
    with pytest.raises(KeyError, match="Available"):
        get("negative_binomial")


def test_validation():
    get("poisson").validate(np.array([[0.0, 3.0], [np.nan, 7.0]]), "counts")
    with pytest.raises(ConfigurationError):
        get("poisson").validate(np.array([[0.0, -1.0]]), "counts")
    with pytest.raises(ConfigurationError):
        get("poisson").validate(np.array([[0.5, 1.0]]), "counts")
    get("bernoulli").validate(np.array([[0.0, 1.0], [1.0, np.nan]]), "binary")
    with pytest.raises(ConfigurationError):
        get("bernoulli").validate(np.array([[0.0, 2.0]]), "binary")


def test_poisson_pseudo_data():
    Y = jnp.array([[0.0, 4.0], [2.0, 10.0]])
    F = jnp.zeros_like(Y)
    Y_tilde, kappa = get("poisson").pseudo_data(Y, F)
    assert np.allclose(kappa, [0.25 + 0.17 * 2.0, 0.25 + 0.17 * 10.0])
    # targets move up where counts exceed the current rate log(2)
    rate = np.log(2.0)
    expected = -0.5 * (1.0 - np.asarray(Y) / rate) / np.asarray(kappa)[None, :]
    assert np.allclose(Y_tilde, expected)
    assert float(Y_tilde[1, 1]) > 0.0 > float(Y_tilde[0, 0])


def test_bernoulli_pseudo_data():
    Y = jnp.array([[0.0, 1.0]])
    Y_tilde, kappa = get("bernoulli").pseudo_data(Y, jnp.zeros_like(Y))
    assert np.allclose(kappa, 0.25)
    assert np.allclose(Y_tilde, [[-2.0, 2.0]])


def test_masked_log_likelihoods():
    Y = jnp.array([[1.0, 0.0]])
    mask = jnp.array([[True, False]])
    F = jnp.zeros_like(Y)
    assert np.isclose(float(get("bernoulli").log_lik(Y, F, mask)), np.log(0.5))
    ll = float(get("poisson").log_lik(Y, F, mask))
    rate = np.log(2.0)
    assert np.isclose(ll, np.log(rate) - rate)


def test_inverse_links():
    F = jnp.array([-20.0, 0.0, 20.0])
    p = get("bernoulli").inverse_link(F)
    assert float(p[0]) >= 0.0 and float(p[2]) <= 1.0 and np.isclose(float(p[1]), 0.5)
    assert bool(jnp.all(get("poisson").inverse_link(F) > 0))


def test_gaussian_log_likelihood():
    Y = jnp.array([[1.0, 3.0], [0.5, jnp.nan]])
    F = jnp.array([[0.0, 1.0], [0.5, 0.0]])
    mask = ~jnp.isnan(Y)
    tau = jnp.array([2.0, 0.5])
    ll = float(get("gaussian").log_lik(Y, F, mask, tau))
    expected = sum(
        -0.5 * np.log(2 * np.pi / t) - 0.5 * t * (y - f) ** 2
        for y, f, t in [(1.0, 0.0, 2.0), (3.0, 1.0, 0.5), (0.5, 0.5, 2.0)]
    )
    assert np.isclose(ll, expected)
    # scalar precision broadcasts over features
    assert np.isclose(
        float(get("gaussian").log_lik(Y, F, mask, 2.0)),
        float(get("gaussian").log_lik(Y, F, mask, jnp.array([2.0, 2.0]))),
    )
