import jax.numpy as jnp
import numpy as np
import pytest

import mefisto_jax  # noqa: F401
from mefisto_jax.gp import group_kernel, sharedness
from mefisto_jax.gp.group_kernel import learned_kernel
from mefisto_jax.gp.kernels import get as get_kernel


@pytest.mark.parametrize("name", ["rbf", "matern12", "matern32", "matern52"])
def test_unit_variance_and_symmetry(name):
    X = jnp.linspace(0, 1, 7)[:, None]
    K = get_kernel(name)(X, X, 0.3)
    assert K.shape == (7, 7)
    assert jnp.allclose(jnp.diag(K), 1.0, atol=1e-5)
    assert jnp.allclose(K, K.T)
    # correlation decays with distance
    assert bool(jnp.all(jnp.diff(K[0]) < 0))
    assert float(jnp.min(jnp.linalg.eigvalsh(K))) > -1e-8


def test_lengthscale_controls_decay():
    X = jnp.array([[0.0], [0.5]])
    rbf = get_kernel("rbf")
    assert rbf(X, X, 1.0)[0, 1] > rbf(X, X, 0.1)[0, 1]


def test_unknown_kernel():
    with pytest.raises(KeyError, match="Available"):
        get_kernel("periodic")


def test_group_kernel_modes():
    assert jnp.allclose(group_kernel("identity", 3), jnp.eye(3))
    assert jnp.allclose(group_kernel("shared", 3), jnp.ones((3, 3)))
    assert group_kernel("learned", 1).shape == (1, 1)

    rng = np.random.default_rng(0)
    Kg = learned_kernel(jnp.asarray(rng.normal(size=(4, 2))), jnp.asarray(rng.normal(size=4)))
    assert jnp.allclose(jnp.diag(Kg), 1.0)
    assert jnp.allclose(Kg, Kg.T)
    assert float(jnp.min(jnp.linalg.eigvalsh(Kg))) > -1e-10


def test_sharedness():
    assert sharedness(np.eye(3)) == 0.0
    assert sharedness(np.ones((3, 3))) == 1.0
    assert sharedness(np.ones((1, 1))) == 1.0
    assert sharedness(np.array([[1.0, 0.5], [0.5, 1.0]])) == pytest.approx(0.5)
