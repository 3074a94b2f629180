import itertools

import jax.numpy as jnp
import numpy as np
import pytest

from mefisto_jax import ConfigurationError
from mefisto_jax.alignment import align_groups, monotone_assignment


def _bump(t, center, width=0.1):
    return np.exp(-(((t - center) / width) ** 2))


def _brute_force(cost):
    U, G = cost.shape
    best = np.inf
    for path in itertools.combinations_with_replacement(range(G), U):
        best = min(best, sum(cost[i, j] for i, j in enumerate(path)))
    return best


def test_monotone_assignment_is_optimal():
    rng = np.random.default_rng(0)
    for _ in range(5):
        cost = rng.uniform(size=(5, 6))
        path = np.asarray(monotone_assignment(jnp.asarray(cost)))
        assert np.all(np.diff(path) >= 0)
        assert np.isclose(cost[np.arange(5), path].sum(), _brute_force(cost))


def test_single_point_group():
    path = np.asarray(monotone_assignment(jnp.asarray([[3.0, 1.0, 2.0]])))
    assert path.tolist() == [1]


def test_warping_preserves_order_and_ties():
    rng = np.random.default_rng(1)
    N = 90
    groups = np.repeat([0, 1, 2], 30)
    c = np.round(rng.uniform(0, 1, size=N), 1)  # many ties
    Z = rng.normal(size=(N, 2))
    warped, warps = align_groups(Z, c, groups, reference=0, n_grid=50)
    warped = warped[:, 0]
    assert set(warps) == {1, 2}
    assert np.array_equal(warped[groups == 0], c[groups == 0])
    for g in (1, 2):
        rows = groups == g
        order = np.argsort(c[rows], kind="stable")
        assert np.all(np.diff(warped[rows][order]) >= 0)
        for value in np.unique(c[rows]):
            same = warped[rows][c[rows] == value]
            assert np.all(same == same[0])
        ref = c[groups == 0]
        assert warped[rows].min() >= ref.min() and warped[rows].max() <= ref.max()


def test_identical_groups_map_to_identity():
    t = np.linspace(0, 1, 40)
    f = _bump(t, 0.5)[:, None]
    warped, _ = align_groups(np.vstack([f, f]), np.concatenate([t, t]), np.repeat([0, 1], 40), n_grid=40)
    assert np.allclose(warped[40:, 0], t, atol=1e-12)


def test_warping_recovers_time_shift():
    t = np.linspace(0, 1, 50)
    z_ref = _bump(t, 0.4)
    z_shift = _bump(t, 0.6)
    Z = np.concatenate([z_ref, z_shift])[:, None]
    c = np.concatenate([t, t])
    groups = np.repeat([0, 1], 50)

    warped, _ = align_groups(Z, c, groups, reference=0, n_grid=100)
    before = np.corrcoef(np.interp(t, t, z_ref), z_shift)[0, 1]
    after = np.corrcoef(np.interp(warped[50:, 0], t, z_ref), z_shift)[0, 1]
    assert after > before + 0.3
    assert after > 0.9
    # the peak of the shifted group lands on the reference peak
    assert abs(warped[50 + np.argmax(z_shift), 0] - 0.4) < 0.03


def test_missing_covariates_stay_missing():
    c = np.array([0.0, 0.5, 1.0, np.nan, 0.2, 0.8])
    groups = np.array([0, 0, 0, 1, 1, 1])
    warped, _ = align_groups(np.ones((6, 1)), c, groups)
    assert np.isnan(warped[3, 0])
    assert np.all(np.isfinite(warped[[0, 1, 2, 4, 5], 0]))


def test_requires_one_dimensional_covariates():
    with pytest.raises(ConfigurationError):
        align_groups(np.ones((4, 1)), np.ones((4, 2)), np.array([0, 0, 1, 1]))
    with pytest.raises(ConfigurationError):
        align_groups(np.ones((4, 1)), np.ones(4), np.array([1, 1, 1, 1]), reference=0)
