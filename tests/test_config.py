import pytest

from mefisto_jax import ConfigurationError, MefistoCFG


@pytest.mark.parametrize(
    "kwargs",
    [
        dict(n_factors=0),
        dict(n_factors=-3),
        dict(convergence_mode="glacial"),
        dict(kernel="periodic"),
        dict(group_kernel="free"),
        dict(n_inducing=10, frac_inducing=0.5),
        dict(frac_inducing=1.5),
        dict(n_grid=1),
        dict(opt_freq=0),
        dict(jitter=1.0, max_jitter=1e-2),
        dict(init="svd"),
    ],
)
def test_invalid_options(kwargs):
    with pytest.raises(ConfigurationError):
        MefistoCFG(**kwargs)


def test_configuration_error_is_a_value_error():
    with pytest.raises(ValueError):
        MefistoCFG(n_factors=0)


def test_tolerances():
    assert MefistoCFG(convergence_mode="fast").tolerance > MefistoCFG(convergence_mode="medium").tolerance
    assert MefistoCFG(convergence_mode="medium").tolerance > MefistoCFG(convergence_mode="slow").tolerance


def test_schedules():
    cfg = MefistoCFG(start_opt=5, opt_freq=3)
    assert [i for i in range(15) if cfg.gp_update_due(i)] == [5, 8, 11, 14]
    assert not any(cfg.warping_due(i) for i in range(15))

    warp = cfg.with_options(warping=True)
    assert [i for i in range(15) if warp.warping_due(i)] == [5, 8, 11, 14]
    own = warp.with_options(warping_start=2, warping_freq=6)
    assert [i for i in range(15) if own.warping_due(i)] == [2, 8, 14]


def test_dict_round_trip():
    cfg = MefistoCFG(n_factors=3, sparse_gp=True, n_inducing=20, warping=True, warping_ref="A")
    assert MefistoCFG.from_dict(cfg.to_dict()) == cfg
    assert MefistoCFG.from_dict({"n_factors": 2, "unknown_option": 1}).n_factors == 2
