def test_imports():
    import mefisto_jax

    from mefisto_jax import MefistoCFG, MultiViewData, TrainedModel, train
    from mefisto_jax.core import ModelState, TrainingStatus
    from mefisto_jax.gp import GPEngine, FittedGP, DenseCovariance, LowRankCovariance
    from mefisto_jax.alignment import align_groups
    from mefisto_jax.inference import InferenceEngine
    from mefisto_jax.predict import interpolate_factors, impute
    from mefisto_jax.io import save_model, load_model

    # kernels
    from mefisto_jax.gp.kernels import get as get_kernel
    get_kernel("rbf")
    get_kernel("matern32")

    # likelihoods
    from mefisto_jax.likelihoods import get as get_likelihood
    get_likelihood("gaussian")
    get_likelihood("poisson")
    get_likelihood("bernoulli")

    import jax.numpy as jnp
    assert jnp.zeros(1).dtype == jnp.float64
