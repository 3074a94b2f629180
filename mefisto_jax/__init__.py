# mefisto_jax/__init__.py
"""
mefisto-jax: multi-view factor analysis with Gaussian-process factor priors.

    data  = MultiViewData.from_arrays({"rna": Y}, groups=g, covariates=t)
    model = train(data, MefistoCFG(n_factors=5))
    mean, var = interpolate_factors(model, t_new)
"""
import jax

# Variational updates and GP solves need double precision
jax.config.update("jax_enable_x64", True)

from .config import MefistoCFG  # noqa: E402
from .core import ModelState, MultiViewData, TrainingStatus, View, prepare_data  # noqa: E402
from .errors import ConfigurationError, MefistoError, NumericalError, TrainingFailed  # noqa: E402
from .inference import InferenceEngine, train  # noqa: E402
from .io import load_model, save_model  # noqa: E402
from .predict import fill_missing, impute, interpolate_factors  # noqa: E402
from .trained import TrainedModel  # noqa: E402

__version__ = "0.1.0"

__all__ = [
    "MefistoCFG",
    "MultiViewData",
    "View",
    "prepare_data",
    "ModelState",
    "TrainingStatus",
    "MefistoError",
    "ConfigurationError",
    "NumericalError",
    "TrainingFailed",
    "InferenceEngine",
    "train",
    "TrainedModel",
    "interpolate_factors",
    "impute",
    "fill_missing",
    "save_model",
    "load_model",
]
