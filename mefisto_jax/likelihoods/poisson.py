# mefisto_jax/likelihoods/poisson.py
import jax.numpy as jnp
import jax.nn as jnn
import jax.scipy.special as jsp
import numpy as np

from ..errors import ConfigurationError


class PoissonLikelihood:
    """
    Poisson likelihood with softplus rate:
        p(y | f) = Poisson(y; log(1 + exp(f)))

    Seeger & Bouchard (2012) bound: the second derivative of -log p is bounded
    by kappa = 1/4 + 0.17 * max(y), giving a Gaussian surrogate with fixed
    precision kappa around the current predictor zeta:

        y_tilde = zeta - sigmoid(zeta) * (1 - y / rate(zeta)) / kappa
    """
    name = "poisson"
    learns_noise = False

    @staticmethod
    def validate(Y: np.ndarray, view: str) -> None:
        observed = Y[~np.isnan(Y)]
        if (observed < 0).any() or not np.allclose(observed, np.round(observed)):
            raise ConfigurationError(f"View '{view}': Poisson data must be non-negative integers")

    @staticmethod
    def rate(F):
        return jnp.maximum(jnn.softplus(F), 1e-12)

    @staticmethod
    def pseudo_data(Y, F):
        kappa = 0.25 + 0.17 * jnp.nan_to_num(jnp.nanmax(Y, axis=0))  # (D,)
        rate = PoissonLikelihood.rate(F)
        Y_tilde = F - jnn.sigmoid(F) * (1.0 - Y / rate) / kappa[None, :]
        return Y_tilde, kappa

    @staticmethod
    def inverse_link(F):
        return PoissonLikelihood.rate(F)

    @staticmethod
    def log_lik(Y, F, mask):
        rate = PoissonLikelihood.rate(F)
        Y0 = jnp.where(mask, Y, 0.0)
        ll = Y0 * jnp.log(rate) - rate - jsp.gammaln(Y0 + 1.0)
        return jnp.sum(jnp.where(mask, ll, 0.0))


poisson = PoissonLikelihood()
