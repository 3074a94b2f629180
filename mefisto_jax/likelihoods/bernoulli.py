# mefisto_jax/likelihoods/bernoulli.py
import jax.numpy as jnp
import jax.nn as jnn
import numpy as np

from ..errors import ConfigurationError


class BernoulliLikelihood:
    """
    Bernoulli likelihood with logistic link:
        p(y | f) = Bernoulli(sigmoid(f))

    Seeger & Bouchard bound with kappa = 1/4:
        y_tilde = zeta - 4 * (sigmoid(zeta) - y)
    """
    name = "bernoulli"
    learns_noise = False

    @staticmethod
    def validate(Y: np.ndarray, view: str) -> None:
        observed = Y[~np.isnan(Y)]
        if not np.isin(observed, (0.0, 1.0)).all():
            raise ConfigurationError(f"View '{view}': Bernoulli data must be 0/1")

    @staticmethod
    def pseudo_data(Y, F):
        kappa = jnp.full((Y.shape[1],), 0.25)
        Y_tilde = F - 4.0 * (jnn.sigmoid(F) - Y)
        return Y_tilde, kappa

    @staticmethod
    def inverse_link(F):
        return jnn.sigmoid(F)

    @staticmethod
    def log_lik(Y, F, mask):
        # Stable binary cross entropy
        Y0 = jnp.where(mask, Y, 0.0)
        ll = Y0 * F - jnn.softplus(F)
        return jnp.sum(jnp.where(mask, ll, 0.0))


bernoulli = BernoulliLikelihood()
