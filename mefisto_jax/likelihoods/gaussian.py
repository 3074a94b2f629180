# mefisto_jax/likelihoods/gaussian.py
import jax.numpy as jnp
import numpy as np

LOG_2PI = 1.8378770664093453


class GaussianLikelihood:
    """
    Gaussian likelihood:
        p(y | f, tau) = N(y; f, 1/tau)

    The noise precision tau is a model parameter (one Gamma posterior per
    feature), so the data are used as-is. The ELBO uses the expectation of
    log p under q(tau), q(Z) and q(W); `log_lik` is the plug-in value at a
    fixed predictor and precision.
    """
    name = "gaussian"
    learns_noise = True

    @staticmethod
    def validate(Y: np.ndarray, view: str) -> None:
        return None

    @staticmethod
    def pseudo_data(Y, F):
        return Y, None

    @staticmethod
    def inverse_link(F):
        return F

    @staticmethod
    def log_lik(Y, F, mask, tau=1.0):
        """
        sum over observed entries of log N(y; f, 1/tau).

        tau: scalar or (D,) per-feature precision
        """
        tau = jnp.broadcast_to(jnp.asarray(tau, dtype=F.dtype), (F.shape[1],))[None, :]
        Y0 = jnp.where(mask, Y, 0.0)
        ll = 0.5 * (jnp.log(tau) - LOG_2PI) - 0.5 * tau * (Y0 - F) ** 2
        return jnp.sum(jnp.where(mask, ll, 0.0))


gaussian = GaussianLikelihood()
