# mefisto_jax/inference/engine.py
"""
Variational inference engine.

A training run is a loop of pure updates on a ModelState:

    1. pseudo-data, weights, factors, ARD and noise precisions
    2. warping of the group covariates        (on schedule)
    3. GP hyperparameters of every factor     (every opt_freq from start_opt)
    4. ELBO
    5. convergence check (iterations that warp or refit never count)

A non-finite result sends the engine back to the last good state with ten
times the covariance jitter; after `max_retries` failed attempts the run
ends in FAILED and TrainingFailed is raised.

When a warp was not followed by a refit, the GP is refit once more on the
final covariates before the model is returned.
"""
from __future__ import annotations

import logging
import time
import warnings
from typing import Callable, Optional

import jax.numpy as jnp
import numpy as np
from jax.tree_util import tree_leaves

from ..alignment import align_groups
from ..config import MefistoCFG
from ..core.data import MultiViewData, prepare_data
from ..core.state import ModelState
from ..core.status import TrainingStatus
from ..errors import ConfigurationError, NumericalError, TrainingFailed
from ..gp.engine import GPEngine, GPHyperparameters
from ..model import (
    elbo,
    init_state,
    targets,
    update_alpha,
    update_factors,
    update_tau,
    update_weights,
    view_arrays,
)
from ..trained import TrainedModel
from .convergence import ConvergenceMonitor

logger = logging.getLogger(__name__)

StopCheck = Callable[[int, float], bool]


def locate_nonfinite(state: ModelState, view_names) -> tuple[str, Optional[int], Optional[str]]:
    """Name the first component of a state holding NaN/Inf as (component, factor, view)."""
    for k in range(state.n_factors):
        if not bool(jnp.all(jnp.isfinite(state.Z_mean[:, k]))) or not bool(jnp.all(jnp.isfinite(state.Z_var[:, k]))):
            return "factors", k, None
    for v, name in enumerate(view_names):
        W = state.W_mean[v]
        if not bool(jnp.all(jnp.isfinite(W))) or not bool(jnp.all(jnp.isfinite(state.W_var[v]))):
            bad = np.flatnonzero(~np.isfinite(np.asarray(W)).all(axis=0))
            return "weights", int(bad[0]) if bad.size else None, name
        if not bool(jnp.all(jnp.isfinite(state.tau[v]))):
            return "noise", None, name
    for v, name in enumerate(view_names):
        bad = np.flatnonzero(~np.isfinite(np.asarray(state.alpha[v])))
        if bad.size:
            return "ard", int(bad[0]), name
    if state.gp_raw is not None:
        for leaf in tree_leaves(state.gp_raw):
            leaf = np.asarray(leaf).reshape(state.n_factors, -1)
            bad = np.flatnonzero(~np.isfinite(leaf).all(axis=1))
            if bad.size:
                return "gp", int(bad[0]), None
    return "elbo", None, None


class InferenceEngine:
    """
    Trains one model on one data set.

    The engine owns the only mutable training state; everything it calls is
    a pure function. `status`, `state` (last good state) and `elbo_trace`
    stay readable after a failure.
    """

    def __init__(
        self,
        data: MultiViewData,
        cfg: MefistoCFG = MefistoCFG(),
        stop_check: Optional[StopCheck] = None,
    ):
        if not isinstance(data, MultiViewData):
            raise ConfigurationError(f"Expected MultiViewData, got {type(data).__name__}")
        if not isinstance(cfg, MefistoCFG):
            raise ConfigurationError(f"Expected MefistoCFG, got {type(cfg).__name__}")
        self.raw_data = data
        self.cfg = cfg
        self.stop_check = stop_check
        self.status = TrainingStatus.UNINITIALIZED
        self.state: Optional[ModelState] = None
        self.monitor = ConvergenceMonitor(cfg.tolerance, cfg.convergence_window)
        self.iteration = 0
        self.stopped_early = False
        self.warps: dict = {}
        self._priors = None

    # ------------------------------------------------------------------
    # Setup
    # ------------------------------------------------------------------
    def _validate(self, data: MultiViewData) -> None:
        cfg = self.cfg
        if cfg.warping:
            if data.covariates is None:
                raise ConfigurationError("Warping requires covariates.")
            if data.covariates.shape[1] != 1:
                raise ConfigurationError(
                    f"Warping requires one-dimensional covariates, got {data.covariates.shape[1]} dimensions"
                )
            if cfg.warping_ref is not None and cfg.warping_ref not in data.group_names:
                raise ConfigurationError(
                    f"Unknown warping reference group '{cfg.warping_ref}'. Available: {list(data.group_names)}"
                )

    def initialise(self) -> None:
        cfg = self.cfg
        self.status = TrainingStatus.INITIALIZING
        self._validate(self.raw_data)
        data = prepare_data(self.raw_data, center_groups=cfg.center_groups, scale_views=cfg.scale_views)
        self.data = data
        self.views = view_arrays(data)
        self.gidx = data.group_index
        self.jitter = cfg.jitter
        self.state = init_state(data, self.views, cfg.n_factors, init=cfg.init, seed=cfg.seed)

        self.gp_rows = np.flatnonzero(data.covariate_mask)
        self.raw_covariates = data.covariates
        self.covariates = None if data.covariates is None else data.covariates.copy()
        self.gp: Optional[GPEngine] = None
        self.hyper: Optional[GPHyperparameters] = None
        self.gp_fitted = False
        self.fit_stale = False
        if self.gp_rows.size:
            self.gp = GPEngine.from_covariates(data.covariates[self.gp_rows], data.n_groups, cfg)
            self.hyper = self.gp.constrain(self.gp.init_raw(cfg.n_factors))
            self.state = self.state.update(gp_raw=self.hyper.raw)
            logger.info(
                f"GP priors on {self.gp_rows.size}/{data.n_samples} samples "
                f"({'sparse, ' + str(self.gp.inducing.shape[0]) + ' inducing points' if self.gp.sparse else 'dense'})"
            )
        self.reference = 0 if cfg.warping_ref is None else data.group_names.index(cfg.warping_ref)
        logger.info(
            f"Initialised {cfg.n_factors} factors on {data.n_samples} samples, "
            f"{len(self.views)} views, {data.n_groups} groups"
        )

    # ------------------------------------------------------------------
    # One iteration
    # ------------------------------------------------------------------
    def _build_priors(self, gp: GPEngine, hyper: GPHyperparameters, covariates):
        X = covariates[self.gp_rows]
        gidx = self.gidx[self.gp_rows]
        priors = []
        for k in range(hyper.n_factors):
            cov = gp.prior(hyper, k, X, gidx).covariance()
            if not bool(jnp.isfinite(cov.logdet())):
                raise NumericalError("Prior covariance is not positive definite", component="gp_prior", factor=k)
            priors.append(cov)
        return priors

    def _refit(self, gp: GPEngine, state: ModelState, hyper, covariates):
        rows = self.gp_rows
        fit = gp.fit(
            np.asarray(state.Z_mean)[rows],
            covariates[rows],
            self.gidx[rows],
            factor_variances=np.asarray(state.Z_var)[rows],
            init=hyper.raw,
        )
        hyper = fit.hyper
        bad = np.flatnonzero(~np.isfinite(hyper.smoothness) | ~np.isfinite(hyper.lengthscale))
        if bad.size:
            raise NumericalError("GP hyperparameters diverged", component="gp", factor=int(bad[0]))
        return hyper

    def _iterate(self, it: int, state: ModelState, hyper, covariates, jitter: float, priors=None):
        cfg = self.cfg
        views = self.views
        gp = None if self.gp is None else self.gp.with_jitter(jitter)

        Ys, taus = targets(state, views)
        state = update_weights(state, views, Ys, taus)
        state = update_factors(state, views, Ys, taus, priors, self.gp_rows if priors is not None else None)
        state = update_alpha(state, views)
        state = update_tau(state, views, Ys, taus, cfg.tau_max)

        warped = False
        warps = self.warps
        if gp is not None and self.data.n_groups > 1 and cfg.warping_due(it):
            covariates, warps = align_groups(
                np.asarray(state.Z_mean),
                self.raw_covariates,
                self.gidx,
                smoothness=hyper.smoothness,
                reference=self.reference,
                n_grid=cfg.n_grid,
            )
            state = state.update(covariates=jnp.asarray(covariates))
            warped = True
            logger.debug(f"Iteration {it}: warped {len(warps)} groups onto group '{self.data.group_names[self.reference]}'")

        refit = gp is not None and cfg.gp_update_due(it)
        if refit:
            hyper = self._refit(gp, state, hyper, covariates)
            state = state.update(gp_raw=hyper.raw)
            logger.debug(f"Iteration {it}: smoothness {np.round(hyper.smoothness, 3).tolist()}")

        value = elbo(state, views)
        if not np.isfinite(value) or not state.is_finite():
            component, factor, view = locate_nonfinite(state, self.data.view_names)
            raise NumericalError("Non-finite ELBO or parameters", component=component, factor=factor, view=view)
        return state, hyper, covariates, warps, value, warped, refit

    def _final_refit(self) -> None:
        """Refit the GP on the last warped covariates when no fit has followed the last warp."""
        try:
            hyper = self._refit(self.gp.with_jitter(self.jitter), self.state, self.hyper, self.covariates)
        except NumericalError as e:
            warnings.warn(f"GP refit after the last warp failed ({e}); keeping the previous fit", RuntimeWarning)
            return
        self.hyper = hyper
        self.state = self.state.update(gp_raw=hyper.raw)
        self.fit_stale = False
        logger.info("Refit GP hyperparameters on the final warped covariates")

    # ------------------------------------------------------------------
    # Loop
    # ------------------------------------------------------------------
    def run(self) -> TrainedModel:
        cfg = self.cfg
        if cfg.verbose:
            logging.getLogger("mefisto_jax").setLevel(logging.INFO)
        if self.status is TrainingStatus.UNINITIALIZED:
            self.initialise()
        self.status = TrainingStatus.ITERATING
        times = []
        retries = 0
        t_start = time.perf_counter()

        while self.iteration < cfg.max_iter:
            it = self.iteration
            t0 = time.perf_counter()
            try:
                if self.gp is not None and self._priors is None:
                    self._priors = self._build_priors(self.gp.with_jitter(self.jitter), self.hyper, self.covariates)
                state, hyper, covariates, warps, value, warped, refit = self._iterate(
                    it, self.state, self.hyper, self.covariates, self.jitter, self._priors
                )
            except NumericalError as e:
                retries += 1
                if retries > cfg.max_retries:
                    self.status = TrainingStatus.FAILED
                    logger.error(f"Training failed at iteration {it}: {e}")
                    raise TrainingFailed(
                        f"Training failed at iteration {it} after {cfg.max_retries} retries: {e}",
                        component=e.component,
                        factor=e.factor,
                        view=e.view,
                        iteration=it,
                    ) from e
                self.jitter = min(self.jitter * 10.0, cfg.max_jitter)
                self._priors = None
                warnings.warn(
                    f"Numerical problem at iteration {it} ({e}); retrying with jitter={self.jitter:.1e}",
                    RuntimeWarning,
                )
                continue

            retries = 0
            if warped or refit:
                self._priors = None
            self.state, self.hyper, self.covariates, self.warps = state, hyper, covariates, warps
            self.gp_fitted = self.gp_fitted or refit
            # a warp marks the fit stale until a later refit
            self.fit_stale = (self.fit_stale or warped) and not refit
            times.append(time.perf_counter() - t0)
            self.iteration += 1

            # refit and warp iterations mix the old and new prior in one ELBO
            allowed = (self.gp is None or self.gp_fitted) and not (warped or refit)
            converged = self.monitor.update(value, allowed=allowed)
            logger.debug(
                f"Iteration {it}: ELBO {value:.6e}, delta {self.monitor.last_delta:.2e}%, {times[-1]:.3f}s"
            )
            if converged:
                self.status = TrainingStatus.CONVERGED
                break
            if self.stop_check is not None and self.stop_check(it, value):
                self.status = TrainingStatus.MAX_ITER_REACHED
                self.stopped_early = True
                logger.info(f"Stopped by stop_check after iteration {it}")
                break
        else:
            self.status = TrainingStatus.MAX_ITER_REACHED

        if self.gp is not None and self.fit_stale:
            self._final_refit()

        logger.info(
            f"Training finished: {self.status.value} after {self.iteration} iterations "
            f"in {time.perf_counter() - t_start:.2f}s, ELBO {self.monitor.trace[-1]:.6e}"
        )
        return self.trained_model(times)

    # ------------------------------------------------------------------
    # Result
    # ------------------------------------------------------------------
    def trained_model(self, times=()) -> TrainedModel:
        if not self.status.is_trained:
            raise ConfigurationError(f"No trained model in status {self.status.value}")
        s = self.state
        data = self.data
        hyper = self.hyper
        meta = {
            "n_iter": self.iteration,
            "stopped_early": self.stopped_early,
            "excluded_views": list(data.excluded_views),
            "time_per_iter": float(np.mean(times)) if len(times) else 0.0,
            "seed": self.cfg.seed,
            "warping_reference": data.group_names[self.reference] if self.cfg.warping else None,
            "options": self.cfg.to_dict(),
        }
        return TrainedModel(
            view_names=data.view_names,
            group_names=data.group_names,
            sample_ids=data.sample_ids,
            feature_names=tuple(v.feature_names for v in data.views),
            likelihoods=tuple(v.likelihood for v in data.views),
            data=tuple(v.data for v in data.views),
            groups=self.gidx,
            covariates_raw=self.raw_covariates,
            covariates=self.covariates,
            Z_mean=np.asarray(s.Z_mean),
            Z_var=np.asarray(s.Z_var),
            W_mean=tuple(np.asarray(W) for W in s.W_mean),
            W_var=tuple(np.asarray(W) for W in s.W_var),
            tau=tuple(np.asarray(t) for t in s.tau),
            alpha=np.asarray(s.alpha),
            lengthscale=None if hyper is None else np.asarray(hyper.lengthscale),
            smoothness=None if hyper is None else np.asarray(hyper.smoothness),
            group_kernel=None if hyper is None else np.asarray(hyper.group_kernel),
            precision=np.asarray(s.precision),
            inducing=None if self.gp is None or not self.gp.sparse else np.asarray(self.gp.inducing),
            elbo_trace=self.monitor.as_array(),
            status=self.status,
            kernel=self.cfg.kernel,
            group_mode=self.cfg.group_kernel,
            jitter=self.jitter,
            metadata=meta,
        )


def train(
    data: MultiViewData,
    cfg: Optional[MefistoCFG] = None,
    stop_check: Optional[StopCheck] = None,
    **options,
) -> TrainedModel:
    """
    Train a model.

    Args:
        data: multi-view data
        cfg: configuration (default MefistoCFG()); `options` override fields
        stop_check: called as stop_check(iteration, elbo) after every
                    iteration; returning True stops with MAX_ITER_REACHED

    Returns:
        TrainedModel (status CONVERGED or MAX_ITER_REACHED)

    Raises:
        ConfigurationError: invalid options or data
        TrainingFailed: numerical failure that survived the retries
    """
    cfg = MefistoCFG() if cfg is None else cfg
    if options:
        try:
            cfg = cfg.with_options(**options)
        except TypeError as e:
            raise ConfigurationError(str(e)) from e
    return InferenceEngine(data, cfg, stop_check=stop_check).run()


__all__ = ["InferenceEngine", "train", "locate_nonfinite", "StopCheck"]
