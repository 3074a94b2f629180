# mefisto_jax/config.py
"""
Training configuration.

A single frozen dataclass carries every recognised option. Values are
validated on construction so that a bad option fails before any data is
touched.
"""
from __future__ import annotations

from dataclasses import dataclass, asdict, replace
from typing import Literal, Optional

from .errors import ConfigurationError

# Relative ELBO change (in percent of |ELBO|) below which an iteration counts
# as converged.
CONVERGENCE_TOLERANCE = {
    "fast": 5e-4,
    "medium": 5e-5,
    "slow": 5e-6,
}

KERNELS = ("rbf", "matern12", "matern32", "matern52")
GROUP_KERNELS = ("identity", "shared", "learned")


@dataclass(frozen=True)
class MefistoCFG:
    """Configuration for model construction and variational training."""
    n_factors: int = 10
    convergence_mode: Literal["fast", "medium", "slow"] = "fast"
    max_iter: int = 1000
    convergence_window: int = 3
    seed: int = 42
    init: Literal["pca", "random"] = "pca"

    # Data preparation
    center_groups: bool = True
    scale_views: bool = False

    # GP prior
    kernel: str = "rbf"
    group_kernel: Literal["identity", "shared", "learned"] = "learned"
    group_kernel_rank: int = 1
    start_opt: int = 20
    opt_freq: int = 10
    gp_steps: int = 100
    gp_lr: float = 5e-2

    # Sparse GP
    sparse_gp: Optional[bool] = None  # None: decided by sparse_threshold
    sparse_threshold: int = 1000
    n_inducing: Optional[int] = None
    frac_inducing: Optional[float] = None

    # Warping
    warping: bool = False
    warping_ref: Optional[str] = None
    warping_freq: Optional[int] = None   # None: follow opt_freq
    warping_start: Optional[int] = None  # None: follow start_opt
    n_grid: int = 100

    # Numerics
    tau_max: float = 1e6
    jitter: float = 1e-6
    max_jitter: float = 1e-2
    max_retries: int = 3

    verbose: bool = False

    def __post_init__(self):
        if not isinstance(self.n_factors, int) or self.n_factors <= 0:
            raise ConfigurationError(f"n_factors must be a positive integer, got {self.n_factors!r}")
        if self.convergence_mode not in CONVERGENCE_TOLERANCE:
            raise ConfigurationError(
                f"Unknown convergence_mode '{self.convergence_mode}'. "
                f"Available: {list(CONVERGENCE_TOLERANCE)}"
            )
        if self.max_iter <= 0:
            raise ConfigurationError("max_iter must be positive")
        if self.convergence_window <= 0:
            raise ConfigurationError("convergence_window must be positive")
        if self.init not in ("pca", "random"):
            raise ConfigurationError(f"init must be 'pca' or 'random', got {self.init!r}")
        if self.kernel not in KERNELS:
            raise ConfigurationError(f"Unknown kernel '{self.kernel}'. Available: {list(KERNELS)}")
        if self.group_kernel not in GROUP_KERNELS:
            raise ConfigurationError(
                f"Unknown group_kernel '{self.group_kernel}'. Available: {list(GROUP_KERNELS)}"
            )
        if self.group_kernel_rank <= 0:
            raise ConfigurationError("group_kernel_rank must be positive")
        if self.start_opt < 0 or self.opt_freq <= 0:
            raise ConfigurationError("start_opt must be >= 0 and opt_freq > 0")
        if self.gp_steps <= 0 or self.gp_lr <= 0:
            raise ConfigurationError("gp_steps and gp_lr must be positive")
        if self.sparse_threshold <= 0:
            raise ConfigurationError("sparse_threshold must be positive")
        if self.n_inducing is not None and self.frac_inducing is not None:
            raise ConfigurationError("Provide only one of n_inducing or frac_inducing.")
        if self.n_inducing is not None and self.n_inducing <= 0:
            raise ConfigurationError("n_inducing must be positive")
        if self.frac_inducing is not None and not (0.0 < self.frac_inducing <= 1.0):
            raise ConfigurationError("frac_inducing must lie in (0, 1]")
        if (self.warping_freq is not None and self.warping_freq <= 0) or (
            self.warping_start is not None and self.warping_start < 0
        ):
            raise ConfigurationError("warping_freq must be > 0 and warping_start >= 0")
        if self.n_grid < 2:
            raise ConfigurationError("n_grid must be at least 2")
        if self.tau_max <= 0:
            raise ConfigurationError("tau_max must be positive")
        if not (0.0 < self.jitter <= self.max_jitter):
            raise ConfigurationError("jitter must satisfy 0 < jitter <= max_jitter")
        if self.max_retries < 0:
            raise ConfigurationError("max_retries must be >= 0")

    @property
    def tolerance(self) -> float:
        return CONVERGENCE_TOLERANCE[self.convergence_mode]

    def gp_update_due(self, iteration: int) -> bool:
        """GP hyperparameters are refit every `opt_freq` iterations from `start_opt`."""
        return iteration >= self.start_opt and (iteration - self.start_opt) % self.opt_freq == 0

    def warping_due(self, iteration: int) -> bool:
        """Warping shares the GP schedule unless warping_start / warping_freq are set."""
        if not self.warping:
            return False
        start = self.start_opt if self.warping_start is None else self.warping_start
        freq = self.opt_freq if self.warping_freq is None else self.warping_freq
        return iteration >= start and (iteration - start) % freq == 0

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, values: dict) -> "MefistoCFG":
        known = {k: v for k, v in values.items() if k in cls.__dataclass_fields__}
        return cls(**known)

    def with_options(self, **changes) -> "MefistoCFG":
        return replace(self, **changes)


__all__ = ["MefistoCFG", "CONVERGENCE_TOLERANCE", "KERNELS", "GROUP_KERNELS"]
