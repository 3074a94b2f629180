# mefisto_jax/inference/convergence.py
from __future__ import annotations

import warnings
from dataclasses import dataclass, field

import numpy as np


def relative_change(previous: float, current: float) -> float:
    """ELBO change in percent of |previous|."""
    return 100.0 * (current - previous) / max(abs(previous), 1e-300)


@dataclass
class ConvergenceMonitor:
    """
    Tracks the ELBO and decides convergence.

    Converged once the absolute relative change stays below `tolerance`
    (percent) for `window` consecutive iterations. Iterations recorded with
    `allowed=False` reset the streak.
    """
    tolerance: float
    window: int = 3
    trace: list = field(default_factory=list)
    streak: int = 0
    warned_decrease: bool = False

    def update(self, elbo: float, allowed: bool = True) -> bool:
        self.trace.append(float(elbo))
        if len(self.trace) < 2:
            return False
        delta = relative_change(self.trace[-2], self.trace[-1])
        if delta < -self.tolerance and not self.warned_decrease:
            warnings.warn(
                f"ELBO decreased by {abs(delta):.2e}% at iteration {len(self.trace) - 1}",
                RuntimeWarning,
            )
            self.warned_decrease = True
        if allowed and abs(delta) < self.tolerance:
            self.streak += 1
        else:
            self.streak = 0
        return self.streak >= self.window

    def reset(self) -> None:
        self.streak = 0

    @property
    def last_delta(self) -> float:
        if len(self.trace) < 2:
            return float("nan")
        return relative_change(self.trace[-2], self.trace[-1])

    def as_array(self) -> np.ndarray:
        return np.asarray(self.trace, dtype=np.float64)


__all__ = ["ConvergenceMonitor", "relative_change"]
