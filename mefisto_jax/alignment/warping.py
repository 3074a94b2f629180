# mefisto_jax/alignment/warping.py
"""
Monotone covariate alignment across groups.

For every non-reference group g the factor trajectory of g, averaged over
samples that share a covariate value, is assigned to points of a regular
grid over the reference group's covariate range. The assignment

    j_1 <= j_2 <= ... <= j_U     (U distinct covariate values of g, sorted)

minimises

    sum_i sum_k w_k (z_g,k(u_i) - z_ref,k(grid_{j_i}))^2 + lam * (grid_{j_i} - u_i)^2

where w_k is the smoothness of factor k and z_ref is the reference
trajectory linearly interpolated onto the grid. lam is tiny, so among
equally good alignments the one closest to the identity map wins.

The minimisation is an exact dynamic programme over the grid (lax.scan
forward with a cumulative minimum, then backtracking), O(U * n_grid).
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

import jax
import jax.numpy as jnp
import numpy as np
from jax import lax

from ..errors import ConfigurationError

# Weight of the identity penalty relative to the mean alignment cost
IDENTITY_PENALTY = 1e-6


@dataclass(frozen=True)
class GroupWarp:
    """Monotone map of one group: raw distinct covariates -> aligned values."""
    group: int
    raw: np.ndarray      # (U,) sorted distinct raw covariates
    warped: np.ndarray   # (U,) non-decreasing aligned covariates

    def __call__(self, c):
        """Warp raw covariate values (piecewise linear between known points)."""
        return np.interp(np.asarray(c, dtype=np.float64), self.raw, self.warped)


@jax.jit
def monotone_assignment(cost: jnp.ndarray) -> jnp.ndarray:
    """
    Non-decreasing assignment of rows to columns with minimal total cost.

    Args:
        cost: (U, G) cost of assigning row i to column j

    Returns:
        (U,) column index per row, non-decreasing
    """
    def forward(prev, c):
        D = c + lax.cummin(prev)
        return D, D

    D0 = cost[0]
    _, rest = lax.scan(forward, D0, cost[1:])
    D = jnp.concatenate([D0[None, :], rest], axis=0)
    cols = jnp.arange(cost.shape[1])
    last = jnp.argmin(D[-1])

    def backward(j_next, D_row):
        j = jnp.argmin(jnp.where(cols <= j_next, D_row, jnp.inf))
        return j, j

    _, path = lax.scan(backward, last, D[:-1], reverse=True)
    return jnp.concatenate([path, last[None]])


def _group_trajectory(c: np.ndarray, Z: np.ndarray):
    """Distinct sorted covariates of a group and the mean factor value at each."""
    u, inv = np.unique(c, return_inverse=True)
    sums = np.zeros((u.shape[0], Z.shape[1]))
    np.add.at(sums, inv, Z)
    counts = np.bincount(inv, minlength=u.shape[0])[:, None]
    return u, sums / counts


def warp_group(
    c: np.ndarray,
    Z: np.ndarray,
    c_ref: np.ndarray,
    Z_ref: np.ndarray,
    weights: np.ndarray,
    n_grid: int = 100,
    group: int = -1,
) -> GroupWarp:
    """
    Align one group onto the reference.

    Args:
        c, Z: (n,) covariates and (n, K) factor values of the group
        c_ref, Z_ref: same for the reference group
        weights: (K,) non-negative factor weights (smoothness)
    """
    u_ref, traj_ref = _group_trajectory(c_ref, Z_ref)
    u, traj = _group_trajectory(c, Z)
    grid = np.linspace(u_ref[0], u_ref[-1], n_grid)
    ref_on_grid = np.stack([np.interp(grid, u_ref, traj_ref[:, k]) for k in range(traj_ref.shape[1])], axis=1)

    w = np.clip(np.asarray(weights, dtype=np.float64), 0.0, None)
    if not w.sum() > 0:
        w = np.ones_like(w)
    diff = traj[:, None, :] - ref_on_grid[None, :, :]          # (U, n_grid, K)
    cost = np.sum(w[None, None, :] * diff ** 2, axis=-1)
    scale = max(float(cost.mean()), 1e-12)
    span = max(float(u_ref[-1] - u_ref[0]), 1e-12)
    cost = cost + IDENTITY_PENALTY * scale * ((grid[None, :] - u[:, None]) / span) ** 2

    idx = np.asarray(monotone_assignment(jnp.asarray(cost)))
    return GroupWarp(group=group, raw=u, warped=grid[idx])


def align_groups(
    factors: np.ndarray,
    covariates: np.ndarray,
    groups: np.ndarray,
    smoothness: Optional[np.ndarray] = None,
    reference: int = 0,
    n_grid: int = 100,
) -> tuple[np.ndarray, dict]:
    """
    Warp the covariates of every non-reference group onto the reference scale.

    Args:
        factors: (N, K) factor values
        covariates: (N,) or (N, 1) raw covariates; NaN rows are left as NaN
        groups: (N,) integer group codes
        smoothness: (K,) factor weights (default: all factors equal)
        reference: group code of the reference group

    Returns:
        warped covariates (N, 1), {group code: GroupWarp}

    Raises:
        ConfigurationError: covariates are not one-dimensional or the
        reference group has no covariates.
    """
    X = np.asarray(covariates, dtype=np.float64)
    if X.ndim == 2:
        if X.shape[1] != 1:
            raise ConfigurationError(f"Warping requires one-dimensional covariates, got {X.shape[1]} dimensions")
        X = X[:, 0]
    Z = np.asarray(factors, dtype=np.float64)
    groups = np.asarray(groups)
    weights = np.ones(Z.shape[1]) if smoothness is None else np.asarray(smoothness)

    observed = ~np.isnan(X)
    ref_rows = observed & (groups == reference)
    if not ref_rows.any():
        raise ConfigurationError(f"Reference group {reference} has no samples with covariates")

    warped = X.copy()
    warps = {}
    for g in np.unique(groups):
        if g == reference:
            continue
        rows = observed & (groups == g)
        if not rows.any():
            continue
        gw = warp_group(X[rows], Z[rows], X[ref_rows], Z[ref_rows], weights, n_grid=n_grid, group=int(g))
        warped[rows] = gw(X[rows])
        warps[int(g)] = gw
    return warped[:, None], warps


__all__ = ["GroupWarp", "monotone_assignment", "warp_group", "align_groups", "IDENTITY_PENALTY"]
