# mefisto_jax/alignment/__init__.py
from .warping import GroupWarp, align_groups, monotone_assignment, warp_group

__all__ = ["GroupWarp", "align_groups", "monotone_assignment", "warp_group"]
