"""
Size-curve arithmetic shared by the arena builder and the iteration kinds.

Mathematical Formulation:
─────────────────────────
    share[z]        = contribution[z] / Σ contribution
    target_depth[z] = clamp(explicit_target[z] or split(target_stock, share)[z],
                            min_qty[z], max_qty[z])
    cover_qty[z]    = ceil(ros[z] * replenishment_days * cover_multiplier)

split() uses largest-remainder rounding so the sizes of a style always sum
back to the style target.
"""

from __future__ import annotations

import math
from typing import List, Optional, Sequence

import numpy as np


def split_by_contribution(total: int, contributions: Sequence[float]) -> List[int]:
    """
    Split an integer total across sizes proportionally to their contribution.

    Args:
        total: Units to split (negative totals are treated as 0)
        contributions: Size-curve weights; all-zero weights split evenly

    Returns:
        Integer quantities, same order as contributions, summing to total
    """
    if not contributions:
        return []
    total = max(0, int(total))
    weights = np.asarray(contributions, dtype=float)
    weights = np.where(weights > 0, weights, 0.0)
    if weights.sum() <= 0:
        weights = np.ones(len(contributions), dtype=float)

    raw = total * weights / weights.sum()
    base = np.floor(raw).astype(int)
    remainder = total - int(base.sum())
    if remainder > 0:
        # Stable on ties: earlier sizes win
        order = np.argsort(-(raw - base), kind="stable")
        base[order[:remainder]] += 1
    return [int(x) for x in base]


def clamp_depth(depth: int, min_qty: int = 0, max_qty: Optional[int] = None) -> int:
    depth = max(int(depth), int(min_qty), 0)
    if max_qty is not None:
        depth = min(depth, int(max_qty))
    return depth


def cover_quantity(rate_of_sale: float, replenishment_days: float, cover_multiplier: float) -> int:
    """Units needed to cover sales for the replenishment window."""
    if rate_of_sale <= 0 or replenishment_days <= 0 or cover_multiplier <= 0:
        return 0
    # Float noise (2 * 7 * 1.0000001) must not round up a whole unit
    return int(math.ceil(rate_of_sale * replenishment_days * cover_multiplier - 1e-9))


def share_of(contribution: float, contributions: Sequence[float]) -> float:
    positive = [c for c in contributions if c > 0]
    if not positive:
        return 1.0 / len(contributions) if contributions else 0.0
    return max(contribution, 0.0) / sum(positive)
