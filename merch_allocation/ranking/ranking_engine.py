"""
═══════════════════════════════════════════════════════════════════════════════════════════════════════
                    RANKING ENGINE (Allocation priority)
═══════════════════════════════════════════════════════════════════════════════════════════════════════

Computes a total priority order over all store-styles of a run (rank 1 =
served first).

Composite key (lexicographic, most dominant first):
───────────────────────────────────────────────────
    1. own store-style revenue-per-day     descending   (after revenue blend)
    2. peer style revenue-per-day          descending
    3. PSA                                 descending
    4. current stock                       ascending    (less stock, more urgent)
    5. style_id                            ascending    (tie-break)
    6. store_id                            ascending    (tie-break)

    PSA[s, c] = 100 × stock[s, c] / planogram_target_stock[s, c]

    Revenue blend (pluggable):
        own_revenue_only:  score = rpd_own
        shrinkage_blend:   w = min(1, live_days / L)
                           score = w × rpd_own + (1 - w) × rpd_peer

Ranks are computed once, in full, before the first allocation pass.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

import pandas as pd

from merch_allocation.core.types import (
    RankedStoreStyle,
    RunInputs,
    SegmentedStoreStyle,
    planogram_fill,
)
from merch_allocation.settings import RankingSettings

logger = logging.getLogger(__name__)

RevenueBlend = Callable[[float, float, int], float]


# ═══════════════════════════════════════════════════════════════════════════════
# REVENUE BLENDS
# ═══════════════════════════════════════════════════════════════════════════════

def own_revenue_only(own_rpd: float, peer_rpd: float, live_days: int) -> float:
    return own_rpd


def shrinkage_blend(min_live_days: int) -> RevenueBlend:
    """
    Shrink sparse local history toward the peer rate.

    Args:
        min_live_days: Live days at which local history is fully trusted
    """
    def _blend(own_rpd: float, peer_rpd: float, live_days: int) -> float:
        weight = min(1.0, max(0, live_days) / float(min_live_days))
        return weight * own_rpd + (1.0 - weight) * peer_rpd

    return _blend


def blend_from_settings(settings: RankingSettings) -> RevenueBlend:
    if settings.revenue_blend == "shrinkage":
        return shrinkage_blend(settings.shrinkage_live_days)
    return own_revenue_only


# ═══════════════════════════════════════════════════════════════════════════════
# SIGNALS
# ═══════════════════════════════════════════════════════════════════════════════

def peer_revenue_per_day(segmented: Sequence[SegmentedStoreStyle]) -> Dict[str, float]:
    """Style revenue-per-day across every store where the style is live."""
    rows = [
        {"style_id": s.facts.style_id, "revenue": s.facts.revenue, "live_days": s.facts.live_days}
        for s in segmented
        if s.facts.live_days > 0
    ]
    if not rows:
        return {}
    agg = pd.DataFrame(rows).groupby("style_id")[["revenue", "live_days"]].sum()
    return {str(style): float(row["revenue"] / row["live_days"]) for style, row in agg.iterrows()}


def compute_psa(segmented: Sequence[SegmentedStoreStyle], inputs: RunInputs) -> Dict[Tuple[str, str], float]:
    """
    Planogram stock adherence per store-style (percentage).

    A missing or zero planogram target yields 0.0.
    """
    group_stock, _ = planogram_fill(inputs)
    psa: Dict[Tuple[str, str], float] = {}
    for s in segmented:
        f = s.facts
        target = inputs.planogram_target(f.store_id, f.category, f.attribute)
        if target is None or target.target_stock <= 0:
            psa[f.key] = 0.0
            continue
        psa[f.key] = 100.0 * group_stock.get(target.key, 0) / target.target_stock
    return psa


# ═══════════════════════════════════════════════════════════════════════════════
# COMPOSITE KEY
# ═══════════════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class RankCandidate:
    """Pre-computed signals of one store-style before ranks are assigned."""
    segmented: SegmentedStoreStyle
    own_score: float
    peer_score: float
    psa: float

    @property
    def current_stock(self) -> int:
        return self.segmented.facts.current_stock

    @property
    def style_id(self) -> str:
        return self.segmented.facts.style_id

    @property
    def store_id(self) -> str:
        return self.segmented.facts.store_id


# Most dominant first
RANK_KEYS: Tuple[Tuple[str, Callable[[RankCandidate], Any]], ...] = (
    ("own_revenue_per_day", lambda c: -c.own_score),
    ("peer_revenue_per_day", lambda c: -c.peer_score),
    ("psa", lambda c: -c.psa),
    ("current_stock", lambda c: c.current_stock),
    ("style_id", lambda c: c.style_id),
    ("store_id", lambda c: c.store_id),
)


def composite_key(candidate: RankCandidate) -> Tuple[Any, ...]:
    return tuple(fn(candidate) for _, fn in RANK_KEYS)


def rank_store_styles(
    segmented: Sequence[SegmentedStoreStyle],
    inputs: RunInputs,
    settings: Optional[RankingSettings] = None,
    blend: Optional[RevenueBlend] = None,
) -> Tuple[RankedStoreStyle, ...]:
    """
    Rank store-styles into a total order.

    Args:
        segmented: Segmented store-styles
        inputs: Run inputs (planogram targets and store stock for PSA)
        settings: Ranking settings (used when blend is None)
        blend: Explicit revenue blend, overrides settings

    Returns:
        New tuple of RankedStoreStyle sorted by rank (1 first)
    """
    settings = settings or RankingSettings()
    blend = blend or blend_from_settings(settings)

    peers = peer_revenue_per_day(segmented)
    psa = compute_psa(segmented, inputs)

    candidates: List[RankCandidate] = []
    for s in segmented:
        peer = peers.get(s.facts.style_id, 0.0)
        candidates.append(RankCandidate(
            segmented=s,
            own_score=float(blend(s.revenue_per_day, peer, s.facts.live_days)),
            peer_score=peer,
            psa=psa.get(s.key, 0.0),
        ))

    candidates.sort(key=composite_key)

    ranked = tuple(
        RankedStoreStyle(
            segmented=c.segmented,
            rank=position,
            psa=c.psa,
            own_score=c.own_score,
            peer_revenue_per_day=c.peer_score,
        )
        for position, c in enumerate(candidates, start=1)
    )
    logger.info(f"Ranked {len(ranked)} store-styles")
    return ranked


def ranking_to_dataframe(ranked: Sequence[RankedStoreStyle]) -> pd.DataFrame:
    return pd.DataFrame([r.to_dict() for r in ranked])
