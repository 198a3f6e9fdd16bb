"""
═══════════════════════════════════════════════════════════════════════════════════════════════════════
                    SEGMENTATION ENGINE (Performance classes)
═══════════════════════════════════════════════════════════════════════════════════════════════════════

Tags every store-style TOP_SELLER, BOTTOM_SELLER or NORMAL_SELLER.

Mathematical Formulation:
─────────────────────────
    rpd[s, y]            = revenue[s, y] / live_days[s, y]

    bench_store[s, c]    = Σ_y∈c revenue[s, y] / Σ_y∈c live_days[s, y]
    bench_channel[ch, c] = Σ_{s∈ch, y∈c} revenue[s, y] / Σ_{s∈ch, y∈c} live_days[s, y]

    TOP_SELLER     if rpd > bench_store × m  and  rpd > bench_channel × m
                   and live_days ≥ min_live_days
    BOTTOM_SELLER  if sell_through < floor  and  avg_discount > ceiling
    NORMAL_SELLER  otherwise (and whenever history is missing)

    where m = revenue_multiplier

An upstream segment override always wins. Tags are written once into frozen
records; no later stage can change them.
"""

from __future__ import annotations

import logging
from typing import Dict, Optional, Sequence, Tuple

import pandas as pd

from merch_allocation.core.types import Segment, SegmentedStoreStyle, StoreStyleFacts
from merch_allocation.settings import SegmentationThresholds

logger = logging.getLogger(__name__)


# ═══════════════════════════════════════════════════════════════════════════════
# BENCHMARKS
# ═══════════════════════════════════════════════════════════════════════════════

def compute_benchmarks(
    facts: Sequence[StoreStyleFacts],
) -> Tuple[Dict[Tuple[str, str], float], Dict[Tuple[str, str], float]]:
    """
    Peer revenue-per-day benchmarks.

    Only store-styles with live days contribute.

    Returns:
        ({(store_id, category): rpd}, {(channel, category): rpd})
    """
    rows = [
        {
            "store_id": f.store_id,
            "channel": f.channel,
            "category": f.category,
            "revenue": f.revenue,
            "live_days": f.live_days,
        }
        for f in facts
        if f.live_days > 0
    ]
    if not rows:
        return {}, {}

    df = pd.DataFrame(rows)

    def _rate(group_cols) -> Dict[Tuple[str, str], float]:
        agg = df.groupby(group_cols, sort=True)[["revenue", "live_days"]].sum()
        agg = agg[agg["live_days"] > 0]
        rates = agg["revenue"] / agg["live_days"]
        return {tuple(idx): float(rate) for idx, rate in rates.items()}

    return _rate(["store_id", "category"]), _rate(["channel", "category"])


# ═══════════════════════════════════════════════════════════════════════════════
# CLASSIFICATION
# ═══════════════════════════════════════════════════════════════════════════════

def _has_history(facts: StoreStyleFacts) -> bool:
    return facts.live_days > 0 or facts.units_sold > 0 or facts.revenue > 0


def classify_store_style(
    facts: StoreStyleFacts,
    store_benchmark: Optional[float],
    channel_benchmark: Optional[float],
    thresholds: SegmentationThresholds,
) -> Segment:
    """
    Classify a single store-style against its benchmarks.

    Args:
        facts: Store-style facts
        store_benchmark: Store-category revenue-per-day (None if unknown)
        channel_benchmark: Channel-category revenue-per-day (None if unknown)
        thresholds: Segmentation thresholds

    Returns:
        Segment tag
    """
    if facts.segment_override is not None:
        return facts.segment_override

    if not _has_history(facts):
        return Segment.NORMAL_SELLER

    rpd = facts.revenue_per_day
    if (
        rpd is not None
        and store_benchmark is not None
        and channel_benchmark is not None
        and facts.live_days >= thresholds.min_live_days
        and rpd > store_benchmark * thresholds.revenue_multiplier
        and rpd > channel_benchmark * thresholds.revenue_multiplier
    ):
        return Segment.TOP_SELLER

    sell_through = facts.sell_through
    if (
        sell_through is not None
        and sell_through < thresholds.sell_through_floor
        and facts.avg_discount > thresholds.discount_ceiling
    ):
        return Segment.BOTTOM_SELLER

    return Segment.NORMAL_SELLER


def segment_store_styles(
    facts: Sequence[StoreStyleFacts],
    thresholds: Optional[SegmentationThresholds] = None,
) -> Tuple[SegmentedStoreStyle, ...]:
    """
    Tag every store-style with its performance segment.

    Args:
        facts: Store-style facts of the run
        thresholds: Segmentation thresholds (defaults if None)

    Returns:
        New tuple of SegmentedStoreStyle, same order as facts
    """
    thresholds = thresholds or SegmentationThresholds()
    store_bench, channel_bench = compute_benchmarks(facts)

    segmented = []
    for f in facts:
        sb = store_bench.get((f.store_id, f.category))
        cb = channel_bench.get((f.channel, f.category))
        segment = classify_store_style(f, sb, cb, thresholds)
        segmented.append(SegmentedStoreStyle(
            facts=f,
            segment=segment,
            revenue_per_day=f.revenue_per_day or 0.0,
            store_category_benchmark=sb,
            channel_category_benchmark=cb,
        ))

    counts = segment_counts(segmented)
    logger.info(
        f"Segmented {len(segmented)} store-styles: "
        + ", ".join(f"{k}={v}" for k, v in counts.items())
    )
    return tuple(segmented)


def segment_counts(segmented: Sequence[SegmentedStoreStyle]) -> Dict[str, int]:
    counts = {segment.value: 0 for segment in Segment}
    for s in segmented:
        counts[s.segment.value] += 1
    return counts
