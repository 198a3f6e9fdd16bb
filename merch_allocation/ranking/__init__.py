"""
Ranking: one total priority order over the store-styles of a run.
"""

from .ranking_engine import (
    RevenueBlend,
    RankCandidate,
    RANK_KEYS,
    own_revenue_only,
    shrinkage_blend,
    blend_from_settings,
    peer_revenue_per_day,
    compute_psa,
    composite_key,
    rank_store_styles,
    ranking_to_dataframe,
)

__all__ = [
    "RevenueBlend",
    "RankCandidate",
    "RANK_KEYS",
    "own_revenue_only",
    "shrinkage_blend",
    "blend_from_settings",
    "peer_revenue_per_day",
    "compute_psa",
    "composite_key",
    "rank_store_styles",
    "ranking_to_dataframe",
]
