"""
Segmentation: performance tagging of store-styles.
"""

from .segmentation_engine import (
    compute_benchmarks,
    classify_store_style,
    segment_store_styles,
    segment_counts,
)

__all__ = [
    "compute_benchmarks",
    "classify_store_style",
    "segment_store_styles",
    "segment_counts",
]
