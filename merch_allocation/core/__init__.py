"""
Core records and per-run state for the allocation engine.
"""

from .types import (
    Segment,
    Sku,
    Style,
    Store,
    Warehouse,
    PlanogramTarget,
    InventorySnapshot,
    StyleDemand,
    SkuDemand,
    RunInputs,
    StoreStyleFacts,
    SegmentedStoreStyle,
    RankedStoreStyle,
    build_store_style_facts,
    planogram_fill,
)

from .arena import (
    AllocationArena,
    WarehouseLedger,
    WarehouseView,
    StoreStyleState,
    StoreSkuState,
    PlanogramCounter,
)

__all__ = [
    # Inputs
    "Segment",
    "Sku",
    "Style",
    "Store",
    "Warehouse",
    "PlanogramTarget",
    "InventorySnapshot",
    "StyleDemand",
    "SkuDemand",
    "RunInputs",
    # Stage records
    "StoreStyleFacts",
    "SegmentedStoreStyle",
    "RankedStoreStyle",
    "build_store_style_facts",
    "planogram_fill",
    # Arena
    "AllocationArena",
    "WarehouseLedger",
    "WarehouseView",
    "StoreStyleState",
    "StoreSkuState",
    "PlanogramCounter",
]
