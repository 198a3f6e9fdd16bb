"""
═══════════════════════════════════════════════════════════════════════════════════════════════════════
                    CORE TYPES (reference data, snapshot and demand inputs)
═══════════════════════════════════════════════════════════════════════════════════════════════════════

Input records for one allocation run plus the frozen per store-style records
each pipeline stage hands to the next.

Data flow:
──────────
    RunInputs ──► StoreStyleFacts ──► SegmentedStoreStyle ──► RankedStoreStyle
                  (aggregated)        (segment tag)           (rank, PSA)

    stock_position[store, sku] = on_hand[store, sku] + in_transit[store, sku]
    sell_through[store, style] = units_sold / (units_sold + stock_position)

Every record here is read-only once built; mutable allocation state lives in
core.arena.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional, Tuple

from merch_allocation.errors import IssueKind, RunIssue

logger = logging.getLogger(__name__)


# ═══════════════════════════════════════════════════════════════════════════════
# ENUMS
# ═══════════════════════════════════════════════════════════════════════════════

class Segment(str, Enum):
    """Performance class of a store-style."""
    TOP_SELLER = "TOP_SELLER"
    BOTTOM_SELLER = "BOTTOM_SELLER"
    NORMAL_SELLER = "NORMAL_SELLER"


# ═══════════════════════════════════════════════════════════════════════════════
# REFERENCE DATA
# ═══════════════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class Sku:
    """
    A style in one size.

    Attributes:
        sku_id: Stock Keeping Unit
        style_id: Parent style
        size: Size label
        contribution: Share of the style's size curve (any positive scale)
        pivotal: Required size; non-pivotal sizes only get stock in the
            NON_PIVOTAL_SIZE pass
    """
    sku_id: str
    style_id: str
    size: str
    contribution: float = 1.0
    pivotal: bool = True


@dataclass(frozen=True)
class Style:
    """A sellable design and its sizes."""
    style_id: str
    category: str
    attribute: Optional[str] = None
    unit_price: float = 0.0
    skus: Tuple[Sku, ...] = ()


@dataclass(frozen=True)
class Store:
    store_id: str
    warehouse_id: str
    channel: str = "default"


@dataclass(frozen=True)
class Warehouse:
    warehouse_id: str
    region: str = ""


@dataclass(frozen=True)
class PlanogramTarget:
    """
    Display-space target for a store category (optionally narrowed by attribute).

    Attributes:
        target_options: Number of styles the fixture should carry
        target_stock: Units the fixture should hold
        min_display_options: Styles the fixture must show before PSA gates apply
    """
    store_id: str
    category: str
    attribute: Optional[str] = None
    target_options: int = 0
    target_stock: int = 0
    min_display_options: int = 0

    @property
    def key(self) -> Tuple[str, str, Optional[str]]:
        return (self.store_id, self.category, self.attribute)


# ═══════════════════════════════════════════════════════════════════════════════
# SNAPSHOT & DEMAND
# ═══════════════════════════════════════════════════════════════════════════════

@dataclass
class InventorySnapshot:
    """
    Read-only stock picture the run starts from.

    Reservations must already be netted out of warehouse_stock.
    """
    warehouse_stock: Dict[Tuple[str, str], int] = field(default_factory=dict)
    store_stock: Dict[Tuple[str, str], int] = field(default_factory=dict)
    store_in_transit: Dict[Tuple[str, str], int] = field(default_factory=dict)

    def warehouse_qty(self, warehouse_id: str, sku_id: str) -> int:
        return int(self.warehouse_stock.get((warehouse_id, sku_id), 0))

    def store_on_hand(self, store_id: str, sku_id: str) -> int:
        return int(self.store_stock.get((store_id, sku_id), 0))

    def store_transit(self, store_id: str, sku_id: str) -> int:
        return int(self.store_in_transit.get((store_id, sku_id), 0))


@dataclass(frozen=True)
class StyleDemand:
    """
    Demand signal for one style at one store.

    Attributes:
        revenue: Revenue over the live period
        units_sold: Units sold over the live period
        live_days: Days the style has been live at the store
        avg_discount: Average discount (0-1)
        rate_of_sale: Units per day for the whole style
        target_stock: Upstream optimum depth for the style
        segment_override: Upstream classification that wins over computed tags
        min_display_qty: Units per pivotal size to put on display
    """
    store_id: str
    style_id: str
    revenue: float = 0.0
    units_sold: float = 0.0
    live_days: int = 0
    avg_discount: float = 0.0
    rate_of_sale: float = 0.0
    target_stock: int = 0
    segment_override: Optional[Segment] = None
    min_display_qty: int = 0


@dataclass(frozen=True)
class SkuDemand:
    """Per-size demand overrides."""
    store_id: str
    sku_id: str
    rate_of_sale: Optional[float] = None
    target_depth: Optional[int] = None
    min_qty: int = 0
    max_qty: Optional[int] = None


@dataclass
class RunInputs:
    """Everything one run reads. Built once, never mutated by the engine."""
    stores: Dict[str, Store]
    warehouses: Dict[str, Warehouse]
    styles: Dict[str, Style]
    snapshot: InventorySnapshot
    style_demand: Dict[Tuple[str, str], StyleDemand] = field(default_factory=dict)
    sku_demand: Dict[Tuple[str, str], SkuDemand] = field(default_factory=dict)
    planogram: Dict[Tuple[str, str, Optional[str]], PlanogramTarget] = field(default_factory=dict)

    @classmethod
    def from_records(
        cls,
        stores: Iterable[Store],
        warehouses: Iterable[Warehouse],
        styles: Iterable[Style],
        snapshot: InventorySnapshot,
        style_demand: Iterable[StyleDemand] = (),
        sku_demand: Iterable[SkuDemand] = (),
        planogram: Iterable[PlanogramTarget] = (),
    ) -> RunInputs:
        return cls(
            stores={s.store_id: s for s in stores},
            warehouses={w.warehouse_id: w for w in warehouses},
            styles={s.style_id: s for s in styles},
            snapshot=snapshot,
            style_demand={(d.store_id, d.style_id): d for d in style_demand},
            sku_demand={(d.store_id, d.sku_id): d for d in sku_demand},
            planogram={p.key: p for p in planogram},
        )

    def planogram_target(self, store_id: str, category: str, attribute: Optional[str]) -> Optional[PlanogramTarget]:
        """Attribute-level target first, then the category-level one."""
        if attribute is not None:
            target = self.planogram.get((store_id, category, attribute))
            if target is not None:
                return target
        return self.planogram.get((store_id, category, None))


# ═══════════════════════════════════════════════════════════════════════════════
# STAGE RECORDS
# ═══════════════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class StoreStyleFacts:
    """Aggregated, read-only view of one (store, style) pair."""
    store_id: str
    style_id: str
    warehouse_id: str
    channel: str
    category: str
    attribute: Optional[str]
    current_stock: int
    target_stock: int
    rate_of_sale: float
    revenue: float
    units_sold: float
    live_days: int
    avg_discount: float
    segment_override: Optional[Segment] = None
    min_display_qty: int = 0

    @property
    def key(self) -> Tuple[str, str]:
        return (self.store_id, self.style_id)

    @property
    def revenue_per_day(self) -> Optional[float]:
        if self.live_days <= 0:
            return None
        return self.revenue / self.live_days

    @property
    def sell_through(self) -> Optional[float]:
        denominator = self.units_sold + self.current_stock
        if denominator <= 0:
            return None
        return self.units_sold / denominator


@dataclass(frozen=True)
class SegmentedStoreStyle:
    """Facts plus the segment tag, written once by segmentation."""
    facts: StoreStyleFacts
    segment: Segment
    revenue_per_day: float = 0.0
    store_category_benchmark: Optional[float] = None
    channel_category_benchmark: Optional[float] = None

    @property
    def key(self) -> Tuple[str, str]:
        return self.facts.key


@dataclass(frozen=True)
class RankedStoreStyle:
    """
    Segmented store-style with its priority position.

    Attributes:
        rank: 1 = highest priority
        psa: Planogram stock adherence (%)
        own_score: Own revenue-per-day after the revenue blend
        peer_revenue_per_day: Style revenue-per-day across all stores
    """
    segmented: SegmentedStoreStyle
    rank: int
    psa: float
    own_score: float
    peer_revenue_per_day: float

    @property
    def facts(self) -> StoreStyleFacts:
        return self.segmented.facts

    @property
    def segment(self) -> Segment:
        return self.segmented.segment

    @property
    def key(self) -> Tuple[str, str]:
        return self.segmented.key

    @property
    def store_id(self) -> str:
        return self.segmented.facts.store_id

    @property
    def style_id(self) -> str:
        return self.segmented.facts.style_id

    def to_dict(self) -> Dict[str, Any]:
        facts = self.facts
        return {
            "store_id": facts.store_id,
            "style_id": facts.style_id,
            "segment": self.segment.value,
            "rank": self.rank,
            "psa": round(self.psa, 2),
            "own_score": round(self.own_score, 4),
            "peer_revenue_per_day": round(self.peer_revenue_per_day, 4),
            "current_stock": facts.current_stock,
        }


# ═══════════════════════════════════════════════════════════════════════════════
# PUBLIC FUNCTIONS
# ═══════════════════════════════════════════════════════════════════════════════

def build_store_style_facts(inputs: RunInputs) -> Tuple[Tuple[StoreStyleFacts, ...], List[RunIssue]]:
    """
    Aggregate inputs into one StoreStyleFacts per demand entry.

    Demand rows pointing at an unknown store or style are data gaps: they are
    dropped and reported, never raised.

    Returns:
        (facts sorted by (store_id, style_id), issues)
    """
    facts: List[StoreStyleFacts] = []
    issues: List[RunIssue] = []

    for (store_id, style_id), demand in sorted(inputs.style_demand.items()):
        store = inputs.stores.get(store_id)
        style = inputs.styles.get(style_id)
        if store is None or style is None:
            missing = "store" if store is None else "style"
            issues.append(RunIssue(
                kind=IssueKind.DATA_GAP,
                stage="inputs",
                message=f"Demand references unknown {missing}",
                store_id=store_id,
            ))
            logger.warning(f"Demand for ({store_id}, {style_id}) references unknown {missing}, skipped")
            continue

        current_stock = 0
        for sku in style.skus:
            current_stock += inputs.snapshot.store_on_hand(store_id, sku.sku_id)
            current_stock += inputs.snapshot.store_transit(store_id, sku.sku_id)

        facts.append(StoreStyleFacts(
            store_id=store_id,
            style_id=style_id,
            warehouse_id=store.warehouse_id,
            channel=store.channel,
            category=style.category,
            attribute=style.attribute,
            current_stock=current_stock,
            target_stock=int(demand.target_stock),
            rate_of_sale=float(demand.rate_of_sale),
            revenue=float(demand.revenue),
            units_sold=float(demand.units_sold),
            live_days=int(demand.live_days),
            avg_discount=float(demand.avg_discount),
            segment_override=demand.segment_override,
            min_display_qty=int(demand.min_display_qty),
        ))

    return tuple(facts), issues


def planogram_fill(inputs: RunInputs) -> Tuple[Dict[Tuple[str, str, Optional[str]], int], Dict[Tuple[str, str, Optional[str]], int]]:
    """
    Current stock units and styles on display per planogram group.

    Each style counts towards the planogram key it resolves to (attribute-level
    if such a target exists, else category-level).

    Returns:
        (units per group, styles with stock per group)
    """
    stock: Dict[Tuple[str, str, Optional[str]], int] = defaultdict(int)
    options: Dict[Tuple[str, str, Optional[str]], int] = defaultdict(int)
    for store_id in inputs.stores:
        for style in inputs.styles.values():
            target = inputs.planogram_target(store_id, style.category, style.attribute)
            if target is None:
                continue
            units = sum(
                inputs.snapshot.store_on_hand(store_id, sku.sku_id)
                + inputs.snapshot.store_transit(store_id, sku.sku_id)
                for sku in style.skus
            )
            stock[target.key] += units
            if units > 0:
                options[target.key] += 1
    return dict(stock), dict(options)
