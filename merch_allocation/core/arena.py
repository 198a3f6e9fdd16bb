"""
═══════════════════════════════════════════════════════════════════════════════════════════════════════
                    ALLOCATION ARENA (per-run mutable state)
═══════════════════════════════════════════════════════════════════════════════════════════════════════

Holds every piece of state an allocation run mutates, addressed by integer
handles into flat vectors:

    WarehouseLedger   (warehouse, sku) → available units   numpy int64 vectors
    StoreStyleState   one per ranked store-style          list, handle = index
    StoreSkuState     one per (store-style, size)         list, handle = index
    PlanogramCounter  one per planogram group             list, handle = index

Ledger Model:
─────────────
    available[w, sku] = starting[w, sku]
                      - allocated[w, sku]
                      - transferred_out[w, sku]
                      + transferred_in[w, sku]

    available[w, sku] >= 0 at every step

The arena is built fresh from the snapshot for each run and thrown away at the
end; nothing here is shared between runs.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Dict, Iterator, List, Optional, Sequence, Tuple

import numpy as np
import pandas as pd

from merch_allocation.core.sizing import clamp_depth, share_of, split_by_contribution
from merch_allocation.core.types import (
    RankedStoreStyle,
    RunInputs,
    Segment,
    StoreStyleFacts,
    planogram_fill,
)
from merch_allocation.errors import AllocationError, IssueKind, RunIssue

logger = logging.getLogger(__name__)


# ═══════════════════════════════════════════════════════════════════════════════
# WAREHOUSE LEDGER
# ═══════════════════════════════════════════════════════════════════════════════

class WarehouseLedger:
    """
    Available stock per (warehouse, sku).

    The only shared mutable resource of a run. Reads and decrements happen on
    one sequential path, so a check-then-commit never races.
    """

    def __init__(self, starting: Dict[Tuple[str, str], int]):
        keys = sorted(starting)
        self._index: Dict[Tuple[str, str], int] = {key: i for i, key in enumerate(keys)}
        self._keys: List[Tuple[str, str]] = list(keys)
        size = len(keys)
        self.starting = np.array([max(0, int(starting[k])) for k in keys], dtype=np.int64)
        self.available = self.starting.copy()
        self.allocated = np.zeros(size, dtype=np.int64)
        self.transferred_in = np.zeros(size, dtype=np.int64)
        self.transferred_out = np.zeros(size, dtype=np.int64)

    def _handle(self, warehouse_id: str, sku_id: str, create: bool = False) -> Optional[int]:
        handle = self._index.get((warehouse_id, sku_id))
        if handle is None and create:
            handle = len(self._keys)
            self._index[(warehouse_id, sku_id)] = handle
            self._keys.append((warehouse_id, sku_id))
            for name in ("starting", "available", "allocated", "transferred_in", "transferred_out"):
                setattr(self, name, np.append(getattr(self, name), np.int64(0)))
        return handle

    def get_available(self, warehouse_id: str, sku_id: str) -> int:
        """Available units; unknown (warehouse, sku) pairs hold nothing."""
        handle = self._handle(warehouse_id, sku_id)
        if handle is None:
            return 0
        return int(self.available[handle])

    def get_starting(self, warehouse_id: str, sku_id: str) -> int:
        handle = self._handle(warehouse_id, sku_id)
        return 0 if handle is None else int(self.starting[handle])

    def commit(self, warehouse_id: str, sku_id: str, quantity: int) -> int:
        """
        Decrement available stock for an allocation.

        Raises:
            AllocationError: if the commit would drive stock negative
        """
        if quantity <= 0:
            return 0
        handle = self._handle(warehouse_id, sku_id)
        if handle is None or self.available[handle] < quantity:
            available = 0 if handle is None else int(self.available[handle])
            raise AllocationError(
                f"Commit of {quantity} x {sku_id} at {warehouse_id} exceeds available {available}"
            )
        self.available[handle] -= quantity
        self.allocated[handle] += quantity
        return quantity

    def transfer(self, source_id: str, destination_id: str, sku_id: str, quantity: int) -> int:
        """Move units between warehouses (IWHT)."""
        if quantity <= 0:
            return 0
        src = self._handle(source_id, sku_id)
        if src is None or self.available[src] < quantity:
            raise AllocationError(
                f"Transfer of {quantity} x {sku_id} from {source_id} exceeds available stock"
            )
        dst = self._handle(destination_id, sku_id, create=True)
        self.available[src] -= quantity
        self.transferred_out[src] += quantity
        self.available[dst] += quantity
        self.transferred_in[dst] += quantity
        return quantity

    def skus(self) -> List[str]:
        return sorted({sku for _, sku in self._keys})

    def warehouses(self) -> List[str]:
        return sorted({wh for wh, _ in self._keys})

    def reconcile(self) -> bool:
        """True when every key satisfies the ledger identity and is non-negative."""
        expected = self.starting - self.allocated - self.transferred_out + self.transferred_in
        return bool(np.array_equal(expected, self.available) and (self.available >= 0).all())

    def to_dataframe(self) -> pd.DataFrame:
        records = []
        for (warehouse_id, sku_id), handle in sorted(self._index.items()):
            records.append({
                "warehouse_id": warehouse_id,
                "sku": sku_id,
                "starting": int(self.starting[handle]),
                "allocated": int(self.allocated[handle]),
                "transferred_in": int(self.transferred_in[handle]),
                "transferred_out": int(self.transferred_out[handle]),
                "available": int(self.available[handle]),
            })
        return pd.DataFrame(records, columns=[
            "warehouse_id", "sku", "starting", "allocated",
            "transferred_in", "transferred_out", "available",
        ])


class WarehouseView:
    """Read/commit window over the ledger for one store's serving warehouse."""

    def __init__(self, ledger: WarehouseLedger, warehouse_id: str):
        self._ledger = ledger
        self.warehouse_id = warehouse_id

    def available(self, sku_id: str) -> int:
        return self._ledger.get_available(self.warehouse_id, sku_id)

    def commit(self, sku_id: str, quantity: int) -> int:
        return self._ledger.commit(self.warehouse_id, sku_id, quantity)


# ═══════════════════════════════════════════════════════════════════════════════
# STORE STATE
# ═══════════════════════════════════════════════════════════════════════════════

@dataclass
class StoreSkuState:
    """
    Allocation state of one size at one store.

    Attributes:
        target_depth: Size target after contribution split and min/max clamps
        suggested: Highest suggested quantity any pass computed
        warehouse_allocated: Cumulative warehouse → store units this run
        store_allocated_in: Cumulative store → store units received this run
        transfer_out: Units sent to other stores this run
    """
    handle: int
    store_style: int
    store_id: str
    style_id: str
    sku_id: str
    size: str
    pivotal: bool
    on_hand: int
    in_transit: int
    target_depth: int
    rate_of_sale: float
    size_share: float = 1.0
    min_display_qty: int = 0
    suggested: int = 0
    warehouse_allocated: int = 0
    store_allocated_in: int = 0
    transfer_out: int = 0

    @property
    def position(self) -> int:
        """Projected stock once every decision of the run lands."""
        return (
            self.on_hand + self.in_transit + self.warehouse_allocated
            + self.store_allocated_in - self.transfer_out
        )

    @property
    def allocated(self) -> int:
        return self.warehouse_allocated + self.store_allocated_in

    def gap_against(self, suggested: int) -> int:
        return suggested - self.position

    def note_suggested(self, suggested: int) -> None:
        if suggested > self.suggested:
            self.suggested = suggested


@dataclass
class StoreStyleState:
    """Mutable allocation state wrapped around an immutable ranked record."""
    handle: int
    ranked: RankedStoreStyle
    sku_handles: List[int] = field(default_factory=list)
    planogram: Optional[int] = None
    on_display: bool = False
    resolved_iterations: List[str] = field(default_factory=list)

    @property
    def facts(self) -> StoreStyleFacts:
        return self.ranked.facts

    @property
    def store_id(self) -> str:
        return self.ranked.store_id

    @property
    def style_id(self) -> str:
        return self.ranked.style_id

    @property
    def warehouse_id(self) -> str:
        return self.ranked.facts.warehouse_id

    @property
    def segment(self) -> Segment:
        return self.ranked.segment

    @property
    def rank(self) -> int:
        return self.ranked.rank

    @property
    def psa(self) -> float:
        return self.ranked.psa

    def mark_resolved(self, iteration_name: str) -> None:
        if iteration_name not in self.resolved_iterations:
            self.resolved_iterations.append(iteration_name)


@dataclass
class PlanogramCounter:
    """Fulfilment counters of one planogram group during a run."""
    key: Tuple[str, str, Optional[str]]
    target_options: int
    target_stock: int
    options_filled: int = 0
    stock_filled: int = 0
    min_display_options: int = 0

    @property
    def remaining_stock_room(self) -> int:
        return max(0, self.target_stock - self.stock_filled)

    @property
    def has_option_room(self) -> bool:
        return self.options_filled < self.target_options

    @property
    def below_display_minimum(self) -> bool:
        return self.options_filled < self.min_display_options

    def record(self, quantity: int, new_option: bool) -> None:
        self.stock_filled += quantity
        if new_option:
            self.options_filled += 1


# ═══════════════════════════════════════════════════════════════════════════════
# ARENA
# ═══════════════════════════════════════════════════════════════════════════════

class AllocationArena:
    """
    Owner of all per-run mutable state.

    Store-styles are stored in rank order, so iterating the arena is
    iterating the priority queue.
    """

    def __init__(self, ledger: WarehouseLedger):
        self.ledger = ledger
        self.store_styles: List[StoreStyleState] = []
        self.store_skus: List[StoreSkuState] = []
        self.planograms: List[PlanogramCounter] = []
        self.unit_prices: Dict[str, float] = {}
        self.warehouse_regions: Dict[str, str] = {}
        self._planogram_index: Dict[Tuple[str, str, Optional[str]], int] = {}
        self._store_sku_index: Dict[Tuple[str, str], int] = {}
        self._style_index: Dict[Tuple[str, str], int] = {}

    # ── access ────────────────────────────────────────────────────────────────

    def __iter__(self) -> Iterator[StoreStyleState]:
        return iter(self.store_styles)

    def __len__(self) -> int:
        return len(self.store_styles)

    def skus_of(self, state: StoreStyleState) -> List[StoreSkuState]:
        return [self.store_skus[h] for h in state.sku_handles]

    def store_sku(self, store_id: str, sku_id: str) -> Optional[StoreSkuState]:
        handle = self._store_sku_index.get((store_id, sku_id))
        return None if handle is None else self.store_skus[handle]

    def store_style(self, store_id: str, style_id: str) -> Optional[StoreStyleState]:
        handle = self._style_index.get((store_id, style_id))
        return None if handle is None else self.store_styles[handle]

    def style_of(self, sku_state: StoreSkuState) -> StoreStyleState:
        return self.store_styles[sku_state.store_style]

    def planogram_of(self, state: StoreStyleState) -> Optional[PlanogramCounter]:
        return None if state.planogram is None else self.planograms[state.planogram]

    def view_for(self, state: StoreStyleState) -> WarehouseView:
        return WarehouseView(self.ledger, state.warehouse_id)

    # ── construction ──────────────────────────────────────────────────────────

    @classmethod
    def build(
        cls,
        ranked: Sequence[RankedStoreStyle],
        inputs: RunInputs,
    ) -> Tuple[AllocationArena, List[RunIssue]]:
        """
        Lay out the arena for a run.

        Args:
            ranked: Store-styles in any order; they are stored by rank
            inputs: Run inputs (snapshot, styles, size demand, planogram)

        Returns:
            (arena, data-gap issues found while building)
        """
        issues: List[RunIssue] = []

        starting: Dict[Tuple[str, str], int] = {}
        for (warehouse_id, sku_id), qty in inputs.snapshot.warehouse_stock.items():
            if warehouse_id not in inputs.warehouses:
                issues.append(RunIssue(
                    kind=IssueKind.DATA_GAP,
                    stage="arena",
                    message="Stock held at unknown warehouse ignored",
                    warehouse_id=warehouse_id,
                    sku_id=sku_id,
                    quantity=int(qty),
                ))
                continue
            starting[(warehouse_id, sku_id)] = int(qty)

        arena = cls(WarehouseLedger(starting))
        arena.unit_prices = {s.style_id: s.unit_price for s in inputs.styles.values()}
        arena.warehouse_regions = {w.warehouse_id: w.region for w in inputs.warehouses.values()}
        group_stock, group_options = planogram_fill(inputs)

        for record in sorted(ranked, key=lambda r: r.rank):
            facts = record.facts
            style = inputs.styles[facts.style_id]
            if facts.warehouse_id not in inputs.warehouses:
                issues.append(RunIssue(
                    kind=IssueKind.DATA_GAP,
                    stage="arena",
                    message="Store mapped to unknown warehouse, treated as empty",
                    store_id=facts.store_id,
                    warehouse_id=facts.warehouse_id,
                ))

            state = StoreStyleState(
                handle=len(arena.store_styles),
                ranked=record,
                on_display=facts.current_stock > 0,
            )

            target = inputs.planogram_target(facts.store_id, facts.category, facts.attribute)
            if target is None:
                issues.append(RunIssue(
                    kind=IssueKind.DATA_GAP,
                    stage="arena",
                    message=f"No planogram target for category {facts.category}",
                    store_id=facts.store_id,
                ))
            else:
                handle = arena._planogram_index.get(target.key)
                if handle is None:
                    handle = len(arena.planograms)
                    arena.planograms.append(PlanogramCounter(
                        key=target.key,
                        target_options=int(target.target_options),
                        target_stock=int(target.target_stock),
                        options_filled=group_options.get(target.key, 0),
                        stock_filled=group_stock.get(target.key, 0),
                        min_display_options=int(target.min_display_options),
                    ))
                    arena._planogram_index[target.key] = handle
                state.planogram = handle

            contributions = [sku.contribution for sku in style.skus]
            split = split_by_contribution(facts.target_stock, contributions)
            for sku, share_qty in zip(style.skus, split):
                demand = inputs.sku_demand.get((facts.store_id, sku.sku_id))
                if demand is not None and demand.target_depth is not None:
                    depth = clamp_depth(demand.target_depth, demand.min_qty, demand.max_qty)
                elif demand is not None:
                    depth = clamp_depth(share_qty, demand.min_qty, demand.max_qty)
                else:
                    depth = clamp_depth(share_qty)

                if demand is not None and demand.rate_of_sale is not None:
                    ros = float(demand.rate_of_sale)
                else:
                    ros = facts.rate_of_sale * share_of(sku.contribution, contributions)

                sku_state = StoreSkuState(
                    handle=len(arena.store_skus),
                    store_style=state.handle,
                    store_id=facts.store_id,
                    style_id=facts.style_id,
                    sku_id=sku.sku_id,
                    size=sku.size,
                    pivotal=sku.pivotal,
                    on_hand=inputs.snapshot.store_on_hand(facts.store_id, sku.sku_id),
                    in_transit=inputs.snapshot.store_transit(facts.store_id, sku.sku_id),
                    target_depth=depth,
                    rate_of_sale=ros,
                    size_share=share_of(sku.contribution, contributions),
                    min_display_qty=facts.min_display_qty,
                )
                arena.store_skus.append(sku_state)
                arena._store_sku_index[(facts.store_id, sku.sku_id)] = sku_state.handle
                state.sku_handles.append(sku_state.handle)

            arena.store_styles.append(state)
            arena._style_index[facts.key] = state.handle

        logger.info(
            f"Arena built: {len(arena.store_styles)} store-styles, "
            f"{len(arena.store_skus)} store-skus, {len(arena.planograms)} planogram groups"
        )
        return arena, issues

