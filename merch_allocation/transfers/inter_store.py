"""
═══════════════════════════════════════════════════════════════════════════════════════════════════════
                    INTER-STORE TRANSFER (IST)
═══════════════════════════════════════════════════════════════════════════════════════════════════════

Store → store rebalancing once warehouse stock can no longer close a gap.

Formulation:
────────────
    target[s, sku]   = max(target_depth, highest suggested quantity of the run)
    position[s, sku] = on_hand + in_transit + warehouse_alloc + ist_in - ist_out

    surplus store:   position > target  and  sell_through[s, style] < ceiling
                     transferable = min(on_hand - ist_out, position - target)
    deficit store:   position < target  and  rate_of_sale > 0
                     and warehouse available for the sku == 0
                     need = target - position

    q = min(need, transferable)
    accepted if q >= min_quantity and q × unit_price >= min_value

Deficit stores are served in rank order; each draws from surplus stores in
descending transferable order (store id breaks ties). Only on-hand units
move: in-transit and freshly allocated stock is not yet at the source.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional

import pandas as pd

from merch_allocation.core.arena import AllocationArena, StoreSkuState
from merch_allocation.settings import InterStoreSettings

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class StoreTransfer:
    """Recommended store → store move."""
    source_store_id: str
    destination_store_id: str
    sku_id: str
    quantity: int
    value: float = 0.0

    def to_dict(self) -> dict:
        return {
            "source_store": self.source_store_id,
            "destination_store": self.destination_store_id,
            "sku": self.sku_id,
            "quantity": self.quantity,
            "value": round(self.value, 2),
        }


def store_target(sku: StoreSkuState) -> int:
    return max(sku.target_depth, sku.suggested)


def transferable_units(arena: AllocationArena, sku: StoreSkuState, ceiling: float) -> int:
    """Units the store can give away without dropping under its target."""
    excess = sku.position - store_target(sku)
    if excess <= 0:
        return 0
    sell_through = arena.style_of(sku).facts.sell_through or 0.0
    if sell_through >= ceiling:
        return 0
    return max(0, min(sku.on_hand - sku.transfer_out, excess))


def plan_inter_store_transfers(
    arena: AllocationArena,
    settings: Optional[InterStoreSettings] = None,
    active_skus: Iterable[str] = (),
) -> List[StoreTransfer]:
    """
    Match store surpluses to store deficits and record the moves on the arena.

    Args:
        arena: Run arena after every allocation pass (StoreSku counters mutated)
        settings: IST settings
        active_skus: Skus still being allocated elsewhere; never moved

    Returns:
        Committed StoreTransfer list
    """
    settings = settings or InterStoreSettings()
    excluded = set(active_skus)

    by_sku: Dict[str, List[StoreSkuState]] = defaultdict(list)
    for sku in arena.store_skus:
        if sku.sku_id not in excluded:
            by_sku[sku.sku_id].append(sku)

    transfers: List[StoreTransfer] = []

    for sku_id in sorted(by_sku):
        states = by_sku[sku_id]
        surplus = {s.handle: transferable_units(arena, s, settings.sell_through_ceiling) for s in states}
        sources = [s for s in states if surplus[s.handle] > 0]
        if not sources:
            continue

        deficits = []
        for s in states:
            if surplus[s.handle] > 0 or s.rate_of_sale <= 0:
                continue
            if s.position >= store_target(s):
                continue
            if arena.ledger.get_available(arena.style_of(s).warehouse_id, sku_id) > 0:
                continue
            deficits.append(s)
        deficits.sort(key=lambda s: (arena.style_of(s).rank, s.store_id))

        for destination in deficits:
            dest_wh = arena.style_of(destination).warehouse_id
            unit_price = arena.unit_prices.get(destination.style_id, 0.0)
            for source in sorted(sources, key=lambda s: (-surplus[s.handle], s.store_id)):
                need = store_target(destination) - destination.position
                if need <= 0:
                    break
                if surplus[source.handle] <= 0 or source.store_id == destination.store_id:
                    continue
                if settings.same_warehouse_only and arena.style_of(source).warehouse_id != dest_wh:
                    continue

                qty = min(need, surplus[source.handle])
                value = qty * unit_price
                if qty < settings.min_quantity or value < settings.min_value:
                    continue

                source.transfer_out += qty
                destination.store_allocated_in += qty
                surplus[source.handle] -= qty
                transfers.append(StoreTransfer(source.store_id, destination.store_id, sku_id, qty, value))

    logger.info(
        f"IST: {len(transfers)} transfers, {sum(t.quantity for t in transfers)} units"
        + (f" ({len(excluded)} active skus excluded)" if excluded else "")
    )
    return transfers


def store_transfers_to_dataframe(transfers: List[StoreTransfer]) -> pd.DataFrame:
    return pd.DataFrame(
        [t.to_dict() for t in transfers],
        columns=["source_store", "destination_store", "sku", "quantity", "value"],
    )
