"""
═══════════════════════════════════════════════════════════════════════════════════════════════════════
                    INTER-WAREHOUSE TRANSFER (IWHT)
═══════════════════════════════════════════════════════════════════════════════════════════════════════

Moves sku stock toward warehouses whose stores still have unmet need.

Formulation:
────────────
    need[w, sku]    = Σ_{store→w} max(0, max(suggested, target_depth) - position)
                      (pivotal sizes only)
    deficit[w, sku] = need[w, sku] - available[w, sku]          if > 0
    surplus[w, sku] = available[w, sku] - need[w, sku]          if > 0

    q[src, dst, sku] = min(surplus[src, sku], deficit[dst, sku])

Heuristic (greedy):
    1. Deficit warehouses in descending deficit order
    2. Each one draws from surplus warehouses in descending surplus order
    3. Moves below min_quantity are dropped
    4. The ledger is updated immediately (source -, destination +), so any
       pass that runs afterwards sees the moved stock
"""

from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple

import pandas as pd

from merch_allocation.core.arena import AllocationArena
from merch_allocation.settings import InterWarehouseSettings

logger = logging.getLogger(__name__)


# ═══════════════════════════════════════════════════════════════════════════════
# DATA STRUCTURES
# ═══════════════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class WarehouseTransfer:
    """
    Recommended warehouse → warehouse move.

    Attributes:
        source_id: Warehouse giving stock
        destination_id: Warehouse receiving stock
        sku_id: Moved sku
        quantity: Units moved
    """
    source_id: str
    destination_id: str
    sku_id: str
    quantity: int

    def to_dict(self) -> dict:
        return {
            "source_warehouse": self.source_id,
            "destination_warehouse": self.destination_id,
            "sku": self.sku_id,
            "quantity": self.quantity,
        }


# ═══════════════════════════════════════════════════════════════════════════════
# NEED
# ═══════════════════════════════════════════════════════════════════════════════

def outstanding_need(arena: AllocationArena) -> Dict[Tuple[str, str], int]:
    """
    Unmet pivotal-size need aggregated per (warehouse, sku).

    Stores mapped to a warehouse outside the network don't count.
    """
    need: Dict[Tuple[str, str], int] = defaultdict(int)
    for style in arena:
        if style.warehouse_id not in arena.warehouse_regions:
            continue
        for sku in arena.skus_of(style):
            if not sku.pivotal:
                continue
            gap = max(sku.suggested, sku.target_depth) - sku.position
            if gap > 0:
                need[(style.warehouse_id, sku.sku_id)] += gap
    return dict(need)


# ═══════════════════════════════════════════════════════════════════════════════
# PLANNING
# ═══════════════════════════════════════════════════════════════════════════════

def plan_inter_warehouse_transfers(
    arena: AllocationArena,
    settings: Optional[InterWarehouseSettings] = None,
) -> List[WarehouseTransfer]:
    """
    Rebalance warehouse stock toward outstanding need and apply it to the ledger.

    Args:
        arena: Run arena (ledger is mutated)
        settings: IWHT settings

    Returns:
        Committed WarehouseTransfer list, in the order they were applied
    """
    settings = settings or InterWarehouseSettings()
    need = outstanding_need(arena)
    ledger = arena.ledger
    warehouses = sorted(arena.warehouse_regions)

    skus = sorted({sku for _, sku in need})
    transfers: List[WarehouseTransfer] = []

    for sku in skus:
        deficits: Dict[str, int] = {}
        surpluses: Dict[str, int] = {}
        for wh in warehouses:
            balance = ledger.get_available(wh, sku) - need.get((wh, sku), 0)
            if balance < 0:
                deficits[wh] = -balance
            elif balance > 0:
                surpluses[wh] = balance

        if not deficits or not surpluses:
            continue

        for deficit_wh in sorted(deficits, key=lambda w: (-deficits[w], w)):
            for surplus_wh in sorted(surpluses, key=lambda w: (-surpluses[w], w)):
                if deficits[deficit_wh] <= 0:
                    break
                if surpluses[surplus_wh] <= 0:
                    continue
                if (
                    settings.same_region_only
                    and arena.warehouse_regions.get(surplus_wh) != arena.warehouse_regions.get(deficit_wh)
                ):
                    continue

                qty = min(deficits[deficit_wh], surpluses[surplus_wh])
                if qty < settings.min_quantity:
                    continue

                ledger.transfer(surplus_wh, deficit_wh, sku, qty)
                transfers.append(WarehouseTransfer(surplus_wh, deficit_wh, sku, qty))
                deficits[deficit_wh] -= qty
                surpluses[surplus_wh] -= qty

    logger.info(
        f"IWHT: {len(transfers)} transfers, {sum(t.quantity for t in transfers)} units "
        f"across {len(skus)} skus with outstanding need"
    )
    return transfers


def transfers_to_dataframe(transfers: List[WarehouseTransfer]) -> pd.DataFrame:
    return pd.DataFrame(
        [t.to_dict() for t in transfers],
        columns=["source_warehouse", "destination_warehouse", "sku", "quantity"],
    )
