"""
Transfers: warehouse → warehouse (IWHT) and store → store (IST) rebalancing.
"""

from .inter_warehouse import (
    WarehouseTransfer,
    outstanding_need,
    plan_inter_warehouse_transfers,
    transfers_to_dataframe,
)
from .inter_store import (
    StoreTransfer,
    store_target,
    transferable_units,
    plan_inter_store_transfers,
    store_transfers_to_dataframe,
)

__all__ = [
    "WarehouseTransfer",
    "outstanding_need",
    "plan_inter_warehouse_transfers",
    "transfers_to_dataframe",
    "StoreTransfer",
    "store_target",
    "transferable_units",
    "plan_inter_store_transfers",
    "store_transfers_to_dataframe",
]
