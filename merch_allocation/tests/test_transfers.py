"""
═══════════════════════════════════════════════════════════════════════════════
                    Transfer Tests (IWHT / IST)
═══════════════════════════════════════════════════════════════════════════════

Run with: python -m pytest merch_allocation/tests/test_transfers.py -v
"""

import pytest

from merch_allocation.allocation import AllocationRunner, build_iterations
from merch_allocation.core.types import StyleDemand, Warehouse
from merch_allocation.settings import InterStoreSettings, InterWarehouseSettings
from merch_allocation.transfers import (
    WarehouseTransfer,
    outstanding_need,
    plan_inter_store_transfers,
    plan_inter_warehouse_transfers,
    store_transfers_to_dataframe,
    transfers_to_dataframe,
)


# ═══════════════════════════════════════════════════════════════════════════════
# INTER-WAREHOUSE
# ═══════════════════════════════════════════════════════════════════════════════

@pytest.fixture
def split_network(make_inputs):
    """S1 is served by an empty W1; S3 by a well-stocked W2."""
    def _make(regions=("north", "north")):
        return make_inputs(
            stores={"S1": "W1", "S3": "W2"},
            demand=[
                StyleDemand("S1", "STY-A", target_stock=10),
                StyleDemand("S3", "STY-A", target_stock=5),
            ],
            warehouse_stock={("W2", "A-M"): 30},
            warehouses=[
                Warehouse("W1", region=regions[0]),
                Warehouse("W2", region=regions[1]),
            ],
        )

    return _make


class TestInterWarehouse:
    """Warehouse rebalancing toward outstanding need."""

    def test_anchor_pass_delivers_moved_stock(self, split_network, make_settings, build_arena):
        settings = make_settings(
            [
                {"name": "REPL", "kind": "REPLENISHMENT"},
                {"name": "LATER", "kind": "REPLENISHMENT"},
            ],
            inter_warehouse={"enabled": True, "run_after": "REPL"},
        )
        arena = build_arena(split_network(), settings)
        outcome = AllocationRunner(build_iterations(settings), settings.inter_warehouse).run(arena)

        assert outcome.warehouse_transfers == [WarehouseTransfer("W2", "W1", "A-M", 10)]
        assert [(l.iteration, l.store_id, l.quantity) for l in outcome.lines] == [
            ("REPL", "S3", 5),
            ("REPL", "S1", 10),
        ]
        assert [(s.name, s.after_transfers, s.allocated_units) for s in outcome.summaries] == [
            ("REPL", False, 5),
            ("REPL", True, 10),
            ("LATER", False, 0),
        ]
        assert arena.ledger.get_available("W2", "A-M") == 15
        assert arena.ledger.get_available("W1", "A-M") == 0
        assert arena.ledger.reconcile()

    def test_defaults_to_after_last_pass(self, split_network, make_settings, build_arena):
        settings = make_settings(
            [{"name": "REPL", "kind": "REPLENISHMENT"}],
            inter_warehouse={"enabled": True},
        )
        arena = build_arena(split_network(), settings)
        outcome = AllocationRunner(build_iterations(settings), settings.inter_warehouse).run(arena)

        assert [t.quantity for t in outcome.warehouse_transfers] == [10]
        assert sum(l.quantity for l in outcome.lines if l.store_id == "S1") == 10
        assert arena.ledger.get_available("W1", "A-M") == 0
        assert arena.ledger.get_available("W2", "A-M") == 15

    def test_need_aggregates_unmet_gaps(self, split_network, build_arena):
        arena = build_arena(split_network())
        assert outstanding_need(arena) == {("W1", "A-M"): 10, ("W2", "A-M"): 5}

    def test_same_region_only(self, split_network, build_arena):
        arena = build_arena(split_network(regions=("north", "south")))
        transfers = plan_inter_warehouse_transfers(arena, InterWarehouseSettings(same_region_only=True))
        assert transfers == []

    def test_min_quantity(self, split_network, build_arena):
        arena = build_arena(split_network())
        transfers = plan_inter_warehouse_transfers(arena, InterWarehouseSettings(min_quantity=20))
        assert transfers == []
        assert arena.ledger.get_available("W2", "A-M") == 30

    def test_bounded_by_source_surplus(self, split_network, build_arena):
        arena = build_arena(split_network())
        transfers = plan_inter_warehouse_transfers(arena)
        # W2 keeps enough for its own store
        assert transfers == [WarehouseTransfer("W2", "W1", "A-M", 10)]
        assert arena.ledger.get_available("W2", "A-M") == 20

    def test_dataframe(self):
        df = transfers_to_dataframe([WarehouseTransfer("W2", "W1", "A-M", 10)])
        assert list(df.columns) == ["source_warehouse", "destination_warehouse", "sku", "quantity"]
        assert df.iloc[0]["quantity"] == 10


# ═══════════════════════════════════════════════════════════════════════════════
# INTER-STORE
# ═══════════════════════════════════════════════════════════════════════════════

@pytest.fixture
def store_pair(make_inputs):
    """S1 overstocked and slow, S2 empty and selling; no warehouse stock left."""
    def _make(s2_warehouse="W1", s1_units_sold=1.0, warehouse_stock=None):
        return make_inputs(
            stores={"S1": "W1", "S2": s2_warehouse},
            demand=[
                StyleDemand("S1", "STY-A", revenue=10.0, live_days=10, units_sold=s1_units_sold, target_stock=2),
                StyleDemand("S2", "STY-A", rate_of_sale=1.0, target_stock=6),
            ],
            warehouse_stock=warehouse_stock or {},
            store_stock={("S1", "A-M"): 10},
        )

    return _make


class TestInterStore:
    """Store surplus → store deficit rebalancing."""

    def test_moves_surplus_to_deficit(self, store_pair, build_arena):
        arena = build_arena(store_pair())
        [transfer] = plan_inter_store_transfers(arena, InterStoreSettings())

        assert (transfer.source_store_id, transfer.destination_store_id, transfer.quantity) == ("S1", "S2", 6)
        assert transfer.value == pytest.approx(60.0)
        assert arena.store_sku("S1", "A-M").transfer_out == 6
        assert arena.store_sku("S2", "A-M").store_allocated_in == 6
        assert arena.store_sku("S1", "A-M").position == 4

    def test_good_sell_through_keeps_stock(self, store_pair, build_arena):
        arena = build_arena(store_pair(s1_units_sold=10.0))
        assert plan_inter_store_transfers(arena, InterStoreSettings(sell_through_ceiling=0.3)) == []

    def test_min_value(self, store_pair, build_arena):
        arena = build_arena(store_pair())
        assert plan_inter_store_transfers(arena, InterStoreSettings(min_value=100.0)) == []

    def test_min_quantity(self, store_pair, build_arena):
        arena = build_arena(store_pair())
        assert plan_inter_store_transfers(arena, InterStoreSettings(min_quantity=7)) == []

    def test_active_skus_are_excluded(self, store_pair, build_arena):
        arena = build_arena(store_pair())
        assert plan_inter_store_transfers(arena, InterStoreSettings(), active_skus=["A-M"]) == []

    def test_warehouse_not_exhausted(self, store_pair, build_arena):
        arena = build_arena(store_pair(warehouse_stock={("W1", "A-M"): 5}))
        assert plan_inter_store_transfers(arena, InterStoreSettings()) == []

    def test_same_warehouse_only(self, store_pair, build_arena):
        arena = build_arena(store_pair(s2_warehouse="W2"))
        assert plan_inter_store_transfers(arena, InterStoreSettings(same_warehouse_only=True)) == []

        arena = build_arena(store_pair(s2_warehouse="W2"))
        [transfer] = plan_inter_store_transfers(arena, InterStoreSettings(same_warehouse_only=False))
        assert transfer.quantity == 6

    def test_dataframe(self, store_pair, build_arena):
        arena = build_arena(store_pair())
        df = store_transfers_to_dataframe(plan_inter_store_transfers(arena))
        assert list(df.columns) == ["source_store", "destination_store", "sku", "quantity", "value"]
        assert len(df) == 1
