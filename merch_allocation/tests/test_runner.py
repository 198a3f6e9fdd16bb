"""
═══════════════════════════════════════════════════════════════════════════════
                    Allocation Runner Tests
═══════════════════════════════════════════════════════════════════════════════

Multi-pass behaviour: rank order, planogram capacity, health gates, carried
state and ledger properties.

Run with: python -m pytest merch_allocation/tests/test_runner.py -v
"""

from collections import defaultdict

import numpy as np
import pytest

from merch_allocation.allocation import AllocationRunner, build_iterations, collect_shortfalls
from merch_allocation.core.arena import WarehouseLedger
from merch_allocation.core.types import PlanogramTarget, Segment, Sku, Style, StyleDemand
from merch_allocation.errors import AllocationError, IssueKind


def _run(arena, settings):
    return AllocationRunner(build_iterations(settings), settings.inter_warehouse).run(arena)


def _allocated(outcome, store_id):
    return sum(line.quantity for line in outcome.lines if line.store_id == store_id)


class TestRankOrder:
    """Higher-ranked store-styles are served first from shared stock."""

    def test_scarce_stock_goes_to_rank_one_first(self, make_inputs, make_settings, build_arena):
        inputs = make_inputs(
            stores={"S1": "W", "S2": "W"},
            demand=[
                StyleDemand("S1", "STY-A", revenue=300.0, live_days=30, target_stock=30),
                StyleDemand("S2", "STY-A", revenue=100.0, live_days=30, target_stock=40),
            ],
            warehouse_stock={("W", "A-M"): 50},
        )
        settings = make_settings([{"name": "REPL", "kind": "REPLENISHMENT"}])
        arena = build_arena(inputs, settings)
        assert [s.store_id for s in arena] == ["S1", "S2"]

        outcome = _run(arena, settings)

        assert _allocated(outcome, "S1") == 30
        assert _allocated(outcome, "S2") == 20
        assert arena.ledger.get_available("W", "A-M") == 0

    def test_shortfalls_surface_after_the_run(self, make_inputs, make_settings, build_arena):
        inputs = make_inputs(
            stores={"S1": "W", "S2": "W"},
            demand=[
                StyleDemand("S1", "STY-A", revenue=300.0, live_days=30, target_stock=30),
                StyleDemand("S2", "STY-A", revenue=100.0, live_days=30, target_stock=40),
            ],
            warehouse_stock={("W", "A-M"): 50},
        )
        settings = make_settings([{"name": "REPL", "kind": "REPLENISHMENT"}])
        arena = build_arena(inputs, settings)
        _run(arena, settings)

        [issue] = collect_shortfalls(arena)
        assert issue.kind == IssueKind.CONSTRAINT_UNSATISFIABLE
        assert (issue.store_id, issue.sku_id, issue.quantity) == ("S2", "A-M", 20)


class TestPlanogramCapacity:
    """Enforced passes respect remaining planogram room."""

    def _inputs(self, make_inputs, store_units):
        return make_inputs(
            stores={"S1": "W1"},
            demand=[StyleDemand("S1", "STY-A", target_stock=20)],
            warehouse_stock={("W1", "A-M"): 50},
            store_stock={("S1", "A-M"): store_units},
            planogram=[PlanogramTarget("S1", "TOPS", target_options=1, target_stock=10)],
        )

    @pytest.mark.parametrize("enforce,expected", [(False, 10), (True, 0)])
    def test_full_planogram(self, make_inputs, make_settings, build_arena, enforce, expected):
        settings = make_settings([{"name": "REPL", "kind": "REPLENISHMENT", "enforce_planogram": enforce}])
        arena = build_arena(self._inputs(make_inputs, 10), settings)
        assert next(iter(arena)).psa == pytest.approx(100.0)

        outcome = _run(arena, settings)
        assert outcome.allocated_units == expected

    def test_capped_to_remaining_room(self, make_inputs, make_settings, build_arena):
        settings = make_settings([{"name": "REPL", "kind": "REPLENISHMENT", "enforce_planogram": True}])
        outcome = _run(build_arena(self._inputs(make_inputs, 6), settings), settings)
        assert outcome.allocated_units == 4


class TestHealthGate:
    """PSA benchmark gates whole store-styles."""

    def test_low_psa_store_skipped_regardless_of_rank(self, make_inputs, make_settings, build_arena):
        inputs = make_inputs(
            stores={"S1": "W1", "S2": "W1"},
            demand=[
                StyleDemand("S1", "STY-A", revenue=1000.0, live_days=10, target_stock=20),
                StyleDemand("S2", "STY-A", revenue=10.0, live_days=10, target_stock=20),
            ],
            warehouse_stock={("W1", "A-M"): 100},
            store_stock={("S1", "A-M"): 6, ("S2", "A-M"): 9},
            planogram=[
                PlanogramTarget("S1", "TOPS", target_options=1, target_stock=10),
                PlanogramTarget("S2", "TOPS", target_options=1, target_stock=10),
            ],
        )
        settings = make_settings(
            [{"name": "REPL", "kind": "REPLENISHMENT", "psa_benchmark": "default"}],
            psa_benchmarks={"default": 80.0},
        )
        arena = build_arena(inputs, settings)
        first = next(iter(arena))
        assert (first.store_id, first.rank, first.psa) == ("S1", 1, pytest.approx(60.0))

        outcome = _run(arena, settings)

        assert _allocated(outcome, "S1") == 0
        assert _allocated(outcome, "S2") == 11
        assert outcome.summaries[0].skipped == 1


class TestCarriedState:
    """Later passes see what earlier ones committed."""

    def test_second_pass_does_not_reallocate(self, make_inputs, make_settings, build_arena):
        inputs = make_inputs(
            stores={"S1": "W1"},
            demand=[StyleDemand("S1", "STY-A", target_stock=8)],
            warehouse_stock={("W1", "A-M"): 100},
        )
        settings = make_settings([
            {"name": "FIRST", "kind": "REPLENISHMENT"},
            {"name": "SECOND", "kind": "REPLENISHMENT"},
        ])
        arena = build_arena(inputs, settings)
        outcome = _run(arena, settings)

        assert [(l.iteration, l.quantity) for l in outcome.lines] == [("FIRST", 8)]
        style = next(iter(arena))
        assert style.resolved_iterations == ["FIRST"]
        assert [s.resolved for s in outcome.summaries] == [1, 0]

    def test_top_seller_push_then_replenishment(self, make_inputs, make_settings, build_arena):
        inputs = make_inputs(
            stores={"S1": "W1", "S2": "W1"},
            demand=[
                StyleDemand("S1", "STY-A", rate_of_sale=3.0, target_stock=10,
                            segment_override=Segment.TOP_SELLER),
                StyleDemand("S2", "STY-A", target_stock=10),
            ],
            warehouse_stock={("W1", "A-M"): 25},
        )
        settings = make_settings([
            {"name": "TOP", "kind": "TOP_SELLER", "replenishment_days": 7},
            {"name": "REPL", "kind": "REPLENISHMENT"},
        ])
        outcome = _run(build_arena(inputs, settings), settings)

        assert _allocated(outcome, "S1") == 21
        assert _allocated(outcome, "S2") == 4


@pytest.fixture
def busy_network(make_inputs):
    """Three stores over two warehouses and two styles with uneven stock."""
    styles = [
        Style("STY-A", "TOPS", unit_price=10.0, skus=(
            Sku("A-S", "STY-A", "S", contribution=1.0),
            Sku("A-M", "STY-A", "M", contribution=2.0),
        )),
        Style("STY-B", "PANTS", unit_price=25.0, skus=(
            Sku("B-32", "STY-B", "32"),
            Sku("B-34", "STY-B", "34", pivotal=False),
        )),
    ]

    def _make(a_m_stock=9):
        return make_inputs(
            stores={"S1": "W1", "S2": "W1", "S3": "W2"},
            styles=styles,
            demand=[
                StyleDemand("S1", "STY-A", revenue=400.0, live_days=40, rate_of_sale=2.0, target_stock=12),
                StyleDemand("S2", "STY-A", revenue=90.0, live_days=30, rate_of_sale=1.0, target_stock=9),
                StyleDemand("S3", "STY-A", revenue=50.0, live_days=5, rate_of_sale=1.0, target_stock=6,
                            min_display_qty=1),
                StyleDemand("S1", "STY-B", revenue=100.0, live_days=20, target_stock=4),
                StyleDemand("S3", "STY-B", revenue=300.0, live_days=20, target_stock=6),
            ],
            warehouse_stock={
                ("W1", "A-S"): 4, ("W1", "A-M"): a_m_stock, ("W1", "B-32"): 3, ("W1", "B-34"): 5,
                ("W2", "A-S"): 1, ("W2", "A-M"): 2, ("W2", "B-32"): 10,
            },
            store_stock={("S1", "A-M"): 2, ("S2", "A-S"): 1},
        )

    return _make


@pytest.fixture
def busy_settings(make_settings):
    return make_settings([
        {"name": "TOP", "kind": "TOP_SELLER"},
        {"name": "REPL", "kind": "REPLENISHMENT"},
        {"name": "NP", "kind": "NON_PIVOTAL_SIZE"},
        {"name": "AGE", "kind": "MIN_AGE"},
    ])


class TestLedgerProperties:
    """Conservation, non-negativity and monotonicity."""

    def test_allocations_plus_remaining_equal_starting(self, busy_network, busy_settings, build_arena):
        arena = build_arena(busy_network(), busy_settings)
        outcome = _run(arena, busy_settings)

        committed = defaultdict(int)
        for line in outcome.lines:
            committed[(line.warehouse_id, line.sku_id)] += line.quantity

        ledger = arena.ledger
        assert ledger.reconcile()
        for wh in ledger.warehouses():
            for sku in ledger.skus():
                assert committed[(wh, sku)] + ledger.get_available(wh, sku) == ledger.get_starting(wh, sku)

    def test_quantities_positive_and_within_gap(self, busy_network, busy_settings, build_arena):
        outcome = _run(build_arena(busy_network(), busy_settings), busy_settings)
        assert outcome.lines
        for line in outcome.lines:
            assert 0 < line.quantity <= line.gap

    @pytest.mark.parametrize("low,high", [(0, 3), (3, 9), (9, 40)])
    def test_more_stock_never_allocates_less(self, busy_network, busy_settings, build_arena, low, high):
        def total(stock):
            outcome = _run(build_arena(busy_network(stock), busy_settings), busy_settings)
            return sum(l.quantity for l in outcome.lines if l.sku_id == "A-M")

        assert total(high) >= total(low)


class TestWarehouseLedger:
    """Arena ledger primitives."""

    def test_over_commit_raises(self):
        ledger = WarehouseLedger({("W1", "A-M"): 5})
        with pytest.raises(AllocationError):
            ledger.commit("W1", "A-M", 6)
        assert ledger.get_available("W1", "A-M") == 5

    def test_unknown_pair_holds_nothing(self):
        ledger = WarehouseLedger({})
        assert ledger.get_available("W9", "X") == 0
        with pytest.raises(AllocationError):
            ledger.commit("W9", "X", 1)

    def test_transfer_creates_destination(self):
        ledger = WarehouseLedger({("W1", "A-M"): 5})
        ledger.transfer("W1", "W2", "A-M", 3)
        assert ledger.get_available("W1", "A-M") == 2
        assert ledger.get_available("W2", "A-M") == 3
        assert ledger.reconcile()
        assert ledger.available.dtype == np.int64

    def test_dataframe(self):
        ledger = WarehouseLedger({("W1", "A-M"): 5, ("W1", "A-S"): 2})
        ledger.commit("W1", "A-M", 2)
        df = ledger.to_dataframe()
        row = df[df["sku"] == "A-M"].iloc[0]
        assert (row["starting"], row["allocated"], row["available"]) == (5, 2, 3)
