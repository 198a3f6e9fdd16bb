"""
═══════════════════════════════════════════════════════════════════════════════
                    Output Consolidator Tests
═══════════════════════════════════════════════════════════════════════════════

Run with: python -m pytest merch_allocation/tests/test_consolidator.py -v
"""

import json

import pandas as pd
import pytest

from merch_allocation.allocation import AllocationLine, IterationSummary
from merch_allocation.errors import IssueKind, RunIssue
from merch_allocation.reporting import RunResult, StoreStyleDiagnostic, consolidate
from merch_allocation.transfers import StoreTransfer, WarehouseTransfer


@pytest.fixture
def run_result():
    lines = (
        AllocationLine("W1", "S2", "A-M", 4, "REPL", gap=4, suggested=4),
        AllocationLine("W1", "S1", "A-M", 3, "TOP", gap=5, suggested=5),
        AllocationLine("W1", "S1", "A-M", 2, "TOP", gap=2, suggested=5),
        AllocationLine("W2", "S3", "A-S", 1, "REPL", gap=1, suggested=1),
    )
    return RunResult(
        lines=lines,
        warehouse_transfers=(WarehouseTransfer("W2", "W1", "A-M", 6),),
        store_transfers=(StoreTransfer("S3", "S1", "A-S", 2, value=20.0),),
        diagnostics=(
            StoreStyleDiagnostic("S2", "STY-A", "W1", "NORMAL_SELLER", 2, 50.0, ("REPL",), 4, 0, 4, 4, 0, 0),
            StoreStyleDiagnostic("S1", "STY-A", "W1", "TOP_SELLER", 1, 75.0, ("TOP",), 5, 0, 5, 5, 2, 0),
        ),
        issues=(
            RunIssue(IssueKind.DATA_GAP, "inputs", "Demand references unknown store", store_id="S9"),
            RunIssue(IssueKind.CONSTRAINT_UNSATISFIABLE, "allocation", "Suggested quantity not met",
                     store_id="S2", sku_id="A-M", warehouse_id="W1", quantity=3),
        ),
        summaries=(IterationSummary("TOP", "TOP_SELLER", eligible=1, resolved=1, allocated_units=5),),
    )


class TestConsolidate:
    """Aggregation into report frames."""

    def test_allocations_summed_per_key_and_sorted(self, run_result):
        report = consolidate(run_result)
        rows = report.allocations.to_dict(orient="records")
        assert rows == [
            {"warehouse_id": "W1", "store_id": "S1", "sku": "A-M", "iteration": "TOP", "quantity": 5},
            {"warehouse_id": "W1", "store_id": "S2", "sku": "A-M", "iteration": "REPL", "quantity": 4},
            {"warehouse_id": "W2", "store_id": "S3", "sku": "A-S", "iteration": "REPL", "quantity": 1},
        ]
        assert report.total_allocated == 10

    def test_node_summary_balances_flows(self, run_result):
        summary = consolidate(run_result).node_summary.set_index(["node_type", "node_id", "sku"])

        w1 = summary.loc[("warehouse", "W1", "A-M")]
        assert (w1["allocated_out"], w1["transfer_in"], w1["net"]) == (9, 6, -3)
        s1 = summary.loc[("store", "S1", "A-S")]
        assert (s1["transfer_in"], s1["net"]) == (2, 2)
        s3 = summary.loc[("store", "S3", "A-S")]
        assert (s3["allocated_in"], s3["transfer_out"], s3["net"]) == (1, 2, -1)

    def test_diagnostics_in_rank_order(self, run_result):
        diagnostics = consolidate(run_result).diagnostics
        assert list(diagnostics["store_id"]) == ["S1", "S2"]
        assert diagnostics.iloc[0]["resolved_iterations"] == "TOP"
        assert diagnostics.iloc[1]["shortfall"] == 0

    def test_idempotent(self, run_result):
        first = consolidate(run_result)
        second = consolidate(run_result)
        for name in ("allocations", "warehouse_transfers", "store_transfers",
                     "node_summary", "diagnostics", "issues", "iterations"):
            pd.testing.assert_frame_equal(getattr(first, name), getattr(second, name))
        assert first.to_dict() == second.to_dict()

    def test_issue_rows(self, run_result):
        issues = consolidate(run_result).issues
        assert list(issues["kind"]) == ["constraint_unsatisfiable", "data_gap"]

    def test_empty_run_has_typed_empty_frames(self):
        report = consolidate(RunResult())
        assert report.allocations.empty
        assert "quantity" in report.allocations.columns
        assert report.total_allocated == 0
        assert report.to_dict()["summary"]["total_allocated"] == 0

    def test_to_dict_is_json_ready(self, run_result):
        payload = consolidate(run_result).to_dict()
        text = json.dumps(payload)
        assert json.loads(text)["issues"][1]["sku_id"] is None
