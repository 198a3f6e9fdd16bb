"""
═══════════════════════════════════════════════════════════════════════════════════════════════════════
                    OUTPUT CONSOLIDATOR
═══════════════════════════════════════════════════════════════════════════════════════════════════════

Merges every committed decision of a run into report tables. Pure
aggregation over a frozen RunResult: no business rules, no arena access, so
consolidating the same result twice yields identical frames.

Tables:
    allocations          (warehouse, store, sku, iteration) → quantity
    warehouse_transfers  (source, destination, sku)         → quantity
    store_transfers      (source, destination, sku)         → quantity, value
    node_summary         (node_type, node_id, sku)          → in / out totals
    diagnostics          one row per store-style
    issues               data gaps and unmet need
    iterations           per-pass counters
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Sequence, Tuple

import pandas as pd

from merch_allocation.allocation.iterations import AllocationLine
from merch_allocation.allocation.runner import IterationSummary
from merch_allocation.core.arena import AllocationArena
from merch_allocation.errors import RunIssue
from merch_allocation.transfers.inter_store import StoreTransfer
from merch_allocation.transfers.inter_warehouse import WarehouseTransfer

logger = logging.getLogger(__name__)


ALLOCATION_COLUMNS = ["warehouse_id", "store_id", "sku", "iteration", "quantity"]
WAREHOUSE_TRANSFER_COLUMNS = ["source_warehouse", "destination_warehouse", "sku", "quantity"]
STORE_TRANSFER_COLUMNS = ["source_store", "destination_store", "sku", "quantity", "value"]
NODE_SUMMARY_COLUMNS = [
    "node_type", "node_id", "sku",
    "allocated_in", "allocated_out", "transfer_in", "transfer_out", "net",
]
DIAGNOSTIC_COLUMNS = [
    "store_id", "style_id", "warehouse_id", "segment", "rank", "psa",
    "resolved_iterations", "target_stock", "current_stock",
    "suggested", "allocated", "transfer_in", "transfer_out", "shortfall",
]
ISSUE_COLUMNS = ["kind", "stage", "message", "store_id", "sku_id", "warehouse_id", "quantity"]
ITERATION_COLUMNS = [
    "name", "kind", "eligible", "skipped", "resolved", "allocated_units", "shortfall_units", "after_transfers",
]


# ═══════════════════════════════════════════════════════════════════════════════
# INPUT RECORDS
# ═══════════════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class StoreStyleDiagnostic:
    """Final state of one store-style, frozen at the end of the run."""
    store_id: str
    style_id: str
    warehouse_id: str
    segment: str
    rank: int
    psa: float
    resolved_iterations: Tuple[str, ...]
    target_stock: int
    current_stock: int
    suggested: int
    allocated: int
    transfer_in: int
    transfer_out: int
    shortfall: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "store_id": self.store_id,
            "style_id": self.style_id,
            "warehouse_id": self.warehouse_id,
            "segment": self.segment,
            "rank": self.rank,
            "psa": round(self.psa, 2),
            "resolved_iterations": ",".join(self.resolved_iterations),
            "target_stock": self.target_stock,
            "current_stock": self.current_stock,
            "suggested": self.suggested,
            "allocated": self.allocated,
            "transfer_in": self.transfer_in,
            "transfer_out": self.transfer_out,
            "shortfall": self.shortfall,
        }


def diagnostics_from_arena(arena: AllocationArena) -> List[StoreStyleDiagnostic]:
    """Freeze the per store-style counters of a finished run."""
    rows = []
    for style in arena:
        skus = arena.skus_of(style)
        rows.append(StoreStyleDiagnostic(
            store_id=style.store_id,
            style_id=style.style_id,
            warehouse_id=style.warehouse_id,
            segment=style.segment.value,
            rank=style.rank,
            psa=style.psa,
            resolved_iterations=tuple(style.resolved_iterations),
            target_stock=style.facts.target_stock,
            current_stock=style.facts.current_stock,
            suggested=sum(s.suggested for s in skus),
            allocated=sum(s.warehouse_allocated for s in skus),
            transfer_in=sum(s.store_allocated_in for s in skus),
            transfer_out=sum(s.transfer_out for s in skus),
            shortfall=sum(max(0, s.suggested - s.position) for s in skus if s.suggested > 0),
        ))
    return rows


@dataclass(frozen=True)
class RunResult:
    """Committed decision set of one run."""
    lines: Tuple[AllocationLine, ...] = ()
    warehouse_transfers: Tuple[WarehouseTransfer, ...] = ()
    store_transfers: Tuple[StoreTransfer, ...] = ()
    diagnostics: Tuple[StoreStyleDiagnostic, ...] = ()
    issues: Tuple[RunIssue, ...] = ()
    summaries: Tuple[IterationSummary, ...] = ()


# ═══════════════════════════════════════════════════════════════════════════════
# REPORT
# ═══════════════════════════════════════════════════════════════════════════════

def _records(df: pd.DataFrame) -> List[Dict[str, Any]]:
    """JSON-safe rows (NaN → None)."""
    return df.astype(object).where(pd.notna(df), None).to_dict(orient="records")


@dataclass
class AllocationReport:
    """Final report tables of one run."""
    allocations: pd.DataFrame
    warehouse_transfers: pd.DataFrame
    store_transfers: pd.DataFrame
    node_summary: pd.DataFrame
    diagnostics: pd.DataFrame
    issues: pd.DataFrame
    iterations: pd.DataFrame
    metadata: Dict[str, Any] = field(default_factory=dict)

    @property
    def total_allocated(self) -> int:
        return int(self.allocations["quantity"].sum()) if not self.allocations.empty else 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "summary": {
                "total_allocated": self.total_allocated,
                "allocation_rows": len(self.allocations),
                "warehouse_transfers": len(self.warehouse_transfers),
                "store_transfers": len(self.store_transfers),
                "issues": len(self.issues),
                **self.metadata,
            },
            "allocations": _records(self.allocations),
            "warehouse_transfers": _records(self.warehouse_transfers),
            "store_transfers": _records(self.store_transfers),
            "node_summary": _records(self.node_summary),
            "diagnostics": _records(self.diagnostics),
            "issues": _records(self.issues),
            "iterations": _records(self.iterations),
        }


# ═══════════════════════════════════════════════════════════════════════════════
# AGGREGATION
# ═══════════════════════════════════════════════════════════════════════════════

def _frame(rows: Sequence[Dict[str, Any]], columns: List[str]) -> pd.DataFrame:
    return pd.DataFrame(list(rows), columns=columns)


def _grouped(df: pd.DataFrame, keys: List[str], values: List[str]) -> pd.DataFrame:
    if df.empty:
        return df.reset_index(drop=True)
    out = df.groupby(keys, as_index=False, sort=True)[values].sum()
    return out.sort_values(keys, kind="mergesort").reset_index(drop=True)


def _node_summary(
    allocations: pd.DataFrame,
    warehouse_transfers: pd.DataFrame,
    store_transfers: pd.DataFrame,
) -> pd.DataFrame:
    flows: List[Dict[str, Any]] = []

    def _add(node_type: str, node_id: str, sku: str, column: str, qty: int) -> None:
        flows.append({"node_type": node_type, "node_id": node_id, "sku": sku, column: int(qty)})

    for row in allocations.itertuples(index=False):
        _add("warehouse", row.warehouse_id, row.sku, "allocated_out", row.quantity)
        _add("store", row.store_id, row.sku, "allocated_in", row.quantity)
    for row in warehouse_transfers.itertuples(index=False):
        _add("warehouse", row.source_warehouse, row.sku, "transfer_out", row.quantity)
        _add("warehouse", row.destination_warehouse, row.sku, "transfer_in", row.quantity)
    for row in store_transfers.itertuples(index=False):
        _add("store", row.source_store, row.sku, "transfer_out", row.quantity)
        _add("store", row.destination_store, row.sku, "transfer_in", row.quantity)

    if not flows:
        return _frame([], NODE_SUMMARY_COLUMNS)

    value_columns = ["allocated_in", "allocated_out", "transfer_in", "transfer_out"]
    df = pd.DataFrame(flows).reindex(columns=["node_type", "node_id", "sku"] + value_columns)
    df[value_columns] = df[value_columns].fillna(0).astype("int64")
    df = _grouped(df, ["node_type", "node_id", "sku"], value_columns)
    df["net"] = df["allocated_in"] - df["allocated_out"] + df["transfer_in"] - df["transfer_out"]
    return df[NODE_SUMMARY_COLUMNS]


def consolidate(result: RunResult) -> AllocationReport:
    """
    Build the report tables of a run.

    Args:
        result: Committed decisions and end-of-run diagnostics

    Returns:
        AllocationReport with deterministically sorted frames
    """
    allocations = _grouped(
        _frame(
            [
                {
                    "warehouse_id": l.warehouse_id,
                    "store_id": l.store_id,
                    "sku": l.sku_id,
                    "iteration": l.iteration,
                    "quantity": l.quantity,
                }
                for l in result.lines
            ],
            ALLOCATION_COLUMNS,
        ),
        ["warehouse_id", "store_id", "sku", "iteration"],
        ["quantity"],
    )

    warehouse_transfers = _grouped(
        _frame([t.to_dict() for t in result.warehouse_transfers], WAREHOUSE_TRANSFER_COLUMNS),
        ["source_warehouse", "destination_warehouse", "sku"],
        ["quantity"],
    )

    store_transfers = _grouped(
        _frame([t.to_dict() for t in result.store_transfers], STORE_TRANSFER_COLUMNS),
        ["source_store", "destination_store", "sku"],
        ["quantity", "value"],
    )

    node_summary = _node_summary(allocations, warehouse_transfers, store_transfers)

    diagnostics = _frame([d.to_dict() for d in result.diagnostics], DIAGNOSTIC_COLUMNS)
    if not diagnostics.empty:
        diagnostics = diagnostics.sort_values(["rank", "store_id", "style_id"], kind="mergesort")
        diagnostics = diagnostics.reset_index(drop=True)

    issues = _frame([i.to_dict() for i in result.issues], ISSUE_COLUMNS)
    if not issues.empty:
        order = issues.fillna("").sort_values(
            ["kind", "stage", "store_id", "sku_id", "warehouse_id", "message"], kind="mergesort"
        ).index
        issues = issues.loc[order].reset_index(drop=True)

    iterations = _frame([s.to_dict() for s in result.summaries], ITERATION_COLUMNS)

    report = AllocationReport(
        allocations=allocations,
        warehouse_transfers=warehouse_transfers,
        store_transfers=store_transfers,
        node_summary=node_summary,
        diagnostics=diagnostics,
        issues=issues,
        iterations=iterations,
    )
    logger.info(
        f"Report: {report.total_allocated} units in {len(allocations)} allocation rows, "
        f"{len(warehouse_transfers)} IWHT rows, {len(store_transfers)} IST rows, {len(issues)} issues"
    )
    return report
