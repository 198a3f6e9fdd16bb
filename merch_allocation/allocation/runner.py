"""
═══════════════════════════════════════════════════════════════════════════════════════════════════════
                    ALLOCATION ITERATION RUNNER
═══════════════════════════════════════════════════════════════════════════════════════════════════════

Executes the configured passes in order over the ranked arena.

State machine:
──────────────
    for iteration in configured order:
        for store_style in rank order (fixed before the first pass):
            iteration.apply(store_style, warehouse_view, skus, planogram)
        if iteration is the IWHT anchor:
            rebalance warehouses (ledger updated before the next pass)
            if anything moved: run the anchor pass again over the new stock

The warehouse ledger and StoreSku counters carry over from pass to pass; no
pass resets what an earlier one committed. Shortfalls are logged per pass;
collect_shortfalls() turns whatever is still unmet into RunIssue rows.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence, Tuple

from merch_allocation.allocation.iterations import AllocationLine, Iteration
from merch_allocation.core.arena import AllocationArena
from merch_allocation.errors import IssueKind, RunIssue
from merch_allocation.settings import InterWarehouseSettings
from merch_allocation.transfers.inter_warehouse import WarehouseTransfer, plan_inter_warehouse_transfers

logger = logging.getLogger(__name__)


@dataclass
class IterationSummary:
    """Counters of one pass."""
    name: str
    kind: str
    eligible: int = 0
    skipped: int = 0
    resolved: int = 0
    allocated_units: int = 0
    shortfall_units: int = 0
    after_transfers: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "kind": self.kind,
            "eligible": self.eligible,
            "skipped": self.skipped,
            "resolved": self.resolved,
            "allocated_units": self.allocated_units,
            "shortfall_units": self.shortfall_units,
            "after_transfers": self.after_transfers,
        }


@dataclass
class RunnerOutcome:
    """Everything the runner committed."""
    lines: List[AllocationLine] = field(default_factory=list)
    warehouse_transfers: List[WarehouseTransfer] = field(default_factory=list)
    summaries: List[IterationSummary] = field(default_factory=list)

    @property
    def allocated_units(self) -> int:
        return sum(line.quantity for line in self.lines)


class AllocationRunner:
    """
    Runs a fixed sequence of iterations against one arena.

    Usage:
        runner = AllocationRunner(build_iterations(settings), settings.inter_warehouse)
        outcome = runner.run(arena)
    """

    def __init__(
        self,
        iterations: Sequence[Iteration],
        inter_warehouse: Optional[InterWarehouseSettings] = None,
    ):
        self.iterations = list(iterations)
        self.inter_warehouse = inter_warehouse

    def _iwht_anchor(self) -> Optional[str]:
        if self.inter_warehouse is None or not self.inter_warehouse.enabled or not self.iterations:
            return None
        return self.inter_warehouse.run_after or self.iterations[-1].name

    def run_iteration(
        self, iteration: Iteration, arena: AllocationArena, after_transfers: bool = False
    ) -> Tuple[IterationSummary, List[AllocationLine]]:
        """Apply one pass to every store-style in rank order."""
        summary = IterationSummary(
            name=iteration.name, kind=iteration.kind.value, after_transfers=after_transfers
        )
        lines: List[AllocationLine] = []

        for style in arena:
            result = iteration.apply(
                style,
                arena.view_for(style),
                arena.skus_of(style),
                arena.planogram_of(style),
            )
            if result.skipped_reason is not None:
                summary.skipped += 1
                logger.debug(
                    f"[{iteration.name}] skip ({style.store_id}, {style.style_id}): {result.skipped_reason}"
                )
                continue

            summary.eligible += 1
            if result.resolved:
                summary.resolved += 1
            summary.allocated_units += result.allocated
            summary.shortfall_units += sum(qty for _, qty in result.shortfalls)
            lines.extend(result.lines)

        logger.info(
            f"Iteration {iteration.name}: {summary.allocated_units} units to "
            f"{summary.resolved}/{summary.eligible} eligible store-styles "
            f"(shortfall {summary.shortfall_units})"
        )
        return summary, lines

    def run(self, arena: AllocationArena) -> RunnerOutcome:
        """
        Execute every configured iteration, in order, against the arena.

        Returns:
            RunnerOutcome with committed lines, IWHT moves and pass summaries
        """
        outcome = RunnerOutcome()
        anchor = self._iwht_anchor()

        for iteration in self.iterations:
            summary, lines = self.run_iteration(iteration, arena)
            outcome.summaries.append(summary)
            outcome.lines.extend(lines)

            if anchor == iteration.name:
                transfers = plan_inter_warehouse_transfers(arena, self.inter_warehouse)
                outcome.warehouse_transfers.extend(transfers)
                if transfers:
                    # moved stock sits at the deficit warehouses until a pass delivers it
                    summary, lines = self.run_iteration(iteration, arena, after_transfers=True)
                    outcome.summaries.append(summary)
                    outcome.lines.extend(lines)

        logger.info(
            f"Allocation finished: {outcome.allocated_units} units in {len(outcome.lines)} lines, "
            f"{len(outcome.warehouse_transfers)} warehouse transfers"
        )
        return outcome


def collect_shortfalls(arena: AllocationArena) -> List[RunIssue]:
    """Unmet need left once every pass has run."""
    issues = []
    for sku in arena.store_skus:
        remaining = sku.suggested - sku.position
        if sku.suggested > 0 and remaining > 0:
            issues.append(RunIssue(
                kind=IssueKind.CONSTRAINT_UNSATISFIABLE,
                stage="allocation",
                message="Suggested quantity not met",
                store_id=sku.store_id,
                sku_id=sku.sku_id,
                warehouse_id=arena.style_of(sku).warehouse_id,
                quantity=remaining,
            ))
    return issues
