"""
═══════════════════════════════════════════════════════════════════════════════════════════════════════
                    ALLOCATION PIPELINE
═══════════════════════════════════════════════════════════════════════════════════════════════════════

One batch run over one inventory snapshot:

    inputs ─► facts ─► segmentation ─► ranking ─► arena
                                                    │
                         iterations (+ IWHT after its anchor pass)
                                                    │
                                  IST ─► shortfalls ─► consolidated report

Iterations are built, and therefore validated, when the engine is created,
so a configuration fault surfaces before anything is committed. Each run
builds a fresh arena; nothing is shared between runs.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import List, Optional, Union

from merch_allocation.allocation.iterations import build_iterations
from merch_allocation.allocation.runner import AllocationRunner, collect_shortfalls
from merch_allocation.core.arena import AllocationArena
from merch_allocation.core.types import RunInputs, build_store_style_facts
from merch_allocation.errors import AllocationError, IssueKind, RunIssue
from merch_allocation.ranking.ranking_engine import RevenueBlend, rank_store_styles
from merch_allocation.reporting.consolidator import (
    AllocationReport,
    RunResult,
    consolidate,
    diagnostics_from_arena,
)
from merch_allocation.segmentation.segmentation_engine import segment_counts, segment_store_styles
from merch_allocation.settings import AllocationSettings, get_default_settings, load_settings
from merch_allocation.transfers.inter_store import StoreTransfer, plan_inter_store_transfers

logger = logging.getLogger(__name__)


class AllocationEngine:
    """
    Runs the full allocation pipeline.

    Usage:
        engine = AllocationEngine(load_settings())
        report = engine.run(inputs)
        report.allocations  # DataFrame

    Raises:
        ConfigurationError: at construction, for invalid iteration setups
    """

    def __init__(self, settings: Optional[AllocationSettings] = None, blend: Optional[RevenueBlend] = None):
        self.settings = settings or get_default_settings()
        self.blend = blend
        self.iterations = build_iterations(self.settings)

    @classmethod
    def from_config(cls, path: Optional[Union[str, Path]] = None) -> AllocationEngine:
        return cls(load_settings(path))

    def run(self, inputs: RunInputs) -> AllocationReport:
        """
        Execute one allocation run.

        Args:
            inputs: Snapshot, network, demand and planogram of the run

        Returns:
            Consolidated AllocationReport
        """
        settings = self.settings
        issues: List[RunIssue] = []

        facts, gaps = build_store_style_facts(inputs)
        issues.extend(gaps)

        segmented = segment_store_styles(facts, settings.segmentation)
        ranked = rank_store_styles(segmented, inputs, settings.ranking, self.blend)

        arena, gaps = AllocationArena.build(ranked, inputs)
        issues.extend(gaps)

        runner = AllocationRunner(self.iterations, settings.inter_warehouse)
        outcome = runner.run(arena)

        store_transfers: List[StoreTransfer] = []
        if settings.inter_store.enabled:
            # every pass has finished here, so no sku is still active
            store_transfers = plan_inter_store_transfers(arena, settings.inter_store, active_skus=())

        issues.extend(collect_shortfalls(arena))

        if not arena.ledger.reconcile():
            raise AllocationError("Warehouse ledger does not reconcile after the run")

        data_gaps = sum(1 for i in issues if i.kind == IssueKind.DATA_GAP)
        if data_gaps:
            logger.warning(f"{data_gaps} data gaps recorded during the run")

        report = consolidate(RunResult(
            lines=tuple(outcome.lines),
            warehouse_transfers=tuple(outcome.warehouse_transfers),
            store_transfers=tuple(store_transfers),
            diagnostics=tuple(diagnostics_from_arena(arena)),
            issues=tuple(issues),
            summaries=tuple(outcome.summaries),
        ))
        report.metadata = {
            "store_styles": len(arena),
            "segments": segment_counts(segmented),
            "iteration_order": [it.name for it in self.iterations],
            "warehouse_units_remaining": int(arena.ledger.available.sum()),
        }
        return report


def run_allocation(inputs: RunInputs, settings: Optional[AllocationSettings] = None) -> AllocationReport:
    """Convenience wrapper: build an engine and run it once."""
    return AllocationEngine(settings).run(inputs)
