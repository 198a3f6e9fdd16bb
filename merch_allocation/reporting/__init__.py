"""
═══════════════════════════════════════════════════════════════════════════════════════════════════════
                    ALLOCATION REPORTING MODULE
═══════════════════════════════════════════════════════════════════════════════════════════════════════

Consolidation of committed run decisions into report tables.
"""

from .consolidator import (
    StoreStyleDiagnostic,
    RunResult,
    AllocationReport,
    diagnostics_from_arena,
    consolidate,
)

__all__ = [
    "StoreStyleDiagnostic",
    "RunResult",
    "AllocationReport",
    "diagnostics_from_arena",
    "consolidate",
]
