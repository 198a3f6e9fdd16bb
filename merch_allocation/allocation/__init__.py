"""
Allocation: iteration kinds and the multi-pass runner.
"""

from .iterations import (
    AllocationLine,
    StyleAllocation,
    Iteration,
    TopSellerIteration,
    ReplenishmentIteration,
    PlanogramFillIteration,
    NonPivotalSizeIteration,
    MinAgeIteration,
    InclusionIteration,
    ITERATION_BUILDERS,
    build_iterations,
)
from .runner import (
    IterationSummary,
    RunnerOutcome,
    AllocationRunner,
    collect_shortfalls,
)

__all__ = [
    "AllocationLine",
    "StyleAllocation",
    "Iteration",
    "TopSellerIteration",
    "ReplenishmentIteration",
    "PlanogramFillIteration",
    "NonPivotalSizeIteration",
    "MinAgeIteration",
    "InclusionIteration",
    "ITERATION_BUILDERS",
    "build_iterations",
    "IterationSummary",
    "RunnerOutcome",
    "AllocationRunner",
    "collect_shortfalls",
]
