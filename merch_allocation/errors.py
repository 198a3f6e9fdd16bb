"""
Error taxonomy for allocation runs.

Only configuration faults are raised. Data gaps and unsatisfiable need are
absorbed where they happen and recorded as RunIssue rows so a run always
yields a full report.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional


class AllocationError(Exception):
    """Base class for allocation engine errors."""


class ConfigurationError(AllocationError):
    """
    Invalid run configuration (undefined segment, undefined PSA benchmark,
    unknown iteration kind...). Raised before any allocation commits.
    """


class IssueKind(str, Enum):
    """Kinds of non-fatal run issues."""
    DATA_GAP = "data_gap"
    CONSTRAINT_UNSATISFIABLE = "constraint_unsatisfiable"


@dataclass(frozen=True)
class RunIssue:
    """A non-fatal problem observed during a run."""
    kind: IssueKind
    stage: str
    message: str
    store_id: Optional[str] = None
    sku_id: Optional[str] = None
    warehouse_id: Optional[str] = None
    quantity: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "kind": self.kind.value,
            "stage": self.stage,
            "message": self.message,
            "store_id": self.store_id,
            "sku_id": self.sku_id,
            "warehouse_id": self.warehouse_id,
            "quantity": self.quantity,
        }
