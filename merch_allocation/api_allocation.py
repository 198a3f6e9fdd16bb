"""
Merchandising Allocation - API
==============================

REST endpoints for allocation runs.

Endpoints:
- POST /allocation/run                - Run allocation over a posted snapshot
- GET  /allocation/settings/default   - Packaged default settings
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, HTTPException
from pydantic import BaseModel, Field

from merch_allocation.core.types import (
    InventorySnapshot,
    PlanogramTarget,
    RunInputs,
    Segment,
    Sku,
    SkuDemand,
    Store,
    Style,
    StyleDemand,
    Warehouse,
)
from merch_allocation.errors import ConfigurationError
from merch_allocation.pipeline import AllocationEngine
from merch_allocation.settings import get_default_settings, settings_from_dict

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/allocation", tags=["Allocation"])


# ═══════════════════════════════════════════════════════════════════════════════
# REQUEST/RESPONSE MODELS
# ═══════════════════════════════════════════════════════════════════════════════

class SkuPayload(BaseModel):
    sku_id: str
    size: str
    contribution: float = Field(default=1.0, ge=0.0)
    pivotal: bool = True


class StylePayload(BaseModel):
    style_id: str
    category: str
    attribute: Optional[str] = None
    unit_price: float = Field(default=0.0, ge=0.0)
    skus: List[SkuPayload]


class StorePayload(BaseModel):
    store_id: str
    warehouse_id: str
    channel: str = "default"


class WarehousePayload(BaseModel):
    warehouse_id: str
    region: str = ""


class WarehouseStockPayload(BaseModel):
    warehouse_id: str
    sku_id: str
    quantity: int = Field(ge=0)


class StoreStockPayload(BaseModel):
    store_id: str
    sku_id: str
    on_hand: int = Field(default=0, ge=0)
    in_transit: int = Field(default=0, ge=0)


class StyleDemandPayload(BaseModel):
    store_id: str
    style_id: str
    revenue: float = 0.0
    units_sold: float = 0.0
    live_days: int = 0
    avg_discount: float = 0.0
    rate_of_sale: float = 0.0
    target_stock: int = 0
    segment_override: Optional[Segment] = None
    min_display_qty: int = 0


class SkuDemandPayload(BaseModel):
    store_id: str
    sku_id: str
    rate_of_sale: Optional[float] = None
    target_depth: Optional[int] = None
    min_qty: int = 0
    max_qty: Optional[int] = None


class PlanogramPayload(BaseModel):
    store_id: str
    category: str
    attribute: Optional[str] = None
    target_options: int = Field(ge=0)
    target_stock: int = Field(ge=0)
    min_display_options: int = 0


class AllocationRunRequest(BaseModel):
    """Request to run one allocation batch."""
    stores: List[StorePayload]
    warehouses: List[WarehousePayload]
    styles: List[StylePayload]
    warehouse_stock: List[WarehouseStockPayload] = Field(default_factory=list)
    store_stock: List[StoreStockPayload] = Field(default_factory=list)
    style_demand: List[StyleDemandPayload] = Field(default_factory=list)
    sku_demand: List[SkuDemandPayload] = Field(default_factory=list)
    planogram: List[PlanogramPayload] = Field(default_factory=list)
    settings: Optional[Dict[str, Any]] = Field(
        default=None, description="Settings override; packaged defaults when omitted"
    )

    def to_inputs(self) -> RunInputs:
        snapshot = InventorySnapshot()
        for row in self.warehouse_stock:
            key = (row.warehouse_id, row.sku_id)
            snapshot.warehouse_stock[key] = snapshot.warehouse_stock.get(key, 0) + row.quantity
        for row in self.store_stock:
            key = (row.store_id, row.sku_id)
            snapshot.store_stock[key] = snapshot.store_stock.get(key, 0) + row.on_hand
            if row.in_transit:
                snapshot.store_in_transit[key] = snapshot.store_in_transit.get(key, 0) + row.in_transit

        styles = [
            Style(
                style_id=s.style_id,
                category=s.category,
                attribute=s.attribute,
                unit_price=s.unit_price,
                skus=tuple(
                    Sku(sku_id=k.sku_id, style_id=s.style_id, size=k.size,
                        contribution=k.contribution, pivotal=k.pivotal)
                    for k in s.skus
                ),
            )
            for s in self.styles
        ]

        return RunInputs.from_records(
            stores=[Store(**s.model_dump()) for s in self.stores],
            warehouses=[Warehouse(**w.model_dump()) for w in self.warehouses],
            styles=styles,
            snapshot=snapshot,
            style_demand=[StyleDemand(**d.model_dump()) for d in self.style_demand],
            sku_demand=[SkuDemand(**d.model_dump()) for d in self.sku_demand],
            planogram=[PlanogramTarget(**p.model_dump()) for p in self.planogram],
        )


class AllocationRunResponse(BaseModel):
    """Consolidated report of a run."""
    success: bool
    summary: Dict[str, Any]
    allocations: List[Dict[str, Any]]
    warehouse_transfers: List[Dict[str, Any]]
    store_transfers: List[Dict[str, Any]]
    node_summary: List[Dict[str, Any]]
    diagnostics: List[Dict[str, Any]]
    issues: List[Dict[str, Any]]
    iterations: List[Dict[str, Any]]


# ═══════════════════════════════════════════════════════════════════════════════
# ENDPOINTS
# ═══════════════════════════════════════════════════════════════════════════════

@router.post("/run", response_model=AllocationRunResponse)
def run_allocation_endpoint(request: AllocationRunRequest):
    """
    Run segmentation, ranking, the configured passes and transfers over the
    posted snapshot.

    A configuration fault aborts the run before anything is committed (422).
    """
    try:
        settings = settings_from_dict(request.settings) if request.settings is not None else get_default_settings()
        engine = AllocationEngine(settings)
        report = engine.run(request.to_inputs())
        return AllocationRunResponse(success=True, **report.to_dict())
    except ConfigurationError as e:
        logger.warning(f"Allocation run rejected: {e}")
        raise HTTPException(status_code=422, detail=str(e))
    except Exception as e:
        logger.error(f"Allocation run failed: {e}")
        raise HTTPException(status_code=500, detail=str(e))


@router.get("/settings/default")
def get_default_allocation_settings() -> Dict[str, Any]:
    """Packaged default settings, as loaded (env overrides applied)."""
    try:
        return get_default_settings().model_dump(mode="json")
    except ConfigurationError as e:
        logger.error(f"Default settings unavailable: {e}")
        raise HTTPException(status_code=500, detail=str(e))
