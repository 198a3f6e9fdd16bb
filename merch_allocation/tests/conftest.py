"""
Shared fixtures for the allocation engine tests.
"""
from typing import Dict, Iterable, List, Optional, Tuple

import pytest
from fastapi.testclient import TestClient

from merch_allocation.core.arena import AllocationArena
from merch_allocation.core.types import (
    InventorySnapshot,
    PlanogramTarget,
    RunInputs,
    Sku,
    SkuDemand,
    Store,
    StoreStyleFacts,
    Style,
    StyleDemand,
    Warehouse,
    build_store_style_facts,
)
from merch_allocation.ranking.ranking_engine import rank_store_styles
from merch_allocation.segmentation.segmentation_engine import segment_store_styles
from merch_allocation.settings import AllocationSettings, reset_settings_cache, settings_from_dict


SETTINGS_ENV_VARS = (
    "MERCH_ALLOC_CONFIG",
    "MERCH_ALLOC_REPLENISHMENT_DAYS",
    "MERCH_ALLOC_IWHT_ENABLED",
    "MERCH_ALLOC_IST_ENABLED",
)


@pytest.fixture(autouse=True)
def clean_settings_env(monkeypatch):
    """Each test starts without env overrides and with no cached defaults."""
    for var in SETTINGS_ENV_VARS:
        monkeypatch.delenv(var, raising=False)
    reset_settings_cache()
    yield
    reset_settings_cache()


@pytest.fixture(scope="function")
def test_client():
    """FastAPI test client."""
    from merch_allocation.api import app
    return TestClient(app)


@pytest.fixture
def single_sku_style():
    """Style STY-A (TOPS) sold in a single pivotal size."""
    return Style(
        style_id="STY-A",
        category="TOPS",
        unit_price=10.0,
        skus=(Sku(sku_id="A-M", style_id="STY-A", size="M"),),
    )


@pytest.fixture
def sized_style():
    """Style STY-B (TOPS): pivotal M and L, non-pivotal XS."""
    return Style(
        style_id="STY-B",
        category="TOPS",
        unit_price=20.0,
        skus=(
            Sku(sku_id="B-M", style_id="STY-B", size="M", contribution=2.0),
            Sku(sku_id="B-L", style_id="STY-B", size="L", contribution=2.0),
            Sku(sku_id="B-XS", style_id="STY-B", size="XS", contribution=1.0, pivotal=False),
        ),
    )


@pytest.fixture
def make_inputs(single_sku_style):
    """
    Factory for small RunInputs.

    stores maps store_id → warehouse_id; warehouses default to every
    warehouse a store or stock row mentions, all in region "north".
    """
    def _make(
        stores: Dict[str, str],
        demand: Iterable[StyleDemand],
        warehouse_stock: Optional[Dict[Tuple[str, str], int]] = None,
        store_stock: Optional[Dict[Tuple[str, str], int]] = None,
        in_transit: Optional[Dict[Tuple[str, str], int]] = None,
        styles: Optional[List[Style]] = None,
        planogram: Iterable[PlanogramTarget] = (),
        sku_demand: Iterable[SkuDemand] = (),
        warehouses: Optional[List[Warehouse]] = None,
    ) -> RunInputs:
        warehouse_stock = warehouse_stock or {}
        if warehouses is None:
            ids = set(stores.values()) | {wh for wh, _ in warehouse_stock}
            warehouses = [Warehouse(warehouse_id=wh, region="north") for wh in sorted(ids)]
        snapshot = InventorySnapshot(
            warehouse_stock=dict(warehouse_stock),
            store_stock=dict(store_stock or {}),
            store_in_transit=dict(in_transit or {}),
        )
        return RunInputs.from_records(
            stores=[Store(store_id=s, warehouse_id=w) for s, w in stores.items()],
            warehouses=warehouses,
            styles=styles or [single_sku_style],
            snapshot=snapshot,
            style_demand=demand,
            sku_demand=sku_demand,
            planogram=planogram,
        )

    return _make


@pytest.fixture
def make_settings():
    """Settings with only the given iterations and both transfers disabled."""
    def _make(iterations: List[dict], **overrides) -> AllocationSettings:
        data = {
            "iterations": iterations,
            "inter_warehouse": {"enabled": False},
            "inter_store": {"enabled": False},
        }
        data.update(overrides)
        return settings_from_dict(data)

    return _make


@pytest.fixture
def build_arena():
    """Run facts → segmentation → ranking → arena for the given inputs."""
    def _build(inputs: RunInputs, settings: Optional[AllocationSettings] = None) -> AllocationArena:
        settings = settings or AllocationSettings()
        facts, _ = build_store_style_facts(inputs)
        segmented = segment_store_styles(facts, settings.segmentation)
        ranked = rank_store_styles(segmented, inputs, settings.ranking)
        arena, _ = AllocationArena.build(ranked, inputs)
        return arena

    return _build


@pytest.fixture
def make_facts():
    """Factory for StoreStyleFacts with neutral defaults."""
    def _make(store_id: str, style_id: str, **kwargs) -> StoreStyleFacts:
        values = dict(
            store_id=store_id,
            style_id=style_id,
            warehouse_id="W1",
            channel="default",
            category="TOPS",
            attribute=None,
            current_stock=0,
            target_stock=0,
            rate_of_sale=0.0,
            revenue=0.0,
            units_sold=0.0,
            live_days=0,
            avg_discount=0.0,
        )
        values.update(kwargs)
        return StoreStyleFacts(**values)

    return _make


@pytest.fixture
def empty_inputs():
    """Inputs with no network, for ranking tests that carry their own facts."""
    return RunInputs(stores={}, warehouses={}, styles={}, snapshot=InventorySnapshot())
