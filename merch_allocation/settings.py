"""
Merch Allocation - Run Settings
===============================

Configuration for one allocation run: segmentation thresholds, ranking blend,
named PSA benchmarks, the ordered iteration list and transfer thresholds.

Usage:
    from merch_allocation.settings import load_settings

    settings = load_settings()                     # packaged defaults
    settings = load_settings("config/spring.yaml")  # explicit file

Path resolution:
    1. explicit path argument
    2. MERCH_ALLOC_CONFIG environment variable
    3. merch_allocation/data/default_allocation.yaml

Scalar overrides via environment:
    MERCH_ALLOC_REPLENISHMENT_DAYS=10
    MERCH_ALLOC_IWHT_ENABLED=false
    MERCH_ALLOC_IST_ENABLED=false
"""

from __future__ import annotations

import logging
import os
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Literal, Optional, Union

import yaml
from pydantic import BaseModel, Field, ValidationError, field_validator

from merch_allocation import DATA_DIR
from merch_allocation.errors import ConfigurationError

logger = logging.getLogger(__name__)

CONFIG_ENV = "MERCH_ALLOC_CONFIG"
DEFAULT_CONFIG_PATH = DATA_DIR / "default_allocation.yaml"


# ═══════════════════════════════════════════════════════════════════════════════
# SETTINGS MODELS
# ═══════════════════════════════════════════════════════════════════════════════

class IterationKind(str, Enum):
    """Allocation pass kinds."""
    TOP_SELLER = "TOP_SELLER"
    REPLENISHMENT = "REPLENISHMENT"
    PLANOGRAM_FILL = "PLANOGRAM_FILL"
    NON_PIVOTAL_SIZE = "NON_PIVOTAL_SIZE"
    MIN_AGE = "MIN_AGE"
    INCLUSION = "INCLUSION"


class SegmentationThresholds(BaseModel):
    """Thresholds used to tag store-styles."""
    revenue_multiplier: float = Field(
        default=1.0,
        gt=0.0,
        description="Own revenue-per-day must exceed benchmark × multiplier to be a top seller"
    )
    min_live_days: int = Field(
        default=30,
        ge=0,
        description="Minimum live days before a store-style can be a top seller"
    )
    sell_through_floor: float = Field(
        default=0.2,
        ge=0.0,
        le=1.0,
        description="Sell-through below this (with heavy discount) marks a bottom seller"
    )
    discount_ceiling: float = Field(
        default=0.3,
        ge=0.0,
        le=1.0,
        description="Average discount above this (with low sell-through) marks a bottom seller"
    )


class RankingSettings(BaseModel):
    """Revenue blend used for the dominant ranking key."""
    revenue_blend: Literal["own_only", "shrinkage"] = "own_only"
    shrinkage_live_days: int = Field(default=30, gt=0)


class InclusionEntry(BaseModel):
    store_id: str
    style_id: str


class IterationDefinition(BaseModel):
    """
    One configured allocation pass.

    Fields a kind does not use are ignored when the pass is built.
    """
    name: str
    kind: IterationKind
    segments: Optional[List[str]] = Field(
        default=None,
        description="Eligible segments; None means the kind's default"
    )
    psa_benchmark: Optional[str] = Field(
        default=None,
        description="Name of a psa_benchmarks entry used as health gate"
    )
    enforce_planogram: bool = False
    replenishment_days: Optional[float] = Field(default=None, gt=0.0)
    cover_multiplier: float = Field(default=1.0, gt=0.0)
    min_age_days: int = Field(default=14, ge=0)
    inclusions: List[InclusionEntry] = Field(default_factory=list)
    allow_need_breach: bool = False
    exclude_stores: List[str] = Field(default_factory=list)
    exclude_styles: List[str] = Field(default_factory=list)

    @field_validator("kind", mode="before")
    @classmethod
    def _upper_kind(cls, value: Any) -> Any:
        if isinstance(value, str):
            return value.strip().upper()
        return value


class InterWarehouseSettings(BaseModel):
    """Inter-warehouse transfer (IWHT) settings."""
    enabled: bool = True
    run_after: Optional[str] = Field(
        default=None,
        description="Iteration name after which IWHT runs; None = after the last pass"
    )
    min_quantity: int = Field(default=1, ge=1)
    same_region_only: bool = False


class InterStoreSettings(BaseModel):
    """Inter-store transfer (IST) settings."""
    enabled: bool = True
    min_quantity: int = Field(default=2, ge=1)
    min_value: float = Field(default=0.0, ge=0.0)
    sell_through_ceiling: float = Field(default=0.3, ge=0.0, le=1.0)
    same_warehouse_only: bool = True


class AllocationSettings(BaseModel):
    """Complete configuration of an allocation run."""
    replenishment_days: float = Field(default=7.0, gt=0.0)
    segmentation: SegmentationThresholds = Field(default_factory=SegmentationThresholds)
    ranking: RankingSettings = Field(default_factory=RankingSettings)
    psa_benchmarks: Dict[str, float] = Field(default_factory=lambda: {"default": 80.0})
    iterations: List[IterationDefinition] = Field(default_factory=list)
    inter_warehouse: InterWarehouseSettings = Field(default_factory=InterWarehouseSettings)
    inter_store: InterStoreSettings = Field(default_factory=InterStoreSettings)


# ═══════════════════════════════════════════════════════════════════════════════
# LOADING
# ═══════════════════════════════════════════════════════════════════════════════

_default_cache: Optional[AllocationSettings] = None


def settings_from_dict(data: Optional[Dict[str, Any]]) -> AllocationSettings:
    """
    Validate a raw mapping into AllocationSettings.

    Raises:
        ConfigurationError: on any schema violation
    """
    try:
        return AllocationSettings.model_validate(data or {})
    except ValidationError as e:
        raise ConfigurationError(f"Invalid allocation settings: {e}") from e


def _resolve_config_path(path: Optional[Union[str, Path]]) -> Path:
    """Return the settings file, prioritizing explicit path then environment."""
    if path is not None:
        return Path(path)
    env_path = os.getenv(CONFIG_ENV)
    if env_path:
        return Path(env_path)
    return DEFAULT_CONFIG_PATH


def _apply_env_overrides(settings: AllocationSettings) -> AllocationSettings:
    """Apply scalar environment overrides; invalid values are logged and dropped."""
    value = os.environ.get("MERCH_ALLOC_REPLENISHMENT_DAYS")
    if value:
        try:
            days = float(value)
            if days <= 0:
                raise ValueError(value)
            settings = settings.model_copy(update={"replenishment_days": days})
            logger.info(f"Setting replenishment_days = {days}")
        except ValueError:
            logger.warning(f"Invalid value for MERCH_ALLOC_REPLENISHMENT_DAYS: {value}")

    bool_mapping = {
        "MERCH_ALLOC_IWHT_ENABLED": "inter_warehouse",
        "MERCH_ALLOC_IST_ENABLED": "inter_store",
    }
    for env_var, section in bool_mapping.items():
        value = os.environ.get(env_var)
        if value:
            enabled = value.lower() in ("true", "1", "yes")
            updated = getattr(settings, section).model_copy(update={"enabled": enabled})
            settings = settings.model_copy(update={section: updated})
            logger.info(f"Setting {section}.enabled = {enabled}")

    return settings


def load_settings(path: Optional[Union[str, Path]] = None) -> AllocationSettings:
    """
    Load settings from YAML and apply environment overrides.

    Raises:
        ConfigurationError: missing file, unreadable YAML or invalid schema
    """
    config_path = _resolve_config_path(path)
    if not config_path.exists():
        raise ConfigurationError(f"Allocation settings file not found: {config_path}")

    try:
        with open(config_path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Failed to parse {config_path}: {e}") from e

    if data is not None and not isinstance(data, dict):
        raise ConfigurationError(f"{config_path} must contain a mapping at top level")

    settings = settings_from_dict(data)
    logger.info(f"Loaded allocation settings from {config_path} ({len(settings.iterations)} iterations)")
    return _apply_env_overrides(settings)


def get_default_settings() -> AllocationSettings:
    """Packaged defaults, loaded once."""
    global _default_cache
    if _default_cache is None:
        _default_cache = load_settings(DEFAULT_CONFIG_PATH)
    return _default_cache


def reset_settings_cache() -> None:
    """Drop cached defaults so the next call reloads them."""
    global _default_cache
    _default_cache = None
