"""
═══════════════════════════════════════════════════════════════════════════════════════════════════════
                    ALLOCATION ITERATIONS (pass kinds)
═══════════════════════════════════════════════════════════════════════════════════════════════════════

One class per pass kind. Each carries only the parameters it needs and is
applied to a single ranked store-style through `apply()`:

    ┌──────────────────┬────────────────────────────────────────────────────┐
    │ TOP_SELLER       │ push top sellers to max(depth, ros × days × cover) │
    │ REPLENISHMENT    │ refill to target depth (cover uplift for tops)     │
    │ PLANOGRAM_FILL   │ fill fixtures to their per-option display share    │
    │ NON_PIVOTAL_SIZE │ non-required sizes to target depth                 │
    │ MIN_AGE          │ seed young styles with the minimum display qty     │
    │ INCLUSION        │ forced presence of listed (store, style) pairs     │
    └──────────────────┴────────────────────────────────────────────────────┘

Per sku:
    gap     = suggested - position          (position = on hand + in transit
                                             + allocated so far this run)
    binding = min(gap, warehouse available, planogram room if enforced)

Zero gap or zero stock is a silent skip; whatever is left of the gap is
reported as a shortfall.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Callable, Dict, FrozenSet, List, Optional, Tuple

from merch_allocation.core.arena import (
    PlanogramCounter,
    StoreSkuState,
    StoreStyleState,
    WarehouseView,
)
from merch_allocation.core.sizing import cover_quantity
from merch_allocation.core.types import Segment
from merch_allocation.errors import ConfigurationError
from merch_allocation.settings import AllocationSettings, IterationDefinition, IterationKind

logger = logging.getLogger(__name__)

ALL_SEGMENTS: FrozenSet[Segment] = frozenset(Segment)
SELLING_SEGMENTS: FrozenSet[Segment] = frozenset({Segment.TOP_SELLER, Segment.NORMAL_SELLER})


# ═══════════════════════════════════════════════════════════════════════════════
# RESULTS
# ═══════════════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class AllocationLine:
    """One committed warehouse → store movement."""
    warehouse_id: str
    store_id: str
    sku_id: str
    quantity: int
    iteration: str
    gap: int
    suggested: int

    def to_dict(self) -> dict:
        return {
            "warehouse_id": self.warehouse_id,
            "store_id": self.store_id,
            "sku": self.sku_id,
            "quantity": self.quantity,
            "iteration": self.iteration,
        }


@dataclass
class StyleAllocation:
    """Outcome of one pass over one store-style."""
    iteration: str
    store_id: str
    style_id: str
    lines: List[AllocationLine] = field(default_factory=list)
    shortfalls: List[Tuple[str, int]] = field(default_factory=list)
    skipped_reason: Optional[str] = None

    @property
    def allocated(self) -> int:
        return sum(line.quantity for line in self.lines)

    @property
    def resolved(self) -> bool:
        return bool(self.lines)


# ═══════════════════════════════════════════════════════════════════════════════
# BASE ITERATION
# ═══════════════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class Iteration(ABC):
    """
    Abstract allocation pass.

    Subclasses decide which sizes they cover, how much they suggest and
    whether they respect planogram room; eligibility and commit bookkeeping
    are shared.
    """
    name: str
    segments: FrozenSet[Segment] = ALL_SEGMENTS
    psa_benchmark: Optional[float] = None
    exclude_stores: FrozenSet[str] = frozenset()
    exclude_styles: FrozenSet[str] = frozenset()

    @property
    @abstractmethod
    def kind(self) -> IterationKind:
        ...

    @property
    def enforces_planogram(self) -> bool:
        return False

    @property
    def allows_need_breach(self) -> bool:
        return False

    def covers(self, sku: StoreSkuState) -> bool:
        """Pivotal sizes only, unless a kind says otherwise."""
        return sku.pivotal

    @abstractmethod
    def suggested_quantity(self, style: StoreStyleState, sku: StoreSkuState,
                           planogram: Optional[PlanogramCounter]) -> int:
        """Units this pass wants the store to hold for the sku."""

    def admits(self, style: StoreStyleState) -> bool:
        """Kind-specific eligibility on top of the shared gates."""
        return True

    def waives_psa_gate(self, planogram: Optional[PlanogramCounter]) -> bool:
        return False

    def ineligibility(
        self, style: StoreStyleState, planogram: Optional[PlanogramCounter] = None
    ) -> Optional[str]:
        """Reason the pass skips this store-style, None if eligible."""
        if style.segment not in self.segments:
            return f"segment {style.segment.value} not eligible"
        if style.store_id in self.exclude_stores:
            return "store excluded"
        if style.style_id in self.exclude_styles:
            return "style excluded"
        if (
            self.psa_benchmark is not None
            and style.psa < self.psa_benchmark
            and not self.waives_psa_gate(planogram)
        ):
            return f"PSA {style.psa:.1f} below benchmark {self.psa_benchmark:.1f}"
        if not self.admits(style):
            return f"not admitted by {self.kind.value}"
        return None

    def gap_for(self, sku: StoreSkuState, suggested: int) -> int:
        if self.allows_need_breach:
            return suggested - sku.warehouse_allocated
        return sku.gap_against(suggested)

    def apply(
        self,
        style: StoreStyleState,
        view: WarehouseView,
        skus: List[StoreSkuState],
        planogram: Optional[PlanogramCounter] = None,
    ) -> StyleAllocation:
        """
        Run this pass for one store-style, committing stock through the view.

        Args:
            style: Ranked store-style state
            view: Serving warehouse of the store
            skus: StoreSku states of the style
            planogram: Fulfilment counters of the style's planogram group

        Returns:
            StyleAllocation with committed lines and shortfalls
        """
        result = StyleAllocation(iteration=self.name, store_id=style.store_id, style_id=style.style_id)

        reason = self.ineligibility(style, planogram)
        if reason is not None:
            result.skipped_reason = reason
            return result

        room: Optional[int] = None
        if self.enforces_planogram:
            if planogram is None:
                room = 0
            elif not style.on_display and not planogram.has_option_room:
                room = 0
            else:
                room = planogram.remaining_stock_room

        for sku in skus:
            if not self.covers(sku):
                continue

            suggested = self.suggested_quantity(style, sku, planogram)
            sku.note_suggested(suggested)
            gap = self.gap_for(sku, suggested)
            if gap <= 0:
                continue

            binding = min(gap, view.available(sku.sku_id))
            if room is not None:
                binding = min(binding, room)

            if binding > 0:
                view.commit(sku.sku_id, binding)
                sku.warehouse_allocated += binding
                if room is not None:
                    room -= binding
                if planogram is not None:
                    planogram.record(binding, new_option=not style.on_display)
                style.on_display = True
                result.lines.append(AllocationLine(
                    warehouse_id=view.warehouse_id,
                    store_id=style.store_id,
                    sku_id=sku.sku_id,
                    quantity=binding,
                    iteration=self.name,
                    gap=gap,
                    suggested=suggested,
                ))

            if binding < gap:
                result.shortfalls.append((sku.sku_id, gap - max(binding, 0)))

        if result.resolved:
            style.mark_resolved(self.name)
        return result


# ═══════════════════════════════════════════════════════════════════════════════
# ITERATION KINDS
# ═══════════════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class TopSellerIteration(Iteration):
    """Top-seller push: cover rate-of-sale for the replenishment window."""
    segments: FrozenSet[Segment] = frozenset({Segment.TOP_SELLER})
    replenishment_days: float = 7.0
    cover_multiplier: float = 1.0
    enforce_planogram: bool = False

    @property
    def kind(self) -> IterationKind:
        return IterationKind.TOP_SELLER

    @property
    def enforces_planogram(self) -> bool:
        return self.enforce_planogram

    def suggested_quantity(self, style, sku, planogram) -> int:
        if style.segment != Segment.TOP_SELLER:
            return sku.target_depth
        cover = cover_quantity(sku.rate_of_sale, self.replenishment_days, self.cover_multiplier)
        return max(sku.target_depth, cover)


@dataclass(frozen=True)
class ReplenishmentIteration(Iteration):
    """Refill to target depth; top sellers get the cover uplift."""
    segments: FrozenSet[Segment] = SELLING_SEGMENTS
    replenishment_days: float = 7.0
    cover_multiplier: float = 1.0
    enforce_planogram: bool = False

    @property
    def kind(self) -> IterationKind:
        return IterationKind.REPLENISHMENT

    @property
    def enforces_planogram(self) -> bool:
        return self.enforce_planogram

    def suggested_quantity(self, style, sku, planogram) -> int:
        if style.segment == Segment.TOP_SELLER:
            cover = cover_quantity(sku.rate_of_sale, self.replenishment_days, self.cover_multiplier)
            return max(sku.target_depth, cover)
        return sku.target_depth


@dataclass(frozen=True)
class PlanogramFillIteration(Iteration):
    """Fill fixtures to their per-option share of planogram stock."""

    @property
    def kind(self) -> IterationKind:
        return IterationKind.PLANOGRAM_FILL

    @property
    def enforces_planogram(self) -> bool:
        return True

    def waives_psa_gate(self, planogram: Optional[PlanogramCounter]) -> bool:
        """Fixtures showing fewer styles than their display minimum are filled regardless of PSA."""
        return planogram is not None and planogram.below_display_minimum

    def suggested_quantity(self, style, sku, planogram) -> int:
        if planogram is None or planogram.target_options <= 0:
            return sku.target_depth
        per_option = planogram.target_stock / float(planogram.target_options)
        return max(sku.target_depth, int(per_option * sku.size_share))


@dataclass(frozen=True)
class NonPivotalSizeIteration(Iteration):
    """Target depth for the sizes every other pass skips."""
    segments: FrozenSet[Segment] = SELLING_SEGMENTS
    enforce_planogram: bool = False

    @property
    def kind(self) -> IterationKind:
        return IterationKind.NON_PIVOTAL_SIZE

    @property
    def enforces_planogram(self) -> bool:
        return self.enforce_planogram

    def covers(self, sku: StoreSkuState) -> bool:
        return not sku.pivotal

    def suggested_quantity(self, style, sku, planogram) -> int:
        return sku.target_depth


@dataclass(frozen=True)
class MinAgeIteration(Iteration):
    """Seed styles live for fewer than min_age_days with the display minimum."""
    min_age_days: int = 14
    enforce_planogram: bool = False

    @property
    def kind(self) -> IterationKind:
        return IterationKind.MIN_AGE

    @property
    def enforces_planogram(self) -> bool:
        return self.enforce_planogram

    def admits(self, style: StoreStyleState) -> bool:
        return style.facts.live_days < self.min_age_days

    def suggested_quantity(self, style, sku, planogram) -> int:
        return max(sku.min_display_qty, 1)


@dataclass(frozen=True)
class InclusionIteration(Iteration):
    """Guarantee presence of listed (store, style) pairs."""
    inclusions: FrozenSet[Tuple[str, str]] = frozenset()
    allow_need_breach: bool = False

    @property
    def kind(self) -> IterationKind:
        return IterationKind.INCLUSION

    @property
    def allows_need_breach(self) -> bool:
        return self.allow_need_breach

    def admits(self, style: StoreStyleState) -> bool:
        return (style.store_id, style.style_id) in self.inclusions

    def suggested_quantity(self, style, sku, planogram) -> int:
        return max(sku.min_display_qty, 1)


# ═══════════════════════════════════════════════════════════════════════════════
# FACTORY
# ═══════════════════════════════════════════════════════════════════════════════

def _parse_segments(definition: IterationDefinition) -> Optional[FrozenSet[Segment]]:
    if definition.segments is None:
        return None
    segments = set()
    for raw in definition.segments:
        try:
            segments.add(Segment(str(raw).strip().upper()))
        except ValueError:
            raise ConfigurationError(
                f"Iteration '{definition.name}' references undefined segment '{raw}'"
            ) from None
    if not segments:
        raise ConfigurationError(f"Iteration '{definition.name}' has an empty segment list")
    return frozenset(segments)


def _common_args(definition: IterationDefinition, settings: AllocationSettings) -> Dict:
    args: Dict = {
        "name": definition.name,
        "exclude_stores": frozenset(definition.exclude_stores),
        "exclude_styles": frozenset(definition.exclude_styles),
    }
    segments = _parse_segments(definition)
    if segments is not None:
        args["segments"] = segments
    if definition.psa_benchmark is not None:
        if definition.psa_benchmark not in settings.psa_benchmarks:
            raise ConfigurationError(
                f"Iteration '{definition.name}' references undefined PSA benchmark "
                f"'{definition.psa_benchmark}'"
            )
        args["psa_benchmark"] = float(settings.psa_benchmarks[definition.psa_benchmark])
    return args


def _build_top_seller(d: IterationDefinition, s: AllocationSettings) -> Iteration:
    return TopSellerIteration(
        **_common_args(d, s),
        replenishment_days=d.replenishment_days or s.replenishment_days,
        cover_multiplier=d.cover_multiplier,
        enforce_planogram=d.enforce_planogram,
    )


def _build_replenishment(d: IterationDefinition, s: AllocationSettings) -> Iteration:
    return ReplenishmentIteration(
        **_common_args(d, s),
        replenishment_days=d.replenishment_days or s.replenishment_days,
        cover_multiplier=d.cover_multiplier,
        enforce_planogram=d.enforce_planogram,
    )


def _build_planogram_fill(d: IterationDefinition, s: AllocationSettings) -> Iteration:
    return PlanogramFillIteration(**_common_args(d, s))


def _build_non_pivotal(d: IterationDefinition, s: AllocationSettings) -> Iteration:
    return NonPivotalSizeIteration(**_common_args(d, s), enforce_planogram=d.enforce_planogram)


def _build_min_age(d: IterationDefinition, s: AllocationSettings) -> Iteration:
    return MinAgeIteration(
        **_common_args(d, s),
        min_age_days=d.min_age_days,
        enforce_planogram=d.enforce_planogram,
    )


def _build_inclusion(d: IterationDefinition, s: AllocationSettings) -> Iteration:
    return InclusionIteration(
        **_common_args(d, s),
        inclusions=frozenset((i.store_id, i.style_id) for i in d.inclusions),
        allow_need_breach=d.allow_need_breach,
    )


ITERATION_BUILDERS: Dict[IterationKind, Callable[[IterationDefinition, AllocationSettings], Iteration]] = {
    IterationKind.TOP_SELLER: _build_top_seller,
    IterationKind.REPLENISHMENT: _build_replenishment,
    IterationKind.PLANOGRAM_FILL: _build_planogram_fill,
    IterationKind.NON_PIVOTAL_SIZE: _build_non_pivotal,
    IterationKind.MIN_AGE: _build_min_age,
    IterationKind.INCLUSION: _build_inclusion,
}


def build_iterations(settings: AllocationSettings) -> List[Iteration]:
    """
    Turn configured definitions into iteration objects, in configured order.

    Raises:
        ConfigurationError: duplicate names, undefined segments or PSA
            benchmarks, unknown IWHT anchor
    """
    iterations: List[Iteration] = []
    seen = set()
    for definition in settings.iterations:
        if definition.name in seen:
            raise ConfigurationError(f"Duplicate iteration name '{definition.name}'")
        seen.add(definition.name)

        builder = ITERATION_BUILDERS.get(definition.kind)
        if builder is None:
            raise ConfigurationError(f"Unknown iteration kind: {definition.kind}")
        iterations.append(builder(definition, settings))

    iwht = settings.inter_warehouse
    if iwht.enabled and iwht.run_after is not None and iwht.run_after not in seen:
        raise ConfigurationError(
            f"inter_warehouse.run_after references unknown iteration '{iwht.run_after}'"
        )

    logger.info(f"Built {len(iterations)} iterations: {[it.name for it in iterations]}")
    return iterations
