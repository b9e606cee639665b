"""
Module: inventory_engines.allocation
Responsibility:
    Decide where production consumption draws stock from.  Orders a site's
    locations by the administrator-configured pick priority, greedily
    allocates a required quantity across those locations, and scales recipe
    lines into per-ingredient requirements for a batch.

Architecture position:
    Engines -- pure calculation layer, zero I/O.
    May only import inventory_kernel/domain/values.

Invariants enforced:
    - Determinism: identical inputs produce identical orderings and plans,
      including tie-breaks (priority, then code, then id).
    - Conservation: sum(draws) + missing_qty == required_qty.
    - No draw exceeds the location's available quantity, and no location
      with available <= 0 is drawn from.
    - Greedy first-priority-first: no backtracking and no attempt to
      minimise the number of locations touched.

Failure modes:
    - None.  A zero or non-finite requirement yields an empty plan.

Usage:
    planner = AllocationPlanner()
    order = planner.order_locations(locations, priority_rows)
    plan = planner.allocate(Decimal("15"), stocks, order)
    plan.draws        # (Draw("A", 10), Draw("B", 5))
    plan.missing_qty  # Decimal("0")
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from decimal import Decimal
from typing import Any
from uuid import UUID

from inventory_engines.tracer import traced_engine
from inventory_kernel.domain.values import ZERO, round_quantity, to_decimal
from inventory_kernel.logging_config import get_logger

logger = get_logger("engines.allocation")

MISSING_PRIORITY = 9999


@dataclass(frozen=True)
class LocationRef:
    """A location as seen by the planner: id and code."""

    location_id: UUID | str
    code: str | None = None


@dataclass(frozen=True)
class PickPriority:
    location_id: UUID | str
    priority: int | None = None
    is_active: bool = True


@dataclass(frozen=True)
class LocationStock:
    """
    Available quantity of one product at one location.

    ``sort_label`` breaks ties between locations missing from the pick order.
    """

    location_id: UUID | str
    available_qty: Decimal
    sort_label: str | None = None


@dataclass(frozen=True)
class Draw:
    location_id: UUID | str
    quantity: Decimal


@dataclass(frozen=True)
class AllocationPlan:
    """
    Ordered draws plus residual shortfall.

    Guarantees:
        - ``total_allocated + missing_qty == required_qty``.
    Non-goals:
        - Not persisted; recomputed per production request.
    """

    required_qty: Decimal
    draws: tuple[Draw, ...]
    missing_qty: Decimal

    @property
    def total_allocated(self) -> Decimal:
        return sum((d.quantity for d in self.draws), ZERO)

    @property
    def is_fully_allocated(self) -> bool:
        return self.missing_qty <= 0


@dataclass(frozen=True)
class RecipeLineInput:
    ingredient_id: UUID | str
    quantity: Any
    is_active: bool = True


@dataclass(frozen=True)
class IngredientRequirement:
    ingredient_id: UUID | str
    required_qty: Decimal


def _priority_value(priority: Any, missing: int) -> Decimal:
    value = to_decimal(priority)
    if value is None or not value.is_finite():
        return Decimal(missing)
    return value


def _code_key(code: str | None) -> str:
    return (code or "").upper()


class AllocationPlanner:
    """
    Location-priority allocation.

    Contract:
        Pure functions.  Location and ingredient ids may be UUIDs or strings;
        they are compared by their string form.
    """

    def __init__(self, missing_priority: int = MISSING_PRIORITY):
        self._missing_priority = missing_priority

    def order_locations(
        self,
        locations: Sequence[LocationRef],
        priority_rows: Sequence[PickPriority],
    ) -> list[UUID | str]:
        """
        Total pick order over ``locations``.

        Active priority rows come first, sorted by (priority, code, id); a
        missing priority counts as ``missing_priority`` and a repeated
        location keeps its best-sorted row.  Locations without a row follow,
        sorted by (code, id).  Rows for unknown locations are ignored.
        """
        by_id = {str(loc.location_id): loc for loc in locations}

        prioritized = sorted(
            (
                row
                for row in priority_rows
                if row.is_active is not False and str(row.location_id) in by_id
            ),
            key=lambda row: (
                _priority_value(row.priority, self._missing_priority),
                _code_key(by_id[str(row.location_id)].code),
                str(row.location_id),
            ),
        )

        seen: set[str] = set()
        ordered: list[UUID | str] = []
        for row in prioritized:
            key = str(row.location_id)
            if key in seen:
                continue
            seen.add(key)
            ordered.append(by_id[key].location_id)

        remainder = sorted(
            (loc for loc in locations if str(loc.location_id) not in seen),
            key=lambda loc: (_code_key(loc.code), str(loc.location_id)),
        )
        for loc in remainder:
            key = str(loc.location_id)
            if key in seen:
                continue
            seen.add(key)
            ordered.append(loc.location_id)

        return ordered

    @traced_engine(
        "allocation", "1.0", fingerprint_fields=("required_qty", "stocks", "ordered_location_ids")
    )
    def allocate(
        self,
        required_qty: Any,
        stocks: Sequence[LocationStock],
        ordered_location_ids: Sequence[UUID | str],
    ) -> AllocationPlan:
        """
        Greedy draw plan for ``required_qty`` across ``stocks``.

        Candidates (available > 0) are visited in pick order; locations not
        in the order go last, by label then id.  Each draw is
        min(available, remaining).
        """
        required = round_quantity(required_qty)
        if required <= 0:
            return AllocationPlan(required_qty=ZERO, draws=(), missing_qty=ZERO)

        order_index = {str(loc_id): i for i, loc_id in enumerate(ordered_location_ids)}

        def sort_key(stock: LocationStock) -> tuple:
            key = str(stock.location_id)
            in_order = key in order_index
            return (
                0 if in_order else 1,
                order_index.get(key, 0),
                (stock.sort_label or key).upper(),
                key,
            )

        candidates = sorted(
            (s for s in stocks if round_quantity(s.available_qty) > 0),
            key=sort_key,
        )

        remaining = required
        draws: list[Draw] = []
        for candidate in candidates:
            if remaining <= 0:
                break
            available = round_quantity(candidate.available_qty)
            qty = round_quantity(min(available, remaining))
            if qty <= 0:
                continue
            draws.append(Draw(location_id=candidate.location_id, quantity=qty))
            remaining = round_quantity(remaining - qty)

        missing = remaining if remaining > 0 else ZERO
        if missing > 0:
            logger.info(
                "allocation_shortfall",
                extra={
                    "required_qty": str(required),
                    "missing_qty": str(missing),
                    "candidate_count": len(candidates),
                },
            )

        return AllocationPlan(required_qty=required, draws=tuple(draws), missing_qty=missing)

    @traced_engine(
        "batch_requirements",
        "1.0",
        fingerprint_fields=("produced_qty", "recipe_yield_qty", "lines"),
    )
    def compute_batch_ingredient_requirements(
        self,
        produced_qty: Any,
        recipe_yield_qty: Any,
        lines: Sequence[RecipeLineInput],
    ) -> list[IngredientRequirement]:
        """
        Scale recipe lines by produced/yield and aggregate per ingredient.

        A yield <= 0 scales everything to zero (empty result).  Inactive
        lines, blank ingredient ids and non-positive quantities are skipped.
        Output is sorted by ingredient id.
        """
        produced = to_decimal(produced_qty)
        yield_qty = to_decimal(recipe_yield_qty)
        if (
            produced is None
            or yield_qty is None
            or not produced.is_finite()
            or not yield_qty.is_finite()
            or yield_qty <= 0
        ):
            factor = ZERO
        else:
            factor = produced / yield_qty

        grouped: dict[str, Decimal] = {}
        ids: dict[str, UUID | str] = {}
        for line in lines:
            if line.is_active is False:
                continue
            key = str(line.ingredient_id if line.ingredient_id is not None else "").strip()
            qty_per_yield = to_decimal(line.quantity)
            if not key or qty_per_yield is None or not qty_per_yield.is_finite() or qty_per_yield <= 0:
                continue
            grouped[key] = grouped.get(key, ZERO) + qty_per_yield * factor
            ids.setdefault(key, line.ingredient_id)

        requirements = [
            IngredientRequirement(ingredient_id=ids[key], required_qty=round_quantity(total))
            for key, total in sorted(grouped.items())
        ]
        return [r for r in requirements if r.required_qty > 0]
