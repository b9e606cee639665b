"""
inventory_services.production_service -- production batch planning.

Responsibility:
    Turns a ProductionCommand into a ProductionPlan: the recipe's ingredient
    requirements scaled to the produced quantity, each allocated across the
    site's locations in pick-priority order.

Architecture position:
    Services -- read-only orchestration over the allocation engine and the
    kernel selectors.  The movement ledger writes the plan
    (``MovementLedger.consume_for_production``).

Invariants enforced:
    - Pick order comes from LocationPickPriority rows of the site; locations
      without a row follow by code.  A row with no priority value sorts at
      the configured ``missing_pick_priority``.
    - Only active locations of the produced product's site are drawn from.

Failure modes:
    - RecipeNotFoundError when the product has no active recipe.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from uuid import UUID

from sqlalchemy.orm import Session

from inventory_config import InventorySettings, get_active_settings
from inventory_engines.allocation import AllocationPlan, AllocationPlanner
from inventory_kernel.domain.commands import ProductionCommand
from inventory_kernel.domain.values import ZERO
from inventory_kernel.exceptions import RecipeNotFoundError
from inventory_kernel.logging_config import get_logger
from inventory_kernel.selectors.catalog_selector import CatalogSelector
from inventory_kernel.selectors.stock_selector import StockSelector

logger = get_logger("services.production")


@dataclass(frozen=True)
class IngredientAllocation:
    ingredient_id: UUID
    required_qty: Decimal
    plan: AllocationPlan

    @property
    def missing_qty(self) -> Decimal:
        return self.plan.missing_qty


@dataclass(frozen=True)
class ProductionPlan:
    """
    Draws for every ingredient of one production batch.

    Guarantees:
        - ``ingredients`` is sorted by ingredient id.
        - Each ingredient's draws follow the site's pick order.
    """

    product_id: UUID
    site_id: UUID
    recipe_id: UUID
    produced_qty: Decimal
    location_order: tuple[UUID, ...]
    ingredients: tuple[IngredientAllocation, ...]

    @property
    def shortfalls(self) -> tuple[IngredientAllocation, ...]:
        return tuple(i for i in self.ingredients if i.missing_qty > ZERO)

    @property
    def is_fully_allocated(self) -> bool:
        return not self.shortfalls


class ProductionService:
    """
    Plans ingredient consumption for production batches.

    Contract:
        Read-only; running ``plan`` twice on the same data returns the same
        plan.
    """

    def __init__(
        self,
        session: Session,
        planner: AllocationPlanner | None = None,
        settings: InventorySettings | None = None,
    ):
        self.session = session
        if planner is None:
            settings = settings or get_active_settings()
            planner = AllocationPlanner(missing_priority=settings.missing_pick_priority)
        self._planner = planner
        self._catalog = CatalogSelector(session)
        self._stock = StockSelector(session)

    def plan(self, command: ProductionCommand) -> ProductionPlan:
        recipe = self._catalog.active_recipe(command.product_id)
        if recipe is None:
            raise RecipeNotFoundError(str(command.product_id))

        requirements = self._planner.compute_batch_ingredient_requirements(
            command.produced_qty,
            recipe.yield_qty,
            recipe.lines,
        )
        order = self._planner.order_locations(
            self._catalog.site_locations(command.site_id),
            self._catalog.pick_priorities(command.site_id),
        )

        ingredients = []
        for requirement in requirements:
            stocks = self._stock.location_stocks(requirement.ingredient_id, command.site_id)
            allocation = self._planner.allocate(requirement.required_qty, stocks, order)
            ingredients.append(
                IngredientAllocation(
                    ingredient_id=requirement.ingredient_id,
                    required_qty=requirement.required_qty,
                    plan=allocation,
                )
            )

        plan = ProductionPlan(
            product_id=command.product_id,
            site_id=command.site_id,
            recipe_id=recipe.recipe_id,
            produced_qty=command.produced_qty,
            location_order=tuple(order),
            ingredients=tuple(ingredients),
        )
        logger.info(
            "production_planned",
            extra={
                "product_id": str(command.product_id),
                "site_id": str(command.site_id),
                "recipe_id": str(recipe.recipe_id),
                "ingredient_count": len(ingredients),
                "shortfall_count": len(plan.shortfalls),
            },
        )
        return plan
