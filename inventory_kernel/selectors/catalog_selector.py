"""
Module: inventory_kernel.selectors.catalog_selector
Responsibility: Read-only reference data (units, products, UOM profiles,
    suppliers, locations, pick priorities, cost policies and recipes)
    returned as the engine DTOs the calculation layer consumes.
Architecture position: Kernel > Selectors.

Invariants enforced:
    - Only active units enter the runtime catalog.
    - Location lookups are scoped to a site; an inactive location or one
      belonging to another site is not found.
"""

from dataclasses import dataclass
from decimal import Decimal
from uuid import UUID

from sqlalchemy import select

from inventory_engines.allocation import LocationRef, PickPriority, RecipeLineInput
from inventory_engines.costing import SupplierPack
from inventory_engines.uom import UnitCatalog, UnitDefinition, UomProfile
from inventory_kernel.domain.values import CostBasis, CostingMode
from inventory_kernel.models.product import Product, ProductSupplier, ProductUomProfile
from inventory_kernel.models.recipe import Recipe
from inventory_kernel.models.site import Location, LocationPickPriority, Site, SiteCostPolicy
from inventory_kernel.models.unit import Unit
from inventory_kernel.selectors.base import BaseSelector


@dataclass(frozen=True)
class ProductInfo:
    product_id: UUID
    sku: str
    name: str
    stock_unit_code: str
    unit_cost: Decimal
    costing_mode: CostingMode
    is_active: bool


@dataclass(frozen=True)
class CostPolicy:
    """Cost basis a site carries.  ``configured`` is False for the fallback."""

    cost_basis: CostBasis
    tax_rate: Decimal
    configured: bool


@dataclass(frozen=True)
class RecipeInfo:
    recipe_id: UUID
    product_id: UUID
    yield_qty: Decimal
    lines: tuple[RecipeLineInput, ...]


class CatalogSelector(BaseSelector[Product]):
    """Reference-data reads."""

    def unit_catalog(self) -> UnitCatalog:
        rows = self.session.execute(
            select(Unit).where(Unit.is_active.is_(True)).order_by(Unit.code)
        ).scalars()
        return UnitCatalog(UnitDefinition.from_model(row) for row in rows)

    def product(self, product_id: UUID) -> ProductInfo | None:
        row = self.session.get(Product, product_id)
        if row is None:
            return None
        return ProductInfo(
            product_id=row.id,
            sku=row.sku,
            name=row.name,
            stock_unit_code=row.stock_unit_code,
            unit_cost=row.unit_cost,
            costing_mode=CostingMode(row.costing_mode),
            is_active=row.is_active,
        )

    def uom_profiles(self, product_id: UUID) -> list[UomProfile]:
        rows = self.session.execute(
            select(ProductUomProfile)
            .where(ProductUomProfile.product_id == product_id)
            .order_by(ProductUomProfile.id)
        ).scalars()
        return [UomProfile.from_model(row) for row in rows]

    def uom_profile(self, profile_id: UUID) -> UomProfile | None:
        row = self.session.get(ProductUomProfile, profile_id)
        return UomProfile.from_model(row) if row is not None else None

    def primary_supplier(self, product_id: UUID) -> SupplierPack | None:
        row = self.session.execute(
            select(ProductSupplier)
            .where(
                ProductSupplier.product_id == product_id,
                ProductSupplier.is_primary.is_(True),
            )
            .order_by(ProductSupplier.id)
            .limit(1)
        ).scalar_one_or_none()
        return SupplierPack.from_model(row) if row is not None else None

    def location_in_site(self, location_id: UUID, site_id: UUID) -> LocationRef | None:
        row = self.session.execute(
            select(Location.id, Location.code).where(
                Location.id == location_id,
                Location.site_id == site_id,
                Location.is_active.is_(True),
            )
        ).one_or_none()
        if row is None:
            return None
        return LocationRef(location_id=row.id, code=row.code)

    def site_locations(self, site_id: UUID) -> list[LocationRef]:
        rows = self.session.execute(
            select(Location.id, Location.code)
            .where(Location.site_id == site_id, Location.is_active.is_(True))
            .order_by(Location.code, Location.id)
        ).all()
        return [LocationRef(location_id=row.id, code=row.code) for row in rows]

    def pick_priorities(self, site_id: UUID) -> list[PickPriority]:
        rows = self.session.execute(
            select(LocationPickPriority)
            .where(LocationPickPriority.site_id == site_id)
            .order_by(LocationPickPriority.id)
        ).scalars()
        return [
            PickPriority(
                location_id=row.location_id,
                priority=row.priority,
                is_active=row.is_active,
            )
            for row in rows
        ]

    def cost_policy(
        self,
        site_id: UUID,
        default_basis: CostBasis,
        default_tax_rate: Decimal,
    ) -> CostPolicy:
        row = self.session.execute(
            select(SiteCostPolicy).where(SiteCostPolicy.site_id == site_id)
        ).scalar_one_or_none()
        if row is None:
            return CostPolicy(
                cost_basis=CostBasis(default_basis),
                tax_rate=default_tax_rate,
                configured=False,
            )
        return CostPolicy(
            cost_basis=CostBasis(row.cost_basis),
            tax_rate=row.tax_rate,
            configured=True,
        )

    def active_recipe(self, product_id: UUID) -> RecipeInfo | None:
        row = self.session.execute(
            select(Recipe)
            .where(Recipe.product_id == product_id, Recipe.is_active.is_(True))
            .order_by(Recipe.id)
            .limit(1)
        ).scalar_one_or_none()
        if row is None:
            return None
        return RecipeInfo(
            recipe_id=row.id,
            product_id=row.product_id,
            yield_qty=row.yield_qty,
            lines=tuple(
                RecipeLineInput(
                    ingredient_id=line.ingredient_product_id,
                    quantity=line.quantity,
                    is_active=line.is_active,
                )
                for line in row.lines
            ),
        )

    def site_exists(self, site_id: UUID) -> bool:
        return self.session.get(Site, site_id) is not None
