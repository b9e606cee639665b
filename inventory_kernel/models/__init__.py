"""SQLAlchemy ORM models for the inventory kernel."""

from inventory_kernel.models.movement import Movement, ProductCostEvent
from inventory_kernel.models.product import Product, ProductSupplier, ProductUomProfile
from inventory_kernel.models.recipe import Recipe, RecipeLine
from inventory_kernel.models.site import Location, LocationPickPriority, Site, SiteCostPolicy
from inventory_kernel.models.stock import StockByLocation, StockBySite
from inventory_kernel.models.unit import Unit

__all__ = [
    "Unit",
    "Product",
    "ProductSupplier",
    "ProductUomProfile",
    "Site",
    "Location",
    "LocationPickPriority",
    "SiteCostPolicy",
    "Recipe",
    "RecipeLine",
    "StockBySite",
    "StockByLocation",
    "Movement",
    "ProductCostEvent",
]
