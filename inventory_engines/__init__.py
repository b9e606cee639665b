"""
Module: inventory_engines
Responsibility:
    Re-exports the pure calculation engines: unit conversion, costing and
    allocation.  Canonical import surface for inventory_services.

Architecture position:
    Engines -- pure calculation layer, zero I/O.
    May only import inventory_kernel domain values, exceptions and logging.
    MUST NOT import inventory_services.

Invariants enforced:
    - Engines never read the clock or the database.
    - Decimal-only arithmetic; results rounded to 6 dp.
    - Determinism: identical inputs always produce identical outputs.

Audit relevance:
    Engine calls are traced via ``@traced_engine`` (INVENTORY_ENGINE_TRACE).
"""

from inventory_engines.allocation import (
    AllocationPlan,
    AllocationPlanner,
    Draw,
    IngredientRequirement,
    LocationRef,
    LocationStock,
    PickPriority,
    RecipeLineInput,
)
from inventory_engines.costing import CostEngine, SupplierPack
from inventory_engines.tracer import traced_engine
from inventory_engines.uom import (
    ConversionResult,
    UnitCatalog,
    UnitDefinition,
    UomConverter,
    UomProfile,
    select_profile_for_context,
)

__all__ = [
    "AllocationPlan",
    "AllocationPlanner",
    "ConversionResult",
    "CostEngine",
    "Draw",
    "IngredientRequirement",
    "LocationRef",
    "LocationStock",
    "PickPriority",
    "RecipeLineInput",
    "SupplierPack",
    "UnitCatalog",
    "UnitDefinition",
    "UomConverter",
    "UomProfile",
    "select_profile_for_context",
    "traced_engine",
]
