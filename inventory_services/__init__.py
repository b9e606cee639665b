"""
Module: inventory_services
Responsibility:
    Stateful orchestration over inventory_engines and inventory_kernel: the
    movement ledger, receipt cost updates, production planning and
    snapshot reconciliation.

Architecture position:
    Services -- the outermost layer in this repository.  May import
    inventory_kernel, inventory_engines and inventory_config.
"""

from inventory_services.cost_service import CostUpdate, CostUpdateService
from inventory_services.movement_ledger import (
    LedgerResult,
    LedgerStep,
    MovementLedger,
    ScopeQuantity,
    StepFailure,
)
from inventory_services.production_service import (
    IngredientAllocation,
    ProductionPlan,
    ProductionService,
)
from inventory_services.reconciliation import (
    ReconciliationResult,
    SnapshotReconciliationService,
)

__all__ = [
    "CostUpdate",
    "CostUpdateService",
    "IngredientAllocation",
    "LedgerResult",
    "LedgerStep",
    "MovementLedger",
    "ProductionPlan",
    "ProductionService",
    "ReconciliationResult",
    "ScopeQuantity",
    "SnapshotReconciliationService",
    "StepFailure",
]
