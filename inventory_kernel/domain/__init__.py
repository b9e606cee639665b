"""
Pure domain layer.

Decimal helpers, closed enumerations, the clock abstraction and the typed
ledger commands.  NO dependencies on:
- ORM (SQLAlchemy)
- Database
- I/O

All domain objects are immutable and deterministic.
"""

from inventory_kernel.domain.clock import Clock, DeterministicClock, SystemClock
from inventory_kernel.domain.commands import (
    AdjustCommand,
    CountApprovalCommand,
    InitialCountCommand,
    ProductionCommand,
    ReceiveCommand,
    TransferCommand,
    WithdrawCommand,
)
from inventory_kernel.domain.values import (
    ONE,
    QUANTITY_PLACES,
    ZERO,
    AdjustmentDirection,
    CostBasis,
    CostingMode,
    MovementKind,
    ProfileSource,
    StockScope,
    UnitFamily,
    UsageContext,
    clamp_non_negative,
    normalize_unit_code,
    round_quantity,
    to_decimal,
)

__all__ = [
    "Clock",
    "DeterministicClock",
    "SystemClock",
    "AdjustCommand",
    "CountApprovalCommand",
    "InitialCountCommand",
    "ProductionCommand",
    "ReceiveCommand",
    "TransferCommand",
    "WithdrawCommand",
    "ONE",
    "QUANTITY_PLACES",
    "ZERO",
    "AdjustmentDirection",
    "CostBasis",
    "CostingMode",
    "MovementKind",
    "ProfileSource",
    "StockScope",
    "UnitFamily",
    "UsageContext",
    "clamp_non_negative",
    "normalize_unit_code",
    "round_quantity",
    "to_decimal",
]
