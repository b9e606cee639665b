"""
Inventory configuration schema.

Frozen dataclasses the YAML loader parses into.  Every dataclass validates
in ``__post_init__`` and raises ``ValueError`` for values the kernel cannot
act on, so a bad file fails at load time rather than mid-request.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal

from inventory_kernel.domain.values import CostBasis, normalize_unit_code, to_decimal


@dataclass(frozen=True)
class FloorPolicy:
    """
    Which ledger flows clamp snapshots at zero.

    Adjustments deliberately default to off so over-adjustment surfaces as
    a negative snapshot instead of being masked.
    """

    adjustment: bool = False
    withdrawal: bool = True
    count_approval: bool = True
    transfer: bool = True
    production_consumption: bool = True


@dataclass(frozen=True)
class InventorySettings:
    """Runtime settings for the inventory kernel."""

    default_stock_unit: str = "un"
    default_cost_basis: CostBasis = CostBasis.NET
    default_tax_rate: Decimal = Decimal("0")
    missing_pick_priority: int = 9999
    floor: FloorPolicy = field(default_factory=FloorPolicy)
    checksum: str = ""

    def __post_init__(self) -> None:
        unit = normalize_unit_code(self.default_stock_unit)
        if not unit:
            raise ValueError("default_stock_unit cannot be empty")
        object.__setattr__(self, "default_stock_unit", unit)

        try:
            object.__setattr__(self, "default_cost_basis", CostBasis(self.default_cost_basis))
        except ValueError:
            raise ValueError(
                f"default_cost_basis must be one of "
                f"{[b.value for b in CostBasis]}, got {self.default_cost_basis!r}"
            ) from None

        rate = to_decimal(self.default_tax_rate)
        if rate is None or not rate.is_finite() or rate < 0:
            raise ValueError(f"default_tax_rate must be a non-negative number, got {self.default_tax_rate!r}")
        object.__setattr__(self, "default_tax_rate", rate)

        if isinstance(self.missing_pick_priority, bool) or not isinstance(self.missing_pick_priority, int):
            raise ValueError(
                f"missing_pick_priority must be an integer, got {self.missing_pick_priority!r}"
            )
