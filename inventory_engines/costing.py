"""
Module: inventory_engines.costing
Responsibility:
    Weighted-average unit cost, conversion of captured-unit prices into
    stock-unit cost, cost-basis application, and the readiness check that
    decides whether a product can be auto-costed from its primary supplier.

Architecture position:
    Engines -- pure calculation layer, zero I/O.
    Quantities passed in are already in stock units; the engine does not
    convert them.

Invariants enforced:
    - ``weighted_average_cost`` never raises.  Negative and non-finite inputs
      are clamped to zero because the function sits on a write path that
      must always produce a usable cost.
    - A zero or negative receipt leaves the cost unchanged (idempotence).
    - All results are rounded to 6 dp.  Costs are not rounded to currency
      precision here.

Failure modes:
    - apply_cost_basis: ValueError on a negative or non-finite tax rate.
    - auto_cost_from_primary_supplier: the converter's pack-costing errors.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Any

from inventory_engines.tracer import traced_engine
from inventory_engines.uom import UomConverter
from inventory_kernel.domain.values import (
    ONE,
    ZERO,
    CostBasis,
    CostingMode,
    clamp_non_negative,
    normalize_unit_code,
    round_quantity,
    to_decimal,
)
from inventory_kernel.exceptions import ConversionError


@dataclass(frozen=True)
class SupplierPack:
    """Purchase pack terms of a product supplier."""

    is_primary: bool
    pack_qty: Decimal | None
    pack_unit_code: str | None
    pack_price: Decimal | None

    @classmethod
    def from_model(cls, row: Any) -> SupplierPack:
        return cls(
            is_primary=bool(row.is_primary),
            pack_qty=row.purchase_pack_qty,
            pack_unit_code=row.purchase_pack_unit_code,
            pack_price=row.purchase_price,
        )


class CostEngine:
    """
    Moving-average inventory valuation.

    Contract:
        Pure functions, deterministic, no I/O.
    Non-goals:
        - Does not read stock or cost; the cost service supplies both under
          a product lock.
    """

    @traced_engine(
        "costing",
        "1.0",
        fingerprint_fields=("current_qty", "current_cost", "received_qty", "received_cost"),
    )
    def weighted_average_cost(
        self,
        current_qty: Any,
        current_cost: Any,
        received_qty: Any,
        received_cost: Any,
    ) -> Decimal:
        """
        New unit cost after receiving ``received_qty`` at ``received_cost``.

        (current_cost * current_qty + received_cost * received_qty)
        / (current_qty + received_qty), rounded to 6 dp.
        """
        qty = clamp_non_negative(current_qty)
        cost = clamp_non_negative(current_cost)
        in_qty = clamp_non_negative(received_qty)
        in_cost = clamp_non_negative(received_cost)

        if in_qty <= 0:
            return round_quantity(cost)

        denominator = qty + in_qty
        if denominator <= 0:
            return round_quantity(in_cost)

        return round_quantity((cost * qty + in_cost * in_qty) / denominator)

    def stock_unit_cost_from_input(self, input_unit_cost: Any, conversion_factor_to_stock: Any) -> Decimal:
        """Cost per stock unit given cost per captured unit; 0 for unusable inputs."""
        cost = to_decimal(input_unit_cost)
        factor = to_decimal(conversion_factor_to_stock)
        if cost is None or not cost.is_finite() or cost < 0:
            return ZERO
        if factor is None or not factor.is_finite() or factor <= 0:
            return ZERO
        return round_quantity(cost / factor)

    def apply_cost_basis(self, net_unit_cost: Any, tax_rate: Any, basis: CostBasis | str) -> Decimal:
        """
        Express a net unit cost in the site's cost basis.

        Gross adds ``tax_rate`` (0.19 for 19%); net returns the cost as is.
        """
        basis = CostBasis(basis)
        cost = clamp_non_negative(net_unit_cost)
        if basis is CostBasis.NET:
            return round_quantity(cost)
        rate = to_decimal(tax_rate)
        if rate is None or not rate.is_finite() or rate < 0:
            raise ValueError(f"Invalid tax rate: {tax_rate!r}")
        return round_quantity(cost * (ONE + rate))

    def auto_cost_from_primary_supplier(
        self,
        converter: UomConverter,
        supplier: SupplierPack,
        stock_unit_code: str,
    ) -> Decimal:
        """Stock-unit cost implied by the supplier's pack price."""
        return converter.compute_cost_per_stock_unit(
            supplier.pack_price,
            supplier.pack_qty,
            supplier.pack_unit_code or "",
            stock_unit_code,
        )

    def auto_cost_readiness_reason(
        self,
        costing_mode: CostingMode | str | None,
        stock_unit_code: str | None,
        primary_supplier: SupplierPack | None,
        converter: UomConverter | None = None,
    ) -> str | None:
        """
        Why the product cannot be auto-costed from its primary supplier.

        Returns None when it can, or when the product is manually costed.
        A missing costing mode counts as auto.
        """
        mode = CostingMode(costing_mode) if costing_mode else CostingMode.AUTO_PRIMARY_SUPPLIER
        if mode is not CostingMode.AUTO_PRIMARY_SUPPLIER:
            return None

        if primary_supplier is None or not primary_supplier.is_primary:
            return "Primary supplier is missing."

        pack_qty = to_decimal(primary_supplier.pack_qty)
        if pack_qty is None or not pack_qty.is_finite() or pack_qty <= 0:
            return "Primary supplier pack quantity is missing."

        pack_unit = normalize_unit_code(primary_supplier.pack_unit_code)
        if not pack_unit:
            return "Primary supplier purchase unit is missing."

        pack_price = to_decimal(primary_supplier.pack_price)
        if pack_price is None or not pack_price.is_finite() or pack_price <= 0:
            return "Primary supplier purchase price is missing."

        stock_unit = normalize_unit_code(stock_unit_code)
        if not stock_unit:
            return "Product stock unit is missing."

        if converter is not None:
            try:
                converter.compute_cost_per_stock_unit(pack_price, pack_qty, pack_unit, stock_unit)
            except ConversionError:
                return "Purchase unit is incompatible with the stock unit."

        return None

    def is_auto_cost_ready(
        self,
        costing_mode: CostingMode | str | None,
        stock_unit_code: str | None,
        primary_supplier: SupplierPack | None,
        converter: UomConverter | None = None,
    ) -> bool:
        return (
            self.auto_cost_readiness_reason(
                costing_mode, stock_unit_code, primary_supplier, converter
            )
            is None
        )
