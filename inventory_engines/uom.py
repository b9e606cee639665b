"""
Module: inventory_engines.uom
Responsibility:
    Convert captured quantities into a product's stock unit.  Two mechanisms:
    strict unit-family math over the UnitCatalog, and per-product UOM
    profiles that express packaging ratios ("1 box = 24 un") the unit
    families cannot.

Architecture position:
    Engines -- pure calculation layer, zero I/O.
    May only import inventory_kernel.domain and inventory_kernel.exceptions.

Invariants enforced:
    - Units convert only within one family.  A cross-family request is
      refused, never approximated.
    - A profile applies only to the input unit it declares.
    - Without a profile, the converter never guesses: input and stock unit
      must be identical.
    - Quantities, factors and unit costs leave this module rounded to 6 dp.

Failure modes:
    - UnknownUnitError: unit code absent from the active catalog.
    - IncompatibleUnitFamilyError: families differ.
    - InvalidQuantityError: negative, missing or non-finite quantity.
    - InvalidProfileUnitMismatchError / InvalidProfileError: bad profile.
    - NoConversionConfiguredError: units differ and no profile supplied.
    - InvalidPriceError / DegenerateConversionError: pack costing.

Usage:
    catalog = UnitCatalog(load_unit_definitions())
    converter = UomConverter(catalog)
    converter.convert(Decimal("1.5"), "l", "ml")        # Decimal("1500.000000")
    converter.convert_by_profile(Decimal("2"), "box", "un", profile=box_of_24)
"""

from __future__ import annotations

from collections.abc import Iterable, Iterator, Sequence
from dataclasses import dataclass
from decimal import Decimal
from typing import Any
from uuid import UUID

from inventory_engines.tracer import traced_engine
from inventory_kernel.domain.values import (
    ONE,
    ProfileSource,
    UnitFamily,
    UsageContext,
    normalize_unit_code,
    round_quantity,
    to_decimal,
)
from inventory_kernel.exceptions import (
    DegenerateConversionError,
    IncompatibleUnitFamilyError,
    InvalidPriceError,
    InvalidProfileError,
    InvalidProfileUnitMismatchError,
    InvalidQuantityError,
    NoConversionConfiguredError,
    UnknownUnitError,
)
from inventory_kernel.logging_config import get_logger

logger = get_logger("engines.uom")


@dataclass(frozen=True)
class UnitDefinition:
    """
    One catalog unit.

    Guarantees:
        - ``code`` is normalised (trimmed, lowercase).
        - ``factor_to_base`` is a positive finite Decimal.
    """

    code: str
    name: str
    family: UnitFamily
    factor_to_base: Decimal
    symbol: str | None = None
    display_decimals: int | None = None
    is_active: bool = True

    def __post_init__(self) -> None:
        code = normalize_unit_code(self.code)
        if not code:
            raise ValueError("Unit code cannot be empty")
        object.__setattr__(self, "code", code)
        object.__setattr__(self, "family", UnitFamily(self.family))
        factor = to_decimal(self.factor_to_base)
        if factor is None or not factor.is_finite() or factor <= 0:
            raise ValueError(
                f"Unit {code!r} factor_to_base must be positive, got {self.factor_to_base!r}"
            )
        object.__setattr__(self, "factor_to_base", factor)

    @classmethod
    def from_model(cls, row: Any) -> UnitDefinition:
        return cls(
            code=row.code,
            name=row.name,
            family=UnitFamily(row.family),
            factor_to_base=row.factor_to_base,
            symbol=row.symbol,
            display_decimals=row.display_decimals,
            is_active=row.is_active,
        )


class UnitCatalog:
    """
    Immutable lookup of active units by normalised code.

    Inactive definitions are dropped at construction, so a deactivated unit
    fails lookup exactly like an unknown one.
    """

    def __init__(self, units: Iterable[UnitDefinition]):
        self._units: dict[str, UnitDefinition] = {
            unit.code: unit for unit in units if unit.is_active
        }

    def get(self, code: str) -> UnitDefinition:
        unit = self._units.get(normalize_unit_code(code))
        if unit is None:
            raise UnknownUnitError(str(code))
        return unit

    def family_of(self, code: str) -> UnitFamily | None:
        unit = self._units.get(normalize_unit_code(code))
        return unit.family if unit is not None else None

    def codes(self) -> tuple[str, ...]:
        return tuple(sorted(self._units))

    def __contains__(self, code: object) -> bool:
        return normalize_unit_code(code) in self._units

    def __iter__(self) -> Iterator[UnitDefinition]:
        return iter(self._units.values())

    def __len__(self) -> int:
        return len(self._units)


@dataclass(frozen=True)
class UomProfile:
    """
    Engine-side view of a ProductUomProfile row.

    ``factor`` is stock units per one input unit.
    """

    profile_id: UUID | str
    product_id: UUID | str
    input_unit_code: str
    qty_in_input_unit: Decimal
    qty_in_stock_unit: Decimal
    usage_context: UsageContext = UsageContext.GENERAL
    is_default: bool = False
    is_active: bool = True
    label: str = ""
    source: ProfileSource = ProfileSource.MANUAL

    @classmethod
    def from_model(cls, row: Any) -> UomProfile:
        return cls(
            profile_id=row.id,
            product_id=row.product_id,
            input_unit_code=row.input_unit_code,
            qty_in_input_unit=row.qty_in_input_unit,
            qty_in_stock_unit=row.qty_in_stock_unit,
            usage_context=UsageContext(row.usage_context),
            is_default=row.is_default,
            is_active=row.is_active,
            label=row.label,
            source=ProfileSource(row.source),
        )


@dataclass(frozen=True)
class ConversionResult:
    """
    Quantity in the target unit plus the factor actually applied.

    ``method`` is ``identity``, ``unit_family`` or ``profile``.
    """

    quantity: Decimal
    factor: Decimal
    method: str


def _checked_quantity(quantity: Any) -> Decimal:
    dec = to_decimal(quantity)
    if dec is None or not dec.is_finite() or dec < 0:
        raise InvalidQuantityError(str(quantity))
    return dec


class UomConverter:
    """
    Unit-of-measure conversion over a UnitCatalog.

    Contract:
        Stateless apart from the catalog it was built with.  Every method is
        deterministic for identical inputs.
    Non-goals:
        - Does not load profiles; callers pass the profile they selected.
    """

    def __init__(self, catalog: UnitCatalog):
        self._catalog = catalog

    @property
    def catalog(self) -> UnitCatalog:
        return self._catalog

    @traced_engine("uom", "1.0", fingerprint_fields=("quantity", "from_unit", "to_unit"))
    def conversion(self, quantity: Any, from_unit: str, to_unit: str) -> ConversionResult:
        """
        Strict unit-family conversion.

        The factor is ``from.factor_to_base / to.factor_to_base``; the
        quantity is multiplied by the unrounded factor and then rounded, and
        the reported factor is rounded separately.
        """
        source = self._catalog.get(from_unit)
        target = self._catalog.get(to_unit)
        if source.family != target.family:
            raise IncompatibleUnitFamilyError(
                from_unit=source.code,
                to_unit=target.code,
                from_family=source.family.value,
                to_family=target.family.value,
            )
        qty = _checked_quantity(quantity)

        if source.code == target.code:
            return ConversionResult(quantity=round_quantity(qty), factor=ONE, method="identity")

        factor = source.factor_to_base / target.factor_to_base
        return ConversionResult(
            quantity=round_quantity(qty * factor),
            factor=round_quantity(factor),
            method="unit_family",
        )

    def convert(self, quantity: Any, from_unit: str, to_unit: str) -> Decimal:
        """Convert ``quantity`` from one unit to another of the same family."""
        return self.conversion(quantity, from_unit, to_unit).quantity

    @traced_engine(
        "uom_profile", "1.0", fingerprint_fields=("quantity", "input_unit", "stock_unit", "profile")
    )
    def convert_by_profile(
        self,
        quantity: Any,
        input_unit: str,
        stock_unit: str,
        profile: UomProfile | None = None,
    ) -> ConversionResult:
        """
        Convert a captured quantity to stock units through a UOM profile.

        With a profile, unit-family math is bypassed entirely: the factor is
        ``qty_in_stock_unit / qty_in_input_unit``.  Without one, the units
        must be identical.
        """
        input_code = normalize_unit_code(input_unit)
        stock_code = normalize_unit_code(stock_unit)

        if profile is None:
            if input_code != stock_code:
                raise NoConversionConfiguredError(input_unit=input_code, stock_unit=stock_code)
            return ConversionResult(
                quantity=round_quantity(_checked_quantity(quantity)),
                factor=ONE,
                method="identity",
            )

        profile_code = normalize_unit_code(profile.input_unit_code)
        if profile_code != input_code:
            raise InvalidProfileUnitMismatchError(profile_unit=profile_code, input_unit=input_code)

        qty_in = to_decimal(profile.qty_in_input_unit)
        qty_stock = to_decimal(profile.qty_in_stock_unit)
        if (
            qty_in is None
            or qty_stock is None
            or not qty_in.is_finite()
            or not qty_stock.is_finite()
            or qty_in <= 0
            or qty_stock <= 0
        ):
            raise InvalidProfileError(
                qty_in_input_unit=str(profile.qty_in_input_unit),
                qty_in_stock_unit=str(profile.qty_in_stock_unit),
            )

        qty = _checked_quantity(quantity)
        factor = qty_stock / qty_in
        return ConversionResult(
            quantity=round_quantity(qty * factor),
            factor=round_quantity(factor),
            method="profile",
        )

    def compute_pack_to_stock(self, pack_qty: Any, pack_unit: str, stock_unit: str) -> ConversionResult:
        """Stock quantity contained in one purchase pack."""
        return self.conversion(pack_qty, pack_unit, stock_unit)

    @traced_engine(
        "pack_cost", "1.0", fingerprint_fields=("pack_price", "pack_qty", "pack_unit", "stock_unit")
    )
    def compute_cost_per_stock_unit(
        self,
        pack_price: Any,
        pack_qty: Any,
        pack_unit: str,
        stock_unit: str,
    ) -> Decimal:
        """
        Cost of one stock unit when ``pack_qty`` ``pack_unit`` cost ``pack_price``.

        Raises:
            InvalidPriceError: price negative, missing or non-finite.
            DegenerateConversionError: pack converts to zero stock units.
        """
        price = to_decimal(pack_price)
        if price is None or not price.is_finite() or price < 0:
            raise InvalidPriceError(str(pack_price))

        stock_qty = self.compute_pack_to_stock(pack_qty, pack_unit, stock_unit).quantity
        if stock_qty <= 0:
            logger.warning(
                "pack_conversion_degenerate",
                extra={
                    "pack_qty": str(pack_qty),
                    "pack_unit": pack_unit,
                    "stock_unit": stock_unit,
                },
            )
            raise DegenerateConversionError(
                pack_qty=str(pack_qty),
                pack_unit=normalize_unit_code(pack_unit),
                stock_unit=normalize_unit_code(stock_unit),
            )
        return round_quantity(price / stock_qty)


def select_profile_for_context(
    profiles: Sequence[UomProfile],
    product_id: UUID | str,
    context: UsageContext | str,
) -> UomProfile | None:
    """
    Pick the active default profile for a product and usage context.

    Falls back to the product's general-context default, then to None.
    Only one default per (product, context) exists upstream; should that
    ever be violated, the lowest profile id wins so the choice stays
    deterministic.
    """
    context = UsageContext(context)
    product_key = str(product_id)
    defaults = [
        p
        for p in profiles
        if str(p.product_id) == product_key and p.is_active and p.is_default
    ]

    def _first(ctx: UsageContext) -> UomProfile | None:
        matches = sorted(
            (p for p in defaults if UsageContext(p.usage_context) == ctx),
            key=lambda p: str(p.profile_id),
        )
        return matches[0] if matches else None

    chosen = _first(context)
    if chosen is None and context is not UsageContext.GENERAL:
        chosen = _first(UsageContext.GENERAL)
    return chosen
