"""
Typed Exception Hierarchy for the Inventory Kernel.

===============================================================================
WHY TYPED EXCEPTIONS
===============================================================================

Stock and valuation errors must be handled precisely. A caller that parses
message strings to decide whether a conversion was refused or a location ran
out of stock breaks the moment a message is reworded.

Every error in this module therefore has:
  1. A TYPED exception class (catch by type, not message)
  2. A CODE class attribute (machine-readable, API-safe)
  3. Structured DATA attributes (not just a message string)

Example:
    try:
        ledger.withdraw(command)
    except InsufficientStockAtScopeError as e:
        api_response(code=e.code, available=e.available_qty)

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

    InventoryKernelError (base)
    |
    +-- ValidationError
    |
    +-- ConversionError
    |   +-- UnknownUnitError
    |   +-- IncompatibleUnitFamilyError
    |   +-- InvalidQuantityError
    |   +-- InvalidProfileUnitMismatchError
    |   +-- InvalidProfileError
    |   +-- NoConversionConfiguredError
    |   +-- DegenerateConversionError
    |   +-- InvalidPriceError
    |
    +-- StockError
    |   +-- InsufficientStockAtScopeError
    |   +-- ProductNotFoundError
    |   +-- LocationNotFoundError
    |   +-- RecipeNotFoundError
    |
    +-- StorageWriteError
    |
    +-- ImmutabilityError
        +-- ImmutabilityViolationError

===============================================================================
ERROR CODES - QUICK REFERENCE
===============================================================================

Category     | Code                          | When Raised
-------------|-------------------------------|-----------------------------------
Validation   | VALIDATION_ERROR              | Missing/malformed command field
-------------|-------------------------------|-----------------------------------
Conversion   | UNKNOWN_UNIT                  | Unit code not in the active catalog
             | INCOMPATIBLE_UNIT_FAMILY      | volume -> mass, etc.
             | INVALID_QUANTITY              | Negative or non-finite quantity
             | INVALID_PROFILE_UNIT_MISMATCH | Profile input unit != captured unit
             | INVALID_PROFILE               | Profile ratios not positive
             | NO_CONVERSION_CONFIGURED      | Units differ and no profile given
             | DEGENERATE_CONVERSION         | Pack converts to <= 0 stock units
             | INVALID_PRICE                 | Negative or non-finite pack price
-------------|-------------------------------|-----------------------------------
Stock        | INSUFFICIENT_STOCK_AT_SCOPE   | Draw exceeds available quantity
             | PRODUCT_NOT_FOUND             | Unknown product id
             | LOCATION_NOT_FOUND            | Unknown or foreign location id
             | RECIPE_NOT_FOUND              | Product has no active recipe
-------------|-------------------------------|-----------------------------------
Storage      | STORAGE_WRITE_ERROR           | A ledger step failed to write
-------------|-------------------------------|-----------------------------------
Immutability | IMMUTABILITY_VIOLATION        | Update/delete of a ledger row

===============================================================================
PROPAGATION
===============================================================================

Validation, conversion and stock errors are raised before any write.
StorageWriteError names the step that failed (``movement_insert``,
``snapshot_upsert``, ``cost_update``); steps after a committed movement are
reported through ``LedgerResult`` and never roll the movement back.
"""


class InventoryKernelError(Exception):
    """
    Base exception for all inventory kernel errors.

    All subclasses must have a `code` class attribute for machine-readable
    error identification.
    """

    code: str = "INVENTORY_KERNEL_ERROR"


# Validation


class ValidationError(InventoryKernelError):
    """
    A command failed boundary validation.

    ``field_errors`` is a list of ``{"field": ..., "reason": ...}`` dicts so
    API layers can highlight every offending field at once.
    """

    code: str = "VALIDATION_ERROR"

    def __init__(self, field_errors: list[dict[str, str]]):
        self.field_errors = field_errors
        detail = "; ".join(f"{e['field']}: {e['reason']}" for e in field_errors)
        super().__init__(f"Invalid command: {detail}")

    @classmethod
    def single(cls, field: str, reason: str) -> "ValidationError":
        return cls([{"field": field, "reason": reason}])


# Conversion-related exceptions


class ConversionError(InventoryKernelError):
    """Base exception for unit-of-measure conversion refusals."""

    code: str = "CONVERSION_ERROR"


class UnknownUnitError(ConversionError):
    """Unit code is not present in the active unit catalog."""

    code: str = "UNKNOWN_UNIT"

    def __init__(self, unit_code: str):
        self.unit_code = unit_code
        super().__init__(f"Unknown unit: {unit_code!r}")


class IncompatibleUnitFamilyError(ConversionError):
    """Conversion requested between units of different families."""

    code: str = "INCOMPATIBLE_UNIT_FAMILY"

    def __init__(self, from_unit: str, to_unit: str, from_family: str, to_family: str):
        self.from_unit = from_unit
        self.to_unit = to_unit
        self.from_family = from_family
        self.to_family = to_family
        super().__init__(
            f"Cannot convert {from_unit} ({from_family}) to {to_unit} ({to_family}): "
            "unit families differ"
        )


class InvalidQuantityError(ConversionError):
    """Quantity is negative or not a finite number."""

    code: str = "INVALID_QUANTITY"

    def __init__(self, quantity: str):
        self.quantity = quantity
        super().__init__(f"Invalid quantity for conversion: {quantity}")


class InvalidProfileUnitMismatchError(ConversionError):
    """UOM profile declares a different input unit than the one captured."""

    code: str = "INVALID_PROFILE_UNIT_MISMATCH"

    def __init__(self, profile_unit: str, input_unit: str):
        self.profile_unit = profile_unit
        self.input_unit = input_unit
        super().__init__(
            f"UOM profile is defined for unit {profile_unit!r}, "
            f"but quantity was captured in {input_unit!r}"
        )


class InvalidProfileError(ConversionError):
    """UOM profile ratios are not both positive."""

    code: str = "INVALID_PROFILE"

    def __init__(self, qty_in_input_unit: str, qty_in_stock_unit: str):
        self.qty_in_input_unit = qty_in_input_unit
        self.qty_in_stock_unit = qty_in_stock_unit
        super().__init__(
            f"Invalid UOM profile ratio {qty_in_input_unit} -> {qty_in_stock_unit}: "
            "both quantities must be positive"
        )


class NoConversionConfiguredError(ConversionError):
    """Input unit differs from stock unit and no profile was supplied."""

    code: str = "NO_CONVERSION_CONFIGURED"

    def __init__(self, input_unit: str, stock_unit: str):
        self.input_unit = input_unit
        self.stock_unit = stock_unit
        super().__init__(
            f"No conversion configured from {input_unit!r} to stock unit {stock_unit!r}"
        )


class DegenerateConversionError(ConversionError):
    """A pack converts to zero or negative stock units."""

    code: str = "DEGENERATE_CONVERSION"

    def __init__(self, pack_qty: str, pack_unit: str, stock_unit: str):
        self.pack_qty = pack_qty
        self.pack_unit = pack_unit
        self.stock_unit = stock_unit
        super().__init__(
            f"Cannot compute cost per {stock_unit}: {pack_qty} {pack_unit} "
            "converts to no stock quantity"
        )


class InvalidPriceError(ConversionError):
    """Pack price is negative or not a finite number."""

    code: str = "INVALID_PRICE"

    def __init__(self, price: str):
        self.price = price
        super().__init__(f"Invalid purchase price: {price}")


# Stock-related exceptions


class StockError(InventoryKernelError):
    """Base exception for stock availability and reference errors."""

    code: str = "STOCK_ERROR"


class InsufficientStockAtScopeError(StockError):
    """
    A withdrawal or allocation asks for more than the scope holds.

    This is a business error, not a system fault: the operator can pick a
    different location or reduce the quantity.
    """

    code: str = "INSUFFICIENT_STOCK_AT_SCOPE"

    def __init__(
        self,
        product_id: str,
        scope_id: str,
        requested_qty: str,
        available_qty: str,
    ):
        self.product_id = product_id
        self.scope_id = scope_id
        self.requested_qty = requested_qty
        self.available_qty = available_qty
        super().__init__(
            f"Insufficient stock of product {product_id} at {scope_id}: "
            f"requested {requested_qty}, available {available_qty}"
        )


class ProductNotFoundError(StockError):
    """Product with given ID was not found."""

    code: str = "PRODUCT_NOT_FOUND"

    def __init__(self, product_id: str):
        self.product_id = product_id
        super().__init__(f"Product not found: {product_id}")


class LocationNotFoundError(StockError):
    """Location does not exist, is inactive, or belongs to another site."""

    code: str = "LOCATION_NOT_FOUND"

    def __init__(self, location_id: str, site_id: str | None = None):
        self.location_id = location_id
        self.site_id = site_id
        suffix = f" in site {site_id}" if site_id else ""
        super().__init__(f"Location not found: {location_id}{suffix}")


class RecipeNotFoundError(StockError):
    """Produced product has no active recipe."""

    code: str = "RECIPE_NOT_FOUND"

    def __init__(self, product_id: str):
        self.product_id = product_id
        super().__init__(f"No active recipe for product {product_id}")


# Storage


class StorageWriteError(InventoryKernelError):
    """
    A ledger step failed to write.

    ``step`` is one of ``movement_insert``, ``snapshot_upsert`` or
    ``cost_update`` so operators know which table needs reconciling.
    """

    code: str = "STORAGE_WRITE_ERROR"

    def __init__(self, step: str, reason: str):
        self.step = step
        self.reason = reason
        super().__init__(f"Storage write failed at {step}: {reason}")


# Immutability


class ImmutabilityError(InventoryKernelError):
    """Base exception for immutability violations."""

    code: str = "IMMUTABILITY_ERROR"


class ImmutabilityViolationError(ImmutabilityError):
    """
    Attempted to modify or delete an immutable ledger record.

    Movements and product cost events are append-only; corrections are
    made with offsetting movements.
    """

    code: str = "IMMUTABILITY_VIOLATION"

    def __init__(self, entity_type: str, entity_id: str, reason: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.reason = reason
        super().__init__(
            f"Immutability violation on {entity_type} {entity_id}: {reason}"
        )
