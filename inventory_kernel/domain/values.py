"""
Values -- Decimal helpers and closed enumerations for the inventory core.

Responsibility:
    Provides the numeric contract (6 decimal places, ROUND_HALF_UP) and the
    closed variants used by every other layer: unit families, movement kinds,
    usage contexts, cost bases and costing modes.

Architecture position:
    Kernel > Domain -- pure functional core, zero I/O.

Invariants enforced:
    - Every quantity and cost leaving a computation is quantized to
      QUANTITY_PLACES decimal places.  Floats are converted through ``str`` so
      0.1 stays 0.1.
    - Non-finite values (NaN, Infinity) never survive ``round_quantity``; they
      collapse to zero.
    - Unit codes are compared only after ``normalize_unit_code``.
"""

from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from enum import Enum
from typing import Any

QUANTITY_PLACES = 6
QUANTUM = Decimal(1).scaleb(-QUANTITY_PLACES)
ZERO = Decimal("0")
ONE = Decimal("1")


def to_decimal(value: Any) -> Decimal | None:
    """
    Coerce a number-like value to Decimal.

    Returns None when the value is missing, a bool, or not parseable.
    Non-finite Decimals are returned as-is; callers decide what they mean.
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, Decimal):
        return value
    if isinstance(value, int):
        return Decimal(value)
    if isinstance(value, float):
        return Decimal(str(value))
    if isinstance(value, str):
        text = value.strip()
        if not text:
            return None
        try:
            return Decimal(text)
        except InvalidOperation:
            return None
    return None


def is_finite_number(value: Any) -> bool:
    dec = to_decimal(value)
    return dec is not None and dec.is_finite()


def round_quantity(value: Any, places: int = QUANTITY_PLACES) -> Decimal:
    """
    Round to ``places`` decimal places, half away from zero.

    Missing or non-finite input rounds to zero.
    """
    dec = to_decimal(value)
    if dec is None or not dec.is_finite():
        return ZERO
    result = dec.quantize(Decimal(1).scaleb(-places), rounding=ROUND_HALF_UP)
    # Normalise negative zero produced by quantizing tiny negatives.
    return result if result else ZERO


def clamp_non_negative(value: Any) -> Decimal:
    """Non-finite, missing and negative values become zero."""
    dec = to_decimal(value)
    if dec is None or not dec.is_finite() or dec < 0:
        return ZERO
    return dec


def normalize_unit_code(code: Any) -> str:
    """Trim and lowercase a unit code.  Non-strings normalise to ''."""
    if not isinstance(code, str):
        return ""
    return code.strip().lower()


class UnitFamily(str, Enum):
    """Units convert only within a family."""

    VOLUME = "volume"
    MASS = "mass"
    COUNT = "count"


class MovementKind(str, Enum):
    """
    Closed set of movement kinds.

    Contract: every movement row carries exactly one kind.  Inbound kinds add
    stock, outbound kinds remove it, and signed kinds carry their own sign.
    """

    RECEIPT = "receipt"
    ADJUSTMENT = "adjustment"
    CONSUMPTION = "consumption"
    COUNT = "count"
    INITIAL_COUNT = "initial_count"
    TRANSFER_IN = "transfer_in"
    TRANSFER_OUT = "transfer_out"
    WASTE = "waste"
    SHRINK = "shrink"

    @property
    def direction(self) -> int:
        """+1 inbound, -1 outbound, 0 when the quantity carries its own sign."""
        return _KIND_DIRECTION[self]


_KIND_DIRECTION = {
    MovementKind.RECEIPT: 1,
    MovementKind.TRANSFER_IN: 1,
    MovementKind.CONSUMPTION: -1,
    MovementKind.TRANSFER_OUT: -1,
    MovementKind.WASTE: -1,
    MovementKind.SHRINK: -1,
    MovementKind.ADJUSTMENT: 0,
    MovementKind.COUNT: 0,
    MovementKind.INITIAL_COUNT: 0,
}


class AdjustmentDirection(str, Enum):
    INCREASE = "increase"
    DECREASE = "decrease"


class UsageContext(str, Enum):
    """Where a UOM profile applies."""

    GENERAL = "general"
    PURCHASE = "purchase"
    REMISSION = "remission"


class ProfileSource(str, Enum):
    MANUAL = "manual"
    SUPPLIER = "supplier"


class CostBasis(str, Enum):
    """Whether a site carries cost including (gross) or excluding (net) tax."""

    GROSS = "gross"
    NET = "net"


class CostingMode(str, Enum):
    AUTO_PRIMARY_SUPPLIER = "auto_primary_supplier"
    MANUAL = "manual"


class StockScope(str, Enum):
    """Granularity a snapshot is kept at."""

    SITE = "site"
    LOCATION = "location"
