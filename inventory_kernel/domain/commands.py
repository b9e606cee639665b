"""
Commands -- typed, validated inputs to the movement ledger.

Responsibility:
    Every stock-affecting request enters the kernel as one of these frozen
    dataclasses.  Loosely-typed request bodies are parsed exactly once, by
    ``from_payload``, and validated in ``__post_init__``; services operate
    on commands that are already known to be well formed.

Architecture position:
    Kernel > Domain -- pure, zero I/O.  Referential checks (does the product
    exist, does the location belong to the site) happen in the ledger, not
    here.

Invariants enforced:
    - ids are UUIDs; quantities are finite Decimals.
    - Magnitudes (receipt, withdrawal, transfer, adjustment quantity) are
      strictly positive.  Direction is explicit, never inferred from sign.
    - Count deltas are nonzero; counted quantities are non-negative.
    - A manual adjustment carries a non-blank reason.
    - Unknown payload keys are rejected.

Failure modes:
    - ValidationError listing every offending field at once.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import MISSING, dataclass, fields
from decimal import Decimal
from typing import Any
from uuid import UUID

from inventory_kernel.domain.values import (
    AdjustmentDirection,
    MovementKind,
    normalize_unit_code,
    to_decimal,
)
from inventory_kernel.exceptions import ValidationError

ADJUSTMENT_KINDS = frozenset({MovementKind.ADJUSTMENT, MovementKind.WASTE, MovementKind.SHRINK})


class _FieldChecker:
    """Collects field errors while normalising a command in place."""

    def __init__(self, command: Any):
        self._command = command
        self.errors: list[dict[str, str]] = []

    def _set(self, name: str, value: Any) -> None:
        object.__setattr__(self._command, name, value)

    def fail(self, name: str, reason: str) -> None:
        self.errors.append({"field": name, "reason": reason})

    def uuid(self, name: str, required: bool = True) -> None:
        value = getattr(self._command, name)
        if isinstance(value, str):
            value = value.strip() or None
        if value is None:
            if required:
                self.fail(name, "is required")
            self._set(name, None)
            return
        if isinstance(value, UUID):
            return
        try:
            self._set(name, UUID(str(value)))
        except ValueError:
            self.fail(name, "must be a UUID")

    def quantity(
        self,
        name: str,
        *,
        positive: bool = False,
        nonzero: bool = False,
        non_negative: bool = False,
        required: bool = True,
    ) -> None:
        raw = getattr(self._command, name)
        if raw is None:
            if required:
                self.fail(name, "is required")
            return
        value = to_decimal(raw)
        if value is None or not value.is_finite():
            self.fail(name, "must be a finite number")
            return
        if positive and value <= 0:
            self.fail(name, "must be greater than 0")
            return
        if nonzero and value == 0:
            self.fail(name, "must be different from 0")
            return
        if non_negative and value < 0:
            self.fail(name, "must not be negative")
            return
        self._set(name, value)

    def text(self, name: str, required: bool = False) -> None:
        raw = getattr(self._command, name)
        if raw is not None and not isinstance(raw, str):
            self.fail(name, "must be text")
            return
        value = raw.strip() if raw else ""
        if required and not value:
            self.fail(name, "is required")
        self._set(name, value or None)

    def unit(self, name: str) -> None:
        raw = getattr(self._command, name)
        if raw is None:
            return
        if not isinstance(raw, str):
            self.fail(name, "must be a unit code")
            return
        self._set(name, normalize_unit_code(raw) or None)

    def flag(self, name: str) -> None:
        if not isinstance(getattr(self._command, name), bool):
            self.fail(name, "must be true or false")

    def enum(self, name: str, enum_cls: type) -> None:
        raw = getattr(self._command, name)
        try:
            self._set(name, enum_cls(raw))
        except ValueError:
            allowed = ", ".join(m.value for m in enum_cls)
            self.fail(name, f"must be one of: {allowed}")

    def done(self) -> None:
        if self.errors:
            raise ValidationError(self.errors)


class _Command:
    """Shared payload parsing for ledger commands."""

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]):
        """
        Build a command from a request body.

        Missing required keys surface as ``is required`` field errors;
        unknown keys are rejected.
        """
        if not isinstance(payload, Mapping):
            raise ValidationError.single("payload", "must be an object")
        known = {f.name: f for f in fields(cls)}
        unknown = sorted(set(payload) - set(known))
        if unknown:
            raise ValidationError(
                [{"field": key, "reason": "is not a recognised field"} for key in unknown]
            )
        kwargs = {}
        for name, f in known.items():
            if name in payload:
                kwargs[name] = payload[name]
            elif f.default is MISSING and f.default_factory is MISSING:
                kwargs[name] = None
        return cls(**kwargs)


@dataclass(frozen=True)
class AdjustCommand(_Command):
    """
    Manual stock correction: adjustment, waste or shrink.

    ``quantity`` is a positive magnitude in ``input_unit_code`` (stock unit
    when omitted); ``direction`` says whether stock goes up or down.  Waste
    and shrink only ever decrease stock.
    """

    product_id: UUID
    site_id: UUID
    actor_id: UUID
    quantity: Decimal
    direction: AdjustmentDirection
    reason: str
    kind: MovementKind = MovementKind.ADJUSTMENT
    location_id: UUID | None = None
    evidence: str | None = None
    input_unit_code: str | None = None
    uom_profile_id: UUID | None = None
    floor_at_zero: bool | None = None

    def __post_init__(self) -> None:
        check = _FieldChecker(self)
        check.uuid("product_id")
        check.uuid("site_id")
        check.uuid("actor_id")
        check.uuid("location_id", required=False)
        check.uuid("uom_profile_id", required=False)
        check.quantity("quantity", positive=True)
        check.enum("direction", AdjustmentDirection)
        check.enum("kind", MovementKind)
        check.text("reason", required=True)
        check.text("evidence")
        check.unit("input_unit_code")
        if self.floor_at_zero is not None:
            check.flag("floor_at_zero")
        if isinstance(self.kind, MovementKind) and self.kind not in ADJUSTMENT_KINDS:
            check.fail("kind", "must be adjustment, waste or shrink")
        if (
            self.kind in (MovementKind.WASTE, MovementKind.SHRINK)
            and self.direction is AdjustmentDirection.INCREASE
        ):
            check.fail("direction", f"{self.kind.value} can only decrease stock")
        check.done()

    @property
    def sign(self) -> int:
        return 1 if self.direction is AdjustmentDirection.INCREASE else -1

    @property
    def note(self) -> str:
        if self.evidence:
            return f"{self.reason}. Evidence: {self.evidence}"
        return self.reason


@dataclass(frozen=True)
class ReceiveCommand(_Command):
    """
    Goods entering a site (supplier entry, remission receipt, production output).

    ``input_unit_cost`` is per captured unit.  When ``update_cost`` is true
    and the product is auto-costed, the receipt re-averages the product cost.
    """

    product_id: UUID
    site_id: UUID
    actor_id: UUID
    quantity: Decimal
    location_id: UUID | None = None
    input_unit_code: str | None = None
    uom_profile_id: UUID | None = None
    input_unit_cost: Decimal | None = None
    update_cost: bool = True
    source: str = "receipt"
    note: str | None = None
    related_batch_id: UUID | None = None

    def __post_init__(self) -> None:
        check = _FieldChecker(self)
        check.uuid("product_id")
        check.uuid("site_id")
        check.uuid("actor_id")
        check.uuid("location_id", required=False)
        check.uuid("uom_profile_id", required=False)
        check.uuid("related_batch_id", required=False)
        check.quantity("quantity", positive=True)
        check.quantity("input_unit_cost", non_negative=True, required=False)
        check.unit("input_unit_code")
        check.flag("update_cost")
        check.text("source", required=True)
        check.text("note")
        check.done()


@dataclass(frozen=True)
class WithdrawCommand(_Command):
    """Stock taken out of one location of a site."""

    product_id: UUID
    site_id: UUID
    location_id: UUID
    actor_id: UUID
    quantity: Decimal
    input_unit_code: str | None = None
    uom_profile_id: UUID | None = None
    note: str | None = None

    def __post_init__(self) -> None:
        check = _FieldChecker(self)
        check.uuid("product_id")
        check.uuid("site_id")
        check.uuid("location_id")
        check.uuid("actor_id")
        check.uuid("uom_profile_id", required=False)
        check.quantity("quantity", positive=True)
        check.unit("input_unit_code")
        check.text("note")
        check.done()


@dataclass(frozen=True)
class CountApprovalCommand(_Command):
    """
    Applies one approved count difference (counted minus system) in stock units.

    ``location_id`` is set when the count session was location-scoped.
    """

    product_id: UUID
    site_id: UUID
    actor_id: UUID
    quantity_delta: Decimal
    location_id: UUID | None = None
    count_session_id: UUID | None = None
    note: str | None = None

    def __post_init__(self) -> None:
        check = _FieldChecker(self)
        check.uuid("product_id")
        check.uuid("site_id")
        check.uuid("actor_id")
        check.uuid("location_id", required=False)
        check.uuid("count_session_id", required=False)
        check.quantity("quantity_delta", nonzero=True)
        check.text("note")
        check.done()


@dataclass(frozen=True)
class InitialCountCommand(_Command):
    """Sets a scope's opening quantity by recording the delta to ``counted_qty``."""

    product_id: UUID
    site_id: UUID
    actor_id: UUID
    counted_qty: Decimal
    location_id: UUID | None = None
    note: str | None = None

    def __post_init__(self) -> None:
        check = _FieldChecker(self)
        check.uuid("product_id")
        check.uuid("site_id")
        check.uuid("actor_id")
        check.uuid("location_id", required=False)
        check.quantity("counted_qty", non_negative=True)
        check.text("note")
        check.done()


@dataclass(frozen=True)
class TransferCommand(_Command):
    """Move stock between two locations of the same site."""

    product_id: UUID
    site_id: UUID
    from_location_id: UUID
    to_location_id: UUID
    actor_id: UUID
    quantity: Decimal
    input_unit_code: str | None = None
    uom_profile_id: UUID | None = None
    note: str | None = None

    def __post_init__(self) -> None:
        check = _FieldChecker(self)
        check.uuid("product_id")
        check.uuid("site_id")
        check.uuid("from_location_id")
        check.uuid("to_location_id")
        check.uuid("actor_id")
        check.uuid("uom_profile_id", required=False)
        check.quantity("quantity", positive=True)
        check.unit("input_unit_code")
        check.text("note")
        if (
            self.from_location_id is not None
            and self.from_location_id == self.to_location_id
        ):
            check.fail("to_location_id", "must differ from from_location_id")
        check.done()


@dataclass(frozen=True)
class ProductionCommand(_Command):
    """
    Produce ``produced_qty`` stock units of a recipe product at a site.

    Ingredients are drawn by pick priority; the output is received at
    ``output_location_id`` (site level when omitted).
    """

    product_id: UUID
    site_id: UUID
    actor_id: UUID
    produced_qty: Decimal
    batch_id: UUID | None = None
    output_location_id: UUID | None = None
    allow_shortfall: bool = False
    note: str | None = None

    def __post_init__(self) -> None:
        check = _FieldChecker(self)
        check.uuid("product_id")
        check.uuid("site_id")
        check.uuid("actor_id")
        check.uuid("batch_id", required=False)
        check.uuid("output_location_id", required=False)
        check.quantity("produced_qty", positive=True)
        check.flag("allow_shortfall")
        check.text("note")
        check.done()
