"""
inventory_services.movement_ledger -- the stock-affecting request protocol.

Responsibility:
    Every change to on-hand stock goes through one MovementLedger entry
    point: adjust, receive, withdraw, approve_count, record_initial_count,
    transfer and consume_for_production.  Each runs the same protocol:

        Validate -> Convert -> Append movement -> Update snapshot(s)
        -> Conditional cost update (receipts only)

Architecture position:
    Services -- stateful orchestration over engines + kernel.  Uses the
    UOM converter and cost engine (pure), SnapshotService and
    CostUpdateService (writers) and the kernel selectors (reads).

Invariants enforced:
    - Validation, referential and conversion errors raise before any write.
    - Movement-first ordering: snapshots are only touched after the
      movement rows are flushed.  A snapshot never reflects quantity that
      has no backing movement.
    - Every step after the movement runs in its own SAVEPOINT.  A failed
      step is rolled back alone, later steps are not attempted, and the
      failure is returned as ``LedgerResult.failure`` naming the step.
      Earlier steps stay in the caller's transaction.
    - Snapshot deltas are atomic add-delta statements (SnapshotService).
    - Withdrawals and transfers never draw more than the origin location
      holds; the check reads the location snapshot under a row lock, so a
      concurrent draw waits for it and sees the reduced quantity.

Failure modes:
    - ValidationError, ConversionError subclasses, ProductNotFoundError,
      LocationNotFoundError, InsufficientStockAtScopeError,
      RecipeNotFoundError: raised, nothing written.
    - StorageWriteError(step="movement_insert"): raised, nothing written.
    - snapshot_upsert / cost_update failures: reported in the result.

Audit relevance:
    Each request is bound to a correlation id through LogContext; the log
    stream carries ledger_request_started, movement_appended,
    snapshot_delta_applied, cost_updated, ledger_step_failed and
    ledger_request_completed for it.
"""

from __future__ import annotations

import time
from collections.abc import Callable, Iterator, Mapping
from contextlib import contextmanager
from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from typing import Any, TypeVar
from uuid import UUID, uuid4

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from inventory_config import InventorySettings, get_active_settings
from inventory_engines.costing import CostEngine
from inventory_engines.uom import ConversionResult, UomConverter, select_profile_for_context
from inventory_kernel.domain.clock import Clock, SystemClock
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
    ZERO,
    CostBasis,
    CostingMode,
    MovementKind,
    StockScope,
    UsageContext,
    normalize_unit_code,
    round_quantity,
)
from inventory_kernel.exceptions import (
    InsufficientStockAtScopeError,
    InventoryKernelError,
    LocationNotFoundError,
    ProductNotFoundError,
    StorageWriteError,
    ValidationError,
)
from inventory_kernel.logging_config import LogContext, get_logger
from inventory_kernel.models.movement import Movement
from inventory_kernel.selectors.catalog_selector import CatalogSelector, ProductInfo
from inventory_kernel.selectors.stock_selector import StockSelector
from inventory_kernel.services.snapshot_service import SnapshotService
from inventory_services.cost_service import CostUpdate, CostUpdateService
from inventory_services.production_service import ProductionPlan, ProductionService

logger = get_logger("services.movement_ledger")

CommandT = TypeVar("CommandT")
StepT = TypeVar("StepT")


class LedgerStep(str, Enum):
    MOVEMENT_INSERT = "movement_insert"
    SNAPSHOT_UPSERT = "snapshot_upsert"
    COST_UPDATE = "cost_update"


@dataclass(frozen=True)
class StepFailure:
    """The ledger step that failed to write, and why."""

    step: LedgerStep
    reason: str


@dataclass(frozen=True)
class ScopeQuantity:
    product_id: UUID
    scope: StockScope
    scope_id: UUID
    quantity: Decimal


@dataclass(frozen=True)
class LedgerResult:
    """
    Outcome of one ledger request.

    ``quantity`` is the signed stock-unit quantity of the request and
    ``conversion_factor`` the stock units per captured unit that produced
    it.  ``snapshots`` holds the quantity stored for every scope touched.
    ``failure`` is set when a step after the movement failed; the movements
    listed in ``movement_ids`` exist regardless.
    ``already_applied_movement_id`` is set when a count line was approved
    before; nothing is written and it names the movement that applied it.
    """

    movement_ids: tuple[UUID, ...] = ()
    quantity: Decimal = ZERO
    conversion_factor: Decimal = ONE
    snapshots: tuple[ScopeQuantity, ...] = ()
    cost_update: CostUpdate | None = None
    cost_skipped_reason: str | None = None
    batch_id: UUID | None = None
    failure: StepFailure | None = None
    already_applied_movement_id: UUID | None = None

    @property
    def succeeded(self) -> bool:
        return self.failure is None

    @property
    def movement_id(self) -> UUID | None:
        return self.movement_ids[0] if self.movement_ids else None

    def snapshot_qty(self, scope: StockScope, scope_id: UUID, product_id: UUID | None = None) -> Decimal | None:
        """Stored quantity for a scope after this request, or None if untouched."""
        scope = StockScope(scope)
        for snap in self.snapshots:
            if snap.scope is scope and snap.scope_id == scope_id:
                if product_id is None or snap.product_id == product_id:
                    return snap.quantity
        return None

    def raise_for_failure(self) -> None:
        if self.failure is not None:
            raise StorageWriteError(self.failure.step.value, self.failure.reason)


@dataclass(frozen=True)
class _Conversion:
    stock_qty: Decimal
    factor: Decimal
    stock_unit_code: str
    input_qty: Decimal | None = None
    input_unit_code: str | None = None


@dataclass(frozen=True)
class _MovementDraft:
    product_id: UUID
    kind: MovementKind
    quantity: Decimal
    stock_unit_code: str
    location_id: UUID | None = None
    conversion_factor: Decimal = ONE
    input_qty: Decimal | None = None
    input_unit_code: str | None = None
    unit_cost: Decimal | None = None
    note: str | None = None
    related_batch_id: UUID | None = None
    count_session_id: UUID | None = None


@dataclass(frozen=True)
class _SnapshotDelta:
    product_id: UUID
    scope: StockScope
    scope_id: UUID
    delta: Decimal
    floor_at_zero: bool = False


@dataclass(frozen=True)
class _CostRequest:
    product_id: UUID
    site_id: UUID
    qty_in: Decimal
    cost_in: Decimal
    cost_basis: CostBasis
    source: str
    movement_index: int = 0


def _coerce(command: Any, command_cls: type[CommandT]) -> CommandT:
    if isinstance(command, command_cls):
        return command
    if isinstance(command, Mapping):
        return command_cls.from_payload(command)
    raise ValidationError.single("payload", f"must be a {command_cls.__name__} or an object")


class MovementLedger:
    """
    Orchestrates stock-affecting requests.

    Contract:
        Receives the caller's Session; flushes and never commits.  The
        caller commits once the result is inspected.  Commands may be
        passed as typed command objects or as request payload mappings.
    Non-goals:
        - Does not decide retry policy for failed steps.
        - Does not rebuild snapshots; see SnapshotReconciliationService.
    """

    def __init__(
        self,
        session: Session,
        settings: InventorySettings | None = None,
        clock: Clock | None = None,
        converter: UomConverter | None = None,
        cost_engine: CostEngine | None = None,
    ):
        self.session = session
        self._settings = settings or get_active_settings()
        self._clock = clock or SystemClock()
        self._converter = converter
        self._cost_engine = cost_engine or CostEngine()
        self._catalog = CatalogSelector(session)
        self._stock = StockSelector(session)
        self._snapshots = SnapshotService(session)
        self._costs = CostUpdateService(session, self._clock, self._cost_engine)

    @property
    def converter(self) -> UomConverter:
        """Converter over the active units in the database, built on first use."""
        if self._converter is None:
            self._converter = UomConverter(self._catalog.unit_catalog())
        return self._converter

    # =========================================================================
    # Entry points
    # =========================================================================

    def adjust(self, command: AdjustCommand | Mapping[str, Any]) -> LedgerResult:
        """Manual adjustment, waste or shrink.  Touches the site and, if given, the location."""
        command = _coerce(command, AdjustCommand)
        with self._request("adjust", command.actor_id, command.product_id, command.site_id):
            product = self._load_product(command.product_id)
            self._check_site(command.site_id)
            if command.location_id is not None:
                self._check_location(command.location_id, command.site_id)

            conversion = self._convert(
                product,
                command.quantity,
                command.input_unit_code,
                command.uom_profile_id,
                UsageContext.GENERAL,
            )
            signed = conversion.stock_qty * command.sign
            floor = (
                command.floor_at_zero
                if command.floor_at_zero is not None
                else self._settings.floor.adjustment
            )
            draft = self._draft(product, command.kind, signed, conversion, command.location_id, command.note)
            return self._post(
                site_id=command.site_id,
                actor_id=command.actor_id,
                drafts=[draft],
                deltas=self._site_and_location(
                    product.product_id, command.site_id, command.location_id, signed, floor
                ),
                quantity=signed,
                conversion_factor=conversion.factor,
            )

    def receive(self, command: ReceiveCommand | Mapping[str, Any]) -> LedgerResult:
        """
        Goods in.  Re-averages the product cost when the product is
        auto-costed, ``update_cost`` is set and a unit cost is known.
        """
        command = _coerce(command, ReceiveCommand)
        with self._request("receive", command.actor_id, command.product_id, command.site_id):
            product = self._load_product(command.product_id)
            self._check_site(command.site_id)
            if command.location_id is not None:
                self._check_location(command.location_id, command.site_id)

            conversion = self._convert(
                product,
                command.quantity,
                command.input_unit_code,
                command.uom_profile_id,
                UsageContext.PURCHASE,
            )
            unit_cost, cost_basis, skipped_reason = self._receipt_unit_cost(
                product, command.site_id, command.input_unit_cost, conversion
            )

            cost_request = None
            if not command.update_cost:
                skipped_reason = "Cost update disabled for this receipt."
            elif product.costing_mode is not CostingMode.AUTO_PRIMARY_SUPPLIER:
                skipped_reason = "Product is manually costed."
            elif unit_cost is not None:
                cost_request = _CostRequest(
                    product_id=product.product_id,
                    site_id=command.site_id,
                    qty_in=conversion.stock_qty,
                    cost_in=unit_cost,
                    cost_basis=cost_basis,
                    source=command.source,
                )

            draft = self._draft(
                product,
                MovementKind.RECEIPT,
                conversion.stock_qty,
                conversion,
                command.location_id,
                command.note,
                unit_cost=unit_cost,
                related_batch_id=command.related_batch_id,
            )
            return self._post(
                site_id=command.site_id,
                actor_id=command.actor_id,
                drafts=[draft],
                deltas=self._site_and_location(
                    product.product_id,
                    command.site_id,
                    command.location_id,
                    conversion.stock_qty,
                    False,
                ),
                quantity=conversion.stock_qty,
                conversion_factor=conversion.factor,
                cost_request=cost_request,
                cost_skipped_reason=None if cost_request else skipped_reason,
            )

    def withdraw(self, command: WithdrawCommand | Mapping[str, Any]) -> LedgerResult:
        """Stock out of one location; refuses to draw more than the location holds."""
        command = _coerce(command, WithdrawCommand)
        with self._request("withdraw", command.actor_id, command.product_id, command.site_id):
            product = self._load_product(command.product_id)
            self._check_site(command.site_id)
            self._check_location(command.location_id, command.site_id)

            conversion = self._convert(
                product,
                command.quantity,
                command.input_unit_code,
                command.uom_profile_id,
                UsageContext.GENERAL,
            )
            self._require_available(product.product_id, command.location_id, conversion.stock_qty)

            signed = -conversion.stock_qty
            draft = self._draft(
                product, MovementKind.CONSUMPTION, signed, conversion, command.location_id, command.note
            )
            return self._post(
                site_id=command.site_id,
                actor_id=command.actor_id,
                drafts=[draft],
                deltas=self._site_and_location(
                    product.product_id,
                    command.site_id,
                    command.location_id,
                    signed,
                    self._settings.floor.withdrawal,
                ),
                quantity=signed,
                conversion_factor=conversion.factor,
            )

    def approve_count(self, command: CountApprovalCommand | Mapping[str, Any]) -> LedgerResult:
        """
        Apply one approved count difference, in stock units.

        With a ``count_session_id`` the line is applied once per (session,
        product, location): a repeated approval writes nothing and returns
        the movement that applied it in ``already_applied_movement_id``.
        """
        command = _coerce(command, CountApprovalCommand)
        with self._request("approve_count", command.actor_id, command.product_id, command.site_id):
            product = self._load_product(command.product_id)
            self._check_site(command.site_id)
            if command.location_id is not None:
                self._check_location(command.location_id, command.site_id)

            delta = round_quantity(command.quantity_delta)
            if delta == ZERO:
                raise ValidationError.single("quantity_delta", "rounds to 0")

            note = command.note
            if command.count_session_id is not None:
                # Product lock serialises approvals of the same line.
                self._costs.lock_product(product.product_id)
                applied = self._stock.applied_count_movement(
                    command.count_session_id,
                    product.product_id,
                    command.site_id,
                    command.location_id,
                )
                if applied is not None:
                    logger.info(
                        "count_line_already_applied",
                        extra={
                            "count_session_id": str(command.count_session_id),
                            "movement_id": str(applied),
                        },
                    )
                    return LedgerResult(already_applied_movement_id=applied)
                if note is None:
                    note = f"Count session {command.count_session_id}"

            draft = self._draft(
                product,
                MovementKind.COUNT,
                delta,
                self._identity(product),
                command.location_id,
                note,
                count_session_id=command.count_session_id,
            )
            return self._post(
                site_id=command.site_id,
                actor_id=command.actor_id,
                drafts=[draft],
                deltas=self._site_and_location(
                    product.product_id,
                    command.site_id,
                    command.location_id,
                    delta,
                    self._settings.floor.count_approval,
                ),
                quantity=delta,
            )

    def record_initial_count(self, command: InitialCountCommand | Mapping[str, Any]) -> LedgerResult:
        """
        Bring a scope to its counted opening quantity.

        The movement records counted minus current at the counted scope
        (the location when given, else the site); the site absorbs the same
        delta.  Nothing is written when the scope already holds the counted
        quantity.
        """
        command = _coerce(command, InitialCountCommand)
        with self._request(
            "record_initial_count", command.actor_id, command.product_id, command.site_id
        ):
            product = self._load_product(command.product_id)
            self._check_site(command.site_id)
            if command.location_id is not None:
                self._check_location(command.location_id, command.site_id)
                current = self._stock.location_qty(product.product_id, command.location_id)
            else:
                current = self._stock.site_qty(product.product_id, command.site_id)

            delta = round_quantity(command.counted_qty - current)
            if delta == ZERO:
                logger.info(
                    "initial_count_unchanged",
                    extra={"counted_qty": str(command.counted_qty), "current_qty": str(current)},
                )
                return LedgerResult(quantity=ZERO)

            draft = self._draft(
                product,
                MovementKind.INITIAL_COUNT,
                delta,
                self._identity(product),
                command.location_id,
                command.note,
            )
            return self._post(
                site_id=command.site_id,
                actor_id=command.actor_id,
                drafts=[draft],
                deltas=self._site_and_location(
                    product.product_id, command.site_id, command.location_id, delta, False
                ),
                quantity=delta,
            )

    def transfer(self, command: TransferCommand | Mapping[str, Any]) -> LedgerResult:
        """
        Move stock between two locations of one site.

        Writes a transfer_out and a transfer_in movement.  The site
        snapshot is unchanged.
        """
        command = _coerce(command, TransferCommand)
        with self._request("transfer", command.actor_id, command.product_id, command.site_id):
            product = self._load_product(command.product_id)
            self._check_site(command.site_id)
            self._check_location(command.from_location_id, command.site_id)
            self._check_location(command.to_location_id, command.site_id)

            conversion = self._convert(
                product,
                command.quantity,
                command.input_unit_code,
                command.uom_profile_id,
                UsageContext.REMISSION,
            )
            qty = conversion.stock_qty
            self._require_available(product.product_id, command.from_location_id, qty)

            floor = self._settings.floor.transfer
            drafts = [
                self._draft(
                    product, MovementKind.TRANSFER_OUT, -qty, conversion, command.from_location_id, command.note
                ),
                self._draft(
                    product, MovementKind.TRANSFER_IN, qty, conversion, command.to_location_id, command.note
                ),
            ]
            deltas = [
                _SnapshotDelta(product.product_id, StockScope.LOCATION, command.from_location_id, -qty, floor),
                _SnapshotDelta(product.product_id, StockScope.LOCATION, command.to_location_id, qty, floor),
            ]
            return self._post(
                site_id=command.site_id,
                actor_id=command.actor_id,
                drafts=drafts,
                deltas=deltas,
                quantity=qty,
                conversion_factor=conversion.factor,
            )

    def consume_for_production(
        self,
        command: ProductionCommand | Mapping[str, Any],
        plan: ProductionPlan | None = None,
    ) -> LedgerResult:
        """
        Consume recipe ingredients by pick priority and receive the output.

        One consumption movement is written per draw, plus one receipt of
        the produced quantity.  All movements share the batch id.  An
        ingredient shortfall raises InsufficientStockAtScopeError unless
        ``allow_shortfall`` is set, in which case only what was allocated is
        consumed.
        """
        command = _coerce(command, ProductionCommand)
        with self._request(
            "consume_for_production", command.actor_id, command.product_id, command.site_id
        ):
            product = self._load_product(command.product_id)
            self._check_site(command.site_id)
            if command.output_location_id is not None:
                self._check_location(command.output_location_id, command.site_id)

            if plan is None:
                plan = ProductionService(self.session, settings=self._settings).plan(command)
            else:
                self._check_plan(plan, command)

            for shortfall in plan.shortfalls:
                if not command.allow_shortfall:
                    raise InsufficientStockAtScopeError(
                        product_id=str(shortfall.ingredient_id),
                        scope_id=str(command.site_id),
                        requested_qty=str(shortfall.required_qty),
                        available_qty=str(shortfall.plan.total_allocated),
                    )
                logger.warning(
                    "production_shortfall_accepted",
                    extra={
                        "ingredient_id": str(shortfall.ingredient_id),
                        "required_qty": str(shortfall.required_qty),
                        "missing_qty": str(shortfall.missing_qty),
                    },
                )

            batch_id = command.batch_id or uuid4()
            note = command.note or "Production consumption"
            floor = self._settings.floor.production_consumption
            drafts: list[_MovementDraft] = []
            deltas: list[_SnapshotDelta] = []
            for ingredient in plan.ingredients:
                ingredient_product = self._load_product(ingredient.ingredient_id)
                for draw in ingredient.plan.draws:
                    self._require_available(ingredient_product.product_id, draw.location_id, draw.quantity)
                    drafts.append(
                        self._draft(
                            ingredient_product,
                            MovementKind.CONSUMPTION,
                            -draw.quantity,
                            self._identity(ingredient_product),
                            draw.location_id,
                            note,
                            related_batch_id=batch_id,
                        )
                    )
                    deltas.extend(
                        self._site_and_location(
                            ingredient_product.product_id,
                            command.site_id,
                            draw.location_id,
                            -draw.quantity,
                            floor,
                        )
                    )

            produced = round_quantity(command.produced_qty)
            drafts.append(
                self._draft(
                    product,
                    MovementKind.RECEIPT,
                    produced,
                    self._identity(product),
                    command.output_location_id,
                    "Production output",
                    related_batch_id=batch_id,
                )
            )
            deltas.extend(
                self._site_and_location(
                    product.product_id, command.site_id, command.output_location_id, produced, False
                )
            )
            return self._post(
                site_id=command.site_id,
                actor_id=command.actor_id,
                drafts=drafts,
                deltas=deltas,
                quantity=produced,
                batch_id=batch_id,
            )

    # =========================================================================
    # Validate / convert
    # =========================================================================

    def _load_product(self, product_id: UUID) -> ProductInfo:
        product = self._catalog.product(product_id)
        if product is None or not product.is_active:
            raise ProductNotFoundError(str(product_id))
        return product

    def _check_site(self, site_id: UUID) -> None:
        if not self._catalog.site_exists(site_id):
            raise ValidationError.single("site_id", "does not exist")

    def _check_location(self, location_id: UUID, site_id: UUID) -> None:
        if self._catalog.location_in_site(location_id, site_id) is None:
            raise LocationNotFoundError(str(location_id), str(site_id))

    def _require_available(self, product_id: UUID, location_id: UUID, quantity: Decimal) -> None:
        # Row lock held to commit; a concurrent draw waits and rereads.
        available = self._stock.location_qty(product_id, location_id, for_update=True)
        if available < quantity:
            raise InsufficientStockAtScopeError(
                product_id=str(product_id),
                scope_id=str(location_id),
                requested_qty=str(quantity),
                available_qty=str(available),
            )

    @staticmethod
    def _check_plan(plan: ProductionPlan, command: ProductionCommand) -> None:
        errors = []
        if str(plan.product_id) != str(command.product_id):
            errors.append({"field": "plan.product_id", "reason": "does not match the command"})
        if str(plan.site_id) != str(command.site_id):
            errors.append({"field": "plan.site_id", "reason": "does not match the command"})
        if round_quantity(plan.produced_qty) != round_quantity(command.produced_qty):
            errors.append({"field": "plan.produced_qty", "reason": "does not match the command"})
        if errors:
            raise ValidationError(errors)

    def _stock_unit(self, product: ProductInfo) -> str:
        return normalize_unit_code(product.stock_unit_code) or self._settings.default_stock_unit

    def _identity(self, product: ProductInfo) -> _Conversion:
        return _Conversion(stock_qty=ZERO, factor=ONE, stock_unit_code=self._stock_unit(product))

    def _convert(
        self,
        product: ProductInfo,
        quantity: Decimal,
        input_unit_code: str | None,
        uom_profile_id: UUID | None,
        context: UsageContext,
    ) -> _Conversion:
        """
        Stock-unit quantity and factor for a captured quantity.

        An explicit profile wins; a capture in the stock unit is identity;
        otherwise the product's default profile for the context applies
        when its input unit matches, else strict unit-family math.
        """
        stock_unit = self._stock_unit(product)
        input_unit = input_unit_code or stock_unit

        result: ConversionResult
        if uom_profile_id is not None:
            profile = self._catalog.uom_profile(uom_profile_id)
            if (
                profile is None
                or not profile.is_active
                or str(profile.product_id) != str(product.product_id)
            ):
                raise ValidationError.single("uom_profile_id", "is not an active profile of this product")
            result = self.converter.convert_by_profile(quantity, input_unit, stock_unit, profile)
        elif input_unit == stock_unit:
            result = ConversionResult(quantity=round_quantity(quantity), factor=ONE, method="identity")
        else:
            profile = select_profile_for_context(
                self._catalog.uom_profiles(product.product_id), product.product_id, context
            )
            if profile is not None and normalize_unit_code(profile.input_unit_code) == input_unit:
                result = self.converter.convert_by_profile(quantity, input_unit, stock_unit, profile)
            else:
                result = self.converter.conversion(quantity, input_unit, stock_unit)

        if result.quantity <= ZERO:
            raise ValidationError.single("quantity", "converts to 0 stock units")

        captured = result.method != "identity"
        return _Conversion(
            stock_qty=result.quantity,
            factor=result.factor,
            stock_unit_code=stock_unit,
            input_qty=round_quantity(quantity) if captured else None,
            input_unit_code=input_unit if captured else None,
        )

    def _receipt_unit_cost(
        self,
        product: ProductInfo,
        site_id: UUID,
        input_unit_cost: Decimal | None,
        conversion: _Conversion,
    ) -> tuple[Decimal | None, CostBasis | None, str | None]:
        """
        Stock-unit cost of a receipt in the site's cost basis.

        Falls back to the primary supplier pack price for auto-costed
        products.  Returns (None, None, reason) when no cost can be derived.
        """
        if input_unit_cost is not None:
            net = self._cost_engine.stock_unit_cost_from_input(input_unit_cost, conversion.factor)
        elif product.costing_mode is CostingMode.AUTO_PRIMARY_SUPPLIER:
            supplier = self._catalog.primary_supplier(product.product_id)
            reason = self._cost_engine.auto_cost_readiness_reason(
                product.costing_mode, conversion.stock_unit_code, supplier, self.converter
            )
            if reason is not None:
                return None, None, reason
            net = self._cost_engine.auto_cost_from_primary_supplier(
                self.converter, supplier, conversion.stock_unit_code
            )
        else:
            return None, None, "Receipt carries no unit cost."

        policy = self._catalog.cost_policy(
            site_id, self._settings.default_cost_basis, self._settings.default_tax_rate
        )
        cost = self._cost_engine.apply_cost_basis(net, policy.tax_rate, policy.cost_basis)
        return cost, policy.cost_basis, None

    def _draft(
        self,
        product: ProductInfo,
        kind: MovementKind,
        quantity: Decimal,
        conversion: _Conversion,
        location_id: UUID | None,
        note: str | None,
        unit_cost: Decimal | None = None,
        related_batch_id: UUID | None = None,
        count_session_id: UUID | None = None,
    ) -> _MovementDraft:
        return _MovementDraft(
            product_id=product.product_id,
            kind=kind,
            quantity=round_quantity(quantity),
            stock_unit_code=conversion.stock_unit_code,
            location_id=location_id,
            conversion_factor=conversion.factor,
            input_qty=conversion.input_qty,
            input_unit_code=conversion.input_unit_code,
            unit_cost=unit_cost,
            note=note,
            related_batch_id=related_batch_id,
            count_session_id=count_session_id,
        )

    @staticmethod
    def _site_and_location(
        product_id: UUID,
        site_id: UUID,
        location_id: UUID | None,
        delta: Decimal,
        floor_at_zero: bool,
    ) -> list[_SnapshotDelta]:
        deltas = [_SnapshotDelta(product_id, StockScope.SITE, site_id, delta, floor_at_zero)]
        if location_id is not None:
            deltas.append(
                _SnapshotDelta(product_id, StockScope.LOCATION, location_id, delta, floor_at_zero)
            )
        return deltas

    # =========================================================================
    # Write protocol
    # =========================================================================

    def _post(
        self,
        site_id: UUID,
        actor_id: UUID,
        drafts: list[_MovementDraft],
        deltas: list[_SnapshotDelta],
        quantity: Decimal,
        conversion_factor: Decimal = ONE,
        cost_request: _CostRequest | None = None,
        cost_skipped_reason: str | None = None,
        batch_id: UUID | None = None,
    ) -> LedgerResult:
        movement_ids = self._append_movements(site_id, actor_id, drafts)
        base = dict(
            movement_ids=movement_ids,
            quantity=round_quantity(quantity),
            conversion_factor=conversion_factor,
            batch_id=batch_id,
        )

        snapshots, failure = self._run_step(
            LedgerStep.SNAPSHOT_UPSERT, lambda: self._apply_deltas(deltas)
        )
        if failure is not None:
            return LedgerResult(**base, failure=failure)

        cost_update = None
        if cost_request is not None:
            cost_update, failure = self._run_step(
                LedgerStep.COST_UPDATE,
                lambda: self._costs.apply_receipt(
                    product_id=cost_request.product_id,
                    site_id=cost_request.site_id,
                    movement_id=movement_ids[cost_request.movement_index],
                    qty_in=cost_request.qty_in,
                    cost_in=cost_request.cost_in,
                    cost_basis=cost_request.cost_basis,
                    source=cost_request.source,
                    actor_id=actor_id,
                ),
            )
        elif cost_skipped_reason is not None:
            logger.info("cost_update_skipped", extra={"reason": cost_skipped_reason})

        return LedgerResult(
            **base,
            snapshots=tuple(snapshots),
            cost_update=cost_update,
            cost_skipped_reason=cost_skipped_reason,
            failure=failure,
        )

    def _append_movements(
        self,
        site_id: UUID,
        actor_id: UUID,
        drafts: list[_MovementDraft],
    ) -> tuple[UUID, ...]:
        occurred_at = self._clock.now()
        movements = []
        for draft in drafts:
            line_total = (
                round_quantity(draft.unit_cost * abs(draft.quantity))
                if draft.unit_cost is not None
                else None
            )
            movements.append(
                Movement(
                    id=uuid4(),
                    product_id=draft.product_id,
                    site_id=site_id,
                    location_id=draft.location_id,
                    kind=draft.kind.value,
                    quantity=draft.quantity,
                    input_qty=draft.input_qty,
                    input_unit_code=draft.input_unit_code,
                    conversion_factor_to_stock=draft.conversion_factor,
                    stock_unit_code=draft.stock_unit_code,
                    unit_cost=draft.unit_cost,
                    line_total_cost=line_total,
                    note=draft.note,
                    related_batch_id=draft.related_batch_id,
                    count_session_id=draft.count_session_id,
                    occurred_at=occurred_at,
                    created_by_id=actor_id,
                )
            )

        try:
            with self.session.begin_nested():
                self.session.add_all(movements)
                self.session.flush()
        except SQLAlchemyError as exc:
            logger.error(
                "ledger_step_failed",
                extra={"step": LedgerStep.MOVEMENT_INSERT.value, "error_type": type(exc).__name__},
                exc_info=True,
            )
            raise StorageWriteError(LedgerStep.MOVEMENT_INSERT.value, str(exc)) from exc

        for movement in movements:
            logger.info(
                "movement_appended",
                extra={
                    "movement_id": str(movement.id),
                    "kind": movement.kind,
                    "quantity": str(movement.quantity),
                    "stock_unit_code": movement.stock_unit_code,
                    "conversion_factor": str(movement.conversion_factor_to_stock),
                    "location_id": str(movement.location_id) if movement.location_id else None,
                },
            )
        return tuple(m.id for m in movements)

    def _apply_deltas(self, deltas: list[_SnapshotDelta]) -> list[ScopeQuantity]:
        applied = []
        for delta in deltas:
            new_qty = self._snapshots.apply_delta(
                delta.product_id,
                delta.scope,
                delta.scope_id,
                delta.delta,
                floor_at_zero=delta.floor_at_zero,
            )
            applied.append(ScopeQuantity(delta.product_id, delta.scope, delta.scope_id, new_qty))
        return applied

    def _run_step(
        self,
        step: LedgerStep,
        action: Callable[[], StepT],
    ) -> tuple[StepT | None, StepFailure | None]:
        try:
            with self.session.begin_nested():
                return action(), None
        except SQLAlchemyError as exc:
            logger.error(
                "ledger_step_failed",
                extra={"step": step.value, "error_type": type(exc).__name__},
                exc_info=True,
            )
            return None, StepFailure(step=step, reason=str(exc))

    @contextmanager
    def _request(
        self,
        operation: str,
        actor_id: UUID,
        product_id: UUID,
        site_id: UUID,
    ) -> Iterator[None]:
        with LogContext.bind(
            correlation_id=str(uuid4()),
            actor_id=str(actor_id),
            operation=operation,
            product_id=str(product_id),
            site_id=str(site_id),
        ):
            logger.info("ledger_request_started")
            t0 = time.monotonic()
            try:
                yield
            except InventoryKernelError as exc:
                logger.warning(
                    "ledger_request_rejected",
                    extra={
                        "error_code": exc.code,
                        "error_message": str(exc),
                        "duration_ms": round((time.monotonic() - t0) * 1000, 2),
                    },
                )
                raise
            logger.info(
                "ledger_request_completed",
                extra={"duration_ms": round((time.monotonic() - t0) * 1000, 2)},
            )
