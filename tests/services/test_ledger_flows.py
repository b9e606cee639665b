"""
Adjustment, withdrawal, count, initial-count and transfer flows through the
movement ledger.

Covers:
- Validation and referential failures write nothing
- Floor-at-zero per flow
- Location availability checks
- Count lines applied once per session, product and location
- Snapshot step failure reporting
- Request-scoped structured logs
"""

from dataclasses import replace
from decimal import Decimal
from uuid import uuid4

import pytest
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError

from inventory_kernel.domain.commands import (
    AdjustCommand,
    CountApprovalCommand,
    InitialCountCommand,
    ReceiveCommand,
    TransferCommand,
    WithdrawCommand,
)
from inventory_kernel.domain.values import AdjustmentDirection, CostingMode, MovementKind, StockScope
from inventory_kernel.exceptions import (
    InsufficientStockAtScopeError,
    LocationNotFoundError,
    ProductNotFoundError,
    StorageWriteError,
    ValidationError,
)
from inventory_kernel.models import Location, Movement
from inventory_kernel.selectors.stock_selector import StockSelector
from inventory_kernel.services.snapshot_service import SnapshotService
from inventory_services.movement_ledger import LedgerStep, MovementLedger


@pytest.fixture
def stocked(ledger, site, locations, make_product, test_actor_id):
    """A count product holding 10 un at A-01 (and so 10 un at the site)."""
    product = make_product(costing_mode=CostingMode.MANUAL)
    ledger.receive(
        ReceiveCommand(
            product_id=product.id,
            site_id=site.id,
            actor_id=test_actor_id,
            quantity=Decimal("10"),
            location_id=locations["A-01"].id,
        )
    )
    return product


def _movements(session, product, kind=None):
    stmt = select(Movement).where(Movement.product_id == product.id)
    if kind is not None:
        stmt = stmt.where(Movement.kind == kind.value)
    return session.execute(stmt).scalars().all()


def _adjust(product, site, actor_id, quantity, direction="decrease", **kwargs):
    return AdjustCommand(
        product_id=product.id,
        site_id=site.id,
        actor_id=actor_id,
        quantity=quantity,
        direction=direction,
        reason=kwargs.pop("reason", "Stock correction"),
        **kwargs,
    )


class TestAdjust:
    @pytest.mark.parametrize("quantity", ["0", "-5"])
    def test_non_positive_quantity_writes_nothing(
        self, session, ledger, site, make_product, test_actor_id, quantity
    ):
        product = make_product()
        payload = {
            "product_id": str(product.id),
            "site_id": str(site.id),
            "actor_id": str(test_actor_id),
            "quantity": quantity,
            "direction": "increase",
            "reason": "Found stock",
        }
        with pytest.raises(ValidationError) as exc:
            ledger.adjust(payload)
        assert exc.value.field_errors == [{"field": "quantity", "reason": "must be greater than 0"}]
        assert _movements(session, product) == []
        assert StockSelector(session).snapshot_rows(product.id) == []

    def test_decrease_may_go_negative(self, session, ledger, site, stocked, test_actor_id):
        result = ledger.adjust(_adjust(stocked, site, test_actor_id, Decimal("15")))

        assert result.quantity == Decimal("-15")
        assert result.snapshot_qty(StockScope.SITE, site.id) == Decimal("-5")
        movement = session.get(Movement, result.movement_id)
        assert movement.kind == "adjustment"
        assert movement.quantity == Decimal("-15")
        assert movement.note == "Stock correction"

    def test_floor_can_be_requested(self, ledger, site, stocked, test_actor_id):
        result = ledger.adjust(_adjust(stocked, site, test_actor_id, Decimal("15"), floor_at_zero=True))
        assert result.snapshot_qty(StockScope.SITE, site.id) == Decimal("0")

    def test_floor_from_settings(
        self, session, site, stocked, test_actor_id, settings, deterministic_clock
    ):
        floored = replace(settings, floor=replace(settings.floor, adjustment=True))
        ledger = MovementLedger(session, settings=floored, clock=deterministic_clock)
        result = ledger.adjust(_adjust(stocked, site, test_actor_id, Decimal("15")))
        assert result.snapshot_qty(StockScope.SITE, site.id) == Decimal("0")

    def test_increase_at_location(self, session, ledger, site, locations, stocked, test_actor_id):
        loc = locations["B-01"]
        ledger.adjust(
            _adjust(stocked, site, test_actor_id, Decimal("3"), direction="increase", location_id=loc.id)
        )
        stock = StockSelector(session)
        assert stock.location_qty(stocked.id, loc.id) == Decimal("3")
        assert stock.site_qty(stocked.id, site.id) == Decimal("13")

    def test_waste_with_evidence(self, session, ledger, site, stocked, test_actor_id):
        result = ledger.adjust(
            _adjust(
                stocked,
                site,
                test_actor_id,
                Decimal("2"),
                kind=MovementKind.WASTE,
                reason="Dropped tray",
                evidence="photo-123",
            )
        )
        movement = session.get(Movement, result.movement_id)
        assert movement.kind == "waste"
        assert movement.note == "Dropped tray. Evidence: photo-123"

    def test_adjust_in_capture_unit(self, session, ledger, site, make_product, test_actor_id):
        product = make_product(stock_unit_code="g")
        ledger.adjust(_adjust(product, site, test_actor_id, Decimal("5000"), direction="increase"))

        result = ledger.adjust(_adjust(product, site, test_actor_id, Decimal("1"), input_unit_code="kg"))

        assert result.quantity == Decimal("-1000")
        assert result.snapshot_qty(StockScope.SITE, site.id) == Decimal("4000")
        movement = session.get(Movement, result.movement_id)
        assert movement.input_qty == Decimal("1")
        assert movement.input_unit_code == "kg"

    def test_unknown_product(self, ledger, site, test_actor_id):
        with pytest.raises(ProductNotFoundError):
            ledger.adjust(
                AdjustCommand(
                    product_id=uuid4(),
                    site_id=site.id,
                    actor_id=test_actor_id,
                    quantity=Decimal("1"),
                    direction=AdjustmentDirection.INCREASE,
                    reason="x",
                )
            )

    def test_unknown_site(self, session, ledger, make_product, test_actor_id):
        product = make_product()
        with pytest.raises(ValidationError) as exc:
            ledger.adjust(
                AdjustCommand(
                    product_id=product.id,
                    site_id=uuid4(),
                    actor_id=test_actor_id,
                    quantity=Decimal("1"),
                    direction="increase",
                    reason="x",
                )
            )
        assert exc.value.field_errors[0]["field"] == "site_id"
        assert _movements(session, product) == []

    def test_inactive_product_rejected(self, session, ledger, site, make_product, test_actor_id):
        product = make_product()
        product.is_active = False
        session.flush()
        with pytest.raises(ProductNotFoundError):
            ledger.adjust(_adjust(product, site, test_actor_id, Decimal("1"), direction="increase"))


class TestWithdraw:
    def _withdraw(self, product, site, location, actor_id, quantity):
        return WithdrawCommand(
            product_id=product.id,
            site_id=site.id,
            location_id=location.id,
            actor_id=actor_id,
            quantity=Decimal(quantity),
        )

    def test_withdraw_updates_site_and_location(self, session, ledger, site, locations, stocked, test_actor_id):
        loc = locations["A-01"]
        result = ledger.withdraw(self._withdraw(stocked, site, loc, test_actor_id, "4"))

        assert result.quantity == Decimal("-4")
        assert result.snapshot_qty(StockScope.SITE, site.id) == Decimal("6")
        assert result.snapshot_qty(StockScope.LOCATION, loc.id) == Decimal("6")
        assert len(_movements(session, stocked, MovementKind.CONSUMPTION)) == 1

    def test_withdraw_more_than_location_holds(
        self, session, ledger, site, locations, stocked, test_actor_id, captured_logs
    ):
        with pytest.raises(InsufficientStockAtScopeError) as exc:
            ledger.withdraw(self._withdraw(stocked, site, locations["A-01"], test_actor_id, "11"))

        assert exc.value.available_qty.startswith("10")
        assert _movements(session, stocked, MovementKind.CONSUMPTION) == []
        rejected = [r for r in captured_logs() if r["message"] == "ledger_request_rejected"]
        assert rejected[0]["error_code"] == "INSUFFICIENT_STOCK_AT_SCOPE"
        assert rejected[0]["operation"] == "withdraw"

    def test_site_stock_elsewhere_does_not_count(self, ledger, site, locations, stocked, test_actor_id):
        with pytest.raises(InsufficientStockAtScopeError):
            ledger.withdraw(self._withdraw(stocked, site, locations["B-01"], test_actor_id, "1"))

    def test_location_of_other_site(self, session, ledger, site, other_site, stocked, test_actor_id):
        foreign = Location(site_id=other_site.id, code="X-01")
        session.add(foreign)
        session.flush()
        with pytest.raises(LocationNotFoundError):
            ledger.withdraw(self._withdraw(stocked, site, foreign, test_actor_id, "1"))

    def test_inactive_location(self, session, ledger, site, locations, stocked, test_actor_id):
        loc = locations["A-01"]
        loc.is_active = False
        session.flush()
        with pytest.raises(LocationNotFoundError):
            ledger.withdraw(self._withdraw(stocked, site, loc, test_actor_id, "1"))


class TestApproveCount:
    def test_count_delta_applied(self, session, ledger, site, stocked, test_actor_id):
        session_id = uuid4()
        result = ledger.approve_count(
            CountApprovalCommand(
                product_id=stocked.id,
                site_id=site.id,
                actor_id=test_actor_id,
                quantity_delta=Decimal("-3"),
                count_session_id=session_id,
            )
        )
        assert result.snapshot_qty(StockScope.SITE, site.id) == Decimal("7")
        movement = session.get(Movement, result.movement_id)
        assert movement.kind == "count"
        assert movement.note == f"Count session {session_id}"

    def test_same_line_applied_once(self, session, ledger, site, stocked, test_actor_id, captured_logs):
        command = CountApprovalCommand(
            product_id=stocked.id,
            site_id=site.id,
            actor_id=test_actor_id,
            quantity_delta=Decimal("-3"),
            count_session_id=uuid4(),
        )
        first = ledger.approve_count(command)
        again = ledger.approve_count(command)

        assert again.movement_ids == ()
        assert again.already_applied_movement_id == first.movement_id
        assert len(_movements(session, stocked, MovementKind.COUNT)) == 1
        assert StockSelector(session).site_qty(stocked.id, site.id) == Decimal("7")
        assert any(r["message"] == "count_line_already_applied" for r in captured_logs())

    def test_location_scoped_lines_applied_per_location(
        self, session, ledger, site, locations, stocked, test_actor_id
    ):
        count_session_id = uuid4()
        for code in ("A-01", "B-01", "A-01"):
            ledger.approve_count(
                CountApprovalCommand(
                    product_id=stocked.id,
                    site_id=site.id,
                    actor_id=test_actor_id,
                    quantity_delta=Decimal("2"),
                    location_id=locations[code].id,
                    count_session_id=count_session_id,
                )
            )

        stock = StockSelector(session)
        assert len(_movements(session, stocked, MovementKind.COUNT)) == 2
        assert stock.location_qty(stocked.id, locations["A-01"].id) == Decimal("12")
        assert stock.location_qty(stocked.id, locations["B-01"].id) == Decimal("2")
        assert stock.site_qty(stocked.id, site.id) == Decimal("14")

    def test_approvals_without_session_not_deduplicated(self, session, ledger, site, stocked, test_actor_id):
        command = CountApprovalCommand(
            product_id=stocked.id,
            site_id=site.id,
            actor_id=test_actor_id,
            quantity_delta=Decimal("1"),
        )
        ledger.approve_count(command)
        ledger.approve_count(command)
        assert len(_movements(session, stocked, MovementKind.COUNT)) == 2

    def test_count_floors_at_zero(self, session, ledger, site, stocked, test_actor_id):
        result = ledger.approve_count(
            CountApprovalCommand(
                product_id=stocked.id,
                site_id=site.id,
                actor_id=test_actor_id,
                quantity_delta=Decimal("-25"),
            )
        )
        assert result.snapshot_qty(StockScope.SITE, site.id) == Decimal("0")
        # the ledger keeps the full approved difference
        assert session.get(Movement, result.movement_id).quantity == Decimal("-25")

    def test_delta_rounding_to_zero_rejected(self, session, ledger, site, stocked, test_actor_id):
        with pytest.raises(ValidationError):
            ledger.approve_count(
                CountApprovalCommand(
                    product_id=stocked.id,
                    site_id=site.id,
                    actor_id=test_actor_id,
                    quantity_delta=Decimal("0.0000001"),
                )
            )
        assert _movements(session, stocked, MovementKind.COUNT) == []


class TestInitialCount:
    def test_sets_site_quantity(self, session, ledger, site, make_product, test_actor_id):
        product = make_product()
        result = ledger.record_initial_count(
            InitialCountCommand(
                product_id=product.id,
                site_id=site.id,
                actor_id=test_actor_id,
                counted_qty=Decimal("8"),
            )
        )
        assert result.quantity == Decimal("8")
        assert result.snapshot_qty(StockScope.SITE, site.id) == Decimal("8")
        assert session.get(Movement, result.movement_id).kind == "initial_count"

    def test_location_count_records_delta(self, session, ledger, site, locations, stocked, test_actor_id):
        loc = locations["A-01"]
        result = ledger.record_initial_count(
            InitialCountCommand(
                product_id=stocked.id,
                site_id=site.id,
                actor_id=test_actor_id,
                counted_qty=Decimal("4"),
                location_id=loc.id,
            )
        )
        assert result.quantity == Decimal("-6")
        stock = StockSelector(session)
        assert stock.location_qty(stocked.id, loc.id) == Decimal("4")
        assert stock.site_qty(stocked.id, site.id) == Decimal("4")

    def test_unchanged_count_writes_nothing(self, session, ledger, site, stocked, test_actor_id):
        before = len(_movements(session, stocked))
        result = ledger.record_initial_count(
            InitialCountCommand(
                product_id=stocked.id,
                site_id=site.id,
                actor_id=test_actor_id,
                counted_qty=Decimal("10"),
            )
        )
        assert result.movement_ids == ()
        assert result.quantity == Decimal("0")
        assert len(_movements(session, stocked)) == before


class TestTransfer:
    def _transfer(self, product, site, src, dst, actor_id, quantity):
        return TransferCommand(
            product_id=product.id,
            site_id=site.id,
            from_location_id=src.id,
            to_location_id=dst.id,
            actor_id=actor_id,
            quantity=Decimal(quantity),
        )

    def test_moves_between_locations(self, session, ledger, site, locations, stocked, test_actor_id):
        src, dst = locations["A-01"], locations["B-01"]
        result = ledger.transfer(self._transfer(stocked, site, src, dst, test_actor_id, "4"))

        assert len(result.movement_ids) == 2
        out_mv, in_mv = (session.get(Movement, mid) for mid in result.movement_ids)
        assert (out_mv.kind, out_mv.quantity, out_mv.location_id) == ("transfer_out", Decimal("-4"), src.id)
        assert (in_mv.kind, in_mv.quantity, in_mv.location_id) == ("transfer_in", Decimal("4"), dst.id)

        stock = StockSelector(session)
        assert stock.location_qty(stocked.id, src.id) == Decimal("6")
        assert stock.location_qty(stocked.id, dst.id) == Decimal("4")
        assert stock.site_qty(stocked.id, site.id) == Decimal("10")
        assert result.snapshot_qty(StockScope.SITE, site.id) is None

    def test_origin_must_hold_quantity(self, session, ledger, site, locations, stocked, test_actor_id):
        with pytest.raises(InsufficientStockAtScopeError):
            ledger.transfer(
                self._transfer(stocked, site, locations["B-01"], locations["A-01"], test_actor_id, "1")
            )
        assert _movements(session, stocked, MovementKind.TRANSFER_OUT) == []


class TestSnapshotStepFailure:
    def test_failure_reported_and_movement_kept(
        self, session, ledger, site, make_product, test_actor_id, monkeypatch
    ):
        product = make_product(unit_cost="5")

        def fail(*args, **kwargs):
            raise SQLAlchemyError("snapshot row locked")

        monkeypatch.setattr(SnapshotService, "apply_delta", fail)

        result = ledger.receive(
            ReceiveCommand(
                product_id=product.id,
                site_id=site.id,
                actor_id=test_actor_id,
                quantity=Decimal("10"),
                input_unit_cost=Decimal("3"),
            )
        )

        assert result.failure.step is LedgerStep.SNAPSHOT_UPSERT
        assert result.snapshots == ()
        assert result.cost_update is None
        assert len(_movements(session, product)) == 1
        assert StockSelector(session).site_qty(product.id, site.id) == Decimal("0")

    def test_movement_insert_failure_raises(self, session, ledger, site, make_product, test_actor_id, monkeypatch):
        product = make_product()

        def fail(*args, **kwargs):
            raise SQLAlchemyError("ledger table unavailable")

        monkeypatch.setattr(session, "add_all", fail)

        with pytest.raises(StorageWriteError) as exc:
            ledger.adjust(_adjust(product, site, test_actor_id, Decimal("1"), direction="increase"))
        assert exc.value.step == "movement_insert"
        assert StockSelector(session).snapshot_rows(product.id) == []


class TestRequestLogging:
    def test_request_logs_share_correlation_id(self, ledger, site, stocked, test_actor_id, captured_logs):
        ledger.adjust(_adjust(stocked, site, test_actor_id, Decimal("1")))

        records = [r for r in captured_logs() if r.get("operation") == "adjust"]
        messages = [r["message"] for r in records]
        assert messages[0] == "ledger_request_started"
        assert "movement_appended" in messages
        assert "snapshot_delta_applied" in messages
        assert messages[-1] == "ledger_request_completed"
        assert len({r["correlation_id"] for r in records}) == 1
        assert all(r["actor_id"] == str(test_actor_id) for r in records)
