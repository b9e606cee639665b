"""
Snapshot reconciliation against the movement ledger.
"""

from decimal import Decimal

from sqlalchemy import delete
from sqlalchemy.exc import SQLAlchemyError

from inventory_kernel.domain.commands import CountApprovalCommand, ReceiveCommand
from inventory_kernel.domain.values import CostingMode, StockScope
from inventory_kernel.models import StockByLocation
from inventory_kernel.selectors.stock_selector import StockSelector
from inventory_kernel.services.snapshot_service import SnapshotService
from inventory_services.reconciliation import SnapshotReconciliationService


def _receive(ledger, product, site, actor_id, qty, location=None):
    return ledger.receive(
        ReceiveCommand(
            product_id=product.id,
            site_id=site.id,
            actor_id=actor_id,
            quantity=Decimal(qty),
            location_id=location.id if location is not None else None,
        )
    )


class TestVerify:
    def test_ledger_and_snapshots_agree(self, session, ledger, site, locations, make_product, test_actor_id):
        product = make_product(costing_mode=CostingMode.MANUAL)
        _receive(ledger, product, site, test_actor_id, "7", locations["A-01"])
        _receive(ledger, product, site, test_actor_id, "3")

        service = SnapshotReconciliationService(session)
        site_result = service.verify(product.id, site.id)
        assert site_result.in_balance
        assert site_result.ledger_qty == Decimal("10")

        loc_result = service.verify(product.id, site.id, locations["A-01"].id)
        assert loc_result.scope is StockScope.LOCATION
        assert loc_result.snapshot_qty == Decimal("7")

    def test_verify_product_covers_every_snapshot(
        self, session, ledger, site, locations, make_product, test_actor_id
    ):
        product = make_product(costing_mode=CostingMode.MANUAL)
        _receive(ledger, product, site, test_actor_id, "2", locations["A-01"])
        _receive(ledger, product, site, test_actor_id, "5", locations["B-01"])

        results = SnapshotReconciliationService(session).verify_product(product.id)
        assert len(results) == 3
        assert all(r.in_balance for r in results)

    def test_floored_count_shows_as_drift(self, session, ledger, site, make_product, test_actor_id, captured_logs):
        product = make_product(costing_mode=CostingMode.MANUAL)
        _receive(ledger, product, site, test_actor_id, "4")
        ledger.approve_count(
            CountApprovalCommand(
                product_id=product.id,
                site_id=site.id,
                actor_id=test_actor_id,
                quantity_delta=Decimal("-10"),
            )
        )

        result = SnapshotReconciliationService(session).verify(product.id, site.id)
        assert result.snapshot_qty == Decimal("0")
        assert result.ledger_qty == Decimal("-6")
        assert result.difference == Decimal("6")
        assert any(r["message"] == "snapshot_drift_detected" for r in captured_logs())


class TestRebuild:
    def test_rebuild_after_failed_snapshot_step(
        self, session, ledger, site, make_product, test_actor_id, monkeypatch
    ):
        product = make_product(costing_mode=CostingMode.MANUAL)
        _receive(ledger, product, site, test_actor_id, "5")

        original = SnapshotService.apply_delta

        def fail(*args, **kwargs):
            raise SQLAlchemyError("snapshot row locked")

        monkeypatch.setattr(SnapshotService, "apply_delta", fail)
        failed = _receive(ledger, product, site, test_actor_id, "3")
        assert not failed.succeeded
        monkeypatch.setattr(SnapshotService, "apply_delta", original)

        service = SnapshotReconciliationService(session)
        before = service.rebuild(product.id, site.id)
        assert before.snapshot_qty == Decimal("5")
        assert before.ledger_qty == Decimal("8")

        assert StockSelector(session).site_qty(product.id, site.id) == Decimal("8")
        assert service.verify(product.id, site.id).in_balance

    def test_rebuild_creates_missing_row(self, session, ledger, site, locations, make_product, test_actor_id):
        product = make_product(costing_mode=CostingMode.MANUAL)
        _receive(ledger, product, site, test_actor_id, "4", locations["A-01"])
        session.execute(delete(StockByLocation).where(StockByLocation.product_id == product.id))

        loc = locations["A-01"]
        service = SnapshotReconciliationService(session)
        before = service.rebuild(product.id, site.id, loc.id)
        assert before.snapshot_qty == Decimal("0")
        assert StockSelector(session).location_qty(product.id, loc.id) == Decimal("4")

    def test_balanced_scope_untouched(self, session, ledger, site, make_product, test_actor_id, captured_logs):
        product = make_product(costing_mode=CostingMode.MANUAL)
        _receive(ledger, product, site, test_actor_id, "4")

        result = SnapshotReconciliationService(session).rebuild(product.id, site.id)
        assert result.in_balance
        assert not any(r["message"] == "snapshot_rebuilt" for r in captured_logs())
