"""
inventory_services.reconciliation -- snapshot vs. movement-ledger checks.

Responsibility:
    Compares stored quantity snapshots with the sum of the movements for
    the same scope, and rewrites drifted snapshots from the ledger.

Architecture position:
    Services -- recovery path.  The movement ledger is the source of truth;
    a snapshot left behind by a failed ``snapshot_upsert`` step is repaired
    here.

Invariants enforced:
    - ``rebuild`` only ever writes the ledger sum; it never writes movements.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from uuid import UUID

from sqlalchemy.orm import Session

from inventory_kernel.domain.values import StockScope, round_quantity
from inventory_kernel.logging_config import get_logger
from inventory_kernel.selectors.stock_selector import StockSelector
from inventory_kernel.services.snapshot_service import SnapshotService

logger = get_logger("services.reconciliation")


@dataclass(frozen=True)
class ReconciliationResult:
    product_id: UUID
    scope: StockScope
    scope_id: UUID
    snapshot_qty: Decimal
    ledger_qty: Decimal

    @property
    def difference(self) -> Decimal:
        return self.snapshot_qty - self.ledger_qty

    @property
    def in_balance(self) -> bool:
        return self.difference == 0


class SnapshotReconciliationService:
    """
    Verifies and rebuilds stock snapshots.

    Contract:
        ``verify`` is read-only.  ``rebuild`` flushes through
        SnapshotService and never commits.
    Non-goals:
        - Floored flows can leave a snapshot above the ledger sum on
          purpose; callers decide whether to rebuild those scopes.
    """

    def __init__(self, session: Session):
        self.session = session
        self._stock = StockSelector(session)
        self._snapshots = SnapshotService(session)

    def verify(
        self,
        product_id: UUID,
        site_id: UUID,
        location_id: UUID | None = None,
    ) -> ReconciliationResult:
        """Compare one scope's snapshot with its ledger sum."""
        if location_id is None:
            scope, scope_id = StockScope.SITE, site_id
        else:
            scope, scope_id = StockScope.LOCATION, location_id

        result = ReconciliationResult(
            product_id=product_id,
            scope=scope,
            scope_id=scope_id,
            snapshot_qty=round_quantity(self._stock.scope_qty(product_id, scope, scope_id)),
            ledger_qty=round_quantity(self._stock.ledger_sum(product_id, site_id, location_id)),
        )
        if not result.in_balance:
            logger.warning(
                "snapshot_drift_detected",
                extra={
                    "product_id": str(product_id),
                    "scope": scope.value,
                    "scope_id": str(scope_id),
                    "snapshot_qty": str(result.snapshot_qty),
                    "ledger_qty": str(result.ledger_qty),
                },
            )
        return result

    def verify_product(self, product_id: UUID) -> list[ReconciliationResult]:
        """Verify every stored snapshot of a product."""
        return [
            self.verify(
                product_id,
                row.site_id,
                row.scope_id if row.scope is StockScope.LOCATION else None,
            )
            for row in self._stock.snapshot_rows(product_id)
        ]

    def rebuild(
        self,
        product_id: UUID,
        site_id: UUID,
        location_id: UUID | None = None,
    ) -> ReconciliationResult:
        """
        Rewrite a scope's snapshot to its ledger sum.

        Returns the pre-rebuild comparison; a scope already in balance is
        left untouched.
        """
        result = self.verify(product_id, site_id, location_id)
        if not result.in_balance:
            self._snapshots.overwrite(product_id, result.scope, result.scope_id, result.ledger_qty)
            logger.info(
                "snapshot_rebuilt",
                extra={
                    "product_id": str(product_id),
                    "scope": result.scope.value,
                    "scope_id": str(result.scope_id),
                    "previous_qty": str(result.snapshot_qty),
                    "rebuilt_qty": str(result.ledger_qty),
                },
            )
        return result
