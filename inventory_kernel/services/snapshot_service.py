"""
SnapshotService -- atomic add-delta updates of stock quantity snapshots.

Responsibility:
    Applies a signed delta to the (product, site) or (product, location)
    snapshot, creating the row on first use.

Architecture position:
    Kernel > Services.  Called by the movement ledger after the movement
    row is flushed.

Invariants enforced:
    - The new quantity is computed by the database in a single
      ``UPDATE ... SET current_qty = current_qty + :delta`` statement.
      Concurrent increments and decrements on the same row both land.
    - Floored flows use ``CASE WHEN current_qty + :delta < 0 THEN 0 ...``
      in the same statement, so the clamp is atomic as well.
    - First-insert races: the INSERT runs inside a savepoint; if another
      transaction created the row first, the savepoint is rolled back and
      the UPDATE is retried against the winner's row.

Failure modes:
    - SQLAlchemyError from the database propagates; the ledger turns it
      into a ``snapshot_upsert`` step failure.
"""

from decimal import Decimal
from uuid import UUID, uuid4

from sqlalchemy import case, insert, select, update
from sqlalchemy.exc import IntegrityError

from inventory_kernel.domain.values import ZERO, StockScope
from inventory_kernel.logging_config import get_logger
from inventory_kernel.models.stock import StockByLocation, StockBySite
from inventory_kernel.services.base import BaseService

logger = get_logger("services.snapshot")


def _target(scope: StockScope):
    if scope is StockScope.SITE:
        return StockBySite, StockBySite.site_id, "site_id"
    return StockByLocation, StockByLocation.location_id, "location_id"


class SnapshotService(BaseService):
    """
    Writes quantity snapshots.

    Contract:
        ``apply_delta`` returns the quantity stored after the update.
    Non-goals:
        - Does not check availability; callers that must not go below zero
          check first (withdrawal, transfer) or pass ``floor_at_zero``.
    """

    def apply_delta(
        self,
        product_id: UUID,
        scope: StockScope,
        scope_id: UUID,
        delta: Decimal,
        floor_at_zero: bool = False,
    ) -> Decimal:
        scope = StockScope(scope)
        model, scope_col, scope_attr = _target(scope)

        if self._update(model, scope_col, product_id, scope_id, delta, floor_at_zero):
            new_qty = self._read(model, scope_col, product_id, scope_id)
        else:
            initial = max(delta, ZERO) if floor_at_zero else delta
            try:
                with self.session.begin_nested():
                    self.session.execute(
                        insert(model).values(
                            id=uuid4(),
                            product_id=product_id,
                            current_qty=initial,
                            **{scope_attr: scope_id},
                        )
                    )
                new_qty = initial
            except IntegrityError:
                logger.debug(
                    "snapshot_insert_race_retry",
                    extra={
                        "product_id": str(product_id),
                        "scope": scope.value,
                        "scope_id": str(scope_id),
                    },
                )
                self._update(model, scope_col, product_id, scope_id, delta, floor_at_zero)
                new_qty = self._read(model, scope_col, product_id, scope_id)

        logger.info(
            "snapshot_delta_applied",
            extra={
                "product_id": str(product_id),
                "scope": scope.value,
                "scope_id": str(scope_id),
                "delta": str(delta),
                "new_qty": str(new_qty),
                "floor_at_zero": floor_at_zero,
            },
        )
        return new_qty

    def overwrite(
        self,
        product_id: UUID,
        scope: StockScope,
        scope_id: UUID,
        quantity: Decimal,
    ) -> None:
        """Set a snapshot to an absolute value.  Used only by reconciliation rebuilds."""
        scope = StockScope(scope)
        model, scope_col, scope_attr = _target(scope)
        result = self.session.execute(
            update(model)
            .where(model.product_id == product_id, scope_col == scope_id)
            .values(current_qty=quantity)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            self.session.execute(
                insert(model).values(
                    id=uuid4(),
                    product_id=product_id,
                    current_qty=quantity,
                    **{scope_attr: scope_id},
                )
            )
        logger.warning(
            "snapshot_overwritten",
            extra={
                "product_id": str(product_id),
                "scope": scope.value,
                "scope_id": str(scope_id),
                "quantity": str(quantity),
            },
        )

    def _update(self, model, scope_col, product_id, scope_id, delta, floor_at_zero) -> bool:
        new_value = model.current_qty + delta
        if floor_at_zero:
            new_value = case((new_value < 0, ZERO), else_=new_value)
        result = self.session.execute(
            update(model)
            .where(model.product_id == product_id, scope_col == scope_id)
            .values(current_qty=new_value)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount > 0

    def _read(self, model, scope_col, product_id, scope_id) -> Decimal:
        return self.session.execute(
            select(model.current_qty).where(
                model.product_id == product_id, scope_col == scope_id
            )
        ).scalar_one()
