"""
inventory_services.cost_service -- weighted-average cost recompute on receipt.

Responsibility:
    Locks the product row, reads its global quantity and current cost,
    runs CostEngine.weighted_average_cost, stores the new cost on the
    product and appends one ProductCostEvent.

Architecture position:
    Services -- stateful orchestration over engines + kernel.  Called by the
    movement ledger inside the ``cost_update`` savepoint.

Invariants enforced:
    - Mutual exclusion per product: the product row is read with
      ``SELECT ... FOR UPDATE`` before quantity-before and cost-before are
      read, so concurrent receipts of the same product serialize here.
    - Quantity-before is the sum of the product's site snapshots minus the
      quantity just received; the receipt's snapshot update has already
      been applied in the same transaction.
    - Cost events are append-only (db/immutability.py).

Failure modes:
    - ProductNotFoundError if the product disappeared.
    - SQLAlchemyError propagates; the ledger reports it as a
      ``cost_update`` step failure.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from inventory_engines.costing import CostEngine
from inventory_kernel.domain.clock import Clock, SystemClock
from inventory_kernel.domain.values import ZERO, CostBasis, round_quantity
from inventory_kernel.exceptions import ProductNotFoundError
from inventory_kernel.logging_config import get_logger
from inventory_kernel.models.movement import ProductCostEvent
from inventory_kernel.models.product import Product
from inventory_kernel.selectors.stock_selector import StockSelector

logger = get_logger("services.cost")


@dataclass(frozen=True)
class CostUpdate:
    """Outcome of one cost recompute."""

    event_id: UUID
    qty_before: Decimal
    cost_before: Decimal
    qty_in: Decimal
    cost_in: Decimal
    cost_after: Decimal


class CostUpdateService:
    """
    Applies receipts to a product's weighted-average cost.

    Contract:
        Flushes; never commits.  Must run inside the caller's transaction
        so the row lock is held until that transaction ends.
    """

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        engine: CostEngine | None = None,
    ):
        self.session = session
        self._clock = clock or SystemClock()
        self._engine = engine or CostEngine()
        self._stock = StockSelector(session)

    def lock_product(self, product_id: UUID) -> Product:
        product = self.session.execute(
            select(Product)
            .where(Product.id == product_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
        if product is None:
            raise ProductNotFoundError(str(product_id))
        return product

    def apply_receipt(
        self,
        product_id: UUID,
        site_id: UUID,
        movement_id: UUID,
        qty_in: Decimal,
        cost_in: Decimal,
        cost_basis: CostBasis,
        source: str,
        actor_id: UUID,
    ) -> CostUpdate:
        """Re-average the product cost for a receipt already on the snapshots."""
        product = self.lock_product(product_id)

        total_qty = self._stock.product_total_qty(product_id)
        qty_before = round_quantity(max(total_qty - qty_in, ZERO))
        cost_before = round_quantity(product.unit_cost)
        cost_after = self._engine.weighted_average_cost(qty_before, cost_before, qty_in, cost_in)

        product.unit_cost = cost_after
        event = ProductCostEvent(
            product_id=product_id,
            site_id=site_id,
            source=source,
            qty_before=qty_before,
            qty_in=round_quantity(qty_in),
            cost_before=cost_before,
            cost_in=round_quantity(cost_in),
            cost_after=cost_after,
            cost_basis=CostBasis(cost_basis).value,
            movement_id=movement_id,
            occurred_at=self._clock.now(),
            created_by_id=actor_id,
        )
        self.session.add(event)
        self.session.flush()

        logger.info(
            "cost_updated",
            extra={
                "product_id": str(product_id),
                "movement_id": str(movement_id),
                "qty_before": str(qty_before),
                "cost_before": str(cost_before),
                "qty_in": str(qty_in),
                "cost_in": str(cost_in),
                "cost_after": str(cost_after),
                "cost_basis": CostBasis(cost_basis).value,
            },
        )
        return CostUpdate(
            event_id=event.id,
            qty_before=qty_before,
            cost_before=cost_before,
            qty_in=round_quantity(qty_in),
            cost_in=round_quantity(cost_in),
            cost_after=cost_after,
        )
