"""
Module: inventory_kernel.models.movement
Responsibility: The append-only movement ledger and the product cost event
    audit trail.
Architecture position: Kernel > Models.  May import from db/ only.

Invariants enforced:
    - Movement rows are never updated or deleted (db/immutability.py).
      Corrections are offsetting movements.
    - Movement.quantity is signed and expressed in the product's stock unit.
      conversion_factor_to_stock is always set, even when it is 1.
    - ProductCostEvent.cost_after is the weighted-average of (qty_before,
      cost_before, qty_in, cost_in).  Cost events are never updated.

Audit relevance:
    Summing Movement.quantity per (product, scope) reproduces every stock
    snapshot.  The cost event chain reproduces every unit cost change.
"""

from datetime import datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import DateTime, ForeignKey, Index, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from inventory_kernel.db.base import TrackedBase, UUIDString


class Movement(TrackedBase):
    """
    One signed stock change for a product at a scope.

    Contract:
        Created exactly once per stock-affecting action (a transfer writes
        one transfer_out and one transfer_in).  ``input_qty`` and
        ``input_unit_code`` record what was captured when it differed from
        the stock unit.
        ``count_session_id`` ties a count movement to the count line it
        applied; a line is applied at most once.
    """

    __tablename__ = "inventory_movements"

    __table_args__ = (
        Index("idx_inventory_movement_product_site", "product_id", "site_id"),
        Index("idx_inventory_movement_location", "product_id", "location_id"),
        Index("idx_inventory_movement_occurred_at", "occurred_at"),
        Index("idx_inventory_movement_count_session", "count_session_id", "product_id"),
    )

    product_id: Mapped[UUID] = mapped_column(
        ForeignKey("inventory_products.id"),
        nullable=False,
    )
    site_id: Mapped[UUID] = mapped_column(ForeignKey("inventory_sites.id"), nullable=False)
    location_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("inventory_locations.id"),
        nullable=True,
    )
    kind: Mapped[str] = mapped_column(String(20), nullable=False)
    quantity: Mapped[Decimal] = mapped_column(nullable=False)
    input_qty: Mapped[Decimal | None] = mapped_column(nullable=True)
    input_unit_code: Mapped[str | None] = mapped_column(String(20), nullable=True)
    conversion_factor_to_stock: Mapped[Decimal] = mapped_column(nullable=False)
    stock_unit_code: Mapped[str] = mapped_column(String(20), nullable=False)
    unit_cost: Mapped[Decimal | None] = mapped_column(nullable=True)
    line_total_cost: Mapped[Decimal | None] = mapped_column(nullable=True)
    note: Mapped[str | None] = mapped_column(Text, nullable=True)
    related_batch_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    count_session_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    occurred_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    def __repr__(self) -> str:
        return f"<Movement {self.kind} {self.quantity} {self.stock_unit_code} product={self.product_id}>"


class ProductCostEvent(TrackedBase):
    """Before/after record of one weighted-average cost recomputation."""

    __tablename__ = "inventory_product_cost_events"

    __table_args__ = (
        Index("idx_inventory_cost_event_product", "product_id", "occurred_at"),
    )

    product_id: Mapped[UUID] = mapped_column(
        ForeignKey("inventory_products.id"),
        nullable=False,
    )
    site_id: Mapped[UUID] = mapped_column(ForeignKey("inventory_sites.id"), nullable=False)
    source: Mapped[str] = mapped_column(String(50), nullable=False)
    qty_before: Mapped[Decimal] = mapped_column(nullable=False)
    qty_in: Mapped[Decimal] = mapped_column(nullable=False)
    cost_before: Mapped[Decimal] = mapped_column(nullable=False)
    cost_in: Mapped[Decimal] = mapped_column(nullable=False)
    cost_after: Mapped[Decimal] = mapped_column(nullable=False)
    cost_basis: Mapped[str] = mapped_column(String(10), nullable=False)
    movement_id: Mapped[UUID] = mapped_column(
        ForeignKey("inventory_movements.id"),
        nullable=False,
    )
    occurred_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
