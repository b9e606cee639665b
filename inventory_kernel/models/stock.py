"""
Module: inventory_kernel.models.stock
Responsibility: Running quantity snapshots per (product, site) and per
    (product, location).
Architecture position: Kernel > Models.  May import from db/ only.

Invariants enforced:
    - One row per (product, scope), enforced by a unique constraint.  The
      first-insert race is resolved by SnapshotService retrying the add-delta
      update when its INSERT hits the constraint.
    - current_qty is only changed by a single ``current_qty = current_qty +
      :delta`` statement, never read-modify-write in application code.
    - current_qty equals the signed sum of movements for the scope, except
      where a flow floors the snapshot at zero.  The ledger is the source of
      truth; SnapshotReconciliationService rebuilds drifted rows.

Failure modes:
    - IntegrityError on duplicate (product, scope) INSERT, handled by the
      snapshot service.
"""

from datetime import datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import DateTime, ForeignKey, UniqueConstraint, func
from sqlalchemy.orm import Mapped, mapped_column

from inventory_kernel.db.base import Base


class StockBySite(Base):
    __tablename__ = "inventory_stock_by_site"

    __table_args__ = (
        UniqueConstraint("product_id", "site_id", name="uq_inventory_stock_site"),
    )

    product_id: Mapped[UUID] = mapped_column(
        ForeignKey("inventory_products.id"),
        nullable=False,
    )
    site_id: Mapped[UUID] = mapped_column(ForeignKey("inventory_sites.id"), nullable=False)
    current_qty: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )

    def __repr__(self) -> str:
        return f"<StockBySite product={self.product_id} site={self.site_id} qty={self.current_qty}>"


class StockByLocation(Base):
    __tablename__ = "inventory_stock_by_location"

    __table_args__ = (
        UniqueConstraint("product_id", "location_id", name="uq_inventory_stock_location"),
    )

    product_id: Mapped[UUID] = mapped_column(
        ForeignKey("inventory_products.id"),
        nullable=False,
    )
    location_id: Mapped[UUID] = mapped_column(
        ForeignKey("inventory_locations.id"),
        nullable=False,
    )
    current_qty: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )

    def __repr__(self) -> str:
        return (
            f"<StockByLocation product={self.product_id} "
            f"location={self.location_id} qty={self.current_qty}>"
        )
