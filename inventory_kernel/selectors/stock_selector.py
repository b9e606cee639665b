"""
Module: inventory_kernel.selectors.stock_selector
Responsibility: Read-only stock queries: snapshot quantities per scope and
    the movement-ledger sums that reproduce them.
Architecture position: Kernel > Selectors.

Invariants enforced:
    - A missing snapshot row reads as zero.
    - Ledger sums are computed from Movement rows at query time; they are the
      source of truth that reconciliation compares snapshots against.
"""

from dataclasses import dataclass
from decimal import Decimal
from uuid import UUID

from sqlalchemy import func, select

from inventory_engines.allocation import LocationStock
from inventory_kernel.domain.values import ZERO, MovementKind, StockScope
from inventory_kernel.models.movement import Movement
from inventory_kernel.models.site import Location
from inventory_kernel.models.stock import StockByLocation, StockBySite
from inventory_kernel.selectors.base import BaseSelector


@dataclass(frozen=True)
class SnapshotRow:
    """One stored snapshot, as listed for reconciliation."""

    product_id: UUID
    scope: StockScope
    scope_id: UUID
    site_id: UUID
    current_qty: Decimal


class StockSelector(BaseSelector[StockBySite]):
    """Snapshot and ledger reads for one session."""

    def site_qty(self, product_id: UUID, site_id: UUID) -> Decimal:
        value = self.session.execute(
            select(StockBySite.current_qty).where(
                StockBySite.product_id == product_id,
                StockBySite.site_id == site_id,
            )
        ).scalar_one_or_none()
        return value if value is not None else ZERO

    def location_qty(self, product_id: UUID, location_id: UUID, for_update: bool = False) -> Decimal:
        """
        Stored quantity at a location.

        With ``for_update`` the snapshot row stays locked until the caller's
        transaction ends, so a check against it holds for the write that
        follows.  A missing row takes no lock and reads as zero.
        """
        stmt = select(StockByLocation.current_qty).where(
            StockByLocation.product_id == product_id,
            StockByLocation.location_id == location_id,
        )
        if for_update:
            stmt = stmt.with_for_update()
        value = self.session.execute(stmt).scalar_one_or_none()
        return value if value is not None else ZERO

    def scope_qty(self, product_id: UUID, scope: StockScope, scope_id: UUID) -> Decimal:
        if StockScope(scope) is StockScope.SITE:
            return self.site_qty(product_id, scope_id)
        return self.location_qty(product_id, scope_id)

    def product_total_qty(self, product_id: UUID) -> Decimal:
        """Sum of the product's site snapshots across every site."""
        value = self.session.execute(
            select(func.sum(StockBySite.current_qty)).where(
                StockBySite.product_id == product_id
            )
        ).scalar()
        return Decimal(value) if value is not None else ZERO

    def location_stocks(self, product_id: UUID, site_id: UUID) -> list[LocationStock]:
        """
        Per-location stock of a product at the active locations of a site.

        Ordered by location code so callers see a stable list; pick order is
        applied by the allocation planner.
        """
        rows = self.session.execute(
            select(StockByLocation.location_id, StockByLocation.current_qty, Location.code)
            .join(Location, Location.id == StockByLocation.location_id)
            .where(
                StockByLocation.product_id == product_id,
                Location.site_id == site_id,
                Location.is_active.is_(True),
            )
            .order_by(Location.code, Location.id)
        ).all()
        return [
            LocationStock(location_id=loc_id, available_qty=qty, sort_label=code)
            for loc_id, qty, code in rows
        ]

    def ledger_sum(
        self,
        product_id: UUID,
        site_id: UUID,
        location_id: UUID | None = None,
    ) -> Decimal:
        """
        Sum of movement quantities for a scope.

        Site scope sums every movement of the site, location-tagged or not;
        location scope sums only movements tagged with that location.
        """
        stmt = select(func.sum(Movement.quantity)).where(
            Movement.product_id == product_id,
            Movement.site_id == site_id,
        )
        if location_id is not None:
            stmt = stmt.where(Movement.location_id == location_id)
        value = self.session.execute(stmt).scalar()
        return Decimal(value) if value is not None else ZERO

    def applied_count_movement(
        self,
        count_session_id: UUID,
        product_id: UUID,
        site_id: UUID,
        location_id: UUID | None,
    ) -> UUID | None:
        """Id of the count movement that already applied this count line, if any."""
        stmt = select(Movement.id).where(
            Movement.count_session_id == count_session_id,
            Movement.product_id == product_id,
            Movement.site_id == site_id,
            Movement.kind == MovementKind.COUNT.value,
        )
        if location_id is None:
            stmt = stmt.where(Movement.location_id.is_(None))
        else:
            stmt = stmt.where(Movement.location_id == location_id)
        return self.session.execute(stmt.limit(1)).scalar_one_or_none()

    def movement_count(self, product_id: UUID) -> int:
        return self.session.execute(
            select(func.count(Movement.id)).where(Movement.product_id == product_id)
        ).scalar_one()

    def snapshot_rows(self, product_id: UUID) -> list[SnapshotRow]:
        """Every stored site and location snapshot of a product."""
        rows: list[SnapshotRow] = []
        for site_row in self.session.execute(
            select(StockBySite.site_id, StockBySite.current_qty)
            .where(StockBySite.product_id == product_id)
            .order_by(StockBySite.site_id)
        ):
            rows.append(
                SnapshotRow(
                    product_id=product_id,
                    scope=StockScope.SITE,
                    scope_id=site_row.site_id,
                    site_id=site_row.site_id,
                    current_qty=site_row.current_qty,
                )
            )
        for loc_row in self.session.execute(
            select(StockByLocation.location_id, StockByLocation.current_qty, Location.site_id)
            .join(Location, Location.id == StockByLocation.location_id)
            .where(StockByLocation.product_id == product_id)
            .order_by(StockByLocation.location_id)
        ):
            rows.append(
                SnapshotRow(
                    product_id=product_id,
                    scope=StockScope.LOCATION,
                    scope_id=loc_row.location_id,
                    site_id=loc_row.site_id,
                    current_qty=loc_row.current_qty,
                )
            )
        return rows
