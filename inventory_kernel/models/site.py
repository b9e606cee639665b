"""
Module: inventory_kernel.models.site
Responsibility: Sites, their physical locations, the administrator-configured
    pick sequence over those locations, and per-site cost policy.
Architecture position: Kernel > Models.  May import from db/ and domain/values.py only.
"""

from decimal import Decimal
from uuid import UUID

from sqlalchemy import Boolean, ForeignKey, Index, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from inventory_kernel.db.base import Base
from inventory_kernel.domain.values import CostBasis


class Site(Base):
    __tablename__ = "inventory_sites"

    __table_args__ = (UniqueConstraint("code", name="uq_inventory_site_code"),)

    code: Mapped[str] = mapped_column(String(30), nullable=False)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)


class Location(Base):
    """A physical location (bin, shelf, cold room) inside one site."""

    __tablename__ = "inventory_locations"

    __table_args__ = (
        UniqueConstraint("site_id", "code", name="uq_inventory_location_site_code"),
        Index("idx_inventory_location_site", "site_id"),
    )

    site_id: Mapped[UUID] = mapped_column(ForeignKey("inventory_sites.id"), nullable=False)
    code: Mapped[str] = mapped_column(String(30), nullable=False)
    zone: Mapped[str | None] = mapped_column(String(50), nullable=True)
    description: Mapped[str | None] = mapped_column(String(200), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    @property
    def label(self) -> str:
        return f"{self.code} - {self.zone}" if self.zone else self.code

    def __repr__(self) -> str:
        return f"<Location {self.code} site={self.site_id}>"


class LocationPickPriority(Base):
    """
    Position of a location in the site's production pick sequence.

    Lower priority is picked first.  A NULL priority sorts after every
    explicit priority.
    """

    __tablename__ = "inventory_location_pick_priorities"

    __table_args__ = (Index("idx_inventory_pick_priority_site", "site_id"),)

    site_id: Mapped[UUID] = mapped_column(ForeignKey("inventory_sites.id"), nullable=False)
    location_id: Mapped[UUID] = mapped_column(
        ForeignKey("inventory_locations.id"),
        nullable=False,
    )
    priority: Mapped[int | None] = mapped_column(Integer, nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)


class SiteCostPolicy(Base):
    """Cost basis a site records receipts in.  Sites without a row use the configured default."""

    __tablename__ = "inventory_site_cost_policies"

    __table_args__ = (UniqueConstraint("site_id", name="uq_inventory_cost_policy_site"),)

    site_id: Mapped[UUID] = mapped_column(ForeignKey("inventory_sites.id"), nullable=False)
    cost_basis: Mapped[str] = mapped_column(
        String(10),
        nullable=False,
        default=CostBasis.NET.value,
    )
    tax_rate: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
