"""
Module: inventory_kernel.models.unit
Responsibility: ORM persistence for the unit-of-measure catalog.
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - code is unique and stored lowercase (normalised by the loader and the
      catalog selector before any lookup).
    - factor_to_base > 0: the number of family base units in one unit.
    - Deactivated units stay in the table so historical movements keep their
      unit code, but they are excluded from the runtime catalog.
"""

from decimal import Decimal

from sqlalchemy import Boolean, CheckConstraint, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from inventory_kernel.db.base import Base


class Unit(Base):
    """One unit of measure within a family (volume, mass, count)."""

    __tablename__ = "inventory_units"

    __table_args__ = (
        UniqueConstraint("code", name="uq_inventory_unit_code"),
        CheckConstraint("factor_to_base > 0", name="ck_inventory_unit_factor_positive"),
    )

    code: Mapped[str] = mapped_column(String(20), nullable=False)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    family: Mapped[str] = mapped_column(String(20), nullable=False)
    factor_to_base: Mapped[Decimal] = mapped_column(nullable=False)
    symbol: Mapped[str | None] = mapped_column(String(20), nullable=True)
    display_decimals: Mapped[int | None] = mapped_column(Integer, nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    def __repr__(self) -> str:
        return f"<Unit {self.code} ({self.family}) x{self.factor_to_base}>"
