"""
Module: inventory_kernel.models.product
Responsibility: ORM persistence for products, their suppliers and their
    capture-to-stock UOM profiles.
Architecture position: Kernel > Models.  May import from db/ and domain/values.py only.

Invariants enforced:
    - Product.unit_cost is the current weighted-average cost per stock unit.
      It is written only by the cost update step of a qualifying receipt (or
      by catalog management when costing_mode is manual).
    - ProductUomProfile ratios are both positive.  At most one active default
      profile per (product, usage_context) is a catalog-management invariant;
      the converter relies on it but does not re-check it.
"""

from decimal import Decimal
from uuid import UUID

from sqlalchemy import Boolean, CheckConstraint, ForeignKey, Index, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from inventory_kernel.db.base import Base
from inventory_kernel.domain.values import CostingMode, ProfileSource, UsageContext


class Product(Base):
    """
    A stocked product.

    Guarantees:
        - sku is unique.
        - stock_unit_code is the canonical unit for every snapshot and
          movement quantity of this product.
    """

    __tablename__ = "inventory_products"

    __table_args__ = (UniqueConstraint("sku", name="uq_inventory_product_sku"),)

    sku: Mapped[str] = mapped_column(String(64), nullable=False)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    stock_unit_code: Mapped[str] = mapped_column(String(20), nullable=False, default="un")
    unit_cost: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    costing_mode: Mapped[str] = mapped_column(
        String(30),
        nullable=False,
        default=CostingMode.MANUAL.value,
    )
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    suppliers: Mapped[list["ProductSupplier"]] = relationship(
        back_populates="product",
        lazy="selectin",
    )

    def __repr__(self) -> str:
        return f"<Product {self.sku}: {self.unit_cost}/{self.stock_unit_code}>"


class ProductSupplier(Base):
    """A supplier's purchase pack for a product (size, unit and price)."""

    __tablename__ = "inventory_product_suppliers"

    __table_args__ = (Index("idx_inventory_supplier_product", "product_id"),)

    product_id: Mapped[UUID] = mapped_column(
        ForeignKey("inventory_products.id"),
        nullable=False,
    )
    supplier_name: Mapped[str] = mapped_column(String(200), nullable=False)
    is_primary: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    purchase_pack_qty: Mapped[Decimal | None] = mapped_column(nullable=True)
    purchase_pack_unit_code: Mapped[str | None] = mapped_column(String(20), nullable=True)
    purchase_price: Mapped[Decimal | None] = mapped_column(nullable=True)

    product: Mapped[Product] = relationship(back_populates="suppliers")


class ProductUomProfile(Base):
    """
    Business-defined capture-to-stock ratio for one product.

    ``qty_in_input_unit`` of ``input_unit_code`` equal ``qty_in_stock_unit``
    stock units, e.g. 1 box = 24 un.
    """

    __tablename__ = "inventory_product_uom_profiles"

    __table_args__ = (
        Index("idx_inventory_uom_profile_product", "product_id", "usage_context"),
        CheckConstraint("qty_in_input_unit > 0", name="ck_uom_profile_input_positive"),
        CheckConstraint("qty_in_stock_unit > 0", name="ck_uom_profile_stock_positive"),
    )

    product_id: Mapped[UUID] = mapped_column(
        ForeignKey("inventory_products.id"),
        nullable=False,
    )
    label: Mapped[str] = mapped_column(String(100), nullable=False)
    input_unit_code: Mapped[str] = mapped_column(String(20), nullable=False)
    qty_in_input_unit: Mapped[Decimal] = mapped_column(nullable=False)
    qty_in_stock_unit: Mapped[Decimal] = mapped_column(nullable=False)
    usage_context: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default=UsageContext.GENERAL.value,
    )
    is_default: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    source: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default=ProfileSource.MANUAL.value,
    )

    def __repr__(self) -> str:
        return (
            f"<ProductUomProfile {self.label}: {self.qty_in_input_unit} "
            f"{self.input_unit_code} = {self.qty_in_stock_unit} ({self.usage_context})>"
        )
