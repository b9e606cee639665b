"""
Module: inventory_kernel.models.recipe
Responsibility: Production recipes.  A recipe yields ``yield_qty`` stock units
    of its product from the quantities listed on its lines.
Architecture position: Kernel > Models.  May import from db/ only.
"""

from decimal import Decimal
from uuid import UUID

from sqlalchemy import Boolean, ForeignKey, Index
from sqlalchemy.orm import Mapped, mapped_column, relationship

from inventory_kernel.db.base import Base


class Recipe(Base):
    __tablename__ = "inventory_recipes"

    __table_args__ = (Index("idx_inventory_recipe_product", "product_id"),)

    product_id: Mapped[UUID] = mapped_column(
        ForeignKey("inventory_products.id"),
        nullable=False,
    )
    yield_qty: Mapped[Decimal] = mapped_column(nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    lines: Mapped[list["RecipeLine"]] = relationship(
        back_populates="recipe",
        lazy="selectin",
        order_by="RecipeLine.ingredient_product_id",
    )


class RecipeLine(Base):
    """Quantity of one ingredient (in its stock unit) per recipe yield."""

    __tablename__ = "inventory_recipe_lines"

    recipe_id: Mapped[UUID] = mapped_column(
        ForeignKey("inventory_recipes.id"),
        nullable=False,
    )
    ingredient_product_id: Mapped[UUID] = mapped_column(
        ForeignKey("inventory_products.id"),
        nullable=False,
    )
    quantity: Mapped[Decimal] = mapped_column(nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    recipe: Mapped[Recipe] = relationship(back_populates="lines")
