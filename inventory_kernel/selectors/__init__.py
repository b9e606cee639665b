"""Read-only selectors for stock snapshots, ledger sums and reference data."""

from inventory_kernel.selectors.base import BaseSelector
from inventory_kernel.selectors.catalog_selector import (
    CatalogSelector,
    CostPolicy,
    ProductInfo,
    RecipeInfo,
)
from inventory_kernel.selectors.stock_selector import SnapshotRow, StockSelector

__all__ = [
    "BaseSelector",
    "CatalogSelector",
    "CostPolicy",
    "ProductInfo",
    "RecipeInfo",
    "SnapshotRow",
    "StockSelector",
]
