"""Kernel services: flush-only writers the ledger orchestrates."""

from inventory_kernel.services.base import BaseService
from inventory_kernel.services.snapshot_service import SnapshotService

__all__ = [
    "BaseService",
    "SnapshotService",
]
