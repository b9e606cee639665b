"""
inventory_config -- single public entrypoint for inventory configuration.

Responsibility:
    ``get_active_settings()`` and ``load_unit_catalog()`` are the only ways
    runtime code obtains configuration.  YAML parsing lives in
    ``inventory_config.loader``.

Architecture position:
    Configuration sits above ``inventory_kernel`` and ``inventory_engines``
    and below ``inventory_services``.  The kernel never imports from here.

Audit relevance:
    Every ``get_active_settings()`` call emits ``INVENTORY_CONFIG_TRACE``
    with the settings checksum, so each ledger run can be tied to the exact
    settings that governed its floor and cost-basis decisions.
"""

from __future__ import annotations

import logging
from pathlib import Path

from inventory_config.loader import load_settings, load_unit_definitions
from inventory_config.schema import FloorPolicy, InventorySettings
from inventory_engines.uom import UnitCatalog

_logger = logging.getLogger("inventory_kernel.config")


def get_active_settings(config_dir: Path | None = None) -> InventorySettings:
    """
    Load the active inventory settings.

    Args:
        config_dir: Directory holding ``settings.yaml``.  Defaults to the
            packaged ``inventory_config/defaults``.
    """
    settings = load_settings(config_dir / "settings.yaml" if config_dir else None)
    _logger.info(
        "INVENTORY_CONFIG_TRACE",
        extra={
            "trace_type": "INVENTORY_CONFIG_TRACE",
            "checksum": settings.checksum,
            "default_cost_basis": settings.default_cost_basis.value,
            "default_stock_unit": settings.default_stock_unit,
        },
    )
    return settings


def load_unit_catalog(config_dir: Path | None = None) -> UnitCatalog:
    """Build the runtime unit catalog from the seeded ``units.yaml``."""
    return UnitCatalog(load_unit_definitions(config_dir / "units.yaml" if config_dir else None))


__all__ = [
    "FloorPolicy",
    "InventorySettings",
    "get_active_settings",
    "load_unit_catalog",
    "load_unit_definitions",
    "load_settings",
]
