"""
Configuration Loader (``inventory_config.loader``).

Responsibility
--------------
Loads the YAML seed files and parses them into typed dataclasses: the unit
catalog seed (``UnitDefinition``) and ``InventorySettings``.  Runtime code
goes through ``inventory_config.get_active_settings()`` and
``inventory_config.load_unit_catalog()``.

Invariants enforced
-------------------
* Every parsed object is a frozen dataclass.
* Unknown keys in ``settings.yaml`` are rejected, not ignored.
* ``compute_checksum`` is a deterministic SHA-256 of the parsed content.

Failure modes
-------------
* Missing YAML file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Missing required keys  -> ``KeyError`` propagates.
* Invalid values  -> ``ValueError`` from the dataclass validators.
"""

from __future__ import annotations

import hashlib
import json
from pathlib import Path
from typing import Any

import yaml

from inventory_config.schema import FloorPolicy, InventorySettings
from inventory_engines.uom import UnitDefinition
from inventory_kernel.domain.values import UnitFamily

DEFAULTS_DIR = Path(__file__).parent / "defaults"

_SETTINGS_KEYS = frozenset(
    {
        "version",
        "default_stock_unit",
        "default_cost_basis",
        "default_tax_rate",
        "missing_pick_priority",
        "floor_at_zero",
    }
)


def load_yaml_file(path: Path) -> dict[str, Any]:
    """Load a single YAML file; an empty file yields an empty dict."""
    with open(path) as f:
        return yaml.safe_load(f) or {}


def compute_checksum(data: dict[str, Any]) -> str:
    """SHA-256 checksum of canonical JSON serialization."""
    canonical = json.dumps(data, sort_keys=True, default=str)
    return hashlib.sha256(canonical.encode()).hexdigest()


def parse_unit(data: dict[str, Any]) -> UnitDefinition:
    """
    Parse one unit entry.

    ``factor_to_base`` is read through ``str`` so YAML floats such as
    28.349523125 keep their written digits.
    """
    return UnitDefinition(
        code=data["code"],
        name=data["name"],
        family=UnitFamily(data["family"]),
        factor_to_base=str(data["factor_to_base"]),
        symbol=data.get("symbol"),
        display_decimals=data.get("display_decimals"),
        is_active=data.get("is_active", True),
    )


def load_unit_definitions(path: Path | None = None) -> tuple[UnitDefinition, ...]:
    """
    Load the seeded unit catalog.

    Raises:
        ValueError: duplicate unit code (after normalisation).
    """
    data = load_yaml_file(path or DEFAULTS_DIR / "units.yaml")
    units = tuple(parse_unit(entry) for entry in data.get("units", ()))
    seen: set[str] = set()
    for unit in units:
        if unit.code in seen:
            raise ValueError(f"Duplicate unit code in catalog: {unit.code!r}")
        seen.add(unit.code)
    return units


def parse_settings(data: dict[str, Any]) -> InventorySettings:
    unknown = set(data) - _SETTINGS_KEYS
    if unknown:
        raise ValueError(f"Unknown settings keys: {sorted(unknown)}")

    floor_data = data.get("floor_at_zero") or {}
    unknown_flows = set(floor_data) - set(FloorPolicy.__dataclass_fields__)
    if unknown_flows:
        raise ValueError(f"Unknown floor_at_zero flows: {sorted(unknown_flows)}")

    return InventorySettings(
        default_stock_unit=data.get("default_stock_unit", "un"),
        default_cost_basis=data.get("default_cost_basis", "net"),
        default_tax_rate=str(data.get("default_tax_rate", "0")),
        missing_pick_priority=data.get("missing_pick_priority", 9999),
        floor=FloorPolicy(**{k: bool(v) for k, v in floor_data.items()}),
        checksum=compute_checksum(data),
    )


def load_settings(path: Path | None = None) -> InventorySettings:
    """Load ``settings.yaml`` into InventorySettings."""
    return parse_settings(load_yaml_file(path or DEFAULTS_DIR / "settings.yaml"))
