"""
ORM-Level Immutability Enforcement for the inventory ledger.

===============================================================================
WHY THIS EXISTS
===============================================================================

The movement ledger is the source of truth for stock.  Snapshots can be
rebuilt from it at any time (see SnapshotReconciliationService), which only
works if no movement is ever edited or removed.  Corrections are made with
offsetting movements.  The same holds for product cost events: they are the
audit trail of every weighted-average recomputation.

SQLAlchemy fires events before UPDATE/DELETE reach the database:

    session.flush()
         |
         v
    [before_update event] --> _check_*_immutability() --> ImmutabilityViolationError
         |
         v
    [before_delete event] --> _check_*_delete() --------> ImmutabilityViolationError
         |
         v
    SQL sent to database (only if checks pass)

===============================================================================
PROTECTED ENTITIES
===============================================================================

Entity             | When Immutable         | Why
-------------------|------------------------|-----------------------------------
Movement           | ALWAYS (from creation) | Snapshots are derived from it
ProductCostEvent   | ALWAYS (from creation) | Cost audit trail

updated_at/updated_by_id are audit metadata and may still change.

===============================================================================
USAGE
===============================================================================

    from inventory_kernel.db.immutability import register_immutability_listeners
    register_immutability_listeners()  # once at startup

To temporarily disable (TESTS ONLY):

    unregister_immutability_listeners()
"""

from sqlalchemy import event, inspect

from inventory_kernel.exceptions import ImmutabilityViolationError
from inventory_kernel.logging_config import get_logger

logger = get_logger("db.immutability")

_AUDIT_FIELDS = frozenset({"updated_at", "updated_by_id"})


def _changed_fields(target) -> list[str]:
    insp = inspect(target)
    return [
        attr.key
        for attr in insp.attrs
        if attr.key not in _AUDIT_FIELDS and attr.history.has_changes()
    ]


def _block(entity_type: str, target, operation: str, reason: str) -> None:
    logger.error(
        "immutability_violation_blocked",
        extra={
            "entity_type": entity_type,
            "entity_id": str(target.id),
            "operation": operation,
        },
    )
    raise ImmutabilityViolationError(
        entity_type=entity_type,
        entity_id=str(target.id),
        reason=reason,
    )


def _check_movement_immutability(mapper, connection, target):
    """Prevent updates to Movement records (audit fields excepted)."""
    fields = _changed_fields(target)
    if fields:
        _block(
            "Movement",
            target,
            "UPDATE",
            f"Movements are append-only; cannot modify {', '.join(sorted(fields))}",
        )


def _check_movement_delete(mapper, connection, target):
    """Prevent deletion of Movement records."""
    _block("Movement", target, "DELETE", "Movements cannot be deleted")


def _check_cost_event_immutability(mapper, connection, target):
    """Prevent updates to ProductCostEvent records (audit fields excepted)."""
    fields = _changed_fields(target)
    if fields:
        _block(
            "ProductCostEvent",
            target,
            "UPDATE",
            f"Cost events are immutable; cannot modify {', '.join(sorted(fields))}",
        )


def _check_cost_event_delete(mapper, connection, target):
    """Prevent deletion of ProductCostEvent records."""
    _block("ProductCostEvent", target, "DELETE", "Cost events cannot be deleted")


def register_immutability_listeners():
    """
    Register all immutability enforcement event listeners.

    Idempotent: already-registered listeners are left alone.
    """
    from inventory_kernel.models.movement import Movement, ProductCostEvent

    for target, event_name, fn in (
        (Movement, "before_update", _check_movement_immutability),
        (Movement, "before_delete", _check_movement_delete),
        (ProductCostEvent, "before_update", _check_cost_event_immutability),
        (ProductCostEvent, "before_delete", _check_cost_event_delete),
    ):
        if not event.contains(target, event_name, fn):
            event.listen(target, event_name, fn)


def _safe_remove_listener(target, event_name, listener_fn):
    """Safely remove an event listener, ignoring if not registered."""
    if event.contains(target, event_name, listener_fn):
        event.remove(target, event_name, listener_fn)


def unregister_immutability_listeners():
    """
    Remove immutability enforcement event listeners.

    WARNING: Only use this in tests that need to violate immutability on
    purpose (e.g. to corrupt a ledger before a reconciliation check).
    """
    from inventory_kernel.models.movement import Movement, ProductCostEvent

    _safe_remove_listener(Movement, "before_update", _check_movement_immutability)
    _safe_remove_listener(Movement, "before_delete", _check_movement_delete)
    _safe_remove_listener(ProductCostEvent, "before_update", _check_cost_event_immutability)
    _safe_remove_listener(ProductCostEvent, "before_delete", _check_cost_event_delete)
