"""
ORM-Level Immutability Enforcement for the movement log.

SQLAlchemy fires mapper events before UPDATE/DELETE statements reach the
database.  Listeners registered here intercept those events for
InventoryMovement and raise ImmutabilityViolationError, aborting the flush:

    session.flush()
         |
         v
    [before_update] --> _check_movement_immutability() --> ImmutabilityViolationError
         |
    [before_delete] --> _check_movement_delete() -------> ImmutabilityViolationError
         |
         v
    SQL sent to database (only if checks pass)

Corrections to the log are new adjustment movements, never edits.

Usage:
    register_immutability_listeners()    # called by LedgerDatabase.create_tables

In tests that must bypass the rule:
    unregister_immutability_listeners()
    ...
    register_immutability_listeners()
"""

from sqlalchemy import event

from inventory_kernel.exceptions import ImmutabilityViolationError
from inventory_kernel.logging_config import get_logger

logger = get_logger("db.immutability")


def _check_movement_immutability(mapper, connection, target):
    """Prevent any update to an InventoryMovement row."""
    logger.error(
        "immutability_violation_blocked",
        extra={
            "entity_type": "InventoryMovement",
            "entity_id": str(target.id),
            "operation": "UPDATE",
        },
    )
    raise ImmutabilityViolationError(
        entity_type="InventoryMovement",
        entity_id=str(target.id),
        reason="Movements are append-only; record an adjustment instead",
    )


def _check_movement_delete(mapper, connection, target):
    """Prevent deletion of an InventoryMovement row."""
    logger.error(
        "immutability_violation_blocked",
        extra={
            "entity_type": "InventoryMovement",
            "entity_id": str(target.id),
            "operation": "DELETE",
        },
    )
    raise ImmutabilityViolationError(
        entity_type="InventoryMovement",
        entity_id=str(target.id),
        reason="Movements cannot be deleted",
    )


_LISTENERS = (
    ("before_update", _check_movement_immutability),
    ("before_delete", _check_movement_delete),
)


def register_immutability_listeners() -> None:
    """Register the movement listeners. Safe to call more than once."""
    from inventory_kernel.models.movement import InventoryMovement

    for event_name, listener_fn in _LISTENERS:
        if not event.contains(InventoryMovement, event_name, listener_fn):
            event.listen(InventoryMovement, event_name, listener_fn)


def unregister_immutability_listeners() -> None:
    """
    Remove the movement listeners.

    WARNING: Only use this in tests that intentionally violate immutability
    to verify detection.
    """
    from inventory_kernel.models.movement import InventoryMovement

    for event_name, listener_fn in _LISTENERS:
        if event.contains(InventoryMovement, event_name, listener_fn):
            event.remove(InventoryMovement, event_name, listener_fn)
