"""
ORM guards that keep the movement ledger append-only.

Movements are the audit trail behind every item quantity, so any UPDATE or
DELETE of an ``InventoryMovement`` flushed through a session is rejected
before SQL reaches the database and the transaction is aborted.

Bulk ``update()``/``delete()`` statements bypass mapper events; nothing in
this codebase issues them against ``inventory_movements``.
"""
from sqlalchemy import event

from panaderia.core.exceptions import ImmutableMovementError
from panaderia.models.inventory import InventoryMovement


def _reject_movement_update(mapper, connection, target: InventoryMovement) -> None:
    raise ImmutableMovementError(target.id, "update")


def _reject_movement_delete(mapper, connection, target: InventoryMovement) -> None:
    raise ImmutableMovementError(target.id, "delete")


def register_immutability_listeners() -> None:
    if not event.contains(InventoryMovement, "before_update", _reject_movement_update):
        event.listen(InventoryMovement, "before_update", _reject_movement_update)
    if not event.contains(InventoryMovement, "before_delete", _reject_movement_delete):
        event.listen(InventoryMovement, "before_delete", _reject_movement_delete)
