"""
Typed errors raised by the inventory core.

Every error carries a machine-readable ``code`` and the structured data the
HTTP layer needs to render a precise message, so callers catch by type and
never parse message strings.

    InventoryError
    +-- ItemNotFoundError
    +-- InvalidMovementError
    +-- InvalidItemError
    +-- DuplicateItemError
    +-- InsufficientStockError
    +-- LedgerBusyError          (retryable)
    +-- StorageFailureError      (retryable)
    +-- ImmutableMovementError
"""

from decimal import Decimal


class InventoryError(Exception):
    """Base class for inventory core errors."""

    code: str = "INVENTORY_ERROR"
    retryable: bool = False


class ItemNotFoundError(InventoryError):
    """The raw material does not exist, or is inactive where an active one is required."""

    code: str = "ITEM_NOT_FOUND"

    def __init__(self, item_id: int, inactive: bool = False):
        self.item_id = item_id
        self.inactive = inactive
        state = "inactiva" if inactive else "no encontrada"
        super().__init__(f"Materia prima {item_id} {state}")


class InvalidMovementError(InventoryError):
    code: str = "INVALID_MOVEMENT"

    def __init__(self, reason: str):
        self.reason = reason
        super().__init__(reason)


class InvalidItemError(InventoryError):
    code: str = "INVALID_ITEM"

    def __init__(self, reason: str):
        self.reason = reason
        super().__init__(reason)


class DuplicateItemError(InventoryError):
    code: str = "DUPLICATE_ITEM"

    def __init__(self, name: str):
        self.name = name
        super().__init__(f"Ya existe una materia prima activa llamada '{name}'")


class InsufficientStockError(InventoryError):
    """An outgoing or spoilage movement asked for more than is available."""

    code: str = "INSUFFICIENT_STOCK"

    def __init__(self, item_id: int, available: Decimal, requested: Decimal):
        self.item_id = item_id
        self.available = available
        self.requested = requested
        super().__init__(
            f"Stock insuficiente para materia prima {item_id}: disponible {available}, solicitado {requested}"
        )


class LedgerBusyError(InventoryError):
    """The item's exclusive section could not be acquired before the deadline."""

    code: str = "LEDGER_BUSY"
    retryable: bool = True

    def __init__(self, item_id: int, timeout: float):
        self.item_id = item_id
        self.timeout = timeout
        super().__init__(f"Materia prima {item_id} ocupada; no se obtuvo acceso en {timeout:.2f}s")


class StorageFailureError(InventoryError):
    """Persistence failed; nothing was committed."""

    code: str = "STORAGE_FAILURE"
    retryable: bool = True

    def __init__(self, reason: str):
        self.reason = reason
        super().__init__(f"Error de almacenamiento: {reason}")


class ImmutableMovementError(InventoryError):
    code: str = "IMMUTABLE_MOVEMENT"

    def __init__(self, movement_id: int | None, operation: str):
        self.movement_id = movement_id
        self.operation = operation
        super().__init__(f"El movimiento {movement_id} es inmutable ({operation} rechazado)")
