from panaderia.models.audit import AuditLog
from panaderia.models.inventory import InventoryMovement, MovementType
from panaderia.models.raw_material import RawMaterial
from panaderia.models.role import Role
from panaderia.models.user import User

__all__ = [
    "AuditLog",
    "InventoryMovement",
    "MovementType",
    "RawMaterial",
    "Role",
    "User",
]
