from panaderia.schemas.auth import LoginRequest, TokenResponse
from panaderia.schemas.inventory import (
    MovementCreate,
    RawMaterialCreate,
    RawMaterialUpdate,
    RestockRequest,
)
from panaderia.schemas.user import UserRead

__all__ = [
    "LoginRequest",
    "MovementCreate",
    "RawMaterialCreate",
    "RawMaterialUpdate",
    "RestockRequest",
    "TokenResponse",
    "UserRead",
]
