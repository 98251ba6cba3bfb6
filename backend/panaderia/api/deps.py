from collections.abc import Callable

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import OAuth2PasswordBearer
from sqlalchemy import select
from sqlalchemy.orm import Session

from panaderia.core.config import get_settings
from panaderia.core.exceptions import (
    DuplicateItemError,
    InsufficientStockError,
    InvalidItemError,
    InvalidMovementError,
    InventoryError,
    ItemNotFoundError,
    LedgerBusyError,
    StorageFailureError,
)
from panaderia.core.logging_config import get_logger
from panaderia.core.security import decode_access_token
from panaderia.db.session import get_db
from panaderia.models.audit import AuditLog
from panaderia.models.user import User
from panaderia.services.coordinator import StockCoordinator
from panaderia.services.ledger import InventoryLedger
from panaderia.services.rbac import has_permission


logger = get_logger("api")
oauth2_scheme = OAuth2PasswordBearer(tokenUrl=f"{get_settings().api_v1_prefix}/auth/login")


def get_current_user(db: Session = Depends(get_db), token: str = Depends(oauth2_scheme)) -> User:
    claims, reason = decode_access_token(token)
    if not claims:
        detail = "Token expirado" if reason == "expired" else "Token invalido"
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=detail)

    user = db.scalar(select(User).where(User.email == claims.get("sub")))
    if not user or not user.is_active:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Usuario inactivo")
    if user.token_version != int(claims.get("ver", 0)):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Sesion expirada")
    return user


def require_permission(permission: str) -> Callable:
    def checker(current_user: User = Depends(get_current_user)) -> User:
        if not current_user.role or not has_permission(current_user.role.permissions, permission):
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Permiso insuficiente")
        return current_user

    return checker


def get_ledger(request: Request) -> InventoryLedger:
    return request.app.state.ledger


def get_coordinator(request: Request) -> StockCoordinator:
    return request.app.state.coordinator


def http_error(exc: InventoryError) -> HTTPException:
    if isinstance(exc, ItemNotFoundError):
        return HTTPException(status_code=404, detail="Materia prima no encontrada")
    if isinstance(exc, InsufficientStockError):
        return HTTPException(
            status_code=400,
            detail={
                "message": "Stock insuficiente",
                "available": float(exc.available),
                "requested": float(exc.requested),
            },
        )
    if isinstance(exc, (InvalidMovementError, InvalidItemError)):
        return HTTPException(status_code=400, detail=exc.reason)
    if isinstance(exc, DuplicateItemError):
        return HTTPException(status_code=409, detail=str(exc))
    if isinstance(exc, LedgerBusyError):
        return HTTPException(status_code=409, detail="Materia prima ocupada, intente de nuevo")
    if isinstance(exc, StorageFailureError):
        logger.error("Fallo de almacenamiento: %s", exc.reason)
        return HTTPException(status_code=503, detail="Error al registrar en la base de datos")
    logger.error("Error de inventario no mapeado: %s", exc)
    return HTTPException(status_code=500, detail="Error interno del servidor")


def log_action(
    db: Session,
    user_id: int,
    action: str,
    resource: str,
    resource_id: int | None = None,
    detail: str = "",
) -> None:
    db.add(AuditLog(user_id=user_id, action=action, resource=resource, resource_id=resource_id, detail=detail[:255]))
    db.commit()
