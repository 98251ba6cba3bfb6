from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from panaderia.core.logging_config import get_logger
from panaderia.db.session import get_db


router = APIRouter()
logger = get_logger("api.public")


@router.get("/health")
def public_health(db: Session = Depends(get_db)) -> dict:
    try:
        db.execute(text("SELECT 1"))
    except SQLAlchemyError as exc:
        logger.error("Base de datos no disponible: %s", exc)
        raise HTTPException(status_code=503, detail="Base de datos no disponible") from exc
    return {"status": "ok", "service": "Panaderia Inventario"}
