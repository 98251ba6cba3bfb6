from datetime import date

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from panaderia.api.deps import get_coordinator, get_ledger, http_error, log_action, require_permission
from panaderia.core.exceptions import InventoryError
from panaderia.core.logging_config import get_logger
from panaderia.db.session import get_db
from panaderia.models.raw_material import RawMaterial
from panaderia.models.user import User
from panaderia.schemas.inventory import MovementCreate, RawMaterialCreate, RawMaterialUpdate, RestockRequest
from panaderia.services import catalog
from panaderia.services.coordinator import StockCoordinator
from panaderia.services.ledger import InventoryLedger, MovementRecord, MovementResult
from panaderia.services.scanner import find_critical_items


router = APIRouter()
logger = get_logger("api.inventory")


def serialize_item(item: RawMaterial) -> dict:
    return {
        "id": item.id,
        "name": item.name,
        "unit": item.unit,
        "quantity": float(item.quantity),
        "minimum": float(item.minimum),
        "supplier": item.supplier,
        "expiration_date": item.expiration_date.isoformat() if item.expiration_date else None,
        "is_active": item.is_active,
        "is_critical": item.is_active and item.quantity <= item.minimum,
    }


def serialize_movement(record: MovementRecord) -> dict:
    return {
        "id": record.id,
        "item_id": record.item_id,
        "movement_type": record.movement_type.value,
        "quantity": float(record.quantity),
        "reason": record.reason,
        "created_by": record.created_by,
        "created_at": record.created_at.isoformat(),
    }


def serialize_result(result: MovementResult) -> dict:
    return {
        "movement": serialize_movement(result.movement),
        "quantity_after": float(result.quantity_after),
    }


@router.get("/items")
def list_items(
    active: str = Query(default="true"),
    page: int = Query(default=1),
    limit: int = Query(default=50),
    db: Session = Depends(get_db),
    _: User = Depends(require_permission("inventory:view")),
) -> dict:
    try:
        result = catalog.list_items(db, active=active, page=page, limit=limit)
    except InventoryError as exc:
        raise http_error(exc) from exc
    return {
        "items": [serialize_item(item) for item in result.items],
        "page": result.page,
        "limit": result.limit,
        "total": result.total,
    }


@router.get("/items/{item_id}")
def get_item(
    item_id: int,
    db: Session = Depends(get_db),
    _: User = Depends(require_permission("inventory:view")),
) -> dict:
    try:
        item = catalog.get_item(db, item_id)
    except InventoryError as exc:
        raise http_error(exc) from exc
    return serialize_item(item)


@router.post("/items", status_code=201)
def create_item(
    payload: RawMaterialCreate,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_permission("inventory:write")),
) -> dict:
    try:
        item = catalog.create_item(
            db,
            name=payload.name,
            unit=payload.unit,
            quantity=payload.quantity,
            minimum=payload.minimum,
            supplier=payload.supplier,
            expiration_date=payload.expiration_date,
            is_active=payload.is_active,
        )
    except InventoryError as exc:
        raise http_error(exc) from exc

    log_action(db, current_user.id, "create", "raw_material", item.id, f"Materia prima {item.name}")
    return serialize_item(item)


@router.put("/items/{item_id}")
def update_item(
    item_id: int,
    payload: RawMaterialUpdate,
    db: Session = Depends(get_db),
    coordinator: StockCoordinator = Depends(get_coordinator),
    current_user: User = Depends(require_permission("inventory:write")),
) -> dict:
    try:
        item = catalog.update_item(
            db,
            coordinator,
            item_id,
            name=payload.name,
            unit=payload.unit,
            minimum=payload.minimum,
            supplier=payload.supplier,
            expiration_date=payload.expiration_date,
            is_active=payload.is_active,
        )
    except InventoryError as exc:
        raise http_error(exc) from exc

    log_action(db, current_user.id, "update", "raw_material", item.id, f"Materia prima {item.name}")
    return serialize_item(item)


@router.delete("/items/{item_id}")
def delete_item(
    item_id: int,
    db: Session = Depends(get_db),
    coordinator: StockCoordinator = Depends(get_coordinator),
    current_user: User = Depends(require_permission("inventory:write")),
) -> dict:
    try:
        item = catalog.deactivate_item(db, coordinator, item_id)
    except InventoryError as exc:
        raise http_error(exc) from exc

    log_action(db, current_user.id, "deactivate", "raw_material", item.id, f"Materia prima {item.name}")
    return {"message": "Materia prima desactivada", "id": item.id}


@router.put("/items/{item_id}/restock")
def restock_item(
    item_id: int,
    payload: RestockRequest,
    db: Session = Depends(get_db),
    ledger: InventoryLedger = Depends(get_ledger),
    current_user: User = Depends(require_permission("inventory:write")),
) -> dict:
    actor_id = current_user.id
    try:
        result = ledger.restock(db, item_id, payload.quantity, actor_id=actor_id, reason=payload.reason)
    except InventoryError as exc:
        raise http_error(exc) from exc

    log_action(db, actor_id, "restock", "raw_material", item_id, f"+{result.movement.quantity}")
    logger.info("Reabastecimiento de materia prima %s: +%s", item_id, result.movement.quantity)
    return {"message": "Stock actualizado", **serialize_result(result)}


@router.get("/items/{item_id}/reconcile")
def reconcile_item(
    item_id: int,
    db: Session = Depends(get_db),
    ledger: InventoryLedger = Depends(get_ledger),
    _: User = Depends(require_permission("inventory:view")),
) -> dict:
    try:
        report = ledger.reconcile(db, item_id)
    except InventoryError as exc:
        raise http_error(exc) from exc

    if not report.consistent:
        logger.warning(
            "Materia prima %s inconsistente: esperado %s, almacenado %s",
            item_id,
            report.expected_quantity,
            report.stored_quantity,
        )
    return {
        "item_id": report.item_id,
        "initial_quantity": float(report.initial_quantity),
        "incoming": float(report.incoming),
        "outgoing": float(report.outgoing),
        "spoilage": float(report.spoilage),
        "expected_quantity": float(report.expected_quantity),
        "stored_quantity": float(report.stored_quantity),
        "consistent": report.consistent,
    }


@router.post("/movements", status_code=201)
def create_movement(
    payload: MovementCreate,
    db: Session = Depends(get_db),
    ledger: InventoryLedger = Depends(get_ledger),
    current_user: User = Depends(require_permission("movements:write")),
) -> dict:
    actor_id = current_user.id
    try:
        result = ledger.apply(
            db,
            payload.item_id,
            payload.movement_type,
            payload.quantity,
            reason=payload.reason,
            actor_id=actor_id,
        )
    except InventoryError as exc:
        raise http_error(exc) from exc

    movement = result.movement
    log_action(
        db,
        actor_id,
        "movement",
        "raw_material",
        movement.item_id,
        f"{movement.movement_type.value} {movement.quantity}",
    )
    logger.info(
        "Movimiento %s registrado: %s %s sobre materia prima %s",
        movement.id,
        movement.movement_type.value,
        movement.quantity,
        movement.item_id,
    )
    return {"message": "Movimiento registrado", **serialize_result(result)}


@router.get("/movements")
def list_movements(
    item_id: int | None = Query(default=None),
    movement_type: str | None = Query(default=None),
    from_date: date | None = Query(default=None, alias="from"),
    to_date: date | None = Query(default=None, alias="to"),
    page: int = Query(default=1),
    limit: int = Query(default=50),
    db: Session = Depends(get_db),
    ledger: InventoryLedger = Depends(get_ledger),
    _: User = Depends(require_permission("inventory:view")),
) -> dict:
    try:
        history = ledger.history(
            db,
            item_id=item_id,
            kind=movement_type,
            date_from=from_date,
            date_to=to_date,
            page=page,
            limit=limit,
        )
        rows = [serialize_movement(record) for record in history]
        total = history.count()
    except InventoryError as exc:
        raise http_error(exc) from exc
    return {"movements": rows, "page": history.page, "limit": history.limit, "total": total}


@router.get("/critical")
def critical_items(
    db: Session = Depends(get_db),
    _: User = Depends(require_permission("inventory:view")),
) -> dict:
    items = find_critical_items(db)
    return {
        "total": len(items),
        "items": [
            {
                "id": item.id,
                "name": item.name,
                "unit": item.unit,
                "quantity": float(item.quantity),
                "minimum": float(item.minimum),
                "shortfall": float(item.shortfall),
            }
            for item in items
        ],
    }
