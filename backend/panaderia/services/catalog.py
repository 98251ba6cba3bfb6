"""
Raw-material catalog: creation, lookup, listing and descriptive edits.

Quantities are only ever changed by the ledger. Changes to the active flag
run inside the item's coordinator section so they cannot interleave with a
movement being applied.
"""
from dataclasses import dataclass
from datetime import date
from decimal import Decimal

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from panaderia.core.exceptions import (
    DuplicateItemError,
    InvalidItemError,
    InvalidMovementError,
    ItemNotFoundError,
    StorageFailureError,
)
from panaderia.models.raw_material import RawMaterial
from panaderia.services.coordinator import StockCoordinator
from panaderia.services.ledger import end_read_snapshot, to_quantity


ACTIVE_FILTERS = {"true", "false", "all"}
# PostgreSQL unique_violation
PG_UNIQUE_VIOLATION = "23505"


@dataclass(frozen=True)
class ItemPage:
    items: list[RawMaterial]
    page: int
    limit: int
    total: int


def _required(value: str | None, message: str) -> str:
    cleaned = (value or "").strip()
    if not cleaned:
        raise InvalidItemError(message)
    return cleaned


def _optional(value: str | None) -> str | None:
    cleaned = (value or "").strip()
    return cleaned or None


def _non_negative(value: Decimal | int | float | str | None, field_name: str) -> Decimal:
    if value is None:
        return to_quantity(0)
    try:
        amount = to_quantity(value)
    except InvalidMovementError:
        raise InvalidItemError(f"{field_name} invalido: {value!r}") from None
    if amount < 0:
        raise InvalidItemError(f"{field_name} no puede ser negativo")
    return amount


def _active_name_taken(db: Session, name: str, exclude_id: int | None = None) -> bool:
    query = select(func.count(RawMaterial.id)).where(
        RawMaterial.is_active.is_(True),
        func.lower(RawMaterial.name) == name.lower(),
    )
    if exclude_id is not None:
        query = query.where(RawMaterial.id != exclude_id)
    return (db.scalar(query) or 0) > 0


def _is_unique_violation(exc: IntegrityError) -> bool:
    if getattr(exc.orig, "pgcode", None) == PG_UNIQUE_VIOLATION:
        return True
    return "unique constraint" in str(exc.orig).lower()


def _commit(db: Session, name: str) -> None:
    try:
        db.commit()
    except IntegrityError as exc:
        db.rollback()
        if _is_unique_violation(exc):
            raise DuplicateItemError(name) from exc
        raise InvalidItemError(f"Datos invalidos para la materia prima '{name}'") from exc
    except SQLAlchemyError as exc:
        db.rollback()
        raise StorageFailureError(str(exc)) from exc


def create_item(
    db: Session,
    name: str,
    unit: str,
    quantity: Decimal | int | float | str | None = 0,
    minimum: Decimal | int | float | str | None = 0,
    supplier: str | None = None,
    expiration_date: date | None = None,
    is_active: bool = True,
) -> RawMaterial:
    clean_name = _required(name, "Nombre y unidad son requeridos")
    clean_unit = _required(unit, "Nombre y unidad son requeridos")
    opening = _non_negative(quantity, "cantidad_disponible")
    threshold = _non_negative(minimum, "minimo")

    if is_active and _active_name_taken(db, clean_name):
        raise DuplicateItemError(clean_name)

    item = RawMaterial(
        name=clean_name,
        unit=clean_unit,
        quantity=opening,
        initial_quantity=opening,
        minimum=threshold,
        supplier=_optional(supplier),
        expiration_date=expiration_date,
        is_active=is_active,
    )
    db.add(item)
    _commit(db, clean_name)
    return item


def get_item(db: Session, item_id: int) -> RawMaterial:
    item = db.get(RawMaterial, item_id, populate_existing=True)
    if item is None:
        raise ItemNotFoundError(item_id)
    return item


def list_items(db: Session, active: str = "true", page: int = 1, limit: int = 50) -> ItemPage:
    active = (active or "true").lower()
    if active not in ACTIVE_FILTERS:
        raise InvalidItemError("activo debe ser: true, false o all")
    if page < 1 or limit < 1:
        raise InvalidItemError("page y limit deben ser mayores a 0")

    conditions = []
    if active != "all":
        conditions.append(RawMaterial.is_active.is_(active == "true"))

    rows = db.scalars(
        select(RawMaterial)
        .where(*conditions)
        .order_by(RawMaterial.name.asc(), RawMaterial.id.asc())
        .offset((page - 1) * limit)
        .limit(limit)
        .execution_options(populate_existing=True)
    ).all()
    total = db.scalar(select(func.count(RawMaterial.id)).where(*conditions)) or 0
    return ItemPage(items=list(rows), page=page, limit=limit, total=total)


def update_item(
    db: Session,
    coordinator: StockCoordinator,
    item_id: int,
    name: str,
    unit: str,
    minimum: Decimal | int | float | str | None = 0,
    supplier: str | None = None,
    expiration_date: date | None = None,
    is_active: bool = True,
    timeout: float | None = None,
) -> RawMaterial:
    """Edit descriptive fields. The quantity is left untouched."""
    clean_name = _required(name, "Nombre y unidad son requeridos")
    clean_unit = _required(unit, "Nombre y unidad son requeridos")
    threshold = _non_negative(minimum, "minimo")

    end_read_snapshot(db)
    with coordinator.hold(item_id, timeout):
        item = get_item(db, item_id)
        if is_active and _active_name_taken(db, clean_name, exclude_id=item.id):
            db.rollback()
            raise DuplicateItemError(clean_name)

        item.name = clean_name
        item.unit = clean_unit
        item.minimum = threshold
        item.supplier = _optional(supplier)
        item.expiration_date = expiration_date
        item.is_active = is_active
        _commit(db, clean_name)
    return item


def deactivate_item(
    db: Session,
    coordinator: StockCoordinator,
    item_id: int,
    timeout: float | None = None,
) -> RawMaterial:
    """Soft delete. Movements keep referencing the row; it is never removed."""
    end_read_snapshot(db)
    with coordinator.hold(item_id, timeout):
        item = get_item(db, item_id)
        item.is_active = False
        _commit(db, item.name)
    return item
