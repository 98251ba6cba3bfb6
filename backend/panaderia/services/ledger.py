"""
Inventory movement ledger.

The ledger is the only writer of ``RawMaterial.quantity``. ``apply`` records a
movement and adjusts the running quantity in one transaction, inside the
item's coordinator section and under a row lock, so that for every item::

    quantity == initial_quantity + incoming - outgoing - spoilage

holds at every commit point. The running quantity is a materialized view of
the movement log; it is never recomputed on the write path. ``reconcile``
recomputes it on demand for verification.

The ledger does not own a session. Each call receives the caller's
``Session``; ``apply`` and ``restock`` own its transaction boundary and
either commit both writes or roll back both.
"""
from __future__ import annotations

import time
from collections.abc import Callable, Iterator
from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation

from sqlalchemy import Select, func, select, text
from sqlalchemy.exc import OperationalError, SQLAlchemyError
from sqlalchemy.orm import Session

from panaderia.core.exceptions import (
    InsufficientStockError,
    InvalidMovementError,
    ItemNotFoundError,
    LedgerBusyError,
    StorageFailureError,
)
from panaderia.core.logging_config import get_logger
from panaderia.db.session import BUSY_TIMEOUT_OPTION
from panaderia.models.inventory import InventoryMovement, MovementType
from panaderia.models.raw_material import RawMaterial
from panaderia.services.coordinator import StockCoordinator


logger = get_logger("services.ledger")

QUANTITY_STEP = Decimal("0.001")
# Numeric(14, 3) holds at most 11 integer digits
QUANTITY_LIMIT = Decimal("1e11")
RESTOCK_REASON = "Reabastecimiento"
DEFAULT_PAGE_LIMIT = 50
NEWEST_FIRST = (InventoryMovement.created_at.desc(), InventoryMovement.id.desc())

# Spanish values sent by the bakery front end
MOVEMENT_ALIASES = {
    "entrada": MovementType.INCOMING,
    "salida": MovementType.OUTGOING,
    "merma": MovementType.SPOILAGE,
}

# PostgreSQL lock_not_available
PG_LOCK_NOT_AVAILABLE = "55P03"
SQLITE_LOCKED_MESSAGE = "database is locked"


def _lock_not_available(exc: OperationalError) -> bool:
    if getattr(exc.orig, "pgcode", None) == PG_LOCK_NOT_AVAILABLE:
        return True
    return SQLITE_LOCKED_MESSAGE in str(exc.orig)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def parse_movement_type(kind: MovementType | str | None) -> MovementType:
    if isinstance(kind, MovementType):
        return kind
    if not kind or not isinstance(kind, str):
        raise InvalidMovementError("tipo_movimiento es requerido")
    normalized = kind.strip().lower()
    if normalized in MOVEMENT_ALIASES:
        return MOVEMENT_ALIASES[normalized]
    try:
        return MovementType(normalized)
    except ValueError:
        raise InvalidMovementError("tipo_movimiento debe ser: entrada, salida o merma") from None


def to_quantity(value: Decimal | int | float | str) -> Decimal:
    """Coerce to a finite Decimal rounded to the ledger's precision."""
    if value is None or isinstance(value, bool):
        raise InvalidMovementError("La cantidad es requerida")
    try:
        amount = value if isinstance(value, Decimal) else Decimal(str(value).strip())
        if not amount.is_finite() or abs(amount) >= QUANTITY_LIMIT:
            raise InvalidMovementError(f"Cantidad invalida: {value!r}")
        return amount.quantize(QUANTITY_STEP, rounding=ROUND_HALF_UP)
    except (InvalidOperation, ValueError):
        raise InvalidMovementError(f"Cantidad invalida: {value!r}") from None


def round_quantity(value: Decimal | int | float) -> Decimal:
    """Round an aggregate read back from storage; input limits do not apply."""
    amount = value if isinstance(value, Decimal) else Decimal(str(value))
    return amount.quantize(QUANTITY_STEP, rounding=ROUND_HALF_UP)


def positive_quantity(value: Decimal | int | float | str) -> Decimal:
    amount = to_quantity(value)
    if amount <= 0:
        raise InvalidMovementError("La cantidad debe ser mayor a 0")
    return amount


def _clean_reason(reason: str | None) -> str | None:
    if reason is None:
        return None
    cleaned = reason.strip()
    return cleaned[:255] if cleaned else None


def end_read_snapshot(db: Session) -> None:
    """Close a read-only transaction the caller left open before waiting on a coordinator section."""
    # on SQLite an open transaction holds the database write lock
    if db.in_transaction() and not (db.new or db.dirty or db.deleted):
        db.rollback()


def _as_utc(value: datetime) -> datetime:
    return value if value.tzinfo is not None else value.replace(tzinfo=timezone.utc)


def _range_start(value: date | datetime) -> datetime:
    if isinstance(value, datetime):
        return _as_utc(value)
    return datetime.combine(value, datetime.min.time(), tzinfo=timezone.utc)


def _range_end(value: date | datetime) -> datetime:
    # exclusive upper bound; whole days are inclusive
    if isinstance(value, datetime):
        return _as_utc(value) + timedelta(microseconds=1)
    return datetime.combine(value + timedelta(days=1), datetime.min.time(), tzinfo=timezone.utc)


def _history_conditions(
    item_id: int | None,
    kind: MovementType | str | None,
    date_from: date | datetime | None,
    date_to: date | datetime | None,
) -> list:
    if date_from is not None and date_to is not None and _range_start(date_from) >= _range_end(date_to):
        raise InvalidMovementError("Rango de fechas invalido")

    conditions = []
    if item_id is not None:
        conditions.append(InventoryMovement.item_id == item_id)
    if kind is not None:
        conditions.append(InventoryMovement.movement_type == parse_movement_type(kind).value)
    if date_from is not None:
        conditions.append(InventoryMovement.created_at >= _range_start(date_from))
    if date_to is not None:
        conditions.append(InventoryMovement.created_at < _range_end(date_to))
    return conditions


@dataclass(frozen=True)
class MovementRecord:
    id: int
    item_id: int
    movement_type: MovementType
    quantity: Decimal
    reason: str | None
    created_by: int | None
    created_at: datetime

    @classmethod
    def from_row(cls, row: InventoryMovement) -> MovementRecord:
        return cls(
            id=row.id,
            item_id=row.item_id,
            movement_type=MovementType(row.movement_type),
            quantity=to_quantity(row.quantity),
            reason=row.reason,
            created_by=row.created_by,
            created_at=row.created_at,
        )

    @property
    def signed_quantity(self) -> Decimal:
        return self.quantity * self.movement_type.sign


@dataclass(frozen=True)
class MovementResult:
    movement: MovementRecord
    quantity_after: Decimal


@dataclass(frozen=True)
class Reconciliation:
    item_id: int
    initial_quantity: Decimal
    incoming: Decimal
    outgoing: Decimal
    spoilage: Decimal
    stored_quantity: Decimal

    @property
    def expected_quantity(self) -> Decimal:
        return self.initial_quantity + self.incoming - self.outgoing - self.spoilage

    @property
    def consistent(self) -> bool:
        return self.expected_quantity == self.stored_quantity


class MovementHistory:
    """
    Lazy view over a filtered, paginated slice of the ledger.

    Nothing is read until iteration. Every iteration runs a single SELECT, so
    a pass sees one consistent snapshot and the view can be iterated again.
    """

    def __init__(self, db: Session, statement: Select, count_statement: Select, page: int, limit: int):
        self._db = db
        self._statement = statement
        self._count_statement = count_statement
        self.page = page
        self.limit = limit

    def __iter__(self) -> Iterator[MovementRecord]:
        for row in self._db.scalars(self._statement):
            yield MovementRecord.from_row(row)

    def all(self) -> list[MovementRecord]:
        return list(self)

    def count(self) -> int:
        return self._db.scalar(self._count_statement) or 0


class InventoryLedger:
    def __init__(
        self,
        coordinator: StockCoordinator,
        lock_timeout: float = 5.0,
        page_limit_max: int = 500,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.coordinator = coordinator
        self.lock_timeout = lock_timeout
        self.page_limit_max = page_limit_max
        self.clock = clock

    def apply(
        self,
        db: Session,
        item_id: int,
        kind: MovementType | str,
        quantity: Decimal | int | float | str,
        reason: str | None = None,
        actor_id: int | None = None,
        timeout: float | None = None,
    ) -> MovementResult:
        """
        Record a movement against an active item and update its quantity.

        Raises ``InvalidMovementError`` for a bad kind or a non-positive amount,
        ``ItemNotFoundError`` for a missing or inactive item,
        ``InsufficientStockError`` when an outgoing or spoilage movement exceeds
        the available quantity, ``LedgerBusyError`` when the item cannot be
        locked within ``timeout`` seconds and ``StorageFailureError`` when the
        database fails. On any error nothing is committed.
        """
        movement_type = parse_movement_type(kind)
        amount = positive_quantity(quantity)
        note = _clean_reason(reason)
        deadline = self.lock_timeout if timeout is None else timeout

        end_read_snapshot(db)
        started = time.monotonic()
        with self.coordinator.hold(item_id, deadline):
            remaining = deadline - (time.monotonic() - started)
            try:
                item = self._lock_item(db, item_id, remaining)
                self._check_movement(item, movement_type, amount)
                movement = self._record(db, item, movement_type, amount, note, actor_id)
                db.commit()
            except BaseException as exc:
                db.rollback()
                if isinstance(exc, SQLAlchemyError):
                    raise self._storage_error(exc, item_id, deadline) from exc
                raise

            return MovementResult(movement=MovementRecord.from_row(movement), quantity_after=to_quantity(item.quantity))

    def restock(
        self,
        db: Session,
        item_id: int,
        delta: Decimal | int | float | str,
        actor_id: int | None = None,
        reason: str | None = None,
        timeout: float | None = None,
    ) -> MovementResult:
        """Bulk replenishment, recorded as an incoming movement so the ledger stays complete."""
        return self.apply(
            db,
            item_id,
            MovementType.INCOMING,
            delta,
            reason=reason or RESTOCK_REASON,
            actor_id=actor_id,
            timeout=timeout,
        )

    def history(
        self,
        db: Session,
        item_id: int | None = None,
        kind: MovementType | str | None = None,
        date_from: date | datetime | None = None,
        date_to: date | datetime | None = None,
        page: int = 1,
        limit: int = DEFAULT_PAGE_LIMIT,
    ) -> MovementHistory:
        if page < 1:
            raise InvalidMovementError("page debe ser mayor o igual a 1")
        if limit < 1 or limit > self.page_limit_max:
            raise InvalidMovementError(f"limit debe estar entre 1 y {self.page_limit_max}")

        conditions = _history_conditions(item_id, kind, date_from, date_to)
        statement = (
            select(InventoryMovement)
            .where(*conditions)
            .order_by(*NEWEST_FIRST)
            .offset((page - 1) * limit)
            .limit(limit)
        )
        count_statement = select(func.count(InventoryMovement.id)).where(*conditions)
        return MovementHistory(db, statement, count_statement, page, limit)

    def export(
        self,
        db: Session,
        kind: MovementType | str | None = None,
        date_from: date | datetime | None = None,
        date_to: date | datetime | None = None,
    ) -> list[MovementRecord]:
        """Every matching movement, newest first, read with a single SELECT."""
        conditions = _history_conditions(None, kind, date_from, date_to)
        rows = db.scalars(select(InventoryMovement).where(*conditions).order_by(*NEWEST_FIRST))
        return [MovementRecord.from_row(row) for row in rows]

    def reconcile(self, db: Session, item_id: int) -> Reconciliation:
        item = db.get(RawMaterial, item_id, populate_existing=True)
        if item is None:
            raise ItemNotFoundError(item_id)

        rows = db.execute(
            select(InventoryMovement.movement_type, func.sum(InventoryMovement.quantity))
            .where(InventoryMovement.item_id == item_id)
            .group_by(InventoryMovement.movement_type)
        ).all()
        totals = {MovementType(movement_type): round_quantity(total or 0) for movement_type, total in rows}
        zero = to_quantity(0)
        return Reconciliation(
            item_id=item_id,
            initial_quantity=to_quantity(item.initial_quantity),
            incoming=totals.get(MovementType.INCOMING, zero),
            outgoing=totals.get(MovementType.OUTGOING, zero),
            spoilage=totals.get(MovementType.SPOILAGE, zero),
            stored_quantity=to_quantity(item.quantity),
        )

    def _lock_item(self, db: Session, item_id: int, remaining: float) -> RawMaterial:
        dialect = db.get_bind().dialect.name
        lock_ms = max(int(remaining * 1000), 1)
        if dialect == "postgresql":
            db.execute(text(f"SET LOCAL lock_timeout = '{lock_ms}ms'"))
        elif dialect == "sqlite" and not db.in_transaction():
            # BEGIN IMMEDIATE waits for other writers on the busy timeout
            db.connection(execution_options={BUSY_TIMEOUT_OPTION: lock_ms})

        item = db.scalar(
            select(RawMaterial)
            .where(RawMaterial.id == item_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        if item is None:
            raise ItemNotFoundError(item_id)
        if not item.is_active:
            raise ItemNotFoundError(item_id, inactive=True)
        return item

    def _check_movement(self, item: RawMaterial, movement_type: MovementType, amount: Decimal) -> None:
        available = to_quantity(item.quantity)
        if movement_type is MovementType.INCOMING:
            if available + amount >= QUANTITY_LIMIT:
                raise InvalidMovementError("La cantidad resultante excede el maximo permitido")
            return
        if available < amount:
            raise InsufficientStockError(item.id, available=available, requested=amount)

    def _record(
        self,
        db: Session,
        item: RawMaterial,
        movement_type: MovementType,
        amount: Decimal,
        reason: str | None,
        actor_id: int | None,
    ) -> InventoryMovement:
        item.quantity = to_quantity(item.quantity) + amount * movement_type.sign
        movement = InventoryMovement(
            item_id=item.id,
            movement_type=movement_type.value,
            quantity=amount,
            reason=reason,
            created_by=actor_id,
            created_at=self.clock(),
        )
        db.add(movement)
        db.flush()
        return movement

    def _storage_error(self, exc: SQLAlchemyError, item_id: int, deadline: float) -> Exception:
        if isinstance(exc, OperationalError) and _lock_not_available(exc):
            logger.warning("Bloqueo de fila agotado para materia prima %s", item_id)
            return LedgerBusyError(item_id, deadline)
        logger.warning("Fallo de almacenamiento aplicando movimiento a materia prima %s: %s", item_id, exc)
        return StorageFailureError(str(exc.orig) if getattr(exc, "orig", None) is not None else str(exc))
