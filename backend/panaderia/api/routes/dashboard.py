from datetime import date, datetime, time, timedelta, timezone
from io import BytesIO

from fastapi import APIRouter, Depends, HTTPException, Query
from fastapi.responses import StreamingResponse
from sqlalchemy.orm import Session

from panaderia.api.deps import get_ledger, http_error, require_permission
from panaderia.core.exceptions import InventoryError
from panaderia.db.session import get_db
from panaderia.models.user import User
from panaderia.services import reports
from panaderia.services.ledger import InventoryLedger, MovementRecord


router = APIRouter()

MAX_RANGE_DAYS = 365


def resolve_range(from_date: date | None, to_date: date | None) -> tuple[date, date, datetime, datetime]:
    today = datetime.now(timezone.utc).date()
    end_date = to_date or today
    start_date = from_date or (end_date - timedelta(days=29))

    if start_date > end_date:
        raise HTTPException(status_code=400, detail="Rango de fechas invalido")
    if (end_date - start_date).days > MAX_RANGE_DAYS:
        raise HTTPException(status_code=400, detail=f"El rango maximo permitido es {MAX_RANGE_DAYS} dias")

    start_dt = datetime.combine(start_date, time.min, tzinfo=timezone.utc)
    end_dt = datetime.combine(end_date + timedelta(days=1), time.min, tzinfo=timezone.utc)
    return start_date, end_date, start_dt, end_dt


def range_payload(range_from: date, range_to: date) -> dict:
    return {"range_from": range_from.isoformat(), "range_to": range_to.isoformat()}


def collect_movements(
    db: Session,
    ledger: InventoryLedger,
    range_from: date,
    range_to: date,
    movement_type: str | None,
) -> list[MovementRecord]:
    try:
        return ledger.export(db, kind=movement_type, date_from=range_from, date_to=range_to)
    except InventoryError as exc:
        raise http_error(exc) from exc


@router.get("/summary")
def summary(
    db: Session = Depends(get_db),
    _: User = Depends(require_permission("dashboard:view")),
) -> dict:
    return reports.inventory_summary(db, datetime.now(timezone.utc).date())


@router.get("/spoilage")
def spoilage(
    from_date: date | None = Query(default=None, alias="from"),
    to_date: date | None = Query(default=None, alias="to"),
    db: Session = Depends(get_db),
    _: User = Depends(require_permission("dashboard:view")),
) -> dict:
    range_from, range_to, start_dt, end_dt = resolve_range(from_date, to_date)
    return {**range_payload(range_from, range_to), **reports.spoilage_report(db, start_dt, end_dt)}


@router.get("/consumption")
def consumption(
    from_date: date | None = Query(default=None, alias="from"),
    to_date: date | None = Query(default=None, alias="to"),
    limit: int = Query(default=10, ge=1, le=100),
    db: Session = Depends(get_db),
    _: User = Depends(require_permission("dashboard:view")),
) -> dict:
    range_from, range_to, start_dt, end_dt = resolve_range(from_date, to_date)
    return {**range_payload(range_from, range_to), **reports.consumption_report(db, start_dt, end_dt, limit=limit)}


@router.get("/supply")
def supply(
    from_date: date | None = Query(default=None, alias="from"),
    to_date: date | None = Query(default=None, alias="to"),
    limit: int = Query(default=10, ge=1, le=100),
    db: Session = Depends(get_db),
    _: User = Depends(require_permission("dashboard:view")),
) -> dict:
    range_from, range_to, start_dt, end_dt = resolve_range(from_date, to_date)
    return {**range_payload(range_from, range_to), **reports.supply_report(db, start_dt, end_dt, limit=limit)}


@router.get("/export/csv")
def export_csv(
    from_date: date | None = Query(default=None, alias="from"),
    to_date: date | None = Query(default=None, alias="to"),
    movement_type: str | None = Query(default=None),
    db: Session = Depends(get_db),
    ledger: InventoryLedger = Depends(get_ledger),
    _: User = Depends(require_permission("reports:export")),
) -> StreamingResponse:
    range_from, range_to, _start_dt, _end_dt = resolve_range(from_date, to_date)
    records = collect_movements(db, ledger, range_from, range_to, movement_type)
    content = reports.export_movements_csv(records, reports.item_names(db, records))

    filename = f"movimientos-{range_from.isoformat()}-{range_to.isoformat()}.csv"
    return StreamingResponse(
        iter([content]),
        media_type="text/csv",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


@router.get("/export/pdf")
def export_pdf(
    from_date: date | None = Query(default=None, alias="from"),
    to_date: date | None = Query(default=None, alias="to"),
    movement_type: str | None = Query(default=None),
    db: Session = Depends(get_db),
    ledger: InventoryLedger = Depends(get_ledger),
    _: User = Depends(require_permission("reports:export")),
) -> StreamingResponse:
    range_from, range_to, _start_dt, _end_dt = resolve_range(from_date, to_date)
    records = collect_movements(db, ledger, range_from, range_to, movement_type)
    title = f"Movimientos de inventario {range_from.isoformat()} a {range_to.isoformat()}"
    buffer: BytesIO = reports.export_movements_pdf(records, reports.item_names(db, records), title)

    filename = f"movimientos-{range_from.isoformat()}-{range_to.isoformat()}.pdf"
    return StreamingResponse(
        buffer,
        media_type="application/pdf",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )
