"""
Inventory reports aggregated from the movement ledger.

Everything here is a read over committed movements; no figure is estimated
or hardcoded. Sales and margin reporting is not part of this service.
"""
import csv
from collections.abc import Iterable
from datetime import date, datetime, time, timedelta, timezone
from io import BytesIO, StringIO

from reportlab.lib.pagesizes import A4
from reportlab.pdfgen import canvas
from sqlalchemy import func, select
from sqlalchemy.orm import Session

from panaderia.models.inventory import InventoryMovement, MovementType
from panaderia.models.raw_material import RawMaterial
from panaderia.services.ledger import MovementRecord, round_quantity
from panaderia.services.scanner import count_critical_items


MOVEMENT_LABELS = {
    MovementType.INCOMING: "entrada",
    MovementType.OUTGOING: "salida",
    MovementType.SPOILAGE: "merma",
}


def inventory_summary(db: Session, today: date) -> dict:
    start = datetime.combine(today, time.min, tzinfo=timezone.utc)
    end = start + timedelta(days=1)

    active_items = db.scalar(select(func.count(RawMaterial.id)).where(RawMaterial.is_active.is_(True))) or 0
    movements_today = db.scalar(
        select(func.count(InventoryMovement.id))
        .where(InventoryMovement.created_at >= start)
        .where(InventoryMovement.created_at < end)
    ) or 0
    return {
        "date": today.isoformat(),
        "total_materias_primas": active_items,
        "alertas_inventario": count_critical_items(db),
        "movimientos_hoy": movements_today,
    }


def _totals_by_item(
    db: Session,
    movement_type: MovementType,
    start_dt: datetime,
    end_dt: datetime,
    limit: int | None = None,
) -> list[dict]:
    total = func.sum(InventoryMovement.quantity).label("total")
    query = (
        select(
            RawMaterial.id,
            RawMaterial.name,
            RawMaterial.unit,
            total,
            func.count(InventoryMovement.id).label("events"),
        )
        .join(RawMaterial, RawMaterial.id == InventoryMovement.item_id)
        .where(InventoryMovement.movement_type == movement_type.value)
        .where(InventoryMovement.created_at >= start_dt)
        .where(InventoryMovement.created_at < end_dt)
        .group_by(RawMaterial.id, RawMaterial.name, RawMaterial.unit)
        .order_by(total.desc(), RawMaterial.name.asc())
    )
    if limit is not None:
        query = query.limit(limit)

    return [
        {
            "item_id": row.id,
            "name": row.name,
            "unit": row.unit,
            "total": float(round_quantity(row.total or 0)),
            "events": row.events,
        }
        for row in db.execute(query).all()
    ]


def spoilage_report(db: Session, start_dt: datetime, end_dt: datetime) -> dict:
    rows = _totals_by_item(db, MovementType.SPOILAGE, start_dt, end_dt)
    return {
        "total_merma_general": round(sum(row["total"] for row in rows), 3),
        "total_productos_afectados": len(rows),
        "detalle_mermas": rows,
    }


def consumption_report(db: Session, start_dt: datetime, end_dt: datetime, limit: int = 10) -> dict:
    rows = _totals_by_item(db, MovementType.OUTGOING, start_dt, end_dt, limit=limit)
    return {"total_insumos": len(rows), "insumos": rows}


def utc_day(dialect_name: str):
    """Calendar day of ``created_at`` in UTC, whatever the session time zone."""
    if dialect_name == "postgresql":
        return func.date(func.timezone("UTC", InventoryMovement.created_at))
    # SQLite stores the UTC wall-clock value
    return func.date(InventoryMovement.created_at)


def supply_report(db: Session, start_dt: datetime, end_dt: datetime, limit: int = 10) -> dict:
    day = utc_day(db.get_bind().dialect.name).label("day")
    daily_rows = db.execute(
        select(
            day,
            func.count(InventoryMovement.id).label("events"),
            func.sum(InventoryMovement.quantity).label("total"),
        )
        .where(InventoryMovement.movement_type == MovementType.INCOMING.value)
        .where(InventoryMovement.created_at >= start_dt)
        .where(InventoryMovement.created_at < end_dt)
        .group_by(day)
        .order_by(day.desc())
    ).all()

    per_day = [
        {
            "date": str(row.day),
            "events": row.events,
            "total": float(round_quantity(row.total or 0)),
        }
        for row in daily_rows
    ]
    return {
        "entradas_por_fecha": per_day,
        "materias_mas_abastecidas": _totals_by_item(db, MovementType.INCOMING, start_dt, end_dt, limit=limit),
        "resumen": {"total_eventos_entrada": sum(row["events"] for row in per_day)},
    }


def item_names(db: Session, records: Iterable[MovementRecord]) -> dict[int, str]:
    ids = {record.item_id for record in records}
    if not ids:
        return {}
    rows = db.execute(select(RawMaterial.id, RawMaterial.name).where(RawMaterial.id.in_(ids))).all()
    return {row.id: row.name for row in rows}


def export_movements_csv(records: list[MovementRecord], names: dict[int, str]) -> str:
    output = StringIO()
    writer = csv.writer(output)
    writer.writerow(["id", "fecha", "materia_prima", "tipo", "cantidad", "motivo", "usuario"])
    for record in records:
        writer.writerow(
            [
                record.id,
                record.created_at.isoformat(),
                names.get(record.item_id, str(record.item_id)),
                MOVEMENT_LABELS[record.movement_type],
                f"{record.quantity:.3f}",
                record.reason or "",
                record.created_by or "",
            ]
        )
    content = output.getvalue()
    output.close()
    return content


def export_movements_pdf(records: list[MovementRecord], names: dict[int, str], title: str) -> BytesIO:
    buffer = BytesIO()
    pdf = canvas.Canvas(buffer, pagesize=A4)
    _, height = A4

    y = height - 50
    pdf.setFont("Helvetica-Bold", 16)
    pdf.drawString(50, y, title)
    y -= 20
    pdf.setFont("Helvetica", 9)
    pdf.drawString(50, y, f"Generado: {datetime.now(timezone.utc).strftime('%Y-%m-%d %H:%M')} UTC")
    y -= 24

    def draw_header(top: float) -> float:
        pdf.setFont("Helvetica-Bold", 10)
        pdf.drawString(50, top, "Fecha")
        pdf.drawString(160, top, "Materia prima")
        pdf.drawString(330, top, "Tipo")
        pdf.drawString(400, top, "Cantidad")
        pdf.drawString(470, top, "Motivo")
        top -= 12
        pdf.line(50, top, 545, top)
        pdf.setFont("Helvetica", 9)
        return top - 14

    y = draw_header(y)
    if not records:
        pdf.drawString(50, y, "Sin movimientos en el rango seleccionado.")

    for record in records:
        if y < 60:
            pdf.showPage()
            y = draw_header(height - 50)
        pdf.drawString(50, y, record.created_at.strftime("%Y-%m-%d %H:%M"))
        pdf.drawString(160, y, names.get(record.item_id, str(record.item_id))[:30])
        pdf.drawString(330, y, MOVEMENT_LABELS[record.movement_type])
        pdf.drawRightString(450, y, f"{record.quantity:.3f}")
        pdf.drawString(470, y, (record.reason or "")[:16])
        y -= 14

    pdf.save()
    buffer.seek(0)
    return buffer
