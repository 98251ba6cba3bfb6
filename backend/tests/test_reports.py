import csv
from datetime import date, datetime, timezone
from io import StringIO

import pytest
from sqlalchemy.dialects import postgresql, sqlite

from panaderia.models.inventory import MovementType
from panaderia.services import reports

MARCH_1 = datetime(2026, 3, 1, tzinfo=timezone.utc)
APRIL_1 = datetime(2026, 4, 1, tzinfo=timezone.utc)


@pytest.fixture
def busy_week(db, ledger, clock, flour, make_item):
    sugar = make_item("Azucar", quantity="40", minimum="10")

    clock.set(datetime(2026, 3, 9, 7, 0, tzinfo=timezone.utc))
    ledger.apply(db, flour.id, MovementType.OUTGOING, 30)
    ledger.apply(db, sugar.id, MovementType.OUTGOING, 5)
    ledger.apply(db, flour.id, MovementType.SPOILAGE, 2, reason="Humedad")

    clock.set(datetime(2026, 3, 10, 7, 0, tzinfo=timezone.utc))
    ledger.restock(db, flour.id, 50)
    ledger.apply(db, sugar.id, MovementType.INCOMING, 10)
    ledger.apply(db, sugar.id, MovementType.SPOILAGE, "1.5")
    return flour, sugar


def test_inventory_summary(db, busy_week):
    summary = reports.inventory_summary(db, date(2026, 3, 10))
    assert summary == {
        "date": "2026-03-10",
        "total_materias_primas": 2,
        "alertas_inventario": 0,
        "movimientos_hoy": 3,
    }


def test_spoilage_report(db, busy_week):
    report = reports.spoilage_report(db, MARCH_1, APRIL_1)
    assert report["total_merma_general"] == 3.5
    assert report["total_productos_afectados"] == 2
    assert [row["name"] for row in report["detalle_mermas"]] == ["Harina de trigo", "Azucar"]


def test_consumption_report_orders_by_total(db, busy_week):
    report = reports.consumption_report(db, MARCH_1, APRIL_1, limit=1)
    assert report["total_insumos"] == 1
    assert report["insumos"][0]["name"] == "Harina de trigo"
    assert report["insumos"][0]["total"] == 30.0


def test_supply_report_groups_by_day(db, busy_week):
    report = reports.supply_report(db, MARCH_1, APRIL_1)
    assert report["entradas_por_fecha"] == [{"date": "2026-03-10", "events": 2, "total": 60.0}]
    assert report["materias_mas_abastecidas"][0]["name"] == "Harina de trigo"
    assert report["resumen"]["total_eventos_entrada"] == 2


def test_reports_respect_range(db, busy_week):
    march_10 = datetime(2026, 3, 10, tzinfo=timezone.utc)
    assert reports.consumption_report(db, march_10, APRIL_1)["insumos"] == []


def test_csv_export(db, ledger, busy_week):
    records = ledger.history(db, limit=500).all()
    content = reports.export_movements_csv(records, reports.item_names(db, records))

    rows = list(csv.reader(StringIO(content)))
    assert rows[0] == ["id", "fecha", "materia_prima", "tipo", "cantidad", "motivo", "usuario"]
    assert len(rows) == 7
    assert rows[1][2:6] == ["Azucar", "merma", "1.500", ""]
    assert rows[-1][2:5] == ["Harina de trigo", "salida", "30.000"]


def test_pdf_export(db, ledger, busy_week):
    records = ledger.history(db).all()
    buffer = reports.export_movements_pdf(records, reports.item_names(db, records), "Movimientos")
    assert buffer.getvalue().startswith(b"%PDF")


def test_pdf_export_without_movements():
    assert reports.export_movements_pdf([], {}, "Vacio").read(4) == b"%PDF"


def test_supply_days_are_grouped_in_utc_on_postgresql():
    compiled = str(reports.utc_day("postgresql").compile(dialect=postgresql.dialect()))
    assert "timezone(" in compiled.lower()
    assert "timezone(" not in str(reports.utc_day("sqlite").compile(dialect=sqlite.dialect())).lower()
