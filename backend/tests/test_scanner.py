from decimal import Decimal

from panaderia.models.inventory import MovementType
from panaderia.services import catalog
from panaderia.services.scanner import count_critical_items, find_critical_items


def test_no_critical_items_when_stock_is_healthy(db, flour):
    assert find_critical_items(db) == []
    assert count_critical_items(db) == 0


def test_item_at_minimum_is_critical(db, ledger, flour):
    ledger.apply(db, flour.id, MovementType.OUTGOING, 80)

    critical = find_critical_items(db)
    assert [item.name for item in critical] == ["Harina de trigo"]
    assert critical[0].quantity == Decimal("20")
    assert critical[0].shortfall == Decimal("0")


def test_shortfall_and_ordering(db, ledger, make_item):
    make_item("Levadura", quantity="1", minimum="2")
    make_item("Azucar", quantity="4", minimum="10")
    make_item("Leche", quantity="30", minimum="12")

    critical = find_critical_items(db)
    assert [item.name for item in critical] == ["Azucar", "Levadura"]
    assert critical[0].shortfall == Decimal("6")
    assert count_critical_items(db) == 2


def test_inactive_items_are_ignored(db, coordinator, make_item):
    empty = make_item("Canela", quantity="0", minimum="1")
    catalog.deactivate_item(db, coordinator, empty.id)

    assert find_critical_items(db) == []
