"""
Serialization, isolation and failure behaviour of the ledger under threads.

Every worker opens its own session against the shared SQLite file; the main
session is left without an open transaction before workers start.
"""
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from decimal import Decimal
from unittest import mock

import pytest
from sqlalchemy import func, select
from sqlalchemy.exc import OperationalError

from panaderia.core.exceptions import InsufficientStockError, LedgerBusyError, StorageFailureError
from panaderia.models.inventory import InventoryMovement, MovementType
from panaderia.services.scanner import find_critical_items


def run_outgoing(session_factory, ledger, barrier, item_id, amount):
    with session_factory() as session:
        barrier.wait()
        try:
            return ledger.apply(session, item_id, MovementType.OUTGOING, amount, timeout=10)
        except InsufficientStockError as exc:
            return exc


def movement_total(session_factory, item_id: int) -> int:
    with session_factory() as session:
        return session.scalar(select(func.count(InventoryMovement.id)).where(InventoryMovement.item_id == item_id))


class TestSerialization:
    def test_two_competing_withdrawals_one_wins(self, db, session_factory, ledger, flour, stored_quantity):
        item_id = flour.id
        db.close()
        barrier = threading.Barrier(2)

        with ThreadPoolExecutor(max_workers=2) as pool:
            futures = [pool.submit(run_outgoing, session_factory, ledger, barrier, item_id, 60) for _ in range(2)]
            outcomes = [future.result(timeout=30) for future in futures]

        failures = [outcome for outcome in outcomes if isinstance(outcome, InsufficientStockError)]
        successes = [outcome for outcome in outcomes if not isinstance(outcome, InsufficientStockError)]
        assert len(successes) == 1
        assert len(failures) == 1
        assert successes[0].quantity_after == Decimal("40")
        assert failures[0].available == Decimal("40")
        assert stored_quantity(item_id) == Decimal("40")
        assert movement_total(session_factory, item_id) == 1

    def test_many_small_withdrawals_never_oversell(self, db, session_factory, ledger, make_item, stored_quantity):
        item_id = make_item("Levadura", quantity="10", minimum="2").id
        db.close()
        workers = 15
        barrier = threading.Barrier(workers)

        with ThreadPoolExecutor(max_workers=workers) as pool:
            futures = [pool.submit(run_outgoing, session_factory, ledger, barrier, item_id, 1) for _ in range(workers)]
            outcomes = [future.result(timeout=60) for future in futures]

        successes = [outcome for outcome in outcomes if not isinstance(outcome, InsufficientStockError)]
        assert len(successes) == 10
        assert stored_quantity(item_id) == Decimal("0")
        assert sorted(outcome.quantity_after for outcome in successes) == [Decimal(n) for n in range(10)]

        with session_factory() as session:
            assert ledger.reconcile(session, item_id).consistent


class TestIndependence:
    def test_held_item_does_not_block_other_items(self, db, session_factory, ledger, coordinator, flour, make_item):
        sugar_id = make_item("Azucar", quantity="40", minimum="10").id
        flour_id = flour.id
        db.close()

        def withdraw_sugar():
            with session_factory() as session:
                started = time.monotonic()
                result = ledger.apply(session, sugar_id, MovementType.OUTGOING, 5, timeout=1.0)
                return result, time.monotonic() - started

        with coordinator.hold(flour_id):
            with ThreadPoolExecutor(max_workers=1) as pool:
                result, elapsed = pool.submit(withdraw_sugar).result(timeout=10)

        assert result.quantity_after == Decimal("35")
        assert elapsed < 1.0
        assert coordinator.tracked_items() == 0


class TestBusy:
    def test_held_item_times_out(self, db, ledger, coordinator, flour, stored_quantity):
        with coordinator.hold(flour.id):
            started = time.monotonic()
            with pytest.raises(LedgerBusyError) as excinfo:
                ledger.apply(db, flour.id, MovementType.OUTGOING, 5, timeout=0.2)
            elapsed = time.monotonic() - started

        assert excinfo.value.item_id == flour.id
        assert excinfo.value.retryable is True
        assert elapsed >= 0.2
        assert stored_quantity(flour.id) == Decimal("100")

    def test_zero_timeout_tries_once(self, db, ledger, coordinator, flour):
        with coordinator.hold(flour.id):
            with pytest.raises(LedgerBusyError):
                ledger.apply(db, flour.id, MovementType.INCOMING, 5, timeout=0)

    def test_open_reader_does_not_outlast_deadline(self, db, session_factory, ledger, flour, stored_quantity):
        item_id = flour.id
        db.close()

        reader = session_factory()
        try:
            assert find_critical_items(reader) == []
            started = time.monotonic()
            with session_factory() as writer:
                with pytest.raises(LedgerBusyError):
                    ledger.apply(writer, item_id, MovementType.OUTGOING, 5, timeout=0.5)
            elapsed = time.monotonic() - started
        finally:
            reader.close()

        assert elapsed < 2.0
        assert stored_quantity(item_id) == Decimal("100")

        with session_factory() as writer:
            assert ledger.apply(writer, item_id, MovementType.OUTGOING, 5).quantity_after == Decimal("95")

    def test_waiter_proceeds_after_release(self, db, session_factory, ledger, coordinator, flour, stored_quantity):
        item_id = flour.id
        db.close()
        entered = threading.Event()
        release = threading.Event()

        def holder():
            with coordinator.hold(item_id):
                entered.set()
                release.wait(timeout=5)

        with ThreadPoolExecutor(max_workers=2) as pool:
            held = pool.submit(holder)
            assert entered.wait(timeout=5)

            def withdraw():
                with session_factory() as session:
                    return ledger.apply(session, item_id, MovementType.OUTGOING, 10, timeout=5)

            pending = pool.submit(withdraw)
            time.sleep(0.1)
            assert not pending.done()
            release.set()
            held.result(timeout=5)
            assert pending.result(timeout=10).quantity_after == Decimal("90")

        assert stored_quantity(item_id) == Decimal("90")


class TestStorageFailure:
    def test_failed_commit_changes_nothing(self, db, session_factory, ledger, flour, stored_quantity):
        failure = OperationalError("COMMIT", {}, Exception("disk I/O error"))

        with mock.patch.object(db, "commit", side_effect=failure):
            with pytest.raises(StorageFailureError) as excinfo:
                ledger.apply(db, flour.id, MovementType.OUTGOING, 30)

        assert excinfo.value.retryable is True
        assert isinstance(excinfo.value.__cause__, OperationalError)
        assert stored_quantity(flour.id) == Decimal("100")
        assert movement_total(session_factory, flour.id) == 0

    def test_failed_flush_changes_nothing(self, db, session_factory, ledger, flour, stored_quantity):
        failure = OperationalError("INSERT", {}, Exception("disk I/O error"))

        with mock.patch.object(db, "flush", side_effect=failure):
            with pytest.raises(StorageFailureError):
                ledger.apply(db, flour.id, MovementType.INCOMING, 30)

        assert stored_quantity(flour.id) == Decimal("100")
        assert movement_total(session_factory, flour.id) == 0

    def test_ledger_usable_after_failure(self, db, ledger, flour):
        with mock.patch.object(db, "commit", side_effect=OperationalError("COMMIT", {}, Exception("boom"))):
            with pytest.raises(StorageFailureError):
                ledger.apply(db, flour.id, MovementType.OUTGOING, 30)

        assert ledger.apply(db, flour.id, MovementType.OUTGOING, 30).quantity_after == Decimal("70")
