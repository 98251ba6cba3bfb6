"""
Per-item serialization of stock-changing work.

``StockCoordinator.hold(item_id)`` is an exclusive section keyed by item id.
Sections for different items never contend. A caller that cannot enter the
section before its deadline gets ``LedgerBusyError`` instead of blocking.

Locks are created on first use and dropped once no holder or waiter
references them, so the registry does not grow with the catalog.
"""
from __future__ import annotations

import threading
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field

from panaderia.core.exceptions import LedgerBusyError
from panaderia.core.logging_config import get_logger


logger = get_logger("services.coordinator")


@dataclass
class _ItemLock:
    lock: threading.Lock = field(default_factory=threading.Lock)
    refs: int = 0


class StockCoordinator:
    def __init__(self, default_timeout: float = 5.0):
        self.default_timeout = default_timeout
        self._registry_guard = threading.Lock()
        self._locks: dict[int, _ItemLock] = {}

    def _checkout(self, item_id: int) -> _ItemLock:
        with self._registry_guard:
            entry = self._locks.get(item_id)
            if entry is None:
                entry = _ItemLock()
                self._locks[item_id] = entry
            entry.refs += 1
            return entry

    def _checkin(self, item_id: int, entry: _ItemLock) -> None:
        with self._registry_guard:
            entry.refs -= 1
            if entry.refs == 0:
                self._locks.pop(item_id, None)

    @contextmanager
    def hold(self, item_id: int, timeout: float | None = None) -> Iterator[None]:
        deadline = self.default_timeout if timeout is None else timeout
        entry = self._checkout(item_id)
        try:
            if deadline <= 0:
                acquired = entry.lock.acquire(blocking=False)
            else:
                acquired = entry.lock.acquire(timeout=deadline)
            if not acquired:
                logger.warning("Materia prima %s ocupada tras %.2fs", item_id, deadline)
                raise LedgerBusyError(item_id, deadline)
            try:
                yield
            finally:
                entry.lock.release()
        finally:
            self._checkin(item_id, entry)

    def is_held(self, item_id: int) -> bool:
        with self._registry_guard:
            entry = self._locks.get(item_id)
            return entry is not None and entry.lock.locked()

    def tracked_items(self) -> int:
        with self._registry_guard:
            return len(self._locks)
