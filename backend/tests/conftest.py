"""
Shared fixtures.

Every test gets its own SQLite file under ``tmp_path`` so that worker threads
open real, separate connections to the same database.
"""
import threading
from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest
from fastapi.testclient import TestClient

from panaderia import models  # noqa: F401
from panaderia.core.config import Settings
from panaderia.db.base import Base
from panaderia.db.immutability import register_immutability_listeners
from panaderia.db.session import build_engine, build_session_factory
from panaderia.main import create_app
from panaderia.services import catalog
from panaderia.services.coordinator import StockCoordinator
from panaderia.services.ledger import InventoryLedger
from panaderia.services.seed import seed_initial_data


class StepClock:
    """Deterministic clock: every reading is ``step`` later than the previous one."""

    def __init__(self, start: datetime, step: timedelta = timedelta(seconds=1)):
        self.current = start
        self.step = step
        self._lock = threading.Lock()

    def __call__(self) -> datetime:
        with self._lock:
            value = self.current
            self.current = value + self.step
            return value

    def set(self, value: datetime) -> None:
        with self._lock:
            self.current = value


@pytest.fixture
def database_url(tmp_path):
    return f"sqlite:///{tmp_path / 'panaderia.db'}"


@pytest.fixture
def engine(database_url):
    engine = build_engine(database_url)
    register_immutability_listeners()
    Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return build_session_factory(engine)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def clock():
    return StepClock(datetime(2026, 3, 10, 8, 0, tzinfo=timezone.utc))


@pytest.fixture
def coordinator():
    return StockCoordinator(default_timeout=2.0)


@pytest.fixture
def ledger(coordinator, clock):
    return InventoryLedger(coordinator, lock_timeout=2.0, page_limit_max=500, clock=clock)


@pytest.fixture
def make_item(db):
    def factory(name: str = "Harina", quantity="100", minimum="20", unit: str = "kg", **kwargs):
        return catalog.create_item(db, name=name, unit=unit, quantity=Decimal(quantity), minimum=Decimal(minimum), **kwargs)

    return factory


@pytest.fixture
def flour(make_item):
    return make_item("Harina de trigo", quantity="100", minimum="20")


@pytest.fixture
def stored_quantity(session_factory):
    """Read an item quantity through a fresh session."""

    def read(item_id: int) -> Decimal:
        with session_factory() as session:
            return catalog.get_item(session, item_id).quantity

    return read


@pytest.fixture
def settings(tmp_path, database_url):
    return Settings(
        database_url=database_url,
        log_dir=str(tmp_path / "logs"),
        seed_demo_data=False,
        ledger_lock_timeout_seconds=2.0,
    )


@pytest.fixture
def client(settings, session_factory):
    with session_factory() as session:
        seed_initial_data(session, with_demo_items=False)

    app = create_app(settings, session_factory)
    with TestClient(app) as test_client:
        yield test_client


def login(client: TestClient, email: str, password: str) -> dict:
    response = client.post("/api/v1/auth/login", json={"email": email, "password": password})
    assert response.status_code == 200, response.text
    return {"Authorization": f"Bearer {response.json()['access_token']}"}


@pytest.fixture
def auth_headers(client):
    def factory(email: str, password: str) -> dict:
        return login(client, email, password)

    return factory


@pytest.fixture
def admin_headers(client):
    return login(client, "admin@panaderia.local", "Admin123!")


@pytest.fixture
def baker_headers(client):
    return login(client, "panadero@panaderia.local", "Panadero123!")
