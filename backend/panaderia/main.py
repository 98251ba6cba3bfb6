import time

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session, sessionmaker

from panaderia import models  # noqa: F401
from panaderia.api.routes import api_router
from panaderia.core.config import Settings, get_settings
from panaderia.core.logging_config import get_logger, setup_logging
from panaderia.db.base import Base
from panaderia.db.immutability import register_immutability_listeners
from panaderia.db.session import get_default_session_factory
from panaderia.services.coordinator import StockCoordinator
from panaderia.services.ledger import InventoryLedger
from panaderia.services.seed import seed_initial_data


logger = get_logger("main")

STARTUP_RETRIES = 20


def create_app(settings: Settings | None = None, session_factory: sessionmaker[Session] | None = None) -> FastAPI:
    settings = settings or get_settings()
    setup_logging(settings)
    register_immutability_listeners()

    app = FastAPI(title=settings.app_name)
    app.state.settings = settings
    app.state.session_factory = session_factory or get_default_session_factory()
    app.state.coordinator = StockCoordinator(default_timeout=settings.ledger_lock_timeout_seconds)
    app.state.ledger = InventoryLedger(
        app.state.coordinator,
        lock_timeout=settings.ledger_lock_timeout_seconds,
        page_limit_max=settings.history_page_limit_max,
    )

    origins = [origin.strip() for origin in settings.cors_origins.split(",") if origin.strip()]
    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.on_event("startup")
    def startup_event() -> None:
        factory = app.state.session_factory
        retries = STARTUP_RETRIES
        while retries > 0:
            try:
                Base.metadata.create_all(bind=factory.kw["bind"])
                break
            except OperationalError:
                retries -= 1
                if retries == 0:
                    raise
                logger.warning("Base de datos no disponible, reintentando (%s restantes)", retries)
                time.sleep(1)

        db = factory()
        try:
            seed_initial_data(db, with_demo_items=settings.seed_demo_data)
        finally:
            db.close()
        logger.info("%s iniciado (%s)", settings.app_name, settings.environment)

    @app.get("/")
    def root() -> dict:
        return {
            "name": settings.app_name,
            "version": "0.1.0",
            "docs": "/docs",
        }

    app.include_router(api_router, prefix=settings.api_v1_prefix)
    return app


app = create_app()
