"""
app.py: FastAPI application factory and startup lifecycle.

This is the ASGI application object imported by uvicorn.
It wires the ledger repository and every service, registers routers, and
runs startup initialization (schema, room catalogue, recurring jobs).

Usage (via launcher):
    python main.py

Usage (direct uvicorn):
    uvicorn app:app --reload
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI

from hostel_inventory.controllers.calendar_controller import router as calendar_router
from hostel_inventory.controllers.inventory_controller import router as inventory_router
from hostel_inventory.domain.constraints import validate_settings
from hostel_inventory.repository.ledger_repository import LedgerRepository
from hostel_inventory.services.availability_service import AvailabilityService
from hostel_inventory.services.calendar_export import CalendarExportService
from hostel_inventory.services.calendar_parser import CalendarFeedParser
from hostel_inventory.services.conflict_resolver import ConflictResolver
from hostel_inventory.services.hold_service import HoldService, RoomLockRegistry
from hostel_inventory.services.pricing_service import PricingService
from hostel_inventory.services.report_service import OccupancyReportService
from hostel_inventory.services.scheduler import build_inventory_scheduler
from hostel_inventory.services.sync_service import SyncService
from hostel_inventory.utils.config import Settings, get_settings
from hostel_inventory.utils.logger import get_logger


logger = get_logger(__name__)


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    """
    Build and wire the FastAPI application.

    Instantiates all services with explicit dependency injection via app.state.
    Hold creation and feed import share one RoomLockRegistry so every writer
    of a room's beds is serialized through the same lock.
    """
    settings = settings or get_settings()
    validate_settings(settings)

    # --- Repository (single SQLite connection factory) ---
    repository = LedgerRepository(settings)
    locks = RoomLockRegistry()

    # --- Services ---
    availability_service = AvailabilityService(repository=repository, settings=settings)
    pricing_service = PricingService(repository=repository, settings=settings)
    hold_service = HoldService(
        repository=repository,
        availability_service=availability_service,
        pricing_service=pricing_service,
        settings=settings,
        locks=locks,
    )
    export_service = CalendarExportService(repository=repository, settings=settings)
    sync_service = SyncService(
        repository=repository,
        parser=CalendarFeedParser(settings),
        resolver=ConflictResolver(repository=repository, settings=settings, locks=locks),
        availability_service=availability_service,
        settings=settings,
    )
    report_service = OccupancyReportService(repository=repository, settings=settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Run startup initialization before accepting requests."""
        _startup(app)
        yield
        _shutdown(app)

    app = FastAPI(
        title=settings.app_name,
        version=settings.app_version,
        lifespan=lifespan,
    )

    # --- Routers ---
    app.include_router(inventory_router)
    app.include_router(calendar_router)

    # --- Inject services into app.state for dependency resolution ---
    app.state.settings = settings
    app.state.repository = repository
    app.state.availability_service = availability_service
    app.state.pricing_service = pricing_service
    app.state.hold_service = hold_service
    app.state.export_service = export_service
    app.state.sync_service = sync_service
    app.state.report_service = report_service
    app.state.scheduler = None

    return app


def _startup(app: FastAPI) -> None:
    """
    Idempotent startup sequence. Safe to re-run on server restarts.

    Order matters:
      1. Schema must exist before seeding.
      2. Room catalogue is seeded only when the Rooms table is empty.
      3. Holds left over from a previous run are expired before serving.
      4. Recurring jobs start last, and only when enabled.
    """
    settings: Settings = app.state.settings
    repository: LedgerRepository = app.state.repository
    hold_service: HoldService = app.state.hold_service
    sync_service: SyncService = app.state.sync_service

    logger.info("Startup: initializing database schema")
    repository.initialize_database()

    logger.info("Startup: seeding room catalogue (skipped if Rooms table not empty)")
    repository.seed_rooms()

    logger.info("Startup: expiring stale holds")
    hold_service.expire_holds()

    if settings.scheduler_enabled:
        scheduler = build_inventory_scheduler(
            hold_service,
            sync_service,
            hold_sweep_interval_seconds=settings.hold_sweep_interval_seconds,
            sync_interval_minutes=sync_service.sync_interval_minutes,
        )
        scheduler.start()
        app.state.scheduler = scheduler
    else:
        logger.info("Startup: recurring jobs disabled")

    logger.info("Startup complete | system ready")


def _shutdown(app: FastAPI) -> None:
    scheduler = getattr(app.state, "scheduler", None)
    if scheduler is not None:
        scheduler.shutdown()
    app.state.scheduler = None


# Module-level app object for uvicorn
app = create_app()
