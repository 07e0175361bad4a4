"""Shared FastAPI dependency providers and domain-to-HTTP error translation."""

from __future__ import annotations

from typing import Any

from fastapi import HTTPException, Request, status

from hostel_inventory.domain.errors import (
    CategoryNotEligible,
    EntryNotFound,
    ExternalConflict,
    FeedFetchError,
    FeedNotFound,
    FeedParseError,
    HoldConflict,
    HoldNotFound,
    HoldStateError,
    InsufficientAvailability,
    InvalidBedSelection,
    InvalidRange,
    InventoryError,
    MinimumNightsError,
    PricingError,
    RoomNotFound,
)
from hostel_inventory.repository.ledger_repository import LedgerRepository
from hostel_inventory.services.availability_service import AvailabilityService
from hostel_inventory.services.calendar_export import CalendarExportService
from hostel_inventory.services.hold_service import HoldService
from hostel_inventory.services.pricing_service import PricingService
from hostel_inventory.services.report_service import OccupancyReportService
from hostel_inventory.services.sync_service import SyncService


_STATUS_BY_ERROR: tuple[tuple[type[InventoryError], int], ...] = (
    (RoomNotFound, status.HTTP_404_NOT_FOUND),
    (HoldNotFound, status.HTTP_404_NOT_FOUND),
    (EntryNotFound, status.HTTP_404_NOT_FOUND),
    (FeedNotFound, status.HTTP_404_NOT_FOUND),
    (HoldConflict, status.HTTP_409_CONFLICT),
    (InsufficientAvailability, status.HTTP_409_CONFLICT),
    (HoldStateError, status.HTTP_409_CONFLICT),
    (ExternalConflict, status.HTTP_409_CONFLICT),
    (FeedFetchError, status.HTTP_502_BAD_GATEWAY),
    (FeedParseError, status.HTTP_422_UNPROCESSABLE_ENTITY),
    (InvalidRange, status.HTTP_400_BAD_REQUEST),
    (InvalidBedSelection, status.HTTP_400_BAD_REQUEST),
    (CategoryNotEligible, status.HTTP_400_BAD_REQUEST),
    (PricingError, status.HTTP_400_BAD_REQUEST),
)


def to_http_exception(exc: InventoryError) -> HTTPException:
    """Map a domain failure onto a status code and a machine-readable body."""
    status_code = status.HTTP_400_BAD_REQUEST
    for error_type, mapped_status in _STATUS_BY_ERROR:
        if isinstance(exc, error_type):
            status_code = mapped_status
            break

    detail: dict[str, Any] = {"code": exc.code, "message": str(exc)}
    if isinstance(exc, HoldConflict):
        detail["conflictingBeds"] = list(exc.conflicting_beds)
    if isinstance(exc, MinimumNightsError):
        detail["season"] = exc.season
        detail["requiredNights"] = exc.required_nights
        detail["actualNights"] = exc.actual_nights
    if isinstance(exc, ExternalConflict):
        detail["conflictingEntries"] = list(exc.conflicting_entry_ids)
    return HTTPException(status_code=status_code, detail=detail)


def _require_state(request: Request, attribute: str, label: str) -> Any:
    service = getattr(request.app.state, attribute, None)
    if service is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=f"{label} is not initialized",
        )
    return service


def get_repository(request: Request) -> LedgerRepository:
    return _require_state(request, "repository", "Ledger repository")


def get_availability_service(request: Request) -> AvailabilityService:
    return _require_state(request, "availability_service", "Availability service")


def get_hold_service(request: Request) -> HoldService:
    return _require_state(request, "hold_service", "Hold service")


def get_pricing_service(request: Request) -> PricingService:
    return _require_state(request, "pricing_service", "Pricing service")


def get_export_service(request: Request) -> CalendarExportService:
    return _require_state(request, "export_service", "Calendar export service")


def get_sync_service(request: Request) -> SyncService:
    return _require_state(request, "sync_service", "Sync service")


def get_report_service(request: Request) -> OccupancyReportService:
    return _require_state(request, "report_service", "Report service")
