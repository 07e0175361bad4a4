"""HTTP controller layer for availability, holds, pricing and reporting."""

from __future__ import annotations

from datetime import date
from decimal import Decimal
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import Field, field_validator

from hostel_inventory.controllers.dependencies import (
    get_availability_service,
    get_hold_service,
    get_pricing_service,
    get_report_service,
    get_repository,
    to_http_exception,
)
from hostel_inventory.controllers.schemas import CamelModel
from hostel_inventory.domain.errors import InventoryError
from hostel_inventory.domain.models import LedgerEntry
from hostel_inventory.repository.ledger_repository import LedgerRepository
from hostel_inventory.services.availability_service import AvailabilityService
from hostel_inventory.services.hold_service import HoldService
from hostel_inventory.services.pricing_service import PriceBreakdown, PricingService
from hostel_inventory.services.report_service import OccupancyReportService
from hostel_inventory.utils.config import get_settings
from hostel_inventory.utils.logger import get_logger


logger = get_logger(__name__)
settings = get_settings()

router = APIRouter(tags=["inventory"])

# Plain def handlers: room locks and BEGIN IMMEDIATE block, so they run in the threadpool.


class AvailabilityRequest(CamelModel):
    check_in: date
    check_out: date
    beds_needed: int
    room_category: Optional[str] = None


class RoomAvailabilityResponse(CamelModel):
    room_id: str
    room_name: str
    category: str
    capacity: int
    free_beds: int = Field(ge=0)
    bed_indices: list[int]
    eligible: bool


class AlternativeDateResponse(CamelModel):
    check_in: date
    check_out: date
    available_beds: int = Field(ge=0)


class AvailabilityResponse(CamelModel):
    available: bool
    available_beds: int = Field(ge=0)
    per_room: list[RoomAvailabilityResponse]
    alternative_dates: list[AlternativeDateResponse]


class PricingResponse(CamelModel):
    check_in: date
    check_out: date
    nights: int
    total_beds: int
    subtotal: str
    discount_rate: str
    discount_amount: str
    season: str
    season_multiplier: str
    seasonal_adjustment: str
    total: str
    deposit_rate: str
    deposit_amount: str
    remaining_amount: str
    remaining_due_date: date
    currency: str


class HoldRequest(CamelModel):
    room_id: str = Field(min_length=1)
    bed_indices: list[int] = Field(min_length=1)
    check_in: date
    check_out: date
    requested_category: Optional[str] = None


class HoldResponse(CamelModel):
    hold_id: str
    room_id: str
    bed_indices: list[int]
    check_in: date
    check_out: date
    status: str
    expires_at: Optional[str] = None
    pricing: Optional[PricingResponse] = None


class EntryResponse(CamelModel):
    entry_id: str
    room_id: str
    bed_indices: list[int]
    check_in: date
    check_out: date
    origin: str
    status: str
    requested_category: str
    expires_at: Optional[str] = None
    external_platform: Optional[str] = None
    external_id: Optional[str] = None
    guest_count: Optional[int] = None
    blocked: bool = False
    paid_amount: Optional[str] = None


class ConfirmRequest(CamelModel):
    paid_amount: Optional[Decimal] = Field(default=None, ge=0)


class PaymentRequest(CamelModel):
    succeeded: bool
    paid_amount: Optional[Decimal] = Field(default=None, ge=0)


class PaymentResponse(CamelModel):
    status: str
    paid_amount: Optional[str] = None
    expected_deposit: Optional[str] = None
    expected_total: Optional[str] = None
    outstanding: Optional[str] = None
    entry: EntryResponse


class SweepResponse(CamelModel):
    expired: int = Field(ge=0)


class QuoteRoom(CamelModel):
    room_id: str = Field(min_length=1)
    beds_requested: int = Field(gt=0)


class QuoteRequest(CamelModel):
    check_in: date
    check_out: date
    rooms: list[QuoteRoom] = Field(min_length=1)

    @field_validator("rooms")
    @classmethod
    def validate_total_beds(cls, value: list[QuoteRoom]) -> list[QuoteRoom]:
        if sum(room.beds_requested for room in value) > settings.max_beds_per_request:
            raise ValueError(f"total beds must not exceed {settings.max_beds_per_request}")
        return value


class RoomResponse(CamelModel):
    room_id: str
    name: str
    capacity: int
    category: str
    base_price: str
    designated_until_hours: Optional[int] = None


def _entry_response(entry: LedgerEntry) -> EntryResponse:
    return EntryResponse(
        entry_id=entry.entry_id,
        room_id=entry.room_id,
        bed_indices=list(entry.bed_indices),
        check_in=entry.interval.check_in,
        check_out=entry.interval.check_out,
        origin=entry.origin.value,
        status=entry.status.value,
        requested_category=entry.requested_category.value,
        expires_at=entry.expires_at.isoformat() if entry.expires_at else None,
        external_platform=entry.external_platform,
        external_id=entry.external_id,
        guest_count=entry.guest_count,
        blocked=entry.blocked,
        paid_amount=str(entry.paid_amount) if entry.paid_amount is not None else None,
    )


def _breakdown_response(breakdown: PriceBreakdown) -> PricingResponse:
    payload = breakdown.to_dict()
    payload.pop("lines", None)
    return PricingResponse(**payload)


def _unexpected(action: str) -> HTTPException:
    logger.exception("Unexpected failure | action=%s", action)
    return HTTPException(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        detail=f"Failed to {action}",
    )


@router.get("/health", status_code=status.HTTP_200_OK)
async def health() -> dict[str, str]:
    return {"status": "ok"}


@router.get("/rooms", response_model=list[RoomResponse])
def list_rooms(repository: LedgerRepository = Depends(get_repository)) -> list[RoomResponse]:
    return [
        RoomResponse(
            room_id=room.room_id,
            name=room.name,
            capacity=room.capacity,
            category=room.category.value,
            base_price=str(room.base_price),
            designated_until_hours=room.designated_until_hours,
        )
        for room in repository.list_rooms()
    ]


@router.post("/availability", response_model=AvailabilityResponse, status_code=status.HTTP_200_OK)
def check_availability(
    payload: AvailabilityRequest,
    service: AvailabilityService = Depends(get_availability_service),
) -> AvailabilityResponse:
    """Read-only view; the hold step re-checks under the room lock."""
    try:
        result = service.check_availability(
            check_in=payload.check_in,
            check_out=payload.check_out,
            beds_needed=payload.beds_needed,
            room_category=payload.room_category,
        )
    except InventoryError as exc:
        raise to_http_exception(exc) from exc
    except Exception as exc:  # pragma: no cover - defensive fallback
        raise _unexpected("check availability") from exc

    return AvailabilityResponse(
        available=result.available,
        available_beds=result.available_beds,
        per_room=[RoomAvailabilityResponse(**room.to_dict()) for room in result.rooms],
        alternative_dates=[
            AlternativeDateResponse(**alternative.to_dict()) for alternative in result.alternatives
        ],
    )


@router.post("/holds", response_model=HoldResponse, status_code=status.HTTP_201_CREATED)
def create_hold(
    payload: HoldRequest,
    service: HoldService = Depends(get_hold_service),
) -> HoldResponse:
    try:
        entry = service.create_hold(
            room_id=payload.room_id,
            bed_indices=payload.bed_indices,
            check_in=payload.check_in,
            check_out=payload.check_out,
            requested_category=payload.requested_category,
        )
    except InventoryError as exc:
        raise to_http_exception(exc) from exc
    except Exception as exc:  # pragma: no cover - defensive fallback
        raise _unexpected("create hold") from exc

    return HoldResponse(
        hold_id=entry.entry_id,
        room_id=entry.room_id,
        bed_indices=list(entry.bed_indices),
        check_in=entry.interval.check_in,
        check_out=entry.interval.check_out,
        status=entry.status.value,
        expires_at=entry.expires_at.isoformat() if entry.expires_at else None,
        pricing=PricingResponse(**entry.pricing.to_dict() | entry.interval.to_dict())
        if entry.pricing
        else None,
    )


@router.post("/holds/sweep", response_model=SweepResponse)
def sweep_holds(service: HoldService = Depends(get_hold_service)) -> SweepResponse:
    try:
        return SweepResponse(expired=service.expire_holds())
    except Exception as exc:  # pragma: no cover - defensive fallback
        raise _unexpected("expire holds") from exc


@router.post("/holds/{hold_id}/confirm", response_model=EntryResponse)
def confirm_hold(
    hold_id: str,
    payload: Optional[ConfirmRequest] = None,
    service: HoldService = Depends(get_hold_service),
) -> EntryResponse:
    try:
        entry = service.confirm_hold(
            hold_id,
            paid_amount=payload.paid_amount if payload else None,
        )
    except InventoryError as exc:
        raise to_http_exception(exc) from exc
    except Exception as exc:  # pragma: no cover - defensive fallback
        raise _unexpected("confirm hold") from exc
    return _entry_response(entry)


@router.post("/holds/{hold_id}/release", response_model=EntryResponse)
def release_hold(
    hold_id: str,
    service: HoldService = Depends(get_hold_service),
) -> EntryResponse:
    try:
        entry = service.release_hold(hold_id)
    except InventoryError as exc:
        raise to_http_exception(exc) from exc
    except Exception as exc:  # pragma: no cover - defensive fallback
        raise _unexpected("release hold") from exc
    return _entry_response(entry)


@router.post("/holds/{hold_id}/payment", response_model=PaymentResponse)
def apply_payment(
    hold_id: str,
    payload: PaymentRequest,
    service: HoldService = Depends(get_hold_service),
) -> PaymentResponse:
    """Signal from the payment collaborator: confirm on success, release on failure."""
    try:
        result = service.apply_payment_result(
            hold_id,
            succeeded=payload.succeeded,
            paid_amount=payload.paid_amount,
        )
    except InventoryError as exc:
        raise to_http_exception(exc) from exc
    except Exception as exc:  # pragma: no cover - defensive fallback
        raise _unexpected("apply payment result") from exc

    body = result.to_dict()
    body["entry"] = _entry_response(result.entry)
    return PaymentResponse(**body)


@router.post("/entries/{entry_id}/cancel", response_model=EntryResponse)
def cancel_entry(
    entry_id: str,
    service: HoldService = Depends(get_hold_service),
) -> EntryResponse:
    try:
        entry = service.cancel_entry(entry_id)
    except InventoryError as exc:
        raise to_http_exception(exc) from exc
    except Exception as exc:  # pragma: no cover - defensive fallback
        raise _unexpected("cancel entry") from exc
    return _entry_response(entry)


@router.post("/pricing/quote", response_model=PricingResponse)
def quote_price(
    payload: QuoteRequest,
    service: PricingService = Depends(get_pricing_service),
) -> PricingResponse:
    try:
        breakdown = service.quote(
            check_in=payload.check_in,
            check_out=payload.check_out,
            rooms=[(room.room_id, room.beds_requested) for room in payload.rooms],
        )
    except InventoryError as exc:
        raise to_http_exception(exc) from exc
    except Exception as exc:  # pragma: no cover - defensive fallback
        raise _unexpected("quote price") from exc
    return _breakdown_response(breakdown)


@router.get("/occupancy")
def occupancy(
    start: date = Query(...),
    end: date = Query(...),
    service: OccupancyReportService = Depends(get_report_service),
) -> dict:
    try:
        return service.occupancy_report(start, end)
    except InventoryError as exc:
        raise to_http_exception(exc) from exc
    except Exception as exc:  # pragma: no cover - defensive fallback
        raise _unexpected("build occupancy report") from exc
