"""Deterministic stay pricing: group discounts, seasonal multipliers and deposits."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, timedelta
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Iterable, Optional, Sequence

from hostel_inventory.domain.constraints import build_interval
from hostel_inventory.domain.errors import MinimumNightsError, PricingError, RoomNotFound
from hostel_inventory.domain.models import PricingSnapshot, Room, StayInterval
from hostel_inventory.repository.ledger_repository import LedgerRepository
from hostel_inventory.utils.config import Settings, get_settings
from hostel_inventory.utils.logger import get_logger


logger = get_logger(__name__)

CENT = Decimal("0.01")

SEASON_CARNIVAL = "carnival"
SEASON_HIGH = "high"
SEASON_SHOULDER = "shoulder"
SEASON_LOW = "low"


def quantize_money(value: Decimal) -> Decimal:
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


@dataclass(frozen=True)
class Season:
    name: str
    multiplier: Decimal
    min_nights: int = 1


@dataclass(frozen=True)
class PriceLine:
    room_id: str
    beds: int
    nights: int
    unit_price: Decimal
    amount: Decimal

    def to_dict(self) -> dict[str, Any]:
        return {
            "room_id": self.room_id,
            "beds": self.beds,
            "nights": self.nights,
            "unit_price": str(self.unit_price),
            "amount": str(self.amount),
        }


@dataclass(frozen=True)
class PriceBreakdown:
    """Full quote for a stay; identical inputs always yield an identical breakdown."""

    interval: StayInterval
    lines: tuple[PriceLine, ...]
    snapshot: PricingSnapshot

    @property
    def total(self) -> Decimal:
        return self.snapshot.total

    def to_dict(self) -> dict[str, Any]:
        payload = self.snapshot.to_dict()
        payload.update(self.interval.to_dict())
        payload["lines"] = [line.to_dict() for line in self.lines]
        return payload


def group_discount_rate(total_beds: int, settings: Settings) -> Decimal:
    """Return the discount for the largest tier whose threshold ``total_beds`` reaches."""
    for threshold, rate in sorted(settings.group_discount_tiers, key=lambda tier: -tier[0]):
        if total_beds >= threshold:
            return Decimal(rate)
    return Decimal("0")


def _in_carnival(night: date, settings: Settings) -> bool:
    for start, end in settings.carnival_windows:
        if date.fromisoformat(start) <= night <= date.fromisoformat(end):
            return True
    return False


def season_for(night: date, settings: Settings) -> Season:
    if _in_carnival(night, settings):
        return Season(SEASON_CARNIVAL, settings.carnival_multiplier, settings.carnival_min_nights)
    if night.month in settings.high_season_months:
        return Season(SEASON_HIGH, settings.high_season_multiplier)
    if night.month in settings.low_season_months:
        return Season(SEASON_LOW, settings.low_season_multiplier)
    return Season(SEASON_SHOULDER, settings.shoulder_season_multiplier)


def governing_season(interval: StayInterval, settings: Settings) -> Season:
    """Season with the highest multiplier across every night of the stay."""
    seasons = [season_for(night, settings) for night in interval.dates()]
    return max(seasons, key=lambda season: season.multiplier)


def deposit_rate(total_beds: int, settings: Settings) -> Decimal:
    if total_beds >= settings.deposit_large_group_threshold:
        return Decimal(settings.deposit_large_group_rate)
    return Decimal(settings.deposit_standard_rate)


def calculate_price(
    selections: Sequence[tuple[Room, int]],
    interval: StayInterval,
    settings: Settings,
) -> PriceBreakdown:
    """Price ``selections`` of (room, beds) for ``interval``.

    Raises PricingError for empty or non-positive selections and
    MinimumNightsError when the governing season requires a longer stay.
    """
    if not selections:
        raise PricingError("at least one room selection is required")
    if any(beds <= 0 for _, beds in selections):
        raise PricingError("beds requested must be positive for every room")

    nights = interval.nights
    season = governing_season(interval, settings)
    if nights < season.min_nights:
        raise MinimumNightsError(
            f"{season.name} season requires at least {season.min_nights} nights",
            season=season.name,
            required_nights=season.min_nights,
            actual_nights=nights,
        )

    lines = tuple(
        PriceLine(
            room_id=room.room_id,
            beds=beds,
            nights=nights,
            unit_price=quantize_money(room.base_price),
            amount=quantize_money(room.base_price * beds * nights),
        )
        for room, beds in selections
    )
    total_beds = sum(line.beds for line in lines)
    subtotal = sum((line.amount for line in lines), Decimal("0"))

    discount = group_discount_rate(total_beds, settings)
    discount_amount = quantize_money(subtotal * discount)
    discounted = subtotal - discount_amount

    seasonal_adjustment = quantize_money(discounted * season.multiplier - discounted)
    total = discounted + seasonal_adjustment

    rate = deposit_rate(total_beds, settings)
    deposit_amount = quantize_money(total * rate)

    snapshot = PricingSnapshot(
        nights=nights,
        total_beds=total_beds,
        subtotal=quantize_money(subtotal),
        discount_rate=discount,
        discount_amount=discount_amount,
        season=season.name,
        season_multiplier=season.multiplier,
        seasonal_adjustment=seasonal_adjustment,
        total=quantize_money(total),
        deposit_rate=rate,
        deposit_amount=deposit_amount,
        remaining_amount=quantize_money(total - deposit_amount),
        remaining_due_date=interval.check_in - timedelta(days=settings.remaining_due_days),
        currency=settings.currency,
    )
    return PriceBreakdown(interval=interval, lines=lines, snapshot=snapshot)


class PricingService:
    """Resolves rooms from the catalogue and delegates to the pure pricing functions."""

    def __init__(
        self,
        repository: Optional[LedgerRepository] = None,
        settings: Optional[Settings] = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._repository = repository or LedgerRepository(self._settings)

    def price_selection(self, room: Room, beds: int, interval: StayInterval) -> PriceBreakdown:
        return calculate_price([(room, beds)], interval, self._settings)

    def quote(
        self,
        check_in: date,
        check_out: date,
        rooms: Iterable[tuple[str, int]],
    ) -> PriceBreakdown:
        interval = build_interval(check_in, check_out)
        requested: dict[str, int] = {}
        for room_id, beds in rooms:
            requested[room_id] = requested.get(room_id, 0) + int(beds)

        selections: list[tuple[Room, int]] = []
        for room_id in sorted(requested):
            room = self._repository.get_room(room_id)
            if room is None:
                raise RoomNotFound(f"room {room_id} not found")
            if requested[room_id] > room.capacity:
                raise PricingError(
                    f"room {room_id} has {room.capacity} beds; {requested[room_id]} requested"
                )
            selections.append((room, requested[room_id]))

        breakdown = calculate_price(selections, interval, self._settings)
        logger.info(
            "Price quoted | check_in=%s | nights=%s | beds=%s | season=%s | total=%s",
            check_in.isoformat(),
            breakdown.snapshot.nights,
            breakdown.snapshot.total_beds,
            breakdown.snapshot.season,
            breakdown.snapshot.total,
        )
        return breakdown
