"""Domain models for bed inventory, holds, pricing snapshots and calendar feeds."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from decimal import Decimal
from enum import Enum
from typing import Any, Iterator, Optional


class RoomCategory(str, Enum):
    MIXED = "mixed"
    DESIGNATED = "designated"
    SWING = "swing"


class RequestCategory(str, Enum):
    MIXED = "mixed"
    FEMALE = "female"


class EntryOrigin(str, Enum):
    DIRECT = "direct"
    HOLD = "hold"
    PLATFORM_IMPORT = "platform-import"


class EntryStatus(str, Enum):
    HOLD = "HOLD"
    CONFIRMED = "CONFIRMED"
    RELEASED = "RELEASED"
    EXPIRED = "EXPIRED"
    CANCELLED = "CANCELLED"


class StayStatus(str, Enum):
    """Status of an externally sourced stay as read from a calendar feed."""

    CONFIRMED = "confirmed"
    BLOCKED = "blocked"
    CANCELLED = "cancelled"


@dataclass(frozen=True)
class Room:
    room_id: str
    name: str
    capacity: int
    category: RoomCategory
    base_price: Decimal
    designated_until_hours: Optional[int] = None

    @property
    def bed_indices(self) -> range:
        return range(1, self.capacity + 1)


@dataclass(frozen=True, order=True)
class StayInterval:
    """Half-open night range ``[check_in, check_out)``."""

    check_in: date
    check_out: date

    @property
    def nights(self) -> int:
        return (self.check_out - self.check_in).days

    def overlaps(self, other: "StayInterval") -> bool:
        return self.check_in < other.check_out and other.check_in < self.check_out

    def covers(self, night: date) -> bool:
        return self.check_in <= night < self.check_out

    def dates(self) -> Iterator[date]:
        current = self.check_in
        while current < self.check_out:
            yield current
            current += timedelta(days=1)

    def shifted(self, days: int) -> "StayInterval":
        delta = timedelta(days=days)
        return StayInterval(self.check_in + delta, self.check_out + delta)

    def to_dict(self) -> dict[str, str]:
        return {
            "check_in": self.check_in.isoformat(),
            "check_out": self.check_out.isoformat(),
        }


@dataclass(frozen=True)
class PricingSnapshot:
    """Price breakdown frozen on a ledger entry at creation time."""

    nights: int
    total_beds: int
    subtotal: Decimal
    discount_rate: Decimal
    discount_amount: Decimal
    season: str
    season_multiplier: Decimal
    seasonal_adjustment: Decimal
    total: Decimal
    deposit_rate: Decimal
    deposit_amount: Decimal
    remaining_amount: Decimal
    remaining_due_date: date
    currency: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "nights": self.nights,
            "total_beds": self.total_beds,
            "subtotal": str(self.subtotal),
            "discount_rate": str(self.discount_rate),
            "discount_amount": str(self.discount_amount),
            "season": self.season,
            "season_multiplier": str(self.season_multiplier),
            "seasonal_adjustment": str(self.seasonal_adjustment),
            "total": str(self.total),
            "deposit_rate": str(self.deposit_rate),
            "deposit_amount": str(self.deposit_amount),
            "remaining_amount": str(self.remaining_amount),
            "remaining_due_date": self.remaining_due_date.isoformat(),
            "currency": self.currency,
        }

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> "PricingSnapshot":
        return cls(
            nights=int(payload["nights"]),
            total_beds=int(payload["total_beds"]),
            subtotal=Decimal(payload["subtotal"]),
            discount_rate=Decimal(payload["discount_rate"]),
            discount_amount=Decimal(payload["discount_amount"]),
            season=str(payload["season"]),
            season_multiplier=Decimal(payload["season_multiplier"]),
            seasonal_adjustment=Decimal(payload["seasonal_adjustment"]),
            total=Decimal(payload["total"]),
            deposit_rate=Decimal(payload["deposit_rate"]),
            deposit_amount=Decimal(payload["deposit_amount"]),
            remaining_amount=Decimal(payload["remaining_amount"]),
            remaining_due_date=date.fromisoformat(payload["remaining_due_date"]),
            currency=str(payload["currency"]),
        )


ACTIVE_STATUSES = (EntryStatus.HOLD, EntryStatus.CONFIRMED)
DIRECT_ORIGINS = (EntryOrigin.DIRECT, EntryOrigin.HOLD)


@dataclass(frozen=True)
class LedgerEntry:
    entry_id: str
    room_id: str
    bed_indices: tuple[int, ...]
    interval: StayInterval
    origin: EntryOrigin
    status: EntryStatus
    created_at: datetime
    updated_at: datetime
    requested_category: RequestCategory = RequestCategory.MIXED
    expires_at: Optional[datetime] = None
    external_platform: Optional[str] = None
    external_id: Optional[str] = None
    guest_label: Optional[str] = None
    guest_count: Optional[int] = None
    blocked: bool = False
    paid_amount: Optional[Decimal] = None
    pricing: Optional[PricingSnapshot] = None

    def is_active(self, now: datetime) -> bool:
        """True when the entry currently claims its beds.

        A HOLD past its expiry no longer claims anything even before the
        sweep has marked it EXPIRED.
        """
        if self.status == EntryStatus.CONFIRMED:
            return True
        if self.status == EntryStatus.HOLD:
            return self.expires_at is not None and self.expires_at > now
        return False

    @property
    def is_direct(self) -> bool:
        return self.origin in DIRECT_ORIGINS

    def to_dict(self) -> dict[str, Any]:
        return {
            "entry_id": self.entry_id,
            "room_id": self.room_id,
            "bed_indices": list(self.bed_indices),
            "check_in": self.interval.check_in.isoformat(),
            "check_out": self.interval.check_out.isoformat(),
            "origin": self.origin.value,
            "status": self.status.value,
            "requested_category": self.requested_category.value,
            "expires_at": self.expires_at.isoformat() if self.expires_at else None,
            "external_platform": self.external_platform,
            "external_id": self.external_id,
            "guest_label": self.guest_label,
            "guest_count": self.guest_count,
            "blocked": self.blocked,
            "paid_amount": str(self.paid_amount) if self.paid_amount is not None else None,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
            "pricing": self.pricing.to_dict() if self.pricing else None,
        }


@dataclass(frozen=True)
class ExternalFeed:
    feed_id: str
    name: str
    url: str
    room_id: str
    platform: str
    is_active: bool = True
    bed_indices: tuple[int, ...] = ()
    last_sync_at: Optional[datetime] = None
    last_sync_status: Optional[str] = None
    last_sync_error: Optional[str] = None


@dataclass(frozen=True)
class ParsedStay:
    """Normalized stay interval extracted from one calendar event."""

    external_id: str
    guest_label: str
    interval: StayInterval
    platform: str
    status: StayStatus
    guest_count: Optional[int] = None
    notes: Optional[str] = None


@dataclass(frozen=True)
class ParseResult:
    stays: list[ParsedStay]
    errors: list[str] = field(default_factory=list)
    total_events: int = 0
    blocked_events: int = 0
    skipped_events: int = 0

    @property
    def parsed_events(self) -> int:
        return len(self.stays)
