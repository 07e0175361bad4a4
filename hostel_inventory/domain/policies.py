"""Room eligibility policies derived from time and ledger state.

The swing room has no stored "converted" flag: its eligibility for mixed
requests is recomputed from the current time and the active ledger entries
every time it is needed.
"""

from __future__ import annotations

from datetime import date, datetime, time, timedelta, timezone
from typing import Iterable

from hostel_inventory.domain.models import (
    LedgerEntry,
    RequestCategory,
    Room,
    RoomCategory,
    StayInterval,
)


DEFAULT_DESIGNATED_UNTIL_HOURS = 48


def conversion_point(room: Room, night: date) -> datetime:
    """Instant after which a swing room may open to mixed guests for ``night``."""
    hours = room.designated_until_hours
    if hours is None:
        hours = DEFAULT_DESIGNATED_UNTIL_HOURS
    start_of_night = datetime.combine(night, time.min, tzinfo=timezone.utc)
    return start_of_night - timedelta(hours=hours)


def _has_female_claim(
    room: Room,
    interval: StayInterval,
    now: datetime,
    entries: Iterable[LedgerEntry],
) -> bool:
    return any(
        entry.room_id == room.room_id
        and entry.requested_category == RequestCategory.FEMALE
        and entry.is_active(now)
        and entry.interval.overlaps(interval)
        for entry in entries
    )


def swing_open_to_mixed(
    room: Room,
    interval: StayInterval,
    now: datetime,
    entries: Iterable[LedgerEntry],
) -> bool:
    """Whether a swing room accepts mixed guests for the whole stay.

    The decision point is the stay's check-in minus the designated window;
    any active female-only claim on a night of the stay keeps it closed.
    """
    if room.category != RoomCategory.SWING:
        return room.category == RoomCategory.MIXED
    if now < conversion_point(room, interval.check_in):
        return False
    return not _has_female_claim(room, interval, now, entries)


def swing_category_on(
    room: Room,
    night: date,
    now: datetime,
    entries: Iterable[LedgerEntry],
) -> RequestCategory:
    """Per-date view of a swing room's eligibility."""
    single_night = StayInterval(night, night + timedelta(days=1))
    if swing_open_to_mixed(room, single_night, now, entries):
        return RequestCategory.MIXED
    return RequestCategory.FEMALE


def is_room_eligible(
    room: Room,
    category: RequestCategory,
    interval: StayInterval,
    now: datetime,
    entries: Iterable[LedgerEntry],
) -> bool:
    if room.category == RoomCategory.MIXED:
        return True
    if category == RequestCategory.FEMALE:
        return True
    if room.category == RoomCategory.DESIGNATED:
        return False
    return swing_open_to_mixed(room, interval, now, entries)
