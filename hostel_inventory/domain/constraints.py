"""Domain-level validation rules for stays, bed selections and entry lifecycle."""

from __future__ import annotations

from datetime import date, timedelta
from typing import Iterable

from hostel_inventory.domain.errors import HoldStateError, InvalidBedSelection, InvalidRange
from hostel_inventory.domain.models import EntryStatus, Room, StayInterval
from hostel_inventory.utils.config import Settings


ALLOWED_TRANSITIONS: dict[EntryStatus, frozenset[EntryStatus]] = {
    EntryStatus.HOLD: frozenset(
        {EntryStatus.CONFIRMED, EntryStatus.RELEASED, EntryStatus.EXPIRED}
    ),
    EntryStatus.CONFIRMED: frozenset({EntryStatus.CANCELLED}),
    EntryStatus.RELEASED: frozenset(),
    EntryStatus.EXPIRED: frozenset(),
    EntryStatus.CANCELLED: frozenset(),
}


def build_interval(check_in: date, check_out: date) -> StayInterval:
    if check_out <= check_in:
        raise InvalidRange("check_out must be after check_in")
    return StayInterval(check_in=check_in, check_out=check_out)


def validate_stay_interval(
    check_in: date,
    check_out: date,
    *,
    today: date,
    past_grace_days: int,
) -> StayInterval:
    interval = build_interval(check_in, check_out)
    earliest = today - timedelta(days=past_grace_days)
    if check_in < earliest:
        raise InvalidRange("check_in cannot be in the past")
    return interval


def validate_bed_count(beds_needed: int, maximum: int) -> None:
    if not 1 <= beds_needed <= maximum:
        raise InvalidRange(f"beds requested must be between 1 and {maximum}")


def validate_bed_selection(room: Room, bed_indices: Iterable[int]) -> tuple[int, ...]:
    beds = list(bed_indices)
    if not beds:
        raise InvalidBedSelection("at least one bed index is required")
    if len(set(beds)) != len(beds):
        raise InvalidBedSelection("bed indices must be unique")
    out_of_range = [bed for bed in beds if not 1 <= bed <= room.capacity]
    if out_of_range:
        raise InvalidBedSelection(
            f"bed indices {sorted(out_of_range)} outside 1..{room.capacity} for room {room.room_id}"
        )
    return tuple(sorted(beds))


def ensure_transition(current: EntryStatus, target: EntryStatus) -> None:
    if target not in ALLOWED_TRANSITIONS[current]:
        raise HoldStateError(f"cannot move entry from {current.value} to {target.value}")


def validate_settings(settings: Settings) -> None:
    if settings.hold_ttl_seconds <= 0:
        raise ValueError("hold_ttl_seconds must be > 0")
    if settings.hold_sweep_interval_seconds <= 0:
        raise ValueError("hold_sweep_interval_seconds must be > 0")
    if settings.availability_cache_ttl_seconds < 0:
        raise ValueError("availability_cache_ttl_seconds must be >= 0")
    if settings.past_grace_days < 0:
        raise ValueError("past_grace_days must be >= 0")
    if settings.max_beds_per_request <= 0:
        raise ValueError("max_beds_per_request must be > 0")
    if any(beds < 0 for beds in settings.safety_buffer_beds.values()):
        raise ValueError("safety_buffer_beds values must be >= 0")
    if settings.feed_fetch_timeout_seconds <= 0:
        raise ValueError("feed_fetch_timeout_seconds must be > 0")
    if settings.feed_description_max_length <= 0:
        raise ValueError("feed_description_max_length must be > 0")
    if not 0 < settings.deposit_standard_rate <= 1:
        raise ValueError("deposit_standard_rate must be in (0, 1]")
    if not 0 < settings.deposit_large_group_rate <= 1:
        raise ValueError("deposit_large_group_rate must be in (0, 1]")
    for start, end in settings.carnival_windows:
        if date.fromisoformat(end) < date.fromisoformat(start):
            raise ValueError("carnival window end must not precede its start")
