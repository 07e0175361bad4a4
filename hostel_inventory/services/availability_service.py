"""Bed-level availability over arbitrary date ranges, derived from the ledger."""

from __future__ import annotations

import time
from collections import defaultdict
from dataclasses import dataclass
from datetime import date, datetime, timezone
from threading import RLock
from typing import Any, Callable, Hashable, Optional

from hostel_inventory.domain.constraints import validate_bed_count, validate_stay_interval
from hostel_inventory.domain.errors import InvalidRange, RoomNotFound
from hostel_inventory.domain.models import LedgerEntry, RequestCategory, StayInterval
from hostel_inventory.domain.policies import is_room_eligible
from hostel_inventory.repository.ledger_repository import LedgerRepository
from hostel_inventory.utils.config import Settings, get_settings
from hostel_inventory.utils.logger import get_logger


logger = get_logger(__name__)


@dataclass(frozen=True)
class RoomAvailability:
    room_id: str
    room_name: str
    category: str
    capacity: int
    free_beds: int
    bed_indices: tuple[int, ...]
    eligible: bool

    def to_dict(self) -> dict[str, Any]:
        return {
            "room_id": self.room_id,
            "room_name": self.room_name,
            "category": self.category,
            "capacity": self.capacity,
            "free_beds": self.free_beds,
            "bed_indices": list(self.bed_indices),
            "eligible": self.eligible,
        }


@dataclass(frozen=True)
class AlternativeDate:
    interval: StayInterval
    available_beds: int

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = self.interval.to_dict()
        payload["available_beds"] = self.available_beds
        return payload


@dataclass(frozen=True)
class AvailabilityResult:
    interval: StayInterval
    beds_needed: int
    category: RequestCategory
    available: bool
    available_beds: int
    rooms: tuple[RoomAvailability, ...]
    alternatives: tuple[AlternativeDate, ...] = ()

    def to_dict(self) -> dict[str, Any]:
        return {
            **self.interval.to_dict(),
            "beds_needed": self.beds_needed,
            "category": self.category.value,
            "available": self.available,
            "available_beds": self.available_beds,
            "per_room": [room.to_dict() for room in self.rooms],
            "alternative_dates": [alternative.to_dict() for alternative in self.alternatives],
        }


class AvailabilityCache:
    """Small TTL cache; entries older than ``ttl_seconds`` are never served."""

    def __init__(self, ttl_seconds: float, clock: Callable[[], float] = time.monotonic) -> None:
        self._ttl_seconds = ttl_seconds
        self._clock = clock
        self._entries: dict[Hashable, tuple[float, Any]] = {}
        self._lock = RLock()

    def get(self, key: Hashable) -> Optional[Any]:
        with self._lock:
            cached = self._entries.get(key)
            if cached is None:
                return None
            stored_at, value = cached
            if self._clock() - stored_at >= self._ttl_seconds:
                del self._entries[key]
                return None
            return value

    def put(self, key: Hashable, value: Any) -> None:
        if self._ttl_seconds <= 0:
            return
        with self._lock:
            self._entries[key] = (self._clock(), value)

    def invalidate(self) -> None:
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)


def parse_category(value: Optional[str]) -> RequestCategory:
    if value is None:
        return RequestCategory.MIXED
    try:
        return RequestCategory(value)
    except ValueError as exc:
        raise InvalidRange(f"unknown room category '{value}'") from exc


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class AvailabilityService:
    """Computes free beds per room from active ledger entries."""

    def __init__(
        self,
        repository: Optional[LedgerRepository] = None,
        settings: Optional[Settings] = None,
        cache: Optional[AvailabilityCache] = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._repository = repository or LedgerRepository(self._settings)
        self._cache = cache or AvailabilityCache(self._settings.availability_cache_ttl_seconds)

    @property
    def cache(self) -> AvailabilityCache:
        return self._cache

    def invalidate(self) -> None:
        self._cache.invalidate()

    def _buffer_for(self, room_id: str) -> int:
        return int(self._settings.safety_buffer_beds.get(room_id, 0))

    def _compute_rooms(
        self,
        interval: StayInterval,
        category: RequestCategory,
        now: datetime,
    ) -> tuple[RoomAvailability, ...]:
        rooms = self._repository.list_rooms()
        entries_by_room: dict[str, list[LedgerEntry]] = defaultdict(list)
        for entry in self._repository.list_active_entries(interval, now):
            if entry.is_active(now):
                entries_by_room[entry.room_id].append(entry)

        results = []
        for room in rooms:
            room_entries = entries_by_room.get(room.room_id, [])
            taken = {bed for entry in room_entries for bed in entry.bed_indices}
            free = [bed for bed in room.bed_indices if bed not in taken]
            offered = free[: max(0, len(free) - self._buffer_for(room.room_id))]
            results.append(
                RoomAvailability(
                    room_id=room.room_id,
                    room_name=room.name,
                    category=room.category.value,
                    capacity=room.capacity,
                    free_beds=len(offered),
                    bed_indices=tuple(offered),
                    eligible=is_room_eligible(room, category, interval, now, room_entries),
                )
            )
        return tuple(results)

    def room_availability(
        self,
        interval: StayInterval,
        category: RequestCategory = RequestCategory.MIXED,
        now: Optional[datetime] = None,
    ) -> tuple[RoomAvailability, ...]:
        """Per-room view; cached only for wall-clock queries."""
        if now is not None:
            return self._compute_rooms(interval, category, now)

        key = (interval.check_in, interval.check_out, category)
        cached = self._cache.get(key)
        if cached is not None:
            return cached
        rooms = self._compute_rooms(interval, category, utc_now())
        self._cache.put(key, rooms)
        return rooms

    @staticmethod
    def _eligible_total(rooms: tuple[RoomAvailability, ...]) -> int:
        return sum(room.free_beds for room in rooms if room.eligible)

    def check_availability(
        self,
        check_in: date,
        check_out: date,
        beds_needed: int,
        room_category: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> AvailabilityResult:
        today = (now or utc_now()).date()
        interval = validate_stay_interval(
            check_in,
            check_out,
            today=today,
            past_grace_days=self._settings.past_grace_days,
        )
        validate_bed_count(beds_needed, self._settings.max_beds_per_request)
        category = parse_category(room_category)

        rooms = self.room_availability(interval, category, now)
        available_beds = self._eligible_total(rooms)
        available = available_beds >= beds_needed

        alternatives: tuple[AlternativeDate, ...] = ()
        if not available:
            alternatives = self._alternatives(interval, beds_needed, category, now, today)

        logger.info(
            "Availability checked | check_in=%s | check_out=%s | category=%s | beds_needed=%s | available_beds=%s",
            check_in.isoformat(),
            check_out.isoformat(),
            category.value,
            beds_needed,
            available_beds,
        )
        return AvailabilityResult(
            interval=interval,
            beds_needed=beds_needed,
            category=category,
            available=available,
            available_beds=available_beds,
            rooms=rooms,
            alternatives=alternatives,
        )

    def _alternatives(
        self,
        interval: StayInterval,
        beds_needed: int,
        category: RequestCategory,
        now: Optional[datetime],
        today: date,
    ) -> tuple[AlternativeDate, ...]:
        """Same-length stays near the request, nearest first and forward before backward."""
        earliest = today.toordinal() - self._settings.past_grace_days
        found: list[AlternativeDate] = []
        for offset in range(1, self._settings.alternative_search_days + 1):
            for shift in (offset, -offset):
                candidate = interval.shifted(shift)
                if candidate.check_in.toordinal() < earliest:
                    continue
                beds = self._eligible_total(self.room_availability(candidate, category, now))
                if beds >= beds_needed:
                    found.append(AlternativeDate(interval=candidate, available_beds=beds))
                if len(found) >= self._settings.alternative_date_count:
                    return tuple(found)
        return tuple(found)

    def free_beds(
        self,
        room_id: str,
        interval: StayInterval,
        now: Optional[datetime] = None,
    ) -> list[int]:
        """Unbuffered free bed indices of one room, read straight from the ledger."""
        room = self._repository.get_room(room_id)
        if room is None:
            raise RoomNotFound(f"room {room_id} not found")
        current = now or utc_now()
        taken = {
            bed
            for entry in self._repository.list_active_entries(interval, current, room_id=room_id)
            if entry.is_active(current)
            for bed in entry.bed_indices
        }
        return [bed for bed in room.bed_indices if bed not in taken]
