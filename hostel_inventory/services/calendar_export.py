"""Publish room occupancy as RFC 5545 calendars for third-party platforms."""

from __future__ import annotations

from datetime import datetime
from typing import Iterable, Optional, Sequence

from icalendar import Calendar, Event

from hostel_inventory.domain.errors import RoomNotFound
from hostel_inventory.domain.models import EntryStatus, LedgerEntry, Room
from hostel_inventory.repository.ledger_repository import LedgerRepository
from hostel_inventory.services.availability_service import utc_now
from hostel_inventory.utils.config import Settings, get_settings
from hostel_inventory.utils.logger import get_logger


logger = get_logger(__name__)


class CalendarExportService:
    def __init__(
        self,
        repository: Optional[LedgerRepository] = None,
        settings: Optional[Settings] = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._repository = repository or LedgerRepository(self._settings)

    def _room(self, room_id: str) -> Room:
        room = self._repository.get_room(room_id)
        if room is None:
            raise RoomNotFound(f"room {room_id} not found")
        return room

    def _new_calendar(self, name: str) -> Calendar:
        calendar = Calendar()
        calendar.add("prodid", self._settings.calendar_prodid)
        calendar.add("version", "2.0")
        calendar.add("calscale", "GREGORIAN")
        calendar.add("method", "PUBLISH")
        calendar.add("x-wr-calname", name)
        return calendar

    def _active_entries(
        self,
        room_id: str,
        include_holds: bool,
        now: datetime,
    ) -> list[LedgerEntry]:
        statuses = [EntryStatus.CONFIRMED]
        if include_holds:
            statuses.append(EntryStatus.HOLD)
        return [
            entry
            for entry in self._repository.list_entries_for_room(room_id, statuses=statuses)
            if entry.is_active(now)
        ]

    def _event(self, entry: LedgerEntry, room: Room, stamp: datetime) -> Event:
        label = "Blocked" if entry.blocked else "Reserved"
        description = [f"Beds: {', '.join(str(bed) for bed in entry.bed_indices)}"]
        if entry.guest_count:
            description.append(f"Guests: {entry.guest_count}")
        description.append(f"Platform: {entry.external_platform or entry.origin.value}")

        event = Event()
        event.add("uid", f"{entry.entry_id}@{self._settings.calendar_domain}")
        event.add("dtstamp", stamp)
        event.add("dtstart", entry.interval.check_in)
        event.add("dtend", entry.interval.check_out)
        event.add("summary", f"{label} - {room.name}")
        event.add("description", "\n".join(description))
        event.add("status", "TENTATIVE" if entry.status == EntryStatus.HOLD else "CONFIRMED")
        event.add("transp", "OPAQUE")
        return event

    def _render(
        self,
        name: str,
        rooms: Iterable[Room],
        *,
        include_holds: bool,
        blocked_only: bool,
        now: Optional[datetime],
    ) -> str:
        current = now or utc_now()
        calendar = self._new_calendar(name)
        event_count = 0
        for room in rooms:
            for entry in self._active_entries(room.room_id, include_holds, current):
                if blocked_only and not entry.blocked:
                    continue
                calendar.add_component(self._event(entry, room, current))
                event_count += 1
        logger.info("Calendar exported | name=%s | events=%s", name, event_count)
        return calendar.to_ical().decode("utf-8")

    def export_room(
        self,
        room_id: str,
        include_holds: bool = False,
        now: Optional[datetime] = None,
    ) -> str:
        room = self._room(room_id)
        return self._render(
            f"{self._settings.calendar_name} - {room.name}",
            [room],
            include_holds=include_holds,
            blocked_only=False,
            now=now,
        )

    def export_rooms(
        self,
        room_ids: Optional[Sequence[str]] = None,
        include_holds: bool = False,
        now: Optional[datetime] = None,
    ) -> str:
        """Combined calendar for several rooms, or for the whole hostel when none are named."""
        if room_ids:
            rooms = [self._room(room_id) for room_id in room_ids]
        else:
            rooms = self._repository.list_rooms()
        return self._render(
            self._settings.calendar_name,
            rooms,
            include_holds=include_holds,
            blocked_only=False,
            now=now,
        )

    def export_blocked(self, room_id: str, now: Optional[datetime] = None) -> str:
        room = self._room(room_id)
        return self._render(
            f"{self._settings.calendar_name} - {room.name} (blocked)",
            [room],
            include_holds=False,
            blocked_only=True,
            now=now,
        )
