from __future__ import annotations

from dataclasses import replace
from datetime import date, datetime, timedelta, timezone

import pytest
from icalendar import Calendar

from hostel_inventory.domain.errors import RoomNotFound
from hostel_inventory.domain.models import EntryOrigin, EntryStatus, LedgerEntry, StayInterval
from hostel_inventory.repository.ledger_repository import LedgerRepository
from hostel_inventory.services.availability_service import AvailabilityService
from hostel_inventory.services.calendar_export import CalendarExportService
from hostel_inventory.services.calendar_parser import CalendarFeedParser
from hostel_inventory.services.hold_service import HoldService
from hostel_inventory.utils.config import get_settings


NOW = datetime(2026, 7, 1, 12, 0, tzinfo=timezone.utc)


def _build_export_fixture(tmp_path):
    get_settings.cache_clear()
    settings = replace(get_settings(), database_path=tmp_path / "export.db")
    repository = LedgerRepository(settings)
    repository.initialize_database()
    repository.seed_rooms()
    availability = AvailabilityService(repository=repository, settings=settings)
    holds = HoldService(repository=repository, availability_service=availability, settings=settings)
    exporter = CalendarExportService(repository=repository, settings=settings)
    return settings, repository, holds, exporter


def _events(document: str) -> list:
    return Calendar.from_ical(document).walk("VEVENT")


def _blocked_import(room_id: str, check_in: date, nights: int) -> LedgerEntry:
    return LedgerEntry(
        entry_id="blocked-1",
        room_id=room_id,
        bed_indices=(1, 2, 3),
        interval=StayInterval(check_in, check_in + timedelta(days=nights)),
        origin=EntryOrigin.PLATFORM_IMPORT,
        status=EntryStatus.CONFIRMED,
        created_at=NOW,
        updated_at=NOW,
        external_platform="airbnb",
        external_id="airbnb-block-1",
        guest_label="Blocked",
        blocked=True,
    )


def test_room_export_lists_confirmed_stays(tmp_path) -> None:
    settings, _, holds, exporter = _build_export_fixture(tmp_path)
    hold = holds.create_hold("mixto_12a", [1, 2], date(2026, 8, 1), date(2026, 8, 3), now=NOW)
    holds.confirm_hold(hold.entry_id, now=NOW)

    document = exporter.export_room("mixto_12a", now=NOW)
    calendar = Calendar.from_ical(document)
    events = calendar.walk("VEVENT")

    assert document.startswith("BEGIN:VCALENDAR")
    assert str(calendar["PRODID"]) == settings.calendar_prodid
    assert str(calendar["VERSION"]) == "2.0"
    assert str(calendar["METHOD"]) == "PUBLISH"
    assert str(calendar["X-WR-CALNAME"]) == f"{settings.calendar_name} - Mixto 12A"
    assert len(events) == 1
    event = events[0]
    assert str(event["UID"]) == f"{hold.entry_id}@{settings.calendar_domain}"
    assert str(event["SUMMARY"]) == "Reserved - Mixto 12A"
    assert event["DTSTART"].dt == date(2026, 8, 1)
    assert event["DTEND"].dt == date(2026, 8, 3)
    assert str(event["STATUS"]) == "CONFIRMED"
    assert str(event["TRANSP"]) == "OPAQUE"


def test_pending_holds_are_exported_only_on_request(tmp_path) -> None:
    _, _, holds, exporter = _build_export_fixture(tmp_path)
    holds.create_hold("mixto_7", [4], date(2026, 8, 5), date(2026, 8, 6), now=NOW)

    assert _events(exporter.export_room("mixto_7", now=NOW)) == []
    tentative = _events(exporter.export_room("mixto_7", include_holds=True, now=NOW))
    assert [str(event["STATUS"]) for event in tentative] == ["TENTATIVE"]
    expired = exporter.export_room("mixto_7", include_holds=True, now=NOW + timedelta(seconds=181))
    assert _events(expired) == []


def test_cancelled_entries_are_not_exported(tmp_path) -> None:
    _, _, holds, exporter = _build_export_fixture(tmp_path)
    hold = holds.create_hold("mixto_7", [1], date(2026, 8, 5), date(2026, 8, 6), now=NOW)
    holds.confirm_hold(hold.entry_id, now=NOW)
    holds.cancel_entry(hold.entry_id, now=NOW)

    assert _events(exporter.export_room("mixto_7", now=NOW)) == []


def test_export_parses_back_to_the_same_intervals(tmp_path) -> None:
    settings, _, holds, exporter = _build_export_fixture(tmp_path)
    first = holds.create_hold("mixto_12b", [1], date(2026, 8, 1), date(2026, 8, 4), now=NOW)
    second = holds.create_hold("mixto_12b", [2, 3], date(2026, 8, 10), date(2026, 8, 12), now=NOW)
    holds.confirm_hold(first.entry_id, now=NOW)
    holds.confirm_hold(second.entry_id, now=NOW)

    result = CalendarFeedParser(settings).parse(exporter.export_room("mixto_12b", now=NOW))

    parsed = {stay.external_id: stay.interval for stay in result.stays}
    assert parsed == {
        f"{first.entry_id}@{settings.calendar_domain}": StayInterval(date(2026, 8, 1), date(2026, 8, 4)),
        f"{second.entry_id}@{settings.calendar_domain}": StayInterval(date(2026, 8, 10), date(2026, 8, 12)),
    }
    assert result.skipped_events == 0


def test_blocked_export_only_contains_imported_blocks(tmp_path) -> None:
    _, repository, holds, exporter = _build_export_fixture(tmp_path)
    repository.insert_entry(_blocked_import("mixto_12a", date(2026, 8, 20), 2))
    hold = holds.create_hold("mixto_12a", [10], date(2026, 8, 1), date(2026, 8, 2), now=NOW)
    holds.confirm_hold(hold.entry_id, now=NOW)

    full = _events(exporter.export_room("mixto_12a", now=NOW))
    blocked = _events(exporter.export_blocked("mixto_12a", now=NOW))

    assert len(full) == 2
    assert [str(event["SUMMARY"]) for event in blocked] == ["Blocked - Mixto 12A"]


def test_combined_export_covers_requested_rooms(tmp_path) -> None:
    _, _, holds, exporter = _build_export_fixture(tmp_path)
    for room_id in ("mixto_12a", "mixto_7"):
        hold = holds.create_hold(room_id, [1], date(2026, 8, 1), date(2026, 8, 2), now=NOW)
        holds.confirm_hold(hold.entry_id, now=NOW)

    everything = _events(exporter.export_rooms(now=NOW))
    only_seven = _events(exporter.export_rooms(["mixto_7"], now=NOW))

    assert len(everything) == 2
    assert [str(event["SUMMARY"]) for event in only_seven] == ["Reserved - Mixto 7"]


def test_unknown_room_raises(tmp_path) -> None:
    _, _, _, exporter = _build_export_fixture(tmp_path)
    with pytest.raises(RoomNotFound):
        exporter.export_room("suite", now=NOW)
    with pytest.raises(RoomNotFound):
        exporter.export_rooms(["suite"], now=NOW)
