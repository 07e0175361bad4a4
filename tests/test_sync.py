"""Tests for feed registration and reconciliation of external stays into the ledger."""

from __future__ import annotations

from dataclasses import replace
from datetime import date, datetime, timezone

import pytest

from hostel_inventory.domain.errors import (
    FeedFetchError,
    FeedNotFound,
    FeedParseError,
    InvalidBedSelection,
    RoomNotFound,
)
from hostel_inventory.domain.models import EntryOrigin, EntryStatus, StayInterval
from hostel_inventory.repository.ledger_repository import LedgerRepository
from hostel_inventory.services.availability_service import AvailabilityService
from hostel_inventory.services.calendar_parser import CalendarFeedParser
from hostel_inventory.services.conflict_resolver import ConflictResolver
from hostel_inventory.services.hold_service import HoldService, RoomLockRegistry
from hostel_inventory.services.sync_service import SyncService, clamp_sync_interval
from hostel_inventory.utils.config import get_settings


NOW = datetime(2026, 7, 1, 12, 0, tzinfo=timezone.utc)
AUGUST = StayInterval(date(2026, 8, 1), date(2026, 8, 4))


def _build_sync_fixture(tmp_path, **overrides):
    get_settings.cache_clear()
    settings = replace(get_settings(), database_path=tmp_path / "sync.db", **overrides)
    repository = LedgerRepository(settings)
    repository.initialize_database()
    repository.seed_rooms()
    locks = RoomLockRegistry()
    availability = AvailabilityService(repository=repository, settings=settings)
    holds = HoldService(
        repository=repository,
        availability_service=availability,
        settings=settings,
        locks=locks,
    )
    parser = CalendarFeedParser(settings)
    sync = SyncService(
        repository=repository,
        parser=parser,
        resolver=ConflictResolver(repository=repository, settings=settings, locks=locks),
        availability_service=availability,
        settings=settings,
    )
    return repository, availability, holds, parser, sync


def _event(uid: str, check_in: str, check_out: str, summary: str = "Guest Stay", status: str = "") -> str:
    lines = [
        "BEGIN:VEVENT",
        f"UID:{uid}",
        f"DTSTART;VALUE=DATE:{check_in}",
        f"DTEND;VALUE=DATE:{check_out}",
        f"SUMMARY:{summary}",
    ]
    if status:
        lines.append(f"STATUS:{status}")
    lines.append("END:VEVENT")
    return "\r\n".join(lines)


def _calendar(*events: str) -> str:
    return "\r\n".join(
        ["BEGIN:VCALENDAR", "VERSION:2.0", "PRODID:-//Platform//EN", *events, "END:VCALENDAR"]
    ) + "\r\n"


def _airbnb_feed(sync: SyncService, room_id: str = "mixto_7", beds=()):
    return sync.register_feed(
        "Airbnb Mixto",
        "https://www.airbnb.com/calendar/ical/1001.ics",
        room_id,
        platform="airbnb",
        bed_indices=beds,
    )


# --- Registration ---

def test_register_feed_normalizes_url_and_infers_platform(tmp_path) -> None:
    _, _, _, _, sync = _build_sync_fixture(tmp_path)

    feed = sync.register_feed("Channel", "webcal://www.airbnb.com/calendar/ical/9.ics", "mixto_12a", bed_indices=[12, 11])

    assert feed.url == "https://www.airbnb.com/calendar/ical/9.ics"
    assert feed.platform == "airbnb"
    assert feed.bed_indices == (11, 12)
    assert [listed.feed_id for listed in sync.list_feeds()] == [feed.feed_id]


def test_register_feed_rejects_bad_input(tmp_path) -> None:
    _, _, _, _, sync = _build_sync_fixture(tmp_path)

    with pytest.raises(FeedFetchError):
        sync.register_feed("Local", "http://127.0.0.1/cal.ics", "mixto_7")
    with pytest.raises(RoomNotFound):
        sync.register_feed("Nowhere", "https://calendar.example.com/cal.ics", "suite")
    with pytest.raises(InvalidBedSelection):
        sync.register_feed("Too many", "https://calendar.example.com/cal.ics", "mixto_7", bed_indices=[9])
    with pytest.raises(FeedNotFound):
        sync.get_feed("missing")


def test_sync_interval_is_clamped(tmp_path) -> None:
    assert clamp_sync_interval(5) == 15
    assert clamp_sync_interval(60) == 60
    assert clamp_sync_interval(5000) == 1440
    _, _, _, _, sync = _build_sync_fixture(tmp_path, sync_interval_minutes=5)
    assert sync.sync_interval_minutes == 15


# --- Imports ---

def test_import_claims_mapped_beds(tmp_path) -> None:
    repository, availability, _, _, sync = _build_sync_fixture(tmp_path)
    feed = _airbnb_feed(sync, room_id="mixto_12a", beds=[11, 12])

    report = sync.import_document(feed.feed_id, _calendar(_event("a-1", "20260801", "20260804")), now=NOW)

    assert report.imported == 1
    assert report.status == "success"
    entry = repository.find_by_external_id("airbnb", "a-1")
    assert entry.origin == EntryOrigin.PLATFORM_IMPORT
    assert entry.status == EntryStatus.CONFIRMED
    assert entry.bed_indices == (11, 12)
    assert availability.free_beds("mixto_12a", AUGUST, now=NOW) == list(range(1, 11))
    assert sync.get_feed(feed.feed_id).last_sync_status == "success"


def test_import_without_mapping_claims_whole_room(tmp_path) -> None:
    _, availability, _, _, sync = _build_sync_fixture(tmp_path)
    feed = _airbnb_feed(sync)

    sync.import_document(feed.feed_id, _calendar(_event("a-1", "20260801", "20260804")), now=NOW)

    assert availability.free_beds("mixto_7", AUGUST, now=NOW) == []


def test_reimport_is_skipped_and_changes_are_updated(tmp_path) -> None:
    repository, _, _, _, sync = _build_sync_fixture(tmp_path)
    feed = _airbnb_feed(sync)
    original = _calendar(_event("a-1", "20260801", "20260804"))

    first = sync.import_document(feed.feed_id, original, now=NOW)
    again = sync.import_document(feed.feed_id, original, now=NOW)
    moved = sync.import_document(feed.feed_id, _calendar(_event("a-1", "20260802", "20260806")), now=NOW)

    assert (first.imported, again.skipped, moved.updated) == (1, 1, 1)
    entry = repository.find_by_external_id("airbnb", "a-1")
    assert entry.interval == StayInterval(date(2026, 8, 2), date(2026, 8, 6))
    assert repository.count_entries() == 1


def test_cancelled_event_cancels_imported_entry(tmp_path) -> None:
    repository, availability, _, _, sync = _build_sync_fixture(tmp_path)
    feed = _airbnb_feed(sync)
    sync.import_document(feed.feed_id, _calendar(_event("a-1", "20260801", "20260804")), now=NOW)

    report = sync.import_document(
        feed.feed_id,
        _calendar(_event("a-1", "20260801", "20260804", status="CANCELLED")),
        now=NOW,
    )

    assert report.updated == 1
    assert repository.find_by_external_id("airbnb", "a-1").status == EntryStatus.CANCELLED
    assert availability.free_beds("mixto_7", AUGUST, now=NOW) == list(range(1, 8))


def test_blocked_events_are_flagged(tmp_path) -> None:
    repository, _, _, _, sync = _build_sync_fixture(tmp_path)
    feed = _airbnb_feed(sync)

    sync.import_document(
        feed.feed_id, _calendar(_event("blk-1", "20260801", "20260803", summary="Not available")), now=NOW
    )

    entry = repository.find_by_external_id("airbnb", "blk-1")
    assert entry.blocked is True
    assert entry.guest_label == "Blocked"


# --- Conflicts ---

def test_import_never_evicts_a_direct_booking(tmp_path) -> None:
    repository, _, holds, _, sync = _build_sync_fixture(tmp_path)
    direct = holds.create_hold("mixto_7", [1], date(2026, 8, 2), date(2026, 8, 3), now=NOW)
    holds.confirm_hold(direct.entry_id, now=NOW)
    feed = _airbnb_feed(sync)

    report = sync.import_document(feed.feed_id, _calendar(_event("a-1", "20260801", "20260804")), now=NOW)

    assert report.conflicts == 1
    assert report.imported == 0
    assert report.status == "partial"
    assert "a-1" in report.errors[0]
    assert repository.get_entry(direct.entry_id).status == EntryStatus.CONFIRMED
    assert repository.find_by_external_id("airbnb", "a-1") is None
    assert sync.get_feed(feed.feed_id).last_sync_status == "partial"


def test_import_respects_pending_holds(tmp_path) -> None:
    repository, _, holds, _, sync = _build_sync_fixture(tmp_path)
    holds.create_hold("mixto_7", [3], date(2026, 8, 1), date(2026, 8, 2), now=NOW)
    feed = _airbnb_feed(sync, beds=[3, 4])

    report = sync.import_document(feed.feed_id, _calendar(_event("a-1", "20260801", "20260804")), now=NOW)

    assert report.conflicts == 1
    assert repository.count_entries(EntryStatus.HOLD) == 1


def test_new_uid_from_same_platform_replaces_overlapping_import(tmp_path) -> None:
    repository, _, _, _, sync = _build_sync_fixture(tmp_path)
    feed = _airbnb_feed(sync)
    sync.import_document(feed.feed_id, _calendar(_event("a-1", "20260801", "20260804")), now=NOW)
    original = repository.find_by_external_id("airbnb", "a-1")

    report = sync.import_document(feed.feed_id, _calendar(_event("a-2", "20260802", "20260805")), now=NOW)

    assert report.updated == 1
    replaced = repository.find_by_external_id("airbnb", "a-2")
    assert replaced.entry_id == original.entry_id
    assert replaced.interval == StayInterval(date(2026, 8, 2), date(2026, 8, 5))
    assert repository.find_by_external_id("airbnb", "a-1") is None


def test_overlap_with_another_platform_is_a_conflict(tmp_path) -> None:
    repository, _, _, _, sync = _build_sync_fixture(tmp_path)
    airbnb = _airbnb_feed(sync, beds=[1, 2])
    booking = sync.register_feed(
        "Booking Mixto", "https://admin.booking.com/ical/7.ics", "mixto_7", bed_indices=[2, 3]
    )
    sync.import_document(airbnb.feed_id, _calendar(_event("a-1", "20260801", "20260804")), now=NOW)

    report = sync.import_document(booking.feed_id, _calendar(_event("b-1", "20260803", "20260806")), now=NOW)

    assert booking.platform == "booking"
    assert report.conflicts == 1
    assert repository.find_by_external_id("booking", "b-1") is None


def test_disjoint_beds_from_two_platforms_coexist(tmp_path) -> None:
    repository, _, _, _, sync = _build_sync_fixture(tmp_path)
    airbnb = _airbnb_feed(sync, beds=[1, 2])
    booking = sync.register_feed(
        "Booking Mixto", "https://admin.booking.com/ical/7.ics", "mixto_7", bed_indices=[3, 4]
    )

    sync.import_document(airbnb.feed_id, _calendar(_event("a-1", "20260801", "20260804")), now=NOW)
    report = sync.import_document(booking.feed_id, _calendar(_event("b-1", "20260801", "20260804")), now=NOW)

    assert report.imported == 1
    assert repository.count_entries(EntryStatus.CONFIRMED) == 2


# --- Failures ---

def test_unparseable_document_marks_feed_failed(tmp_path) -> None:
    _, _, _, _, sync = _build_sync_fixture(tmp_path)
    feed = _airbnb_feed(sync)

    with pytest.raises(FeedParseError):
        sync.import_document(feed.feed_id, "<html>maintenance</html>", now=NOW)

    stored = sync.get_feed(feed.feed_id)
    assert stored.last_sync_status == "failed"
    assert stored.last_sync_error


def test_skipped_events_make_sync_partial(tmp_path) -> None:
    _, _, _, _, sync = _build_sync_fixture(tmp_path)
    feed = _airbnb_feed(sync)
    document = _calendar(
        _event("a-1", "20260801", "20260804"),
        _event("bad-1", "20260810", "20260808"),
    )

    report = sync.import_document(feed.feed_id, document, now=NOW)

    assert report.imported == 1
    assert report.skipped == 1
    assert report.status == "partial"


def test_failing_feed_does_not_stop_batch(tmp_path, monkeypatch) -> None:
    repository, _, _, parser, sync = _build_sync_fixture(tmp_path)
    healthy = _airbnb_feed(sync, room_id="mixto_12a", beds=[1])
    broken = sync.register_feed(
        "Broken", "https://broken.example.com/cal.ics", "mixto_12b", platform="booking"
    )
    paused = sync.register_feed(
        "Paused", "https://paused.example.com/cal.ics", "mixto_7", platform="vrbo"
    )
    sync.set_feed_active(paused.feed_id, False)

    def fake_fetch(url: str) -> str:
        if "broken" in url:
            raise FeedFetchError("failed to fetch feed: 503 Service Unavailable")
        if "paused" in url:  # pragma: no cover - inactive feeds are never fetched
            raise AssertionError("inactive feed fetched")
        return _calendar(_event("a-1", "20260801", "20260804"))

    monkeypatch.setattr(parser, "fetch_document", fake_fetch)

    batch = sync.sync_all_active_feeds(now=NOW).to_dict()

    assert batch["feeds_synced"] == 2
    assert batch["feeds_failed"] == 1
    assert batch["imported"] == 1
    assert repository.find_by_external_id("airbnb", "a-1") is not None
    assert sync.get_feed(healthy.feed_id).last_sync_status == "success"
    assert sync.get_feed(broken.feed_id).last_sync_status == "failed"
    assert "503" in sync.get_feed(broken.feed_id).last_sync_error
    assert sync.get_feed(paused.feed_id).last_sync_status is None


def test_sync_feed_reraises_fetch_errors(tmp_path, monkeypatch) -> None:
    _, _, _, parser, sync = _build_sync_fixture(tmp_path)
    feed = _airbnb_feed(sync)

    def fake_fetch(url: str) -> str:
        raise FeedFetchError("failed to fetch feed: timed out")

    monkeypatch.setattr(parser, "fetch_document", fake_fetch)

    with pytest.raises(FeedFetchError):
        sync.sync_feed(feed.feed_id, now=NOW)
    assert sync.get_feed(feed.feed_id).last_sync_status == "failed"


def test_unreadable_event_dates_do_not_stop_batch(tmp_path, monkeypatch) -> None:
    repository, _, _, parser, sync = _build_sync_fixture(tmp_path)
    damaged = _airbnb_feed(sync, room_id="mixto_12a", beds=[1])
    healthy = sync.register_feed(
        "Booking Mixto", "https://admin.booking.com/ical/77.ics", "mixto_12b", platform="booking"
    )
    garbled = "\r\n".join(
        ["BEGIN:VEVENT", "UID:bad-1", "DTSTART:garbage", "DTEND;VALUE=DATE:20260804", "SUMMARY:Broken", "END:VEVENT"]
    )

    def fake_fetch(url: str) -> str:
        if "airbnb" in url:
            return _calendar(garbled, _event("a-1", "20260801", "20260804"))
        return _calendar(_event("b-1", "20260801", "20260804"))

    monkeypatch.setattr(parser, "fetch_document", fake_fetch)

    batch = sync.sync_all_active_feeds(now=NOW).to_dict()

    assert batch["feeds_synced"] == 2
    assert batch["feeds_failed"] == 0
    assert batch["imported"] == 2
    assert repository.find_by_external_id("airbnb", "a-1") is not None
    assert repository.find_by_external_id("booking", "b-1") is not None
    assert repository.find_by_external_id("airbnb", "bad-1") is None
    assert sync.get_feed(damaged.feed_id).last_sync_status == "partial"
    assert sync.get_feed(healthy.feed_id).last_sync_status == "success"


def test_unexpected_feed_error_is_recorded_and_batch_continues(tmp_path, monkeypatch) -> None:
    repository, _, _, parser, sync = _build_sync_fixture(tmp_path)
    crashing = _airbnb_feed(sync, room_id="mixto_12a", beds=[1])
    healthy = sync.register_feed(
        "Booking Mixto", "https://admin.booking.com/ical/77.ics", "mixto_12b", platform="booking"
    )

    def fake_fetch(url: str) -> str:
        if "airbnb" in url:
            raise RuntimeError("decoder exploded")
        return _calendar(_event("b-1", "20260801", "20260804"))

    monkeypatch.setattr(parser, "fetch_document", fake_fetch)

    batch = sync.sync_all_active_feeds(now=NOW).to_dict()

    assert batch["feeds_synced"] == 2
    assert batch["feeds_failed"] == 1
    assert repository.find_by_external_id("booking", "b-1") is not None
    assert sync.get_feed(crashing.feed_id).last_sync_status == "failed"
    assert "decoder exploded" in sync.get_feed(crashing.feed_id).last_sync_error
    assert sync.get_feed(healthy.feed_id).last_sync_status == "success"
