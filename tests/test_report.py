from __future__ import annotations

from dataclasses import replace
from datetime import date, datetime, timezone

import pytest

from hostel_inventory.domain.errors import InvalidRange
from hostel_inventory.repository.ledger_repository import LedgerRepository
from hostel_inventory.services.availability_service import AvailabilityService
from hostel_inventory.services.hold_service import HoldService
from hostel_inventory.services.report_service import MAX_REPORT_NIGHTS, OccupancyReportService
from hostel_inventory.utils.config import get_settings


NOW = datetime(2026, 7, 1, 12, 0, tzinfo=timezone.utc)


def _build_report_fixture(tmp_path):
    get_settings.cache_clear()
    settings = replace(get_settings(), database_path=tmp_path / "report.db")
    repository = LedgerRepository(settings)
    repository.initialize_database()
    repository.seed_rooms()
    availability = AvailabilityService(repository=repository, settings=settings)
    holds = HoldService(repository=repository, availability_service=availability, settings=settings)
    return holds, OccupancyReportService(repository=repository, settings=settings)


def test_frame_has_one_row_per_room_and_night(tmp_path) -> None:
    holds, reports = _build_report_fixture(tmp_path)
    hold = holds.create_hold("mixto_7", [1, 2], date(2026, 8, 1), date(2026, 8, 3), now=NOW)
    holds.confirm_hold(hold.entry_id, now=NOW)

    frame = reports.occupancy_frame(date(2026, 8, 1), date(2026, 8, 4), now=NOW)

    assert len(frame) == 12
    assert list(frame.columns) == [
        "date", "room_id", "capacity", "occupied", "category", "free", "occupancy_rate",
    ]
    mixto_7 = frame[frame["room_id"] == "mixto_7"].set_index("date")
    assert mixto_7.loc["2026-08-01", "occupied"] == 2
    assert mixto_7.loc["2026-08-01", "free"] == 5
    assert mixto_7.loc["2026-08-03", "occupied"] == 0


def test_swing_room_category_follows_conversion_window(tmp_path) -> None:
    _, reports = _build_report_fixture(tmp_path)

    frame = reports.occupancy_frame(date(2026, 7, 1), date(2026, 7, 10), now=NOW)

    swing = frame[frame["room_id"] == "flexible_7"].set_index("date")["category"]
    assert swing["2026-07-02"] == "mixed"
    assert swing["2026-07-09"] == "female"


def test_report_aggregates_nights_and_rooms(tmp_path) -> None:
    holds, reports = _build_report_fixture(tmp_path)
    hold = holds.create_hold("mixto_7", [1, 2], date(2026, 8, 1), date(2026, 8, 3), now=NOW)
    holds.confirm_hold(hold.entry_id, now=NOW)

    report = reports.occupancy_report(date(2026, 8, 1), date(2026, 8, 4), now=NOW)

    assert [night["date"] for night in report["nights"]] == ["2026-08-01", "2026-08-02", "2026-08-03"]
    assert report["nights"][0] == {
        "date": "2026-08-01",
        "capacity": 38,
        "occupied": 2,
        "occupancy_rate": round(2 / 38, 4),
    }
    rooms = {room["room_id"]: room for room in report["rooms"]}
    assert rooms["mixto_7"]["bed_nights"] == 4
    assert rooms["mixto_7"]["occupancy_rate"] == round(4 / 21, 4)
    assert rooms["mixto_12a"]["bed_nights"] == 0
    assert len(report["grid"]) == 12


def test_expired_holds_do_not_count_as_occupied(tmp_path) -> None:
    holds, reports = _build_report_fixture(tmp_path)
    holds.create_hold("mixto_7", [1, 2, 3], date(2026, 8, 1), date(2026, 8, 2), now=NOW)

    during = reports.occupancy_report(date(2026, 8, 1), date(2026, 8, 2), now=NOW)
    later = reports.occupancy_report(
        date(2026, 8, 1), date(2026, 8, 2), now=datetime(2026, 7, 2, tzinfo=timezone.utc)
    )

    assert during["nights"][0]["occupied"] == 3
    assert later["nights"][0]["occupied"] == 0


def test_report_range_is_validated_and_capped(tmp_path) -> None:
    _, reports = _build_report_fixture(tmp_path)

    with pytest.raises(InvalidRange):
        reports.occupancy_frame(date(2026, 8, 4), date(2026, 8, 1), now=NOW)

    frame = reports.occupancy_frame(date(2026, 1, 1), date(2028, 1, 1), now=NOW)
    assert frame["date"].nunique() == MAX_REPORT_NIGHTS
