#!/usr/bin/env python3
"""Validate local hostel inventory environment readiness."""

from __future__ import annotations

import importlib
import shutil
import sys
import tempfile
from dataclasses import replace
from datetime import datetime, timedelta, timezone
from importlib.metadata import PackageNotFoundError, version
from pathlib import Path

PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from hostel_inventory.repository.ledger_repository import LedgerRepository
from hostel_inventory.services.availability_service import AvailabilityService
from hostel_inventory.services.calendar_export import CalendarExportService
from hostel_inventory.services.calendar_parser import CalendarFeedParser
from hostel_inventory.services.hold_service import HoldService
from hostel_inventory.utils.config import get_settings

SEPARATOR_LINE = "=" * 44


def _print_result(name: str, success: bool, detail: str = "") -> tuple[bool, str]:
    if success:
        return True, f"[PASS] {name}{detail}"
    return False, f"[FAIL] {name}: {detail}"


def main() -> int:
    results: list[str] = []
    all_passed = True
    temp_dir = tempfile.mkdtemp(prefix="hostel-env-")

    # CHECK 1: Python version >= 3.11
    if sys.version_info >= (3, 11):
        ok, line = _print_result("Python " + sys.version.split()[0], True)
    else:
        ok, line = _print_result(
            "Python version >= 3.11",
            False,
            f"found {sys.version.split()[0]}",
        )
    results.append(line)
    all_passed = all_passed and ok

    # CHECK 2: Required packages importable with versions
    package_specs = [
        ("fastapi", "fastapi"),
        ("uvicorn", "uvicorn"),
        ("pydantic", "pydantic"),
        ("pandas", "pandas"),
        ("httpx", "httpx"),
        ("icalendar", "icalendar"),
        ("apscheduler", "APScheduler"),
        ("pytest", "pytest"),
    ]
    import_errors: list[str] = []
    for module_name, dist_name in package_specs:
        try:
            importlib.import_module(module_name)
            version(dist_name)
        except (ImportError, PackageNotFoundError) as exc:
            import_errors.append(f"{module_name} ({exc})")
    if import_errors:
        ok, line = _print_result(
            "Required packages",
            False,
            "missing/unimportable -> " + "; ".join(import_errors),
        )
    else:
        ok, line = _print_result("Required packages: all importable", True)
    results.append(line)
    all_passed = all_passed and ok

    try:
        validation_settings = replace(
            get_settings(),
            database_path=Path(temp_dir) / "hostel_validation.db",
        )
        repository = LedgerRepository(validation_settings)

        # CHECK 3: Database initialization and room catalogue
        try:
            repository.initialize_database()
            seeded = repository.seed_rooms()
            capacity = sum(room.capacity for room in repository.list_rooms())
            ok, line = _print_result(
                "Database initialization",
                True,
                f": {seeded} rooms, {capacity} beds",
            )
        except Exception as exc:
            ok, line = _print_result("Database initialization", False, str(exc))
        results.append(line)
        all_passed = all_passed and ok

        # CHECK 4: Hold round trip against the ledger
        availability = AvailabilityService(repository, validation_settings)
        holds = HoldService(repository, availability, settings=validation_settings)
        now = datetime.now(timezone.utc)
        check_in = now.date() + timedelta(days=30)
        try:
            hold = holds.create_hold("mixto_12a", [1, 2], check_in, check_in + timedelta(days=2), now=now)
            holds.confirm_hold(hold.entry_id, now=now)
            result = availability.check_availability(check_in, check_in + timedelta(days=2), 1, now=now)
            ok, line = _print_result(
                "Hold lifecycle",
                True,
                f": {result.available_beds} beds still free",
            )
        except Exception as exc:
            ok, line = _print_result("Hold lifecycle", False, str(exc))
        results.append(line)
        all_passed = all_passed and ok

        # CHECK 5: Calendar export parses back
        try:
            document = CalendarExportService(repository, validation_settings).export_room(
                "mixto_12a", now=now
            )
            parsed = CalendarFeedParser(validation_settings).parse(document)
            if parsed.parsed_events != 1:
                raise RuntimeError(f"expected 1 exported event, got {parsed.parsed_events}")
            ok, line = _print_result("Calendar export round trip", True)
        except Exception as exc:
            ok, line = _print_result("Calendar export round trip", False, str(exc))
        results.append(line)
        all_passed = all_passed and ok

    finally:
        shutil.rmtree(temp_dir, ignore_errors=True)

    print(SEPARATOR_LINE)
    print(" Hostel Inventory Environment Validation")
    print(SEPARATOR_LINE)
    for line in results:
        print(f" {line}")
    print(SEPARATOR_LINE)
    if all_passed:
        print(" All checks passed. Environment is ready.")
        print(SEPARATOR_LINE)
        return 0
    print(" One or more checks failed.")
    print(SEPARATOR_LINE)
    return 1


if __name__ == "__main__":
    raise SystemExit(main())
