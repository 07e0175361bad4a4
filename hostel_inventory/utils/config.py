"""Runtime settings loaded from environment variables."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from decimal import Decimal
from functools import lru_cache
from pathlib import Path
from typing import Mapping


_ENV_PREFIX = "HOSTEL_"


def _env(name: str, default: str) -> str:
    return os.environ.get(f"{_ENV_PREFIX}{name}", default)


def _env_int(name: str, default: int) -> int:
    return int(_env(name, str(default)))


def _env_bool(name: str, default: bool) -> bool:
    raw = _env(name, "true" if default else "false")
    return raw.strip().lower() in {"1", "true", "yes", "on"}


def _parse_buffer_map(raw: str) -> dict[str, int]:
    """Parse ``room_id:beds`` pairs separated by commas."""
    buffers: dict[str, int] = {}
    for chunk in raw.split(","):
        chunk = chunk.strip()
        if not chunk:
            continue
        room_id, _, beds = chunk.partition(":")
        buffers[room_id.strip()] = int(beds)
    return buffers


def _parse_windows(raw: str) -> tuple[tuple[str, str], ...]:
    """Parse ``YYYY-MM-DD/YYYY-MM-DD`` windows separated by commas."""
    windows = []
    for chunk in raw.split(","):
        chunk = chunk.strip()
        if not chunk:
            continue
        start, _, end = chunk.partition("/")
        windows.append((start.strip(), end.strip()))
    return tuple(windows)


DEFAULT_CARNIVAL_WINDOWS = (
    ("2025-02-28", "2025-03-05"),
    ("2026-02-13", "2026-02-18"),
    ("2027-02-05", "2027-02-10"),
)


@dataclass(frozen=True)
class Settings:
    app_name: str = "Hostel Inventory Engine"
    app_version: str = "1.0.0"
    log_level: str = "INFO"

    # HTTP server
    server_host: str = "127.0.0.1"
    server_port: int = 8000
    server_reload: bool = False

    # Persistence
    database_path: Path = Path("data/hostel_inventory.db")
    database_busy_timeout_seconds: float = 10.0

    # Holds
    hold_ttl_seconds: int = 180
    hold_sweep_interval_seconds: int = 30

    # Availability
    availability_cache_ttl_seconds: int = 30
    safety_buffer_beds: Mapping[str, int] = field(default_factory=dict)
    past_grace_days: int = 0
    max_beds_per_request: int = 38
    alternative_date_count: int = 3
    alternative_search_days: int = 7
    swing_designated_until_hours: int = 48

    # Pricing
    currency: str = "BRL"
    base_price_per_bed: Decimal = Decimal("60.00")
    group_discount_tiers: tuple[tuple[int, Decimal], ...] = (
        (26, Decimal("0.20")),
        (16, Decimal("0.15")),
        (7, Decimal("0.10")),
    )
    deposit_standard_rate: Decimal = Decimal("0.30")
    deposit_large_group_rate: Decimal = Decimal("0.50")
    deposit_large_group_threshold: int = 15
    remaining_due_days: int = 7
    carnival_windows: tuple[tuple[str, str], ...] = DEFAULT_CARNIVAL_WINDOWS
    carnival_multiplier: Decimal = Decimal("2.00")
    carnival_min_nights: int = 5
    high_season_multiplier: Decimal = Decimal("1.50")
    high_season_months: tuple[int, ...] = (12, 1, 2, 3)
    shoulder_season_multiplier: Decimal = Decimal("1.00")
    shoulder_season_months: tuple[int, ...] = (4, 5, 10, 11)
    low_season_multiplier: Decimal = Decimal("0.80")
    low_season_months: tuple[int, ...] = (6, 7, 8, 9)

    # Calendar feeds
    feed_fetch_timeout_seconds: float = 15.0
    feed_description_max_length: int = 2000
    feed_user_agent: str = "HostelInventory/1.0"
    calendar_name: str = "Lapa Casa Hostel"
    calendar_domain: str = "lapacasahostel.com"
    calendar_prodid: str = "-//Lapa Casa Hostel//Channel Manager//EN"

    # Recurring jobs
    scheduler_enabled: bool = False
    sync_interval_minutes: int = 60


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Build settings once per process from ``HOSTEL_*`` environment variables."""
    defaults = Settings()
    return Settings(
        app_name=_env("APP_NAME", defaults.app_name),
        app_version=_env("APP_VERSION", defaults.app_version),
        log_level=_env("LOG_LEVEL", defaults.log_level),
        server_host=_env("HOST", defaults.server_host),
        server_port=_env_int("PORT", defaults.server_port),
        server_reload=_env_bool("RELOAD", defaults.server_reload),
        database_path=Path(_env("DATABASE_PATH", str(defaults.database_path))),
        database_busy_timeout_seconds=float(
            _env("DATABASE_BUSY_TIMEOUT_SECONDS", str(defaults.database_busy_timeout_seconds))
        ),
        hold_ttl_seconds=_env_int("HOLD_TTL_SECONDS", defaults.hold_ttl_seconds),
        hold_sweep_interval_seconds=_env_int(
            "HOLD_SWEEP_INTERVAL_SECONDS", defaults.hold_sweep_interval_seconds
        ),
        availability_cache_ttl_seconds=_env_int(
            "AVAILABILITY_CACHE_TTL_SECONDS", defaults.availability_cache_ttl_seconds
        ),
        safety_buffer_beds=_parse_buffer_map(_env("SAFETY_BUFFER_BEDS", "")),
        past_grace_days=_env_int("PAST_GRACE_DAYS", defaults.past_grace_days),
        max_beds_per_request=_env_int("MAX_BEDS_PER_REQUEST", defaults.max_beds_per_request),
        base_price_per_bed=Decimal(_env("BASE_PRICE_PER_BED", str(defaults.base_price_per_bed))),
        currency=_env("CURRENCY", defaults.currency),
        carnival_windows=(
            _parse_windows(_env("CARNIVAL_WINDOWS", ""))
            or defaults.carnival_windows
        ),
        feed_fetch_timeout_seconds=float(
            _env("FEED_FETCH_TIMEOUT_SECONDS", str(defaults.feed_fetch_timeout_seconds))
        ),
        calendar_name=_env("CALENDAR_NAME", defaults.calendar_name),
        calendar_domain=_env("CALENDAR_DOMAIN", defaults.calendar_domain),
        scheduler_enabled=_env_bool("SCHEDULER_ENABLED", defaults.scheduler_enabled),
        sync_interval_minutes=_env_int("SYNC_INTERVAL_MINUTES", defaults.sync_interval_minutes),
    )
