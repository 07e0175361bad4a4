"""Pull external calendar feeds and reconcile them into the ledger."""

from __future__ import annotations

import sqlite3
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Iterable, Optional

from hostel_inventory.domain.constraints import validate_bed_selection
from hostel_inventory.domain.errors import FeedError, FeedNotFound, InventoryError, RoomNotFound
from hostel_inventory.domain.models import ExternalFeed, ParseResult
from hostel_inventory.repository.ledger_repository import LedgerRepository
from hostel_inventory.services.availability_service import AvailabilityService, utc_now
from hostel_inventory.services.calendar_parser import (
    CalendarFeedParser,
    infer_platform,
    validate_feed_url,
)
from hostel_inventory.services.conflict_resolver import (
    CONFLICT,
    IMPORTED,
    SKIPPED,
    UPDATED,
    ConflictResolver,
)
from hostel_inventory.utils.config import Settings, get_settings
from hostel_inventory.utils.logger import get_logger


logger = get_logger(__name__)

MIN_SYNC_INTERVAL_MINUTES = 15
MAX_SYNC_INTERVAL_MINUTES = 1440

SYNC_SUCCESS = "success"
SYNC_PARTIAL = "partial"
SYNC_FAILED = "failed"


def clamp_sync_interval(minutes: int) -> int:
    return max(MIN_SYNC_INTERVAL_MINUTES, min(MAX_SYNC_INTERVAL_MINUTES, int(minutes)))


@dataclass
class FeedSyncReport:
    feed_id: str
    room_id: str
    platform: str
    imported: int = 0
    updated: int = 0
    skipped: int = 0
    conflicts: int = 0
    errors: list[str] = field(default_factory=list)
    failed: bool = False

    @property
    def status(self) -> str:
        if self.failed:
            return SYNC_FAILED
        if self.errors or self.conflicts:
            return SYNC_PARTIAL
        return SYNC_SUCCESS

    @property
    def changed(self) -> bool:
        return bool(self.imported or self.updated)

    def to_dict(self) -> dict[str, Any]:
        return {
            "feed_id": self.feed_id,
            "room_id": self.room_id,
            "platform": self.platform,
            "status": self.status,
            "imported": self.imported,
            "updated": self.updated,
            "skipped": self.skipped,
            "conflicts": self.conflicts,
            "errors": list(self.errors),
        }


@dataclass
class BatchSyncReport:
    feeds: list[FeedSyncReport] = field(default_factory=list)

    def _total(self, attribute: str) -> int:
        return sum(getattr(report, attribute) for report in self.feeds)

    def to_dict(self) -> dict[str, Any]:
        return {
            "feeds_synced": len(self.feeds),
            "feeds_failed": sum(1 for report in self.feeds if report.failed),
            "imported": self._total("imported"),
            "updated": self._total("updated"),
            "skipped": self._total("skipped"),
            "conflicts": self._total("conflicts"),
            "errors": [error for report in self.feeds for error in report.errors],
            "feeds": [report.to_dict() for report in self.feeds],
        }


class SyncService:
    """Feed registry plus fetch, parse and resolve orchestration."""

    def __init__(
        self,
        repository: Optional[LedgerRepository] = None,
        parser: Optional[CalendarFeedParser] = None,
        resolver: Optional[ConflictResolver] = None,
        availability_service: Optional[AvailabilityService] = None,
        settings: Optional[Settings] = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._repository = repository or LedgerRepository(self._settings)
        self._parser = parser or CalendarFeedParser(self._settings)
        self._resolver = resolver or ConflictResolver(self._repository, self._settings)
        self._availability = availability_service or AvailabilityService(
            self._repository, self._settings
        )

    @property
    def sync_interval_minutes(self) -> int:
        return clamp_sync_interval(self._settings.sync_interval_minutes)

    def register_feed(
        self,
        name: str,
        url: str,
        room_id: str,
        platform: Optional[str] = None,
        bed_indices: Iterable[int] = (),
    ) -> ExternalFeed:
        room = self._repository.get_room(room_id)
        if room is None:
            raise RoomNotFound(f"room {room_id} not found")
        normalized_url = validate_feed_url(url)
        beds = tuple(bed_indices)
        if beds:
            beds = validate_bed_selection(room, beds)
        inferred = platform or infer_platform(normalized_url, name)

        feed = ExternalFeed(
            feed_id=uuid.uuid4().hex,
            name=name,
            url=normalized_url,
            room_id=room_id,
            platform=inferred,
            bed_indices=beds,
        )
        self._repository.create_feed(feed)
        logger.info(
            "Feed registered | feed_id=%s | room_id=%s | platform=%s",
            feed.feed_id,
            room_id,
            feed.platform,
        )
        return feed

    def get_feed(self, feed_id: str) -> ExternalFeed:
        feed = self._repository.get_feed(feed_id)
        if feed is None:
            raise FeedNotFound(f"feed {feed_id} not found")
        return feed

    def list_feeds(self, active_only: bool = False) -> list[ExternalFeed]:
        return self._repository.list_feeds(active_only=active_only)

    def set_feed_active(self, feed_id: str, is_active: bool) -> ExternalFeed:
        if not self._repository.set_feed_active(feed_id, is_active):
            raise FeedNotFound(f"feed {feed_id} not found")
        return self.get_feed(feed_id)

    def _apply(self, feed: ExternalFeed, parsed: ParseResult, now: datetime) -> FeedSyncReport:
        report = FeedSyncReport(feed_id=feed.feed_id, room_id=feed.room_id, platform=feed.platform)
        report.errors.extend(parsed.errors)
        report.skipped += parsed.skipped_events

        for stay in parsed.stays:
            try:
                resolution = self._resolver.resolve(feed, stay, now)
            except (InventoryError, sqlite3.Error) as exc:
                logger.warning(
                    "Stay import failed | feed_id=%s | external_id=%s | error=%s",
                    feed.feed_id,
                    stay.external_id,
                    exc,
                )
                report.errors.append(f"{stay.external_id}: {exc}")
                continue

            if resolution.outcome == IMPORTED:
                report.imported += 1
            elif resolution.outcome == UPDATED:
                report.updated += 1
            elif resolution.outcome == SKIPPED:
                report.skipped += 1
            elif resolution.outcome == CONFLICT:
                report.conflicts += 1
                report.errors.append(str(resolution.error))

        if report.changed:
            self._availability.invalidate()
        return report

    def _record(self, report: FeedSyncReport, now: datetime) -> None:
        self._repository.record_feed_sync(
            report.feed_id,
            synced_at=now,
            status=report.status,
            error="; ".join(report.errors) or None,
        )
        logger.info(
            "Feed synced | feed_id=%s | status=%s | imported=%s | updated=%s | skipped=%s | conflicts=%s",
            report.feed_id,
            report.status,
            report.imported,
            report.updated,
            report.skipped,
            report.conflicts,
        )

    @staticmethod
    def _failure_report(feed: ExternalFeed, exc: Exception) -> FeedSyncReport:
        return FeedSyncReport(
            feed_id=feed.feed_id,
            room_id=feed.room_id,
            platform=feed.platform,
            errors=[str(exc) or type(exc).__name__],
            failed=True,
        )

    def _failed(self, feed: ExternalFeed, exc: FeedError, now: datetime) -> FeedSyncReport:
        report = self._failure_report(feed, exc)
        logger.warning("Feed sync failed | feed_id=%s | error=%s", feed.feed_id, exc)
        self._record(report, now)
        return report

    def import_document(
        self,
        feed_id: str,
        document: str,
        now: Optional[datetime] = None,
    ) -> FeedSyncReport:
        """Reconcile a calendar document supplied directly instead of fetched."""
        current = now or utc_now()
        feed = self.get_feed(feed_id)
        try:
            parsed = self._parser.parse(document, platform=feed.platform, source_url=feed.url)
        except FeedError as exc:
            self._failed(feed, exc, current)
            raise
        report = self._apply(feed, parsed, current)
        self._record(report, current)
        return report

    def sync_feed(self, feed_id: str, now: Optional[datetime] = None) -> FeedSyncReport:
        current = now or utc_now()
        feed = self.get_feed(feed_id)
        try:
            document = self._parser.fetch_document(feed.url)
            parsed = self._parser.parse(document, platform=feed.platform, source_url=feed.url)
        except FeedError as exc:
            self._failed(feed, exc, current)
            raise
        report = self._apply(feed, parsed, current)
        self._record(report, current)
        return report

    def sync_all_active_feeds(self, now: Optional[datetime] = None) -> BatchSyncReport:
        batch = BatchSyncReport()
        for feed in self.list_feeds(active_only=True):
            current = now or utc_now()
            try:
                batch.feeds.append(self.sync_feed(feed.feed_id, now=current))
            except FeedError as exc:
                # Already recorded by sync_feed.
                batch.feeds.append(self._failure_report(feed, exc))
            except Exception as exc:
                logger.exception("Feed sync crashed | feed_id=%s", feed.feed_id)
                report = self._failure_report(feed, exc)
                try:
                    self._record(report, current)
                except sqlite3.Error:
                    logger.exception("Feed sync status not recorded | feed_id=%s", feed.feed_id)
                batch.feeds.append(report)
        logger.info("Feed batch synced | feeds=%s", len(batch.feeds))
        return batch
