"""Decide how an externally sourced stay lands in the ledger.

Direct bookings always win: an imported stay that would share a bed with a
direct or held entry is reported as a conflict and never written.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Optional

from hostel_inventory.domain.errors import ExternalConflict, RoomNotFound
from hostel_inventory.domain.models import (
    EntryOrigin,
    EntryStatus,
    ExternalFeed,
    LedgerEntry,
    ParsedStay,
    StayStatus,
)
from hostel_inventory.repository.ledger_repository import LedgerRepository
from hostel_inventory.services.hold_service import RoomLockRegistry
from hostel_inventory.utils.config import Settings, get_settings
from hostel_inventory.utils.logger import get_logger


logger = get_logger(__name__)

IMPORTED = "imported"
UPDATED = "updated"
SKIPPED = "skipped"
CONFLICT = "conflict"


@dataclass(frozen=True)
class Resolution:
    outcome: str
    external_id: str
    entry_id: Optional[str] = None
    reason: Optional[str] = None
    conflicting_entry_ids: tuple[str, ...] = field(default_factory=tuple)

    @property
    def error(self) -> Optional[ExternalConflict]:
        if self.outcome != CONFLICT:
            return None
        return ExternalConflict(self.reason or "conflict", self.conflicting_entry_ids)

    def to_dict(self) -> dict[str, Any]:
        return {
            "outcome": self.outcome,
            "external_id": self.external_id,
            "entry_id": self.entry_id,
            "reason": self.reason,
            "conflicting_entry_ids": list(self.conflicting_entry_ids),
        }


class ConflictResolver:
    def __init__(
        self,
        repository: Optional[LedgerRepository] = None,
        settings: Optional[Settings] = None,
        locks: Optional[RoomLockRegistry] = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._repository = repository or LedgerRepository(self._settings)
        self._locks = locks or RoomLockRegistry()

    def claimed_beds(self, feed: ExternalFeed) -> tuple[int, ...]:
        """Beds an imported stay occupies: the feed's mapping, else the whole room."""
        if feed.bed_indices:
            return tuple(sorted(feed.bed_indices))
        room = self._repository.get_room(feed.room_id)
        if room is None:
            raise RoomNotFound(f"room {feed.room_id} not found")
        return tuple(room.bed_indices)

    def resolve(self, feed: ExternalFeed, stay: ParsedStay, now: datetime) -> Resolution:
        beds = self.claimed_beds(feed)
        with self._locks.hold(feed.room_id), self._repository.transaction() as conn:
            existing = self._repository.find_by_external_id(
                stay.platform, stay.external_id, conn=conn
            )

            if stay.status == StayStatus.CANCELLED:
                if existing is None or existing.status != EntryStatus.CONFIRMED:
                    return Resolution(SKIPPED, stay.external_id, reason="nothing to cancel")
                self._repository.transition_status(
                    existing.entry_id,
                    EntryStatus.CONFIRMED,
                    EntryStatus.CANCELLED,
                    now,
                    conn=conn,
                )
                return Resolution(UPDATED, stay.external_id, entry_id=existing.entry_id)

            if existing is not None and existing.status != EntryStatus.CONFIRMED:
                return Resolution(
                    SKIPPED,
                    stay.external_id,
                    entry_id=existing.entry_id,
                    reason=f"entry already {existing.status.value}",
                )

            overlapping = [
                entry
                for entry in self._repository.list_active_entries(
                    stay.interval, now, room_id=feed.room_id, conn=conn
                )
                if entry.is_active(now)
                and (existing is None or entry.entry_id != existing.entry_id)
                and set(entry.bed_indices).intersection(beds)
            ]
            direct = [entry for entry in overlapping if entry.is_direct]
            if direct:
                return self._conflict(stay, direct, "overlaps a direct booking")

            if existing is not None:
                if overlapping:
                    return self._conflict(stay, overlapping, "overlaps another imported stay")
                if self._unchanged(existing, stay, beds):
                    return Resolution(
                        SKIPPED, stay.external_id, entry_id=existing.entry_id, reason="unchanged"
                    )
                self._rewrite(existing.entry_id, stay, beds, now, conn)
                return Resolution(UPDATED, stay.external_id, entry_id=existing.entry_id)

            if len(overlapping) == 1 and self._same_platform_import(overlapping[0], stay):
                target = overlapping[0]
                self._rewrite(target.entry_id, stay, beds, now, conn)
                return Resolution(UPDATED, stay.external_id, entry_id=target.entry_id)
            if overlapping:
                return self._conflict(stay, overlapping, "overlaps imported stays from other sources")

            entry = LedgerEntry(
                entry_id=uuid.uuid4().hex,
                room_id=feed.room_id,
                bed_indices=beds,
                interval=stay.interval,
                origin=EntryOrigin.PLATFORM_IMPORT,
                status=EntryStatus.CONFIRMED,
                created_at=now,
                updated_at=now,
                external_platform=stay.platform,
                external_id=stay.external_id,
                guest_label=stay.guest_label,
                guest_count=stay.guest_count,
                blocked=stay.status == StayStatus.BLOCKED,
            )
            self._repository.insert_entry(entry, conn=conn)
            return Resolution(IMPORTED, stay.external_id, entry_id=entry.entry_id)

    @staticmethod
    def _same_platform_import(entry: LedgerEntry, stay: ParsedStay) -> bool:
        return (
            entry.origin == EntryOrigin.PLATFORM_IMPORT
            and entry.external_platform == stay.platform
        )

    @staticmethod
    def _unchanged(entry: LedgerEntry, stay: ParsedStay, beds: tuple[int, ...]) -> bool:
        return (
            entry.interval == stay.interval
            and entry.bed_indices == beds
            and entry.guest_label == stay.guest_label
            and entry.guest_count == stay.guest_count
            and entry.blocked == (stay.status == StayStatus.BLOCKED)
        )

    def _rewrite(self, entry_id: str, stay: ParsedStay, beds: tuple[int, ...], now: datetime, conn) -> None:
        self._repository.update_imported_entry(
            entry_id,
            interval=stay.interval,
            bed_indices=beds,
            external_id=stay.external_id,
            guest_label=stay.guest_label,
            guest_count=stay.guest_count,
            blocked=stay.status == StayStatus.BLOCKED,
            now=now,
            conn=conn,
        )

    @staticmethod
    def _conflict(stay: ParsedStay, entries: list[LedgerEntry], reason: str) -> Resolution:
        entry_ids = tuple(entry.entry_id for entry in entries)
        logger.warning(
            "Import conflict | platform=%s | external_id=%s | reason=%s | entries=%s",
            stay.platform,
            stay.external_id,
            reason,
            list(entry_ids),
        )
        return Resolution(
            CONFLICT,
            stay.external_id,
            reason=f"{stay.platform} stay {stay.external_id} {reason}",
            conflicting_entry_ids=entry_ids,
        )
