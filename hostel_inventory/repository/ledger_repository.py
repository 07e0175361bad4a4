"""Repository layer responsible for all ledger, room and feed persistence."""

from __future__ import annotations

import json
import sqlite3
from contextlib import contextmanager
from datetime import date, datetime, timezone
from decimal import Decimal
from pathlib import Path
from typing import Iterable, Iterator, Optional, Sequence

from hostel_inventory.domain.models import (
    EntryOrigin,
    EntryStatus,
    ExternalFeed,
    LedgerEntry,
    PricingSnapshot,
    RequestCategory,
    Room,
    RoomCategory,
    StayInterval,
)
from hostel_inventory.utils.config import Settings, get_settings
from hostel_inventory.utils.logger import get_logger


logger = get_logger(__name__)

_TIMESTAMP_FORMAT = "%Y-%m-%dT%H:%M:%S.%f+00:00"


def to_timestamp(value: datetime) -> str:
    """Render a UTC timestamp with a fixed width so SQL string order matches time order."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).strftime(_TIMESTAMP_FORMAT)


def from_timestamp(value: Optional[str]) -> Optional[datetime]:
    if value is None:
        return None
    return datetime.fromisoformat(value)


def default_rooms(settings: Settings) -> list[Room]:
    """The four dormitories sold by the hostel."""
    price = settings.base_price_per_bed
    return [
        Room("mixto_12a", "Mixto 12A", 12, RoomCategory.MIXED, price),
        Room("mixto_12b", "Mixto 12B", 12, RoomCategory.MIXED, price),
        Room("mixto_7", "Mixto 7", 7, RoomCategory.MIXED, price),
        Room(
            "flexible_7",
            "Flexible 7",
            7,
            RoomCategory.SWING,
            price,
            designated_until_hours=settings.swing_designated_until_hours,
        ),
    ]


class LedgerRepository:
    """Encapsulates SQLite access so inventory logic stays storage-agnostic."""

    def __init__(self, settings: Optional[Settings] = None) -> None:
        self._settings = settings or get_settings()
        self._db_path = Path(self._settings.database_path)
        self._db_path.parent.mkdir(parents=True, exist_ok=True)

    @property
    def database_path(self) -> Path:
        return self._db_path

    def _connect(self) -> sqlite3.Connection:
        connection = sqlite3.connect(
            self._db_path,
            timeout=self._settings.database_busy_timeout_seconds,
        )
        connection.row_factory = sqlite3.Row
        connection.execute("PRAGMA foreign_keys = ON;")
        return connection

    @contextmanager
    def _session(self, conn: Optional[sqlite3.Connection] = None) -> Iterator[sqlite3.Connection]:
        if conn is not None:
            yield conn
            return
        connection = self._connect()
        try:
            with connection:
                yield connection
        finally:
            connection.close()

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        """Open a write transaction that holds the database write lock until exit.

        ``BEGIN IMMEDIATE`` makes check-then-write sequences atomic across
        processes sharing the same database file.
        """
        connection = self._connect()
        try:
            connection.execute("BEGIN IMMEDIATE;")
            yield connection
            connection.commit()
        except BaseException:
            connection.rollback()
            raise
        finally:
            connection.close()

    def initialize_database(self) -> None:
        """Create all persistence artifacts before API startup."""
        try:
            with self._session() as conn:
                cursor = conn.cursor()
                cursor.execute("PRAGMA journal_mode = WAL;")

                cursor.execute(
                    """
                    CREATE TABLE IF NOT EXISTS Rooms (
                        id TEXT PRIMARY KEY,
                        name TEXT NOT NULL,
                        capacity INTEGER NOT NULL CHECK (capacity > 0),
                        category TEXT NOT NULL CHECK (category IN ('mixed','designated','swing')),
                        base_price TEXT NOT NULL,
                        designated_until_hours INTEGER,
                        created_at DATETIME DEFAULT CURRENT_TIMESTAMP
                    );
                    """
                )

                cursor.execute(
                    """
                    CREATE TABLE IF NOT EXISTS LedgerEntries (
                        id TEXT PRIMARY KEY,
                        room_id TEXT NOT NULL,
                        bed_indices TEXT NOT NULL,
                        check_in TEXT NOT NULL,
                        check_out TEXT NOT NULL,
                        origin TEXT NOT NULL,
                        status TEXT NOT NULL,
                        requested_category TEXT NOT NULL DEFAULT 'mixed',
                        expires_at TEXT,
                        external_platform TEXT,
                        external_id TEXT,
                        guest_label TEXT,
                        guest_count INTEGER,
                        blocked INTEGER NOT NULL DEFAULT 0 CHECK (blocked IN (0,1)),
                        paid_amount TEXT,
                        pricing_json TEXT,
                        created_at TEXT NOT NULL,
                        updated_at TEXT NOT NULL,
                        CHECK (check_out > check_in),
                        FOREIGN KEY (room_id) REFERENCES Rooms(id)
                    );
                    """
                )

                cursor.execute(
                    """
                    CREATE TABLE IF NOT EXISTS ExternalFeeds (
                        id TEXT PRIMARY KEY,
                        name TEXT NOT NULL,
                        url TEXT NOT NULL,
                        room_id TEXT NOT NULL,
                        platform TEXT NOT NULL,
                        is_active INTEGER NOT NULL DEFAULT 1 CHECK (is_active IN (0,1)),
                        bed_indices TEXT NOT NULL DEFAULT '[]',
                        last_sync_at TEXT,
                        last_sync_status TEXT,
                        last_sync_error TEXT,
                        created_at DATETIME DEFAULT CURRENT_TIMESTAMP,
                        FOREIGN KEY (room_id) REFERENCES Rooms(id)
                    );
                    """
                )

                cursor.execute(
                    """
                    CREATE INDEX IF NOT EXISTS idx_entries_room_dates_status
                    ON LedgerEntries(room_id, check_in, check_out, status);
                    """
                )
                cursor.execute(
                    """
                    CREATE INDEX IF NOT EXISTS idx_entries_status_expiry
                    ON LedgerEntries(status, expires_at);
                    """
                )
                cursor.execute(
                    """
                    CREATE UNIQUE INDEX IF NOT EXISTS idx_entries_external
                    ON LedgerEntries(external_platform, external_id)
                    WHERE external_id IS NOT NULL;
                    """
                )
            logger.info("Database initialized at %s", self._db_path)
        except sqlite3.Error as exc:
            raise RuntimeError(f"Database initialization failed: {exc}") from exc

    def seed_rooms(self, rooms: Optional[Sequence[Room]] = None) -> int:
        """Insert the room catalogue only when the Rooms table is empty."""
        catalogue = list(rooms) if rooms is not None else default_rooms(self._settings)
        try:
            with self._session() as conn:
                cursor = conn.cursor()
                cursor.execute("SELECT COUNT(*) AS count FROM Rooms;")
                if int(cursor.fetchone()["count"]) > 0:
                    logger.info("Room catalogue already present; skipping seed")
                    return 0
                cursor.executemany(
                    """
                    INSERT INTO Rooms (id, name, capacity, category, base_price, designated_until_hours)
                    VALUES (?, ?, ?, ?, ?, ?);
                    """,
                    [
                        (
                            room.room_id,
                            room.name,
                            room.capacity,
                            room.category.value,
                            str(room.base_price),
                            room.designated_until_hours,
                        )
                        for room in catalogue
                    ],
                )
            logger.info("Room catalogue seeded with %s rooms", len(catalogue))
            return len(catalogue)
        except sqlite3.Error as exc:
            raise RuntimeError(f"Room seeding failed: {exc}") from exc

    # --- Rooms ---

    @staticmethod
    def _row_to_room(row: sqlite3.Row) -> Room:
        return Room(
            room_id=str(row["id"]),
            name=str(row["name"]),
            capacity=int(row["capacity"]),
            category=RoomCategory(row["category"]),
            base_price=Decimal(row["base_price"]),
            designated_until_hours=(
                int(row["designated_until_hours"])
                if row["designated_until_hours"] is not None
                else None
            ),
        )

    def get_room(self, room_id: str, conn: Optional[sqlite3.Connection] = None) -> Optional[Room]:
        with self._session(conn) as session:
            row = session.execute("SELECT * FROM Rooms WHERE id = ?;", (room_id,)).fetchone()
            if row is None:
                return None
            return self._row_to_room(row)

    def list_rooms(self, conn: Optional[sqlite3.Connection] = None) -> list[Room]:
        with self._session(conn) as session:
            rows = session.execute("SELECT * FROM Rooms ORDER BY id ASC;").fetchall()
            return [self._row_to_room(row) for row in rows]

    # --- Ledger entries ---

    @staticmethod
    def _row_to_entry(row: sqlite3.Row) -> LedgerEntry:
        pricing = None
        if row["pricing_json"]:
            pricing = PricingSnapshot.from_dict(json.loads(row["pricing_json"]))
        return LedgerEntry(
            entry_id=str(row["id"]),
            room_id=str(row["room_id"]),
            bed_indices=tuple(int(bed) for bed in json.loads(row["bed_indices"])),
            interval=StayInterval(
                check_in=date.fromisoformat(row["check_in"]),
                check_out=date.fromisoformat(row["check_out"]),
            ),
            origin=EntryOrigin(row["origin"]),
            status=EntryStatus(row["status"]),
            requested_category=RequestCategory(row["requested_category"]),
            expires_at=from_timestamp(row["expires_at"]),
            external_platform=row["external_platform"],
            external_id=row["external_id"],
            guest_label=row["guest_label"],
            guest_count=int(row["guest_count"]) if row["guest_count"] is not None else None,
            blocked=bool(row["blocked"]),
            paid_amount=Decimal(row["paid_amount"]) if row["paid_amount"] is not None else None,
            pricing=pricing,
            created_at=datetime.fromisoformat(row["created_at"]),
            updated_at=datetime.fromisoformat(row["updated_at"]),
        )

    def insert_entry(self, entry: LedgerEntry, conn: Optional[sqlite3.Connection] = None) -> None:
        with self._session(conn) as session:
            session.execute(
                """
                INSERT INTO LedgerEntries (
                    id, room_id, bed_indices, check_in, check_out, origin, status,
                    requested_category, expires_at, external_platform, external_id,
                    guest_label, guest_count, blocked, paid_amount, pricing_json,
                    created_at, updated_at
                )
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?);
                """,
                (
                    entry.entry_id,
                    entry.room_id,
                    json.dumps(list(entry.bed_indices)),
                    entry.interval.check_in.isoformat(),
                    entry.interval.check_out.isoformat(),
                    entry.origin.value,
                    entry.status.value,
                    entry.requested_category.value,
                    to_timestamp(entry.expires_at) if entry.expires_at else None,
                    entry.external_platform,
                    entry.external_id,
                    entry.guest_label,
                    entry.guest_count,
                    1 if entry.blocked else 0,
                    str(entry.paid_amount) if entry.paid_amount is not None else None,
                    json.dumps(entry.pricing.to_dict()) if entry.pricing else None,
                    to_timestamp(entry.created_at),
                    to_timestamp(entry.updated_at),
                ),
            )

    def get_entry(self, entry_id: str, conn: Optional[sqlite3.Connection] = None) -> Optional[LedgerEntry]:
        with self._session(conn) as session:
            row = session.execute(
                "SELECT * FROM LedgerEntries WHERE id = ?;",
                (entry_id,),
            ).fetchone()
            if row is None:
                return None
            return self._row_to_entry(row)

    def list_active_entries(
        self,
        interval: StayInterval,
        now: datetime,
        room_id: Optional[str] = None,
        conn: Optional[sqlite3.Connection] = None,
    ) -> list[LedgerEntry]:
        """Entries claiming beds during ``interval``; unexpired holds count, stale ones do not."""
        query = """
            SELECT *
            FROM LedgerEntries
            WHERE check_in < ?
              AND check_out > ?
              AND (
                    status = 'CONFIRMED'
                 OR (status = 'HOLD' AND expires_at > ?)
              )
        """
        params: list[object] = [
            interval.check_out.isoformat(),
            interval.check_in.isoformat(),
            to_timestamp(now),
        ]
        if room_id is not None:
            query += " AND room_id = ?"
            params.append(room_id)
        query += " ORDER BY created_at ASC, id ASC;"
        with self._session(conn) as session:
            rows = session.execute(query, tuple(params)).fetchall()
            return [self._row_to_entry(row) for row in rows]

    def list_entries_for_room(
        self,
        room_id: str,
        statuses: Optional[Iterable[EntryStatus]] = None,
        conn: Optional[sqlite3.Connection] = None,
    ) -> list[LedgerEntry]:
        query = "SELECT * FROM LedgerEntries WHERE room_id = ?"
        params: list[object] = [room_id]
        status_values = [status.value for status in statuses] if statuses else []
        if status_values:
            placeholders = ",".join("?" for _ in status_values)
            query += f" AND status IN ({placeholders})"
            params.extend(status_values)
        query += " ORDER BY check_in ASC, id ASC;"
        with self._session(conn) as session:
            rows = session.execute(query, tuple(params)).fetchall()
            return [self._row_to_entry(row) for row in rows]

    def find_by_external_id(
        self,
        platform: str,
        external_id: str,
        conn: Optional[sqlite3.Connection] = None,
    ) -> Optional[LedgerEntry]:
        with self._session(conn) as session:
            row = session.execute(
                """
                SELECT * FROM LedgerEntries
                WHERE external_platform = ? AND external_id = ?;
                """,
                (platform, external_id),
            ).fetchone()
            if row is None:
                return None
            return self._row_to_entry(row)

    def transition_status(
        self,
        entry_id: str,
        from_status: EntryStatus,
        to_status: EntryStatus,
        now: datetime,
        *,
        unexpired_only: bool = False,
        paid_amount: Optional[Decimal] = None,
        conn: Optional[sqlite3.Connection] = None,
    ) -> bool:
        """Conditionally move one entry between states; False when another caller won."""
        query = """
            UPDATE LedgerEntries
            SET status = ?, updated_at = ?, paid_amount = COALESCE(?, paid_amount)
            WHERE id = ? AND status = ?
        """
        params: list[object] = [
            to_status.value,
            to_timestamp(now),
            str(paid_amount) if paid_amount is not None else None,
            entry_id,
            from_status.value,
        ]
        if unexpired_only:
            query += " AND expires_at > ?"
            params.append(to_timestamp(now))
        with self._session(conn) as session:
            cursor = session.execute(query + ";", tuple(params))
            return cursor.rowcount == 1

    def expire_stale_holds(self, now: datetime, conn: Optional[sqlite3.Connection] = None) -> list[str]:
        """Mark every HOLD past its expiry as EXPIRED and return the affected ids."""
        with self._session(conn) as session:
            rows = session.execute(
                """
                SELECT id FROM LedgerEntries
                WHERE status = 'HOLD' AND expires_at <= ?
                ORDER BY id ASC;
                """,
                (to_timestamp(now),),
            ).fetchall()
            expired_ids = [str(row["id"]) for row in rows]
            if not expired_ids:
                return []
            placeholders = ",".join("?" for _ in expired_ids)
            session.execute(
                f"""
                UPDATE LedgerEntries
                SET status = 'EXPIRED', updated_at = ?
                WHERE status = 'HOLD' AND id IN ({placeholders});
                """,
                (to_timestamp(now), *expired_ids),
            )
            return expired_ids

    def update_imported_entry(
        self,
        entry_id: str,
        *,
        interval: StayInterval,
        bed_indices: Sequence[int],
        external_id: str,
        guest_label: Optional[str],
        guest_count: Optional[int],
        blocked: bool,
        now: datetime,
        conn: Optional[sqlite3.Connection] = None,
    ) -> None:
        with self._session(conn) as session:
            session.execute(
                """
                UPDATE LedgerEntries
                SET check_in = ?, check_out = ?, bed_indices = ?, external_id = ?,
                    guest_label = ?, guest_count = ?, blocked = ?, updated_at = ?
                WHERE id = ? AND origin = 'platform-import';
                """,
                (
                    interval.check_in.isoformat(),
                    interval.check_out.isoformat(),
                    json.dumps(sorted(bed_indices)),
                    external_id,
                    guest_label,
                    guest_count,
                    1 if blocked else 0,
                    to_timestamp(now),
                    entry_id,
                ),
            )

    def count_entries(self, status: Optional[EntryStatus] = None) -> int:
        """Return persisted entry count for diagnostics and tests."""
        with self._session() as session:
            if status is None:
                row = session.execute("SELECT COUNT(*) AS count FROM LedgerEntries;").fetchone()
            else:
                row = session.execute(
                    "SELECT COUNT(*) AS count FROM LedgerEntries WHERE status = ?;",
                    (status.value,),
                ).fetchone()
            return int(row["count"])

    # --- External feeds ---

    @staticmethod
    def _row_to_feed(row: sqlite3.Row) -> ExternalFeed:
        return ExternalFeed(
            feed_id=str(row["id"]),
            name=str(row["name"]),
            url=str(row["url"]),
            room_id=str(row["room_id"]),
            platform=str(row["platform"]),
            is_active=bool(row["is_active"]),
            bed_indices=tuple(int(bed) for bed in json.loads(row["bed_indices"])),
            last_sync_at=from_timestamp(row["last_sync_at"]),
            last_sync_status=row["last_sync_status"],
            last_sync_error=row["last_sync_error"],
        )

    def create_feed(self, feed: ExternalFeed) -> None:
        with self._session() as session:
            session.execute(
                """
                INSERT INTO ExternalFeeds (id, name, url, room_id, platform, is_active, bed_indices)
                VALUES (?, ?, ?, ?, ?, ?, ?);
                """,
                (
                    feed.feed_id,
                    feed.name,
                    feed.url,
                    feed.room_id,
                    feed.platform,
                    1 if feed.is_active else 0,
                    json.dumps(list(feed.bed_indices)),
                ),
            )

    def get_feed(self, feed_id: str) -> Optional[ExternalFeed]:
        with self._session() as session:
            row = session.execute("SELECT * FROM ExternalFeeds WHERE id = ?;", (feed_id,)).fetchone()
            if row is None:
                return None
            return self._row_to_feed(row)

    def list_feeds(self, active_only: bool = False) -> list[ExternalFeed]:
        query = "SELECT * FROM ExternalFeeds"
        if active_only:
            query += " WHERE is_active = 1"
        query += " ORDER BY created_at ASC, id ASC;"
        with self._session() as session:
            return [self._row_to_feed(row) for row in session.execute(query).fetchall()]

    def set_feed_active(self, feed_id: str, is_active: bool) -> bool:
        with self._session() as session:
            cursor = session.execute(
                "UPDATE ExternalFeeds SET is_active = ? WHERE id = ?;",
                (1 if is_active else 0, feed_id),
            )
            return cursor.rowcount == 1

    def record_feed_sync(
        self,
        feed_id: str,
        *,
        synced_at: datetime,
        status: str,
        error: Optional[str] = None,
    ) -> None:
        with self._session() as session:
            session.execute(
                """
                UPDATE ExternalFeeds
                SET last_sync_at = ?, last_sync_status = ?, last_sync_error = ?
                WHERE id = ?;
                """,
                (to_timestamp(synced_at), status, error, feed_id),
            )
