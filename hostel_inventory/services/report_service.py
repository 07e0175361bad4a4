"""Nightly occupancy grid across rooms, built with pandas."""

from __future__ import annotations

from datetime import date, datetime, timedelta
from typing import Any, Optional

import pandas as pd

from hostel_inventory.domain.constraints import build_interval
from hostel_inventory.domain.models import RoomCategory
from hostel_inventory.domain.policies import swing_category_on
from hostel_inventory.repository.ledger_repository import LedgerRepository
from hostel_inventory.services.availability_service import utc_now
from hostel_inventory.utils.config import Settings, get_settings
from hostel_inventory.utils.logger import get_logger


logger = get_logger(__name__)

MAX_REPORT_NIGHTS = 366


class OccupancyReportService:
    def __init__(
        self,
        repository: Optional[LedgerRepository] = None,
        settings: Optional[Settings] = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._repository = repository or LedgerRepository(self._settings)

    def occupancy_frame(
        self,
        start: date,
        end: date,
        now: Optional[datetime] = None,
    ) -> pd.DataFrame:
        """One row per (night, room) with occupied and free bed counts."""
        interval = build_interval(start, end)
        if interval.nights > MAX_REPORT_NIGHTS:
            interval = build_interval(start, start + timedelta(days=MAX_REPORT_NIGHTS))
        current = now or utc_now()

        rooms = self._repository.list_rooms()
        entries = [
            entry
            for entry in self._repository.list_active_entries(interval, current)
            if entry.is_active(current)
        ]

        rows = []
        for room in rooms:
            room_entries = [entry for entry in entries if entry.room_id == room.room_id]
            for night in interval.dates():
                occupied = {
                    bed
                    for entry in room_entries
                    if entry.interval.covers(night)
                    for bed in entry.bed_indices
                }
                category = room.category.value
                if room.category == RoomCategory.SWING:
                    category = swing_category_on(room, night, current, room_entries).value
                rows.append(
                    {
                        "date": night.isoformat(),
                        "room_id": room.room_id,
                        "capacity": room.capacity,
                        "occupied": len(occupied),
                        "category": category,
                    }
                )

        frame = pd.DataFrame(rows, columns=["date", "room_id", "capacity", "occupied", "category"])
        if frame.empty:
            return frame
        frame["free"] = frame["capacity"] - frame["occupied"]
        frame["occupancy_rate"] = (frame["occupied"] / frame["capacity"]).round(4)
        return frame

    def occupancy_report(
        self,
        start: date,
        end: date,
        now: Optional[datetime] = None,
    ) -> dict[str, Any]:
        frame = self.occupancy_frame(start, end, now)
        if frame.empty:
            return {"start": start.isoformat(), "end": end.isoformat(), "nights": [], "rooms": [], "grid": []}

        nightly = (
            frame.groupby("date", sort=True)[["capacity", "occupied"]]
            .sum()
            .reset_index()
        )
        nightly["occupancy_rate"] = (nightly["occupied"] / nightly["capacity"]).round(4)

        per_room = (
            frame.groupby("room_id", sort=True)
            .agg(capacity=("capacity", "first"), bed_nights=("occupied", "sum"), nights=("date", "count"))
            .reset_index()
        )
        per_room["occupancy_rate"] = (
            per_room["bed_nights"] / (per_room["capacity"] * per_room["nights"])
        ).round(4)

        logger.info(
            "Occupancy report built | start=%s | end=%s | rows=%s",
            start.isoformat(),
            end.isoformat(),
            len(frame),
        )
        return {
            "start": start.isoformat(),
            "end": end.isoformat(),
            "nights": [
                {
                    "date": str(row["date"]),
                    "capacity": int(row["capacity"]),
                    "occupied": int(row["occupied"]),
                    "occupancy_rate": float(row["occupancy_rate"]),
                }
                for row in nightly.to_dict(orient="records")
            ],
            "rooms": [
                {
                    "room_id": str(row["room_id"]),
                    "capacity": int(row["capacity"]),
                    "bed_nights": int(row["bed_nights"]),
                    "occupancy_rate": float(row["occupancy_rate"]),
                }
                for row in per_room.to_dict(orient="records")
            ],
            "grid": [
                {
                    "date": str(row["date"]),
                    "room_id": str(row["room_id"]),
                    "occupied": int(row["occupied"]),
                    "free": int(row["free"]),
                    "category": str(row["category"]),
                }
                for row in frame.to_dict(orient="records")
            ],
        }
