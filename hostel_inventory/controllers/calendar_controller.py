"""HTTP controller layer for calendar export and external feed synchronization."""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Response, status
from pydantic import Field

from hostel_inventory.controllers.dependencies import (
    get_export_service,
    get_sync_service,
    to_http_exception,
)
from hostel_inventory.controllers.schemas import CamelModel
from hostel_inventory.domain.errors import FeedFetchError, InventoryError
from hostel_inventory.domain.models import ExternalFeed
from hostel_inventory.services.calendar_export import CalendarExportService
from hostel_inventory.services.sync_service import SyncService
from hostel_inventory.utils.logger import get_logger


logger = get_logger(__name__)

router = APIRouter(tags=["calendar"])

# Plain def handlers: feed fetches and ledger writes block, so they run in the threadpool.

CALENDAR_MEDIA_TYPE = "text/calendar; charset=utf-8"


class FeedRequest(CamelModel):
    name: str = Field(min_length=1)
    url: str = Field(min_length=1)
    room_id: str = Field(min_length=1)
    platform: Optional[str] = None
    bed_indices: list[int] = Field(default_factory=list)


class FeedResponse(CamelModel):
    feed_id: str
    name: str
    url: str
    room_id: str
    platform: str
    is_active: bool
    bed_indices: list[int]
    last_sync_at: Optional[str] = None
    last_sync_status: Optional[str] = None
    last_sync_error: Optional[str] = None


class FeedActiveRequest(CamelModel):
    is_active: bool


class ImportRequest(CamelModel):
    document: str = Field(min_length=1)


class FeedSyncResponse(CamelModel):
    feed_id: str
    room_id: str
    platform: str
    status: str
    imported: int = Field(ge=0)
    updated: int = Field(ge=0)
    skipped: int = Field(ge=0)
    conflicts: int = Field(ge=0)
    errors: list[str]


class BatchSyncResponse(CamelModel):
    feeds_synced: int = Field(ge=0)
    feeds_failed: int = Field(ge=0)
    imported: int = Field(ge=0)
    updated: int = Field(ge=0)
    skipped: int = Field(ge=0)
    conflicts: int = Field(ge=0)
    errors: list[str]
    feeds: list[FeedSyncResponse]


def _feed_response(feed: ExternalFeed) -> FeedResponse:
    return FeedResponse(
        feed_id=feed.feed_id,
        name=feed.name,
        url=feed.url,
        room_id=feed.room_id,
        platform=feed.platform,
        is_active=feed.is_active,
        bed_indices=list(feed.bed_indices),
        last_sync_at=feed.last_sync_at.isoformat() if feed.last_sync_at else None,
        last_sync_status=feed.last_sync_status,
        last_sync_error=feed.last_sync_error,
    )


def _calendar(document: str, filename: str) -> Response:
    return Response(
        content=document,
        media_type=CALENDAR_MEDIA_TYPE,
        headers={"Content-Disposition": f'inline; filename="{filename}"'},
    )


def _unexpected(action: str) -> HTTPException:
    logger.exception("Unexpected failure | action=%s", action)
    return HTTPException(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        detail=f"Failed to {action}",
    )


@router.get("/ical/rooms.ics")
def export_rooms(
    room_id: Optional[list[str]] = Query(default=None),
    include_holds: bool = Query(default=False),
    service: CalendarExportService = Depends(get_export_service),
) -> Response:
    try:
        document = service.export_rooms(room_id, include_holds=include_holds)
    except InventoryError as exc:
        raise to_http_exception(exc) from exc
    except Exception as exc:  # pragma: no cover - defensive fallback
        raise _unexpected("export calendars") from exc
    return _calendar(document, "rooms.ics")


@router.get("/ical/rooms/{room_id}/blocked.ics")
def export_blocked(
    room_id: str,
    service: CalendarExportService = Depends(get_export_service),
) -> Response:
    try:
        document = service.export_blocked(room_id)
    except InventoryError as exc:
        raise to_http_exception(exc) from exc
    except Exception as exc:  # pragma: no cover - defensive fallback
        raise _unexpected("export blocked calendar") from exc
    return _calendar(document, f"{room_id}-blocked.ics")


@router.get("/ical/rooms/{room_id}.ics")
def export_room(
    room_id: str,
    include_holds: bool = Query(default=False),
    service: CalendarExportService = Depends(get_export_service),
) -> Response:
    try:
        document = service.export_room(room_id, include_holds=include_holds)
    except InventoryError as exc:
        raise to_http_exception(exc) from exc
    except Exception as exc:  # pragma: no cover - defensive fallback
        raise _unexpected("export calendar") from exc
    return _calendar(document, f"{room_id}.ics")


@router.post("/feeds", response_model=FeedResponse, status_code=status.HTTP_201_CREATED)
def register_feed(
    payload: FeedRequest,
    service: SyncService = Depends(get_sync_service),
) -> FeedResponse:
    try:
        feed = service.register_feed(
            name=payload.name,
            url=payload.url,
            room_id=payload.room_id,
            platform=payload.platform,
            bed_indices=payload.bed_indices,
        )
    except FeedFetchError as exc:
        # Invalid source URL supplied by the caller.
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={"code": exc.code, "message": str(exc)},
        ) from exc
    except InventoryError as exc:
        raise to_http_exception(exc) from exc
    except Exception as exc:  # pragma: no cover - defensive fallback
        raise _unexpected("register feed") from exc
    return _feed_response(feed)


@router.get("/feeds", response_model=list[FeedResponse])
def list_feeds(
    active_only: bool = Query(default=False),
    service: SyncService = Depends(get_sync_service),
) -> list[FeedResponse]:
    return [_feed_response(feed) for feed in service.list_feeds(active_only=active_only)]


@router.post("/feeds/sync", response_model=BatchSyncResponse)
def sync_all_feeds(service: SyncService = Depends(get_sync_service)) -> BatchSyncResponse:
    try:
        return BatchSyncResponse(**service.sync_all_active_feeds().to_dict())
    except Exception as exc:  # pragma: no cover - defensive fallback
        raise _unexpected("sync feeds") from exc


@router.post("/feeds/{feed_id}/active", response_model=FeedResponse)
def set_feed_active(
    feed_id: str,
    payload: FeedActiveRequest,
    service: SyncService = Depends(get_sync_service),
) -> FeedResponse:
    try:
        feed = service.set_feed_active(feed_id, payload.is_active)
    except InventoryError as exc:
        raise to_http_exception(exc) from exc
    return _feed_response(feed)


@router.post("/feeds/{feed_id}/sync", response_model=FeedSyncResponse)
def sync_feed(
    feed_id: str,
    service: SyncService = Depends(get_sync_service),
) -> FeedSyncResponse:
    try:
        report = service.sync_feed(feed_id)
    except InventoryError as exc:
        raise to_http_exception(exc) from exc
    except Exception as exc:  # pragma: no cover - defensive fallback
        raise _unexpected("sync feed") from exc
    return FeedSyncResponse(**report.to_dict())


@router.post("/feeds/{feed_id}/import", response_model=FeedSyncResponse)
def import_feed_document(
    feed_id: str,
    payload: ImportRequest,
    service: SyncService = Depends(get_sync_service),
) -> FeedSyncResponse:
    try:
        report = service.import_document(feed_id, payload.document)
    except InventoryError as exc:
        raise to_http_exception(exc) from exc
    except Exception as exc:  # pragma: no cover - defensive fallback
        raise _unexpected("import feed document") from exc
    return FeedSyncResponse(**report.to_dict())
