"""Exception taxonomy shared by the inventory services."""

from __future__ import annotations

from typing import Iterable


class InventoryError(Exception):
    """Base exception for recoverable inventory failures."""

    code = "inventory_error"


class InvalidRange(InventoryError):
    """Raised when a stay interval or requested bed count is invalid."""

    code = "invalid_range"


class RoomNotFound(InventoryError):
    code = "room_not_found"


class InvalidBedSelection(InventoryError):
    """Raised when bed indices are empty, duplicated or outside the room."""

    code = "invalid_bed_selection"


class CategoryNotEligible(InventoryError):
    """Raised when a room cannot serve the requested guest category."""

    code = "category_not_eligible"


class InsufficientAvailability(InventoryError):
    code = "insufficient_availability"


class HoldConflict(InventoryError):
    """Raised when requested beds were claimed by someone else first."""

    code = "hold_conflict"

    def __init__(self, message: str, conflicting_beds: Iterable[int] = ()) -> None:
        super().__init__(message)
        self.conflicting_beds = tuple(sorted(set(conflicting_beds)))


class HoldNotFound(InventoryError):
    code = "hold_not_found"


class HoldStateError(InventoryError):
    """Raised when a hold transition is attempted from a terminal state."""

    code = "hold_state_error"


class HoldExpired(HoldStateError):
    code = "hold_expired"


class EntryNotFound(InventoryError):
    code = "entry_not_found"


class PricingError(InventoryError):
    code = "pricing_error"


class MinimumNightsError(PricingError):
    code = "minimum_nights"

    def __init__(self, message: str, season: str, required_nights: int, actual_nights: int) -> None:
        super().__init__(message)
        self.season = season
        self.required_nights = required_nights
        self.actual_nights = actual_nights


class FeedError(InventoryError):
    code = "feed_error"


class FeedNotFound(FeedError):
    code = "feed_not_found"


class FeedFetchError(FeedError):
    code = "feed_fetch_error"


class FeedParseError(FeedError):
    code = "feed_parse_error"


class ExternalConflict(InventoryError):
    """Imported interval would double-book a direct booking; never auto-overridden."""

    code = "external_conflict"

    def __init__(self, message: str, conflicting_entry_ids: Iterable[str] = ()) -> None:
        super().__init__(message)
        self.conflicting_entry_ids = tuple(conflicting_entry_ids)
