"""Parse third-party iCal feeds into normalized stay intervals."""

from __future__ import annotations

import ipaddress
import re
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Optional, Sequence, Union
from urllib.parse import urlparse, urlunparse

import httpx
from icalendar import Calendar

from hostel_inventory.domain.errors import FeedFetchError, FeedParseError
from hostel_inventory.domain.models import ParsedStay, ParseResult, StayInterval, StayStatus
from hostel_inventory.utils.config import Settings, get_settings
from hostel_inventory.utils.logger import get_logger


logger = get_logger(__name__)

UNKNOWN_PLATFORM = "unknown"
MAX_FEED_REDIRECTS = 5


@dataclass(frozen=True)
class PatternStrategy:
    """Named regular expression; strategies are evaluated in order and the first match wins."""

    name: str
    pattern: re.Pattern[str]

    def matches(self, *texts: str) -> bool:
        return any(self.pattern.search(text) for text in texts if text)


def _strategy(name: str, expression: str) -> PatternStrategy:
    return PatternStrategy(name=name, pattern=re.compile(expression, re.IGNORECASE))


PLATFORM_STRATEGIES: tuple[PatternStrategy, ...] = (
    _strategy("airbnb", r"airbnb|airb&b"),
    _strategy("booking", r"booking\.com|booking"),
    _strategy("expedia", r"expedia|hotels\.com"),
    _strategy("vrbo", r"vrbo|homeaway"),
    _strategy("hostelworld", r"hostelworld|hostel world"),
    _strategy("direct", r"direct booking|phone|email|walk-in"),
)

STATUS_STRATEGIES: tuple[PatternStrategy, ...] = (
    _strategy(StayStatus.CANCELLED.value, r"cancel"),
    _strategy(
        StayStatus.BLOCKED.value,
        r"blocked|unavailable|not available|maintenance|reserved|\bhold\b|owner block|closed",
    ),
)

_TOTAL_GUEST_PATTERNS = (
    re.compile(r"\bguests?\s*[:=]\s*(\d+)", re.IGNORECASE),
    re.compile(r"(\d+)\s*(?:guests?|h[óo]spedes|pax|people|persons)\b", re.IGNORECASE),
)
_ADULT_PATTERNS = (
    re.compile(r"\b(?:adults?|adultos?)\s*[:=]?\s*(\d+)", re.IGNORECASE),
    re.compile(r"(\d+)\s*(?:adults?|adultos?)\b", re.IGNORECASE),
)
_CHILD_PATTERNS = (
    re.compile(r"\b(?:children|child|kids|crian[çc]as?)\s*[:=]?\s*(\d+)", re.IGNORECASE),
    re.compile(r"(\d+)\s*(?:children|child|kids|crian[çc]as?)\b", re.IGNORECASE),
)

_GENERIC_SUMMARIES = {"", "reserved", "booked", "not available", "blocked", "unavailable"}


def _first_number(patterns: Sequence[re.Pattern[str]], text: str) -> Optional[int]:
    for pattern in patterns:
        match = pattern.search(text)
        if match:
            return int(match.group(1))
    return None


def extract_guest_count(text: str) -> Optional[int]:
    """Best-effort head count from free text; ``None`` when nothing is stated."""
    if not text:
        return None
    total = _first_number(_TOTAL_GUEST_PATTERNS, text)
    if total is not None:
        return total if total > 0 else None
    adults = _first_number(_ADULT_PATTERNS, text)
    if adults is None:
        return None
    children = _first_number(_CHILD_PATTERNS, text) or 0
    return adults + children if adults + children > 0 else None


def infer_platform(*texts: str, strategies: Sequence[PatternStrategy] = PLATFORM_STRATEGIES) -> str:
    for strategy in strategies:
        if strategy.matches(*texts):
            return strategy.name
    return UNKNOWN_PLATFORM


def infer_status(
    ical_status: str,
    *texts: str,
    strategies: Sequence[PatternStrategy] = STATUS_STRATEGIES,
) -> StayStatus:
    if ical_status.strip().upper() == "CANCELLED":
        return StayStatus.CANCELLED
    for strategy in strategies:
        if strategy.matches(*texts):
            return StayStatus(strategy.name)
    return StayStatus.CONFIRMED


def _as_date(value: Union[date, datetime]) -> date:
    if isinstance(value, datetime):
        return value.date()
    return value


def validate_feed_url(url: str) -> str:
    """Return a fetchable URL or raise FeedFetchError for non-public sources."""
    parsed = urlparse(url.strip())
    if parsed.scheme.lower() == "webcal":
        parsed = parsed._replace(scheme="https")
    if parsed.scheme.lower() not in {"http", "https"}:
        raise FeedFetchError("feed url must use http or https")
    host = (parsed.hostname or "").lower()
    if not host:
        raise FeedFetchError("feed url has no host")
    if host == "localhost" or host.endswith(".localhost"):
        raise FeedFetchError("feed url points to a local host")
    try:
        address = ipaddress.ip_address(host)
    except ValueError:
        return urlunparse(parsed)
    if (
        address.is_private
        or address.is_loopback
        or address.is_link_local
        or address.is_reserved
        or address.is_multicast
        or address.is_unspecified
    ):
        raise FeedFetchError("feed url points to a non-public address")
    return urlunparse(parsed)


def _read_date(prop, uid: str, name: str) -> date:
    # Broken properties raise on .dt access (BrokenCalendarProperty is a ValueError).
    try:
        return _as_date(prop.dt)
    except (ValueError, TypeError, AttributeError) as exc:
        raise FeedParseError(f"event {uid} has an unreadable {name}: {exc}") from exc


class CalendarFeedParser:
    """Turns RFC 5545 documents into ParsedStay records."""

    def __init__(
        self,
        settings: Optional[Settings] = None,
        transport: Optional[httpx.BaseTransport] = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._transport = transport

    def parse(
        self,
        document: Union[str, bytes],
        platform: Optional[str] = None,
        source_url: str = "",
    ) -> ParseResult:
        text = document.decode("utf-8", errors="replace") if isinstance(document, bytes) else document
        text = text.lstrip("\ufeff \t\r\n")
        if not text.upper().startswith("BEGIN:VCALENDAR"):
            raise FeedParseError("document does not start with BEGIN:VCALENDAR")
        try:
            calendar = Calendar.from_ical(text)
        except (ValueError, KeyError, IndexError, TypeError) as exc:
            raise FeedParseError(f"unparseable calendar document: {exc}") from exc

        stays: list[ParsedStay] = []
        errors: list[str] = []
        total = blocked = skipped = 0
        for component in calendar.walk("VEVENT"):
            total += 1
            try:
                stay = self._parse_event(component, platform, source_url)
            except FeedParseError as exc:
                skipped += 1
                errors.append(str(exc))
                continue
            if stay.status == StayStatus.BLOCKED:
                blocked += 1
            stays.append(stay)

        logger.info(
            "Feed parsed | platform=%s | total=%s | parsed=%s | blocked=%s | skipped=%s",
            platform or "auto",
            total,
            len(stays),
            blocked,
            skipped,
        )
        return ParseResult(
            stays=stays,
            errors=errors,
            total_events=total,
            blocked_events=blocked,
            skipped_events=skipped,
        )

    def _parse_event(self, component, platform_hint: Optional[str], source_url: str) -> ParsedStay:
        uid = str(component.get("UID", "")).strip()
        if not uid:
            raise FeedParseError("event without UID skipped")

        dtstart = component.get("DTSTART")
        if dtstart is None:
            raise FeedParseError(f"event {uid} has no DTSTART")
        check_in = _read_date(dtstart, uid, "DTSTART")

        dtend = component.get("DTEND")
        duration = component.get("DURATION")
        if dtend is not None:
            check_out = _read_date(dtend, uid, "DTEND")
        elif duration is not None:
            try:
                nights = duration.dt.days
            except (ValueError, AttributeError) as exc:
                raise FeedParseError(f"event {uid} has an unreadable DURATION: {exc}") from exc
            check_out = check_in + timedelta(days=max(1, nights))
        else:
            check_out = check_in + timedelta(days=1)
        if check_out <= check_in:
            raise FeedParseError(f"event {uid} has no nights between DTSTART and DTEND")

        summary = str(component.get("SUMMARY", "") or "").strip()
        description = str(component.get("DESCRIPTION", "") or "")
        description = description[: self._settings.feed_description_max_length]
        ical_status = str(component.get("STATUS", "") or "")

        platform = platform_hint or infer_platform(summary, description, source_url, uid)
        status = infer_status(ical_status, summary, description)

        return ParsedStay(
            external_id=uid,
            guest_label=self._guest_label(summary, platform, status),
            interval=StayInterval(check_in=check_in, check_out=check_out),
            platform=platform,
            status=status,
            guest_count=extract_guest_count(f"{summary}\n{description}"),
            notes=description or None,
        )

    @staticmethod
    def _guest_label(summary: str, platform: str, status: StayStatus) -> str:
        if status == StayStatus.BLOCKED:
            return "Blocked"
        if summary.lower() in _GENERIC_SUMMARIES:
            return f"{platform.title()} Guest"
        return summary

    def fetch_document(self, url: str) -> str:
        """Download a feed with a bounded timeout; never called while holding a room lock."""
        target = validate_feed_url(url)
        try:
            with httpx.Client(
                timeout=self._settings.feed_fetch_timeout_seconds,
                follow_redirects=False,
                headers={"User-Agent": self._settings.feed_user_agent},
                transport=self._transport,
            ) as client:
                response = client.get(target)
                for _ in range(MAX_FEED_REDIRECTS):
                    if not response.is_redirect:
                        break
                    # Every hop is checked before it is requested.
                    target = validate_feed_url(str(response.url.join(response.headers["location"])))
                    response = client.get(target)
                else:
                    if response.is_redirect:
                        raise FeedFetchError(f"feed exceeded {MAX_FEED_REDIRECTS} redirects")
                response.raise_for_status()
        except httpx.HTTPError as exc:
            raise FeedFetchError(f"failed to fetch feed: {exc}") from exc
        return response.text

    def fetch_and_parse(self, url: str, platform: Optional[str] = None) -> ParseResult:
        return self.parse(self.fetch_document(url), platform=platform, source_url=url)
