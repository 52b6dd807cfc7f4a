"""
Opening-hours parsing.

Providers return one human string per weekday ("Monday: 11:00 AM – 10:00 PM").
These helpers pick today's entry, parse it into minute ranges and answer
whether a venue is open at the moment a walker would arrive. Times are
read in the venue's own UTC offset when it is known.
"""
from __future__ import annotations

import math
import re
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum

from ..recommendations.models import Venue


class OpenStatus(str, Enum):
    open = "open"
    opens_later = "opens_later"
    closed_now = "closed_now"
    closed_today = "closed_today"
    unknown = "unknown"


@dataclass(frozen=True)
class TodayHours:
    ranges: list[tuple[int, int]] = field(default_factory=list)
    all_day: bool = False
    closed: bool = False


_DAY_NAMES: dict[str, list[str]] = {
    "en": ["monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday"],
}

_RANGE_SEPARATOR_RE = re.compile(r"\s*[–—-]\s*|\s+to\s+", re.IGNORECASE)
_TIME_RE = re.compile(r"^(\d{1,2})(?::(\d{2}))?\s*(am|pm)?$", re.IGNORECASE)

MINUTES_PER_DAY = 24 * 60


def _normalise(text: str) -> str:
    return text.replace("\u202f", " ").replace("\u2009", " ").replace("\xa0", " ").strip()


def local_time(now: datetime, utc_offset_minutes: int | None) -> datetime:
    """Shift an aware *now* to a fixed UTC offset. Naive or offset-less input is returned as is."""
    if utc_offset_minutes is None or now.tzinfo is None:
        return now
    return now.astimezone(timezone(timedelta(minutes=utc_offset_minutes)))


def today_entry(weekday_text: list[str], now: datetime, locale: str = "en") -> str | None:
    """Return the hours part of today's entry, or None when it can't be found.

    A full Monday-first week is indexed by weekday. Anything else falls back
    to matching the day name prefix for *locale*.
    """
    if not weekday_text:
        return None

    entry: str | None = None
    if len(weekday_text) == 7:
        entry = weekday_text[now.weekday()]
    else:
        names = _DAY_NAMES.get(locale, _DAY_NAMES["en"])
        today = names[now.weekday()]
        entry = next((t for t in weekday_text if t.strip().lower().startswith(today)), None)

    if entry is None or ":" not in entry:
        return None
    return _normalise(entry.split(":", 1)[1])


def _parse_time(text: str, fallback_period: str | None = None) -> int | None:
    match = _TIME_RE.match(text.strip())
    if not match:
        return None
    hours = int(match.group(1))
    minutes = int(match.group(2) or 0)
    period = (match.group(3) or fallback_period or "").lower()
    if minutes > 59 or hours > 24:
        return None
    if period:
        if hours > 12:
            return None
        if period == "pm" and hours != 12:
            hours += 12
        elif period == "am" and hours == 12:
            hours = 0
    return hours * 60 + minutes


def _period(text: str) -> str | None:
    match = _TIME_RE.match(text.strip())
    return match.group(3).lower() if match and match.group(3) else None


def _parse_range(text: str) -> tuple[int, int] | None:
    parts = _RANGE_SEPARATOR_RE.split(text.strip())
    if len(parts) != 2:
        return None
    start_text, end_text = parts
    end = _parse_time(end_text)
    if end is None:
        return None

    # "5:00 – 10:00 PM" shares the closing period.
    start = _parse_time(start_text)
    if _period(start_text) is None and _period(end_text) is not None:
        shared = _parse_time(start_text, _period(end_text))
        if shared is not None and shared <= end:
            start = shared
    if start is None:
        return None
    return start, end


def parse_hours_text(text: str) -> TodayHours | None:
    """Parse one day's hours ("Closed", "Open 24 hours", ranges). None if unparseable."""
    cleaned = _normalise(text).lower()
    if cleaned == "closed":
        return TodayHours(closed=True)
    if cleaned == "open 24 hours":
        return TodayHours(ranges=[(0, MINUTES_PER_DAY)], all_day=True)

    ranges = []
    for chunk in cleaned.split(","):
        parsed = _parse_range(chunk)
        if parsed is None:
            return None
        ranges.append(parsed)
    return TodayHours(ranges=ranges) if ranges else None


def parse_today_hours(weekday_text: list[str], now: datetime, locale: str = "en") -> TodayHours | None:
    entry = today_entry(weekday_text, now, locale)
    if entry is None:
        return None
    return parse_hours_text(entry)


def status_at(hours: TodayHours, minute: int) -> OpenStatus:
    if hours.closed:
        return OpenStatus.closed_today
    if hours.all_day:
        return OpenStatus.open

    for start, end in hours.ranges:
        if end <= start:
            # Overnight, e.g. 6 PM - 2 AM.
            if minute >= start or minute < end:
                return OpenStatus.open
        elif start <= minute < end:
            return OpenStatus.open

    if any(start > minute for start, _ in hours.ranges):
        return OpenStatus.opens_later
    return OpenStatus.closed_now


def open_status(venue: Venue, walking_seconds: int | None, now: datetime) -> OpenStatus:
    """Status at arrival time: now plus the walk, rounded up to the minute."""
    now = local_time(now, venue.utc_offset_minutes)
    hours = venue.opening_hours
    if hours is None:
        return OpenStatus.unknown

    parsed = parse_today_hours(hours.weekday_text, now)
    if parsed is None:
        return OpenStatus.open if hours.open_now else OpenStatus.unknown

    walk_minutes = math.ceil(walking_seconds / 60) if walking_seconds else 0
    arrival = now.hour * 60 + now.minute + walk_minutes
    return status_at(parsed, arrival)


def is_closed_today(venue: Venue, now: datetime) -> bool:
    """True only when today's hours positively say "Closed"."""
    if venue.opening_hours is None:
        return False
    now = local_time(now, venue.utc_offset_minutes)
    parsed = parse_today_hours(venue.opening_hours.weekday_text, now)
    return parsed is not None and parsed.closed
