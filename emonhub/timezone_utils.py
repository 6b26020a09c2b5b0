"""
Timezone Utilities for the energy monitoring pipeline

This module provides the clock and calendar helpers every aggregation step
uses. Wall-clock values are always derived in the user's preferred timezone;
the calendar arithmetic on the resulting keys (YYYY-MM-DD, YYYY-Www, YYYY-MM)
is done on naive dates so that key shifting is deterministic and independent
of DST transitions.
"""

import pytz
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import date, datetime, timedelta, tzinfo
from typing import Optional, Set, List

log = logging.getLogger(__name__)

UTC = pytz.UTC
DEFAULT_TIMEZONE = "UTC"

# Identifiers we already warned about, so a bad profile value does not flood the log
_WARNED_TIMEZONES: Set[str] = set()


def resolve_timezone(name: Optional[str]) -> tzinfo:
    """
    Resolve a timezone identifier to a tzinfo object.

    Unknown or empty identifiers fail closed to UTC instead of raising, since
    the caller is usually in the middle of processing a live reading.

    Args:
        name: IANA timezone identifier (e.g., "Asia/Manila")

    Returns:
        pytz timezone object, UTC when the identifier is not recognised
    """
    if not name:
        return UTC
    try:
        return pytz.timezone(name)
    except pytz.UnknownTimeZoneError:
        if name not in _WARNED_TIMEZONES:
            log.warning(f"Unknown timezone '{name}', falling back to {DEFAULT_TIMEZONE}")
            _WARNED_TIMEZONES.add(name)
        return UTC


def timezone_name(name: Optional[str]) -> str:
    """Return the identifier that resolve_timezone() will actually use."""
    return resolve_timezone(name).zone


class Clock(ABC):
    """Source of the current instant. Always returns an aware UTC datetime."""

    @abstractmethod
    def now(self) -> datetime: ...

    def now_ms(self) -> int:
        return int(self.now().timestamp() * 1000)


class SystemClock(Clock):
    """Clock backed by the system time."""

    def now(self) -> datetime:
        return datetime.now(UTC)


class FixedClock(Clock):
    """Clock that only moves when told to. Used by tests and replays."""

    def __init__(self, instant: datetime):
        self.set(instant)

    def set(self, instant: datetime) -> None:
        if instant.tzinfo is None:
            instant = UTC.localize(instant)
        self._instant = instant.astimezone(UTC)

    def advance(self, **kwargs) -> datetime:
        self._instant = self._instant + timedelta(**kwargs)
        return self._instant

    def now(self) -> datetime:
        return self._instant


@dataclass(frozen=True)
class WallClock:
    """Wall-clock reading in a specific timezone, truncated to the minute."""
    year: int
    month: int
    day: int
    hour: int
    minute: int

    @property
    def date(self) -> date:
        return date(self.year, self.month, self.day)

    @property
    def iso_weekday(self) -> int:
        """1 = Monday ... 7 = Sunday."""
        return self.date.isoweekday()

    @classmethod
    def from_datetime(cls, dt: datetime) -> "WallClock":
        return cls(dt.year, dt.month, dt.day, dt.hour, dt.minute)


def localize(instant: datetime, tz_name: Optional[str]) -> datetime:
    """
    Convert an instant to the given timezone.

    Args:
        instant: datetime object (naive values are treated as UTC)
        tz_name: timezone identifier

    Returns:
        datetime object in the requested timezone
    """
    if instant.tzinfo is None:
        instant = UTC.localize(instant)
    return instant.astimezone(resolve_timezone(tz_name))


def now_in_timezone(tz_name: Optional[str], clock: Optional[Clock] = None) -> WallClock:
    """Get the current wall-clock time in the given timezone."""
    clock = clock or SystemClock()
    return WallClock.from_datetime(localize(clock.now(), tz_name))


def epoch_ms_to_wallclock(epoch_ms: int, tz_name: Optional[str]) -> WallClock:
    instant = datetime.fromtimestamp(epoch_ms / 1000.0, UTC)
    return WallClock.from_datetime(localize(instant, tz_name))


# ---------------------------------------------------------------------------
# Key builders
# ---------------------------------------------------------------------------

def date_key(d: date) -> str:
    """Date key in YYYY-MM-DD format."""
    return f"{d.year:04d}-{d.month:02d}-{d.day:02d}"


def hour_key(hour: int) -> str:
    """Hour key in HH format (00-23)."""
    if not 0 <= hour <= 23:
        raise ValueError(f"Hour out of range: {hour}")
    return f"{hour:02d}"


def iso_week_key(d: date) -> str:
    """
    ISO-8601 week key (YYYY-Www).

    The week-year is the year of the week's Thursday, so 2024-12-30 belongs
    to 2025-W01 and 2021-01-03 belongs to 2020-W53.
    """
    iso_year, iso_week, _ = d.isocalendar()
    return f"{iso_year:04d}-W{iso_week:02d}"


def month_key(d: date) -> str:
    """Month key in YYYY-MM format."""
    return f"{d.year:04d}-{d.month:02d}"


def parse_date_key(key: str) -> date:
    """Parse a YYYY-MM-DD key into a date."""
    try:
        return datetime.strptime(key, "%Y-%m-%d").date()
    except (TypeError, ValueError):
        raise ValueError(f"Invalid date key: {key!r}")


def week_key_to_monday(key: str) -> date:
    """Return the Monday that starts the ISO week identified by key."""
    try:
        year_str, week_str = key.split("-W")
        return date.fromisocalendar(int(year_str), int(week_str), 1)
    except (AttributeError, ValueError):
        raise ValueError(f"Invalid ISO week key: {key!r}")


def parse_month_key(key: str) -> date:
    """Return the first day of the month identified by key."""
    try:
        year_str, month_str = key.split("-")
        return date(int(year_str), int(month_str), 1)
    except (AttributeError, ValueError):
        raise ValueError(f"Invalid month key: {key!r}")


def week_range_label(week_key: str) -> str:
    """Monday - Sunday range of an ISO week, e.g. '2025-03-31 - 2025-04-06'."""
    monday = week_key_to_monday(week_key)
    sunday = monday + timedelta(days=6)
    return f"{date_key(monday)} - {date_key(sunday)}"


# ---------------------------------------------------------------------------
# Key shifting
# ---------------------------------------------------------------------------

def shift_date_key(key: str, delta_days: int) -> str:
    return date_key(parse_date_key(key) + timedelta(days=delta_days))


def shift_week_key(key: str, delta_weeks: int) -> str:
    return iso_week_key(week_key_to_monday(key) + timedelta(weeks=delta_weeks))


def shift_month_key(key: str, delta_months: int) -> str:
    first = parse_month_key(key)
    index = first.year * 12 + (first.month - 1) + delta_months
    return f"{index // 12:04d}-{index % 12 + 1:02d}"


def previous_hour_key(date_key_value: str, hour_key_value: str):
    """
    Compute the (date_key, hour_key) of the hour before the given one.

    Hour 00 rolls back to 23 of the previous day.
    """
    hour = int(hour_key_value)
    if hour == 0:
        return shift_date_key(date_key_value, -1), "23"
    return date_key_value, hour_key(hour - 1)


def month_days(key: str) -> List[date]:
    """All calendar days of the month identified by key."""
    first = parse_month_key(key)
    next_first = parse_month_key(shift_month_key(key, 1))
    return [first + timedelta(days=i) for i in range((next_first - first).days)]


def iso_weeks_in_month(key: str) -> List[str]:
    """ISO week keys overlapping the month, in chronological order."""
    weeks: List[str] = []
    for d in month_days(key):
        wk = iso_week_key(d)
        if wk not in weeks:
            weeks.append(wk)
    return weeks


def coerce_date(value) -> Optional[date]:
    """Accept a date, datetime or YYYY-MM-DD string and return a date."""
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    return parse_date_key(str(value))
