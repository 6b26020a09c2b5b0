"""
Typed calendar keys for historical records.

A period key identifies one calendar bucket (an hour, a day, an ISO week or a
month) in the user's timezone and maps deterministically onto a document
path, so the same period always lands on the same document.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Union

from emonhub.timezone_utils import (
    WallClock,
    date_key,
    hour_key,
    iso_week_key,
    month_key,
    parse_date_key,
    parse_month_key,
    previous_hour_key,
    shift_date_key,
    shift_month_key,
    shift_week_key,
    week_key_to_monday,
    week_range_label,
)


class PeriodType(str, Enum):
    HOURLY = "hourly"
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"


def historical_root(uid: str) -> str:
    return f"users/{uid}/historical"


@dataclass(frozen=True)
class HourKey:
    date_key: str
    hour_key: str
    period_type = PeriodType.HOURLY

    def __post_init__(self):
        parse_date_key(self.date_key)
        hour_key(int(self.hour_key))

    @property
    def hour(self) -> int:
        return int(self.hour_key)

    def previous(self) -> "HourKey":
        return HourKey(*previous_hour_key(self.date_key, self.hour_key))

    def shift(self, hours: int) -> "HourKey":
        total = self.hour + hours
        days, hour = divmod(total, 24)
        return HourKey(shift_date_key(self.date_key, days), hour_key(hour))

    def path(self, uid: str) -> str:
        return f"{historical_root(uid)}/hourly/{self.date_key}/hours/{self.hour_key}"

    def __str__(self) -> str:
        return f"{self.date_key} {self.hour_key}:00"


@dataclass(frozen=True)
class DayKey:
    date_key: str
    period_type = PeriodType.DAILY

    def __post_init__(self):
        parse_date_key(self.date_key)

    def previous(self) -> "DayKey":
        return self.shift(-1)

    def shift(self, days: int) -> "DayKey":
        return DayKey(shift_date_key(self.date_key, days))

    def path(self, uid: str) -> str:
        return f"{historical_root(uid)}/daily/{self.date_key}"

    def __str__(self) -> str:
        return self.date_key


@dataclass(frozen=True)
class WeekKey:
    week_key: str
    period_type = PeriodType.WEEKLY

    def __post_init__(self):
        week_key_to_monday(self.week_key)

    @property
    def range_label(self) -> str:
        return week_range_label(self.week_key)

    @property
    def week_number(self) -> int:
        return int(self.week_key.split("-W")[1])

    def previous(self) -> "WeekKey":
        return self.shift(-1)

    def shift(self, weeks: int) -> "WeekKey":
        return WeekKey(shift_week_key(self.week_key, weeks))

    def path(self, uid: str) -> str:
        return f"{historical_root(uid)}/weekly/{self.week_key}"

    def __str__(self) -> str:
        return self.week_key


@dataclass(frozen=True)
class MonthKey:
    month_key: str
    period_type = PeriodType.MONTHLY

    def __post_init__(self):
        parse_month_key(self.month_key)

    def previous(self) -> "MonthKey":
        return self.shift(-1)

    def shift(self, months: int) -> "MonthKey":
        return MonthKey(shift_month_key(self.month_key, months))

    def path(self, uid: str) -> str:
        return f"{historical_root(uid)}/monthly/{self.month_key}"

    def __str__(self) -> str:
        return self.month_key


PeriodKey = Union[HourKey, DayKey, WeekKey, MonthKey]


@dataclass(frozen=True)
class PeriodKeys:
    """The four period keys containing one wall-clock instant."""
    hour: HourKey
    day: DayKey
    week: WeekKey
    month: MonthKey

    @property
    def range_label(self) -> str:
        return self.week.range_label

    @classmethod
    def for_wallclock(cls, wallclock: WallClock) -> "PeriodKeys":
        d = wallclock.date
        return cls(
            hour=HourKey(date_key(d), hour_key(wallclock.hour)),
            day=DayKey(date_key(d)),
            week=WeekKey(iso_week_key(d)),
            month=MonthKey(month_key(d)),
        )

    def key_for(self, period_type: PeriodType) -> PeriodKey:
        return {
            PeriodType.HOURLY: self.hour,
            PeriodType.DAILY: self.day,
            PeriodType.WEEKLY: self.week,
            PeriodType.MONTHLY: self.month,
        }[PeriodType(period_type)]


def closed_period_key(period_type: PeriodType, keys_now: PeriodKeys) -> PeriodKey:
    """
    Key of the period that has just closed when a boundary is observed.

    Boundaries are evaluated on the first reading of the new period, so the
    record is labelled with the period immediately before the current one.
    """
    return keys_now.key_for(period_type).previous()
