"""
Summary card and chart derivation.

Reads persisted delta records for the selected time period and reduces them
to the totals, averages and peaks shown on the dashboard. The live period
(Realtime) comes from the in-memory trackers instead, since its hour is not
closed yet.

Missing or unreadable records count as zero consumption for their slot: a
partially populated dashboard is preferred over an empty one.
"""

import logging
from datetime import date, timedelta
from typing import Dict, List, Optional, Tuple

import pandas as pd

from emonhub.historical_store import HistoricalDataStore
from emonhub.models import ChartData, SummaryCardData, TimePeriod
from emonhub.peak_tracker import HourBucketTracker, PeakTracker
from emonhub.period_keys import DayKey, HourKey, PeriodKey
from emonhub.timezone_utils import (
    Clock,
    SystemClock,
    coerce_date,
    date_key,
    epoch_ms_to_wallclock,
    hour_key,
    iso_week_key,
    month_days,
    month_key,
    now_in_timezone,
    week_key_to_monday,
)

log = logging.getLogger(__name__)

# (total label, average label, peak label) per period
PERIOD_LABELS: Dict[TimePeriod, Tuple[str, str, str]] = {
    TimePeriod.REALTIME: ("Total Energy", "Avg Hourly", "Peak Energy"),
    TimePeriod.DAILY: ("Daily Total", "Avg Hourly", "Peak Hour"),
    TimePeriod.WEEKLY: ("Weekly Total", "Avg Daily", "Peak Day"),
    TimePeriod.MONTHLY: ("Monthly Total", "Avg Weekly", "Peak Week"),
}

WEEKDAY_NAMES = ["Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday", "Sunday"]


def zero_summary(period: TimePeriod) -> SummaryCardData:
    total_label, avg_label, peak_label = PERIOD_LABELS[TimePeriod(period)]
    return SummaryCardData(0.0, total_label, 0.0, avg_label, 0.0, peak_label, None)


def earliest_peak(series: pd.Series) -> Tuple[Optional[str], float]:
    """
    Label and value of the largest entry; the first occurrence wins on ties.

    Returns (None, 0.0) when the series is empty or has no consumption.
    """
    if series.empty:
        return None, 0.0
    value = float(series.max())
    if value <= 0:
        return None, 0.0
    return series.idxmax(), value


class SummaryCalculator:
    def __init__(self, historical: HistoricalDataStore, peak_tracker: Optional[PeakTracker] = None,
                 bucket_tracker: Optional[HourBucketTracker] = None, clock: Optional[Clock] = None):
        self.historical = historical
        self.peak_tracker = peak_tracker or PeakTracker()
        self.bucket_tracker = bucket_tracker
        self.clock = clock or SystemClock()

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def _delta(self, uid: str, key: PeriodKey) -> float:
        try:
            record = self.historical.get_record(uid, key)
        except Exception as e:
            log.warning(f"Reading {key.period_type.value} {key} for {uid} failed, counting as 0: {e}")
            return 0.0
        return record.delta_kwh if record is not None else 0.0

    def resolve_reference(self, period: TimePeriod, tz: str, reference_date=None) -> date:
        """
        Date that selects the period to summarize.

        Without an explicit date: Daily uses yesterday, Weekly a day in the
        last completed ISO week, Monthly a day in the previous month.
        """
        explicit = coerce_date(reference_date)
        if explicit is not None:
            return explicit
        today = now_in_timezone(tz, self.clock).date
        period = TimePeriod(period)
        if period == TimePeriod.DAILY:
            return today - timedelta(days=1)
        if period == TimePeriod.WEEKLY:
            return today - timedelta(days=7)
        if period == TimePeriod.MONTHLY:
            return today.replace(day=1) - timedelta(days=1)
        return today

    # ------------------------------------------------------------------
    # Series per period
    # ------------------------------------------------------------------

    def daily_series(self, uid: str, day: date) -> pd.Series:
        dk = date_key(day)
        values = [self._delta(uid, HourKey(dk, hour_key(h))) for h in range(24)]
        return pd.Series(values, index=[f"{h:02d}:00" for h in range(24)], dtype=float)

    def weekly_series(self, uid: str, day: date) -> pd.Series:
        monday = week_key_to_monday(iso_week_key(day))
        days = [monday + timedelta(days=i) for i in range(7)]
        values = [self._delta(uid, DayKey(date_key(d))) for d in days]
        return pd.Series(values, index=WEEKDAY_NAMES, dtype=float)

    def monthly_frame(self, uid: str, day: date) -> pd.DataFrame:
        days = month_days(month_key(day))
        return pd.DataFrame({
            "date": [date_key(d) for d in days],
            "week": [iso_week_key(d) for d in days],
            "delta": [self._delta(uid, DayKey(date_key(d))) for d in days],
        })

    def monthly_series(self, uid: str, day: date) -> pd.Series:
        """Daily deltas of the month summed per overlapping ISO week, in calendar order."""
        frame = self.monthly_frame(uid, day)
        return frame.groupby("week", sort=False)["delta"].sum().astype(float)

    # ------------------------------------------------------------------
    # Realtime
    # ------------------------------------------------------------------

    def _realtime_average(self, uid: str, tz: str, live_total: float) -> float:
        now = now_in_timezone(tz, self.clock)
        today = date_key(now.date)
        closed = sum(self._delta(uid, HourKey(today, hour_key(h))) for h in range(now.hour))

        partial = 0.0
        try:
            baseline, baseline_key = self.historical.find_baseline(uid, HourKey(today, hour_key(now.hour)))
            if baseline_key is not None:
                partial = max(0.0, live_total - baseline)
        except Exception as e:
            log.warning(f"Could not read current-hour baseline for {uid}: {e}")
        return (closed + partial) / (now.hour + 1)

    def _realtime_summary(self, uid: str, tz: str, live_total: float) -> SummaryCardData:
        total_label, avg_label, peak_label = PERIOD_LABELS[TimePeriod.REALTIME]
        today = date_key(now_in_timezone(tz, self.clock).date)

        state = self.peak_tracker.get_state(uid, today)
        peak = state.peak_delta_kwh if state else 0.0
        detail = None
        if state and state.peak_at_ms is not None and peak > 0:
            at = epoch_ms_to_wallclock(state.peak_at_ms, tz)
            detail = f"at {at.hour:02d}:{at.minute:02d}"

        return SummaryCardData(
            total_value=live_total,
            total_label=total_label,
            avg_value=self._realtime_average(uid, tz, live_total),
            avg_label=avg_label,
            peak_value=peak,
            peak_label=peak_label,
            peak_detail=detail,
        )

    def _realtime_chart(self, uid: str, tz: str) -> ChartData:
        now = now_in_timezone(tz, self.clock)
        width = self.bucket_tracker.bucket_minutes if self.bucket_tracker else 10
        labels = [f"{now.hour:02d}:{m:02d}" for m in range(0, 60, width)]
        if self.bucket_tracker is None:
            return ChartData.from_series(labels, [0.0] * len(labels))
        values = self.bucket_tracker.buckets(uid, date_key(now.date), hour_key(now.hour))
        return ChartData.from_series(labels, values)

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def period_series(self, uid: str, tz: str, period: TimePeriod, reference_date=None) -> pd.Series:
        period = TimePeriod(period)
        day = self.resolve_reference(period, tz, reference_date)
        if period == TimePeriod.DAILY:
            return self.daily_series(uid, day)
        if period == TimePeriod.WEEKLY:
            return self.weekly_series(uid, day)
        if period == TimePeriod.MONTHLY:
            return self.monthly_series(uid, day)
        raise ValueError("Realtime has no persisted series")

    def get_summary(self, uid: str, tz: str, period: TimePeriod, reference_date=None,
                    live_total: float = 0.0) -> SummaryCardData:
        """
        Summary card for a period.

        Args:
            uid: user id
            tz: user's timezone
            period: Realtime, Daily, Weekly or Monthly
            reference_date: date, datetime or YYYY-MM-DD selecting the period
            live_total: current aggregated total (Realtime only)

        Returns:
            SummaryCardData; zero-filled when the computation fails
        """
        try:
            period = TimePeriod(period)
            if period == TimePeriod.REALTIME:
                return self._realtime_summary(uid, tz, live_total)

            series = self.period_series(uid, tz, period, reference_date)
            total = float(series.sum())
            peak_at, peak_value = earliest_peak(series)
            total_label, avg_label, peak_label = PERIOD_LABELS[period]
            return SummaryCardData(
                total_value=total,
                total_label=total_label,
                avg_value=total / len(series) if len(series) else 0.0,
                avg_label=avg_label,
                peak_value=peak_value,
                peak_label=peak_label,
                peak_detail=self._peak_detail(period, peak_at),
            )
        except Exception as e:
            log.error(f"Failed to compute {period} summary for {uid}: {e}", exc_info=True)
            return zero_summary(period)

    @staticmethod
    def _peak_detail(period: TimePeriod, peak_at: Optional[str]) -> Optional[str]:
        if peak_at is None:
            return None
        if period == TimePeriod.DAILY:
            return f"at {peak_at}"
        if period == TimePeriod.WEEKLY:
            return f"on {peak_at}"
        return f"week {peak_at}"

    def get_chart_data(self, uid: str, tz: str, period: TimePeriod, reference_date=None) -> ChartData:
        try:
            period = TimePeriod(period)
            if period == TimePeriod.REALTIME:
                return self._realtime_chart(uid, tz)

            series = self.period_series(uid, tz, period, reference_date)
            labels: List[str] = [str(label) for label in series.index]
            if period == TimePeriod.WEEKLY:
                labels = [label[:3] for label in labels]
            elif period == TimePeriod.MONTHLY:
                labels = [label.split("-")[1] for label in labels]
            return ChartData.from_series(labels, [float(v) for v in series.values])
        except Exception as e:
            log.error(f"Failed to compute {period} chart for {uid}: {e}", exc_info=True)
            return ChartData()
