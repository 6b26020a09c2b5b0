"""
Backfill Engine: patch gaps in the historical records.

Two passes run once per user per session:

1. Missing daily records are rebuilt from the hourly "23" record of each day,
   which holds the cumulative total at the end of that day.
2. Completed hours of today with no record get provisional estimates, ramped
   linearly from the last known total to the current live total. These are
   flagged provisional so they are never mistaken for measured data.

Neither pass overwrites an existing record.
"""

import logging
from dataclasses import dataclass, field
from datetime import timedelta
from enum import Enum
from typing import Dict, List, Optional

import pandas as pd

from emonhub.config import AggregationConfig
from emonhub.historical_store import HistoricalDataStore
from emonhub.errors import RecordDecodeError
from emonhub.models import DeltaRecord
from emonhub.period_keys import DayKey, HourKey, PeriodType
from emonhub.timezone_utils import (
    Clock,
    SystemClock,
    date_key,
    hour_key,
    now_in_timezone,
    parse_date_key,
)

log = logging.getLogger(__name__)


class BackfillState(Enum):
    NOT_STARTED = "not_started"
    IN_FLIGHT = "in_flight"
    DONE = "done"


@dataclass
class BackfillReport:
    period_type: PeriodType
    created: List[str] = field(default_factory=list)
    skipped: List[str] = field(default_factory=list)
    # Days that could not be rebuilt because the hourly data is incomplete
    missing_hourlies: List[str] = field(default_factory=list)

    def summary(self) -> str:
        return (
            f"{self.period_type.value}: created={len(self.created)} "
            f"skipped={len(self.skipped)} missing_hourlies={len(self.missing_hourlies)}"
        )


class BackfillEngine:
    def __init__(self, historical: HistoricalDataStore, clock: Optional[Clock] = None,
                 aggregation: Optional[AggregationConfig] = None):
        self.historical = historical
        self.clock = clock or SystemClock()
        self.aggregation = aggregation or AggregationConfig()
        self._states: Dict[str, BackfillState] = {}

    # ------------------------------------------------------------------
    # Session guard
    # ------------------------------------------------------------------

    def state(self, uid: str) -> BackfillState:
        return self._states.get(uid, BackfillState.NOT_STARTED)

    def reset(self, uid: Optional[str] = None) -> None:
        if uid is None:
            self._states.clear()
        else:
            self._states.pop(uid, None)

    def run_once(self, uid: str, tz: str, current_total: float) -> Optional[List[BackfillReport]]:
        """
        Run both backfill passes for a user, at most once per session.

        Returns None when the user was already backfilled (or is being
        backfilled) in this session, or when the run failed. A failed run
        leaves the user eligible for another attempt.
        """
        if self.state(uid) != BackfillState.NOT_STARTED:
            return None

        self._states[uid] = BackfillState.IN_FLIGHT
        try:
            reports = [
                self.backfill_missing_daily(uid, tz),
                self.backfill_today_hourly_provisional(uid, tz, current_total),
            ]
        except Exception as e:
            self._states[uid] = BackfillState.NOT_STARTED
            log.error(f"Backfill failed for {uid}, will retry on next trigger: {e}", exc_info=True)
            return None

        self._states[uid] = BackfillState.DONE
        log.info(f"Backfill complete for {uid}: " + "; ".join(r.summary() for r in reports))
        return reports

    # ------------------------------------------------------------------
    # Daily
    # ------------------------------------------------------------------

    def _safe_record(self, uid: str, key) -> Optional[DeltaRecord]:
        try:
            return self.historical.get_record(uid, key)
        except RecordDecodeError as e:
            log.warning(f"Ignoring invalid record during backfill: {e}")
            return None

    def _end_of_day_total(self, uid: str, day_key: str) -> Optional[float]:
        record = self._safe_record(uid, HourKey(day_key, "23"))
        return record.total_energy_at_end if record else None

    def backfill_missing_daily(self, uid: str, tz: str) -> BackfillReport:
        """
        Rebuild daily records between the latest daily record and yesterday.

        The end-of-day total is the day's hourly "23" total. The baseline is
        the end total of the day before: from the running walk, else its daily
        record, else its hourly "23" record.
        """
        report = BackfillReport(PeriodType.DAILY)
        today = now_in_timezone(tz, self.clock).date
        yesterday = today - timedelta(days=1)
        window_start = yesterday - timedelta(days=self.aggregation.backfill_lookback_days - 1)

        start = window_start
        latest = self.historical.latest_daily_key(uid)
        if latest is not None:
            start = max(start, parse_date_key(latest) + timedelta(days=1))
        if start > yesterday:
            log.debug(f"Daily records for {uid} are up to date (latest {latest})")
            return report

        log.info(f"Backfilling daily records for {uid} from {start} to {yesterday}")
        previous_end: Optional[float] = None
        for ts in pd.date_range(start=start, end=yesterday, freq="D"):
            day = date_key(ts.date())
            key = DayKey(day)

            existing = self._safe_record(uid, key)
            if existing is not None:
                report.skipped.append(day)
                previous_end = existing.total_energy_at_end
                continue

            end_total = self._end_of_day_total(uid, day)
            if end_total is None:
                report.missing_hourlies.append(day)
                previous_end = None
                continue

            baseline = previous_end
            if baseline is None:
                prior = self._safe_record(uid, key.previous())
                baseline = prior.total_energy_at_end if prior else self._end_of_day_total(uid, key.previous().date_key)
            if baseline is None:
                report.missing_hourlies.append(day)
                previous_end = end_total
                continue

            record = self.historical.build_record(
                key, end_total, end_total - baseline, tz, source="backfill",
            )
            if self.historical.write_record(uid, key, record):
                report.created.append(day)
                log.info(f"Backfilled daily {day} for {uid}: delta={record.delta_kwh:.6f} kWh")
            else:
                report.skipped.append(day)
            previous_end = end_total

        return report

    # ------------------------------------------------------------------
    # Today's hours (provisional)
    # ------------------------------------------------------------------

    def backfill_today_hourly_provisional(self, uid: str, tz: str, current_total: float) -> BackfillReport:
        """
        Estimate missing completed hours of today.

        Each run of consecutive missing hours is ramped linearly from the
        total before the run to the total after it (the next recorded hour,
        or the current live total when the run reaches the current hour).
        With no earlier total on record the ramp starts at
        provisional_ramp_floor x current total.
        """
        report = BackfillReport(PeriodType.HOURLY)
        now = now_in_timezone(tz, self.clock)
        today = date_key(now.date)
        if now.hour == 0:
            return report

        existing: Dict[int, Optional[DeltaRecord]] = {
            h: self._safe_record(uid, HourKey(today, hour_key(h))) for h in range(now.hour)
        }
        missing = [h for h, rec in existing.items() if rec is None]
        if not missing:
            return report

        # Group the missing hours into consecutive runs
        runs: List[List[int]] = []
        for h in missing:
            if runs and runs[-1][-1] == h - 1:
                runs[-1].append(h)
            else:
                runs.append([h])

        for run in runs:
            first, last = run[0], run[-1]
            if first > 0 and existing.get(first - 1) is not None:
                start_total = existing[first - 1].total_energy_at_end
            else:
                baseline, baseline_key = self.historical.find_baseline(uid, HourKey(today, hour_key(first)))
                start_total = baseline if baseline_key is not None else (
                    self.aggregation.provisional_ramp_floor * current_total
                )
            after = existing.get(last + 1)
            end_total = after.total_energy_at_end if after is not None else current_total

            steps = len(run)
            previous = start_total
            for i, h in enumerate(run):
                total = start_total + (end_total - start_total) * (i + 1) / steps
                key = HourKey(today, hour_key(h))
                record = self.historical.build_record(
                    key, max(0.0, total), total - previous, tz, source="backfill", provisional=True,
                )
                if self.historical.write_record(uid, key, record):
                    report.created.append(str(key))
                else:
                    report.skipped.append(str(key))
                previous = total

        if report.created:
            log.info(f"Wrote {len(report.created)} provisional hourly record(s) for {uid} on {today}")
        return report
