"""
Period boundary capture.

Evaluated on every live sample. When the sample falls on minute 0 of an hour
the record for the hour that just ended is persisted; at local midnight the
day that ended is persisted as well, plus the ISO week on Mondays and the
month on the 1st.
"""

import logging
from dataclasses import dataclass
from typing import List, Optional

from emonhub.errors import StoreError
from emonhub.historical_store import HistoricalDataStore
from emonhub.period_keys import PeriodKey, PeriodKeys, PeriodType, closed_period_key
from emonhub.timezone_utils import WallClock

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class CaptureResult:
    period_type: PeriodType
    key: PeriodKey
    created: bool
    delta_kwh: Optional[float] = None
    error: Optional[str] = None

    @property
    def failed(self) -> bool:
        return self.error is not None


def due_periods(wallclock: WallClock) -> List[PeriodType]:
    """Period types whose boundary is crossed at this wall-clock minute."""
    if wallclock.minute != 0:
        return []
    due = [PeriodType.HOURLY]
    if wallclock.hour == 0:
        due.append(PeriodType.DAILY)
        if wallclock.iso_weekday == 1:
            due.append(PeriodType.WEEKLY)
        if wallclock.day == 1:
            due.append(PeriodType.MONTHLY)
    return due


class PeriodBoundaryCapture:
    def __init__(self, historical: HistoricalDataStore):
        self.historical = historical

    def on_reading(self, uid: str, tz: str, total: float, wallclock: WallClock) -> List[CaptureResult]:
        """
        Persist every period that closed at this sample.

        Each persistence request is independent: a failure is logged and
        reported in its CaptureResult without stopping the others.
        """
        periods = due_periods(wallclock)
        if not periods:
            return []

        keys_now = PeriodKeys.for_wallclock(wallclock)
        results: List[CaptureResult] = []
        for period_type in periods:
            key = closed_period_key(period_type, keys_now)
            try:
                outcome = self.historical.persist_delta(uid, key, total, tz)
                results.append(CaptureResult(period_type, key, outcome.created, outcome.delta_kwh))
            except StoreError as e:
                log.error(f"Store error persisting {period_type.value} {key} for {uid}: {e}")
                results.append(CaptureResult(period_type, key, False, error=str(e)))
            except Exception as e:
                log.error(f"Failed to persist {period_type.value} {key} for {uid}: {e}", exc_info=True)
                results.append(CaptureResult(period_type, key, False, error=str(e)))

        created = [f"{r.period_type.value} {r.key}" for r in results if r.created]
        if created:
            log.info(f"Boundary capture for {uid} at {keys_now.hour}: created {', '.join(created)}")
        return results
