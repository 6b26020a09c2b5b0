"""
Historical pipeline manager.

Wires the aggregation steps together for each batch of live readings:
timezone resolution, total aggregation, realtime peak and bucket tracking,
period boundary capture and the once-per-session backfill. Collaborator
failures are logged and never propagate to the feed that delivered the
readings.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from emonhub import analytics_calculator
from emonhub.backfill import BackfillEngine, BackfillReport
from emonhub.boundary_capture import CaptureResult, PeriodBoundaryCapture
from emonhub.config import AggregationConfig
from emonhub.document_store import DocumentStore
from emonhub.historical_store import HistoricalDataStore
from emonhub.meter_aggregator import Readings, filtered_total
from emonhub.models import ChartData, PeakUpdate, RealtimePeak, SummaryCardData, TimePeriod
from emonhub.peak_tracker import HourBucketTracker, PeakTracker
from emonhub.summary import SummaryCalculator
from emonhub.timezone_utils import (
    DEFAULT_TIMEZONE,
    Clock,
    SystemClock,
    WallClock,
    date_key,
    hour_key,
    localize,
    now_in_timezone,
    timezone_name,
)
from emonhub.user_directory import UserDirectory

log = logging.getLogger(__name__)


@dataclass
class PipelineTick:
    """Outcome of processing one batch of readings for one user."""
    uid: str
    timezone: str
    total: float
    wallclock: WallClock
    peak: Optional[PeakUpdate] = None
    captures: List[CaptureResult] = field(default_factory=list)
    backfill: Optional[List[BackfillReport]] = None


class HistoricalPipeline:
    def __init__(self, store: DocumentStore, directory: UserDirectory, clock: Optional[Clock] = None,
                 aggregation: Optional[AggregationConfig] = None,
                 default_timezone: str = DEFAULT_TIMEZONE, run_backfill: bool = True):
        self.clock = clock or SystemClock()
        self.aggregation = aggregation or AggregationConfig()
        self.directory = directory
        self.default_timezone = default_timezone
        self.run_backfill = run_backfill

        self.historical = HistoricalDataStore(store, self.clock, self.aggregation)
        self.peak_tracker = PeakTracker()
        self.bucket_tracker = HourBucketTracker(self.aggregation.realtime_bucket_minutes)
        self.capture = PeriodBoundaryCapture(self.historical)
        self.backfill = BackfillEngine(self.historical, self.clock, self.aggregation)
        self.calculator = SummaryCalculator(self.historical, self.peak_tracker, self.bucket_tracker, self.clock)

        self._live_totals: Dict[str, float] = {}

    def timezone_for(self, uid: str) -> str:
        """User's preferred timezone, else the configured default, else UTC."""
        preferred = None
        try:
            preferred = self.directory.preferred_timezone(uid)
        except Exception as e:
            log.warning(f"Could not read timezone preference for {uid}: {e}")
        return timezone_name(preferred or self.default_timezone)

    def live_total(self, uid: str) -> float:
        return self._live_totals.get(uid, 0.0)

    # ------------------------------------------------------------------
    # Realtime peak
    # ------------------------------------------------------------------

    def _ensure_peak_state(self, uid: str, day: str) -> None:
        if self.peak_tracker.has_state(uid, day):
            return
        mirrored = None
        try:
            mirrored = self.historical.read_realtime_peak(uid, day)
        except Exception as e:
            log.warning(f"Could not read realtime peak mirror for {uid} on {day}: {e}")
        self.peak_tracker.rehydrate(uid, day, mirrored)
        self.peak_tracker.prune(uid, day)

    def _mirror_peak(self, uid: str, tz: str, day: str, update: PeakUpdate, wallclock: WallClock) -> None:
        if not update.new_peak or update.peak <= self.aggregation.peak_epsilon_kwh:
            return
        peak = RealtimePeak(
            value=round(update.peak, 6),
            date_key=day,
            at_hour_label=f"{wallclock.hour:02d}:{wallclock.minute:02d}",
            timezone=tz,
            at_epoch_ms=update.peak_at_ms,
        )
        try:
            self.historical.write_realtime_peak(uid, peak)
        except Exception as e:
            # Mirror is a cache; the in-memory tracker stays authoritative
            log.warning(f"Failed to mirror realtime peak for {uid}: {e}")

    # ------------------------------------------------------------------
    # Reading path
    # ------------------------------------------------------------------

    def on_readings(self, uid: str, readings: Readings) -> Optional[PipelineTick]:
        """
        Process a snapshot of live readings for one user.

        Returns the PipelineTick, or None if the batch could not be processed.
        """
        try:
            tz = self.timezone_for(uid)
            now = self.clock.now()
            wallclock = WallClock.from_datetime(localize(now, tz))
            day = date_key(wallclock.date)

            total = filtered_total(uid, readings, self.directory)
            self._live_totals[uid] = total
            tick = PipelineTick(uid=uid, timezone=tz, total=total, wallclock=wallclock)

            self._ensure_peak_state(uid, day)
            tick.peak = self.peak_tracker.update_and_get(uid, day, total, self.clock.now_ms())
            self._mirror_peak(uid, tz, day, tick.peak, wallclock)
            self.bucket_tracker.update(uid, day, hour_key(wallclock.hour), wallclock.minute, total)

            tick.captures = self.capture.on_reading(uid, tz, total, wallclock)

            # After capture, so a boundary record is live rather than provisional
            if self.run_backfill:
                tick.backfill = self.backfill.run_once(uid, tz, total)
            return tick
        except Exception as e:
            log.error(f"Pipeline failed for {uid}: {e}", exc_info=True)
            return None

    def refresh(self, uid: str, readings: Readings) -> Optional[PipelineTick]:
        """Manual refresh; same path as a live reading."""
        return self.on_readings(uid, readings)

    # ------------------------------------------------------------------
    # Read models
    # ------------------------------------------------------------------

    def _rehydrate_today(self, uid: str, tz: str) -> None:
        # A fresh process may be asked for the Realtime card before any reading arrives
        self._ensure_peak_state(uid, date_key(now_in_timezone(tz, self.clock).date))

    def summary(self, uid: str, period: TimePeriod, reference_date=None) -> SummaryCardData:
        tz = self.timezone_for(uid)
        if TimePeriod(period) == TimePeriod.REALTIME:
            self._rehydrate_today(uid, tz)
        return self.calculator.get_summary(uid, tz, period, reference_date, live_total=self.live_total(uid))

    def chart(self, uid: str, period: TimePeriod, reference_date=None) -> ChartData:
        return self.calculator.get_chart_data(uid, self.timezone_for(uid), period, reference_date)

    def analytics(self, uid: str, period: TimePeriod, reference_date=None) -> Dict[str, Any]:
        """Chart series with per-bar colours, efficiency rating, cost estimate and recommendations."""
        period = TimePeriod(period)
        chart = self.chart(uid, period, reference_date)
        rate = self.aggregation.energy_rate_per_kwh
        bars = [
            {
                "label": label,
                "value": value,
                "display": analytics_calculator.format_consumption_value(value, period),
                "color": analytics_calculator.get_bar_color(value, chart.average),
            }
            for label, value in zip(chart.labels, chart.data)
        ]
        return {
            "chart": chart.to_dict(),
            "bars": bars,
            "total_display": analytics_calculator.format_consumption_value(chart.total, period),
            "efficiency": analytics_calculator.calculate_efficiency_rating(chart).to_dict(),
            "cost": round(analytics_calculator.calculate_energy_cost(chart.total, rate), 2),
            "analysis": analytics_calculator.generate_analysis_text(
                chart, period, live_total=self.live_total(uid), rate_per_kwh=rate,
            ),
            "recommendations": analytics_calculator.generate_recommendations(chart, period),
        }
