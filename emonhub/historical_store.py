"""
Historical delta persistence.

One DeltaRecord is written per (user, period type, period key). Records are
write-once: an existing document is never overwritten, and the final write
goes through the store's create-if-absent primitive so two racing writers
cannot both succeed. A record's delta is the cumulative total at the close of
its period minus the closing total of the nearest earlier period on record.
"""

import math
import logging
from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple

from emonhub.config import AggregationConfig
from emonhub.document_store import DocumentStore
from emonhub.errors import RecordDecodeError
from emonhub.models import DeltaRecord, RealtimePeak
from emonhub.period_keys import (
    HourKey,
    PeriodKey,
    PeriodType,
    WeekKey,
    historical_root,
)
from emonhub.timezone_utils import Clock, SystemClock, timezone_name

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class PersistResult:
    key: PeriodKey
    created: bool
    record: Optional[DeltaRecord] = None
    baseline_key: Optional[PeriodKey] = None

    @property
    def delta_kwh(self) -> Optional[float]:
        return self.record.delta_kwh if self.record else None


def compute_delta(current_total: float, previous_total: float) -> float:
    """Consumption between two cumulative totals; a counter reset yields 0."""
    return max(0.0, current_total - previous_total)


class HistoricalDataStore:
    """Reads and writes DeltaRecords and the realtime peak mirror."""

    def __init__(self, store: DocumentStore, clock: Optional[Clock] = None,
                 aggregation: Optional[AggregationConfig] = None):
        self.store = store
        self.clock = clock or SystemClock()
        self.aggregation = aggregation or AggregationConfig()

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def lookback_for(self, period_type: PeriodType) -> int:
        return {
            PeriodType.HOURLY: self.aggregation.hourly_lookback_hours,
            PeriodType.DAILY: self.aggregation.daily_lookback_days,
            PeriodType.WEEKLY: self.aggregation.weekly_lookback_weeks,
            PeriodType.MONTHLY: self.aggregation.monthly_lookback_months,
        }[PeriodType(period_type)]

    def exists(self, uid: str, key: PeriodKey) -> bool:
        return self.store.exists(key.path(uid))

    def get_record(self, uid: str, key: PeriodKey) -> Optional[DeltaRecord]:
        """
        Read the record for a period.

        Returns:
            The decoded record, or None when no document exists

        Raises:
            StoreError: the store could not be read
            RecordDecodeError: a document exists but is not a valid record
        """
        path = key.path(uid)
        document = self.store.get(path)
        if document is None:
            return None
        return DeltaRecord.from_document(path, document)

    def find_baseline(self, uid: str, key: PeriodKey) -> Tuple[float, Optional[PeriodKey]]:
        """
        Closing total of the nearest earlier period on record.

        Walks back one period at a time from the period before key, up to the
        configured lookback for the period type. Undecodable documents are
        skipped. When nothing is found the baseline is 0, meaning no earlier
        consumption is known.

        Returns:
            (baseline_total, key_the_baseline_came_from or None)
        """
        candidate = key.previous()
        for _ in range(self.lookback_for(key.period_type)):
            try:
                record = self.get_record(uid, candidate)
            except RecordDecodeError as e:
                log.warning(f"Skipping unusable baseline candidate: {e}")
                record = None
            if record is not None:
                return record.total_energy_at_end, candidate
            candidate = candidate.previous()
        log.debug(f"No baseline found for {key.period_type.value} {key} of {uid}, using 0")
        return 0.0, None

    def latest_key(self, uid: str, period_type: PeriodType) -> Optional[str]:
        """Most recent key in a flat (daily/weekly/monthly) collection."""
        if PeriodType(period_type) == PeriodType.HOURLY:
            raise ValueError("Hourly records are nested per day; use hourly_keys()")
        ids = self.store.list_ids(f"{historical_root(uid)}/{PeriodType(period_type).value}")
        return ids[-1] if ids else None

    def latest_daily_key(self, uid: str) -> Optional[str]:
        return self.latest_key(uid, PeriodType.DAILY)

    def hourly_keys(self, uid: str, date_key: str) -> List[str]:
        return self.store.list_ids(f"{historical_root(uid)}/hourly/{date_key}/hours")

    def hourly_records(self, uid: str, date_key: str) -> Dict[str, DeltaRecord]:
        """Decodable hourly records of one day, keyed by HH."""
        records: Dict[str, DeltaRecord] = {}
        for hh in self.hourly_keys(uid, date_key):
            try:
                record = self.get_record(uid, HourKey(date_key, hh))
            except (RecordDecodeError, ValueError) as e:
                log.warning(f"Skipping hourly record {date_key} {hh} for {uid}: {e}")
                continue
            if record is not None:
                records[hh] = record
        return records

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def build_record(self, key: PeriodKey, total_at_end: float, delta_kwh: float, tz: str,
                     source: str = "live", provisional: bool = False) -> DeltaRecord:
        now = self.clock.now()
        return DeltaRecord(
            total_energy_at_end=round(total_at_end, 6),
            delta_kwh=round(max(0.0, delta_kwh), 6),
            timezone=timezone_name(tz),
            range_label=key.range_label if isinstance(key, WeekKey) else None,
            created_at=now,
            updated_at=now,
            provisional=provisional,
            source=source,
        )

    def write_record(self, uid: str, key: PeriodKey, record: DeltaRecord) -> bool:
        """Create the record if absent. Returns False when a document already exists."""
        return self.store.create(key.path(uid), record.to_document())

    def persist_delta(self, uid: str, key: PeriodKey, current_total: float, tz: str,
                      source: str = "live", provisional: bool = False) -> PersistResult:
        """
        Persist the delta record for a closed period.

        Args:
            uid: user id
            key: the period being recorded (already offset to the closed period)
            current_total: cumulative total observed at the close of the period
            tz: user's timezone identifier, stored on the record
            source: "live" for boundary captures, "backfill" for synthesized records
            provisional: mark the record as an estimate

        Returns:
            PersistResult; created is False when the period already had a record
        """
        if current_total is None or not math.isfinite(current_total):
            raise ValueError(f"Cannot persist non-finite total {current_total!r}")

        if self.exists(uid, key):
            log.debug(f"{key.period_type.value} record {key} already exists for {uid}, skipping")
            return PersistResult(key=key, created=False)

        baseline, baseline_key = self.find_baseline(uid, key)
        record = self.build_record(
            key, current_total, compute_delta(current_total, baseline), tz,
            source=source, provisional=provisional,
        )
        if not self.write_record(uid, key, record):
            log.info(f"{key.period_type.value} record {key} for {uid} was created concurrently, keeping existing")
            return PersistResult(key=key, created=False)

        log.info(
            f"Persisted {key.period_type.value} delta for {uid} {key}: "
            f"total={record.total_energy_at_end:.6f} kWh, delta={record.delta_kwh:.6f} kWh"
            f"{' (provisional)' if provisional else ''}"
        )
        return PersistResult(key=key, created=True, record=record, baseline_key=baseline_key)

    # ------------------------------------------------------------------
    # Realtime peak mirror
    # ------------------------------------------------------------------

    @staticmethod
    def realtime_peak_path(uid: str, date_key: str) -> str:
        return f"users/{uid}/realtimePeakByDay/{date_key}"

    def write_realtime_peak(self, uid: str, peak: RealtimePeak) -> None:
        self.store.set(self.realtime_peak_path(uid, peak.date_key), peak.to_document())

    def read_realtime_peak(self, uid: str, date_key: str) -> Optional[RealtimePeak]:
        document = self.store.get(self.realtime_peak_path(uid, date_key))
        if document is None:
            return None
        try:
            return RealtimePeak.model_validate(document)
        except ValueError as e:
            log.warning(f"Ignoring invalid realtime peak mirror for {uid} on {date_key}: {e}")
            return None
