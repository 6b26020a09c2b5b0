"""
In-process realtime peak tracking.

Peak energy for the realtime view is the largest consumption observed
between two consecutive samples of the same day, not the largest cumulative
total. State lives in memory per (user, day) and is rehydrated from the
mirrored peak document after a restart.
"""

import logging
from typing import Dict, List, Optional, Tuple

from emonhub.models import PeakState, PeakUpdate, RealtimePeak

log = logging.getLogger(__name__)


class PeakTracker:
    """Tracks the highest sample-to-sample delta per user per day."""

    def __init__(self):
        self._store: Dict[Tuple[str, str], PeakState] = {}

    def get_state(self, uid: str, date_key: str) -> Optional[PeakState]:
        return self._store.get((uid, date_key))

    def set_state(self, uid: str, date_key: str, state: PeakState) -> None:
        self._store[(uid, date_key)] = state

    def has_state(self, uid: str, date_key: str) -> bool:
        return (uid, date_key) in self._store

    def rehydrate(self, uid: str, date_key: str, mirrored: Optional[RealtimePeak]) -> PeakState:
        """
        Seed state for a day from its mirrored peak.

        The last total is left unset: the first reading after a restart is a
        baseline again.
        """
        state = PeakState()
        if mirrored is not None and mirrored.date_key == date_key:
            state.peak_delta_kwh = mirrored.value
            state.peak_at_ms = mirrored.at_epoch_ms
            log.info(f"Rehydrated realtime peak for {uid} on {date_key}: {mirrored.value:.6f} kWh")
        self._store[(uid, date_key)] = state
        return state

    def update_and_get(self, uid: str, date_key: str, current_total: float, now_ms: int) -> PeakUpdate:
        state = self._store.get((uid, date_key))
        if state is None:
            state = PeakState()
            self._store[(uid, date_key)] = state

        new_peak = False
        if state.last_total is not None:
            delta = max(0.0, current_total - state.last_total)
            if delta > state.peak_delta_kwh:
                state.peak_delta_kwh = delta
                state.peak_at_ms = now_ms
                new_peak = True
        # First sample of the day only establishes the baseline

        state.last_total = current_total
        return PeakUpdate(
            peak=state.peak_delta_kwh,
            last=state.last_total,
            peak_at_ms=state.peak_at_ms,
            new_peak=new_peak,
        )

    def reset(self, uid: str, date_key: str) -> None:
        self._store.pop((uid, date_key), None)

    def prune(self, uid: str, keep_date_key: str) -> None:
        """Drop a user's state for days other than keep_date_key."""
        for key in [k for k in self._store if k[0] == uid and k[1] != keep_date_key]:
            del self._store[key]


class HourBucketTracker:
    """
    Consumption within fixed-width minute buckets of the current hour.

    Each positive delta between consecutive totals is attributed to the
    bucket of the minute at which it was observed (b1..b6 for 10-minute
    buckets).
    """

    def __init__(self, bucket_minutes: int = 10):
        if bucket_minutes <= 0 or 60 % bucket_minutes:
            raise ValueError("bucket_minutes must divide 60")
        self.bucket_minutes = bucket_minutes
        self._buckets: Dict[Tuple[str, str, str], List[float]] = {}
        self._last_total: Dict[str, float] = {}

    @property
    def bucket_count(self) -> int:
        return 60 // self.bucket_minutes

    def update(self, uid: str, date_key: str, hour_key: str, minute: int, current_total: float) -> float:
        """Record a sample and return the delta attributed to its bucket."""
        key = (uid, date_key, hour_key)
        buckets = self._buckets.get(key)
        if buckets is None:
            buckets = [0.0] * self.bucket_count
            self._buckets[key] = buckets
            # Only the current hour is kept per user
            for stale in [k for k in self._buckets if k[0] == uid and k != key]:
                del self._buckets[stale]

        last = self._last_total.get(uid)
        delta = max(0.0, current_total - last) if last is not None else 0.0
        buckets[min(minute // self.bucket_minutes, self.bucket_count - 1)] += delta
        self._last_total[uid] = current_total
        return delta

    def buckets(self, uid: str, date_key: str, hour_key: str) -> List[float]:
        return list(self._buckets.get((uid, date_key, hour_key), [0.0] * self.bucket_count))
