"""
Unit tests for period boundary capture
"""

from datetime import datetime

import pytest
import pytz
from unittest.mock import Mock

from emonhub.boundary_capture import PeriodBoundaryCapture, due_periods
from emonhub.document_store import MemoryDocumentStore
from emonhub.errors import StoreError
from emonhub.historical_store import HistoricalDataStore, PersistResult
from emonhub.period_keys import DayKey, HourKey, MonthKey, PeriodType, WeekKey
from emonhub.timezone_utils import WallClock, localize


@pytest.fixture
def historical():
    return HistoricalDataStore(MemoryDocumentStore())


@pytest.fixture
def capture(historical):
    return PeriodBoundaryCapture(historical)


class TestDuePeriods:
    """Test boundary detection"""

    def test_no_boundary_mid_hour(self):
        assert due_periods(WallClock(2025, 4, 1, 10, 30)) == []

    def test_top_of_hour(self):
        assert due_periods(WallClock(2025, 4, 1, 10, 0)) == [PeriodType.HOURLY]

    def test_midnight_tuesday_first_of_month(self):
        assert due_periods(WallClock(2025, 4, 1, 0, 0)) == [
            PeriodType.HOURLY, PeriodType.DAILY, PeriodType.MONTHLY,
        ]

    def test_midnight_monday(self):
        assert due_periods(WallClock(2025, 3, 31, 0, 0)) == [
            PeriodType.HOURLY, PeriodType.DAILY, PeriodType.WEEKLY,
        ]

    def test_midnight_monday_first_of_month(self):
        # 2025-09-01 is a Monday
        assert due_periods(WallClock(2025, 9, 1, 0, 0)) == [
            PeriodType.HOURLY, PeriodType.DAILY, PeriodType.WEEKLY, PeriodType.MONTHLY,
        ]


class TestOnReading:
    """Test persistence on boundary crossings"""

    def test_hour_record_labelled_with_completed_hour(self, capture, historical):
        results = capture.on_reading("u1", "UTC", 3.0, WallClock(2025, 4, 1, 14, 0))
        assert [r.key for r in results] == [HourKey("2025-04-01", "13")]
        assert historical.get_record("u1", HourKey("2025-04-01", "13")).total_energy_at_end == 3.0

    def test_no_capture_off_boundary(self, capture, historical):
        assert capture.on_reading("u1", "UTC", 3.0, WallClock(2025, 4, 1, 14, 1)) == []
        assert historical.hourly_keys("u1", "2025-04-01") == []

    def test_midnight_records_previous_day(self, capture, historical):
        historical.persist_delta("u1", DayKey("2025-03-30"), 9.0, "Asia/Manila")

        # 23:59 sample is not a boundary, 00:00 sample is
        assert capture.on_reading("u1", "Asia/Manila", 10.0, WallClock(2025, 3, 31, 23, 59)) == []
        results = capture.on_reading("u1", "Asia/Manila", 10.5, WallClock(2025, 4, 1, 0, 0))

        keys = {r.period_type: r.key for r in results}
        assert keys == {
            PeriodType.HOURLY: HourKey("2025-03-31", "23"),
            PeriodType.DAILY: DayKey("2025-03-31"),
            PeriodType.MONTHLY: MonthKey("2025-03"),
        }
        daily = historical.get_record("u1", DayKey("2025-03-31"))
        assert daily.total_energy_at_end == pytest.approx(10.5)
        assert daily.delta_kwh == pytest.approx(1.5)
        assert daily.timezone == "Asia/Manila"

    def test_monday_records_previous_iso_week(self, capture, historical):
        results = capture.on_reading("u1", "UTC", 20.0, WallClock(2025, 3, 31, 0, 0))
        weekly = [r for r in results if r.period_type == PeriodType.WEEKLY]
        assert weekly[0].key == WeekKey("2025-W13")
        record = historical.get_record("u1", WeekKey("2025-W13"))
        assert record.delta_kwh == pytest.approx(20.0)
        assert record.range_label == "2025-03-24 - 2025-03-30"

    def test_repeated_boundary_sample_is_idempotent(self, capture):
        first = capture.on_reading("u1", "UTC", 3.0, WallClock(2025, 4, 1, 14, 0))
        second = capture.on_reading("u1", "UTC", 3.1, WallClock(2025, 4, 1, 14, 0))
        assert first[0].created is True
        assert second[0].created is False

    def test_failure_does_not_block_other_periods(self):
        historical = Mock(spec=HistoricalDataStore)
        historical.persist_delta.side_effect = [
            StoreError("unavailable"),
            PersistResult(key=DayKey("2025-03-31"), created=True),
            RuntimeError("boom"),
        ]
        capture = PeriodBoundaryCapture(historical)

        results = capture.on_reading("u1", "UTC", 10.0, WallClock(2025, 4, 1, 0, 0))

        assert historical.persist_delta.call_count == 3
        assert [r.failed for r in results] == [True, False, True]
        assert results[0].error == "unavailable"
        assert results[1].created is True


class TestDaylightSaving:
    """Test hourly labels across a DST transition"""

    def test_spring_forward_folds_skipped_hour_into_next_label(self, capture, historical):
        tz = "America/New_York"
        # 2025-03-09: 01:59 EST is followed by 03:00 EDT
        one_am = WallClock.from_datetime(localize(datetime(2025, 3, 9, 6, 0, tzinfo=pytz.UTC), tz))
        three_am = WallClock.from_datetime(localize(datetime(2025, 3, 9, 7, 0, tzinfo=pytz.UTC), tz))
        assert (one_am.hour, three_am.hour) == (1, 3)

        capture.on_reading("u1", tz, 5.0, one_am)
        results = capture.on_reading("u1", tz, 7.0, three_am)

        assert [r.key for r in results] == [HourKey("2025-03-09", "02")]
        assert historical.get_record("u1", HourKey("2025-03-09", "01")) is None
        # Hour 02 carries the consumption from 01:00 EST to 03:00 EDT
        assert historical.get_record("u1", HourKey("2025-03-09", "02")).delta_kwh == pytest.approx(2.0)
