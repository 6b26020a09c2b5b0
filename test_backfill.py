"""
Unit tests for the backfill engine
"""

from datetime import datetime

import pytest
import pytz
from unittest.mock import patch

from emonhub.backfill import BackfillEngine, BackfillState
from emonhub.document_store import MemoryDocumentStore
from emonhub.errors import StoreError
from emonhub.historical_store import HistoricalDataStore
from emonhub.period_keys import DayKey, HourKey, PeriodType
from emonhub.timezone_utils import FixedClock


@pytest.fixture
def clock():
    return FixedClock(datetime(2025, 4, 10, 5, 30, tzinfo=pytz.UTC))


@pytest.fixture
def historical(clock):
    return HistoricalDataStore(MemoryDocumentStore(), clock)


@pytest.fixture
def engine(historical, clock):
    return BackfillEngine(historical, clock)


def seed(historical, key, total, delta=0.0):
    assert historical.write_record("u1", key, historical.build_record(key, total, delta, "UTC"))


class TestBackfillMissingDaily:
    """Test daily record reconstruction from hourly data"""

    def test_fills_days_after_latest_daily(self, engine, historical):
        seed(historical, DayKey("2025-04-05"), 18.0)
        seed(historical, HourKey("2025-04-06", "23"), 20.0)
        seed(historical, HourKey("2025-04-07", "23"), 23.0)
        seed(historical, HourKey("2025-04-09", "23"), 30.0)

        report = engine.backfill_missing_daily("u1", "UTC")

        assert report.period_type == PeriodType.DAILY
        assert report.created == ["2025-04-06", "2025-04-07"]
        # 04-08 has no "23" hour, so 04-09 has no baseline either
        assert report.missing_hourlies == ["2025-04-08", "2025-04-09"]

        record = historical.get_record("u1", DayKey("2025-04-06"))
        assert record.delta_kwh == pytest.approx(2.0)
        assert record.source == "backfill"
        assert record.provisional is False
        assert historical.get_record("u1", DayKey("2025-04-07")).delta_kwh == pytest.approx(3.0)

    def test_without_daily_records_uses_lookback_window(self, engine, historical):
        seed(historical, HourKey("2025-04-08", "23"), 10.0)
        seed(historical, HourKey("2025-04-09", "23"), 12.0)

        report = engine.backfill_missing_daily("u1", "UTC")

        assert report.created == ["2025-04-09"]
        assert report.missing_hourlies[0] == "2025-03-11"
        assert "2025-04-08" in report.missing_hourlies
        assert historical.get_record("u1", DayKey("2025-04-09")).delta_kwh == pytest.approx(2.0)

    def test_up_to_date_does_nothing(self, engine, historical):
        seed(historical, DayKey("2025-04-09"), 5.0)
        report = engine.backfill_missing_daily("u1", "UTC")
        assert report.created == [] and report.missing_hourlies == []

    def test_second_run_creates_nothing(self, engine, historical):
        seed(historical, DayKey("2025-04-08"), 10.0)
        seed(historical, HourKey("2025-04-09", "23"), 11.0)
        assert engine.backfill_missing_daily("u1", "UTC").created == ["2025-04-09"]
        assert engine.backfill_missing_daily("u1", "UTC").created == []


class TestBackfillTodayHourly:
    """Test provisional hourly estimates"""

    def test_ramps_between_known_totals(self, engine, historical):
        seed(historical, HourKey("2025-04-09", "23"), 100.0)
        seed(historical, HourKey("2025-04-10", "02"), 102.0, delta=2.0)

        report = engine.backfill_today_hourly_provisional("u1", "UTC", 106.0)

        assert report.created == [
            "2025-04-10 00:00", "2025-04-10 01:00", "2025-04-10 03:00", "2025-04-10 04:00",
        ]
        totals = [historical.get_record("u1", HourKey("2025-04-10", hh)).total_energy_at_end
                  for hh in ("00", "01", "03", "04")]
        deltas = [historical.get_record("u1", HourKey("2025-04-10", hh)).delta_kwh
                  for hh in ("00", "01", "03", "04")]
        assert totals == pytest.approx([101.0, 102.0, 104.0, 106.0])
        assert deltas == pytest.approx([1.0, 1.0, 2.0, 2.0])

        record = historical.get_record("u1", HourKey("2025-04-10", "00"))
        assert record.provisional is True
        assert record.source == "backfill"

    def test_existing_hours_are_not_overwritten(self, engine, historical):
        seed(historical, HourKey("2025-04-10", "02"), 102.0, delta=2.0)
        engine.backfill_today_hourly_provisional("u1", "UTC", 106.0)
        record = historical.get_record("u1", HourKey("2025-04-10", "02"))
        assert record.source == "live"
        assert record.provisional is False

    def test_no_history_starts_from_ramp_floor(self, historical, clock):
        clock.set(datetime(2025, 4, 10, 2, 15, tzinfo=pytz.UTC))
        engine = BackfillEngine(historical, clock)

        engine.backfill_today_hourly_provisional("u1", "UTC", 8.0)

        assert historical.get_record("u1", HourKey("2025-04-10", "00")).total_energy_at_end == pytest.approx(7.0)
        assert historical.get_record("u1", HourKey("2025-04-10", "01")).total_energy_at_end == pytest.approx(8.0)
        assert historical.get_record("u1", HourKey("2025-04-10", "02")) is None

    def test_first_hour_of_day_has_nothing_to_fill(self, historical, clock):
        clock.set(datetime(2025, 4, 10, 0, 30, tzinfo=pytz.UTC))
        report = BackfillEngine(historical, clock).backfill_today_hourly_provisional("u1", "UTC", 8.0)
        assert report.created == []

    def test_hours_follow_user_timezone(self, historical, clock):
        # 05:30 UTC is 13:30 in Manila
        engine = BackfillEngine(historical, clock)
        report = engine.backfill_today_hourly_provisional("u1", "Asia/Manila", 13.0)
        assert len(report.created) == 13
        assert report.created[-1] == "2025-04-10 12:00"


class TestSessionGuard:
    """Test the once-per-session state machine"""

    def test_runs_once_per_user(self, engine):
        assert engine.state("u1") == BackfillState.NOT_STARTED
        reports = engine.run_once("u1", "UTC", 5.0)
        assert [r.period_type for r in reports] == [PeriodType.DAILY, PeriodType.HOURLY]
        assert engine.state("u1") == BackfillState.DONE
        assert engine.run_once("u1", "UTC", 5.0) is None
        assert engine.run_once("u2", "UTC", 5.0) is not None

    def test_failure_allows_retry(self, engine):
        with patch.object(engine, "backfill_missing_daily", side_effect=StoreError("offline")):
            assert engine.run_once("u1", "UTC", 5.0) is None
        assert engine.state("u1") == BackfillState.NOT_STARTED
        assert engine.run_once("u1", "UTC", 5.0) is not None

    def test_reset(self, engine):
        engine.run_once("u1", "UTC", 5.0)
        engine.reset("u1")
        assert engine.state("u1") == BackfillState.NOT_STARTED
