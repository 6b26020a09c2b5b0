"""
Integration tests for the historical pipeline
"""

from datetime import datetime

import pytest
import pytz
from unittest.mock import Mock, patch

from emonhub.config import AggregationConfig
from emonhub.document_store import MemoryDocumentStore
from emonhub.models import MeterReading, TimePeriod
from emonhub.period_keys import DayKey, HourKey, MonthKey, PeriodType
from emonhub.pipeline import HistoricalPipeline
from emonhub.timezone_utils import FixedClock
from emonhub.user_directory import StoreUserDirectory


def readings(**totals):
    return {serial: MeterReading(serialNumber=serial, energy=total) for serial, total in totals.items()}


@pytest.fixture
def store():
    return MemoryDocumentStore()


@pytest.fixture
def directory(store):
    directory = StoreUserDirectory(store)
    directory.set_preferred_timezone("u1", "Asia/Manila")
    directory.register_device("u1", "dev-a", "A")
    directory.register_device("u1", "dev-b", "B")
    directory.register_appliance("u1", "app-1", "dev-a", "Aircon")
    return directory


@pytest.fixture
def clock():
    # 23:59 on Monday 2025-03-31 in Manila
    return FixedClock(datetime(2025, 3, 31, 15, 59, tzinfo=pytz.UTC))


@pytest.fixture
def pipeline(store, directory, clock):
    return HistoricalPipeline(store, directory, clock, run_backfill=False)


class TestReadingPath:
    """Test processing of live readings"""

    def test_midnight_in_user_timezone_closes_day_and_month(self, pipeline, clock):
        first = pipeline.on_readings("u1", readings(A=10.0, B=99.0))
        assert first.timezone == "Asia/Manila"
        assert first.total == pytest.approx(10.0)
        assert first.captures == []

        clock.advance(minutes=1)
        tick = pipeline.on_readings("u1", readings(A=10.5, B=99.5))

        created = {c.period_type: c.key for c in tick.captures if c.created}
        assert created == {
            PeriodType.HOURLY: HourKey("2025-03-31", "23"),
            PeriodType.DAILY: DayKey("2025-03-31"),
            PeriodType.MONTHLY: MonthKey("2025-03"),
        }
        daily = pipeline.historical.get_record("u1", DayKey("2025-03-31"))
        assert daily.total_energy_at_end == pytest.approx(10.5)
        assert daily.delta_kwh == pytest.approx(10.5)
        assert daily.timezone == "Asia/Manila"

    def test_new_peak_is_mirrored(self, pipeline, clock):
        clock.set(datetime(2025, 4, 1, 2, 0, tzinfo=pytz.UTC))
        pipeline.on_readings("u1", readings(A=1.0))
        clock.advance(minutes=1)
        tick = pipeline.on_readings("u1", readings(A=1.5))

        assert tick.peak.new_peak is True
        mirrored = pipeline.historical.read_realtime_peak("u1", "2025-04-01")
        assert mirrored.value == pytest.approx(0.5)
        assert mirrored.at_hour_label == "10:01"
        assert mirrored.timezone == "Asia/Manila"

    def test_noise_level_peak_is_not_mirrored(self, pipeline, clock):
        clock.set(datetime(2025, 4, 1, 2, 0, tzinfo=pytz.UTC))
        pipeline.on_readings("u1", readings(A=1.0))
        clock.advance(minutes=1)
        tick = pipeline.on_readings("u1", readings(A=1.0005))

        assert tick.peak.new_peak is True
        assert pipeline.historical.read_realtime_peak("u1", "2025-04-01") is None

    def test_peak_rehydrated_after_restart(self, store, directory, clock, pipeline):
        clock.set(datetime(2025, 4, 1, 2, 0, tzinfo=pytz.UTC))
        pipeline.on_readings("u1", readings(A=1.0))
        clock.advance(minutes=1)
        pipeline.on_readings("u1", readings(A=1.5))

        restarted = HistoricalPipeline(store, directory, clock, run_backfill=False)
        clock.advance(minutes=1)
        tick = restarted.on_readings("u1", readings(A=1.6))

        assert tick.peak.peak == pytest.approx(0.5)
        assert tick.peak.new_peak is False

    def test_realtime_card_after_restart_uses_mirrored_peak(self, store, directory, clock, pipeline):
        clock.set(datetime(2025, 4, 1, 2, 0, tzinfo=pytz.UTC))
        pipeline.on_readings("u1", readings(A=1.0))
        clock.advance(minutes=1)
        pipeline.on_readings("u1", readings(A=1.7))

        restarted = HistoricalPipeline(store, directory, clock, run_backfill=False)
        card = restarted.summary("u1", TimePeriod.REALTIME)

        assert card.peak_value == pytest.approx(0.7)
        assert card.peak_detail == "at 10:01"

    def test_directory_failures_fall_back(self, store, clock):
        directory = Mock()
        directory.preferred_timezone.side_effect = RuntimeError("profile unavailable")
        directory.metered_serials.side_effect = RuntimeError("devices unavailable")
        pipeline = HistoricalPipeline(store, directory, clock, default_timezone="Europe/Berlin",
                                      run_backfill=False)

        tick = pipeline.on_readings("u1", readings(A=1.0, B=2.0))

        assert tick.timezone == "Europe/Berlin"
        assert tick.total == pytest.approx(3.0)

    def test_failures_are_contained(self, pipeline):
        with patch.object(pipeline.capture, "on_reading", side_effect=RuntimeError("boom")):
            assert pipeline.on_readings("u1", readings(A=1.0)) is None

    def test_backfill_runs_once_per_session(self, store, directory, clock):
        pipeline = HistoricalPipeline(store, directory, clock)
        first = pipeline.on_readings("u1", readings(A=10.0))
        clock.advance(minutes=1)
        second = pipeline.refresh("u1", readings(A=10.5))

        assert first.backfill is not None
        assert second.backfill is None
        # Hour 22 of 03-31 was estimated; hour 23 was captured live at midnight
        assert pipeline.historical.get_record("u1", HourKey("2025-03-31", "22")).provisional is True
        live = pipeline.historical.get_record("u1", HourKey("2025-03-31", "23"))
        assert live.provisional is False
        assert live.source == "live"


class TestReadModels:
    """Test summary access through the pipeline"""

    def test_realtime_summary_uses_last_total(self, pipeline):
        pipeline.on_readings("u1", readings(A=4.2))
        card = pipeline.summary("u1", TimePeriod.REALTIME)
        assert card.total_value == pytest.approx(4.2)

    def test_daily_summary_for_user_timezone(self, pipeline):
        pipeline.historical.persist_delta("u1", HourKey("2025-03-30", "07"), 2.0, "Asia/Manila")
        card = pipeline.summary("u1", "Daily")
        assert card.total_value == pytest.approx(2.0)
        assert card.peak_detail == "at 07:00"

    def test_analytics_bundle(self, store, directory, clock):
        pipeline = HistoricalPipeline(store, directory, clock, AggregationConfig(energy_rate_per_kwh=0.5),
                                      run_backfill=False)
        pipeline.historical.persist_delta("u1", HourKey("2025-03-30", "07"), 2.0, "Asia/Manila")
        result = pipeline.analytics("u1", TimePeriod.DAILY)
        assert result["cost"] == pytest.approx(1.0)
        assert result["efficiency"]["rating"] in ("A+", "A", "B", "C", "D")
        assert 1 <= len(result["recommendations"]) <= 4
        assert len(result["chart"]["data"]) == 24
        assert result["total_display"] == "2.00kWh"
        assert len(result["bars"]) == 24
        assert result["bars"][7] == {"label": "07:00", "value": 2.0, "display": "2.00kWh", "color": "#F44336"}
        assert result["bars"][0]["color"] == "#2E7D32"
