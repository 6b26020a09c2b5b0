"""
emonhub: historical energy aggregation for plug-level energy monitors.

This package turns live cumulative meter readings into per-period delta
records and the summaries built from them:
- Timezone and calendar keys (timezone_utils, period_keys)
- Live path (meter_aggregator, peak_tracker, boundary_capture, pipeline)
- Persistence (document_store, historical_store, backfill)
- Read models (summary, analytics_calculator)
"""

from emonhub.config import HubConfig
from emonhub.document_store import MemoryDocumentStore, SqliteDocumentStore
from emonhub.historical_store import HistoricalDataStore
from emonhub.models import ChartData, DeltaRecord, MeterReading, SummaryCardData, TimePeriod
from emonhub.pipeline import HistoricalPipeline

__version__ = "0.1.0"

__all__ = [
    'HubConfig',
    'MemoryDocumentStore',
    'SqliteDocumentStore',
    'HistoricalDataStore',
    'ChartData',
    'DeltaRecord',
    'MeterReading',
    'SummaryCardData',
    'TimePeriod',
    'HistoricalPipeline',
]
