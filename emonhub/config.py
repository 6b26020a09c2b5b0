from typing import Optional, List
from pydantic import BaseModel, Field, field_validator

from emonhub.timezone_utils import resolve_timezone


class MqttConfig(BaseModel):
    host: str
    port: int = 1883
    username: Optional[str] = None
    password: Optional[str] = None
    client_id: str = "emon-hub"
    readings_topic: str = "emon/+/readings"  # JSON MeterReading or {serial: reading} map
    summary_topic: Optional[str] = "emonhub/{uid}/realtime"  # None disables publishing
    keepalive: int = Field(default=30, ge=5)


class StoreConfig(BaseModel):
    backend: str = Field(default="sqlite", description="sqlite | memory")
    path: Optional[str] = None  # None = ~/.emonhub/emonhub.db

    @field_validator("backend")
    @classmethod
    def validate_backend(cls, value: str) -> str:
        value = value.lower()
        if value not in ("sqlite", "memory"):
            raise ValueError(f"Unsupported store backend '{value}' (expected sqlite or memory)")
        return value


class AggregationConfig(BaseModel):
    """Tuning for delta capture, baseline search and backfill."""
    # New realtime peaks at or below this value are not mirrored to the store
    peak_epsilon_kwh: float = Field(default=0.001, ge=0.0)
    # How far persist_delta walks back looking for a baseline, per period type
    hourly_lookback_hours: int = Field(default=24, ge=1, le=24 * 31)
    daily_lookback_days: int = Field(default=31, ge=1, le=366)
    weekly_lookback_weeks: int = Field(default=8, ge=1, le=106)
    monthly_lookback_months: int = Field(default=12, ge=1, le=120)
    # Oldest day backfill_missing_daily will consider, counted back from yesterday
    backfill_lookback_days: int = Field(default=30, ge=1, le=366)
    # Ramp start for provisional hourly backfill when no earlier total is known
    provisional_ramp_floor: float = Field(default=0.75, ge=0.0, le=1.0)
    realtime_bucket_minutes: int = Field(default=10, description="Width of realtime chart buckets")
    energy_rate_per_kwh: float = Field(default=0.12, ge=0.0, description="Rate used for cost estimates")

    @field_validator("realtime_bucket_minutes")
    @classmethod
    def validate_bucket_width(cls, value: int) -> int:
        if value <= 0 or 60 % value != 0:
            raise ValueError("realtime_bucket_minutes must divide 60")
        return value


class LoggingConfig(BaseModel):
    level: str = "INFO"  # DEBUG, INFO, WARNING, ERROR, CRITICAL
    format: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    mqtt_debug: bool = False  # Enable debug logging for raw MQTT messages


class HubConfig(BaseModel):
    timezone: str = "UTC"  # Used when a user profile has no preferredTimezone
    users: List[str] = Field(default_factory=list, description="User ids processed by the live feed")
    store: StoreConfig = StoreConfig()
    mqtt: Optional[MqttConfig] = None
    aggregation: AggregationConfig = AggregationConfig()
    logging: LoggingConfig = LoggingConfig()

    @field_validator("timezone")
    @classmethod
    def normalize_timezone(cls, value: str) -> str:
        # Unknown identifiers fall back to UTC rather than failing startup
        return resolve_timezone(value).zone
