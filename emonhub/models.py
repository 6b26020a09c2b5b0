from dataclasses import dataclass, field, asdict
from datetime import datetime
from enum import Enum
from typing import Optional, Dict, Any, List, Literal

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from emonhub.errors import RecordDecodeError


class MeterReading(BaseModel):
    """One live snapshot published by a metering plug, keyed by serial number."""
    model_config = ConfigDict(populate_by_name=True, frozen=True, extra="ignore")

    serial_number: str = Field(default="", alias="serialNumber")
    energy_total_kwh: float = Field(default=0.0, alias="energy")  # cumulative kWh
    power_w: float = Field(default=0.0, alias="power")
    voltage_v: float = Field(default=0.0, alias="voltage")
    current_a: float = Field(default=0.0, alias="current")
    daily_energy_kwh: float = Field(default=0.0, alias="dailyEnergy")
    appliance_on: bool = Field(default=False, alias="applianceState")
    runtime_hours: int = Field(default=0, alias="runtimehr")
    runtime_minutes: int = Field(default=0, alias="runtimemin")
    runtime_seconds: int = Field(default=0, alias="runtimesec")

    @field_validator(
        "energy_total_kwh", "power_w", "voltage_v", "current_a", "daily_energy_kwh",
        "runtime_hours", "runtime_minutes", "runtime_seconds",
        mode="before",
    )
    @classmethod
    def _missing_as_zero(cls, value):
        # Devices publish null/empty for unset counters
        if value is None or value == "":
            return 0
        return value

    @field_validator("appliance_on", mode="before")
    @classmethod
    def _missing_as_off(cls, value):
        return False if value is None else value

    def total_runtime_seconds(self) -> int:
        return self.runtime_hours * 3600 + self.runtime_minutes * 60 + self.runtime_seconds

    def is_online(self) -> bool:
        return self.power_w > 0 or self.voltage_v > 0


class DeltaRecord(BaseModel):
    """
    Consumption recorded for one closed calendar period.

    Stored with camelCase field names. Written once per period; the
    provisional/source pair tells live captures apart from synthesized ones.
    """
    model_config = ConfigDict(populate_by_name=True)

    total_energy_at_end: float = Field(alias="totalEnergyAtEnd", ge=0, allow_inf_nan=False)
    delta_kwh: float = Field(alias="deltaKWh", ge=0, allow_inf_nan=False)
    timezone: str
    range_label: Optional[str] = Field(default=None, alias="rangeLabel")
    created_at: Optional[datetime] = Field(default=None, alias="createdAt")
    updated_at: Optional[datetime] = Field(default=None, alias="updatedAt")
    provisional: bool = False
    source: Literal["live", "backfill"] = "live"

    @classmethod
    def from_document(cls, path: str, document: Optional[Dict[str, Any]]) -> "DeltaRecord":
        if document is None:
            raise RecordDecodeError(path, "document does not exist")
        try:
            return cls.model_validate(document)
        except ValidationError as e:
            fields = ", ".join(".".join(str(p) for p in err["loc"]) for err in e.errors())
            raise RecordDecodeError(path, f"invalid fields: {fields}") from e

    def to_document(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, mode="json", exclude_none=True)


class RealtimePeak(BaseModel):
    """Best-effort mirror of today's realtime peak, used to rehydrate the tracker."""
    model_config = ConfigDict(populate_by_name=True)

    value: float = Field(ge=0, allow_inf_nan=False)
    date_key: str = Field(alias="dateKey")
    at_hour_label: str = Field(alias="atHourLabel")
    timezone: str
    at_epoch_ms: Optional[int] = Field(default=None, alias="atEpochMs")

    def to_document(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, mode="json", exclude_none=True)


@dataclass
class PeakState:
    last_total: Optional[float] = None
    peak_delta_kwh: float = 0.0
    peak_at_ms: Optional[int] = None


@dataclass(frozen=True)
class PeakUpdate:
    peak: float
    last: Optional[float]
    peak_at_ms: Optional[int]
    new_peak: bool


class TimePeriod(str, Enum):
    REALTIME = "Realtime"
    DAILY = "Daily"
    WEEKLY = "Weekly"
    MONTHLY = "Monthly"


@dataclass
class SummaryCardData:
    total_value: float
    total_label: str
    avg_value: float
    avg_label: str
    peak_value: float
    peak_label: str
    peak_detail: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class ChartData:
    labels: List[str] = field(default_factory=list)
    data: List[float] = field(default_factory=list)
    total: float = 0.0
    average: float = 0.0
    peak: float = 0.0
    low: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_series(cls, labels: List[str], data: List[float]) -> "ChartData":
        total = sum(data)
        return cls(
            labels=list(labels),
            data=list(data),
            total=total,
            average=total / len(data) if data else 0.0,
            peak=max(data) if data else 0.0,
            low=min(data) if data else 0.0,
        )
