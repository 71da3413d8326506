"""Domain models shared across services."""

from __future__ import annotations

import datetime as dt
from enum import Enum
from typing import Tuple

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


class SensorType(str, Enum):
    """Sensor sources a kiosk can report from."""

    primary = "primary"
    cooling_unit = "cooling_unit"


# Most preferred first. Every SensorType member must appear exactly once.
SENSOR_PREFERENCE: Tuple[SensorType, ...] = (
    SensorType.primary,
    SensorType.cooling_unit,
)

CANONICAL_SENSOR_TYPE = SENSOR_PREFERENCE[0]


class MinutelySample(BaseModel):
    """A single temperature/humidity reading as persisted."""

    model_config = ConfigDict(frozen=True)

    kiosk_id: str = Field(..., min_length=1)
    timestamp: dt.datetime
    temperature: int = Field(..., ge=0, le=255)
    humidity: int = Field(..., ge=0, le=255)
    sensor_type: SensorType

    @field_validator("timestamp")
    @classmethod
    def _normalize_utc(cls, value: dt.datetime) -> dt.datetime:
        if value.tzinfo is None:
            return value.replace(tzinfo=dt.timezone.utc)
        return value.astimezone(dt.timezone.utc)

    @property
    def identity(self) -> Tuple[str, dt.datetime, SensorType]:
        return (self.kiosk_id, self.timestamp, self.sensor_type)


class DailyStatistic(BaseModel):
    """One kiosk's rollup for one calendar day."""

    model_config = ConfigDict(frozen=True)

    kiosk_id: str = Field(..., min_length=1)
    date: dt.date
    sensor_type: SensorType
    sample_count: int = Field(..., ge=1)
    min_temperature: int
    max_temperature: int
    mean_temperature: int
    min_humidity: int
    max_humidity: int
    mean_humidity: int

    @model_validator(mode="after")
    def _check_ordering(self) -> "DailyStatistic":
        if not self.min_temperature <= self.mean_temperature <= self.max_temperature:
            raise ValueError("temperature statistics must satisfy min <= mean <= max")
        if not self.min_humidity <= self.mean_humidity <= self.max_humidity:
            raise ValueError("humidity statistics must satisfy min <= mean <= max")
        return self

    @property
    def key(self) -> Tuple[str, dt.date]:
        return (self.kiosk_id, self.date)
