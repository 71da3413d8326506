"""Pydantic schemas for the HTTP API layer."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, Field

from models.records import MinutelySample


class MinutelyDataPoint(BaseModel):
    """One point of the recent-window trend chart."""

    timestamp: datetime
    temperature: int = Field(..., ge=0, le=255)
    humidity: int = Field(..., ge=0, le=255)

    @classmethod
    def from_sample(cls, sample: MinutelySample) -> "MinutelyDataPoint":
        return cls(
            timestamp=sample.timestamp,
            temperature=sample.temperature,
            humidity=sample.humidity,
        )
