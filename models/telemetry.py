"""Schema of the cooling-unit telemetry API response."""

from __future__ import annotations

import math
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class Alarm(BaseModel):
    model_config = ConfigDict(extra="ignore")

    state: Optional[str] = None
    severity: Optional[str] = None


class Measurement(BaseModel):
    """A typed numeric leaf.

    The device serialises ``value`` as either a JSON number or a numeric
    string, so it is coerced to ``float`` here rather than downstream.
    """

    model_config = ConfigDict(extra="ignore")

    type: Optional[str] = None
    value: float
    units: Optional[str] = None

    @field_validator("value", mode="before")
    @classmethod
    def _coerce_value(cls, raw: Any) -> float:
        if isinstance(raw, bool) or not isinstance(raw, (int, float, str)):
            raise ValueError("measurement value must be numeric")
        try:
            value = float(raw.strip() if isinstance(raw, str) else raw)
        except (OverflowError, ValueError) as exc:
            raise ValueError(f"measurement value {raw!r} is not numeric") from exc
        if not math.isfinite(value):
            raise ValueError(f"measurement value {raw!r} is not finite")
        return value


class Entity(BaseModel):
    model_config = ConfigDict(extra="ignore")

    measurements: Dict[str, Measurement] = Field(default_factory=dict, alias="measurement")


class DeviceData(BaseModel):
    model_config = ConfigDict(extra="ignore")

    entities: Dict[str, Entity] = Field(default_factory=dict, alias="entity")
    type: Optional[str] = None
    state: Optional[str] = None
    alarm: Optional[Alarm] = None
    name: Optional[str] = None


class SensorResponse(BaseModel):
    model_config = ConfigDict(extra="ignore")

    ret_code: int = Field(..., alias="retCode")
    ret_msg: Optional[str] = Field(default=None, alias="retMsg")
    data: Dict[str, DeviceData] = Field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return self.ret_code == 0
