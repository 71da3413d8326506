"""Validation and persistence of inbound minutely readings."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from threading import Event
from typing import Callable, Optional, Union

from models.records import MinutelySample, SensorType
from services.errors import OperationCancelled, SampleValidationError
from storage.minutely_log import MinutelyStore

logger = logging.getLogger(__name__)

_METRIC_MIN = 0
_METRIC_MAX = 255


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _check_metric(name: str, value: object) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise SampleValidationError(f"{name} must be an integer, got {value!r}.")
    if not _METRIC_MIN <= value <= _METRIC_MAX:
        raise SampleValidationError(
            f"{name} must be between {_METRIC_MIN} and {_METRIC_MAX}, got {value}."
        )
    return value


def parse_sensor_type(value: Union[SensorType, str]) -> SensorType:
    if isinstance(value, SensorType):
        return value
    try:
        return SensorType(str(value).strip().lower())
    except ValueError as exc:
        allowed = ", ".join(member.value for member in SensorType)
        raise SampleValidationError(
            f"Unknown sensor type {value!r}; expected one of: {allowed}."
        ) from exc


class SampleIngestor:
    """Accepts one reading at a time and appends it to the minutely store."""

    def __init__(
        self,
        store: MinutelyStore,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self.store = store
        self._clock = clock

    def ingest(
        self,
        kiosk_id: str,
        temperature: int,
        humidity: int,
        sensor_type: Union[SensorType, str],
        cancel: Optional[Event] = None,
    ) -> MinutelySample:
        if not isinstance(kiosk_id, str) or not kiosk_id.strip():
            raise SampleValidationError("kiosk_id must be a non-empty string.")
        sample = MinutelySample(
            kiosk_id=kiosk_id,
            timestamp=self._clock(),
            temperature=_check_metric("temperature", temperature),
            humidity=_check_metric("humidity", humidity),
            sensor_type=parse_sensor_type(sensor_type),
        )

        if cancel is not None and cancel.is_set():
            raise OperationCancelled(f"Ingestion for kiosk {kiosk_id!r} was cancelled.")

        self.store.append(sample)
        logger.debug(
            "Stored sample",
            extra={"kiosk_id": sample.kiosk_id, "sensor_type": sample.sensor_type.value},
        )
        return sample

