"""Aggregation logic for minutely samples."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, List, Optional

from models.records import SENSOR_PREFERENCE, MinutelySample, SensorType


@dataclass(frozen=True)
class MetricSummary:
    minimum: int
    maximum: int
    mean: int


@dataclass(frozen=True)
class DailySummary:
    """Computed statistics for one kiosk-day of a single sensor type."""

    sensor_type: SensorType
    sample_count: int
    temperature: MetricSummary
    humidity: MetricSummary


def rounded_mean(total: int, count: int) -> int:
    """Nearest integer to ``total / count``, halves rounded up.

    Integer arithmetic keeps the result exact for any non-negative total.
    """
    return (2 * total + count) // (2 * count)


def _summarize(values: List[int]) -> MetricSummary:
    return MetricSummary(
        minimum=min(values),
        maximum=max(values),
        mean=rounded_mean(sum(values), len(values)),
    )


class Aggregator:
    """Pure aggregation component that can be unit tested in isolation."""

    def canonical_sensor_type(self, samples: Iterable[MinutelySample]) -> Optional[SensorType]:
        present = {sample.sensor_type for sample in samples}
        for sensor_type in SENSOR_PREFERENCE:
            if sensor_type in present:
                return sensor_type
        return None

    def aggregate(self, samples: Iterable[MinutelySample]) -> Optional[DailySummary]:
        """Summarize the canonical-type samples, or ``None`` if there are none."""
        items = list(samples)
        sensor_type = self.canonical_sensor_type(items)
        if sensor_type is None:
            return None

        selected = [sample for sample in items if sample.sensor_type is sensor_type]
        return DailySummary(
            sensor_type=sensor_type,
            sample_count=len(selected),
            temperature=_summarize([sample.temperature for sample in selected]),
            humidity=_summarize([sample.humidity for sample in selected]),
        )
