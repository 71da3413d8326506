"""Unit tests for the aggregation logic."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

from models.records import MinutelySample, SensorType
from services.aggregator import Aggregator, rounded_mean


def _sample(
    temperature: int,
    humidity: int,
    sensor_type: SensorType = SensorType.primary,
    minute: int = 0,
) -> MinutelySample:
    """Helper to build deterministic samples."""

    return MinutelySample(
        kiosk_id="K1",
        timestamp=datetime(2024, 1, 1, tzinfo=timezone.utc) + timedelta(minutes=minute),
        temperature=temperature,
        humidity=humidity,
        sensor_type=sensor_type,
    )


def test_aggregate_empty_iterable_returns_none() -> None:
    aggregator = Aggregator()

    assert aggregator.aggregate([]) is None


def test_aggregate_computes_statistics() -> None:
    aggregator = Aggregator()
    samples = [_sample(70, 40, minute=0), _sample(74, 44, minute=1), _sample(72, 45, minute=2)]

    summary = aggregator.aggregate(samples)

    assert summary is not None
    assert summary.sensor_type is SensorType.primary
    assert summary.sample_count == 3
    assert (summary.temperature.minimum, summary.temperature.mean, summary.temperature.maximum) == (70, 72, 74)
    assert (summary.humidity.minimum, summary.humidity.mean, summary.humidity.maximum) == (40, 43, 45)


def test_aggregate_prefers_primary_and_never_mixes_types() -> None:
    aggregator = Aggregator()
    samples = [
        _sample(60, 30, SensorType.cooling_unit, minute=0),
        _sample(80, 50, SensorType.primary, minute=1),
        _sample(10, 10, SensorType.cooling_unit, minute=2),
    ]

    summary = aggregator.aggregate(samples)

    assert summary is not None
    assert summary.sensor_type is SensorType.primary
    assert summary.sample_count == 1
    assert summary.temperature.minimum == summary.temperature.maximum == 80


def test_aggregate_falls_back_to_only_available_type() -> None:
    aggregator = Aggregator()
    samples = [_sample(60, 30, SensorType.cooling_unit), _sample(61, 31, SensorType.cooling_unit, minute=1)]

    summary = aggregator.aggregate(samples)

    assert summary is not None
    assert summary.sensor_type is SensorType.cooling_unit
    assert summary.sample_count == 2


def test_rounded_mean_rounds_halves_up() -> None:
    assert rounded_mean(3, 2) == 2
    assert rounded_mean(5, 2) == 3
    assert rounded_mean(10, 4) == 3
    assert rounded_mean(7, 3) == 2
    assert rounded_mean(0, 5) == 0


def test_mean_stays_within_bounds_for_extremes() -> None:
    aggregator = Aggregator()
    samples = [_sample(0, 255, minute=0), _sample(255, 0, minute=1), _sample(255, 255, minute=2)]

    summary = aggregator.aggregate(samples)

    assert summary is not None
    for metric in (summary.temperature, summary.humidity):
        assert metric.minimum <= metric.mean <= metric.maximum
