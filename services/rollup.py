"""Daily rollup of minutely samples into per-kiosk statistics."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta, timezone, tzinfo
from functools import lru_cache
from threading import Event
from typing import Callable, Dict, List, Optional, Tuple

from datastore.daily_table import DailyStore, build_default_table
from models.records import DailyStatistic
from services.aggregator import Aggregator
from services.errors import OperationCancelled
from settings import get_settings
from storage.minutely_log import MinutelyStore, build_default_log

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _raise_if_cancelled(cancel: Optional[Event], operation: str) -> None:
    if cancel is not None and cancel.is_set():
        raise OperationCancelled(f"{operation} was cancelled.")


@dataclass
class RollupReport:
    """Outcome of one fleet-wide rollup run."""

    day: date
    written: List[str] = field(default_factory=list)
    empty: List[str] = field(default_factory=list)
    failed: Dict[str, str] = field(default_factory=dict)
    cancelled: bool = False


class DailyRollupService:
    """Turns each completed kiosk-day into one :class:`DailyStatistic`.

    Days are calendar days in ``tz``, a single fleet-wide zone. Only days
    that have fully ended in that zone are aggregated, so the samples being
    read can no longer change.
    """

    def __init__(
        self,
        minutely: MinutelyStore,
        daily: DailyStore,
        aggregator: Aggregator,
        tz: tzinfo = timezone.utc,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self.minutely = minutely
        self.daily = daily
        self.aggregator = aggregator
        self.tz = tz
        self._clock = clock

    def day_bounds(self, day: date) -> Tuple[datetime, datetime]:
        start = datetime.combine(day, time.min, tzinfo=self.tz)
        end = datetime.combine(day + timedelta(days=1), time.min, tzinfo=self.tz)
        return start.astimezone(timezone.utc), end.astimezone(timezone.utc)

    def last_completed_day(self, now: Optional[datetime] = None) -> date:
        current = now or self._clock()
        return current.astimezone(self.tz).date() - timedelta(days=1)

    def _require_completed(self, day: date) -> None:
        if day > self.last_completed_day():
            raise ValueError(f"Day {day.isoformat()} has not completed yet.")

    def aggregate_kiosk_day(
        self, kiosk_id: str, day: date, cancel: Optional[Event] = None
    ) -> Optional[DailyStatistic]:
        self._require_completed(day)
        _raise_if_cancelled(cancel, f"Aggregation of kiosk {kiosk_id!r} for {day.isoformat()}")
        start, end = self.day_bounds(day)
        samples = self.minutely.query_range(kiosk_id, start, end)
        summary = self.aggregator.aggregate(samples)
        if summary is None:
            logger.debug(
                "No samples to aggregate",
                extra={"kiosk_id": kiosk_id, "day": day.isoformat()},
            )
            return None

        statistic = DailyStatistic(
            kiosk_id=kiosk_id,
            date=day,
            sensor_type=summary.sensor_type,
            sample_count=summary.sample_count,
            min_temperature=summary.temperature.minimum,
            max_temperature=summary.temperature.maximum,
            mean_temperature=summary.temperature.mean,
            min_humidity=summary.humidity.minimum,
            max_humidity=summary.humidity.maximum,
            mean_humidity=summary.humidity.mean,
        )
        _raise_if_cancelled(cancel, f"Aggregation of kiosk {kiosk_id!r} for {day.isoformat()}")
        self.daily.upsert(statistic)
        return statistic

    def run_for_day(self, day: date, cancel: Optional[Event] = None) -> RollupReport:
        self._require_completed(day)
        report = RollupReport(day=day)
        kiosk_ids = sorted(self.minutely.list_active_kiosk_ids())

        for kiosk_id in kiosk_ids:
            if cancel is not None and cancel.is_set():
                report.cancelled = True
                logger.warning(
                    "Rollup cancelled before all kiosks were processed",
                    extra={"day": day.isoformat(), "kiosk_id": kiosk_id},
                )
                break
            try:
                statistic = self.aggregate_kiosk_day(kiosk_id, day)
            except Exception as exc:
                report.failed[kiosk_id] = str(exc)
                logger.exception(
                    "Daily aggregation failed for kiosk",
                    extra={"kiosk_id": kiosk_id, "day": day.isoformat(), "reason": str(exc)},
                )
                continue
            if statistic is None:
                report.empty.append(kiosk_id)
            else:
                report.written.append(kiosk_id)

        logger.info(
            "Daily rollup finished",
            extra={
                "day": day.isoformat(),
                "written_count": len(report.written),
                "failed_count": len(report.failed),
            },
        )
        return report

    def run_previous_day(
        self, now: Optional[datetime] = None, cancel: Optional[Event] = None
    ) -> RollupReport:
        return self.run_for_day(self.last_completed_day(now), cancel=cancel)


@lru_cache
def build_default_rollup() -> DailyRollupService:
    """Factory that wires the rollup with the default stores."""
    settings = get_settings()
    return DailyRollupService(
        minutely=build_default_log(),
        daily=build_default_table(),
        aggregator=Aggregator(),
        tz=settings.tzinfo,
    )
