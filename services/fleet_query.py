"""Per-kiosk and fleet-wide retrieval of samples and daily statistics."""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from datetime import datetime, time, timedelta, timezone, tzinfo
from functools import lru_cache
from threading import Event
from typing import Callable, Dict, List, Optional, Union

from datastore.daily_table import DailyStore, build_default_table
from models.records import CANONICAL_SENSOR_TYPE, DailyStatistic, MinutelySample
from services.errors import OperationCancelled
from settings import get_settings
from storage.minutely_log import MinutelyStore, build_default_log

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class KioskHistory:
    kiosk_id: str
    statistics: List[DailyStatistic]


@dataclass(frozen=True)
class KioskFailure:
    kiosk_id: str
    reason: str


KioskResult = Union[KioskHistory, KioskFailure]


class FleetQueryService:
    """Read side of the service.

    Single-kiosk queries let store errors propagate to the caller. The fleet
    query turns every kiosk's outcome into a :class:`KioskResult` so that one
    kiosk failing only removes that kiosk from the response.
    """

    def __init__(
        self,
        minutely: MinutelyStore,
        daily: DailyStore,
        tz: tzinfo = timezone.utc,
        recent_days: int = 30,
        workers: int = 4,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self.minutely = minutely
        self.daily = daily
        self.tz = tz
        self.recent_days = recent_days
        self.executor = ThreadPoolExecutor(max_workers=workers)
        self._clock = clock

    def recent_window(self, kiosk_id: str, cancel: Optional[Event] = None) -> List[MinutelySample]:
        """Canonical-sensor samples from midnight ``recent_days`` ago until now."""
        if cancel is not None and cancel.is_set():
            raise OperationCancelled(f"Recent window query for kiosk {kiosk_id!r} was cancelled.")
        now = self._clock()
        first_day = now.astimezone(self.tz).date() - timedelta(days=self.recent_days)
        start = datetime.combine(first_day, time.min, tzinfo=self.tz).astimezone(timezone.utc)
        samples = self.minutely.query_range(kiosk_id, start, now + timedelta(microseconds=1))
        return [sample for sample in samples if sample.sensor_type is CANONICAL_SENSOR_TYPE]

    def daily_history(self, kiosk_id: str, cancel: Optional[Event] = None) -> List[DailyStatistic]:
        if cancel is not None and cancel.is_set():
            raise OperationCancelled(f"Daily history query for kiosk {kiosk_id!r} was cancelled.")
        return self.daily.get_by_kiosk(kiosk_id)

    def fleet_results(self, cancel: Optional[Event] = None) -> List[KioskResult]:
        kiosk_ids = sorted(self.minutely.list_active_kiosk_ids())
        futures = [
            self.executor.submit(self._kiosk_result, kiosk_id, cancel) for kiosk_id in kiosk_ids
        ]
        return [future.result() for future in futures]

    def fleet_daily_history(self, cancel: Optional[Event] = None) -> Dict[str, List[DailyStatistic]]:
        results = self.fleet_results(cancel)
        if cancel is not None and cancel.is_set():
            raise OperationCancelled("Fleet daily history query was cancelled.")

        history: Dict[str, List[DailyStatistic]] = {}
        for result in results:
            if isinstance(result, KioskFailure):
                continue
            if result.statistics:
                history[result.kiosk_id] = result.statistics
        return history

    def shutdown(self) -> None:
        self.executor.shutdown(wait=False, cancel_futures=True)

    def _kiosk_result(self, kiosk_id: str, cancel: Optional[Event]) -> KioskResult:
        if cancel is not None and cancel.is_set():
            return KioskFailure(kiosk_id=kiosk_id, reason="cancelled")
        try:
            statistics = self.daily.get_by_kiosk(kiosk_id)
        except Exception as exc:
            logger.error(
                "Error getting daily statistics for kiosk",
                exc_info=exc,
                extra={"kiosk_id": kiosk_id, "reason": str(exc)},
            )
            return KioskFailure(kiosk_id=kiosk_id, reason=str(exc))
        return KioskHistory(kiosk_id=kiosk_id, statistics=list(statistics))


@lru_cache
def build_default_query_service() -> FleetQueryService:
    """Factory that wires the query service with the default stores."""
    settings = get_settings()
    return FleetQueryService(
        minutely=build_default_log(),
        daily=build_default_table(),
        tz=settings.tzinfo,
        recent_days=settings.recent_window_days,
        workers=settings.query_workers,
    )
