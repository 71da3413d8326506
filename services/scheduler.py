"""Background jobs: nightly rollup and cooling-unit polling."""

from __future__ import annotations

import logging
from threading import Event
from typing import Optional, Sequence

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger

from services.fetcher import CoolingUnitFetcher
from services.rollup import DailyRollupService
from settings import CoolingUnitTarget, Settings

logger = logging.getLogger(__name__)

ROLLUP_JOB_ID = "daily_rollup"
POLL_JOB_ID = "cooling_unit_poll"


class TelemetryScheduler:
    """Owns the APScheduler instance that drives periodic work.

    Each job run is independent: an exception is logged and the next
    scheduled run proceeds normally.
    """

    def __init__(
        self,
        rollup: DailyRollupService,
        settings: Settings,
        fetcher: Optional[CoolingUnitFetcher] = None,
        targets: Sequence[CoolingUnitTarget] = (),
        scheduler: Optional[BackgroundScheduler] = None,
    ) -> None:
        self.rollup = rollup
        self.settings = settings
        self.fetcher = fetcher
        self.targets = tuple(targets)
        self.scheduler = scheduler or BackgroundScheduler(timezone=settings.tzinfo)
        self._stopping = Event()

    def start(self) -> None:
        self.scheduler.add_job(
            self.run_rollup,
            trigger=CronTrigger(
                hour=self.settings.rollup_hour,
                minute=self.settings.rollup_minute,
                timezone=self.settings.tzinfo,
            ),
            id=ROLLUP_JOB_ID,
            replace_existing=True,
            max_instances=1,
            coalesce=True,
        )
        if self.fetcher is not None and self.targets:
            self.scheduler.add_job(
                self.run_poll,
                trigger=IntervalTrigger(seconds=self.settings.cooling_unit_poll_seconds),
                id=POLL_JOB_ID,
                replace_existing=True,
                max_instances=1,
                coalesce=True,
            )
        self.scheduler.start()
        logger.info("Scheduler started with %d poll target(s)", len(self.targets))

    def shutdown(self) -> None:
        self._stopping.set()
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
        if self.fetcher is not None:
            self.fetcher.close()

    def run_rollup(self) -> None:
        try:
            report = self.rollup.run_previous_day(cancel=self._stopping)
        except Exception:
            logger.exception("Scheduled daily rollup failed")
            return
        if report.failed:
            logger.warning(
                "Daily rollup skipped %d kiosk(s)",
                len(report.failed),
                extra={"day": report.day.isoformat(), "failed_count": len(report.failed)},
            )

    def run_poll(self) -> None:
        if self.fetcher is None:
            return
        try:
            self.fetcher.poll_all(self.targets, cancel=self._stopping)
        except Exception:
            logger.exception("Scheduled cooling unit poll failed")
