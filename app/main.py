from __future__ import annotations
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

from fastapi import FastAPI

from app.api import router
from logging_config import configure_logging
from services.fetcher import build_default_fetcher
from services.fleet_query import build_default_query_service
from services.rollup import build_default_rollup
from services.scheduler import TelemetryScheduler
from settings import get_settings


def build_scheduler() -> Optional[TelemetryScheduler]:
    settings = get_settings()
    if not settings.scheduler_enabled:
        return None
    fetcher, targets = build_default_fetcher()
    return TelemetryScheduler(
        rollup=build_default_rollup(),
        settings=settings,
        fetcher=fetcher,
        targets=targets,
    )


@asynccontextmanager
async def lifespan(_app: FastAPI) -> AsyncIterator[None]:
    query_service = build_default_query_service()
    scheduler = build_scheduler()
    if scheduler is not None:
        scheduler.start()
    try:
        yield
    finally:
        if scheduler is not None:
            scheduler.shutdown()
            build_default_fetcher.cache_clear()
        query_service.shutdown()
        build_default_query_service.cache_clear()


def create_app() -> FastAPI:
    configure_logging()
    app = FastAPI(
        title="Kiosk Telemetry",
        description="Kiosk temperature and humidity ingestion, daily rollup and fleet queries.",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.include_router(router)
    return app

app = create_app()
