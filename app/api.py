"""HTTP route definitions for the service."""

from __future__ import annotations

from typing import Dict, List

from fastapi import APIRouter, Depends, HTTPException, Query, status

from app.schemas import MinutelyDataPoint
from models.records import DailyStatistic, MinutelySample
from services.errors import SampleValidationError, StorageError
from services.fleet_query import FleetQueryService, build_default_query_service
from services.ingestor import SampleIngestor
from storage.minutely_log import build_default_log

router = APIRouter()


def get_ingestor() -> SampleIngestor:
    return SampleIngestor(build_default_log())


def get_query_service() -> FleetQueryService:
    return build_default_query_service()


@router.get(
    "/temperature/daily",
    response_model=Dict[str, List[DailyStatistic]],
    summary="Daily temperature history for every kiosk that has one.",
)
def get_fleet_daily_history(
    query: FleetQueryService = Depends(get_query_service),
) -> Dict[str, List[DailyStatistic]]:
    try:
        return query.fleet_daily_history()
    except StorageError as exc:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=str(exc),
        ) from exc


@router.post(
    "/temperature/{kiosk_id}",
    status_code=status.HTTP_201_CREATED,
    response_model=MinutelySample,
    summary="Log the temperature and relative humidity for a kiosk.",
)
def log_kiosk_conditions(
    kiosk_id: str,
    temp: int = Query(..., description="Sensor-native temperature, 0-255."),
    humidity: int = Query(..., description="Relative humidity, 0-255."),
    sensor_type: str = Query(..., alias="sensorType", description="Sensor source."),
    ingestor: SampleIngestor = Depends(get_ingestor),
) -> MinutelySample:
    try:
        return ingestor.ingest(kiosk_id, temp, humidity, sensor_type)
    except SampleValidationError as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=str(exc),
        ) from exc
    except StorageError as exc:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=str(exc),
        ) from exc


@router.get(
    "/temperature/{kiosk_id}/recent",
    response_model=List[MinutelyDataPoint],
    summary="Primary-sensor readings for a kiosk over the recent window.",
)
def get_recent_history(
    kiosk_id: str,
    query: FleetQueryService = Depends(get_query_service),
) -> List[MinutelyDataPoint]:
    try:
        samples = query.recent_window(kiosk_id)
    except StorageError as exc:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=str(exc),
        ) from exc
    return [MinutelyDataPoint.from_sample(sample) for sample in samples]


@router.get(
    "/temperature/{kiosk_id}/daily",
    response_model=List[DailyStatistic],
    summary="Daily temperature history for a kiosk.",
)
def get_daily_history(
    kiosk_id: str,
    query: FleetQueryService = Depends(get_query_service),
) -> List[DailyStatistic]:
    try:
        return query.daily_history(kiosk_id)
    except StorageError as exc:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=str(exc),
        ) from exc


@router.get(
    "/health",
    summary="Health check endpoint.",
    status_code=status.HTTP_200_OK,
)
async def healthcheck() -> dict[str, str]:
    return {"status": "ok"}


@router.get(
    "/",
    summary="Root endpoint mirrors health information.",
    status_code=status.HTTP_200_OK,
)
async def root() -> dict[str, str]:
    return {"status": "ok", "detail": "See /health for service status."}
