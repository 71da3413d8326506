from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache
from typing import Optional, Tuple
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError


_MINUTELY_ROOT_ENV = "MINUTELY_STORE_ROOT_PATH"
_DAILY_PATH_ENV = "DAILY_STORE_PERSISTENCE_PATH"
_ROLLUP_TIMEZONE_ENV = "ROLLUP_TIMEZONE"
_ROLLUP_HOUR_ENV = "ROLLUP_HOUR"
_ROLLUP_MINUTE_ENV = "ROLLUP_MINUTE"
_RECENT_DAYS_ENV = "RECENT_WINDOW_DAYS"
_QUERY_WORKERS_ENV = "QUERY_WORKER_COUNT"
_TARGETS_ENV = "COOLING_UNIT_TARGETS"
_POLL_SECONDS_ENV = "COOLING_UNIT_POLL_SECONDS"
_ENTITY_IDS_ENV = "COOLING_UNIT_ENTITY_IDS"
_SCHEDULER_ENV = "SCHEDULER_ENABLED"
_LOG_LEVEL_ENV = "LOG_LEVEL"


@dataclass(frozen=True)
class CoolingUnitTarget:
    kiosk_id: str
    url: str


@dataclass(frozen=True)
class Settings:
    minutely_root_path: Optional[str]
    daily_persistence_path: Optional[str]
    rollup_timezone: str
    rollup_hour: int
    rollup_minute: int
    recent_window_days: int
    query_workers: int
    cooling_unit_targets: Tuple[CoolingUnitTarget, ...]
    cooling_unit_poll_seconds: int
    cooling_unit_entity_ids: Tuple[str, ...]
    scheduler_enabled: bool
    log_level: str

    @property
    def tzinfo(self) -> ZoneInfo:
        return ZoneInfo(self.rollup_timezone)


def _read_optional_env(name: str, default: Optional[str]) -> Optional[str]:
    value = os.getenv(name)
    if value is None:
        return default
    candidate = value.strip()
    return candidate or None


def _read_int_env(name: str, default: int, minimum: int = 1, maximum: Optional[int] = None) -> int:
    value = os.getenv(name)
    if value is None:
        return default
    candidate = value.strip()
    if not candidate:
        return default
    try:
        parsed = int(candidate)
    except ValueError:
        return default
    if parsed < minimum:
        return default
    if maximum is not None and parsed > maximum:
        return default
    return parsed


def _read_bool_env(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    candidate = value.strip().lower()
    if candidate in {"1", "true", "yes", "on"}:
        return True
    if candidate in {"0", "false", "no", "off"}:
        return False
    return default


def _read_timezone(default: str) -> str:
    value = os.getenv(_ROLLUP_TIMEZONE_ENV)
    if value is None:
        return default
    candidate = value.strip()
    if not candidate:
        return default
    try:
        ZoneInfo(candidate)
    except (ZoneInfoNotFoundError, ValueError):
        return default
    return candidate


def _read_list_env(name: str) -> Tuple[str, ...]:
    value = os.getenv(name) or ""
    return tuple(part.strip() for part in value.split(",") if part.strip())


def _read_targets() -> Tuple[CoolingUnitTarget, ...]:
    """Parse ``kiosk_id=url`` pairs, silently skipping malformed entries."""
    targets: list[CoolingUnitTarget] = []
    for entry in _read_list_env(_TARGETS_ENV):
        kiosk_id, sep, url = entry.partition("=")
        if not sep or not kiosk_id.strip() or not url.strip():
            continue
        targets.append(CoolingUnitTarget(kiosk_id=kiosk_id.strip(), url=url.strip()))
    return tuple(targets)


def _read_log_level(default: str) -> str:
    value = os.getenv(_LOG_LEVEL_ENV)
    if value is None:
        return default
    candidate = value.strip()
    if not candidate:
        return default
    return candidate.upper()


@lru_cache
def get_settings() -> Settings:
    return Settings(
        minutely_root_path=_read_optional_env(_MINUTELY_ROOT_ENV, "./tmp/minutely"),
        daily_persistence_path=_read_optional_env(_DAILY_PATH_ENV, "./tmp/daily.json"),
        rollup_timezone=_read_timezone("UTC"),
        rollup_hour=_read_int_env(_ROLLUP_HOUR_ENV, 0, minimum=0, maximum=23),
        rollup_minute=_read_int_env(_ROLLUP_MINUTE_ENV, 15, minimum=0, maximum=59),
        recent_window_days=_read_int_env(_RECENT_DAYS_ENV, 30),
        query_workers=_read_int_env(_QUERY_WORKERS_ENV, 4),
        cooling_unit_targets=_read_targets(),
        cooling_unit_poll_seconds=_read_int_env(_POLL_SECONDS_ENV, 60),
        cooling_unit_entity_ids=_read_list_env(_ENTITY_IDS_ENV),
        scheduler_enabled=_read_bool_env(_SCHEDULER_ENV, True),
        log_level=_read_log_level("INFO"),
    )
