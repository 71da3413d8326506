"""Polls building cooling-unit telemetry APIs and feeds readings to the ingestor."""

from __future__ import annotations

import logging
import math
import time
from dataclasses import dataclass
from functools import lru_cache
from threading import Event
from typing import Callable, Iterable, List, Optional, Sequence, Tuple

import httpx
from pydantic import ValidationError

from models.records import MinutelySample, SensorType
from models.telemetry import SensorResponse
from services.errors import (
    AttemptTimeoutError,
    NetworkError,
    TelemetryParseError,
)
from services.ingestor import SampleIngestor
from services.resilience import ResiliencePolicy
from settings import CoolingUnitTarget, get_settings
from storage.minutely_log import build_default_log

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Conditions:
    temperature: float
    humidity: float


@dataclass(frozen=True)
class PollOutcome:
    target: CoolingUnitTarget
    sample: Optional[MinutelySample] = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.sample is not None


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def _measurement_kind(measurement_type: Optional[str]) -> Optional[str]:
    if not measurement_type:
        return None
    lowered = measurement_type.lower()
    if "temp" in lowered:
        return "temperature"
    if "humid" in lowered:
        return "humidity"
    return None


class CoolingUnitFetcher:
    """Reads one cooling unit per target and stores it as a kiosk sample."""

    def __init__(
        self,
        ingestor: SampleIngestor,
        policy: ResiliencePolicy,
        client: Optional[httpx.Client] = None,
        entity_ids: Sequence[str] = (),
        monotonic: Callable[[], float] = time.monotonic,
    ) -> None:
        self.ingestor = ingestor
        self.policy = policy
        self._client = client or httpx.Client()
        self._entity_ids = frozenset(entity_ids)
        self._monotonic = monotonic

    def close(self) -> None:
        self._client.close()

    def fetch(self, target: CoolingUnitTarget, cancel: Optional[Event] = None) -> SensorResponse:
        """GET the target's telemetry document under the resilience policy."""

        def attempt(timeout: float) -> SensorResponse:
            return self.parse_response(self._read_body(target, timeout))

        return self.policy.execute(target.url, attempt, cancel=cancel)

    def _read_body(self, target: CoolingUnitTarget, timeout: float) -> bytes:
        """Stream the body, aborting once ``timeout`` seconds of wall clock have passed.

        The httpx timeout bounds each network step, not the whole response.
        """
        deadline = self._monotonic() + timeout
        chunks: List[bytes] = []
        try:
            with self._client.stream("GET", target.url, timeout=timeout) as response:
                response.raise_for_status()
                for chunk in response.iter_bytes():
                    if self._monotonic() > deadline:
                        raise AttemptTimeoutError(
                            f"Timed out reading {target.url} after {timeout:.2f}s."
                        )
                    chunks.append(chunk)
        except httpx.TimeoutException as exc:
            raise AttemptTimeoutError(f"Timed out polling {target.url}: {exc}") from exc
        except httpx.HTTPStatusError as exc:
            raise NetworkError(
                f"{target.url} answered with status {exc.response.status_code}"
            ) from exc
        except httpx.HTTPError as exc:
            raise NetworkError(f"Could not reach {target.url}: {exc}") from exc
        if self._monotonic() > deadline:
            raise AttemptTimeoutError(f"Timed out reading {target.url} after {timeout:.2f}s.")
        return b"".join(chunks)

    @staticmethod
    def parse_response(payload: bytes | str) -> SensorResponse:
        try:
            document = SensorResponse.model_validate_json(payload)
        except ValidationError as exc:
            raise TelemetryParseError(f"Malformed telemetry document: {exc}") from exc
        if not document.ok:
            raise NetworkError(
                f"Device API reported retCode={document.ret_code}: {document.ret_msg or 'no message'}"
            )
        return document

    def extract_conditions(self, document: SensorResponse) -> Conditions:
        """Pick the first temperature and humidity measurement in id order."""
        found: dict[str, float] = {}
        for _device_id, device in sorted(document.data.items()):
            for entity_id, entity in sorted(device.entities.items()):
                if self._entity_ids and entity_id not in self._entity_ids:
                    continue
                for _measurement_id, measurement in sorted(entity.measurements.items()):
                    kind = _measurement_kind(measurement.type)
                    if kind is not None and kind not in found:
                        found[kind] = measurement.value
        missing = sorted({"temperature", "humidity"} - found.keys())
        if missing:
            raise TelemetryParseError(
                f"Telemetry document has no {' or '.join(missing)} measurement."
            )
        return Conditions(temperature=found["temperature"], humidity=found["humidity"])

    def poll(self, target: CoolingUnitTarget, cancel: Optional[Event] = None) -> MinutelySample:
        document = self.fetch(target, cancel=cancel)
        conditions = self.extract_conditions(document)
        return self.ingestor.ingest(
            kiosk_id=target.kiosk_id,
            temperature=_round_half_up(conditions.temperature),
            humidity=_round_half_up(conditions.humidity),
            sensor_type=SensorType.cooling_unit,
            cancel=cancel,
        )

    def poll_all(
        self, targets: Iterable[CoolingUnitTarget], cancel: Optional[Event] = None
    ) -> List[PollOutcome]:
        """Poll every target; a failed target is logged and skipped."""
        outcomes: List[PollOutcome] = []
        for target in targets:
            if cancel is not None and cancel.is_set():
                break
            try:
                sample = self.poll(target, cancel=cancel)
            except Exception as exc:
                logger.warning(
                    "Cooling unit poll failed: %s",
                    exc,
                    extra={
                        "kiosk_id": target.kiosk_id,
                        "target": target.url,
                        "reason": type(exc).__name__,
                    },
                )
                outcomes.append(PollOutcome(target=target, error=str(exc)))
                continue
            outcomes.append(PollOutcome(target=target, sample=sample))
        return outcomes


@lru_cache
def build_default_fetcher() -> Tuple[CoolingUnitFetcher, Tuple[CoolingUnitTarget, ...]]:
    """Factory that wires the fetcher with the default log and configured targets."""
    settings = get_settings()
    fetcher = CoolingUnitFetcher(
        ingestor=SampleIngestor(build_default_log()),
        policy=ResiliencePolicy(),
        entity_ids=settings.cooling_unit_entity_ids,
    )
    return fetcher, settings.cooling_unit_targets
