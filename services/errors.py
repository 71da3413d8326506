"""Exception hierarchy for ingestion, storage and outbound fetches."""

from __future__ import annotations


class TelemetryError(Exception):
    """Base class for all service errors."""


class SampleValidationError(TelemetryError, ValueError):
    """Inbound reading failed validation; nothing was stored."""


class StorageError(TelemetryError):
    """A store was unavailable or rejected a write."""


class OperationCancelled(TelemetryError):
    """The caller's cancel signal was set before the work committed."""


class FetchError(TelemetryError):
    """Base class for failures talking to an external telemetry API."""


class NetworkError(FetchError):
    pass


class AttemptTimeoutError(FetchError):
    pass


class TelemetryParseError(FetchError):
    """The device answered but the payload was unusable."""


class CircuitOpenError(FetchError):

    def __init__(self, target: str, remaining_seconds: float) -> None:
        self.target = target
        self.remaining_seconds = remaining_seconds
        super().__init__(
            f"Circuit for {target!r} is open. Retry in {remaining_seconds:.1f}s"
        )
