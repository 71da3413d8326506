"""Timeout, retry and circuit-breaker policy for outbound telemetry calls."""

from __future__ import annotations

import logging
import random
import time
from collections import deque
from dataclasses import dataclass
from enum import Enum
from threading import Event, Lock
from typing import Callable, Deque, Dict, Optional, Tuple, TypeVar

from services.errors import AttemptTimeoutError, CircuitOpenError, FetchError, OperationCancelled

logger = logging.getLogger(__name__)

T = TypeVar("T")


class CircuitState(str, Enum):
    closed = "closed"
    open = "open"
    half_open = "half_open"


@dataclass(frozen=True)
class ResilienceConfig:
    attempt_timeout: float = 2.0
    total_timeout: float = 10.0
    max_retries: int = 3
    base_delay: float = 0.5
    backoff_factor: float = 2.0
    jitter: bool = True
    failure_ratio: float = 0.75
    minimum_throughput: int = 4
    sampling_seconds: float = 60.0
    break_seconds: float = 120.0


@dataclass(frozen=True)
class ResilienceState:
    """Point-in-time view of one target's circuit."""

    state: CircuitState
    window_failure_ratio: float
    window_sample_count: int
    opened_at: Optional[float]


class CircuitBreaker:
    """Failure-ratio circuit breaker over a rolling time window.

    Closed: calls pass and outcomes are recorded. Once the window holds at
    least ``minimum_throughput`` outcomes with a failure ratio of at least
    ``failure_ratio`` the circuit opens. Open: calls are refused until
    ``break_seconds`` have elapsed, then a single trial call is let through
    (half-open). The trial's outcome closes or re-opens the circuit.
    """

    def __init__(
        self,
        name: str,
        config: Optional[ResilienceConfig] = None,
        monotonic: Callable[[], float] = time.monotonic,
    ) -> None:
        self.name = name
        self._config = config or ResilienceConfig()
        self._monotonic = monotonic
        self._state = CircuitState.closed
        self._outcomes: Deque[Tuple[float, bool]] = deque()
        self._opened_at: Optional[float] = None
        self._trial_in_flight = False
        self._lock = Lock()

    @property
    def state(self) -> CircuitState:
        with self._lock:
            self._refresh(self._monotonic())
            return self._state

    def snapshot(self) -> ResilienceState:
        with self._lock:
            self._refresh(self._monotonic())
            count = len(self._outcomes)
            failures = sum(1 for _, failed in self._outcomes if failed)
            return ResilienceState(
                state=self._state,
                window_failure_ratio=failures / count if count else 0.0,
                window_sample_count=count,
                opened_at=self._opened_at,
            )

    def before_call(self) -> None:
        """Admit a call or raise :class:`CircuitOpenError` without side effects."""
        with self._lock:
            now = self._monotonic()
            self._refresh(now)
            if self._state is CircuitState.open:
                raise CircuitOpenError(self.name, self._remaining(now))
            if self._state is CircuitState.half_open:
                if self._trial_in_flight:
                    raise CircuitOpenError(self.name, 0.0)
                self._trial_in_flight = True

    def record_success(self) -> None:
        with self._lock:
            now = self._monotonic()
            if self._state is CircuitState.half_open:
                self._close()
                logger.info("Circuit recovered", extra={"target": self.name, "state": "closed"})
            elif self._state is CircuitState.closed:
                self._record(now, failed=False)

    def record_failure(self) -> None:
        with self._lock:
            now = self._monotonic()
            if self._state is CircuitState.half_open:
                self._open(now)
                logger.warning(
                    "Circuit trial call failed; reopening",
                    extra={"target": self.name, "state": "open"},
                )
            elif self._state is CircuitState.closed:
                self._record(now, failed=True)
                count = len(self._outcomes)
                failures = sum(1 for _, failed in self._outcomes if failed)
                if count >= self._config.minimum_throughput and (
                    failures / count >= self._config.failure_ratio
                ):
                    self._open(now)
                    logger.warning(
                        "Circuit opened after %d/%d failed calls",
                        failures,
                        count,
                        extra={"target": self.name, "state": "open"},
                    )

    def reset(self) -> None:
        with self._lock:
            self._close()

    def _refresh(self, now: float) -> None:
        if self._state is CircuitState.open and self._opened_at is not None:
            if now - self._opened_at >= self._config.break_seconds:
                self._state = CircuitState.half_open
                self._trial_in_flight = False
                logger.info("Circuit half-open", extra={"target": self.name, "state": "half_open"})
        self._prune(now)

    def _record(self, now: float, failed: bool) -> None:
        self._outcomes.append((now, failed))
        self._prune(now)

    def _prune(self, now: float) -> None:
        horizon = now - self._config.sampling_seconds
        while self._outcomes and self._outcomes[0][0] <= horizon:
            self._outcomes.popleft()

    def _open(self, now: float) -> None:
        self._state = CircuitState.open
        self._opened_at = now
        self._trial_in_flight = False
        self._outcomes.clear()

    def _close(self) -> None:
        self._state = CircuitState.closed
        self._opened_at = None
        self._trial_in_flight = False
        self._outcomes.clear()

    def _remaining(self, now: float) -> float:
        if self._opened_at is None:
            return 0.0
        return max(0.0, self._config.break_seconds - (now - self._opened_at))


class ResiliencePolicy:
    """Runs an operation under attempt timeout, retry and a per-target breaker.

    ``operation`` receives the timeout in seconds it must honour for the
    attempt. It signals failure by raising :class:`FetchError`; an attempt
    that returns after its timeout is also counted as a failure.
    """

    def __init__(
        self,
        config: Optional[ResilienceConfig] = None,
        monotonic: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
        rng: Optional[random.Random] = None,
    ) -> None:
        self.config = config or ResilienceConfig()
        self._monotonic = monotonic
        self._sleep = sleep
        self._rng = rng or random.Random()
        self._breakers: Dict[str, CircuitBreaker] = {}
        self._breakers_lock = Lock()

    def breaker_for(self, target: str) -> CircuitBreaker:
        with self._breakers_lock:
            breaker = self._breakers.get(target)
            if breaker is None:
                breaker = CircuitBreaker(target, self.config, monotonic=self._monotonic)
                self._breakers[target] = breaker
            return breaker

    def backoff_delay(self, retry_number: int) -> float:
        """Delay before retry ``retry_number`` (1-indexed)."""
        delay = self.config.base_delay * (self.config.backoff_factor ** (retry_number - 1))
        if self.config.jitter:
            jitter_range = delay * 0.25
            delay += self._rng.uniform(-jitter_range, jitter_range)
        return max(0.0, delay)

    def execute(
        self,
        target: str,
        operation: Callable[[float], T],
        cancel: Optional[Event] = None,
    ) -> T:
        breaker = self.breaker_for(target)
        deadline = self._monotonic() + self.config.total_timeout
        last_error: Optional[FetchError] = None

        for attempt in range(1, self.config.max_retries + 2):
            if cancel is not None and cancel.is_set():
                raise OperationCancelled(f"Call to {target!r} was cancelled.")
            remaining = deadline - self._monotonic()
            if remaining <= 0:
                break

            breaker.before_call()
            timeout = min(self.config.attempt_timeout, remaining)
            started = self._monotonic()
            try:
                result = operation(timeout)
            except FetchError as exc:
                breaker.record_failure()
                last_error = exc
            except Exception:
                breaker.record_failure()
                raise
            else:
                if self._monotonic() - started > timeout:
                    breaker.record_failure()
                    last_error = AttemptTimeoutError(
                        f"Attempt {attempt} against {target!r} exceeded {timeout:.2f}s."
                    )
                else:
                    breaker.record_success()
                    return result

            if attempt > self.config.max_retries:
                break
            delay = self.backoff_delay(attempt)
            if self._monotonic() + delay >= deadline:
                break
            logger.warning(
                "Retrying after %.2fs: %s",
                delay,
                last_error,
                extra={"target": target, "attempt": attempt},
            )
            if cancel is not None:
                if cancel.wait(delay):
                    raise OperationCancelled(f"Call to {target!r} was cancelled.")
            else:
                self._sleep(delay)

        if last_error is None:
            last_error = AttemptTimeoutError(
                f"Total timeout of {self.config.total_timeout:.1f}s exceeded for {target!r}."
            )
        logger.error(
            "Giving up on %s: %s",
            target,
            last_error,
            extra={"target": target, "reason": type(last_error).__name__},
        )
        raise last_error
