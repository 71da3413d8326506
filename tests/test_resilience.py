from __future__ import annotations

import logging
import random
import threading
from concurrent.futures import ThreadPoolExecutor
from typing import List

import pytest

from services.errors import AttemptTimeoutError, CircuitOpenError, NetworkError, OperationCancelled
from services.resilience import CircuitBreaker, CircuitState, ResilienceConfig, ResiliencePolicy


class FakeClock:
    def __init__(self, start: float = 1000.0) -> None:
        self.now = start
        self.sleeps: List[float] = []

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


def _failing(calls: List[float]):
    def operation(timeout: float) -> str:
        calls.append(timeout)
        raise NetworkError("connection refused")

    return operation


def test_breaker_trips_after_failure_ratio_reached() -> None:
    clock = FakeClock()
    breaker = CircuitBreaker("target", monotonic=clock)

    breaker.before_call()
    breaker.record_success()
    for _ in range(2):
        breaker.before_call()
        breaker.record_failure()
    # Below minimum throughput.
    assert breaker.state is CircuitState.closed

    breaker.before_call()
    breaker.record_failure()

    assert breaker.state is CircuitState.open
    with pytest.raises(CircuitOpenError) as excinfo:
        breaker.before_call()
    assert excinfo.value.remaining_seconds == pytest.approx(120.0)


def test_breaker_records_when_it_opened() -> None:
    clock = FakeClock()
    breaker = CircuitBreaker("target", monotonic=clock)

    breaker.record_success()
    for _ in range(3):
        breaker.record_failure()

    snapshot = breaker.snapshot()
    assert snapshot.state is CircuitState.open
    assert snapshot.opened_at == clock.now


def test_breaker_ignores_outcomes_outside_sampling_window() -> None:
    clock = FakeClock()
    breaker = CircuitBreaker("target", monotonic=clock)

    for _ in range(3):
        breaker.record_failure()
    clock.advance(61)
    breaker.record_failure()

    snapshot = breaker.snapshot()
    assert snapshot.state is CircuitState.closed
    assert snapshot.window_sample_count == 1
    assert snapshot.window_failure_ratio == 1.0


def test_breaker_half_open_allows_single_trial() -> None:
    clock = FakeClock()
    breaker = CircuitBreaker("target", monotonic=clock)
    for _ in range(4):
        breaker.record_failure()

    clock.advance(119)
    with pytest.raises(CircuitOpenError):
        breaker.before_call()

    clock.advance(1)
    assert breaker.state is CircuitState.half_open
    breaker.before_call()
    with pytest.raises(CircuitOpenError):
        breaker.before_call()

    breaker.record_success()
    assert breaker.state is CircuitState.closed
    assert breaker.snapshot().window_sample_count == 0


def test_breaker_failed_trial_restarts_break() -> None:
    clock = FakeClock()
    breaker = CircuitBreaker("target", monotonic=clock)
    for _ in range(4):
        breaker.record_failure()
    clock.advance(120)

    breaker.before_call()
    breaker.record_failure()

    assert breaker.state is CircuitState.open
    clock.advance(119)
    assert breaker.state is CircuitState.open
    clock.advance(1)
    assert breaker.state is CircuitState.half_open


def test_policy_retries_with_backoff_then_raises() -> None:
    clock = FakeClock()
    policy = ResiliencePolicy(
        ResilienceConfig(jitter=False), monotonic=clock, sleep=clock.sleep
    )
    calls: List[float] = []

    with pytest.raises(NetworkError):
        policy.execute("http://unit/api", _failing(calls))

    assert len(calls) == 4
    assert calls == [2.0, 2.0, 2.0, 2.0]
    assert clock.sleeps == [0.5, 1.0, 2.0]
    # The four failures trip the breaker; the next call never reaches the operation.
    with pytest.raises(CircuitOpenError):
        policy.execute("http://unit/api", _failing(calls))
    assert len(calls) == 4


def test_policy_succeeds_after_transient_failure() -> None:
    clock = FakeClock()
    policy = ResiliencePolicy(ResilienceConfig(jitter=False), monotonic=clock, sleep=clock.sleep)
    attempts: List[int] = []

    def operation(timeout: float) -> str:
        attempts.append(1)
        if len(attempts) == 1:
            raise AttemptTimeoutError("slow")
        return "ok"

    assert policy.execute("target", operation) == "ok"
    assert len(attempts) == 2
    assert policy.breaker_for("target").state is CircuitState.closed


def test_policy_respects_total_timeout() -> None:
    clock = FakeClock()
    policy = ResiliencePolicy(ResilienceConfig(jitter=False), monotonic=clock, sleep=clock.sleep)
    calls: List[float] = []

    def slow_failure(timeout: float) -> str:
        calls.append(timeout)
        clock.advance(timeout)
        raise AttemptTimeoutError("no answer")

    with pytest.raises(AttemptTimeoutError):
        policy.execute("target", slow_failure)

    # 2s + 0.5 + 2s + 1 + 2s + 2 = 9.5s; the last attempt only gets the remaining 0.5s.
    assert calls == [2.0, 2.0, 2.0, pytest.approx(0.5)]


def test_policy_treats_late_success_as_timeout() -> None:
    clock = FakeClock()
    policy = ResiliencePolicy(
        ResilienceConfig(jitter=False, max_retries=0), monotonic=clock, sleep=clock.sleep
    )

    def late(timeout: float) -> str:
        clock.advance(timeout + 0.1)
        return "too late"

    with pytest.raises(AttemptTimeoutError):
        policy.execute("target", late)


def test_breakers_are_per_target() -> None:
    clock = FakeClock()
    policy = ResiliencePolicy(ResilienceConfig(jitter=False), monotonic=clock, sleep=clock.sleep)
    calls: List[float] = []

    with pytest.raises(NetworkError):
        policy.execute("a", _failing(calls))

    assert policy.breaker_for("a").state is CircuitState.open
    assert policy.breaker_for("b").state is CircuitState.closed
    assert policy.execute("b", lambda timeout: "fine") == "fine"


def test_backoff_jitter_stays_within_quarter() -> None:
    policy = ResiliencePolicy(rng=random.Random(7))

    for retry_number, nominal in ((1, 0.5), (2, 1.0), (3, 2.0)):
        for _ in range(20):
            delay = policy.backoff_delay(retry_number)
            assert nominal * 0.75 <= delay <= nominal * 1.25


def test_policy_cancel_during_backoff() -> None:
    clock = FakeClock()
    policy = ResiliencePolicy(ResilienceConfig(jitter=False), monotonic=clock, sleep=clock.sleep)
    cancel = threading.Event()
    calls: List[float] = []

    def operation(timeout: float) -> str:
        calls.append(timeout)
        cancel.set()
        raise NetworkError("down")

    with pytest.raises(OperationCancelled):
        policy.execute("target", operation, cancel=cancel)
    assert len(calls) == 1


def test_breaker_opens_once_under_concurrent_failures(caplog) -> None:
    clock = FakeClock()
    breaker = CircuitBreaker("target", monotonic=clock)
    workers = 16
    start = threading.Barrier(workers)

    def failing_call(_: int) -> bool:
        start.wait()
        try:
            breaker.before_call()
        except CircuitOpenError:
            return False
        breaker.record_failure()
        return True

    with caplog.at_level(logging.WARNING, logger="services.resilience"):
        with ThreadPoolExecutor(max_workers=workers) as pool:
            admitted = list(pool.map(failing_call, range(workers)))

    assert any(admitted)
    assert breaker.state is CircuitState.open
    opened = [record for record in caplog.records if record.getMessage().startswith("Circuit opened")]
    assert len(opened) == 1

    clock.advance(120)
    trial_gate = threading.Barrier(workers)

    def trial_call(_: int) -> bool:
        trial_gate.wait()
        try:
            breaker.before_call()
        except CircuitOpenError:
            return False
        return True

    with ThreadPoolExecutor(max_workers=workers) as pool:
        trials = list(pool.map(trial_call, range(workers)))

    assert trials.count(True) == 1
    breaker.record_success()
    assert breaker.state is CircuitState.closed
