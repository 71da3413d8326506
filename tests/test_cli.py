from __future__ import annotations

from datetime import date
from typing import Any, Dict, List

import pytest
from typer.testing import CliRunner

from cli.app import app
from services.rollup import RollupReport

_STATISTIC = {
    "kiosk_id": "K-1",
    "date": "2024-05-01",
    "sensor_type": "primary",
    "sample_count": 1440,
    "min_temperature": 65,
    "max_temperature": 78,
    "mean_temperature": 71,
    "min_humidity": 35,
    "max_humidity": 48,
    "mean_humidity": 41,
}


class StubClient:
    def __init__(self, config) -> None:
        self.config = config
        self.ingested: List[tuple[str, int, int, str]] = []
        self.closed = False

    def ingest(self, kiosk_id: str, temperature: int, humidity: int, sensor_type: str) -> Dict[str, Any]:
        self.ingested.append((kiosk_id, temperature, humidity, sensor_type))
        return {
            "kiosk_id": kiosk_id,
            "timestamp": "2024-05-02T10:00:00Z",
            "temperature": temperature,
            "humidity": humidity,
            "sensor_type": sensor_type,
        }

    def recent(self, kiosk_id: str) -> List[Dict[str, Any]]:
        return [{"timestamp": "2024-05-02T10:00:00Z", "temperature": 72, "humidity": 40}]

    def daily(self, kiosk_id: str) -> List[Dict[str, Any]]:
        return [dict(_STATISTIC, kiosk_id=kiosk_id)]

    def fleet(self) -> Dict[str, List[Dict[str, Any]]]:
        return {"K-1": [_STATISTIC]}

    def close(self) -> None:
        self.closed = True


class StubRollup:
    def __init__(self, report: RollupReport) -> None:
        self.report = report
        self.days: List[date] = []

    def run_for_day(self, day: date) -> RollupReport:
        if day > date(2024, 5, 2):
            raise ValueError(f"Day {day.isoformat()} has not completed yet.")
        self.days.append(day)
        return self.report

    def run_previous_day(self) -> RollupReport:
        return self.report


@pytest.fixture()
def runner() -> CliRunner:
    return CliRunner()


@pytest.fixture()
def stub(monkeypatch) -> StubClient:
    client = StubClient(config=None)

    def factory(config):
        client.config = config
        return client

    monkeypatch.setattr("cli.app.ApiClient", factory)
    return client


def test_ingest_command(stub: StubClient, runner: CliRunner) -> None:
    result = runner.invoke(app, ["ingest", "K-1", "--temp", "72", "--humidity", "40"])

    assert result.exit_code == 0
    assert "Reading stored." in result.stdout
    assert "sensor_type: primary" in result.stdout
    assert stub.ingested == [("K-1", 72, 40, "primary")]
    assert stub.closed is True


def test_ingest_rejects_out_of_range(stub: StubClient, runner: CliRunner) -> None:
    result = runner.invoke(app, ["ingest", "K-1", "--temp", "300", "--humidity", "40"])

    assert result.exit_code != 0
    assert stub.ingested == []


def test_ingest_cooling_unit(stub: StubClient, runner: CliRunner) -> None:
    result = runner.invoke(
        app,
        ["ingest", "K-1", "--temp", "60", "--humidity", "30", "--sensor-type", "cooling_unit"],
    )

    assert result.exit_code == 0
    assert stub.ingested == [("K-1", 60, 30, "cooling_unit")]


def test_recent_and_daily_commands(stub: StubClient, runner: CliRunner) -> None:
    recent = runner.invoke(app, ["--base-url", "http://kiosk-api:9000", "recent", "K-1"])
    daily = runner.invoke(app, ["daily", "K-9"])

    assert recent.exit_code == 0
    assert "temp=72" in recent.stdout
    assert stub.config.base_url == "http://kiosk-api:9000"
    assert daily.exit_code == 0
    assert "Daily statistics for K-9" in daily.stdout
    assert "2024-05-01" in daily.stdout


def test_fleet_command(stub: StubClient, runner: CliRunner) -> None:
    result = runner.invoke(app, ["fleet"])

    assert result.exit_code == 0
    assert "Daily statistics for K-1" in result.stdout
    assert "1440" in result.stdout


def test_rollup_command_reports_counts(monkeypatch, stub: StubClient, runner: CliRunner) -> None:
    rollup = StubRollup(RollupReport(day=date(2024, 5, 1), written=["K-1", "K-2"], empty=["K-3"]))
    monkeypatch.setattr("cli.app.build_default_rollup", lambda: rollup)

    result = runner.invoke(app, ["rollup", "--date", "2024-05-01"])

    assert result.exit_code == 0
    assert "Rollup for 2024-05-01" in result.stdout
    assert "written: 2" in result.stdout
    assert "empty: 1" in result.stdout
    assert rollup.days == [date(2024, 5, 1)]


def test_rollup_command_fails_on_kiosk_errors(monkeypatch, stub: StubClient, runner: CliRunner) -> None:
    report = RollupReport(day=date(2024, 5, 1), written=["K-1"], failed={"K-2": "write conflict"})
    monkeypatch.setattr("cli.app.build_default_rollup", lambda: StubRollup(report))

    result = runner.invoke(app, ["rollup"])

    assert result.exit_code == 1
    assert "K-2: write conflict" in result.stdout


def test_rollup_command_rejects_incomplete_day(monkeypatch, stub: StubClient, runner: CliRunner) -> None:
    rollup = StubRollup(RollupReport(day=date(2024, 5, 1)))
    monkeypatch.setattr("cli.app.build_default_rollup", lambda: rollup)

    result = runner.invoke(app, ["rollup", "--date", "2024-05-09"])

    assert result.exit_code == 2
    assert rollup.days == []
