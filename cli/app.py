from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Optional

import typer

from cli.client import ApiClient
from cli.config import CLIConfig, load_config
from cli.render import echo_key_values, echo_heading, render_daily, render_fleet, render_recent, render_sample
from logging_config import configure_logging
from models.records import SensorType
from services.rollup import build_default_rollup


@dataclass
class CLIState:
    config: CLIConfig
    client: ApiClient


app = typer.Typer(
    help="Utilities for interacting with the kiosk telemetry service.",
    context_settings={"help_option_names": ["-h", "--help"]},
)


def _get_state(ctx: typer.Context) -> CLIState:
    state = ctx.obj
    if not isinstance(state, CLIState):
        raise typer.Exit(code=1, message="CLI state is uninitialized.")
    return state


@app.callback()
def main(
    ctx: typer.Context,
    base_url: Optional[str] = typer.Option(
        None,
        "--base-url",
        "-b",
        help="Telemetry API base URL (defaults to API_BASE_URL env or http://localhost:8000).",
    ),
    timeout: Optional[float] = typer.Option(
        None,
        "--timeout",
        help="Seconds to wait for each API request.",
    ),
) -> None:
    """Entry point for the CLI."""
    config = load_config(base_url=base_url, request_timeout=timeout)
    client = ApiClient(config)
    ctx.obj = CLIState(config=config, client=client)
    ctx.call_on_close(client.close)


@app.command("ingest")
def ingest_command(
    ctx: typer.Context,
    kiosk_id: str = typer.Argument(..., help="Kiosk identifier."),
    temp: int = typer.Option(..., "--temp", min=0, max=255, help="Temperature reading."),
    humidity: int = typer.Option(..., "--humidity", min=0, max=255, help="Humidity reading."),
    sensor_type: SensorType = typer.Option(
        SensorType.primary, "--sensor-type", help="Sensor source of the reading."
    ),
) -> None:
    """Send one reading to the service."""
    state = _get_state(ctx)
    payload = state.client.ingest(kiosk_id, temp, humidity, sensor_type.value)
    typer.secho("Reading stored.", fg=typer.colors.GREEN)
    render_sample(payload)


@app.command("recent")
def recent_command(
    ctx: typer.Context,
    kiosk_id: str = typer.Argument(..., help="Kiosk identifier."),
) -> None:
    """Show the recent primary-sensor readings for a kiosk."""
    state = _get_state(ctx)
    render_recent(kiosk_id, state.client.recent(kiosk_id))


@app.command("daily")
def daily_command(
    ctx: typer.Context,
    kiosk_id: str = typer.Argument(..., help="Kiosk identifier."),
) -> None:
    """Show the daily statistics for a kiosk."""
    state = _get_state(ctx)
    render_daily(kiosk_id, state.client.daily(kiosk_id))


@app.command("fleet")
def fleet_command(ctx: typer.Context) -> None:
    """Show the daily statistics for every kiosk."""
    state = _get_state(ctx)
    render_fleet(state.client.fleet())


@app.command("rollup")
def rollup_command(
    day: Optional[datetime] = typer.Option(
        None,
        "--date",
        formats=["%Y-%m-%d"],
        help="Calendar day to aggregate (defaults to the last completed day).",
    ),
) -> None:
    """Run the daily rollup locally against the configured stores."""
    configure_logging()
    rollup = build_default_rollup()
    try:
        report = rollup.run_previous_day() if day is None else rollup.run_for_day(day.date())
    except ValueError as exc:
        raise typer.BadParameter(str(exc), param_hint="--date") from exc

    echo_heading(f"Rollup for {report.day.isoformat()}")
    echo_key_values(
        [
            ("written", len(report.written)),
            ("empty", len(report.empty)),
            ("failed", len(report.failed)),
        ]
    )
    for kiosk_id, reason in sorted(report.failed.items()):
        typer.secho(f"  - {kiosk_id}: {reason}", fg=typer.colors.RED)
    if report.failed:
        raise typer.Exit(code=1)
