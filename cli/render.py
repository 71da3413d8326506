from __future__ import annotations

from typing import Any, Dict, Iterable, List, Mapping

import typer

_DAILY_COLUMNS = (
    "date",
    "sample_count",
    "min_temperature",
    "mean_temperature",
    "max_temperature",
    "min_humidity",
    "mean_humidity",
    "max_humidity",
)


def echo_heading(text: str) -> None:
    typer.secho(text, bold=True)


def echo_key_values(pairs: Iterable[tuple[str, Any]]) -> None:
    for key, value in pairs:
        typer.echo(f"{key}: {value}")


def render_sample(payload: Dict[str, Any]) -> None:
    echo_heading("Stored Sample")
    echo_key_values(
        [
            ("kiosk_id", payload.get("kiosk_id")),
            ("timestamp", payload.get("timestamp")),
            ("temperature", payload.get("temperature")),
            ("humidity", payload.get("humidity")),
            ("sensor_type", payload.get("sensor_type")),
        ]
    )


def render_recent(kiosk_id: str, points: List[Dict[str, Any]]) -> None:
    echo_heading(f"Recent readings for {kiosk_id}")
    if not points:
        typer.echo("No readings recorded.")
        return
    for point in points:
        typer.echo(
            f"  {point.get('timestamp')}  temp={point.get('temperature')}"
            f"  humidity={point.get('humidity')}"
        )


def render_daily(kiosk_id: str, statistics: List[Mapping[str, Any]]) -> None:
    echo_heading(f"Daily statistics for {kiosk_id}")
    if not statistics:
        typer.echo("No daily statistics available.")
        return
    typer.echo("  " + "  ".join(_DAILY_COLUMNS))
    for statistic in statistics:
        typer.echo("  " + "  ".join(str(statistic.get(column)) for column in _DAILY_COLUMNS))


def render_fleet(history: Dict[str, List[Dict[str, Any]]]) -> None:
    if not history:
        echo_heading("Fleet daily history")
        typer.echo("No kiosks have daily statistics.")
        return
    for kiosk_id, statistics in sorted(history.items()):
        render_daily(kiosk_id, statistics)
        typer.echo()
