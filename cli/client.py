from __future__ import annotations

from typing import Any, Dict, List
from urllib.parse import quote

import httpx
import typer

from cli.config import CLIConfig


class ApiClient:
    """Minimal HTTP client for the telemetry service."""

    def __init__(self, config: CLIConfig) -> None:
        self._config = config
        self._client = httpx.Client(base_url=config.base_url, timeout=config.request_timeout)

    def close(self) -> None:
        self._client.close()

    def ingest(self, kiosk_id: str, temperature: int, humidity: int, sensor_type: str) -> Dict[str, Any]:
        response = self._request(
            "POST",
            f"/temperature/{quote(kiosk_id, safe='')}",
            params={"temp": temperature, "humidity": humidity, "sensorType": sensor_type},
        )
        return response.json()

    def recent(self, kiosk_id: str) -> List[Dict[str, Any]]:
        return self._request("GET", f"/temperature/{quote(kiosk_id, safe='')}/recent").json()

    def daily(self, kiosk_id: str) -> List[Dict[str, Any]]:
        return self._request("GET", f"/temperature/{quote(kiosk_id, safe='')}/daily").json()

    def fleet(self) -> Dict[str, List[Dict[str, Any]]]:
        return self._request("GET", "/temperature/daily").json()

    def _request(self, method: str, url: str, **kwargs: Any) -> httpx.Response:
        try:
            response = self._client.request(method, url, **kwargs)
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            self._handle_http_error(exc)
        except httpx.HTTPError as exc:
            typer.secho(f"Request failed: {exc}", fg=typer.colors.RED, err=True)
            raise typer.Exit(code=1)
        return response

    @staticmethod
    def _handle_http_error(exc: httpx.HTTPStatusError) -> None:
        detail: str | None = None
        try:
            data = exc.response.json()
            detail = data.get("detail")
        except Exception:  # noqa: BLE001 - best effort parsing
            detail = exc.response.text.strip()
        message = (
            f"Request failed with status {exc.response.status_code}: {detail or 'no detail provided.'}"
        )
        typer.secho(message, fg=typer.colors.RED, err=True)
        raise typer.Exit(code=1)
