from __future__ import annotations

from typing import Any, Dict, List, Optional

import httpx
import typer

from cli.config import CLIConfig


class ApiClient:
    """Minimal HTTP client for the rollup service query endpoints."""

    def __init__(self, config: CLIConfig) -> None:
        self._config = config
        self._client = httpx.Client(base_url=config.base_url, timeout=config.timeout)

    def close(self) -> None:
        self._client.close()

    def get_data(self, start: str, end: str) -> List[Dict[str, Any]]:
        payload = self._get("/api/data", params={"start": start, "end": end})
        if not isinstance(payload, list):
            raise typer.BadParameter("Unexpected response payload when fetching data.")
        return payload

    def get_latest(self) -> Optional[Dict[str, Any]]:
        return self._get("/api/data/latest")

    def get_stats(self, start: str, end: str) -> Dict[str, Any]:
        payload = self._get("/api/data/stats", params={"start": start, "end": end})
        if not isinstance(payload, dict):
            raise typer.BadParameter("Unexpected response payload when fetching stats.")
        return payload

    def _get(self, path: str, params: Optional[Dict[str, str]] = None) -> Any:
        try:
            response = self._client.get(path, params=params)
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            self._handle_http_error(exc)
        except httpx.TransportError as exc:
            typer.secho(
                f"Could not reach {self._config.base_url}: {exc}",
                fg=typer.colors.RED,
                err=True,
            )
            raise typer.Exit(code=1)
        return response.json()

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
