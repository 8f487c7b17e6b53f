from __future__ import annotations

from typing import Any, Dict, Iterable, List, Optional

import typer


def echo_heading(text: str) -> None:
    typer.secho(text, bold=True)


def echo_key_values(pairs: Iterable[tuple[str, Any]]) -> None:
    for key, value in pairs:
        typer.echo(f"{key}: {value}")


def _format_field(value: Any) -> str:
    if isinstance(value, dict):
        return f"avg={value.get('avg')} min={value.get('min')} max={value.get('max')}"
    return str(value)


def render_rows(rows: List[Dict[str, Any]]) -> None:
    echo_heading(f"Rows ({len(rows)})")
    if not rows:
        typer.echo("No data in range.")
        return
    for row in rows:
        moment = row.get("timestamp") or row.get("date")
        line = (
            f"  - {moment} temperature {_format_field(row.get('temperature'))}"
            f" humidity {_format_field(row.get('humidity'))}"
        )
        if "count" in row:
            line += f" count={row['count']}"
        typer.echo(line)


def render_latest(payload: Optional[Dict[str, Any]]) -> None:
    echo_heading("Latest Reading")
    if not payload:
        typer.echo("No readings stored.")
        return
    echo_key_values(
        [
            ("timestamp", payload.get("timestamp")),
            ("temperature", payload.get("temperature")),
            ("humidity", payload.get("humidity")),
        ]
    )


def render_stats(payload: Dict[str, Any]) -> None:
    echo_heading("Stats")
    if not payload:
        typer.echo("No data in range.")
        return
    echo_key_values(
        [
            ("count", payload.get("count")),
            ("avgTemp", payload.get("avgTemp")),
            ("minTemp", payload.get("minTemp")),
            ("maxTemp", payload.get("maxTemp")),
            ("avgHumidity", payload.get("avgHumidity")),
            ("minHumidity", payload.get("minHumidity")),
            ("maxHumidity", payload.get("maxHumidity")),
        ]
    )
