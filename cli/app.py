from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Optional

import typer

from cli.client import ApiClient
from cli.config import CLIConfig, load_config
from cli.render import render_latest, render_rows, render_stats


@dataclass
class CLIState:
    config: CLIConfig
    client: ApiClient


app = typer.Typer(
    help="Query temperature and humidity history from the sensor rollup service.",
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
        help="Service base URL (defaults to API_BASE_URL env or http://localhost:8000).",
    ),
    timeout: Optional[float] = typer.Option(
        None,
        "--timeout",
        help="Seconds to wait for each HTTP response.",
    ),
) -> None:
    """Entry point for the CLI."""
    config = load_config(base_url=base_url, timeout=timeout)
    client = ApiClient(config)
    ctx.obj = CLIState(config=config, client=client)
    ctx.call_on_close(client.close)


@app.command("data")
def data_command(
    ctx: typer.Context,
    start: str = typer.Option(..., "--start", "-s", help="ISO-8601 range start."),
    end: str = typer.Option(..., "--end", "-e", help="ISO-8601 range end."),
    as_json: bool = typer.Option(False, "--json", help="Print the raw JSON response."),
) -> None:
    """List readings or summaries for a range at the resolution the service picks."""
    state = _get_state(ctx)
    rows = state.client.get_data(start, end)
    if as_json:
        typer.echo(json.dumps(rows, indent=2))
        return
    render_rows(rows)


@app.command("latest")
def latest_command(ctx: typer.Context) -> None:
    """Show the most recent raw reading."""
    state = _get_state(ctx)
    render_latest(state.client.get_latest())


@app.command("stats")
def stats_command(
    ctx: typer.Context,
    start: str = typer.Option(..., "--start", "-s", help="ISO-8601 range start."),
    end: str = typer.Option(..., "--end", "-e", help="ISO-8601 range end."),
) -> None:
    """Show summary statistics for a range."""
    state = _get_state(ctx)
    render_stats(state.client.get_stats(start, end))
