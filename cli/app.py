from __future__ import annotations

import json
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional

import typer

from cli.client import ApiClient
from cli.config import CLIConfig, load_config
from cli.render import render_ingest, render_job


class Source(str, Enum):
    aws = "aws"
    nemo = "nemo"


class Kind(str, Enum):
    readings = "readings"
    devices = "devices"


@dataclass
class CLIState:
    config: CLIConfig
    client: ApiClient


app = typer.Typer(
    help="Utilities for interacting with the telemetry ingest service.",
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
        help="Service API base URL (defaults to API_BASE_URL env or http://localhost:8000).",
    ),
    poll_interval: Optional[float] = typer.Option(
        None,
        "--poll-interval",
        help="Seconds between status checks when waiting for completion.",
    ),
    timeout: Optional[float] = typer.Option(
        None,
        "--timeout",
        help="Maximum seconds to wait when polling for results.",
    ),
) -> None:
    """Entry point for the CLI."""
    config = load_config(
        base_url=base_url,
        poll_interval=poll_interval,
        poll_timeout=timeout,
    )
    client = ApiClient(config)
    ctx.obj = CLIState(config=config, client=client)
    ctx.call_on_close(client.close)


@app.command("backfill")
def backfill_command(
    ctx: typer.Context,
    source: Source = typer.Option(Source.aws, "--source", "-s", help="Upstream to read from."),
    devices: Optional[List[str]] = typer.Option(
        None,
        "--device",
        "-d",
        help="Device to backfill; repeat for several. All devices when omitted.",
    ),
    start: Optional[datetime] = typer.Option(
        None, "--start", formats=["%Y-%m-%d"], help="First day (defaults to yesterday)."
    ),
    end: Optional[datetime] = typer.Option(
        None, "--end", formats=["%Y-%m-%d"], help="Last day (defaults to today)."
    ),
    concurrency: Optional[int] = typer.Option(
        None, "--concurrency", "-c", min=1, help="Devices processed in parallel."
    ),
    kind: Kind = typer.Option(
        Kind.readings, "--kind", help="Copy readings or only the device catalogue."
    ),
    wait: bool = typer.Option(
        False,
        "--wait/--no-wait",
        help="Wait for the backfill to finish and display the job.",
    ),
    poll_interval: Optional[float] = typer.Option(
        None,
        "--poll-interval",
        help="Override poll interval while waiting.",
    ),
    timeout: Optional[float] = typer.Option(
        None,
        "--timeout",
        help="Override timeout while waiting.",
    ),
) -> None:
    """Queue a backfill from an upstream source."""
    state = _get_state(ctx)
    request: Dict[str, Any] = {"source": source.value, "kind": kind.value}
    if devices:
        request["device_ids"] = devices
    if start is not None:
        request["start"] = start.date().isoformat()
    if end is not None:
        request["end"] = end.date().isoformat()
    if concurrency is not None:
        request["concurrency"] = concurrency

    typer.echo(f"Starting {source.value} backfill on {state.config.base_url} ...")
    job_id = state.client.start_backfill(request)
    typer.secho(f"Backfill accepted. job_id={job_id}", fg=typer.colors.GREEN)

    if not wait:
        return

    interval = poll_interval if poll_interval is not None else state.config.poll_interval
    poll_timeout = timeout if timeout is not None else state.config.poll_timeout
    typer.echo(f"Waiting for backfill (interval={interval}s, timeout={poll_timeout}s)...")
    job = state.client.poll_job(job_id, interval=interval, timeout=poll_timeout)
    typer.echo()
    render_job(job)
    if job.get("status") == "failed":
        raise typer.Exit(code=1)


@app.command("job")
def job_command(
    ctx: typer.Context,
    job_id: str = typer.Argument(..., help="Identifier returned from the backfill command."),
) -> None:
    """Fetch status and counters of a backfill job."""
    state = _get_state(ctx)
    render_job(state.client.get_job(job_id))


@app.command("ingest")
def ingest_command(
    ctx: typer.Context,
    topic: str = typer.Argument(..., help="Transport topic, e.g. zigbee/<device>/<sensor>."),
    file: Path = typer.Argument(
        ..., exists=True, dir_okay=False, readable=True, help="JSON file holding the payload."
    ),
) -> None:
    """Push one message through the real-time ingestion pipeline."""
    state = _get_state(ctx)
    try:
        payload = json.loads(file.read_text())
    except json.JSONDecodeError as exc:
        raise typer.BadParameter(f"{file} is not valid JSON: {exc}") from exc
    if not isinstance(payload, dict):
        raise typer.BadParameter(f"{file} must contain a JSON object.")
    render_ingest(state.client.ingest(topic, payload))
