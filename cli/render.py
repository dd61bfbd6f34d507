from __future__ import annotations

from typing import Any, Dict, Iterable

import typer


def echo_heading(text: str) -> None:
    typer.secho(text, bold=True)


def echo_key_values(pairs: Iterable[tuple[str, Any]]) -> None:
    for key, value in pairs:
        typer.echo(f"{key}: {value}")


def render_job(payload: Dict[str, Any]) -> None:
    echo_heading("Backfill Job")
    devices = payload.get("device_ids")
    echo_key_values(
        [
            ("job_id", payload.get("job_id")),
            ("status", payload.get("status")),
            ("source", payload.get("source")),
            ("kind", payload.get("kind")),
            ("devices", ", ".join(devices) if devices else "all"),
            ("range", f"{payload.get('start')} .. {payload.get('end')}"),
            ("submitted_at", payload.get("submitted_at")),
            ("started_at", payload.get("started_at")),
            ("finished_at", payload.get("finished_at")),
            ("duration_ms", payload.get("duration_ms")),
        ]
    )

    summary = payload.get("summary") or {}
    typer.echo()
    echo_heading("Summary")
    if summary:
        echo_key_values(summary.items())
    else:
        typer.echo("No summary available.")

    error = payload.get("error")
    if error:
        typer.echo()
        echo_heading("Error")
        typer.secho(error, fg=typer.colors.RED)


def render_ingest(payload: Dict[str, Any]) -> None:
    echo_heading("Ingested Reading")
    echo_key_values(
        [
            ("device", payload.get("device")),
            ("sensor_id", payload.get("sensor_id")),
            ("reading_type", payload.get("reading_type")),
            ("time", payload.get("time")),
        ]
    )
