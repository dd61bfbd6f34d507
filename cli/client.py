from __future__ import annotations

import time
from typing import Any, Dict

import httpx
import typer

from cli.config import CLIConfig

_PENDING_STATUSES = {"queued", "running"}


class ApiClient:
    """Minimal HTTP client for the telemetry service."""

    def __init__(self, config: CLIConfig) -> None:
        self._config = config
        self._client = httpx.Client(base_url=config.base_url, timeout=config.http_timeout)

    def close(self) -> None:
        self._client.close()

    def start_backfill(self, request: Dict[str, Any]) -> str:
        try:
            response = self._client.post("/backfill", json=request)
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            self._handle_http_error(exc)
        payload = response.json()
        job_id = payload.get("job_id")
        if not isinstance(job_id, str):
            raise typer.BadParameter("Unexpected response payload when starting a backfill.")
        return job_id

    def get_job(self, job_id: str) -> Dict[str, Any]:
        try:
            response = self._client.get(f"/backfill/{job_id}")
            if response.status_code == 404:
                raise typer.BadParameter(f"Backfill job {job_id} was not found.")
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            self._handle_http_error(exc)
        return response.json()

    def poll_job(self, job_id: str, interval: float, timeout: float) -> Dict[str, Any]:
        deadline = time.monotonic() + timeout
        last_payload: Dict[str, Any] | None = None
        while time.monotonic() <= deadline:
            last_payload = self.get_job(job_id)
            if last_payload.get("status") not in _PENDING_STATUSES:
                return last_payload
            time.sleep(interval)
        typer.secho(
            (
                f"Timed out waiting for backfill {job_id}. "
                f"Last status: {last_payload.get('status') if last_payload else 'unknown'}"
            ),
            fg=typer.colors.RED,
            err=True,
        )
        raise typer.Exit(code=1)

    def ingest(self, topic: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        try:
            response = self._client.post("/ingest", json={"topic": topic, "payload": payload})
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            self._handle_http_error(exc)
        return response.json()

    @staticmethod
    def _handle_http_error(exc: httpx.HTTPStatusError) -> None:
        detail: Any = None
        try:
            detail = exc.response.json().get("detail")
        except ValueError:
            detail = exc.response.text.strip()
        message = (
            f"Request failed with status {exc.response.status_code}: {detail or 'no detail provided.'}"
        )
        typer.secho(message, fg=typer.colors.RED, err=True)
        raise typer.Exit(code=1)
