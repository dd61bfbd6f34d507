from __future__ import annotations

from typing import Any, Dict, List

import pytest
from typer.testing import CliRunner

from cli.app import app
from cli.config import DEFAULT_POLL_TIMEOUT, load_config


class StubClient:
    def __init__(self, config, job_id: str = "job-123") -> None:
        self.config = config
        self.job_id = job_id
        self.requests: List[Dict[str, Any]] = []
        self.poll_calls: List[tuple[str, float, float]] = []
        self.ingested: List[tuple[str, Dict[str, Any]]] = []
        self.job_payload: Dict[str, Any] = {
            "job_id": job_id,
            "status": "completed",
            "source": "aws",
            "kind": "readings",
            "device_ids": ["dev1"],
            "start": "2024-01-01",
            "end": "2024-01-02",
            "submitted_at": "2024-01-03T00:00:00Z",
            "started_at": "2024-01-03T00:00:01Z",
            "finished_at": "2024-01-03T00:00:05Z",
            "duration_ms": 4000,
            "summary": {"devices": 1, "units": 28, "readings": 12, "skipped": 0, "sensors": 0},
            "error": None,
        }
        self.closed = False

    def start_backfill(self, request: Dict[str, Any]) -> str:
        self.requests.append(request)
        return self.job_id

    def poll_job(self, job_id: str, interval: float, timeout: float) -> Dict[str, Any]:
        self.poll_calls.append((job_id, interval, timeout))
        return self.job_payload

    def get_job(self, job_id: str) -> Dict[str, Any]:
        payload = self.job_payload.copy()
        payload["job_id"] = job_id
        return payload

    def ingest(self, topic: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        self.ingested.append((topic, payload))
        return {
            "device": "device",
            "sensor_id": "sensor",
            "reading_type": "zigbee_temp",
            "time": "2023-11-19T18:44:19Z",
        }

    def close(self) -> None:
        self.closed = True


@pytest.fixture()
def runner() -> CliRunner:
    return CliRunner()


def _install_stub(monkeypatch, stub: StubClient) -> None:
    def factory(config):
        stub.config = config
        return stub

    monkeypatch.setattr("cli.app.ApiClient", factory)


def test_backfill_without_wait(monkeypatch, runner: CliRunner) -> None:
    stub = StubClient(config=None)
    _install_stub(monkeypatch, stub)

    result = runner.invoke(
        app,
        ["backfill", "--device", "dev1", "--device", "dev2", "--start", "2024-01-01", "--end", "2024-01-02"],
    )

    assert result.exit_code == 0
    assert "Backfill accepted" in result.stdout
    assert stub.requests == [
        {
            "source": "aws",
            "kind": "readings",
            "device_ids": ["dev1", "dev2"],
            "start": "2024-01-01",
            "end": "2024-01-02",
        }
    ]
    assert not stub.poll_calls
    assert stub.closed is True


def test_backfill_with_wait(monkeypatch, runner: CliRunner) -> None:
    stub = StubClient(config=None)
    _install_stub(monkeypatch, stub)

    result = runner.invoke(
        app,
        ["backfill", "--source", "nemo", "--wait", "--poll-interval", "0.1", "--timeout", "5"],
    )

    assert result.exit_code == 0
    assert stub.requests[0]["source"] == "nemo"
    assert "Backfill Job" in result.stdout
    assert "readings: 12" in result.stdout
    assert stub.poll_calls == [("job-123", 0.1, 5.0)]


def test_backfill_wait_exits_nonzero_on_failure(monkeypatch, runner: CliRunner) -> None:
    stub = StubClient(config=None)
    stub.job_payload.update(status="failed", summary=None, error="upstream down")
    _install_stub(monkeypatch, stub)

    result = runner.invoke(app, ["backfill", "--wait"])

    assert result.exit_code == 1
    assert "upstream down" in result.stdout


def test_job_command(monkeypatch, runner: CliRunner) -> None:
    stub = StubClient(config=None)
    _install_stub(monkeypatch, stub)

    result = runner.invoke(app, ["job", "job-999"])

    assert result.exit_code == 0
    assert "job_id: job-999" in result.stdout
    assert "Summary" in result.stdout
    assert stub.closed is True


def test_ingest_command(monkeypatch, runner: CliRunner, tmp_path) -> None:
    stub = StubClient(config=None)
    _install_stub(monkeypatch, stub)
    payload_path = tmp_path / "message.json"
    payload_path.write_text('{"tmp": 36.1}')

    result = runner.invoke(app, ["ingest", "zigbee/device/sensor", str(payload_path)])

    assert result.exit_code == 0
    assert stub.ingested == [("zigbee/device/sensor", {"tmp": 36.1})]
    assert "reading_type: zigbee_temp" in result.stdout


def test_ingest_command_rejects_non_object(monkeypatch, runner: CliRunner, tmp_path) -> None:
    stub = StubClient(config=None)
    _install_stub(monkeypatch, stub)
    payload_path = tmp_path / "message.json"
    payload_path.write_text("[1, 2]")

    result = runner.invoke(app, ["ingest", "zigbee/device/sensor", str(payload_path)])

    assert result.exit_code != 0
    assert not stub.ingested


def test_load_config_reads_environment(monkeypatch) -> None:
    monkeypatch.setenv("API_BASE_URL", "http://service:9000/")
    monkeypatch.setenv("CLI_POLL_INTERVAL", "3")
    monkeypatch.setenv("CLI_POLL_TIMEOUT", "-1")

    config = load_config()

    assert config.base_url == "http://service:9000"
    assert config.poll_interval == 3.0
    assert config.poll_timeout == DEFAULT_POLL_TIMEOUT
