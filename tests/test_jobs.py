import time
from datetime import date, datetime, timedelta, timezone

import pytest

from app.schemas import BackfillJobStatus, BackfillRequest
from datastore.memory_store import InMemoryStore
from models.records import DateRange
from services.backfill import BackfillOrchestrator
from services.jobs import BackfillService, resolve_range
from services.nemo_migration import NemoMigration
from services.retry import Retrier


class RecordingSource:
    name = "aws"

    def __init__(self, fail: bool = False) -> None:
        self.fail = fail
        self.days: list[date] = []
        self.closed = False

    def query_readings(self, device_id, sensor_type, day, processed):
        if self.fail:
            raise RuntimeError("upstream down")
        self.days.append(day)
        return []

    def query_devices(self):
        return []

    def close(self) -> None:
        self.closed = True


def _service(source, clouds=None, max_attempts=None) -> BackfillService:
    store = InMemoryStore()
    retrier = Retrier(delay=0, max_attempts=max_attempts)
    return BackfillService(
        store=store,
        orchestrator=BackfillOrchestrator(store, retrier=retrier),
        nemo_migration=NemoMigration(store, retrier=retrier),
        graphql_source_factory=lambda: source,
        nemo_clouds_factory=lambda: list(clouds or []),
        workers=1,
    )


def _wait(service: BackfillService, job_id: str, timeout: float = 5.0):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        job = service.fetch_job(job_id)
        if job.status not in {BackfillJobStatus.queued, BackfillJobStatus.running}:
            return job
        time.sleep(0.02)
    pytest.fail(f"Backfill job {job_id} did not finish")


def test_resolve_range_defaults_to_yesterday_and_today() -> None:
    today = datetime.now(timezone.utc).date()

    assert resolve_range(None, None) == DateRange(today - timedelta(days=1), today)
    assert resolve_range(None, date(2024, 1, 5)) == DateRange(date(2024, 1, 4), date(2024, 1, 5))
    assert resolve_range(date(2024, 1, 1), None).end == today


def test_run_backfill_walks_the_range_and_closes_the_source() -> None:
    source = RecordingSource()
    service = _service(source)
    try:
        summary = service.run_backfill(
            "aws", ["dev1"], DateRange(date(2024, 1, 1), date(2024, 1, 2))
        )
    finally:
        service.shutdown()

    assert summary.devices == 1
    assert source.days[0] == date(2024, 1, 2)
    assert source.days[-1] == date(2024, 1, 1)
    assert source.closed is True


def test_run_backfill_rejects_unknown_sources() -> None:
    service = _service(RecordingSource())
    try:
        with pytest.raises(ValueError):
            service.run_backfill("ftp")
        with pytest.raises(ValueError, match="Nemo"):
            service.run_backfill("nemo")
    finally:
        service.shutdown()


def test_enqueued_job_completes_with_summary() -> None:
    service = _service(RecordingSource())
    try:
        job_id = service.enqueue(
            BackfillRequest(source="aws", device_ids=["dev1"], start=date(2024, 1, 1), end=date(2024, 1, 1))
        )
        job = _wait(service, job_id)
    finally:
        service.shutdown()

    assert job.status == BackfillJobStatus.completed
    assert job.summary["devices"] == 1
    assert job.started_at is not None
    assert job.finished_at is not None
    assert isinstance(job.duration_ms, int)


def test_job_fails_when_attempt_limit_is_reached() -> None:
    service = _service(RecordingSource(fail=True), max_attempts=2)
    try:
        job_id = service.enqueue(BackfillRequest(source="aws", device_ids=["dev1"]))
        job = _wait(service, job_id)
    finally:
        service.shutdown()

    assert job.status == BackfillJobStatus.failed
    assert "2 attempts" in job.error


def test_devices_only_backfill_requires_aws() -> None:
    service = _service(RecordingSource())
    try:
        with pytest.raises(ValueError):
            service.enqueue(BackfillRequest(source="nemo", kind="devices"))
    finally:
        service.shutdown()


def test_fetch_unknown_job_raises() -> None:
    service = _service(RecordingSource())
    try:
        with pytest.raises(KeyError):
            service.fetch_job("missing")
    finally:
        service.shutdown()
