"""Background execution of backfill runs."""

from __future__ import annotations

import logging
import time
from concurrent.futures import Future, ThreadPoolExecutor
from datetime import date, datetime, time as Time, timedelta, timezone
from functools import lru_cache
from threading import Lock
from typing import Callable, Dict, Iterable, List, Optional
from uuid import uuid4

from app.schemas import BackfillJob, BackfillJobStatus, BackfillRequest
from datastore.base import KeyedStore
from datastore.memory_store import build_default_store
from models.records import DateRange
from services.backfill import BackfillOrchestrator, BackfillSummary
from services.nemo_migration import NemoMigration
from services.retry import Retrier
from services.writer import ReadingWriter
from settings import get_settings
from sources.base import ReadingSource, SessionCloud
from sources.graphql import AuraeGraphQLClient
from sources.nemo import NemoCloud

logger = logging.getLogger(__name__)

SOURCES = ("aws", "nemo")


def resolve_range(start: Optional[date], end: Optional[date]) -> DateRange:
    """Fill in a partial range; both bounds missing means yesterday to today (UTC)."""
    today = datetime.now(timezone.utc).date()
    if end is None:
        end = max(start, today) if start is not None else today
    if start is None:
        start = end - timedelta(days=1)
    return DateRange(start=start, end=end)


def _day_bounds(date_range: DateRange) -> tuple[datetime, datetime]:
    start = datetime.combine(date_range.start, Time.min, tzinfo=timezone.utc)
    end = datetime.combine(date_range.end + timedelta(days=1), Time.min, tzinfo=timezone.utc)
    return start, end


class BackfillService:
    """Runs backfills inline or on a worker pool and tracks their jobs."""

    def __init__(
        self,
        store: KeyedStore,
        orchestrator: BackfillOrchestrator,
        nemo_migration: NemoMigration,
        graphql_source_factory: Callable[[], ReadingSource] = AuraeGraphQLClient.from_settings,
        nemo_clouds_factory: Callable[[], List[SessionCloud]] = NemoCloud.all_from_settings,
        workers: int = 2,
    ) -> None:
        self.store = store
        self.orchestrator = orchestrator
        self.nemo_migration = nemo_migration
        self._graphql_source_factory = graphql_source_factory
        self._nemo_clouds_factory = nemo_clouds_factory
        self.executor = ThreadPoolExecutor(max_workers=workers)
        self._jobs: Dict[str, BackfillJob] = {}
        self._futures: Dict[str, Future[None]] = {}
        self._lock = Lock()

    def run_backfill(
        self,
        source_id: str,
        device_ids: Optional[Iterable[str]] = None,
        date_range: Optional[DateRange] = None,
        concurrency: Optional[int] = None,
        kind: str = "readings",
    ) -> BackfillSummary:
        """Run one backfill to completion in the calling thread."""
        if source_id not in SOURCES:
            raise ValueError(f"Unknown backfill source {source_id!r}.")
        date_range = date_range or DateRange.since_yesterday()

        if source_id == "aws":
            source = self._graphql_source_factory()
            try:
                if kind == "devices":
                    return self.orchestrator.migrate_devices(source)
                return self.orchestrator.migrate(source, device_ids, date_range, concurrency)
            finally:
                source.close()

        if kind != "readings":
            raise ValueError("Device-only backfill is available for the aws source only.")
        clouds = self._nemo_clouds_factory()
        if not clouds:
            raise ValueError("No Nemo Cloud deployment is configured.")
        start, end = _day_bounds(date_range)
        summary = BackfillSummary()
        for cloud in clouds:
            try:
                result = self.nemo_migration.migrate(
                    cloud, device_ids, start=start, end=end, concurrency=concurrency
                )
            finally:
                cloud.close()
            summary.add(**result.as_dict())
        return summary

    def enqueue(self, request: BackfillRequest) -> str:
        """Validate a request and run it on the worker pool."""
        if request.source == "nemo" and request.kind != "readings":
            raise ValueError("Device-only backfill is available for the aws source only.")
        date_range = resolve_range(request.start, request.end)
        job_id = str(uuid4())
        job = BackfillJob(
            job_id=job_id,
            status=BackfillJobStatus.queued,
            source=request.source,
            kind=request.kind,
            device_ids=request.device_ids,
            start=date_range.start,
            end=date_range.end,
            submitted_at=datetime.now(timezone.utc),
        )
        self._save(job)

        future = self.executor.submit(
            self._run_job, job=job, date_range=date_range, concurrency=request.concurrency
        )
        with self._lock:
            self._futures[job_id] = future
        future.add_done_callback(lambda _f, jid=job_id: self._clear_future(jid))
        logger.info("Queued backfill", extra={"job_id": job_id, "source": request.source})
        return job_id

    def fetch_job(self, job_id: str) -> BackfillJob:
        with self._lock:
            job = self._jobs.get(job_id)
        if job is None:
            raise KeyError(f"Backfill job {job_id!r} not found.")
        return job.model_copy(deep=True)

    def shutdown(self) -> None:
        """Stop accepting work; queued jobs are cancelled."""
        self.executor.shutdown(wait=False, cancel_futures=True)

    def _save(self, job: BackfillJob) -> None:
        with self._lock:
            self._jobs[job.job_id] = job.model_copy(deep=True)

    def _clear_future(self, job_id: str) -> None:
        with self._lock:
            self._futures.pop(job_id, None)

    def _run_job(
        self, job: BackfillJob, date_range: DateRange, concurrency: Optional[int]
    ) -> None:
        start_time = time.perf_counter()
        running = job.model_copy(
            update={"status": BackfillJobStatus.running, "started_at": datetime.now(timezone.utc)}
        )
        self._save(running)

        update: Dict[str, object] = {}
        try:
            summary = self.run_backfill(
                job.source,
                device_ids=job.device_ids,
                date_range=date_range,
                concurrency=concurrency,
                kind=job.kind,
            )
            update = {"status": BackfillJobStatus.completed, "summary": summary.as_dict()}
        except Exception as exc:
            logger.exception("Backfill failed", extra={"job_id": job.job_id, "source": job.source})
            update = {"status": BackfillJobStatus.failed, "error": str(exc)}

        update["finished_at"] = datetime.now(timezone.utc)
        update["duration_ms"] = int((time.perf_counter() - start_time) * 1000)
        self._save(running.model_copy(update=update))


@lru_cache
def build_default_backfill_service(workers: Optional[int] = None) -> BackfillService:
    """Factory that wires backfill with the default store and settings."""
    settings = get_settings()
    store = build_default_store()
    writer = ReadingWriter(store)
    retrier = Retrier(
        delay=settings.backfill_retry_delay, max_attempts=settings.backfill_max_attempts
    )
    orchestrator = BackfillOrchestrator(
        store, writer=writer, retrier=retrier, concurrency=settings.backfill_concurrency
    )
    nemo_migration = NemoMigration(
        store,
        writer=writer,
        retrier=retrier,
        concurrency=settings.backfill_concurrency,
        session_ttl=settings.nemo_session_ttl,
    )
    return BackfillService(
        store=store,
        orchestrator=orchestrator,
        nemo_migration=nemo_migration,
        workers=workers or settings.backfill_workers,
    )
