"""HTTP route definitions for the service."""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, status

from app.schemas import (
    BackfillAccepted,
    BackfillJob,
    BackfillRequest,
    IngestRequest,
    IngestResponse,
)
from services.ingestion import IngestionService, build_default_ingestion
from services.jobs import BackfillService, build_default_backfill_service

router = APIRouter()


def get_ingestion() -> IngestionService:
    return build_default_ingestion()


def get_backfill_service() -> BackfillService:
    return build_default_backfill_service()


@router.post(
    "/ingest",
    response_model=IngestResponse,
    summary="Ingest one transport message through the real-time pipeline.",
)
def ingest_message(
    request: IngestRequest,
    ingestion: IngestionService = Depends(get_ingestion),
) -> IngestResponse:
    outcome = ingestion.ingest(request.topic, request.payload)
    if outcome is None:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=f"Message on topic {request.topic!r} was dropped.",
        )
    raw = outcome.raw
    return IngestResponse(
        device=raw.device,
        sensor_id=raw.sensor_id,
        reading_type=raw.reading_type,
        time=raw.time,
    )


@router.post(
    "/backfill",
    status_code=status.HTTP_202_ACCEPTED,
    response_model=BackfillAccepted,
    summary="Queue a backfill from an upstream source.",
)
async def start_backfill(
    request: BackfillRequest,
    service: BackfillService = Depends(get_backfill_service),
) -> BackfillAccepted:
    try:
        job_id = service.enqueue(request)
    except ValueError as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=str(exc),
        ) from exc
    return BackfillAccepted(job_id=job_id)


@router.get(
    "/backfill/{job_id}",
    response_model=BackfillJob,
    summary="Fetch the status and counters of a backfill job.",
)
async def get_backfill_job(
    job_id: str,
    service: BackfillService = Depends(get_backfill_service),
) -> BackfillJob:
    try:
        return service.fetch_job(job_id)
    except KeyError as exc:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=str(exc),
        ) from exc


@router.get(
    "/health",
    summary="Health check endpoint.",
    status_code=status.HTTP_200_OK,
)
async def healthcheck() -> dict[str, str]:
    return {"status": "ok"}


@router.get(
    "/",
    summary="Root endpoint mirrors health information.",
    status_code=status.HTTP_200_OK,
)
async def root() -> dict[str, str]:
    return {"status": "ok", "detail": "See /health for service status."}
