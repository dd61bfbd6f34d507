"""Pydantic schemas for the HTTP API layer."""

from __future__ import annotations

from datetime import date, datetime
from enum import Enum
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, Field, model_validator


class BackfillJobStatus(str, Enum):
    """Lifecycle states of a backfill job."""

    queued = "queued"
    running = "running"
    completed = "completed"
    failed = "failed"


class IngestRequest(BaseModel):
    """A transport message submitted over HTTP instead of MQTT."""

    topic: str = Field(..., min_length=1, examples=["zigbee/dev1/0x00158d0001"])
    payload: Dict[str, Any]


class IngestResponse(BaseModel):
    """Keys of the raw and corrected records written for a message."""

    device: str
    sensor_id: str
    reading_type: str
    time: datetime


class BackfillRequest(BaseModel):
    """Parameters of a backfill run."""

    source: Literal["aws", "nemo"] = "aws"
    kind: Literal["readings", "devices"] = Field(
        default="readings",
        description="Copy readings, or only the device and sensor catalogue.",
    )
    device_ids: Optional[List[str]] = Field(
        default=None, description="Restrict the run to these devices; all when omitted."
    )
    start: Optional[date] = Field(default=None, description="Defaults to yesterday (UTC).")
    end: Optional[date] = Field(default=None, description="Defaults to today (UTC).")
    concurrency: Optional[int] = Field(default=None, ge=1)

    @model_validator(mode="after")
    def check_range(self) -> BackfillRequest:
        if self.start is not None and self.end is not None and self.start > self.end:
            raise ValueError("start must not be after end")
        return self


class BackfillAccepted(BaseModel):
    """Immediate response after a backfill is queued."""

    job_id: str = Field(..., description="Generated identifier for the backfill job.")


class BackfillJob(BaseModel):
    """Full record of a backfill job."""

    job_id: str
    status: BackfillJobStatus
    source: str
    kind: str
    device_ids: Optional[List[str]] = None
    start: date
    end: date
    submitted_at: datetime
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None
    duration_ms: Optional[int] = Field(
        default=None, description="Duration in milliseconds from start to finish."
    )
    summary: Optional[Dict[str, int]] = None
    error: Optional[str] = None
