"""Real-time ingestion: parse, classify, write raw, correct, write corrected."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from functools import lru_cache
from typing import Any, Mapping, Optional

from datastore.base import KeyedStore
from datastore.memory_store import build_default_store
from models.telemetry import Reading
from services.corrections import apply_corrections, corrections_for
from services.parser import (
    MessageParseError,
    decode_payload,
    is_ignored_topic,
    message_to_reading,
)
from services.writer import ReadingWriter

logger = logging.getLogger(__name__)


@dataclass
class IngestionOutcome:
    raw: Reading
    corrected: Reading


class IngestionService:
    """Two-phase writer for transport messages.

    The raw and corrected writes are separate upserts. If processing stops
    between them only the raw record exists until the sample is ingested or
    backfilled again; consumers of corrected data must read
    ``processed=True`` records only.
    """

    def __init__(self, store: KeyedStore, writer: Optional[ReadingWriter] = None) -> None:
        self.store = store
        self.writer = writer or ReadingWriter(store)

    def ingest(
        self,
        topic: str,
        payload: bytes | str | Mapping[str, Any],
        now: Optional[datetime] = None,
    ) -> Optional[IngestionOutcome]:
        """Process one message; returns ``None`` when the message is dropped.

        Store failures propagate to the caller.
        """
        if is_ignored_topic(topic):
            logger.debug("Ignoring bridge message", extra={"topic": topic})
            return None

        try:
            message = payload if isinstance(payload, Mapping) else decode_payload(payload)
            raw = message_to_reading(topic, message, now=now)
        except MessageParseError as exc:
            logger.warning("Dropping message", extra={"topic": topic, "reason": str(exc)})
            return None

        log_context = {
            "topic": topic,
            "device_id": raw.device,
            "sensor_id": raw.sensor_id,
            "sensor_type": raw.reading_type,
        }
        self.writer.write(raw)
        logger.debug("Stored raw reading", extra=log_context)

        corrections = corrections_for(raw, self.store.get_corrections_by_device(raw.device))
        corrected = apply_corrections(raw, corrections)
        self.writer.write(corrected)
        logger.info(
            "Ingested reading",
            extra={**log_context, "corrections": len(corrections)},
        )
        return IngestionOutcome(raw=raw, corrected=corrected)


@lru_cache
def build_default_ingestion() -> IngestionService:
    """Factory that wires ingestion with the default store."""
    return IngestionService(store=build_default_store())
