"""The write path shared by real-time ingestion and backfill."""

from __future__ import annotations

from datastore.base import KeyedStore
from models.telemetry import Reading
from services.watermarks import WatermarkMaintainer


class ReadingWriter:
    """Keyed upsert of a reading followed by its watermark updates."""

    def __init__(self, store: KeyedStore, watermarks: WatermarkMaintainer | None = None) -> None:
        self.store = store
        self.watermarks = watermarks or WatermarkMaintainer(store)

    def write(self, reading: Reading, merge: bool = False) -> None:
        """Store ``reading`` and advance its watermarks.

        ``merge`` keeps stored metrics the incoming reading leaves empty.
        """
        self.store.upsert_reading(reading, merge=merge)
        self.watermarks.advance_for_reading(reading)
