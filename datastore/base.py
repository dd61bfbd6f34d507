"""Boundary of the keyed store the pipeline writes into."""

from __future__ import annotations

from datetime import datetime
from typing import List, Optional, Protocol

from models.records import ReadingKey, WatermarkRef
from models.telemetry import Correction, Device, Reading, Sensor


class KeyedStore(Protocol):
    """Operations the ingestion and backfill paths need from storage.

    Implementations must make ``upsert_reading`` and
    ``conditional_advance_watermark`` safe under concurrent callers.
    """

    def upsert_reading(self, reading: Reading, merge: bool = False) -> None: ...

    def get_reading(self, key: ReadingKey) -> Optional[Reading]: ...

    def get_corrections_by_device(self, device_id: str) -> List[Correction]: ...

    def get_watermark(self, ref: WatermarkRef) -> Optional[datetime]: ...

    def conditional_advance_watermark(self, ref: WatermarkRef, time: datetime) -> bool: ...

    def upsert_device(self, device: Device) -> None: ...

    def upsert_sensor(self, sensor: Sensor) -> None: ...
