"""Backfill readings from the GraphQL source into the store."""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from functools import partial
from threading import Lock
from typing import Iterable, Iterator, List, Optional, Sequence, Tuple, TypeVar

from datastore.base import KeyedStore
from models.records import DateRange, UnitOfWork
from models.telemetry import SensorType
from services.retry import Retrier
from services.writer import ReadingWriter
from sources.base import ReadingSource

logger = logging.getLogger(__name__)

T = TypeVar("T")

BACKFILL_SENSOR_TYPES: Tuple[str, ...] = tuple(
    sensor_type.value for sensor_type in SensorType if sensor_type is not SensorType.nemo_cloud
)
PROCESSED_FLAGS: Tuple[bool, ...] = (True, False)


def chunks(items: Sequence[T], size: int = 10) -> List[List[T]]:
    if size < 1:
        raise ValueError("Chunk size must be positive.")
    return [list(items[start : start + size]) for start in range(0, len(items), size)]


def units_of_work(device_id: str, date_range: DateRange) -> Iterator[UnitOfWork]:
    """Enumerate a device's units, newest day first."""
    for day in date_range.days_newest_first():
        for sensor_type in BACKFILL_SENSOR_TYPES:
            for processed in PROCESSED_FLAGS:
                yield UnitOfWork(
                    device_id=device_id, date=day, sensor_type=sensor_type, processed=processed
                )


@dataclass
class BackfillSummary:
    """Counters for one backfill run."""

    devices: int = 0
    units: int = 0
    readings: int = 0
    skipped: int = 0
    sensors: int = 0
    _lock: Lock = field(default_factory=Lock, repr=False, compare=False)

    def add(self, **counts: int) -> None:
        with self._lock:
            for name, value in counts.items():
                setattr(self, name, getattr(self, name) + value)

    def as_dict(self) -> dict[str, int]:
        return {
            "devices": self.devices,
            "units": self.units,
            "readings": self.readings,
            "skipped": self.skipped,
            "sensors": self.sensors,
        }


class BackfillOrchestrator:
    """Walks devices, days, sensor types and processed flags of a source.

    Devices are processed in chunks of ``concurrency``; the devices of one
    chunk run in parallel threads and the next chunk starts when all of them
    are done. Upstream calls and store writes retry until they succeed.
    """

    def __init__(
        self,
        store: KeyedStore,
        writer: Optional[ReadingWriter] = None,
        retrier: Optional[Retrier] = None,
        concurrency: int = 20,
    ) -> None:
        self.store = store
        self.writer = writer or ReadingWriter(store)
        self.retrier = retrier or Retrier()
        self.concurrency = concurrency

    def migrate(
        self,
        source: ReadingSource,
        device_ids: Optional[Iterable[str]],
        date_range: DateRange,
        concurrency: Optional[int] = None,
    ) -> BackfillSummary:
        limit = concurrency or self.concurrency
        if device_ids is None:
            devices = self.retrier.call(
                source.query_devices, "Listing upstream devices", source=source.name
            )
            targets = [device.id for device in devices]
        else:
            targets = list(dict.fromkeys(device_ids))

        summary = BackfillSummary()
        logger.info(
            "Starting readings backfill",
            extra={"source": source.name, "row_count": len(targets)},
        )
        for chunk in chunks(targets, limit):
            with ThreadPoolExecutor(max_workers=len(chunk)) as executor:
                futures = [
                    executor.submit(self._migrate_device, source, device_id, date_range, summary)
                    for device_id in chunk
                ]
                for future in futures:
                    future.result()
        logger.info(
            "Finished readings backfill: %s", summary.as_dict(), extra={"source": source.name}
        )
        return summary

    def migrate_devices(self, source: ReadingSource) -> BackfillSummary:
        """Copy the upstream device and sensor catalogue into the store."""
        summary = BackfillSummary()
        devices = self.retrier.call(
            source.query_devices, "Listing upstream devices", source=source.name
        )
        for device in devices:
            self.retrier.call(
                partial(self.store.upsert_device, device.to_device()),
                "Storing device",
                device_id=device.id,
            )
            for sensor in device.sensors:
                self.retrier.call(
                    partial(self.store.upsert_sensor, sensor),
                    "Storing sensor",
                    device_id=device.id,
                    sensor_id=sensor.id,
                )
            summary.add(devices=1, sensors=len(device.sensors))
        logger.info(
            "Finished device backfill: %s", summary.as_dict(), extra={"source": source.name}
        )
        return summary

    def _migrate_device(
        self,
        source: ReadingSource,
        device_id: str,
        date_range: DateRange,
        summary: BackfillSummary,
    ) -> None:
        for unit in units_of_work(device_id, date_range):
            self._migrate_unit(source, unit, summary)
        summary.add(devices=1)
        logger.info("Finished device", extra={"source": source.name, "device_id": device_id})

    def _migrate_unit(
        self, source: ReadingSource, unit: UnitOfWork, summary: BackfillSummary
    ) -> None:
        context = {
            "source": source.name,
            "device_id": unit.device_id,
            "date": unit.date,
            "sensor_type": unit.sensor_type,
            "processed": unit.processed,
        }
        readings = self.retrier.call(
            partial(
                source.query_readings,
                unit.device_id,
                unit.sensor_type,
                unit.date,
                unit.processed,
            ),
            "Fetching readings",
            **context,
        )
        written = skipped = 0
        for upstream in readings:
            if not upstream.sensor_id:
                logger.info("Skipping reading without sensor_id", extra=context)
                skipped += 1
                continue
            reading = upstream.to_reading()
            self.retrier.call(partial(self.writer.write, reading), "Writing reading", **context)
            written += 1
        summary.add(units=1, readings=written, skipped=skipped)
