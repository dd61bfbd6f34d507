"""Backfill readings from Nemo Cloud deployments.

The API is walked as a tree: device → measure sets → (sensor, measures) →
values. Each value fills one metric of the reading for
``(device serial, sensor serial, time)``; the store merges the metrics of the
same sample as they arrive.
"""

from __future__ import annotations

import logging
import time
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timezone
from functools import partial
from typing import Callable, Dict, Iterable, Optional

from datastore.base import KeyedStore
from models.telemetry import Device, DeviceType, Reading, Sensor, SensorType
from services.backfill import BackfillSummary, chunks
from services.retry import Retrier
from services.writer import ReadingWriter
from sources.base import SessionCloud
from sources.nemo import Measure, MeasureSet, NemoDevice, NemoSession, NemoValue

logger = logging.getLogger(__name__)

COLUMN_MAPPING: Dict[str, str] = {
    "Battery": "battery",
    "Formaldehyde": "ch2o",
    "Temperature": "temperature",
    # relative humidity (Rh%)
    "Humidity": "humidity",
    "Pressure": "pressure",
    "Carbon dioxide": "co2",
    "Light Volatile Organic Compounds": "lvocs",
    "Particulate matter 1": "pm1",
    "Particulate matter 2.5": "pm25",
    "Particulate matter 4": "pm4",
    "Particulate matter 10": "pm10",
}


def _epoch_seconds(value: Optional[datetime]) -> Optional[int]:
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return int(value.timestamp())


class NemoMigration:
    """Copies devices, sensors and values of a Nemo Cloud into the store."""

    def __init__(
        self,
        store: KeyedStore,
        writer: Optional[ReadingWriter] = None,
        retrier: Optional[Retrier] = None,
        concurrency: int = 20,
        session_ttl: float = 25 * 60.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.store = store
        self.writer = writer or ReadingWriter(store)
        self.retrier = retrier or Retrier()
        self.concurrency = concurrency
        self.session_ttl = session_ttl
        self._clock = clock

    def new_session(self, cloud: SessionCloud) -> NemoSession:
        return NemoSession(cloud, ttl=self.session_ttl, clock=self._clock)

    def migrate(
        self,
        cloud: SessionCloud,
        device_serials: Optional[Iterable[str]] = None,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        concurrency: Optional[int] = None,
    ) -> BackfillSummary:
        limit = concurrency or self.concurrency
        session = self.new_session(cloud)
        devices = self.retrier.call(
            session.list_devices, "Listing Nemo devices", source=cloud.name
        )
        if device_serials is not None:
            wanted = set(device_serials)
            devices = [device for device in devices if device.serial in wanted]

        summary = BackfillSummary()
        window = (_epoch_seconds(start), _epoch_seconds(end))
        for chunk in chunks(devices, limit):
            with ThreadPoolExecutor(max_workers=len(chunk)) as executor:
                # each worker holds its own session lease
                futures = [
                    executor.submit(
                        self._migrate_device, self.new_session(cloud), device, window, summary
                    )
                    for device in chunk
                ]
                for future in futures:
                    future.result()
        logger.info(
            "Finished Nemo backfill: %s", summary.as_dict(), extra={"source": cloud.name}
        )
        return summary

    def _migrate_device(
        self,
        session: NemoSession,
        device: NemoDevice,
        window: tuple[Optional[int], Optional[int]],
        summary: BackfillSummary,
    ) -> None:
        record = Device(
            id=device.serial,
            name=(device.name or device.serial)[:50],
            type=DeviceType.nemo_cloud,
            sensor_types=[SensorType.nemo_cloud],
        )
        self.retrier.call(
            partial(self.store.upsert_device, record), "Storing device", device_id=device.serial
        )

        start, end = window
        device_sets = self.retrier.call(
            partial(session.list_measure_sets, device.serial, start, end),
            "Listing measure sets",
            source=session.cloud.name,
            device_id=device.serial,
        )
        # the serial number filter leaves at most one entry
        for measure_set in device_sets[0].measure_sets if device_sets else []:
            self._migrate_measure_set(session, device.serial, measure_set, summary)
        summary.add(devices=1)

    def _migrate_measure_set(
        self,
        session: NemoSession,
        device_serial: str,
        measure_set: MeasureSet,
        summary: BackfillSummary,
    ) -> None:
        context = {"source": session.cloud.name, "device_id": device_serial}
        sensor = self.retrier.call(
            partial(session.get_sensor, measure_set.bid), "Fetching sensor", **context
        )
        record = Sensor(
            device=device_serial,
            id=sensor.serial,
            type=SensorType.nemo_cloud,
            name=sensor.ref_exposition,
        )
        self.retrier.call(
            partial(self.store.upsert_sensor, record),
            "Storing sensor",
            sensor_id=sensor.serial,
            **context,
        )
        summary.add(sensors=1)

        measures = self.retrier.call(
            partial(session.list_measures, measure_set.bid),
            "Listing measures",
            sensor_id=sensor.serial,
            **context,
        )
        for measure in measures:
            self._migrate_measure(session, device_serial, sensor.serial, measure, summary)
        summary.add(units=1)

        logger.info(
            "Finished measure set %s (%s values, %s to %s)",
            measure_set.bid,
            measure_set.values_number,
            datetime.fromtimestamp(measure_set.start, tz=timezone.utc).isoformat(),
            datetime.fromtimestamp(measure_set.end, tz=timezone.utc).isoformat(),
            extra={**context, "sensor_id": sensor.serial},
        )

    def _migrate_measure(
        self,
        session: NemoSession,
        device_serial: str,
        sensor_serial: str,
        measure: Measure,
        summary: BackfillSummary,
    ) -> None:
        name = measure.variable.name
        if not name:
            return
        column = COLUMN_MAPPING.get(name)
        context = {
            "source": session.cloud.name,
            "device_id": device_serial,
            "sensor_id": sensor_serial,
        }
        if column is None:
            logger.warning(
                "No metric mapped for Nemo variable %r", name, extra=context
            )
            return

        values = self.retrier.call(
            partial(session.list_values, measure.measure_bid),
            "Fetching values",
            metric=column,
            **context,
        )
        written = 0
        for value in values:
            reading = self._value_to_reading(device_serial, sensor_serial, column, value)
            if reading is None:
                continue
            self.retrier.call(
                partial(self.writer.write, reading, merge=True),
                "Writing reading",
                metric=column,
                **context,
            )
            written += 1
        summary.add(readings=written)

    @staticmethod
    def _value_to_reading(
        device_serial: str, sensor_serial: str, column: str, value: NemoValue
    ) -> Optional[Reading]:
        if value.value is None:
            return None
        timestamp = datetime.fromtimestamp(value.time, tz=timezone.utc)
        return Reading.model_validate(
            {
                "device": device_serial,
                "date": timestamp.date(),
                "time": timestamp,
                "reading_type": SensorType.nemo_cloud.value,
                "processed": True,
                "sensor_id": sensor_serial,
                column: value.value,
            }
        )
