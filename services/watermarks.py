"""Keep ``last_record`` watermarks of devices and sensors monotonic."""

from __future__ import annotations

import logging
from datetime import datetime

from datastore.base import KeyedStore
from models.records import WatermarkRef
from models.telemetry import Reading

logger = logging.getLogger(__name__)


class WatermarkMaintainer:
    """Advances watermarks through the store's conditional update."""

    def __init__(self, store: KeyedStore) -> None:
        self.store = store

    def advance(self, ref: WatermarkRef, candidate: datetime) -> bool:
        """Move the watermark of ``ref`` to ``candidate`` if it is newer.

        The stored value is read first only to skip needless writes; the
        decision that counts is made by ``conditional_advance_watermark``
        against whatever is stored at that moment.
        """
        current = self.store.get_watermark(ref)
        if current is not None and candidate <= current:
            return False
        advanced = self.store.conditional_advance_watermark(ref, candidate)
        if advanced:
            logger.debug(
                "Advanced watermark",
                extra={"device_id": ref.device_id, "sensor_id": ref.sensor_id},
            )
        return advanced

    def advance_for_reading(self, reading: Reading) -> None:
        self.advance(WatermarkRef(device_id=reading.device), reading.time)
        self.advance(
            WatermarkRef(device_id=reading.device, sensor_id=reading.sensor_id),
            reading.time,
        )
