from __future__ import annotations
import json
from datetime import datetime
from functools import lru_cache
from pathlib import Path
from threading import Lock
from typing import Dict, List, Optional, TypeVar

from pydantic import BaseModel

from models.records import ReadingKey, WatermarkRef
from models.telemetry import Correction, Device, Reading, Sensor
from settings import get_settings

ModelT = TypeVar("ModelT", bound=BaseModel)


def _merge(existing: Optional[ModelT], incoming: ModelT) -> ModelT:
    """Overlay the non-null attributes of ``incoming`` onto ``existing``."""
    if existing is None:
        return incoming.model_copy(deep=True)
    update = incoming.model_dump(exclude_none=True)
    stored_last = getattr(existing, "last_record", None)
    new_last = update.get("last_record")
    if stored_last is not None and new_last is not None and new_last < stored_last:
        update.pop("last_record")
    return existing.model_copy(update=update, deep=True)


class InMemoryStore:
    """Thread-safe keyed store with optional JSON persistence.

    A reading upsert replaces the stored row, explicit nulls included. With
    ``merge=True`` it overlays columns like a wide-column store instead:
    attributes left empty on the incoming record keep their stored value.
    Device and sensor upserts always merge.
    """

    def __init__(self, name: str = "telemetry", persistence_path: Optional[Path] = None) -> None:
        self.name = name
        self._readings: Dict[str, Reading] = {}
        self._devices: Dict[str, Device] = {}
        self._sensors: Dict[str, Sensor] = {}
        self._corrections: Dict[str, Correction] = {}
        self.persistence_path = persistence_path
        self._lock = Lock()
        if persistence_path:
            persistence_path.parent.mkdir(parents=True, exist_ok=True)
            self._load_from_disk()

    def upsert_reading(self, reading: Reading, merge: bool = False) -> None:
        key = reading.key().as_string()
        with self._lock:
            if merge:
                self._readings[key] = _merge(self._readings.get(key), reading)
            else:
                self._readings[key] = reading.model_copy(deep=True)
            self._persist()

    def get_reading(self, key: ReadingKey) -> Optional[Reading]:
        with self._lock:
            item = self._readings.get(key.as_string())
            if item is None:
                return None
            return item.model_copy(deep=True)

    def scan_readings(self, device_id: Optional[str] = None) -> list[Reading]:
        """Return deep copies of stored readings, optionally for one device."""

        with self._lock:
            return [
                item.model_copy(deep=True)
                for item in self._readings.values()
                if device_id is None or item.device == device_id
            ]

    def upsert_device(self, device: Device) -> None:
        with self._lock:
            self._devices[device.id] = _merge(self._devices.get(device.id), device)
            self._persist()

    def get_device(self, device_id: str) -> Optional[Device]:
        with self._lock:
            item = self._devices.get(device_id)
            return item.model_copy(deep=True) if item is not None else None

    def list_devices(self) -> list[Device]:
        with self._lock:
            return [item.model_copy(deep=True) for item in self._devices.values()]

    def upsert_sensor(self, sensor: Sensor) -> None:
        key = sensor.watermark_ref().as_string()
        with self._lock:
            self._sensors[key] = _merge(self._sensors.get(key), sensor)
            self._persist()

    def get_sensor(self, device_id: str, sensor_id: str) -> Optional[Sensor]:
        key = WatermarkRef(device_id=device_id, sensor_id=sensor_id).as_string()
        with self._lock:
            item = self._sensors.get(key)
            return item.model_copy(deep=True) if item is not None else None

    def list_sensors(self, device_id: str) -> list[Sensor]:
        with self._lock:
            return [
                item.model_copy(deep=True)
                for item in self._sensors.values()
                if item.device == device_id
            ]

    def put_correction(self, correction: Correction) -> None:
        key = "|".join((correction.device, correction.reading_type, correction.metric))
        with self._lock:
            self._corrections[key] = correction.model_copy(deep=True)
            self._persist()

    def get_corrections_by_device(self, device_id: str) -> List[Correction]:
        with self._lock:
            return [
                item.model_copy(deep=True)
                for item in self._corrections.values()
                if item.device == device_id
            ]

    def get_watermark(self, ref: WatermarkRef) -> Optional[datetime]:
        with self._lock:
            entity = self._watermark_owner(ref)
            return entity.last_record if entity is not None else None

    def conditional_advance_watermark(self, ref: WatermarkRef, time: datetime) -> bool:
        """Set ``last_record`` to ``time`` if the entity exists and ``time`` is newer.

        The comparison runs against the stored value under the store lock.
        """
        with self._lock:
            entity = self._watermark_owner(ref)
            if entity is None:
                return False
            if entity.last_record is not None and entity.last_record >= time:
                return False
            entity.last_record = time
            self._persist()
            return True

    def _watermark_owner(self, ref: WatermarkRef) -> Optional[Device | Sensor]:
        if ref.is_sensor:
            return self._sensors.get(ref.as_string())
        return self._devices.get(ref.device_id)

    def _persist(self) -> None:
        if not self.persistence_path:
            return
        payload = {
            "devices": {key: item.model_dump(mode="json") for key, item in self._devices.items()},
            "sensors": {key: item.model_dump(mode="json") for key, item in self._sensors.items()},
            "corrections": {
                key: item.model_dump(mode="json") for key, item in self._corrections.items()
            },
            "readings": {
                key: item.model_dump(mode="json", exclude_none=True)
                for key, item in self._readings.items()
            },
        }
        self.persistence_path.write_text(json.dumps(payload, indent=2, sort_keys=True))

    def _load_from_disk(self) -> None:
        if not self.persistence_path or not self.persistence_path.exists():
            return

        try:
            raw = self.persistence_path.read_text() or "{}"
            data = json.loads(raw)
        except (OSError, json.JSONDecodeError):
            data = {}

        for key, payload in data.get("devices", {}).items():
            self._devices[key] = Device.model_validate(payload)
        for key, payload in data.get("sensors", {}).items():
            self._sensors[key] = Sensor.model_validate(payload)
        for key, payload in data.get("corrections", {}).items():
            self._corrections[key] = Correction.model_validate(payload)
        for key, payload in data.get("readings", {}).items():
            self._readings[key] = Reading.model_validate(payload)


@lru_cache
def build_default_store(
    name: Optional[str] = None,
    path: Optional[str] = None,
) -> InMemoryStore:
    settings = get_settings()
    store_path = settings.store_persistence_path if path is None else path
    persistence = Path(store_path) if store_path else None
    return InMemoryStore(name=name or "telemetry", persistence_path=persistence)
