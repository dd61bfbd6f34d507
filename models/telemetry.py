"""Pydantic models for devices, sensors, readings and corrections."""

from __future__ import annotations

from datetime import date as Date
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from models.records import ReadingKey, WatermarkRef


class DeviceType(str, Enum):
    """Families of devices feeding the store."""

    air_quality = "air_quality"
    zigbee = "zigbee"
    nemo_cloud = "nemo_cloud"


class SensorType(str, Enum):
    """Sensor types a reading can be classified as."""

    ptqs1005 = "ptqs1005"
    pms5003st = "pms5003st"
    zigbee_temp = "zigbee_temp"
    zigbee_contact = "zigbee_contact"
    zigbee_power = "zigbee_power"
    zigbee_occupancy = "zigbee_occupancy"
    zigbee_vibration = "zigbee_vibration"
    nemo_cloud = "nemo_cloud"


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Treat naive timestamps as UTC and convert aware ones to UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class Metrics(BaseModel):
    """The fixed set of measurements a reading may carry."""

    model_config = ConfigDict(extra="ignore")

    action: Optional[str] = None
    angle: Optional[float] = None
    angle_x: Optional[float] = None
    angle_x_absolute: Optional[float] = None
    angle_y: Optional[float] = None
    angle_y_absolute: Optional[float] = None
    angle_z: Optional[float] = None
    battery: Optional[float] = None
    cf_pm1: Optional[float] = None
    cf_pm10: Optional[float] = None
    cf_pm25: Optional[float] = None
    ch2o: Optional[float] = Field(default=None, description="Formaldehyde (µg/m3)")
    co2: Optional[float] = None
    consumption: Optional[float] = None
    contact: Optional[bool] = None
    humidity: Optional[float] = None
    illuminance: Optional[float] = None
    lvocs: Optional[float] = Field(
        default=None, description="Light Volatile Organic Compounds (ppb)"
    )
    occupancy: Optional[bool] = None
    pd05: Optional[float] = None
    pd10: Optional[float] = None
    pd100: Optional[float] = None
    pd100g: Optional[float] = None
    pd25: Optional[float] = None
    pd50: Optional[float] = None
    pm1: Optional[float] = Field(default=None, description="Particulate matter 1 (µg/m3)")
    pm10: Optional[float] = Field(default=None, description="Particulate matter 10 (µg/m3)")
    pm25: Optional[float] = Field(default=None, description="Particulate matter 2.5 (µg/m3)")
    pm4: Optional[float] = Field(default=None, description="Particulate matter 4 (µg/m3)")
    pmv10: Optional[float] = None
    pmv100: Optional[float] = None
    pmv25: Optional[float] = None
    pmv_total: Optional[float] = None
    pmvtotal: Optional[float] = None
    power: Optional[float] = None
    pressure: Optional[float] = Field(default=None, description="Pressure (mb)")
    state: Optional[str] = None
    temperature: Optional[float] = Field(default=None, description="Temperature (°C)")
    tvoc: Optional[float] = Field(
        default=None, description="Total Volatile Organic Compounds (ppm)"
    )
    voltage: Optional[float] = None


METRIC_NAMES = frozenset(Metrics.model_fields)


class Reading(Metrics):
    """A single telemetry sample, raw (``processed=False``) or corrected."""

    device: str = Field(..., description="device id")
    date: Date
    reading_type: str = Field(..., description="sensor type")
    sensor_id: str
    processed: bool = Field(..., description="whether corrections were applied")
    time: datetime
    ip_address: Optional[str] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None

    @field_validator("time")
    @classmethod
    def normalize_time(cls, value: datetime) -> datetime:
        return as_utc(value)

    def key(self) -> ReadingKey:
        return ReadingKey(
            device_id=self.device,
            date=self.date,
            sensor_type=self.reading_type,
            sensor_id=self.sensor_id,
            processed=self.processed,
            time=self.time,
        )

    def field_map(self) -> Dict[str, Any]:
        """Flat field map used as the variable context of corrections."""
        return self.model_dump()


class Device(BaseModel):
    # upstream serials such as "NEMO-01" are stored as given
    id: str = Field(..., min_length=1)
    name: str = Field(..., min_length=1, max_length=50)
    type: Optional[DeviceType] = None
    last_record: Optional[datetime] = None
    sensor_types: Optional[List[SensorType]] = None
    latitude: Optional[float] = Field(default=None, ge=-90, le=90)
    longitude: Optional[float] = Field(default=None, ge=-180, le=180)
    room: Optional[str] = None

    @field_validator("last_record")
    @classmethod
    def normalize_last_record(cls, value: Optional[datetime]) -> Optional[datetime]:
        return as_utc(value)

    def watermark_ref(self) -> WatermarkRef:
        return WatermarkRef(device_id=self.id)


class Sensor(BaseModel):
    """A sensor attached to a device, keyed by ``(device, id)``."""

    device: str
    id: str
    type: SensorType
    name: Optional[str] = None
    comments: Optional[str] = None
    last_record: Optional[datetime] = None

    @field_validator("last_record")
    @classmethod
    def normalize_last_record(cls, value: Optional[datetime]) -> Optional[datetime]:
        return as_utc(value)

    def watermark_ref(self) -> WatermarkRef:
        return WatermarkRef(device_id=self.device, sensor_id=self.id)


class Correction(BaseModel):
    """Formula deriving a corrected metric for one device and sensor type."""

    device: str
    reading_type: str
    metric: str
    expression: str
