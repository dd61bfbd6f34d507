"""Client for the GraphQL API of the hosted Aurae deployment."""

from __future__ import annotations

import json
import logging
from datetime import date as Date
from datetime import datetime
from typing import Any, Dict, List, Optional

import httpx
from pydantic import Field, ValidationError, field_validator

from models.telemetry import Device, Metrics, Reading, Sensor, as_utc
from settings import Settings, get_settings
from sources.base import UpstreamError

logger = logging.getLogger(__name__)

_READING_FIELDS = (
    "device",
    "date",
    "reading_type",
    "processed",
    "time",
    "action",
    "angle",
    "angle_x",
    "angle_x_absolute",
    "angle_y",
    "angle_y_absolute",
    "angle_z",
    "ch2o",
    "co2",
    "consumption",
    "contact",
    "humidity",
    "illuminance",
    "ip_address",
    "latitude",
    "longitude",
    "occupancy",
    "pd05",
    "pd10",
    "pd100",
    "pd100g",
    "pd25",
    "pd50",
    "pm1",
    "pm10",
    "pm25",
    "pmv10",
    "pmv100",
    "pmv25",
    "pmv_total",
    "power",
    "sensor_id",
    "state",
    "temperature",
    "tvoc",
    "voltage",
)

_DEVICES_QUERY = """{
  devices {
    id
    name
    latitude
    longitude
    last_record
    sensors {
      device
      id
      type
      name
      comments
      last_record
    }
  }
}
"""


class UpstreamReading(Metrics):
    """A reading as served upstream; older records may lack ``sensor_id``."""

    device: str
    date: Date
    reading_type: str
    sensor_id: Optional[str] = None
    processed: bool
    time: datetime
    ip_address: Optional[str] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None

    @field_validator("time")
    @classmethod
    def normalize_time(cls, value: datetime) -> datetime:
        return as_utc(value)

    def to_reading(self) -> Reading:
        return Reading.model_validate(self.model_dump())


class DeviceWithSensors(Device):
    sensors: List[Sensor] = Field(default_factory=list)

    def to_device(self) -> Device:
        return Device.model_validate(self.model_dump(exclude={"sensors"}))


def build_readings_query(device_id: str, sensor_type: str, day: Date, processed: bool) -> str:
    arguments = ", ".join(
        (
            f"device: {json.dumps(device_id)}",
            f"processed: {'true' if processed else 'false'}",
            f'start: "{day.isoformat()}"',
            f'end: "{day.isoformat()}"',
            # sensor type is a GraphQL enum, so it is not quoted
            f"type: {sensor_type}",
        )
    )
    selection = "\n    ".join(_READING_FIELDS)
    return f"{{\n  readings({arguments}) {{\n    {selection}\n  }}\n}}\n"


class AuraeGraphQLClient:
    """Reads devices and readings from the GraphQL endpoint."""

    name = "aws"

    def __init__(
        self,
        url: str,
        timeout: float = 120.0,
        client: Optional[httpx.Client] = None,
    ) -> None:
        self.url = url
        self._client = client or httpx.Client(timeout=timeout)

    @classmethod
    def from_settings(cls, settings: Optional[Settings] = None) -> AuraeGraphQLClient:
        settings = settings or get_settings()
        return cls(url=settings.graphql_url, timeout=settings.graphql_timeout)

    def close(self) -> None:
        self._client.close()

    def query_readings(
        self, device_id: str, sensor_type: str, day: Date, processed: bool
    ) -> List[UpstreamReading]:
        data = self._post(build_readings_query(device_id, sensor_type, day, processed))
        readings: List[UpstreamReading] = []
        for item in data.get("readings") or []:
            try:
                readings.append(UpstreamReading.model_validate(item))
            except ValidationError as exc:
                logger.warning(
                    "Skipping invalid upstream reading",
                    extra={"device_id": device_id, "date": day, "reason": str(exc)},
                )
        return readings

    def query_devices(self) -> List[DeviceWithSensors]:
        data = self._post(_DEVICES_QUERY)
        devices: List[DeviceWithSensors] = []
        for item in data.get("devices") or []:
            try:
                devices.append(DeviceWithSensors.model_validate(item))
            except ValidationError as exc:
                logger.warning(
                    "Skipping invalid upstream device",
                    extra={"device_id": item.get("id"), "reason": str(exc)},
                )
        return devices

    def _post(self, query: str) -> Dict[str, Any]:
        response = self._client.post(
            self.url,
            json={"operationName": None, "variables": {}, "query": query},
        )
        response.raise_for_status()
        body = response.json()
        if body.get("errors"):
            messages = "; ".join(str(error.get("message")) for error in body["errors"])
            raise UpstreamError(f"GraphQL query failed: {messages}")
        data = body.get("data")
        if not isinstance(data, dict):
            raise UpstreamError("GraphQL response carries no data.")
        return data
