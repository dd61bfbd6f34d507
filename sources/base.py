"""Interfaces of the upstream services a backfill can read from."""

from __future__ import annotations

from datetime import date
from typing import TYPE_CHECKING, List, Optional, Protocol

if TYPE_CHECKING:
    from sources.graphql import DeviceWithSensors, UpstreamReading
    from sources.nemo import DeviceMeasureSets, Measure, NemoDevice, NemoSensor, NemoValue


class UpstreamError(RuntimeError):
    """An upstream service answered with an unusable response."""


class ReadingSource(Protocol):
    """A service that serves readings per device, day, sensor type and flag."""

    name: str

    def query_readings(
        self, device_id: str, sensor_type: str, day: date, processed: bool
    ) -> List["UpstreamReading"]: ...

    def query_devices(self) -> List["DeviceWithSensors"]: ...

    def close(self) -> None: ...


class SessionCloud(Protocol):
    """A session-token API exposing a device → measure set → measure → value tree."""

    name: str

    def login(self) -> str: ...

    def list_devices(self, session: str) -> List["NemoDevice"]: ...

    def list_measure_sets(
        self,
        session: str,
        device_serial: str,
        start: Optional[int] = None,
        end: Optional[int] = None,
    ) -> List["DeviceMeasureSets"]: ...

    def get_sensor(self, session: str, measure_set_bid: int) -> "NemoSensor": ...

    def list_measures(self, session: str, measure_set_bid: int) -> List["Measure"]: ...

    def list_values(self, session: str, measure_bid: int) -> List["NemoValue"]: ...

    def close(self) -> None: ...
