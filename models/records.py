"""Plain value objects shared across services."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone
from typing import Iterator, Optional


@dataclass(frozen=True, slots=True)
class ReadingKey:
    """Storage key of a reading.

    ``time`` is the clustering component inside the
    ``(device_id, date, sensor_type, sensor_id, processed)`` partition.
    """

    device_id: str
    date: date
    sensor_type: str
    sensor_id: str
    processed: bool
    time: datetime

    def as_string(self) -> str:
        return "|".join(
            (
                self.device_id,
                self.date.isoformat(),
                self.sensor_type,
                self.sensor_id,
                "1" if self.processed else "0",
                self.time.isoformat(),
            )
        )


@dataclass(frozen=True, slots=True)
class WatermarkRef:
    """Points at the entity owning a ``last_record`` watermark."""

    device_id: str
    sensor_id: Optional[str] = None

    @property
    def is_sensor(self) -> bool:
        return self.sensor_id is not None

    def as_string(self) -> str:
        if self.sensor_id is None:
            return self.device_id
        return f"{self.device_id}|{self.sensor_id}"


@dataclass(frozen=True, slots=True)
class DateRange:
    """Inclusive range of calendar days."""

    start: date
    end: date

    def __post_init__(self) -> None:
        if self.start > self.end:
            raise ValueError(f"Date range start {self.start} is after end {self.end}.")

    def days_newest_first(self) -> Iterator[date]:
        current = self.end
        while current >= self.start:
            yield current
            current -= timedelta(days=1)

    @classmethod
    def since_yesterday(cls, today: Optional[date] = None) -> DateRange:
        end = today or datetime.now(timezone.utc).date()
        return cls(start=end - timedelta(days=1), end=end)


@dataclass(frozen=True, slots=True)
class UnitOfWork:
    """One backfill fetch: a device, day, sensor type and processed flag."""

    device_id: str
    date: date
    sensor_type: str
    processed: bool
