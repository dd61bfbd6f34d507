"""Turn transport messages into normalized, classified readings."""

from __future__ import annotations

import json
import re
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Mapping, Optional, Tuple

from pydantic import ValidationError

from models.telemetry import Reading, SensorType, as_utc

ALIASES: Dict[str, str] = {
    "tmp": "temperature",
    "rh": "humidity",
    "sensor": "sensor_id",
    "device_id": "device",
}

_ZIGBEE_TOPIC = re.compile(r"^zigbee/(.+?)/(.+?)(/.*)?$")
_BRIDGE_TOPIC = re.compile(r"zigbee/.*?/bridge/(config|state|log)")

Fields = Mapping[str, Any]


class MessageParseError(ValueError):
    """Raised when a message cannot become a reading."""


class UnknownSensorTypeError(MessageParseError):
    """Raised when no classification rule matches a message."""


def _present(name: str) -> Callable[[Fields], bool]:
    return lambda fields: fields.get(name) is not None


def _sensor_id_is(sensor_id: str) -> Callable[[Fields], bool]:
    return lambda fields: fields.get("sensor_id") == sensor_id


# Evaluated top to bottom, first match wins.
SENSOR_TYPE_RULES: Tuple[Tuple[Callable[[Fields], bool], SensorType], ...] = (
    (_sensor_id_is("ptqs1005"), SensorType.ptqs1005),
    (_sensor_id_is("pms5003st"), SensorType.pms5003st),
    (_present("power"), SensorType.zigbee_power),
    (_present("temperature"), SensorType.zigbee_temp),
    (_present("contact"), SensorType.zigbee_contact),
    (_present("occupancy"), SensorType.zigbee_occupancy),
    (_present("angle_x"), SensorType.zigbee_vibration),
)


def is_ignored_topic(topic: str) -> bool:
    """Bridge config, state and log messages carry no readings."""
    return _BRIDGE_TOPIC.search(topic) is not None


def parse_topic(topic: str) -> Dict[str, str]:
    matched = _ZIGBEE_TOPIC.match(topic)
    if not matched:
        return {}
    return {"device": matched.group(1), "sensor_id": matched.group(2)}


def resolve_aliases(fields: Fields) -> Dict[str, Any]:
    """Rename legacy field names to their canonical names.

    A present alias overwrites the canonical field of the same meaning.
    """
    resolved = {name: value for name, value in fields.items() if name not in ALIASES}
    for alias, canonical in ALIASES.items():
        if alias in fields:
            resolved[canonical] = fields[alias]
    return resolved


def classify(fields: Fields) -> SensorType:
    for predicate, sensor_type in SENSOR_TYPE_RULES:
        if predicate(fields):
            return sensor_type
    raise UnknownSensorTypeError("can not determine sensor type")


def decode_payload(payload: bytes | str) -> Dict[str, Any]:
    try:
        message = json.loads(payload)
    except (UnicodeDecodeError, json.JSONDecodeError) as exc:
        raise MessageParseError("payload is not valid JSON") from exc
    if not isinstance(message, dict):
        raise MessageParseError("payload is not a JSON object")
    return message


def normalize_fields(topic: str, payload: Fields) -> Dict[str, Any]:
    lowered = {str(name).lower(): value for name, value in payload.items()}
    fields = resolve_aliases(lowered)
    fields.update(parse_topic(topic))
    return fields


def resolve_time(value: Any, now: Optional[datetime] = None) -> datetime:
    if value is None or value == "":
        return as_utc(now) if now is not None else datetime.now(timezone.utc)
    if isinstance(value, datetime):
        return as_utc(value)
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        # numeric times are epoch milliseconds
        try:
            return datetime.fromtimestamp(value / 1000, tz=timezone.utc)
        except (OverflowError, OSError, ValueError) as exc:
            raise MessageParseError(f"time value out of range: {value!r}") from exc
    if not isinstance(value, str):
        raise MessageParseError(f"unsupported time value: {value!r}")

    candidate = value.strip()
    if candidate.endswith("Z"):
        candidate = candidate[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(candidate)
    except ValueError as exc:
        raise MessageParseError(f"invalid time value: {value!r}") from exc
    return as_utc(parsed)


def message_to_reading(
    topic: str,
    payload: Fields,
    now: Optional[datetime] = None,
) -> Reading:
    """Build the raw (``processed=False``) reading for a message."""
    fields = normalize_fields(topic, payload)

    for identifier in ("device", "sensor_id"):
        if fields.get(identifier) is None or fields[identifier] == "":
            raise MessageParseError(f"message has no {identifier}")
    fields["device"] = str(fields["device"])
    fields["sensor_id"] = str(fields["sensor_id"])

    sensor_type = classify(fields)
    time = resolve_time(fields.get("time"), now=now)

    fields.update(
        time=time,
        date=time.date(),
        reading_type=sensor_type.value,
        processed=False,
    )
    try:
        return Reading.model_validate(fields)
    except ValidationError as exc:
        raise MessageParseError(
            f"message fields are invalid: {exc.error_count()} error(s)"
        ) from exc
