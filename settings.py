from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache
from typing import Optional, Tuple


_STORE_PATH_ENV = "TELEMETRY_STORE_PATH"
_MQTT_ENABLED_ENV = "MQTT_ENABLED"
_MQTT_HOST_ENV = "MQTT_HOST"
_MQTT_PORT_ENV = "MQTT_PORT"
_MQTT_USERNAME_ENV = "MQTT_USERNAME"
_MQTT_PASSWORD_ENV = "MQTT_PASSWORD"
_MQTT_TLS_ENV = "MQTT_TLS"
_MQTT_CLIENT_ID_ENV = "MQTT_CLIENT_ID"
_GRAPHQL_URL_ENV = "AURAE_GRAPHQL_URL"
_GRAPHQL_TIMEOUT_ENV = "AURAE_GRAPHQL_TIMEOUT"
_NEMO_TIMEOUT_ENV = "NEMO_TIMEOUT"
_NEMO_SESSION_TTL_ENV = "NEMO_SESSION_TTL"
_NEMO_PREFIXES = ("NEMO", "NEMO_S5")
_BACKFILL_CONCURRENCY_ENV = "BACKFILL_CONCURRENCY"
_BACKFILL_WORKERS_ENV = "BACKFILL_WORKER_COUNT"
_BACKFILL_RETRY_DELAY_ENV = "BACKFILL_RETRY_DELAY"
_BACKFILL_MAX_ATTEMPTS_ENV = "BACKFILL_MAX_ATTEMPTS"
_LOG_LEVEL_ENV = "LOG_LEVEL"

_TRUTHY = {"1", "true", "t", "yes", "y", "on"}


@dataclass(frozen=True)
class NemoCloudSettings:
    name: str
    url: str
    company: str
    operator: str
    password: str


@dataclass(frozen=True)
class Settings:
    store_persistence_path: Optional[str]
    mqtt_enabled: bool
    mqtt_host: str
    mqtt_port: int
    mqtt_username: Optional[str]
    mqtt_password: Optional[str]
    mqtt_tls: bool
    mqtt_client_id: str
    graphql_url: str
    graphql_timeout: float
    nemo_clouds: Tuple[NemoCloudSettings, ...]
    nemo_timeout: float
    nemo_session_ttl: float
    backfill_concurrency: int
    backfill_workers: int
    backfill_retry_delay: float
    backfill_max_attempts: Optional[int]
    log_level: str


def _read_str_env(name: str, default: str) -> str:
    value = os.getenv(name)
    if value is None:
        return default
    candidate = value.strip()
    return candidate or default


def _read_optional_env(name: str, default: Optional[str]) -> Optional[str]:
    value = os.getenv(name)
    if value is None:
        return default
    candidate = value.strip()
    return candidate or None


def _read_positive_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None:
        return default
    candidate = value.strip()
    if not candidate:
        return default
    try:
        parsed = int(candidate)
    except ValueError:
        return default
    return parsed if parsed > 0 else default


def _read_non_negative_float(name: str, default: float) -> float:
    value = os.getenv(name)
    if value is None:
        return default
    candidate = value.strip()
    if not candidate:
        return default
    try:
        parsed = float(candidate)
    except ValueError:
        return default
    return parsed if parsed >= 0 else default


def _read_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    candidate = value.strip().lower()
    if not candidate:
        return default
    return candidate in _TRUTHY


def _read_max_attempts() -> Optional[int]:
    # 0 or unset keeps retrying forever.
    attempts = _read_positive_int(_BACKFILL_MAX_ATTEMPTS_ENV, 0)
    return attempts or None


def _read_log_level(default: str) -> str:
    value = os.getenv(_LOG_LEVEL_ENV)
    if value is None:
        return default
    candidate = value.strip()
    if not candidate:
        return default
    return candidate.upper()


def _read_nemo_clouds() -> Tuple[NemoCloudSettings, ...]:
    clouds = []
    for prefix in _NEMO_PREFIXES:
        url = _read_optional_env(f"{prefix}_URL", None)
        if url is None:
            continue
        clouds.append(
            NemoCloudSettings(
                name=prefix.lower(),
                url=url.rstrip("/"),
                company=_read_str_env(f"{prefix}_COMPANY", ""),
                operator=_read_str_env(f"{prefix}_OPERATOR", ""),
                password=_read_str_env(f"{prefix}_PASSWORD", ""),
            )
        )
    return tuple(clouds)


@lru_cache
def get_settings() -> Settings:
    return Settings(
        store_persistence_path=_read_optional_env(_STORE_PATH_ENV, "./tmp/telemetry.json"),
        mqtt_enabled=_read_bool(_MQTT_ENABLED_ENV, False),
        mqtt_host=_read_str_env(_MQTT_HOST_ENV, "localhost"),
        mqtt_port=_read_positive_int(_MQTT_PORT_ENV, 1883),
        mqtt_username=_read_optional_env(_MQTT_USERNAME_ENV, None),
        mqtt_password=_read_optional_env(_MQTT_PASSWORD_ENV, None),
        mqtt_tls=_read_bool(_MQTT_TLS_ENV, False),
        mqtt_client_id=_read_str_env(_MQTT_CLIENT_ID_ENV, "telemetry-ingest"),
        graphql_url=_read_str_env(_GRAPHQL_URL_ENV, "https://app.openaurae.org/api/graphql"),
        graphql_timeout=_read_non_negative_float(_GRAPHQL_TIMEOUT_ENV, 120.0),
        nemo_clouds=_read_nemo_clouds(),
        nemo_timeout=_read_non_negative_float(_NEMO_TIMEOUT_ENV, 120.0),
        nemo_session_ttl=_read_non_negative_float(_NEMO_SESSION_TTL_ENV, 25 * 60.0),
        backfill_concurrency=_read_positive_int(_BACKFILL_CONCURRENCY_ENV, 20),
        backfill_workers=_read_positive_int(_BACKFILL_WORKERS_ENV, 2),
        backfill_retry_delay=_read_non_negative_float(_BACKFILL_RETRY_DELAY_ENV, 5.0),
        backfill_max_attempts=_read_max_attempts(),
        log_level=_read_log_level("INFO"),
    )
