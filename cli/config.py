from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Optional

DEFAULT_BASE_URL = "http://localhost:8000"
# backfills run for minutes to hours
DEFAULT_POLL_INTERVAL = 2.0
DEFAULT_POLL_TIMEOUT = 3600.0
DEFAULT_HTTP_TIMEOUT = 30.0

_BASE_URL_ENV = "API_BASE_URL"
_POLL_INTERVAL_ENV = "CLI_POLL_INTERVAL"
_POLL_TIMEOUT_ENV = "CLI_POLL_TIMEOUT"
_HTTP_TIMEOUT_ENV = "CLI_HTTP_TIMEOUT"


@dataclass(frozen=True)
class CLIConfig:
    base_url: str = DEFAULT_BASE_URL
    poll_interval: float = DEFAULT_POLL_INTERVAL
    poll_timeout: float = DEFAULT_POLL_TIMEOUT
    http_timeout: float = DEFAULT_HTTP_TIMEOUT


def _env_seconds(name: str, default: float) -> float:
    raw = (os.getenv(name) or "").strip()
    if not raw:
        return default
    try:
        seconds = float(raw)
    except ValueError:
        return default
    return seconds if seconds > 0 else default


def load_config(
    base_url: Optional[str] = None,
    poll_interval: Optional[float] = None,
    poll_timeout: Optional[float] = None,
) -> CLIConfig:
    url = base_url or os.getenv(_BASE_URL_ENV) or DEFAULT_BASE_URL
    return CLIConfig(
        base_url=url.rstrip("/"),
        poll_interval=(
            poll_interval
            if poll_interval is not None
            else _env_seconds(_POLL_INTERVAL_ENV, DEFAULT_POLL_INTERVAL)
        ),
        poll_timeout=(
            poll_timeout
            if poll_timeout is not None
            else _env_seconds(_POLL_TIMEOUT_ENV, DEFAULT_POLL_TIMEOUT)
        ),
        http_timeout=_env_seconds(_HTTP_TIMEOUT_ENV, DEFAULT_HTTP_TIMEOUT),
    )
