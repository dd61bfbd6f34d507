from __future__ import annotations

import logging
import time
from datetime import date, datetime
from logging.config import dictConfig
from typing import Any, Iterable, Sequence

from settings import get_settings

# Context attached through ``extra=`` by the pipeline and backfill paths.
CONTEXT_KEYS = (
    "job_id",
    "source",
    "topic",
    "device_id",
    "sensor_id",
    "sensor_type",
    "date",
    "processed",
    "metric",
    "corrections",
    "attempt",
    "row_count",
    "reason",
)

# paho logs every PINGREQ at DEBUG; httpx logs every request at INFO.
_LIBRARY_LEVELS = {"paho": "WARNING", "httpx": "WARNING", "httpcore": "WARNING"}

_configured = False


def _render(value: Any) -> str:
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


class ContextualFormatter(logging.Formatter):
    """Appends ``key=value`` pairs for the context keys set on a record."""

    # timestamps are rendered with a ``Z`` suffix
    converter = time.gmtime

    def __init__(
        self,
        fmt: str | None = None,
        datefmt: str | None = None,
        style: str = "%",
        context_keys: Iterable[str] | None = None,
    ) -> None:
        super().__init__(fmt=fmt, datefmt=datefmt, style=style)
        self.context_keys: Sequence[str] = tuple(context_keys or CONTEXT_KEYS)

    def format(self, record: logging.LogRecord) -> str:
        message = super().format(record)
        context = " ".join(
            f"{key}={_render(getattr(record, key))}"
            for key in self.context_keys
            if getattr(record, key, None) is not None
        )
        return f"{message} | {context}" if context else message


def configure_logging(level: str | int | None = None) -> None:
    """Install the contextual console handler on the root logger once."""
    global _configured
    if _configured:
        return

    log_level = level if level is not None else get_settings().log_level
    dictConfig(
        {
            "version": 1,
            "disable_existing_loggers": False,
            "formatters": {
                "contextual": {
                    "()": "logging_config.ContextualFormatter",
                    "fmt": "%(asctime)sZ %(levelname)-7s %(name)s: %(message)s",
                    "datefmt": "%Y-%m-%dT%H:%M:%S",
                    "context_keys": list(CONTEXT_KEYS),
                }
            },
            "handlers": {
                "console": {
                    "class": "logging.StreamHandler",
                    "level": log_level,
                    "formatter": "contextual",
                }
            },
            "loggers": {name: {"level": lvl} for name, lvl in _LIBRARY_LEVELS.items()},
            "root": {"handlers": ["console"], "level": log_level},
        }
    )
    _configured = True
