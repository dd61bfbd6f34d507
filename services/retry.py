"""Retry policy for upstream calls and store writes made during backfill."""

from __future__ import annotations

import logging
import time
from typing import Any, Callable, Optional, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


class RetryExhaustedError(RuntimeError):
    """Raised when an attempt limit was configured and every attempt failed."""


class Retrier:
    """Call a function until it succeeds.

    With ``max_attempts=None`` (the default) there is no limit: a call that
    keeps failing blocks its caller forever. Failures are logged and followed
    by a fixed ``delay``.
    """

    def __init__(
        self,
        delay: float = 5.0,
        max_attempts: Optional[int] = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.delay = delay
        self.max_attempts = max_attempts
        self._sleep = sleep

    def call(self, func: Callable[[], T], description: str, **context: Any) -> T:
        attempt = 0
        while True:
            attempt += 1
            try:
                return func()
            except Exception as exc:
                logger.warning(
                    "%s failed: %s",
                    description,
                    exc,
                    extra={**context, "attempt": attempt},
                )
                if self.max_attempts is not None and attempt >= self.max_attempts:
                    raise RetryExhaustedError(
                        f"{description} failed after {attempt} attempts"
                    ) from exc
            if self.delay:
                self._sleep(self.delay)
