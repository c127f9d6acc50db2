"""Bounded retry with exponential backoff for retryable query failures."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Callable, TypeVar

from .exceptions import QueryException

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class RetryPolicy:
    """Retry policy applied at the executor boundary.

    Only QueryExceptions flagged retryable are retried; everything else
    propagates on the first attempt. After ``max_attempts`` the last
    exception propagates unchanged.
    """

    max_attempts: int = 3
    min_backoff_seconds: float = 0.1
    max_backoff_seconds: float = 2.0
    scale_factor: float = 2.0

    @classmethod
    def from_settings(cls, settings) -> "RetryPolicy":
        return cls(
            max_attempts=max(1, settings.retry_max_attempts),
            min_backoff_seconds=settings.retry_min_backoff_seconds,
            max_backoff_seconds=settings.retry_max_backoff_seconds,
            scale_factor=settings.retry_scale_factor,
        )

    def backoff(self, attempt: int) -> float:
        """Delay after the given failed attempt (1-based)."""
        delay = self.min_backoff_seconds * (self.scale_factor ** (attempt - 1))
        return min(delay, self.max_backoff_seconds)

    def run(
        self,
        operation: Callable[[], T],
        description: str = "query",
        sleep: Callable[[float], None] = time.sleep,
    ) -> T:
        attempt = 1
        while True:
            try:
                return operation()
            except QueryException as e:
                if not e.retryable or attempt >= self.max_attempts:
                    raise
                delay = self.backoff(attempt)
                logger.warning(
                    "%s failed (attempt %d/%d, %s), retrying in %.2fs",
                    description, attempt, self.max_attempts, e.error_code_name, delay,
                )
                sleep(delay)
                attempt += 1
