"""
Backoff and conflict retry.

Provides the exponential backoff used by the work queue and the
``retry_on_conflict`` helper that re-runs a read-modify-write cycle when the
API server rejects a write because of a stale resourceVersion.
"""

from __future__ import annotations

import random
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import TypeVar

import structlog

from .errors import ConflictError

T = TypeVar("T")
logger = structlog.get_logger(__name__)


@dataclass
class RetryConfig:
    """Configuration for conflict retries."""

    # Maximum number of attempts, the first one included
    max_attempts: int = 5

    # Base delay between attempts (seconds)
    base_delay: float = 0.01

    # Maximum delay between attempts (seconds)
    max_delay: float = 1.0

    # Exponential backoff multiplier
    backoff_multiplier: float = 2.0

    # Add random jitter to prevent thundering herd
    jitter: bool = True

    # Maximum jitter factor (0.0 to 1.0)
    jitter_factor: float = 0.1


class ExponentialBackoff:
    """Exponential backoff with optional jitter."""

    def __init__(
        self,
        base_delay: float,
        max_delay: float,
        multiplier: float = 2.0,
        jitter: bool = False,
        jitter_factor: float = 0.1,
    ):
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.multiplier = multiplier
        self.jitter = jitter
        self.jitter_factor = jitter_factor

    def calculate_delay(self, attempt: int) -> float:
        """Delay before the given attempt (1-based)."""
        try:
            delay = self.base_delay * (self.multiplier ** (attempt - 1))
        except OverflowError:
            delay = self.max_delay
        delay = min(delay, self.max_delay)

        if self.jitter:
            jitter_range = delay * self.jitter_factor
            delay = max(0.0, delay + random.uniform(-jitter_range, jitter_range))

        return delay


DEFAULT_RETRY_CONFIG = RetryConfig()


def retry_on_conflict(
    func: Callable[[], T],
    config: RetryConfig | None = None,
    sleep: Callable[[float], None] = time.sleep,
) -> T:
    """
    Run *func* until it stops raising ``ConflictError``.

    *func* must perform the whole read-modify-write cycle so every attempt
    starts from a fresh read. Other exceptions propagate immediately; the last
    ``ConflictError`` propagates once attempts are exhausted.
    """
    retry_config = config or DEFAULT_RETRY_CONFIG
    backoff = ExponentialBackoff(
        base_delay=retry_config.base_delay,
        max_delay=retry_config.max_delay,
        multiplier=retry_config.backoff_multiplier,
        jitter=retry_config.jitter,
        jitter_factor=retry_config.jitter_factor,
    )

    for attempt in range(1, retry_config.max_attempts + 1):
        try:
            return func()
        except ConflictError:
            if attempt >= retry_config.max_attempts:
                raise
            delay = backoff.calculate_delay(attempt)
            logger.debug("conflict.retry", attempt=attempt, delay=round(delay, 3))
            sleep(delay)

    raise AssertionError("unreachable")
