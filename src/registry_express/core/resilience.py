"""
Resilience patterns for upstream fetches.

Retry with exponential backoff and a per-upstream circuit breaker, used by
the remote source adapters so one flaky repository host cannot stall every
poll tick.
"""

import logging
import random
import time
from collections import defaultdict
from typing import Callable

logger = logging.getLogger(__name__)


class ExponentialBackoff:
    """Exponential backoff with ±25% jitter."""

    def __init__(
        self,
        base_delay: float = 1.0,
        max_delay: float = 60.0,
        max_retries: int = 3,
        rng: random.Random | None = None,
    ):
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.max_retries = max_retries
        self._rng = rng or random.Random()

    def calculate_delay(self, attempt: int) -> float:
        """Delay before retry number ``attempt`` (0-based)."""
        delay = min(self.base_delay * (2**attempt), self.max_delay)
        jitter = delay * 0.25 * (self._rng.random() * 2 - 1)
        return max(0.0, delay + jitter)

    def should_retry(self, attempt: int) -> bool:
        return attempt < self.max_retries


class CircuitBreaker:
    """
    Skips an upstream after repeated failures.

    Once ``failure_threshold`` consecutive failures are recorded for a key,
    the circuit opens and ``is_open`` reports True until ``timeout`` seconds
    have passed; the next call after that resets the key and lets one
    request through.
    """

    def __init__(
        self,
        failure_threshold: int = 5,
        timeout: float = 120.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.failure_threshold = failure_threshold
        self.timeout = timeout
        self._clock = clock
        self.failures: dict[str, int] = defaultdict(int)
        self.opened_at: dict[str, float] = {}

    def record_failure(self, key: str) -> None:
        self.failures[key] += 1
        if self.failures[key] >= self.failure_threshold and key not in self.opened_at:
            self.opened_at[key] = self._clock()
            logger.warning(f"Circuit breaker OPEN for {key} ({self.failures[key]} failures)")

    def record_success(self, key: str) -> None:
        if self.failures.get(key):
            self.failures[key] = 0
        if self.opened_at.pop(key, None) is not None:
            logger.info(f"Circuit breaker CLOSED for {key}")

    def is_open(self, key: str) -> bool:
        opened = self.opened_at.get(key)
        if opened is None:
            return False
        if self._clock() - opened > self.timeout:
            del self.opened_at[key]
            self.failures[key] = 0
            logger.info(f"Circuit breaker reset for {key} (timeout passed)")
            return False
        return True
