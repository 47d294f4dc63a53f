"""
Circuit Breaker
===============

Stops calling an external service that keeps failing.

States:
- CLOSED: normal operation, consecutive failures are counted
- OPEN: calls are rejected until ``reset_timeout`` has passed
- HALF_OPEN: trial calls are let through; enough successes close the
  circuit, a failure opens it again
"""

from __future__ import annotations

import logging
import threading
import time
from enum import Enum
from typing import Callable, Optional

logger = logging.getLogger(__name__)


class CircuitState(str, Enum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


class CircuitBreaker:
    """Per-provider failure tracker."""

    def __init__(self,
                 provider: str,
                 failure_threshold: int = 5,
                 success_threshold: int = 2,
                 reset_timeout: float = 60.0,
                 clock: Callable[[], float] = time.monotonic):
        self.provider = provider
        self.failure_threshold = failure_threshold
        self.success_threshold = success_threshold
        self.reset_timeout = reset_timeout
        self._clock = clock
        self._lock = threading.Lock()
        self._state = CircuitState.CLOSED
        self._failures = 0
        self._successes = 0
        self._opened_at: Optional[float] = None

    @property
    def state(self) -> CircuitState:
        with self._lock:
            self._maybe_half_open()
            return self._state

    def _maybe_half_open(self) -> None:
        if self._state == CircuitState.OPEN and self._opened_at is not None:
            if self._clock() - self._opened_at >= self.reset_timeout:
                self._state = CircuitState.HALF_OPEN
                self._successes = 0
                logger.info(f"[{self.provider}] circuit half-open, trying again")

    def allow_request(self) -> bool:
        with self._lock:
            self._maybe_half_open()
            return self._state != CircuitState.OPEN

    def record_success(self) -> None:
        with self._lock:
            if self._state == CircuitState.HALF_OPEN:
                self._successes += 1
                if self._successes >= self.success_threshold:
                    self._state = CircuitState.CLOSED
                    self._failures = 0
                    logger.info(f"[{self.provider}] circuit closed, service recovered")
            else:
                self._failures = 0

    def record_failure(self) -> None:
        with self._lock:
            if self._state == CircuitState.HALF_OPEN:
                self._open()
                return
            self._failures += 1
            if self._failures >= self.failure_threshold:
                self._open()

    def _open(self) -> None:
        self._state = CircuitState.OPEN
        self._opened_at = self._clock()
        self._successes = 0
        logger.warning(
            f"[{self.provider}] circuit open after {self._failures} failure(s), "
            f"pausing for {self.reset_timeout:.0f}s"
        )
