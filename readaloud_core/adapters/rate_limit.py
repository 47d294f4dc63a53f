"""
Rate Limiting
=============

Token-bucket limiter applied before every call to a rate-limited external
service (OCR engine, AI text service). ``acquire()`` never blocks: a rejected
call is skipped by the caller, who falls back to the non-enhanced path.

Three limits are enforced together:
- a per-minute bucket refilled continuously
- a rolling one-hour request cap
- a minimum interval between two requests
"""

from __future__ import annotations

import logging
import threading
import time
from collections import deque
from typing import Callable, Deque, Dict, Optional

logger = logging.getLogger(__name__)

HOUR_SECONDS = 3600.0


class TokenBucketRateLimiter:
    """
    Non-blocking request limiter for one provider.

    Example:
        limiter = TokenBucketRateLimiter("claude", per_minute=50)
        if limiter.acquire():
            call_service()
    """

    def __init__(self,
                 provider: str,
                 per_minute: int = 50,
                 per_hour: int = 3000,
                 min_interval: Optional[float] = None,
                 clock: Callable[[], float] = time.monotonic):
        self.provider = provider
        self.per_minute = max(1, per_minute)
        self.per_hour = max(1, per_hour)
        if min_interval is None:
            min_interval = max(0.1, 60.0 / self.per_minute)
        self.min_interval = min_interval
        self._clock = clock
        self._lock = threading.Lock()
        self._tokens = float(self.per_minute)
        self._last_refill = clock()
        self._last_request: Optional[float] = None
        self._hourly: Deque[float] = deque()

    def _refill(self, now: float) -> None:
        elapsed = now - self._last_refill
        if elapsed <= 0:
            return
        self._tokens = min(float(self.per_minute), self._tokens + elapsed * self.per_minute / 60.0)
        self._last_refill = now

    def _trim_hourly(self, now: float) -> None:
        while self._hourly and now - self._hourly[0] >= HOUR_SECONDS:
            self._hourly.popleft()

    def acquire(self) -> bool:
        """Take one token. False when any limit would be exceeded."""
        with self._lock:
            now = self._clock()
            self._refill(now)

            if self._last_request is not None and now - self._last_request < self.min_interval:
                logger.debug(f"[{self.provider}] minimum interval not met")
                return False

            self._trim_hourly(now)
            if len(self._hourly) >= self.per_hour:
                logger.debug(f"[{self.provider}] hourly limit ({self.per_hour}) reached")
                return False

            if self._tokens < 1:
                logger.debug(f"[{self.provider}] no tokens available")
                return False

            self._tokens -= 1
            self._last_request = now
            self._hourly.append(now)
            return True

    def stats(self) -> Dict[str, float]:
        with self._lock:
            now = self._clock()
            self._refill(now)
            self._trim_hourly(now)
            return {
                "available_tokens": round(self._tokens, 2),
                "per_minute": self.per_minute,
                "requests_last_hour": len(self._hourly),
                "per_hour": self.per_hour,
                "min_interval": self.min_interval,
            }


_limiters: Dict[str, TokenBucketRateLimiter] = {}
_limiters_lock = threading.Lock()


def get_rate_limiter(provider: str,
                     per_minute: int = 50,
                     per_hour: int = 3000,
                     min_interval: Optional[float] = None) -> TokenBucketRateLimiter:
    """Get or create the shared limiter for a provider."""
    with _limiters_lock:
        limiter = _limiters.get(provider)
        if limiter is None:
            limiter = TokenBucketRateLimiter(provider, per_minute, per_hour, min_interval)
            _limiters[provider] = limiter
            logger.info(
                f"Rate limiter for {provider}: {limiter.per_minute}/min, "
                f"{limiter.per_hour}/h, min interval {limiter.min_interval:.2f}s"
            )
        return limiter


def reset_rate_limiters() -> None:
    """Drop all shared limiters."""
    with _limiters_lock:
        _limiters.clear()
