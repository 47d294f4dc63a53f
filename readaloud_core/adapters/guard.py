"""
Service Guard
=============

Single entry point for calls to optional or rate-limited external services.
A guarded call never raises: it returns ``Ok(value)``, ``Soft(reason)``, or
``Fatal(error)`` when the service raised a job-fatal ``ConversionError``.
"""

from __future__ import annotations

import logging
from typing import Any, Callable, Optional

from readaloud_core.adapters.circuit_breaker import CircuitBreaker
from readaloud_core.adapters.rate_limit import TokenBucketRateLimiter
from readaloud_core.errors import ConversionError
from readaloud_core.results import Fatal, Ok, Result, Soft

logger = logging.getLogger(__name__)


class ServiceGuard:
    """
    Applies the circuit breaker and rate limiter around a service call.

    Example:
        guard = ServiceGuard("claude", limiter, breaker)
        outcome = guard.call(service.classify, block.text)
        label = outcome.unwrap_or(None)
    """

    def __init__(self,
                 name: str,
                 rate_limiter: Optional[TokenBucketRateLimiter] = None,
                 breaker: Optional[CircuitBreaker] = None):
        self.name = name
        self.rate_limiter = rate_limiter
        self.breaker = breaker

    def call(self, fn: Callable[..., Any], *args, **kwargs) -> Result:
        if self.breaker is not None and not self.breaker.allow_request():
            return Soft(f"{self.name}: circuit open")

        if self.rate_limiter is not None and not self.rate_limiter.acquire():
            return Soft(f"{self.name}: rate limited")

        try:
            value = fn(*args, **kwargs)
        except ConversionError as e:
            if not e.fatal:
                return self._soft_failure(e)
            logger.error(f"{self.name} call failed fatally: {e}")
            return Fatal(e)
        except Exception as e:
            return self._soft_failure(e)

        if self.breaker is not None:
            self.breaker.record_success()
        return Ok(value)

    def _soft_failure(self, error: Exception) -> Soft:
        if self.breaker is not None:
            self.breaker.record_failure()
        logger.warning(f"{self.name} call failed: {error}")
        return Soft(f"{self.name}: {error}", error=error)
