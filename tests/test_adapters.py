"""
External Service Guard Tests: rate limiting, circuit breaker, OCR fallback

Run with: pytest tests/test_adapters.py -v
"""

import sys
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).parent.parent))

from conftest import FakeDecoder, FakeOcrEngine, ocr_failure, run
from readaloud_core.adapters.base import OcrResult
from readaloud_core.adapters.circuit_breaker import CircuitBreaker, CircuitState
from readaloud_core.adapters.guard import ServiceGuard
from readaloud_core.adapters.rate_limit import TokenBucketRateLimiter, get_rate_limiter, reset_rate_limiters
from readaloud_core.config.settings import OcrSettings
from readaloud_core.errors import DecodeError
from readaloud_core.layout.clusterer import GeometryClusterer
from readaloud_core.models import PageStructure
from readaloud_core.pipeline.ocr_policy import OcrFallbackPolicy
from readaloud_core.results import Fatal, Ok, Soft


class FakeClock:
    def __init__(self, now=1000.0):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


class TestTokenBucketRateLimiter:
    """Tests for TokenBucketRateLimiter."""

    def test_per_minute_bucket(self):
        clock = FakeClock()
        limiter = TokenBucketRateLimiter("test", per_minute=3, min_interval=0.0, clock=clock)
        assert [limiter.acquire() for _ in range(4)] == [True, True, True, False]

    def test_bucket_refills(self):
        clock = FakeClock()
        limiter = TokenBucketRateLimiter("test", per_minute=2, min_interval=0.0, clock=clock)
        limiter.acquire()
        limiter.acquire()
        assert not limiter.acquire()
        clock.advance(30)
        assert limiter.acquire()

    def test_minimum_interval(self):
        clock = FakeClock()
        limiter = TokenBucketRateLimiter("test", per_minute=60, min_interval=1.0, clock=clock)
        assert limiter.acquire()
        clock.advance(0.5)
        assert not limiter.acquire()
        clock.advance(0.5)
        assert limiter.acquire()

    def test_default_interval_from_rate(self):
        limiter = TokenBucketRateLimiter("test", per_minute=50)
        assert limiter.min_interval == 1.2

    def test_hourly_cap(self):
        clock = FakeClock()
        limiter = TokenBucketRateLimiter("test", per_minute=60, per_hour=2, min_interval=0.0, clock=clock)
        assert limiter.acquire()
        assert limiter.acquire()
        clock.advance(120)
        assert not limiter.acquire()
        clock.advance(3600)
        assert limiter.acquire()

    def test_shared_limiter_per_provider(self):
        reset_rate_limiters()
        assert get_rate_limiter("claude") is get_rate_limiter("claude")
        assert get_rate_limiter("claude") is not get_rate_limiter("ocr")
        reset_rate_limiters()

    def test_stats(self):
        limiter = TokenBucketRateLimiter("test", per_minute=10, min_interval=0.0, clock=FakeClock())
        limiter.acquire()
        stats = limiter.stats()
        assert stats["requests_last_hour"] == 1
        assert stats["available_tokens"] == 9


class TestCircuitBreaker:
    """Tests for CircuitBreaker."""

    def test_opens_after_threshold(self):
        breaker = CircuitBreaker("test", failure_threshold=2, clock=FakeClock())
        breaker.record_failure()
        assert breaker.state == CircuitState.CLOSED
        breaker.record_failure()
        assert breaker.state == CircuitState.OPEN
        assert not breaker.allow_request()

    def test_success_resets_failure_count(self):
        breaker = CircuitBreaker("test", failure_threshold=2, clock=FakeClock())
        breaker.record_failure()
        breaker.record_success()
        breaker.record_failure()
        assert breaker.state == CircuitState.CLOSED

    def test_half_open_then_closed(self):
        clock = FakeClock()
        breaker = CircuitBreaker("test", failure_threshold=1, success_threshold=2, reset_timeout=60, clock=clock)
        breaker.record_failure()
        clock.advance(60)
        assert breaker.state == CircuitState.HALF_OPEN
        assert breaker.allow_request()
        breaker.record_success()
        assert breaker.state == CircuitState.HALF_OPEN
        breaker.record_success()
        assert breaker.state == CircuitState.CLOSED

    def test_half_open_failure_reopens(self):
        clock = FakeClock()
        breaker = CircuitBreaker("test", failure_threshold=1, reset_timeout=10, clock=clock)
        breaker.record_failure()
        clock.advance(10)
        assert breaker.allow_request()
        breaker.record_failure()
        assert breaker.state == CircuitState.OPEN


class TestServiceGuard:
    """Tests for ServiceGuard."""

    def test_ok(self):
        outcome = ServiceGuard("test").call(lambda x: x * 2, 21)
        assert isinstance(outcome, Ok)
        assert outcome.value == 42

    def test_exception_is_soft(self):
        def boom():
            raise RuntimeError("down")
        outcome = ServiceGuard("test").call(boom)
        assert isinstance(outcome, Soft)
        assert isinstance(outcome.error, RuntimeError)
        assert outcome.unwrap_or("fallback") == "fallback"

    def test_rate_limited_call_not_made(self):
        clock = FakeClock()
        limiter = TokenBucketRateLimiter("test", per_minute=1, min_interval=0.0, clock=clock)
        calls = []
        guard = ServiceGuard("test", rate_limiter=limiter)
        guard.call(calls.append, 1)
        outcome = guard.call(calls.append, 2)
        assert isinstance(outcome, Soft)
        assert "rate limited" in outcome.reason
        assert calls == [1]

    def test_open_circuit_rejects(self):
        breaker = CircuitBreaker("test", failure_threshold=1, clock=FakeClock())
        guard = ServiceGuard("test", breaker=breaker)

        def boom():
            raise RuntimeError("down")
        guard.call(boom)
        outcome = guard.call(lambda: "never")
        assert isinstance(outcome, Soft)
        assert "circuit open" in outcome.reason

    def test_fatal_conversion_error(self):
        def unreadable():
            raise DecodeError("Cannot load page", page_number=2)
        outcome = ServiceGuard("test").call(unreadable)
        assert isinstance(outcome, Fatal)
        assert isinstance(outcome.error, DecodeError)
        assert outcome.unwrap_or("fallback") == "fallback"

    def test_soft_conversion_error(self):
        def unreadable_text():
            raise ocr_failure()
        outcome = ServiceGuard("test").call(unreadable_text)
        assert isinstance(outcome, Soft)
        assert outcome.error is not None


def scanned_pages(count):
    return [PageStructure(n, 612, 792, is_scanned=True) for n in range(1, count + 1)]


class TestOcrFallbackPolicy:
    """Tests for OcrFallbackPolicy."""

    def test_success_replaces_blocks(self):
        engine = FakeOcrEngine(default=OcrResult("First paragraph.\n\nSecond paragraph.", 0.75))
        pages = scanned_pages(1)
        report = OcrFallbackPolicy(engine, ServiceGuard("ocr")).apply(pages, FakeDecoder([[]]))
        assert report.succeeded == [1]
        assert [b.text for b in pages[0].text_blocks] == ["First paragraph.", "Second paragraph."]
        assert pages[0].ocr_confidence == 0.75
        assert pages[0].extraction_method == "ocr"
        assert all(b.confidence == 0.75 for b in pages[0].text_blocks)

    def test_abandoned_after_three_consecutive_failures(self):
        """Pages after the third consecutive failure are never attempted."""
        engine = FakeOcrEngine(default=ocr_failure())
        pages = scanned_pages(5)
        decoder = FakeDecoder([[]] * 5)
        report = OcrFallbackPolicy(engine, ServiceGuard("ocr")).apply(pages, decoder)
        assert engine.calls == 3
        assert report.failed == [1, 2, 3]
        assert report.skipped == [4, 5]
        assert report.abandoned

    def test_success_resets_failure_count(self):
        engine = FakeOcrEngine(results=[
            ocr_failure(), ocr_failure(), OcrResult("Recovered text.", 0.9), ocr_failure(), ocr_failure(),
        ], default=ocr_failure())
        report = OcrFallbackPolicy(engine, ServiceGuard("ocr")).apply(scanned_pages(6), FakeDecoder([[]] * 6))
        assert report.succeeded == [3]
        assert report.attempted == [1, 2, 3, 4, 5, 6]
        assert not report.abandoned

    def test_empty_zero_confidence_is_failure(self):
        engine = FakeOcrEngine(default=OcrResult("", 0.0))
        report = OcrFallbackPolicy(engine, ServiceGuard("ocr")).apply(scanned_pages(1), FakeDecoder([[]]))
        assert report.failed == [1]

    def test_failed_page_keeps_extracted_blocks(self):
        pages = scanned_pages(1)
        pages[0].text_blocks = GeometryClusterer().cluster([run("Fig", 72, 400)], 612, 792, 1)
        engine = FakeOcrEngine(default=ocr_failure())
        OcrFallbackPolicy(engine, ServiceGuard("ocr")).apply(pages, FakeDecoder([[]]))
        assert [b.text for b in pages[0].text_blocks] == ["Fig"]

    def test_disabled_skips_all(self):
        engine = FakeOcrEngine()
        settings = OcrSettings(enabled=False)
        report = OcrFallbackPolicy(engine, ServiceGuard("ocr"), settings).apply(scanned_pages(2), FakeDecoder([[]] * 2))
        assert report.skipped == [1, 2]
        assert engine.calls == 0

    def test_digital_pages_not_attempted(self):
        engine = FakeOcrEngine()
        pages = [PageStructure(1, 612, 792, is_scanned=False)]
        report = OcrFallbackPolicy(engine, ServiceGuard("ocr")).apply(pages, FakeDecoder([[]]))
        assert report.attempted == []
        assert engine.calls == 0


    def test_rate_limited_pages_are_skipped_not_failed(self):
        """Rejected calls never reach the engine and do not count toward abandonment."""
        limiter = TokenBucketRateLimiter("ocr", per_minute=1, min_interval=0.0, clock=FakeClock())
        engine = FakeOcrEngine()
        policy = OcrFallbackPolicy(engine, ServiceGuard("ocr", rate_limiter=limiter))
        report = policy.apply(scanned_pages(6), FakeDecoder([[]] * 6))
        assert engine.calls == 1
        assert report.succeeded == [1]
        assert report.failed == []
        assert report.skipped == [2, 3, 4, 5, 6]
        assert not report.abandoned

    def test_unrenderable_page_is_fatal(self):
        class BrokenDecoder(FakeDecoder):
            def render_page_image(self, index, dpi):
                raise DecodeError("Cannot load page", page_number=index + 1)

        engine = FakeOcrEngine()
        with pytest.raises(DecodeError):
            OcrFallbackPolicy(engine, ServiceGuard("ocr")).apply(scanned_pages(2), BrokenDecoder([[]] * 2))
        assert engine.calls == 0
