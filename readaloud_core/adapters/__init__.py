"""
Collaborator Adapters
=====================

Interfaces to the external services the pipeline consumes, plus the
protection applied around rate-limited ones.

Components:
- PdfDecoder, OcrEngine, TextService: abstract collaborator interfaces
- TokenBucketRateLimiter: non-blocking per-provider request limiter
- CircuitBreaker: stops calling a provider that keeps failing
- ServiceGuard: wraps a call and returns Ok | Soft, never raises

Concrete implementations live in their own modules so that importing the
interfaces does not load the third-party backends:
- readaloud_core.adapters.pymupdf_decoder.PyMuPDFDecoder
- readaloud_core.adapters.tesseract_ocr.TesseractOcrEngine
- readaloud_core.adapters.claude_text.ClaudeTextService
"""

from readaloud_core.adapters.base import (
    DecoderFactory,
    OcrEngine,
    OcrResult,
    PdfDecoder,
    TextService,
)

from readaloud_core.adapters.rate_limit import (
    TokenBucketRateLimiter,
    get_rate_limiter,
    reset_rate_limiters,
)

from readaloud_core.adapters.circuit_breaker import (
    CircuitBreaker,
    CircuitState,
)

from readaloud_core.adapters.guard import ServiceGuard

__all__ = [
    "DecoderFactory",
    "OcrEngine",
    "OcrResult",
    "PdfDecoder",
    "TextService",
    "TokenBucketRateLimiter",
    "get_rate_limiter",
    "reset_rate_limiters",
    "CircuitBreaker",
    "CircuitState",
    "ServiceGuard",
]
