"""
Conversion Errors
=================

Error kinds raised by the conversion library.

Only DecodeError and PackagingError end a job. The other kinds are soft: the
pipeline logs them and continues with a degraded but complete result.
"""

from typing import Optional

MAX_ERROR_MESSAGE_LENGTH = 500


class ConversionError(Exception):
    """Base class for all conversion errors."""

    fatal: bool = False

    def __init__(self, message: str, page_number: Optional[int] = None):
        super().__init__(message)
        self.message = message
        self.page_number = page_number

    def __str__(self) -> str:
        if self.page_number is not None:
            return f"{self.message} (page {self.page_number})"
        return self.message


class DecodeError(ConversionError):
    """Source document is unreadable or corrupt."""

    fatal = True


class ExtractionError(ConversionError):
    """Neither clustering nor the paragraph fallback produced blocks for a page."""


class OcrError(ConversionError):
    """OCR failed for a page. Counted toward the consecutive-failure threshold."""


class ClassificationError(ConversionError):
    """External classifier failed. The heuristic result is retained."""


class PackagingError(ConversionError):
    """Archive could not be built. Any partial archive is discarded."""

    fatal = True


class PersistenceError(ConversionError):
    """A job store write or read failed."""


def truncate_error(message: str, limit: int = MAX_ERROR_MESSAGE_LENGTH) -> str:
    """Clamp a user-visible error message to ``limit`` characters."""
    if message is None:
        return ""
    message = str(message)
    if len(message) <= limit:
        return message
    return message[:limit]
