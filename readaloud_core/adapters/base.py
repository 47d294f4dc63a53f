"""
Collaborator Interfaces
=======================

Abstract base classes for the services the pipeline consumes but does not
implement: the PDF decoder/renderer, the OCR engine and the optional AI text
service. Extend these classes to plug in a different backend.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Tuple
import logging

from readaloud_core.models import PositionedRun

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class OcrResult:
    """Recognised page text with a confidence in 0..1."""
    text: str
    confidence: float


class PdfDecoder(ABC):
    """
    Read-only view of a paginated source document.

    Page indices are 0-based. Run coordinates use a bottom-left origin.

    Example:
        class MyDecoder(PdfDecoder):
            def page_count(self) -> int:
                return len(self._pages)
            ...
    """

    @abstractmethod
    def page_count(self) -> int:
        """Number of pages in the document."""
        pass

    @abstractmethod
    def page_dimensions(self, index: int) -> Tuple[float, float]:
        """(width, height) of a page in points."""
        pass

    @abstractmethod
    def positioned_runs(self, index: int) -> List[PositionedRun]:
        """All text runs of a page, in no particular order."""
        pass

    @abstractmethod
    def render_page_image(self, index: int, dpi: int) -> bytes:
        """Render a page to PNG bytes."""
        pass

    def page_text(self, index: int) -> Optional[str]:
        """Raw page text. None lets the caller derive it from the runs."""
        return None

    def image_regions(self, index: int) -> List[Tuple[float, float, float, float]]:
        """Placed images as (x, y, width, height), bottom-left origin."""
        return []

    def metadata(self) -> Dict[str, Any]:
        """Document metadata (title, author, ...)."""
        return {}

    def close(self) -> None:
        """Release the underlying document."""
        pass

    def __enter__(self) -> "PdfDecoder":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()


# Opens a decoder for a source path. Raises DecodeError when unreadable.
DecoderFactory = Callable[[Path], PdfDecoder]


class OcrEngine(ABC):
    """Turns a page image into text."""

    @abstractmethod
    def recognize(self, image: bytes, language: str) -> OcrResult:
        """
        Recognise text in a page image.

        Args:
            image: PNG bytes
            language: Engine language code (e.g. "eng")

        Raises:
            OcrError: Recognition failed
        """
        pass


class TextService(ABC):
    """Optional AI helper for text correction and block classification."""

    @property
    def service_name(self) -> str:
        return self.__class__.__name__

    @abstractmethod
    def correct_text(self, text: str, context: Dict[str, Any]) -> str:
        """Return a corrected version of extracted text."""
        pass

    @abstractmethod
    def classify(self, text: str) -> Optional[str]:
        """Return a block type label for the text, or None when unsure."""
        pass
