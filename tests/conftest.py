"""
Shared fixtures for the conversion pipeline tests.

The fakes stand in for the PDF decoder, OCR engine and AI text service so
the pipeline runs end to end without PyMuPDF documents or Tesseract.
"""

import io
import sys
from pathlib import Path
from typing import Callable, Dict, List, Optional, Union

import pytest
from PIL import Image

sys.path.insert(0, str(Path(__file__).parent.parent))

from readaloud_core.adapters.base import OcrEngine, OcrResult, PdfDecoder, TextService
from readaloud_core.errors import OcrError
from readaloud_core.models import PositionedRun
from storage import LocalJobStore

PAGE_WIDTH = 612.0
PAGE_HEIGHT = 792.0


def png_bytes(width: int = 60, height: int = 80) -> bytes:
    buffer = io.BytesIO()
    Image.new("RGB", (width, height), "white").save(buffer, format="PNG")
    return buffer.getvalue()


def run(text: str, x: float, y: float, size: float = 12.0, width: Optional[float] = None) -> PositionedRun:
    """A run whose width follows its text length."""
    return PositionedRun(
        text=text,
        x=x,
        y=y,
        width=width if width is not None else len(text) * size * 0.5,
        height=size,
        font_name="Times-Roman",
        font_size=size,
    )


class FakeDecoder(PdfDecoder):
    """In-memory document: one list of runs per page."""

    def __init__(self,
                 pages: List[List[PositionedRun]],
                 size=(PAGE_WIDTH, PAGE_HEIGHT),
                 metadata: Optional[Dict] = None,
                 images: Optional[Dict[int, list]] = None):
        self.pages = pages
        self.size = size
        self._metadata = metadata or {}
        self.images = images or {}
        self.rendered: List[tuple] = []
        self.closed = False

    def page_count(self) -> int:
        return len(self.pages)

    def page_dimensions(self, index: int):
        return self.size

    def positioned_runs(self, index: int) -> List[PositionedRun]:
        return list(self.pages[index])

    def render_page_image(self, index: int, dpi: int) -> bytes:
        self.rendered.append((index, dpi))
        return png_bytes()

    def image_regions(self, index: int):
        return list(self.images.get(index, []))

    def metadata(self):
        return dict(self._metadata)

    def close(self) -> None:
        self.closed = True


class FakeOcrEngine(OcrEngine):
    """Returns queued results in order; an exception entry is raised."""

    def __init__(self, results: Optional[List[Union[OcrResult, Exception]]] = None,
                 default: Union[OcrResult, Exception, None] = None):
        self.results = list(results or [])
        self.default = default if default is not None else OcrResult("Recognized page text.", 0.9)
        self.calls = 0

    def recognize(self, image: bytes, language: str) -> OcrResult:
        self.calls += 1
        outcome = self.results.pop(0) if self.results else self.default
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


class FakeTextService(TextService):
    def __init__(self, labels: Optional[Dict[str, str]] = None,
                 corrector: Optional[Callable[[str], str]] = None,
                 error: Optional[Exception] = None):
        self.labels = labels or {}
        self.corrector = corrector
        self.error = error
        self.classified: List[str] = []

    def correct_text(self, text, context):
        if self.error:
            raise self.error
        return self.corrector(text) if self.corrector else text

    def classify(self, text):
        self.classified.append(text)
        if self.error:
            raise self.error
        return self.labels.get(text)


def horses_pages() -> List[List[PositionedRun]]:
    """
    Page 1: a heading and three bullet items.
    Page 2: one paragraph and a page-number footer.
    """
    page_one = [
        run("Horses", 72, 700, size=24),
        run("• Horses run fast", 72, 650),
        run("• Horses eat hay", 72, 615),
        run("• Horses sleep standing", 72, 580),
    ]
    page_two = [
        run("Horses are large animals that live on farms and in the wild.", 72, 700, width=400),
        run("2", 300, 30, width=6),
    ]
    return [page_one, page_two]


def ocr_failure(message: str = "engine crashed") -> OcrError:
    return OcrError(message)


@pytest.fixture
def job_store(tmp_path):
    store = LocalJobStore(tmp_path / "jobs")
    store.connect()
    return store


@pytest.fixture
def sample_decoder():
    return FakeDecoder(horses_pages(), metadata={"title": "All About Horses", "author": "A. Writer"})
