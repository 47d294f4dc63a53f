"""
PyMuPDF Decoder
===============

PdfDecoder backed by PyMuPDF (fitz).

PyMuPDF reports span boxes with a top-left origin. They are converted here so
the rest of the library only ever sees bottom-origin coordinates.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import fitz  # PyMuPDF

from readaloud_core.adapters.base import PdfDecoder
from readaloud_core.errors import DecodeError
from readaloud_core.models import PositionedRun

logger = logging.getLogger(__name__)

# PyMuPDF span flag bits
FLAG_ITALIC = 2
FLAG_BOLD = 16


class PyMuPDFDecoder(PdfDecoder):
    """
    Decode a PDF file with PyMuPDF.

    Example:
        with PyMuPDFDecoder.open(Path("book.pdf")) as decoder:
            runs = decoder.positioned_runs(0)
    """

    def __init__(self, doc: "fitz.Document", source: Optional[Path] = None):
        self._doc = doc
        self.source = source

    @classmethod
    def open(cls, path: Path) -> "PyMuPDFDecoder":
        path = Path(path)
        if not path.exists():
            raise DecodeError(f"Source file not found: {path.name}")
        try:
            doc = fitz.open(str(path))
        except Exception as e:
            raise DecodeError(f"Cannot open {path.name}: {e}") from e
        if doc.needs_pass:
            doc.close()
            raise DecodeError(f"{path.name} is password protected")
        if doc.page_count == 0:
            doc.close()
            raise DecodeError(f"{path.name} has no pages")
        logger.info(f"Opened {path.name}: {doc.page_count} page(s)")
        return cls(doc, path)

    def _page(self, index: int) -> "fitz.Page":
        try:
            return self._doc[index]
        except Exception as e:
            raise DecodeError(f"Cannot load page: {e}", page_number=index + 1) from e

    def page_count(self) -> int:
        return self._doc.page_count

    def page_dimensions(self, index: int) -> Tuple[float, float]:
        rect = self._page(index).rect
        return float(rect.width), float(rect.height)

    def positioned_runs(self, index: int) -> List[PositionedRun]:
        page = self._page(index)
        page_height = float(page.rect.height)
        text_dict = page.get_text("dict", flags=fitz.TEXT_PRESERVE_WHITESPACE)

        runs: List[PositionedRun] = []
        for block in text_dict.get("blocks", []):
            if block.get("type") != 0:
                continue
            for line in block.get("lines", []):
                for span in line.get("spans", []):
                    text = span.get("text", "")
                    if not text:
                        continue
                    x0, y0, x1, y1 = span.get("bbox", (0, 0, 0, 0))
                    flags = int(span.get("flags", 0))
                    runs.append(PositionedRun(
                        text=text,
                        x=float(x0),
                        y=page_height - float(y1),
                        width=float(x1 - x0),
                        height=float(y1 - y0),
                        font_name=span.get("font", ""),
                        font_size=float(span.get("size", 0.0)),
                        bold=bool(flags & FLAG_BOLD),
                        italic=bool(flags & FLAG_ITALIC),
                    ))
        return runs

    def page_text(self, index: int) -> Optional[str]:
        return self._page(index).get_text("text")

    def image_regions(self, index: int) -> List[Tuple[float, float, float, float]]:
        page = self._page(index)
        page_height = float(page.rect.height)
        regions = []
        for info in page.get_image_info():
            x0, y0, x1, y1 = info.get("bbox", (0, 0, 0, 0))
            if x1 <= x0 or y1 <= y0:
                continue
            regions.append((float(x0), page_height - float(y1), float(x1 - x0), float(y1 - y0)))
        return regions

    def render_page_image(self, index: int, dpi: int) -> bytes:
        zoom = dpi / 72.0
        pix = self._page(index).get_pixmap(matrix=fitz.Matrix(zoom, zoom), alpha=False)
        return pix.tobytes("png")

    def metadata(self) -> Dict[str, Any]:
        meta = self._doc.metadata or {}
        return {k: v for k, v in meta.items() if v}

    def close(self) -> None:
        if self._doc is not None:
            self._doc.close()
            self._doc = None


def open_pdf(path: Path) -> PdfDecoder:
    """Default DecoderFactory."""
    return PyMuPDFDecoder.open(path)
