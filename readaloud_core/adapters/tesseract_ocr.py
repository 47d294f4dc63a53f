"""
Tesseract OCR Engine
====================

OcrEngine backed by pytesseract. Requires the ``tesseract`` binary on PATH.
"""

from __future__ import annotations

import logging
from io import BytesIO
from typing import List

import pytesseract
from PIL import Image
from pytesseract import Output

from readaloud_core.adapters.base import OcrEngine, OcrResult
from readaloud_core.errors import OcrError

logger = logging.getLogger(__name__)


class TesseractOcrEngine(OcrEngine):
    """Recognise page images with Tesseract."""

    def __init__(self, timeout: float = 60.0, config: str = "--psm 3"):
        self.timeout = timeout
        self.config = config

    def recognize(self, image: bytes, language: str) -> OcrResult:
        try:
            with Image.open(BytesIO(image)) as img:
                data = pytesseract.image_to_data(
                    img,
                    lang=language,
                    config=self.config,
                    output_type=Output.DICT,
                    timeout=self.timeout,
                )
        except RuntimeError as e:
            # pytesseract signals a timeout with RuntimeError
            raise OcrError(f"Tesseract timed out after {self.timeout:.0f}s") from e
        except Exception as e:
            raise OcrError(f"Tesseract failed: {e}") from e

        return self._to_result(data)

    @staticmethod
    def _to_result(data: dict) -> OcrResult:
        """Rebuild line text and mean word confidence from image_to_data output."""
        lines: List[str] = []
        current_key = None
        current_words: List[str] = []
        confidences: List[float] = []
        previous_block = None

        for i, word in enumerate(data.get("text", [])):
            word = (word or "").strip()
            if not word:
                continue
            conf = float(data["conf"][i])
            if conf >= 0:
                confidences.append(conf)
            key = (data["block_num"][i], data["par_num"][i], data["line_num"][i])
            if key != current_key:
                if current_words:
                    lines.append(" ".join(current_words))
                # Blank line between Tesseract blocks keeps paragraphs apart
                if previous_block is not None and data["block_num"][i] != previous_block:
                    lines.append("")
                current_key = key
                current_words = []
                previous_block = data["block_num"][i]
            current_words.append(word)

        if current_words:
            lines.append(" ".join(current_words))

        confidence = sum(confidences) / len(confidences) / 100.0 if confidences else 0.0
        return OcrResult(text="\n".join(lines), confidence=round(confidence, 4))
