"""
OCR Fallback Policy
===================

OCR for scanned pages, attempted in page order. A failure is an engine
exception or a zero-confidence result with no text. A call the guard rejects
(rate limited, circuit open) never reached the engine: that page is skipped
and does not count as a failure.

After ``max_consecutive_failures`` failures in a row, OCR is abandoned for
every remaining scanned page; those pages keep the blocks they already have
from digital extraction. A success resets the count.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import List, Optional

from readaloud_core.adapters.base import OcrEngine, OcrResult, PdfDecoder
from readaloud_core.adapters.guard import ServiceGuard
from readaloud_core.config.settings import OcrSettings
from readaloud_core.layout.clusterer import GeometryClusterer
from readaloud_core.models import PageStructure
from readaloud_core.results import Fatal, Ok, Soft

logger = logging.getLogger(__name__)


@dataclass
class OcrReport:
    """What the policy did for one document."""
    attempted: List[int] = field(default_factory=list)
    succeeded: List[int] = field(default_factory=list)
    failed: List[int] = field(default_factory=list)
    skipped: List[int] = field(default_factory=list)
    abandoned: bool = False

    def to_dict(self) -> dict:
        return {
            "ocr_attempted": len(self.attempted),
            "ocr_succeeded": len(self.succeeded),
            "ocr_failed": len(self.failed),
            "ocr_skipped": len(self.skipped),
            "ocr_abandoned": self.abandoned,
        }


class OcrFallbackPolicy:
    """
    Applies OCR to scanned pages with a consecutive-failure cut-off.

    Example:
        policy = OcrFallbackPolicy(engine, guard, settings.ocr)
        report = policy.apply(structure.pages, decoder)
    """

    def __init__(self,
                 engine: Optional[OcrEngine],
                 guard: Optional[ServiceGuard] = None,
                 settings: Optional[OcrSettings] = None,
                 clusterer: Optional[GeometryClusterer] = None):
        self.engine = engine
        self.guard = guard or ServiceGuard("ocr")
        self.settings = settings or OcrSettings()
        self.clusterer = clusterer or GeometryClusterer()

    def _recognize(self, decoder: PdfDecoder, page: PageStructure) -> OcrResult:
        image = decoder.render_page_image(page.page_number - 1, self.settings.dpi)
        return self.engine.recognize(image, self.settings.language)

    def apply(self, pages: List[PageStructure], decoder: PdfDecoder) -> OcrReport:
        """Run OCR over the scanned pages in place."""
        report = OcrReport()
        scanned = [p for p in sorted(pages, key=lambda p: p.page_number) if p.is_scanned]
        if not scanned:
            return report
        if self.engine is None or not self.settings.enabled:
            report.skipped = [p.page_number for p in scanned]
            return report

        consecutive_failures = 0
        for page in scanned:
            if consecutive_failures >= self.settings.max_consecutive_failures:
                if not report.abandoned:
                    logger.warning(
                        f"OCR abandoned after {consecutive_failures} consecutive failures; "
                        f"remaining scanned pages keep their extracted text"
                    )
                report.abandoned = True
                report.skipped.append(page.page_number)
                continue

            outcome = self.guard.call(self._recognize, decoder, page)
            if isinstance(outcome, Fatal):
                raise outcome.error
            if isinstance(outcome, Soft) and outcome.error is None:
                logger.info(f"Page {page.page_number}: OCR skipped ({outcome.reason})")
                report.skipped.append(page.page_number)
                continue

            report.attempted.append(page.page_number)
            if self._accept(page, outcome):
                consecutive_failures = 0
                report.succeeded.append(page.page_number)
            else:
                consecutive_failures += 1
                report.failed.append(page.page_number)

        logger.info(
            f"OCR: {len(report.succeeded)} succeeded, {len(report.failed)} failed, "
            f"{len(report.skipped)} skipped"
        )
        return report

    def _accept(self, page: PageStructure, outcome) -> bool:
        if not isinstance(outcome, Ok):
            logger.warning(f"Page {page.page_number}: OCR failed ({outcome.reason})")
            return False

        result: OcrResult = outcome.value
        blocks = []
        if result.text.strip():
            blocks = self.clusterer.split_paragraphs(
                result.text, page.width, page.height, page.page_number,
            )
        if result.confidence <= 0 and not blocks:
            logger.warning(f"Page {page.page_number}: OCR returned nothing")
            return False

        page.ocr_confidence = result.confidence
        if blocks:
            for block in blocks:
                block.confidence = result.confidence
            page.text_blocks = blocks
            page.flat_text = result.text
            page.extraction_method = "ocr"
        return True
