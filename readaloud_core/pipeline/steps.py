"""
Conversion Steps
================

The nine ordered stage markers of a conversion job and the progress each
one reports when it starts.
"""

from enum import Enum
from typing import Optional


class ConversionStep(str, Enum):
    """Stage markers, in execution order."""
    CLASSIFICATION = "classification"
    TEXT_EXTRACTION = "text_extraction"
    LAYOUT_ANALYSIS = "layout_analysis"
    SEMANTIC_STRUCTURING = "semantic_structuring"
    ACCESSIBILITY = "accessibility"
    CONTENT_CLEANUP = "content_cleanup"
    SPECIAL_CONTENT = "special_content"
    EPUB_GENERATION = "epub_generation"
    QA_REVIEW = "qa_review"

    @property
    def index(self) -> int:
        return STEP_ORDER.index(self)

    @property
    def progress(self) -> int:
        return STEP_PROGRESS[self]

    @property
    def label(self) -> str:
        return self.value.replace("_", " ").title()

    @classmethod
    def from_index(cls, index: int) -> "ConversionStep":
        return STEP_ORDER[index]

    def next(self) -> Optional["ConversionStep"]:
        position = self.index + 1
        return STEP_ORDER[position] if position < len(STEP_ORDER) else None


STEP_ORDER = tuple(ConversionStep)

STEP_PROGRESS = {
    ConversionStep.CLASSIFICATION: 5,
    ConversionStep.TEXT_EXTRACTION: 15,
    ConversionStep.LAYOUT_ANALYSIS: 30,
    ConversionStep.SEMANTIC_STRUCTURING: 45,
    ConversionStep.ACCESSIBILITY: 60,
    ConversionStep.CONTENT_CLEANUP: 75,
    ConversionStep.SPECIAL_CONTENT: 85,
    ConversionStep.EPUB_GENERATION: 95,
    ConversionStep.QA_REVIEW: 100,
}
