"""
Classification Heuristics
=========================

Text-pattern rules that assign a semantic type to a block. The rules are
checked in a fixed order and the first match wins:

1. list prefix              -> LIST_ITEM
2. short all-caps text      -> HEADING (no level)
3. title-case phrase        -> HEADING 1 (< 40 chars) or 2
4. "Chapter N" / "N.M" / "N."  -> HEADING 1 / 3 / 2
5. "Term: definition"       -> GLOSSARY_TERM
6. anything else            -> PARAGRAPH

Header/footer detection is separate and looks at the block position too.
"""

import re
from dataclasses import dataclass, field
from typing import FrozenSet, Optional

from readaloud_core.models import BlockType, TextBlock

LIST_PREFIX = re.compile(
    r"^\s*(?:"
    r"[•‣⁃∙■□▪▫○●◦·–—*+\-]\s+"
    r"|\(?\d{1,3}[.)]\s+"
    r"|\(?[a-zA-Z][.)]\s+"
    r"|\(?[ivxlcdmIVXLCDM]{1,6}[.)]\s+"
    r")"
)

CHAPTER = re.compile(r"^chapter\s+(?:\d+|[ivxlcdm]+)\b", re.IGNORECASE)
SUBSECTION_NUMBER = re.compile(r"^\d+\.\d+(?:\.\d+)*\s+\S")
SECTION_NUMBER = re.compile(r"^\d+\.\s*\S")
GLOSSARY = re.compile(r"^[A-Z][A-Za-z'\-]*(?:\s+[A-Za-z'\-]+){0,3}:\s+\S")

WORD = re.compile(r"[A-Za-z][A-Za-z'’\-]*")
TERMINAL_PUNCTUATION = ('.', '!', '?')

SMALL_WORDS = frozenset({
    "a", "an", "and", "as", "at", "but", "by", "for", "from", "in", "into",
    "nor", "of", "on", "or", "the", "to", "with", "vs",
})

PAGE_NUMBER = re.compile(
    r"^(?:page\s+)?(?:\d{1,4}|[ivxlcdm]{1,7})(?:\s*(?:of|/)\s*\d{1,4})?$",
    re.IGNORECASE,
)
BOILERPLATE = re.compile(
    r"(?:©|\(c\)\s*\d{4}|copyright|all rights reserved|confidential|https?://|www\.)",
    re.IGNORECASE,
)
MAX_BOILERPLATE_LENGTH = 120


@dataclass(frozen=True)
class Classification:
    """Outcome of classifying one block."""
    block_type: BlockType
    heading_level: Optional[int] = None
    source: str = "heuristic"


@dataclass(frozen=True)
class ClassificationContext:
    """Page and document facts available to the classifier."""
    page_number: int
    page_width: float
    page_height: float
    locale: str = "en"
    running_texts: FrozenSet[str] = field(default_factory=frozenset)


def is_all_caps(text: str) -> bool:
    letters = [ch for ch in text if ch.isalpha()]
    return bool(letters) and text == text.upper() and 3 < len(text) < 100


def is_title_case(text: str) -> bool:
    if len(text) >= 60 or text.rstrip().endswith(TERMINAL_PUNCTUATION):
        return False
    # Must open with a capitalised word, not a number
    if not text[:1].isupper():
        return False
    words = WORD.findall(text)
    if not words or not words[0][0].isupper():
        return False
    return all(w[0].isupper() or w.lower() in SMALL_WORDS for w in words)


def classify_text(text: str) -> Classification:
    """Apply the heuristic precedence to a block's text."""
    text = (text or "").strip()
    if not text:
        return Classification(BlockType.PARAGRAPH)

    if LIST_PREFIX.match(text):
        return Classification(BlockType.LIST_ITEM)

    if is_all_caps(text):
        return Classification(BlockType.HEADING)

    if is_title_case(text):
        return Classification(BlockType.HEADING, 1 if len(text) < 40 else 2)

    if CHAPTER.match(text):
        return Classification(BlockType.HEADING, 1)
    if SUBSECTION_NUMBER.match(text):
        return Classification(BlockType.HEADING, 3)
    if SECTION_NUMBER.match(text):
        return Classification(BlockType.HEADING, 2)

    if GLOSSARY.match(text):
        return Classification(BlockType.GLOSSARY_TERM)

    return Classification(BlockType.PARAGRAPH)


def normalize_margin_text(text: str) -> str:
    """Key used to spot running headers: lowercase, digits folded."""
    return re.sub(r"\d+", "#", " ".join(text.lower().split()))


def margin_region(block: TextBlock, page_height: float, ratio: float) -> Optional[BlockType]:
    """HEADER/FOOTER when the block lies wholly inside the top/bottom margin band."""
    box = block.bounding_box
    if box is None or page_height <= 0:
        return None
    if box.y >= page_height * (1 - ratio):
        return BlockType.HEADER
    if box.top <= page_height * ratio:
        return BlockType.FOOTER
    return None


def detect_header_footer(block: TextBlock,
                         context: ClassificationContext,
                         ratio: float = 0.10) -> Optional[BlockType]:
    """
    Return HEADER or FOOTER when the block is margin boilerplate, else None.

    Position alone is not enough: the text must look like a page number,
    boilerplate, or a running header seen on other pages.
    """
    region = margin_region(block, context.page_height, ratio)
    if region is None:
        return None

    text = " ".join(block.text.split())
    if not text:
        return region
    if PAGE_NUMBER.match(text):
        return region
    if len(text) <= MAX_BOILERPLATE_LENGTH and BOILERPLATE.search(text):
        return region
    if normalize_margin_text(text) in context.running_texts:
        return region
    return None
