"""
Page Filter
===========

Detects pages that should not be read aloud: tables of contents and back of
book indexes. Their content documents are still packaged, but they get no
synchronization document.
"""

import re
from typing import List

from readaloud_core.models import BlockType, PageStructure

TOC_TITLE = re.compile(r"^\s*(?:table\s+of\s+contents|contents|toc)\s*$", re.IGNORECASE)
INDEX_TITLE = re.compile(r"^\s*index\s*$", re.IGNORECASE)
LEADER_LINE = re.compile(r"[\w\s]+\.{3,}\s*\d+")
CHAPTER_PAGE = re.compile(r"(?:chapter|section|part)\s+\d+.*?(?:page|\.\.\.)\s*\d+", re.IGNORECASE)
NUMBERED_LINE = re.compile(r"^\s*\d+(?:\.\d+)*[.)]?\s+\S.*?\s\d+\s*$")
INDEX_ENTRY = re.compile(r"[A-Za-z][\w\s,'\-]*?(?:\.{2,}|,)\s*\d+(?:\s*[,\-–]\s*\d+)*")

MIN_CHAPTER_REFERENCES = 3
MIN_NUMBERED_LINES = 5
NUMBERED_LINE_DENSITY = 0.3
MIN_INDEX_ENTRIES = 10


def _lines(page: PageStructure) -> List[str]:
    if page.text_blocks:
        lines = [b.text for b in page.text_blocks]
    else:
        lines = page.flat_text.splitlines()
    return [line.strip() for line in lines if line.strip()]


def _headings(page: PageStructure) -> List[str]:
    return [b.text for b in page.text_blocks if b.block_type == BlockType.HEADING]


def is_toc_page(page: PageStructure) -> bool:
    """Table of contents: title, leader-dot entries, or dense numbered lines."""
    lines = _lines(page)
    if not lines:
        return False

    if any(TOC_TITLE.match(text) for text in _headings(page)) or TOC_TITLE.match(lines[0]):
        return True

    joined = "\n".join(lines)
    if len(CHAPTER_PAGE.findall(joined)) >= MIN_CHAPTER_REFERENCES:
        return True

    leader_lines = sum(1 for line in lines if LEADER_LINE.search(line))
    if leader_lines >= MIN_CHAPTER_REFERENCES:
        return True

    if len(lines) > MIN_NUMBERED_LINES:
        numbered = sum(1 for line in lines if NUMBERED_LINE.match(line))
        if numbered / len(lines) > NUMBERED_LINE_DENSITY:
            return True
    return False


def is_index_page(page: PageStructure) -> bool:
    """Back-of-book index: an "Index" title or many "term ... page" entries."""
    lines = _lines(page)
    if not lines:
        return False

    if any(INDEX_TITLE.match(text) for text in _headings(page)) or INDEX_TITLE.match(lines[0]):
        return True

    entries = sum(len(INDEX_ENTRY.findall(line)) for line in lines)
    return entries >= MIN_INDEX_ENTRIES


def should_skip_read_aloud(page: PageStructure) -> bool:
    return is_toc_page(page) or is_index_page(page)
