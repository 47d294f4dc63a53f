"""
Text Sanitization
=================

Cleans block text before it reaches the read-aloud layer. Text-to-speech
engines vocalize whatever they are given, so escape artifacts, control
characters and decorative fragments (page numbers, leader-dot lines, symbol
noise) are removed here.
"""

import re
import unicodedata

# Literal escape artifacts left by some PDF producers: "\12", "\n"
ESCAPE_DIGITS = re.compile(r"\\\d+")
ESCAPE_LETTER = re.compile(r"\\[a-zA-Z]")
BACKSLASH = re.compile(r"\\")
CONTROL_CHARS = re.compile(r"[\x00-\x08\x0B\x0C\x0E-\x1F\x7F]")
ZERO_WIDTH = re.compile("[\u200b-\u200f\u2060\ufeff\u00ad]")
REPEATED_MARKS = re.compile(r"[|]{2,}|[~]{2,}|[_]{3,}")
WHITESPACE = re.compile(r"\s+")

BARE_PAGE_NUMBER = re.compile(r"^(?:page\s+)?\d{1,4}$", re.IGNORECASE)
LEADER_DOTS = re.compile(r"(?:\.\s?){3,}\s*\d+\s*$")

DENSITY_MIN_LENGTH = 10
MIN_ALNUM_DENSITY = 0.3
MAX_SYMBOL_SHARE = 0.5
SHORT_SYMBOL_TEXT = 20


def _drop_unprintable(text: str) -> str:
    kept = []
    for ch in text:
        category = unicodedata.category(ch)
        if ch in "\n\r\t":
            kept.append(" ")
        elif category.startswith("C"):
            continue
        else:
            kept.append(ch)
    return "".join(kept)


def sanitize_text(text: str) -> str:
    """Strip control characters and escape artifacts, collapse whitespace."""
    if not text:
        return ""
    cleaned = ESCAPE_DIGITS.sub(" ", text)
    cleaned = ESCAPE_LETTER.sub(" ", cleaned)
    cleaned = BACKSLASH.sub(" ", cleaned)
    cleaned = CONTROL_CHARS.sub("", cleaned)
    cleaned = ZERO_WIDTH.sub("", cleaned)
    cleaned = _drop_unprintable(cleaned)
    cleaned = REPEATED_MARKS.sub(" ", cleaned)
    return WHITESPACE.sub(" ", cleaned).strip()


def alnum_density(text: str) -> float:
    """Share of non-whitespace characters that are letters or digits."""
    visible = [ch for ch in text if not ch.isspace()]
    if not visible:
        return 0.0
    return sum(1 for ch in visible if ch.isalnum()) / len(visible)


def is_decorative(text: str,
                  min_density: float = MIN_ALNUM_DENSITY,
                  density_min_length: int = DENSITY_MIN_LENGTH) -> bool:
    """
    True for fragments that should never be voiced.

    Bare page numbers, table-of-contents leader lines, and text longer than
    ``density_min_length`` with less than ``min_density`` alphanumerics.
    """
    text = (text or "").strip()
    if not text:
        return False
    if BARE_PAGE_NUMBER.match(text):
        return True
    if LEADER_DOTS.search(text) and len(text) < 80:
        return True
    if len(text) > density_min_length and alnum_density(text) < min_density:
        return True

    symbols = sum(1 for ch in text if not ch.isalnum() and not ch.isspace())
    if len(text) < SHORT_SYMBOL_TEXT and symbols / len(text) > MAX_SYMBOL_SHARE:
        return True
    return False
