"""
Text Utilities
==============

Components:
- sanitize_text / is_decorative: read-aloud text cleanup
- segment_words / segment_sentences / segment_phrases: highlighting units
- is_toc_page / is_index_page: pages excluded from read-aloud
"""

from readaloud_core.text.sanitize import (
    alnum_density,
    is_decorative,
    sanitize_text,
)

from readaloud_core.text.segmentation import (
    segment_phrases,
    segment_sentences,
    segment_words,
)

from readaloud_core.text.page_filter import (
    is_index_page,
    is_toc_page,
    should_skip_read_aloud,
)

__all__ = [
    "alnum_density",
    "is_decorative",
    "sanitize_text",
    "segment_phrases",
    "segment_sentences",
    "segment_words",
    "is_index_page",
    "is_toc_page",
    "should_skip_read_aloud",
]
