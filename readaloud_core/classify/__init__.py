"""
Block Classification
====================

Semantic typing of text blocks.

Components:
- classify_text: ordered heuristic rules
- detect_header_footer: margin boilerplate and running headers
- BlockClassifier: heuristic + optional external classifier override
"""

from readaloud_core.classify.heuristics import (
    Classification,
    ClassificationContext,
    classify_text,
    detect_header_footer,
    is_all_caps,
    is_title_case,
)

from readaloud_core.classify.classifier import (
    BlockClassifier,
    collect_running_texts,
    parse_block_type,
)

__all__ = [
    "Classification",
    "ClassificationContext",
    "classify_text",
    "detect_header_footer",
    "is_all_caps",
    "is_title_case",
    "BlockClassifier",
    "collect_running_texts",
    "parse_block_type",
]
