"""
Block Classifier
================

Assigns a semantic type to each block of a page.

The heuristic always runs first so classification works with no external
service. When enabled, an external classifier is consulted through the service
guard and a recognised answer overrides the heuristic. Rejection, failure or
an unusable answer keeps the heuristic result.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from typing import Dict, FrozenSet, Iterable, List, Optional, Set

from readaloud_core.adapters.base import TextService
from readaloud_core.adapters.guard import ServiceGuard
from readaloud_core.classify.heuristics import (
    Classification,
    ClassificationContext,
    classify_text,
    detect_header_footer,
    margin_region,
    normalize_margin_text,
)
from readaloud_core.config.settings import ClassificationSettings
from readaloud_core.errors import ClassificationError
from readaloud_core.models import BlockType, PageStructure, TextBlock
from readaloud_core.results import Ok, Soft

logger = logging.getLogger(__name__)

MARGIN_TYPES = (BlockType.HEADER, BlockType.FOOTER)


def parse_block_type(label: Optional[str]) -> Optional[BlockType]:
    """Map an external label ("List item", "HEADING") to a BlockType."""
    if not label:
        return None
    key = "_".join(label.strip().lower().replace("-", " ").split())
    try:
        return BlockType(key)
    except ValueError:
        return None


def collect_running_texts(pages: Iterable[PageStructure],
                          ratio: float = 0.10,
                          min_pages: int = 3) -> FrozenSet[str]:
    """
    Margin texts that repeat on at least ``min_pages`` pages.

    Digits are folded before comparing so "Chapter 2 - 14" and
    "Chapter 2 - 15" count as the same running header.
    """
    seen: Dict[str, Set[int]] = defaultdict(set)
    for page in pages:
        for block in page.text_blocks:
            if not block.text.strip():
                continue
            if margin_region(block, page.height, ratio) is None:
                continue
            seen[normalize_margin_text(block.text)].add(page.page_number)
    return frozenset(key for key, page_numbers in seen.items() if len(page_numbers) >= min_pages)


class BlockClassifier:
    """
    Heuristic classifier with optional external override.

    Example:
        classifier = BlockClassifier(settings, text_service=service, guard=guard)
        result = classifier.classify(block, context)
    """

    def __init__(self,
                 settings: Optional[ClassificationSettings] = None,
                 text_service: Optional[TextService] = None,
                 guard: Optional[ServiceGuard] = None):
        self.settings = settings or ClassificationSettings()
        self.text_service = text_service
        if guard is None and text_service is not None:
            guard = ServiceGuard(text_service.service_name)
        self.guard = guard

    @property
    def external_enabled(self) -> bool:
        return self.settings.use_external_classifier and self.text_service is not None

    def _is_ambiguous(self, result: Classification) -> bool:
        if result.block_type == BlockType.PARAGRAPH:
            return True
        return result.block_type == BlockType.HEADING and result.heading_level is None

    def classify(self, block: TextBlock, context: ClassificationContext) -> Classification:
        """Heuristic result, possibly overridden by the external classifier."""
        result = classify_text(block.text)

        if not self.external_enabled or not block.text.strip():
            return result
        if not self.settings.classify_all and not self._is_ambiguous(result):
            return result

        outcome = self.guard.call(self.text_service.classify, block.text)
        if isinstance(outcome, Soft):
            if isinstance(outcome.error, ClassificationError):
                logger.info(f"Page {context.page_number}: classifier answer ignored ({outcome.error})")
            return result

        block_type = parse_block_type(outcome.value) if isinstance(outcome, Ok) else None
        if block_type is None:
            return result
        if block_type == result.block_type:
            return Classification(block_type, result.heading_level, source="external")

        logger.debug(
            f"Page {context.page_number}: external classifier changed "
            f"{result.block_type.value} -> {block_type.value}"
        )
        return Classification(block_type, None, source="external")

    def apply(self, blocks: List[TextBlock], context: ClassificationContext) -> List[TextBlock]:
        """
        Classify blocks in place and flag header/footer boilerplate.

        Header/footer blocks stay in the list but are excluded from reading
        order.
        """
        for block in blocks:
            result = self.classify(block, context)
            block.block_type = result.block_type
            block.heading_level = result.heading_level

            margin = detect_header_footer(block, context, self.settings.margin_ratio)
            if margin is not None:
                block.block_type = margin
                block.heading_level = None

            block.exclude_from_reading_order = block.block_type in MARGIN_TYPES
        return blocks
