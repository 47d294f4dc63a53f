"""
Reading-Order Resolver
======================

Orders a page's blocks top-to-bottom and left-to-right, treating two-page
spreads (two facing pages scanned onto one image) and two-column layouts as
left half first, then right half.

Spread detection always runs before ordering.
"""

from __future__ import annotations

import logging
import re
from typing import List, Optional, Sequence, Tuple

from readaloud_core.config.settings import ReadingOrderSettings
from readaloud_core.models import TextBlock

logger = logging.getLogger(__name__)

_FOLIO = re.compile(r"^\d{1,2}$")


def _position_key(block: TextBlock):
    box = block.bounding_box
    return (-box.top, box.x)


def detect_two_page_spread(blocks: Sequence[TextBlock],
                           page_width: float,
                           page_height: float,
                           settings: Optional[ReadingOrderSettings] = None) -> bool:
    """
    Decide whether a page image holds two facing pages.

    Strong signal: two or more 1-2 digit numerals in the bottom folio region
    (candidate page numbers of both pages). Weak signal, used only when the
    strong one is absent: blocks lying wholly on each side of the midpoint
    with either a wide gutter between them or a balanced share of blocks.
    """
    settings = settings or ReadingOrderSettings()
    positioned = [b for b in blocks if b.bounding_box is not None]
    if not positioned or page_width <= 0:
        return False

    folio_limit = page_height * settings.folio_region_ratio
    folios = [
        b for b in positioned
        if _FOLIO.match(b.text.strip()) and b.bounding_box.y < folio_limit
    ]
    if len(folios) >= settings.min_folio_blocks:
        return True

    midpoint = page_width / 2
    left = [b for b in positioned if b.bounding_box.right <= midpoint]
    right = [b for b in positioned if b.bounding_box.x >= midpoint]
    if not left or not right:
        return False

    gap = min(b.bounding_box.x for b in right) - max(b.bounding_box.right for b in left)
    if gap > page_width * settings.gutter_gap_ratio:
        return True

    total = len(positioned)
    min_share = settings.min_half_share
    return len(left) / total >= min_share and len(right) / total >= min_share


class ReadingOrderResolver:
    """
    Computes the reading sequence of a page's blocks.

    Example:
        resolver = ReadingOrderResolver()
        ordered, is_spread = resolver.order(blocks, 612, 792)
        numbered = assign_reading_order(ordered)
    """

    def __init__(self, settings: Optional[ReadingOrderSettings] = None):
        self.settings = settings or ReadingOrderSettings()

    def order(self,
              blocks: Sequence[TextBlock],
              page_width: float,
              page_height: float) -> Tuple[List[TextBlock], bool]:
        """
        Returns:
            (blocks in reading order, is_two_page_spread)
        """
        is_spread = detect_two_page_spread(blocks, page_width, page_height, self.settings)

        positioned = [b for b in blocks if b.bounding_box is not None]
        unpositioned = [b for b in blocks if b.bounding_box is None]
        if unpositioned:
            logger.debug(f"{len(unpositioned)} block(s) without coordinates placed last")

        if is_spread:
            midpoint = page_width / 2
            left = [b for b in positioned if b.bounding_box.center_x < midpoint]
            right = [b for b in positioned if b.bounding_box.center_x >= midpoint]
            ordered = sorted(left, key=_position_key) + sorted(right, key=_position_key)
        else:
            ordered = sorted(positioned, key=_position_key)

        return ordered + unpositioned, is_spread


def assign_reading_order(ordered_blocks: Sequence[TextBlock]) -> List[TextBlock]:
    """
    Number non-excluded blocks 1..N in the given order.

    Excluded blocks (headers, footers) get 0 and do not shift the numbering.

    Returns:
        The numbered blocks in reading order
    """
    sequence = []
    position = 0
    for block in ordered_blocks:
        if block.exclude_from_reading_order:
            block.reading_order = 0
            continue
        position += 1
        block.reading_order = position
        sequence.append(block)
    return sequence
