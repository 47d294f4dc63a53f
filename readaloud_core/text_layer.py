"""
Text Layer
==========

The single source of element ids and of the read-aloud text layer. Both the
page content documents and the synchronization documents are generated from
these functions, so the anchors they emit always agree.
"""

import re
from collections import defaultdict
from typing import Dict, List

from readaloud_core.models import NON_READABLE_TYPES, BlockType, PageStructure, TextBlock

_UNSAFE = re.compile(r"[^A-Za-z0-9_\-]")

LIST_ITEM_SUFFIX = "_li"


def block_id(page_number: int, block_type: BlockType, reading_order: int) -> str:
    """
    Deterministic, URL-fragment-safe block id: ``p{page}-{type}-{order}``.

    The type segment is the type at layout analysis. Later retyping (caption,
    footnote) keeps the id.
    """
    kind = _UNSAFE.sub("_", BlockType(block_type).value)
    return f"p{int(page_number)}-{kind}-{int(reading_order)}"


def assign_block_ids(page: PageStructure) -> None:
    """
    Give every block of a page its id and record the page reading order.

    Blocks in the reading flow are keyed by their reading order. Excluded
    blocks (headers, footers) are numbered per type in insertion order.
    Ids already assigned are never changed.
    """
    excluded_counter: Dict[BlockType, int] = defaultdict(int)
    for block in page.text_blocks:
        if block.exclude_from_reading_order:
            excluded_counter[block.block_type] += 1
            order = excluded_counter[block.block_type]
        else:
            order = block.reading_order
        if not block.id:
            block.id = block_id(page.page_number, block.block_type, order)
    page.reading_order = [b.id for b in page.ordered_blocks()]


def anchor_id(block: TextBlock) -> str:
    """Element id used in content and synchronization documents."""
    if block.block_type == BlockType.LIST_ITEM:
        return f"{block.id}{LIST_ITEM_SUFFIX}"
    return block.id


def is_readable(block: TextBlock) -> bool:
    return (
        not block.exclude_from_reading_order
        and block.block_type not in NON_READABLE_TYPES
        and not block.decorative
        and bool(block.text.strip())
    )


def readable_blocks(page: PageStructure) -> List[TextBlock]:
    """Blocks voiced by read-aloud, in reading order."""
    return [b for b in page.ordered_blocks() if is_readable(b)]


def page_href(page_number: int) -> str:
    return f"page_{page_number}.xhtml"


def smil_href(page_number: int) -> str:
    return f"page_{page_number}.smil"


def image_href(page_number: int, image_format: str = "png") -> str:
    return f"image/page_{page_number}.{image_format}"
