"""
Page Content Documents
======================

One fixed-layout XHTML document per source page: the rendered page image
with an absolutely positioned text layer on top, in reading order.

Block positions are converted from the bottom-origin page coordinates to
top-origin percentages here, and only here.
"""

import logging
from typing import List, Optional

from lxml import etree

from readaloud_core.models import BlockType, PageStructure, TextBlock
from readaloud_core.packaging.documents import EPUB_NS, h, serialize, xhtml_root
from readaloud_core.text_layer import anchor_id, readable_blocks

logger = logging.getLogger(__name__)

BLOCK_CLASSES = {
    BlockType.PARAGRAPH: "paragraph",
    BlockType.CAPTION: "caption",
    BlockType.GLOSSARY_TERM: "glossary-term",
}


def _percent(value: float, total: float) -> str:
    if total <= 0:
        return "0%"
    return f"{max(0.0, value / total * 100):.4f}%"


def block_style(block: TextBlock, page: PageStructure) -> Optional[str]:
    """Absolute position of a block as CSS percentages of the page."""
    box = block.bounding_box
    if box is None:
        return None
    top = box.top_offset(page.height)
    return (
        f"left: {_percent(box.x, page.width)}; "
        f"top: {_percent(top, page.height)}; "
        f"width: {_percent(box.width, page.width)}; "
        f"height: {_percent(box.height, page.height)};"
    )


def _heading_tag(block: TextBlock) -> str:
    level = block.heading_level or 1
    return f"h{min(max(level, 1), 6)}"


def _append_block(parent: etree._Element, block: TextBlock, page: PageStructure) -> etree._Element:
    if block.block_type == BlockType.HEADING:
        element = h(parent, _heading_tag(block), block.text, id=anchor_id(block))
        element.set("class", "block heading")
    elif block.block_type == BlockType.LIST_ITEM:
        element = h(parent, "li", block.text, id=anchor_id(block))
        element.set("class", "block list-item")
    else:
        element = h(parent, "p", block.text, id=anchor_id(block))
        element.set("class", f"block {BLOCK_CLASSES.get(block.block_type, 'paragraph')}")

    style = block_style(block, page)
    if style:
        element.set("style", style)
    return element


def page_xhtml(page: PageStructure,
               title: str,
               language: str,
               css_href: str,
               image_href: Optional[str] = None,
               viewport: Optional[tuple] = None) -> bytes:
    """
    Build the content document of one page.

    Consecutive list items are grouped in one ``<ul>``.
    """
    html = xhtml_root(language)
    head = h(html, "head")
    h(head, "meta", charset="utf-8")
    h(head, "title", title)
    if viewport:
        width, height = viewport
        h(head, "meta", name="viewport", content=f"width={width}, height={height}")
    h(head, "link", rel="stylesheet", type="text/css", href=css_href)

    body = h(html, "body")
    body.set(f"{{{EPUB_NS}}}type", "bodymatter")
    container = h(body, "div", class_="page", id=f"page{page.page_number}")
    container.set(f"{{{EPUB_NS}}}type", "pagebreak")
    container.set("title", str(page.page_number))

    if image_href:
        h(container, "img", class_="page-image", src=image_href, alt="", aria_hidden="true")

    layer = h(container, "div", class_="text-layer", role="article",
              aria_label=f"Page {page.page_number}")

    current_list: Optional[etree._Element] = None
    for block in readable_blocks(page):
        if block.block_type == BlockType.LIST_ITEM:
            if current_list is None:
                current_list = h(layer, "ul", class_="list")
            _append_block(current_list, block, page)
        else:
            current_list = None
            _append_block(layer, block, page)

    for image in page.image_blocks:
        if not image.alt_text:
            continue
        figure = h(layer, "div", class_="figure", id=image.id, role="img", aria_label=image.alt_text)
        if image.bounding_box is not None:
            box = image.bounding_box
            figure.set("style", (
                f"left: {_percent(box.x, page.width)}; "
                f"top: {_percent(box.top_offset(page.height), page.height)}; "
                f"width: {_percent(box.width, page.width)}; "
                f"height: {_percent(box.height, page.height)};"
            ))

    return serialize(html, doctype="<!DOCTYPE html>")


def element_ids(document: bytes) -> List[str]:
    """All id attributes of a serialized content document."""
    root = etree.fromstring(document)
    return [el.get("id") for el in root.iter() if el.get("id")]
