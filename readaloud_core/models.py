"""
Document Model
==============

Dataclasses shared by every stage of the conversion pipeline.

Coordinates are page units (points) with the origin at the bottom-left corner
and Y increasing upward. ``BoundingBox.y`` is always the *bottom* edge; use
``BoundingBox.top`` or ``BoundingBox.top_offset()`` when a top-origin value is
needed.
"""

from __future__ import annotations

import copy
from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional


class BlockType(str, Enum):
    """Semantic type of a text block."""
    HEADING = "heading"
    PARAGRAPH = "paragraph"
    LIST_ITEM = "list_item"
    CAPTION = "caption"
    GLOSSARY_TERM = "glossary_term"
    FOOTNOTE = "footnote"
    SIDEBAR = "sidebar"
    HEADER = "header"
    FOOTER = "footer"


# Types never voiced in the read-aloud layer
NON_READABLE_TYPES = frozenset({
    BlockType.HEADER,
    BlockType.FOOTER,
    BlockType.FOOTNOTE,
    BlockType.SIDEBAR,
})


@dataclass(frozen=True)
class PositionedRun:
    """One fragment of text as produced by the PDF decoder."""
    text: str
    x: float
    y: float
    width: float
    height: float
    font_name: str = ""
    font_size: float = 0.0
    bold: bool = False
    italic: bool = False


@dataclass
class BoundingBox:
    """Block extent. ``y`` is the bottom edge."""
    page_number: int
    x: float
    y: float
    width: float
    height: float

    @property
    def top(self) -> float:
        """Top edge in bottom-origin coordinates."""
        return self.y + self.height

    @property
    def right(self) -> float:
        return self.x + self.width

    @property
    def center_x(self) -> float:
        return self.x + self.width / 2

    def top_offset(self, page_height: float) -> float:
        """Distance from the top of the page to the top edge (top-origin y)."""
        return page_height - self.y - self.height

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "BoundingBox":
        return cls(**data)


@dataclass
class TextBlock:
    """A logical unit of page text."""
    id: str = ""
    text: str = ""
    block_type: BlockType = BlockType.PARAGRAPH
    heading_level: Optional[int] = None
    reading_order: int = 0
    bounding_box: Optional[BoundingBox] = None
    confidence: Optional[float] = None
    words: List[str] = field(default_factory=list)
    sentences: List[str] = field(default_factory=list)
    phrases: List[str] = field(default_factory=list)
    exclude_from_reading_order: bool = False
    decorative: bool = False
    font_name: str = ""
    font_size: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["block_type"] = self.block_type.value
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TextBlock":
        data = dict(data)
        data["block_type"] = BlockType(data.get("block_type", BlockType.PARAGRAPH.value))
        if data.get("bounding_box"):
            data["bounding_box"] = BoundingBox.from_dict(data["bounding_box"])
        return cls(**data)


@dataclass
class ImageBlock:
    """A non-text region of the page (figure, photo)."""
    id: str
    bounding_box: Optional[BoundingBox] = None
    alt_text: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ImageBlock":
        data = dict(data)
        if data.get("bounding_box"):
            data["bounding_box"] = BoundingBox.from_dict(data["bounding_box"])
        return cls(**data)


@dataclass
class PageStructure:
    """
    One source page.

    ``text_blocks`` keeps insertion order. Reading order is the derived
    permutation in ``reading_order`` (block ids) and in each block's
    ``reading_order`` field.
    """
    page_number: int
    width: float
    height: float
    is_scanned: bool = False
    ocr_confidence: Optional[float] = None
    text_blocks: List[TextBlock] = field(default_factory=list)
    image_blocks: List[ImageBlock] = field(default_factory=list)
    reading_order: List[str] = field(default_factory=list)
    is_two_page_spread: bool = False
    skip_read_aloud: bool = False
    extraction_method: str = "text"
    flat_text: str = ""

    def block_by_id(self, block_id: str) -> Optional[TextBlock]:
        for block in self.text_blocks:
            if block.id == block_id:
                return block
        return None

    def ordered_blocks(self) -> List[TextBlock]:
        """Non-excluded blocks sorted by their reading order."""
        blocks = [b for b in self.text_blocks if not b.exclude_from_reading_order]
        return sorted(blocks, key=lambda b: b.reading_order)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "page_number": self.page_number,
            "width": self.width,
            "height": self.height,
            "is_scanned": self.is_scanned,
            "ocr_confidence": self.ocr_confidence,
            "text_blocks": [b.to_dict() for b in self.text_blocks],
            "image_blocks": [b.to_dict() for b in self.image_blocks],
            "reading_order": list(self.reading_order),
            "is_two_page_spread": self.is_two_page_spread,
            "skip_read_aloud": self.skip_read_aloud,
            "extraction_method": self.extraction_method,
            "flat_text": self.flat_text,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PageStructure":
        data = dict(data)
        data["text_blocks"] = [TextBlock.from_dict(b) for b in data.get("text_blocks", [])]
        data["image_blocks"] = [ImageBlock.from_dict(b) for b in data.get("image_blocks", [])]
        return cls(**data)


@dataclass
class DocumentStructure:
    """
    Whole-document aggregate owned by one conversion job.

    Stages never modify the structure they receive: they work on ``copy()``
    and return the new value, so the orchestrator can snapshot each one.
    """
    metadata: Dict[str, Any] = field(default_factory=dict)
    pages: List[PageStructure] = field(default_factory=list)
    equations: List[Dict[str, Any]] = field(default_factory=list)
    tables: List[Dict[str, Any]] = field(default_factory=list)
    semantic_blocks: List[Dict[str, Any]] = field(default_factory=list)
    table_of_contents: List[Dict[str, Any]] = field(default_factory=list)

    def copy(self) -> "DocumentStructure":
        return copy.deepcopy(self)

    def page(self, page_number: int) -> Optional[PageStructure]:
        for page in self.pages:
            if page.page_number == page_number:
                return page
        return None

    def iter_blocks(self):
        for page in self.pages:
            for block in page.text_blocks:
                yield page, block

    def to_dict(self) -> Dict[str, Any]:
        return {
            "metadata": copy.deepcopy(self.metadata),
            "pages": [p.to_dict() for p in self.pages],
            "equations": copy.deepcopy(self.equations),
            "tables": copy.deepcopy(self.tables),
            "semantic_blocks": copy.deepcopy(self.semantic_blocks),
            "table_of_contents": copy.deepcopy(self.table_of_contents),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "DocumentStructure":
        return cls(
            metadata=dict(data.get("metadata", {})),
            pages=[PageStructure.from_dict(p) for p in data.get("pages", [])],
            equations=list(data.get("equations", [])),
            tables=list(data.get("tables", [])),
            semantic_blocks=list(data.get("semantic_blocks", [])),
            table_of_contents=list(data.get("table_of_contents", [])),
        )


@dataclass
class AudioSync:
    """
    Audio timing for a page or for one block.

    ``block_id`` absent means a page-level sync whose range is shared out
    across the page's blocks at packaging time.
    """
    page_number: int
    start_time: float
    end_time: float
    audio_file_path: str
    block_id: Optional[str] = None

    @property
    def is_page_level(self) -> bool:
        return not self.block_id

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "AudioSync":
        return cls(
            page_number=int(data["page_number"]),
            start_time=float(data["start_time"]),
            end_time=float(data["end_time"]),
            audio_file_path=str(data.get("audio_file_path", "")),
            block_id=data.get("block_id") or None,
        )
