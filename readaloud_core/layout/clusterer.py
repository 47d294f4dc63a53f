"""
Geometry Clusterer
==================

Groups the positioned text runs of one page into logical text blocks using
vertical and horizontal proximity.

Runs are swept top-to-bottom, left-to-right. A run joins the open group when
it sits on the same line as the previous run, or when it is close enough
vertically and loosely aligned with the group's left edge. If clustering loses
too much of the page text, the page is re-split from its flat text instead.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import List, Optional, Sequence, Tuple

from readaloud_core.config.settings import ClusteringSettings
from readaloud_core.errors import ExtractionError
from readaloud_core.models import BoundingBox, PositionedRun, TextBlock

logger = logging.getLogger(__name__)

_BLANK_LINE = re.compile(r"\n\s*\n")


def _content_length(text: str) -> int:
    """Number of non-whitespace characters."""
    return sum(1 for ch in text if not ch.isspace())


def sort_runs(runs: Sequence[PositionedRun]) -> List[PositionedRun]:
    """Top of page first, then left to right. Stable for equal positions."""
    return sorted(runs, key=lambda r: (-r.y, r.x))


def runs_to_flat_text(runs: Sequence[PositionedRun]) -> str:
    """Plain page text: one line per distinct baseline, in sorted order."""
    lines: List[List[str]] = []
    last_y: Optional[float] = None
    for run in sort_runs(runs):
        if not run.text.strip():
            continue
        if last_y is None or abs(run.y - last_y) > max(run.height, 1.0) * 0.5:
            lines.append([])
            last_y = run.y
        lines[-1].append(run.text.strip())
    return "\n".join(" ".join(parts) for parts in lines)


@dataclass
class _Group:
    runs: List[PositionedRun] = field(default_factory=list)
    text: str = ""
    min_x: float = 0.0
    max_x: float = 0.0
    min_y: float = 0.0
    max_y: float = 0.0

    @classmethod
    def start(cls, run: PositionedRun) -> "_Group":
        return cls(
            runs=[run],
            text=run.text,
            min_x=run.x,
            max_x=run.x + run.width,
            min_y=run.y,
            max_y=run.y + run.height,
        )

    @property
    def last(self) -> PositionedRun:
        return self.runs[-1]

    def add(self, run: PositionedRun, separator: str) -> None:
        self.runs.append(run)
        self.text += separator + run.text
        self.min_x = min(self.min_x, run.x)
        self.max_x = max(self.max_x, run.x + run.width)
        self.min_y = min(self.min_y, run.y)
        self.max_y = max(self.max_y, run.y + run.height)


class GeometryClusterer:
    """
    Turns a page's positioned runs into text blocks.

    Example:
        clusterer = GeometryClusterer()
        blocks = clusterer.cluster(runs, 612, 792, page_number=1)
    """

    def __init__(self, settings: Optional[ClusteringSettings] = None):
        self.settings = settings or ClusteringSettings()

    def line_height(self, runs: Sequence[PositionedRun]) -> float:
        """Mean run height, or the default when there are fewer than two runs."""
        if len(runs) < 2:
            return self.settings.default_line_height
        mean = sum(r.height for r in runs) / len(runs)
        return mean if mean > 0 else self.settings.default_line_height

    def cluster(self,
                runs: Sequence[PositionedRun],
                page_width: float,
                page_height: float,
                page_number: int,
                flat_text: Optional[str] = None) -> List[TextBlock]:
        """
        Cluster runs into blocks, falling back to paragraph splitting when
        clustering drops more than half of the page text.

        See ``extract()`` for the variant that also reports the strategy used.

        Args:
            runs: All runs of the page, any order
            page_width: Page width in points
            page_height: Page height in points
            page_number: 1-based page number stamped into bounding boxes
            flat_text: Raw page text from the decoder. Derived from the runs
                when not given.

        Returns:
            Blocks in clustering order (not reading order)

        Raises:
            ExtractionError: The page has text but neither strategy produced
                a block
        """
        return self.extract(runs, page_width, page_height, page_number, flat_text)[0]

    def extract(self,
                runs: Sequence[PositionedRun],
                page_width: float,
                page_height: float,
                page_number: int,
                flat_text: Optional[str] = None) -> Tuple[List[TextBlock], str]:
        """Blocks plus the strategy that built them: "text" or "fallback"."""
        strategy = "text"
        text_runs = [r for r in runs if r.text and r.text.strip()]
        blocks = self._sweep(text_runs, page_width, page_number)

        if flat_text is None:
            flat_text = runs_to_flat_text(text_runs)

        flat_length = _content_length(flat_text)
        clustered_length = sum(_content_length(b.text) for b in blocks)

        if flat_length and clustered_length < flat_length * self.settings.fallback_text_ratio:
            logger.warning(
                f"Page {page_number}: clustering kept {clustered_length}/{flat_length} "
                f"characters, using paragraph fallback"
            )
            blocks = self.split_paragraphs(flat_text, page_width, page_height, page_number)
            strategy = "fallback"

        if not blocks and (flat_length or text_runs):
            raise ExtractionError("No text blocks could be built", page_number=page_number)

        return blocks, strategy

    def _sweep(self,
               runs: Sequence[PositionedRun],
               page_width: float,
               page_number: int) -> List[TextBlock]:
        if not runs:
            return []

        line_height = self.line_height(runs)
        vertical_threshold = self.settings.vertical_threshold_factor * line_height
        max_line_gap = self.settings.max_line_gap_factor * line_height
        horizontal_threshold = max(
            self.settings.min_horizontal_threshold,
            self.settings.horizontal_threshold_factor * line_height,
        )
        column_span = self.settings.column_alignment_ratio * page_width

        groups: List[_Group] = []
        current: Optional[_Group] = None

        for run in sort_runs(runs):
            if current is None:
                current = _Group.start(run)
                continue

            last = current.last
            vertical_distance = abs(run.y - last.y)
            horizontal_gap = run.x - (last.x + last.width)

            same_line = vertical_distance < max_line_gap and horizontal_gap < horizontal_threshold
            aligned = (vertical_distance < vertical_threshold
                       and abs(run.x - current.min_x) < column_span)

            if same_line:
                current.add(run, self._line_separator(current.text, run, horizontal_gap))
            elif aligned:
                current.add(run, " ")
            else:
                groups.append(current)
                current = _Group.start(run)

        if current is not None:
            groups.append(current)

        return [self._to_block(g, page_number) for g in groups]

    def _line_separator(self, text: str, run: PositionedRun, gap: float) -> str:
        """A space only when the gap exceeds a share of the incoming run's width."""
        if text.endswith((" ", "\t")) or run.text.startswith((" ", "\t")):
            return ""
        return " " if gap > run.width * self.settings.space_gap_ratio else ""

    @staticmethod
    def _to_block(group: _Group, page_number: int) -> TextBlock:
        first = group.runs[0]
        return TextBlock(
            text=" ".join(group.text.split()),
            bounding_box=BoundingBox(
                page_number=page_number,
                x=group.min_x,
                y=group.min_y,
                width=group.max_x - group.min_x,
                height=group.max_y - group.min_y,
            ),
            font_name=first.font_name,
            font_size=first.font_size,
        )

    def split_paragraphs(self,
                         flat_text: str,
                         page_width: float,
                         page_height: float,
                         page_number: int) -> List[TextBlock]:
        """
        Split raw page text on blank lines (else one block per line) and lay
        the pieces out top-down with synthetic bounding boxes.
        """
        paragraphs = [p.strip() for p in _BLANK_LINE.split(flat_text) if p.strip()]
        if len(paragraphs) <= 1:
            paragraphs = [line.strip() for line in flat_text.splitlines() if line.strip()]

        margin = self.settings.fallback_margin_ratio
        line_height = self.settings.fallback_line_height
        x = page_width * margin
        width = page_width * (1 - 2 * margin)
        cursor = page_height * (1 - margin)

        blocks = []
        for paragraph in paragraphs:
            lines = [line for line in paragraph.splitlines() if line.strip()] or [paragraph]
            height = len(lines) * line_height
            bottom = max(0.0, cursor - height)
            # Past the bottom margin boxes pile up at y=0 with one line of height
            box_height = cursor - bottom if cursor > bottom else line_height
            blocks.append(TextBlock(
                text=" ".join(" ".join(lines).split()),
                bounding_box=BoundingBox(
                    page_number=page_number,
                    x=x,
                    y=bottom,
                    width=width,
                    height=box_height,
                ),
            ))
            cursor = bottom - line_height

        return blocks
