"""
Layout Tests: geometry clustering and reading order

Run with: pytest tests/test_layout.py -v
"""

import random
import sys
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).parent.parent))

from conftest import PAGE_HEIGHT, PAGE_WIDTH, run
from readaloud_core.config.settings import ClusteringSettings
from readaloud_core.errors import ExtractionError
from readaloud_core.layout.clusterer import GeometryClusterer, runs_to_flat_text, sort_runs
from readaloud_core.layout.reading_order import (
    ReadingOrderResolver,
    assign_reading_order,
    detect_two_page_spread,
)
from readaloud_core.models import BoundingBox, TextBlock


def block(text, x, y, width=100.0, height=12.0, page=1):
    return TextBlock(text=text, bounding_box=BoundingBox(page, x, y, width, height))


class TestSortRuns:
    """Tests for run ordering."""

    def test_top_of_page_first(self):
        """Higher y comes first in bottom-origin coordinates."""
        runs = [run("low", 72, 100), run("high", 72, 700)]
        assert [r.text for r in sort_runs(runs)] == ["high", "low"]

    def test_left_to_right_on_same_line(self):
        runs = [run("right", 300, 500), run("left", 72, 500)]
        assert [r.text for r in sort_runs(runs)] == ["left", "right"]

    def test_flat_text_one_line_per_baseline(self):
        runs = [run("world", 130, 500), run("Hello", 72, 500), run("Next line", 72, 480)]
        assert runs_to_flat_text(runs) == "Hello world\nNext line"


class TestGeometryClusterer:
    """Tests for GeometryClusterer."""

    def test_same_line_runs_join(self):
        """Runs on one baseline with a small gap become one block."""
        clusterer = GeometryClusterer()
        runs = [run("Horses", 72, 700, width=40), run("gallop", 135, 700, width=40)]
        blocks = clusterer.cluster(runs, PAGE_WIDTH, PAGE_HEIGHT, 1)
        assert len(blocks) == 1
        assert blocks[0].text == "Horses gallop"

    def test_aligned_lines_join(self):
        """Consecutive lines closer than two line heights stay together."""
        clusterer = GeometryClusterer()
        runs = [
            run("The first line of a paragraph", 72, 700),
            run("and its second line", 72, 685),
        ]
        blocks = clusterer.cluster(runs, PAGE_WIDTH, PAGE_HEIGHT, 1)
        assert len(blocks) == 1
        assert blocks[0].text == "The first line of a paragraph and its second line"

    def test_distant_lines_split(self):
        clusterer = GeometryClusterer()
        runs = [run("Heading", 72, 700), run("Body text here", 72, 600)]
        blocks = clusterer.cluster(runs, PAGE_WIDTH, PAGE_HEIGHT, 1)
        assert [b.text for b in blocks] == ["Heading", "Body text here"]

    def test_bounding_box_covers_runs(self):
        clusterer = GeometryClusterer()
        runs = [run("alpha", 72, 700, width=30), run("beta", 110, 700, width=30)]
        box = clusterer.cluster(runs, PAGE_WIDTH, PAGE_HEIGHT, 3)[0].bounding_box
        assert box.page_number == 3
        assert box.x == 72
        assert box.y == 700
        assert box.right == pytest.approx(140)
        assert box.top == pytest.approx(712)

    def test_blank_runs_ignored(self):
        clusterer = GeometryClusterer()
        runs = [run("   ", 72, 700), run("Text", 72, 500)]
        blocks = clusterer.cluster(runs, PAGE_WIDTH, PAGE_HEIGHT, 1)
        assert [b.text for b in blocks] == ["Text"]

    def test_no_runs_no_blocks(self):
        blocks, strategy = GeometryClusterer().extract([], PAGE_WIDTH, PAGE_HEIGHT, 1)
        assert blocks == []
        assert strategy == "text"

    def test_fallback_when_clustering_loses_text(self):
        """Flat text much longer than the clustered text triggers paragraph splitting."""
        clusterer = GeometryClusterer()
        runs = [run("Short", 72, 700)]
        flat = "Short\n\nA much longer paragraph that the runs did not carry at all."
        blocks, strategy = clusterer.extract(runs, PAGE_WIDTH, PAGE_HEIGHT, 1, flat_text=flat)
        assert strategy == "fallback"
        assert [b.text for b in blocks] == [
            "Short",
            "A much longer paragraph that the runs did not carry at all.",
        ]

    def test_fallback_boxes_run_top_down(self):
        blocks = GeometryClusterer().split_paragraphs("One\n\nTwo\n\nThree", PAGE_WIDTH, PAGE_HEIGHT, 1)
        tops = [b.bounding_box.top for b in blocks]
        assert tops == sorted(tops, reverse=True)

    def test_fallback_without_blank_lines_splits_lines(self):
        blocks = GeometryClusterer().split_paragraphs("Line one\nLine two", PAGE_WIDTH, PAGE_HEIGHT, 1)
        assert [b.text for b in blocks] == ["Line one", "Line two"]

    def test_wide_gap_adds_space(self):
        clusterer = GeometryClusterer()
        runs = [run("Horses", 72, 700, width=40), run("run", 130, 700, width=18)]
        assert clusterer.cluster(runs, PAGE_WIDTH, PAGE_HEIGHT, 1)[0].text == "Horses run"

    def test_kerning_gap_adds_no_space(self):
        clusterer = GeometryClusterer()
        runs = [run("Horses", 72, 700, width=40), run(",", 112.5, 700, width=3)]
        assert clusterer.cluster(runs, PAGE_WIDTH, PAGE_HEIGHT, 1)[0].text == "Horses,"

    def test_text_but_no_blocks_raises(self):
        """With the fallback disabled, page text without runs cannot be recovered."""
        clusterer = GeometryClusterer(ClusteringSettings(fallback_text_ratio=0.0))
        with pytest.raises(ExtractionError) as excinfo:
            clusterer.extract([], PAGE_WIDTH, PAGE_HEIGHT, 4, flat_text="Some page text")
        assert excinfo.value.page_number == 4

    def test_clustering_is_deterministic(self):
        """Same runs in any input order give the same block boundaries."""
        runs = [
            run("CHAPTER ONE", 72, 720, size=18),
            run("Horses graze", 72, 680),
            run("in the meadow.", 160, 680),
            run("They rest at night.", 72, 664),
            run("Ponies are smaller.", 72, 560),
            run("7", 300, 30, width=6),
        ]
        clusterer = GeometryClusterer()

        def boundaries(ordered_runs):
            blocks = clusterer.cluster(ordered_runs, PAGE_WIDTH, PAGE_HEIGHT, 1)
            return [(b.text, b.bounding_box.to_dict()) for b in blocks]

        expected = boundaries(runs)
        assert boundaries(runs) == expected
        shuffled = list(runs)
        for seed in range(5):
            random.Random(seed).shuffle(shuffled)
            assert boundaries(shuffled) == expected


class TestTwoPageSpread:
    """Tests for spread detection."""

    def test_two_folios_at_bottom(self):
        blocks = [
            block("Left text", 50, 400),
            block("12", 50, 30, width=12),
            block("13", 560, 30, width=12),
        ]
        assert detect_two_page_spread(blocks, PAGE_WIDTH, PAGE_HEIGHT)

    def test_single_column_page(self):
        blocks = [block("Title", 72, 700, width=400), block("Body", 72, 600, width=460)]
        assert not detect_two_page_spread(blocks, PAGE_WIDTH, PAGE_HEIGHT)

    def test_wide_gutter(self):
        blocks = [block("Left", 40, 500, width=150), block("Right", 420, 500, width=150)]
        assert detect_two_page_spread(blocks, PAGE_WIDTH, PAGE_HEIGHT)

    def test_blocks_crossing_midpoint_do_not_count(self):
        blocks = [block("Wide", 100, 500, width=400), block("Right", 420, 300, width=100)]
        assert not detect_two_page_spread(blocks, PAGE_WIDTH, PAGE_HEIGHT)


class TestReadingOrderResolver:
    """Tests for ReadingOrderResolver."""

    def test_top_to_bottom(self):
        blocks = [block("second", 72, 500), block("first", 72, 700), block("third", 72, 300)]
        ordered, is_spread = ReadingOrderResolver().order(blocks, PAGE_WIDTH, PAGE_HEIGHT)
        assert not is_spread
        assert [b.text for b in ordered] == ["first", "second", "third"]

    def test_spread_reads_left_half_first(self):
        blocks = [
            block("right top", 400, 700),
            block("left bottom", 50, 300),
            block("left top", 50, 700),
            block("right bottom", 400, 300),
        ]
        ordered, is_spread = ReadingOrderResolver().order(blocks, PAGE_WIDTH, PAGE_HEIGHT)
        assert is_spread
        assert [b.text for b in ordered] == ["left top", "left bottom", "right top", "right bottom"]

    def test_unpositioned_blocks_last(self):
        blocks = [TextBlock(text="floating"), block("placed", 72, 500)]
        ordered, _ = ReadingOrderResolver().order(blocks, PAGE_WIDTH, PAGE_HEIGHT)
        assert [b.text for b in ordered] == ["placed", "floating"]

    def test_assign_reading_order_skips_excluded(self):
        """Excluded blocks get 0 and do not shift the numbering."""
        blocks = [block("a", 72, 700), block("header", 72, 760), block("b", 72, 500)]
        blocks[1].exclude_from_reading_order = True
        sequence = assign_reading_order(blocks)
        assert [b.text for b in sequence] == ["a", "b"]
        assert [b.reading_order for b in blocks] == [1, 0, 2]
