"""
Block Classification Tests

Run with: pytest tests/test_classifier.py -v
"""

import sys
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).parent.parent))

from conftest import PAGE_HEIGHT, PAGE_WIDTH, FakeTextService
from readaloud_core.adapters.guard import ServiceGuard
from readaloud_core.classify.classifier import BlockClassifier, collect_running_texts, parse_block_type
from readaloud_core.classify.heuristics import ClassificationContext, classify_text, detect_header_footer
from readaloud_core.config.settings import ClassificationSettings
from readaloud_core.errors import ClassificationError
from readaloud_core.models import BlockType, BoundingBox, PageStructure, TextBlock


def context(running=frozenset()):
    return ClassificationContext(1, PAGE_WIDTH, PAGE_HEIGHT, running_texts=running)


def block_at(text, y, height=12.0, page=1):
    return TextBlock(text=text, bounding_box=BoundingBox(page, 72, y, 200, height))


class TestHeuristics:
    """Tests for classify_text precedence."""

    @pytest.mark.parametrize("text", ["• Horses run fast", "- item", "1. First step", "a) option", "iv. fourth"])
    def test_list_items(self, text):
        assert classify_text(text).block_type == BlockType.LIST_ITEM

    def test_all_caps_heading_has_no_level(self):
        result = classify_text("INTRODUCTION")
        assert result.block_type == BlockType.HEADING
        assert result.heading_level is None

    def test_short_title_case_is_level_one(self):
        result = classify_text("Horses of the World")
        assert result.block_type == BlockType.HEADING
        assert result.heading_level == 1

    def test_long_title_case_is_level_two(self):
        result = classify_text("The Care and Feeding of Horses in Northern Climates")
        assert result.heading_level == 2

    def test_chapter_heading(self):
        result = classify_text("Chapter 3 was about feeding horses")
        assert (result.block_type, result.heading_level) == (BlockType.HEADING, 1)

    def test_numbered_subsection(self):
        result = classify_text("2.1 feeding schedules")
        assert (result.block_type, result.heading_level) == (BlockType.HEADING, 3)

    def test_numbered_section_without_space_is_heading(self):
        """"N. text" is a list item; "N.text" falls through to the section rule."""
        assert classify_text("3. feeding").block_type == BlockType.LIST_ITEM
        result = classify_text("3.feeding")
        assert (result.block_type, result.heading_level) == (BlockType.HEADING, 2)

    def test_glossary_term(self):
        assert classify_text("Mare: an adult female horse.").block_type == BlockType.GLOSSARY_TERM

    def test_sentence_is_paragraph(self):
        assert classify_text("Horses eat hay every day.").block_type == BlockType.PARAGRAPH

    def test_empty_is_paragraph(self):
        assert classify_text("   ").block_type == BlockType.PARAGRAPH


class TestHeaderFooter:
    """Tests for margin boilerplate detection."""

    def test_page_number_in_bottom_band(self):
        assert detect_header_footer(block_at("12", 30), context()) == BlockType.FOOTER

    def test_copyright_in_top_band(self):
        assert detect_header_footer(block_at("© 2024 Farm Press", 760), context()) == BlockType.HEADER

    def test_body_text_in_band_is_kept(self):
        assert detect_header_footer(block_at("Horses need water.", 30), context()) is None

    def test_page_number_outside_band_is_kept(self):
        assert detect_header_footer(block_at("12", 400), context()) is None

    def test_running_header(self):
        pages = [
            PageStructure(n, PAGE_WIDTH, PAGE_HEIGHT, text_blocks=[block_at(f"Horse Care - {n}", 760, page=n)])
            for n in range(1, 4)
        ]
        running = collect_running_texts(pages, 0.10, 3)
        assert "horse care - #" in running
        assert detect_header_footer(block_at("Horse Care - 9", 760), context(running)) == BlockType.HEADER

    def test_running_text_needs_three_pages(self):
        pages = [
            PageStructure(n, PAGE_WIDTH, PAGE_HEIGHT, text_blocks=[block_at("Horse Care", 760, page=n)])
            for n in range(1, 3)
        ]
        assert collect_running_texts(pages, 0.10, 3) == frozenset()


class TestBlockClassifier:
    """Tests for BlockClassifier."""

    def test_apply_excludes_margin_blocks(self):
        blocks = [block_at("Horses", 700), block_at("7", 30)]
        BlockClassifier().apply(blocks, context())
        assert blocks[0].block_type == BlockType.HEADING
        assert not blocks[0].exclude_from_reading_order
        assert blocks[1].block_type == BlockType.FOOTER
        assert blocks[1].exclude_from_reading_order

    def test_external_label_overrides_ambiguous_block(self):
        service = FakeTextService(labels={"Horses graze.": "Caption"})
        settings = ClassificationSettings(use_external_classifier=True)
        classifier = BlockClassifier(settings, service, ServiceGuard("fake"))
        result = classifier.classify(block_at("Horses graze.", 400), context())
        assert result.block_type == BlockType.CAPTION
        assert result.source == "external"

    def test_confident_heuristic_not_sent(self):
        service = FakeTextService(labels={"• item": "paragraph"})
        settings = ClassificationSettings(use_external_classifier=True)
        classifier = BlockClassifier(settings, service)
        assert classifier.classify(block_at("• item", 400), context()).block_type == BlockType.LIST_ITEM
        assert service.classified == []

    def test_unknown_label_keeps_heuristic(self):
        service = FakeTextService(labels={"Horses graze.": "banana"})
        classifier = BlockClassifier(ClassificationSettings(use_external_classifier=True), service)
        assert classifier.classify(block_at("Horses graze.", 400), context()).block_type == BlockType.PARAGRAPH

    def test_service_failure_keeps_heuristic(self):
        service = FakeTextService(error=ClassificationError("timeout"))
        classifier = BlockClassifier(ClassificationSettings(use_external_classifier=True), service)
        result = classifier.classify(block_at("Horses graze.", 400), context())
        assert result.block_type == BlockType.PARAGRAPH
        assert result.source == "heuristic"

    def test_disabled_external_classifier_never_called(self):
        service = FakeTextService(labels={"Horses graze.": "caption"})
        classifier = BlockClassifier(ClassificationSettings(), service)
        classifier.classify(block_at("Horses graze.", 400), context())
        assert service.classified == []

    @pytest.mark.parametrize("label,expected", [
        ("List item", BlockType.LIST_ITEM),
        ("HEADING", BlockType.HEADING),
        ("glossary-term", BlockType.GLOSSARY_TERM),
        ("nonsense", None),
        (None, None),
    ])
    def test_parse_block_type(self, label, expected):
        assert parse_block_type(label) == expected
