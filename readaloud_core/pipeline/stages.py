"""
Pipeline Stages
===============

The nine conversion stages. Every stage has the same contract:

    stage(structure, context) -> DocumentStructure

A stage never modifies the structure it receives. It works on
``structure.copy()`` and returns the new value, so the orchestrator can
snapshot each result and a stage can be re-run on the same input with the
same outcome. Timestamps come from the job's creation time.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from statistics import median
from typing import Any, Callable, Dict, List, Optional, Tuple

from readaloud_core.adapters.base import DecoderFactory, OcrEngine, PdfDecoder, TextService
from readaloud_core.adapters.circuit_breaker import CircuitBreaker
from readaloud_core.adapters.guard import ServiceGuard
from readaloud_core.classify.classifier import BlockClassifier, collect_running_texts
from readaloud_core.classify.heuristics import ClassificationContext
from readaloud_core.config.settings import PipelineSettings
from readaloud_core.errors import DecodeError, ExtractionError, PackagingError, truncate_error
from readaloud_core.layout.clusterer import GeometryClusterer, runs_to_flat_text
from readaloud_core.layout.reading_order import ReadingOrderResolver, assign_reading_order
from readaloud_core.models import (
    AudioSync,
    BlockType,
    BoundingBox,
    DocumentStructure,
    ImageBlock,
    PageStructure,
    TextBlock,
)
from readaloud_core.packaging.epub_packager import EpubPackager
from readaloud_core.packaging.verify import verify_container, verify_sync_anchors
from readaloud_core.pipeline.cancellation import CancellationToken
from readaloud_core.pipeline.events import utc_now
from readaloud_core.pipeline.ocr_policy import OcrFallbackPolicy
from readaloud_core.pipeline.steps import ConversionStep
from readaloud_core.results import Ok
from readaloud_core.sync.timings import WordTiming, map_word_timings
from readaloud_core.text.page_filter import should_skip_read_aloud
from readaloud_core.text.sanitize import is_decorative, sanitize_text
from readaloud_core.text.segmentation import segment_phrases, segment_sentences, segment_words
from readaloud_core.text_layer import anchor_id, assign_block_ids, is_readable, readable_blocks

logger = logging.getLogger(__name__)


# ============================================================================
# CONTEXT
# ============================================================================

@dataclass
class ConversionContext:
    """
    Everything a stage needs besides the structure: the job, its inputs,
    settings and collaborators.
    """
    job_id: str
    source_path: Path
    output_dir: Path
    settings: PipelineSettings = field(default_factory=PipelineSettings)
    decoder_factory: Optional[DecoderFactory] = None
    ocr_engine: Optional[OcrEngine] = None
    text_service: Optional[TextService] = None
    ocr_guard: Optional[ServiceGuard] = None
    ai_guard: Optional[ServiceGuard] = None
    audio_syncs: List[AudioSync] = field(default_factory=list)
    word_timings: Dict[int, List[WordTiming]] = field(default_factory=dict)
    audio_path: Optional[str] = None
    title: Optional[str] = None
    created_at: datetime = field(default_factory=utc_now)
    cancellation: CancellationToken = field(default_factory=CancellationToken)
    metrics: Dict[str, Any] = field(default_factory=dict)
    epub_path: Optional[Path] = None
    qa_problems: List[str] = field(default_factory=list)
    _decoder: Optional[PdfDecoder] = field(default=None, repr=False)

    def __post_init__(self):
        self.source_path = Path(self.source_path)
        self.output_dir = Path(self.output_dir)
        if self.ocr_guard is None:
            self.ocr_guard = ServiceGuard("ocr", breaker=CircuitBreaker("ocr"))
        if self.ai_guard is None and self.text_service is not None:
            name = self.text_service.service_name
            self.ai_guard = ServiceGuard(name, breaker=CircuitBreaker(name))

    @property
    def has_audio(self) -> bool:
        return bool(self.audio_syncs or self.word_timings)

    @property
    def epub_target(self) -> Path:
        return self.output_dir / f"{self.job_id}.epub"

    @property
    def modified(self) -> str:
        """Package modification time, fixed to the job's creation time."""
        return self.created_at.strftime("%Y-%m-%dT%H:%M:%SZ")

    def decoder(self) -> PdfDecoder:
        """Open the source once per job. Raises DecodeError."""
        if self._decoder is None:
            factory = self.decoder_factory
            if factory is None:
                from readaloud_core.adapters.pymupdf_decoder import open_pdf
                factory = open_pdf
            try:
                self._decoder = factory(self.source_path)
            except DecodeError:
                raise
            except Exception as e:
                raise DecodeError(f"Cannot open {self.source_path.name}: {e}") from e
        return self._decoder

    def close(self) -> None:
        if self._decoder is not None:
            self._decoder.close()
            self._decoder = None


def _content_length(text: str) -> int:
    return sum(1 for ch in text or "" if not ch.isspace())


# ============================================================================
# STAGE 0: CLASSIFICATION
# ============================================================================

def classification_stage(structure: DocumentStructure, ctx: ConversionContext) -> DocumentStructure:
    """Open the source, build the page skeleton, flag scanned pages."""
    structure = structure.copy()
    decoder = ctx.decoder()
    page_count = decoder.page_count()
    if page_count <= 0:
        raise DecodeError(f"{ctx.source_path.name} has no pages")

    meta = decoder.metadata() or {}
    threshold = ctx.settings.ocr.scanned_text_threshold
    structure.metadata.update({
        "job_id": ctx.job_id,
        "title": ctx.title or meta.get("title") or ctx.source_path.stem,
        "author": meta.get("author"),
        "language": ctx.settings.packaging.language,
        "page_count": page_count,
        "source": ctx.source_path.name,
        "modified": ctx.modified,
    })

    pages = []
    for index in range(page_count):
        width, height = decoder.page_dimensions(index)
        text = decoder.page_text(index)
        if text is None:
            text = runs_to_flat_text(decoder.positioned_runs(index))
        pages.append(PageStructure(
            page_number=index + 1,
            width=float(width),
            height=float(height),
            is_scanned=_content_length(text) < threshold,
            flat_text=text,
        ))
    structure.pages = pages

    scanned = sum(1 for p in pages if p.is_scanned)
    ctx.metrics.update({"pages": page_count, "scanned_pages": scanned})
    logger.info(f"{ctx.source_path.name}: {page_count} page(s), {scanned} scanned")
    return structure


# ============================================================================
# STAGE 1: TEXT EXTRACTION
# ============================================================================

def text_extraction_stage(structure: DocumentStructure, ctx: ConversionContext) -> DocumentStructure:
    """Cluster each page's runs into blocks, then OCR scanned pages."""
    structure = structure.copy()
    decoder = ctx.decoder()
    clusterer = GeometryClusterer(ctx.settings.clustering)

    for page in structure.pages:
        index = page.page_number - 1
        runs = decoder.positioned_runs(index)
        try:
            blocks, method = clusterer.extract(
                runs, page.width, page.height, page.page_number, flat_text=page.flat_text,
            )
        except ExtractionError as e:
            logger.warning(f"Extraction failed: {e}")
            blocks, method = [], "text"
        page.text_blocks = blocks
        page.extraction_method = method
        page.image_blocks = [
            ImageBlock(
                id=f"p{page.page_number}-image-{i}",
                bounding_box=BoundingBox(page.page_number, x, y, w, h),
            )
            for i, (x, y, w, h) in enumerate(decoder.image_regions(index), start=1)
        ]

    policy = OcrFallbackPolicy(
        ctx.ocr_engine, ctx.ocr_guard, ctx.settings.ocr,
        GeometryClusterer(ctx.settings.clustering),
    )
    report = policy.apply(structure.pages, decoder)
    ctx.metrics.update(report.to_dict())
    ctx.metrics["blocks_extracted"] = sum(len(p.text_blocks) for p in structure.pages)
    return structure


# ============================================================================
# STAGE 2: LAYOUT ANALYSIS
# ============================================================================

def layout_analysis_stage(structure: DocumentStructure, ctx: ConversionContext) -> DocumentStructure:
    """Spread detection, ordering, classification, numbering, ids."""
    structure = structure.copy()
    settings = ctx.settings
    resolver = ReadingOrderResolver(settings.reading_order)
    classifier = BlockClassifier(settings.classification, ctx.text_service, ctx.ai_guard)
    running = collect_running_texts(
        structure.pages,
        settings.classification.margin_ratio,
        settings.classification.running_header_min_pages,
    )

    spreads = 0
    for page in structure.pages:
        context = ClassificationContext(
            page_number=page.page_number,
            page_width=page.width,
            page_height=page.height,
            locale=structure.metadata.get("language", "en"),
            running_texts=running,
        )
        ordered, is_spread = resolver.order(page.text_blocks, page.width, page.height)
        page.is_two_page_spread = is_spread
        spreads += int(is_spread)

        classifier.apply(ordered, context)
        assign_reading_order(ordered)
        assign_block_ids(page)

    ctx.metrics["two_page_spreads"] = spreads
    return structure


# ============================================================================
# STAGE 3: SEMANTIC STRUCTURING
# ============================================================================

def segment_block(block: TextBlock) -> None:
    block.words = segment_words(block.text)
    block.sentences = segment_sentences(block.text)
    block.phrases = segment_phrases(block.text)


def build_table_of_contents(structure: DocumentStructure) -> List[Dict[str, Any]]:
    toc = []
    for page in structure.pages:
        for block in page.ordered_blocks():
            if block.block_type != BlockType.HEADING or not block.text.strip():
                continue
            toc.append({
                "title": block.text,
                "level": block.heading_level or 1,
                "page_number": page.page_number,
                "block_id": block.id,
                "anchor": anchor_id(block),
            })
    return toc


def semantic_structuring_stage(structure: DocumentStructure, ctx: ConversionContext) -> DocumentStructure:
    """Heading levels, segmentation, semantic blocks and table of contents."""
    structure = structure.copy()
    semantic_blocks = []

    for page in structure.pages:
        for block in page.ordered_blocks():
            if block.block_type == BlockType.HEADING and block.heading_level is None:
                block.heading_level = 1
            segment_block(block)
            semantic_blocks.append({
                "block_id": block.id,
                "page_number": page.page_number,
                "type": block.block_type.value,
                "heading_level": block.heading_level,
                "reading_order": block.reading_order,
            })

    structure.semantic_blocks = semantic_blocks
    structure.table_of_contents = build_table_of_contents(structure)
    return structure


# ============================================================================
# STAGE 4: ACCESSIBILITY
# ============================================================================

def accessibility_stage(structure: DocumentStructure, ctx: ConversionContext) -> DocumentStructure:
    """Skip TOC/index pages for read-aloud, alt text, accessibility metadata."""
    structure = structure.copy()
    skipped = []
    images = 0

    for page in structure.pages:
        page.skip_read_aloud = should_skip_read_aloud(page)
        if page.skip_read_aloud:
            skipped.append(page.page_number)
        for image in page.image_blocks:
            images += 1
            if not image.alt_text:
                image.alt_text = _nearest_caption(page, image) or f"Image on page {page.page_number}"

    features = ["structuralNavigation", "readingOrder", "pageNavigation", "printPageNumbers"]
    if images:
        features.append("alternativeText")
    if ctx.has_audio:
        features.append("synchronizedAudioText")

    structure.metadata["language"] = structure.metadata.get("language") or ctx.settings.packaging.language
    structure.metadata["accessibility"] = {
        "accessMode": ["textual", "visual"] + (["auditory"] if ctx.has_audio else []),
        "accessModeSufficient": ["textual,visual", "textual"],
        "accessibilityFeature": features,
        "accessibilityHazard": ["none"],
        "accessibilitySummary": (
            "Fixed-layout pages with a text layer in reading order for assistive "
            "technology." + (" Read-aloud audio is synchronized with the text." if ctx.has_audio else "")
        ),
    }
    if skipped:
        logger.info(f"Pages excluded from read-aloud (TOC/index): {skipped}")
    ctx.metrics["read_aloud_skipped_pages"] = skipped
    return structure


def _nearest_caption(page: PageStructure, image: ImageBlock) -> Optional[str]:
    """Text of the closest block directly below the image that looks like a caption."""
    box = image.bounding_box
    if box is None:
        return None
    best: Optional[Tuple[float, str]] = None
    for block in page.text_blocks:
        other = block.bounding_box
        if other is None or not CAPTION.match(block.text):
            continue
        distance = box.y - other.top
        if 0 <= distance and (best is None or distance < best[0]):
            best = (distance, block.text)
    return best[1] if best else None


# ============================================================================
# STAGE 5: CONTENT CLEANUP
# ============================================================================

def content_cleanup_stage(structure: DocumentStructure, ctx: ConversionContext) -> DocumentStructure:
    """Sanitize text, flag decorative fragments, optional AI correction."""
    structure = structure.copy()
    cleanup = ctx.settings.cleanup
    use_ai = cleanup.use_ai_correction and ctx.text_service is not None and ctx.ai_guard is not None
    corrected = decorative = 0

    for page in structure.pages:
        for block in page.text_blocks:
            text = sanitize_text(block.text)
            block.decorative = is_decorative(text, cleanup.min_alnum_density, cleanup.density_min_length)
            if block.decorative:
                decorative += 1

            if use_ai and is_readable(block) and text:
                outcome = ctx.ai_guard.call(
                    ctx.text_service.correct_text,
                    text,
                    {"page_number": page.page_number, "block_type": block.block_type.value},
                )
                if isinstance(outcome, Ok) and outcome.value and outcome.value.strip():
                    fixed = sanitize_text(outcome.value)
                    if fixed != text:
                        text = fixed
                        corrected += 1

            if text != block.text:
                block.text = text
                segment_block(block)

    ctx.metrics.update({"decorative_blocks": decorative, "ai_corrected_blocks": corrected})
    return structure


# ============================================================================
# STAGE 6: SPECIAL CONTENT
# ============================================================================

CAPTION = re.compile(r"^(?:figure|fig\.|table|plate|chart|diagram|illustration)\s+\d+[\w.\-]*", re.IGNORECASE)
TABLE_CAPTION = re.compile(r"^table\s+\d+", re.IGNORECASE)
FOOTNOTE_MARKER = re.compile(r"^(?:\d{1,3}|[*†‡§¶])\s*\S")
MATH_SYMBOLS = set("=+−×÷±∑∫√≤≥≈≠∞∂∆πθλμσ^")
MATH_DENSITY = 0.15
FOOTNOTE_REGION = 0.15
FOOTNOTE_FONT_RATIO = 0.85
DEFAULT_SMALL_FONT = 9.0

CAPTION_SOURCE_TYPES = (BlockType.PARAGRAPH, BlockType.HEADING, BlockType.GLOSSARY_TERM)


def _math_density(text: str) -> float:
    visible = [ch for ch in text if not ch.isspace()]
    if not visible:
        return 0.0
    return sum(1 for ch in visible if ch in MATH_SYMBOLS) / len(visible)


def _is_footnote(block: TextBlock, page: PageStructure, body_font: Optional[float]) -> bool:
    box = block.bounding_box
    if box is None or box.top > page.height * FOOTNOTE_REGION:
        return False
    if not FOOTNOTE_MARKER.match(block.text):
        return False
    if not block.font_size:
        return False
    limit = body_font * FOOTNOTE_FONT_RATIO if body_font else DEFAULT_SMALL_FONT
    return block.font_size < limit


def special_content_stage(structure: DocumentStructure, ctx: ConversionContext) -> DocumentStructure:
    """Captions, footnotes, equations and table references."""
    structure = structure.copy()
    equations: List[Dict[str, Any]] = []
    tables: List[Dict[str, Any]] = []
    footnotes = 0

    for page in structure.pages:
        sizes = [b.font_size for b in page.text_blocks if b.font_size]
        body_font = median(sizes) if sizes else None

        for block in page.ordered_blocks():
            text = block.text.strip()
            if not text:
                continue

            if block.block_type in CAPTION_SOURCE_TYPES and CAPTION.match(text):
                block.block_type = BlockType.CAPTION
                block.heading_level = None
                if TABLE_CAPTION.match(text):
                    tables.append({
                        "page_number": page.page_number,
                        "block_id": block.id,
                        "caption": text,
                    })
            elif block.block_type == BlockType.PARAGRAPH and _is_footnote(block, page, body_font):
                block.block_type = BlockType.FOOTNOTE
                footnotes += 1

            if _math_density(text) >= MATH_DENSITY and any(ch in "=∑∫√≤≥≈≠" for ch in text):
                equations.append({
                    "page_number": page.page_number,
                    "block_id": block.id,
                    "text": text,
                })

    structure.equations = equations
    structure.tables = tables
    structure.table_of_contents = build_table_of_contents(structure)
    ctx.metrics.update({"equations": len(equations), "tables": len(tables), "footnotes": footnotes})
    return structure


# ============================================================================
# STAGE 7: EPUB GENERATION
# ============================================================================

def collect_audio_syncs(structure: DocumentStructure, ctx: ConversionContext) -> List[AudioSync]:
    """Supplied syncs plus block syncs derived from word timings."""
    syncs = list(ctx.audio_syncs)
    for page_number, timings in sorted(ctx.word_timings.items()):
        page = structure.page(page_number)
        if page is None:
            logger.warning(f"Word timings reference missing page {page_number}")
            continue
        if not ctx.audio_path:
            logger.warning(f"Word timings for page {page_number} have no audio file")
            continue
        syncs.extend(map_word_timings(readable_blocks(page), timings, ctx.audio_path, page_number))
    return syncs


def epub_generation_stage(structure: DocumentStructure, ctx: ConversionContext) -> DocumentStructure:
    """Render page images and write the EPUB archive."""
    structure = structure.copy()
    decoder = ctx.decoder()
    dpi = ctx.settings.packaging.dpi

    page_images = {
        page.page_number: decoder.render_page_image(page.page_number - 1, dpi)
        for page in structure.pages
    }
    syncs = collect_audio_syncs(structure, ctx)

    packager = EpubPackager(ctx.settings.packaging)
    target = ctx.epub_target
    result = packager.package(structure, target, page_images=page_images, audio_syncs=syncs, job_id=ctx.job_id)
    if not result.success:
        raise PackagingError(truncate_error("; ".join(result.errors) or "EPUB packaging failed"))

    ctx.epub_path = target
    structure.metadata["package"] = {
        "identifier": result.metadata.get("identifier"),
        "pages": result.pages_packaged,
        "media_overlays": result.overlays_packaged,
        "size_bytes": result.total_size_bytes,
    }
    ctx.metrics.update({
        "media_overlays": result.overlays_packaged,
        "epub_size_bytes": result.total_size_bytes,
    })
    return structure


# ============================================================================
# STAGE 8: QA REVIEW
# ============================================================================

def document_confidence(structure: DocumentStructure, default: float = 0.8) -> float:
    """Mean of every page OCR confidence and block confidence present."""
    values = []
    for page in structure.pages:
        if page.ocr_confidence is not None:
            values.append(page.ocr_confidence)
        values.extend(b.confidence for b in page.text_blocks if b.confidence is not None)
    if not values:
        return default
    return sum(values) / len(values)


def qa_review_stage(structure: DocumentStructure, ctx: ConversionContext) -> DocumentStructure:
    """Re-open the archive and check its structure and media overlay anchors."""
    structure = structure.copy()
    problems: List[str] = []
    if ctx.epub_path is None or not Path(ctx.epub_path).exists():
        raise PackagingError("EPUB archive missing at QA review")

    problems.extend(verify_container(ctx.epub_path))
    if ctx.settings.qa.verify_sync_anchors:
        problems.extend(verify_sync_anchors(ctx.epub_path))

    ctx.qa_problems = problems
    structure.metadata["qa"] = {"problems": problems}
    ctx.metrics["qa_problems"] = len(problems)
    return structure


# ============================================================================
# REGISTRY
# ============================================================================

Stage = Callable[[DocumentStructure, ConversionContext], DocumentStructure]

STAGES: List[Tuple[ConversionStep, Stage]] = [
    (ConversionStep.CLASSIFICATION, classification_stage),
    (ConversionStep.TEXT_EXTRACTION, text_extraction_stage),
    (ConversionStep.LAYOUT_ANALYSIS, layout_analysis_stage),
    (ConversionStep.SEMANTIC_STRUCTURING, semantic_structuring_stage),
    (ConversionStep.ACCESSIBILITY, accessibility_stage),
    (ConversionStep.CONTENT_CLEANUP, content_cleanup_stage),
    (ConversionStep.SPECIAL_CONTENT, special_content_stage),
    (ConversionStep.EPUB_GENERATION, epub_generation_stage),
    (ConversionStep.QA_REVIEW, qa_review_stage),
]
