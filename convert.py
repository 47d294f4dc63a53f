#!/usr/bin/env python3
"""
Convert a PDF into a read-aloud EPUB 3 from the command line.

Runs one job synchronously through the nine pipeline stages. Job state,
progress events and per-stage snapshots are kept in <out>/.jobs so a run can
be inspected afterwards.

Pipeline:
  1. Classification        - page count, metadata, scanned pages
  2. Text extraction       - block reconstruction, OCR fallback
  3. Layout analysis       - spreads, reading order, block types, ids
  4. Semantic structuring  - heading levels, segmentation, TOC
  5. Accessibility         - read-aloud exclusions, alt text, metadata
  6. Content cleanup       - sanitizing, optional AI correction
  7. Special content       - captions, footnotes, equations, tables
  8. EPUB generation       - pages, media overlays, package
  9. QA review             - archive verification, confidence
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
import uuid
from pathlib import Path

from config import AppConfig, configure_logging, get_config
from readaloud_core.config.settings import apply_language, load_config as load_pipeline_settings
from readaloud_core.pipeline import (
    ConversionContext,
    ConversionJob,
    EventType,
    JobStatus,
    PipelineOrchestrator,
    ProgressLog,
)
from readaloud_core.sync.timings import parse_timings
from storage import LocalJobStore

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(
        description="Convert a PDF into an accessible fixed-layout EPUB 3 with read-aloud overlays",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  Basic usage (150 DPI page images, OCR for scanned pages):
    python convert.py mybook.pdf

  With narration audio and word timings:
    python convert.py mybook.pdf --audio narration.mp3 --timings timings.json

  German book, AI correction enabled:
    python convert.py mybook.pdf --language deu --ai

  Custom pipeline thresholds:
    python convert.py mybook.pdf --config pipeline.yaml

Environment Variables:
  ANTHROPIC_API_KEY - Required for --ai
        """
    )
    ap.add_argument("pdf", help="Path to input PDF")
    ap.add_argument("--out", default="output", help="Output directory (default: ./output)")

    audio_group = ap.add_argument_group("Read-Aloud Audio")
    audio_group.add_argument("--audio", default=None, help="Narration audio file")
    audio_group.add_argument(
        "--timings",
        default=None,
        help="Timings JSON: a list of audio syncs and/or word timings per page",
    )

    conv_group = ap.add_argument_group("Conversion Options")
    conv_group.add_argument("--dpi", type=int, default=None, help="DPI for page images (default: 150)")
    conv_group.add_argument(
        "--language",
        default=None,
        help="OCR language (Tesseract code, default: eng) or BCP 47 tag",
    )
    conv_group.add_argument("--no-ocr", action="store_true", help="Do not OCR scanned pages")
    conv_group.add_argument("--ai", action="store_true", help="Enable AI text correction and classification")
    conv_group.add_argument("--title", default=None, help="Publication title (default: PDF metadata)")
    conv_group.add_argument("--config", default=None, help="Pipeline settings file (.json/.yaml)")

    ap.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    return ap


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)
    configure_logging("DEBUG" if args.verbose else "INFO")

    pdf_path = Path(args.pdf).expanduser().resolve()
    if not pdf_path.exists():
        print(f"ERROR: PDF not found: {pdf_path}", file=sys.stderr)
        return 2
    if pdf_path.suffix.lower() != ".pdf":
        print(f"ERROR: Input is not a PDF: {pdf_path}", file=sys.stderr)
        return 2

    out_dir = Path(args.out).expanduser().resolve()
    out_dir.mkdir(parents=True, exist_ok=True)

    config: AppConfig = get_config()
    if args.config:
        config.pipeline = load_pipeline_settings(Path(args.config))
    settings = config.pipeline_settings()
    if args.dpi:
        settings.packaging.dpi = args.dpi
    if args.language:
        apply_language(settings, args.language)
    if args.no_ocr:
        settings.ocr.enabled = False

    audio_path = None
    if args.audio:
        audio_path = Path(args.audio).expanduser().resolve()
        if not audio_path.exists():
            print(f"ERROR: Audio not found: {audio_path}", file=sys.stderr)
            return 2

    syncs, word_timings = [], {}
    if args.timings:
        try:
            with open(args.timings, "r", encoding="utf-8") as f:
                syncs, word_timings = parse_timings(json.load(f), str(audio_path) if audio_path else None)
        except (OSError, ValueError) as e:
            print(f"ERROR: Cannot read timings: {e}", file=sys.stderr)
            return 2

    ocr_engine = None
    if settings.ocr.enabled:
        from readaloud_core.adapters.tesseract_ocr import TesseractOcrEngine
        ocr_engine = TesseractOcrEngine(timeout=config.ocr.timeout)

    text_service = None
    if args.ai:
        from api import default_text_service
        settings.cleanup.use_ai_correction = True
        settings.classification.use_external_classifier = True
        text_service = default_text_service(config)

    store = LocalJobStore(out_dir / ".jobs")
    store.connect()

    job = ConversionJob(id=uuid.uuid4().hex, filename=pdf_path.name)
    log = ProgressLog(job, store)
    job = log.record(EventType.CREATED)

    ctx = ConversionContext(
        job_id=job.id,
        source_path=pdf_path,
        output_dir=out_dir,
        settings=settings,
        ocr_engine=ocr_engine,
        text_service=text_service,
        audio_syncs=syncs,
        word_timings=word_timings,
        audio_path=str(audio_path) if audio_path else None,
        title=args.title,
        created_at=job.created_at,
    )
    job = PipelineOrchestrator(store).run(ctx, log)

    print("\n" + "=" * 80)
    print(f"JOB {job.id}: {job.status.value.upper()}")
    print("=" * 80)
    if job.status == JobStatus.COMPLETED:
        print(f"  EPUB:       {job.epub_path}")
        print(f"  Confidence: {job.confidence_score:.2f}")
        print(f"  Review:     {'required' if job.requires_review else 'not required'}")
        for key in ("pages", "scanned_pages", "ocr_succeeded", "media_overlays", "qa_problems"):
            if key in job.metrics:
                print(f"  {key.replace('_', ' ').capitalize() + ':':<12}{job.metrics[key]}")
    else:
        print(f"  Error: {job.error_message}")
    print(f"  Job record: {store.base_path / job.id}")
    print("=" * 80)

    return 0 if job.status == JobStatus.COMPLETED else 1


if __name__ == "__main__":
    raise SystemExit(main())
