"""
Conversion Pipeline Tests: orchestrator, stages, dispatcher

Runs the nine stages end to end over in-memory documents.

Run with: pytest tests/test_pipeline.py -v
"""

import sys
import threading
import zipfile
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).parent.parent))

from conftest import FakeDecoder, FakeOcrEngine, horses_pages, ocr_failure, run
from readaloud_core.adapters.base import OcrResult
from readaloud_core.models import AudioSync, BlockType, DocumentStructure
from readaloud_core.pipeline.dispatcher import JobDispatcher
from readaloud_core.pipeline.events import ConversionJob, EventType, JobStatus, ProgressLog
from readaloud_core.pipeline.orchestrator import PipelineOrchestrator
from readaloud_core.pipeline.stages import ConversionContext, classification_stage, document_confidence
from readaloud_core.pipeline.steps import ConversionStep


def make_context(tmp_path, decoder=None, job_id="job-1", **kwargs):
    decoder = decoder or FakeDecoder(horses_pages(), metadata={"title": "All About Horses"})
    return ConversionContext(
        job_id=job_id,
        source_path=tmp_path / "horses.pdf",
        output_dir=tmp_path / "output",
        decoder_factory=lambda path: decoder,
        **kwargs,
    )


def start_log(job_store, job_id="job-1"):
    log = ProgressLog(ConversionJob(id=job_id, filename="horses.pdf"), job_store)
    log.record(EventType.CREATED)
    return log


def passthrough(structure, ctx):
    return structure.copy()


def all_about_horses_pages():
    """
    Page 1: an all-caps heading, a paragraph and a small-print footnote.
    Page 2: three bullet items.
    """
    page_one = [
        run("ALL ABOUT HORSES", 72, 700, size=24),
        run("Horses are large animals that live on farms and in the wild.", 72, 640, width=400),
        run("They eat grass and hay every day.", 72, 560, width=220),
        run("1 Source: The Horse Almanac, 2001.", 72, 90, size=8),
    ]
    page_two = [
        run("• Horses run fast", 72, 700),
        run("• Horses eat hay", 72, 665),
        run("• Horses sleep standing", 72, 630),
    ]
    return [page_one, page_two]


class TestPipelineOrchestrator:
    """Tests for PipelineOrchestrator."""

    def test_horses_book_end_to_end(self, tmp_path, job_store):
        decoder = FakeDecoder(horses_pages(), metadata={"title": "All About Horses"})
        ctx = make_context(tmp_path, decoder)
        job = PipelineOrchestrator(job_store).run(ctx, start_log(job_store))

        assert job.status == JobStatus.COMPLETED, job.error_message
        assert job.progress_percent == 100.0
        assert Path(job.epub_path).exists()
        assert job.confidence_score == 0.8
        assert not job.requires_review
        assert decoder.closed

        structure = job_store.load_snapshot("job-1")
        page_one = structure.pages[0]
        ordered = page_one.ordered_blocks()
        assert [b.block_type for b in ordered] == [
            BlockType.HEADING, BlockType.LIST_ITEM, BlockType.LIST_ITEM, BlockType.LIST_ITEM,
        ]
        assert ordered[0].heading_level == 1
        assert [b.id for b in ordered] == ["p1-heading-1", "p1-list_item-2", "p1-list_item-3", "p1-list_item-4"]

    def test_footer_excluded_from_reading_order(self, tmp_path, job_store):
        job = PipelineOrchestrator(job_store).run(make_context(tmp_path), start_log(job_store))
        page_two = job_store.load_snapshot("job-1").pages[1]
        footer = [b for b in page_two.text_blocks if b.block_type == BlockType.FOOTER]
        assert len(footer) == 1
        assert footer[0].exclude_from_reading_order
        assert [b.id for b in page_two.ordered_blocks()] == ["p2-paragraph-1"]
        assert job.status == JobStatus.COMPLETED

    def test_all_caps_heading_book(self, tmp_path, job_store):
        """An all-caps heading gets level 1 and page 2 reads as three list items."""
        audio = tmp_path / "narration.mp3"
        audio.write_bytes(b"ID3\x03\x00fake")
        decoder = FakeDecoder(all_about_horses_pages(), metadata={"title": "All About Horses"})
        ctx = make_context(tmp_path, decoder, audio_syncs=[
            AudioSync(1, 0.0, 6.0, str(audio)),
            AudioSync(2, 6.0, 12.0, str(audio)),
        ])
        job = PipelineOrchestrator(job_store).run(ctx, start_log(job_store))
        assert job.status == JobStatus.COMPLETED, job.error_message
        assert job.metrics["qa_problems"] == 0

        layout = job_store.load_snapshot("job-1", ConversionStep.LAYOUT_ANALYSIS)
        assert layout.pages[0].ordered_blocks()[0].block_type == BlockType.HEADING
        assert layout.pages[0].ordered_blocks()[0].heading_level is None

        structure = job_store.load_snapshot("job-1")
        page_one, page_two = structure.pages
        heading, paragraph, second, footnote = page_one.ordered_blocks()
        assert (heading.id, heading.heading_level) == ("p1-heading-1", 1)
        assert paragraph.block_type == BlockType.PARAGRAPH
        assert footnote.block_type == BlockType.FOOTNOTE
        assert footnote.id == "p1-paragraph-4"
        assert [b.block_type for b in page_two.ordered_blocks()] == [BlockType.LIST_ITEM] * 3
        assert [b.id for b in page_two.ordered_blocks()] == [
            "p2-list_item-1", "p2-list_item-2", "p2-list_item-3",
        ]
        assert structure.table_of_contents[0]["title"] == "ALL ABOUT HORSES"

        with zipfile.ZipFile(job.epub_path) as zf:
            page_one_xhtml = zf.read("OEBPS/page_1.xhtml").decode("utf-8")
            page_one_smil = zf.read("OEBPS/page_1.smil").decode("utf-8")
            page_two_smil = zf.read("OEBPS/page_2.smil").decode("utf-8")
        assert footnote.id not in page_one_xhtml
        assert footnote.id not in page_one_smil
        assert f"#{paragraph.id}" in page_one_smil
        assert page_two_smil.count("<par ") == 3
        assert "page_2.xhtml#p2-list_item-1_li" in page_two_smil

    def test_event_log(self, tmp_path, job_store):
        PipelineOrchestrator(job_store).run(make_context(tmp_path), start_log(job_store))
        events = job_store.load_events("job-1")
        assert len(events) == 2 + 2 * len(ConversionStep) + 1
        assert [e.sequence for e in events] == list(range(1, len(events) + 1))
        assert events[0].event_type == EventType.CREATED
        assert events[1].event_type == EventType.STARTED
        assert events[-1].event_type == EventType.COMPLETED
        started = [e.step for e in events if e.event_type == EventType.STEP_STARTED]
        assert started == list(ConversionStep)

    def test_snapshot_per_stage(self, tmp_path, job_store):
        PipelineOrchestrator(job_store).run(make_context(tmp_path), start_log(job_store))
        for step in ConversionStep:
            assert job_store.load_snapshot("job-1", step) is not None
        classified = job_store.load_snapshot("job-1", ConversionStep.CLASSIFICATION)
        assert classified.metadata["title"] == "All About Horses"
        assert classified.pages[0].text_blocks == []

    def test_page_level_audio_produces_overlay(self, tmp_path, job_store):
        audio = tmp_path / "narration.mp3"
        audio.write_bytes(b"ID3\x03\x00fake")
        ctx = make_context(tmp_path, audio_syncs=[AudioSync(1, 0.0, 10.0, str(audio))])
        job = PipelineOrchestrator(job_store).run(ctx, start_log(job_store))

        assert job.status == JobStatus.COMPLETED, job.error_message
        assert job.metrics["qa_problems"] == 0
        assert job.metrics["media_overlays"] == 1
        with zipfile.ZipFile(job.epub_path) as zf:
            names = zf.namelist()
        assert "OEBPS/page_1.smil" in names
        assert "OEBPS/page_2.smil" not in names

    def test_low_ocr_confidence_requires_review(self, tmp_path, job_store):
        decoder = FakeDecoder([[]])
        engine = FakeOcrEngine(default=OcrResult("Horses graze in the field.", 0.5))
        ctx = make_context(tmp_path, decoder, ocr_engine=engine)
        job = PipelineOrchestrator(job_store).run(ctx, start_log(job_store))

        assert job.status == JobStatus.COMPLETED, job.error_message
        assert job.confidence_score == 0.5
        assert job.requires_review
        assert job.metrics["ocr_succeeded"] == 1

    def test_ocr_abandoned_job_still_completes(self, tmp_path, job_store):
        decoder = FakeDecoder([[]] * 5)
        engine = FakeOcrEngine(default=ocr_failure())
        ctx = make_context(tmp_path, decoder, ocr_engine=engine)
        job = PipelineOrchestrator(job_store).run(ctx, start_log(job_store))

        assert job.status == JobStatus.COMPLETED, job.error_message
        assert engine.calls == 3
        assert job.metrics["ocr_failed"] == 3
        assert job.metrics["ocr_skipped"] == 2
        assert job.metrics["ocr_abandoned"] is True

    def test_decode_failure_is_truncated(self, tmp_path, job_store):
        def broken(path):
            raise Exception("x" * 2000)

        ctx = ConversionContext(job_id="job-1", source_path=tmp_path / "bad.pdf",
                                output_dir=tmp_path / "output", decoder_factory=broken)
        job = PipelineOrchestrator(job_store).run(ctx, start_log(job_store))

        assert job.status == JobStatus.FAILED
        assert len(job.error_message) == 500
        assert job.epub_path is None
        assert job_store.load("job-1").status == JobStatus.FAILED

    def test_packaging_failure_leaves_no_output(self, tmp_path, job_store):
        flac = tmp_path / "narration.flac"
        flac.write_bytes(b"fLaC")
        ctx = make_context(tmp_path, audio_syncs=[AudioSync(1, 0.0, 10.0, str(flac))])
        job = PipelineOrchestrator(job_store).run(ctx, start_log(job_store))

        assert job.status == JobStatus.FAILED
        assert "Unsupported audio format" in job.error_message
        assert not ctx.epub_target.exists()

    def test_cancelled_before_start(self, tmp_path, job_store):
        ctx = make_context(tmp_path)
        ctx.cancellation.cancel("user")
        job = PipelineOrchestrator(job_store).run(ctx, start_log(job_store))
        assert job.status == JobStatus.CANCELLED
        events = job_store.load_events("job-1")
        assert [e.event_type for e in events] == [EventType.CREATED, EventType.CANCELLED]

    def test_cancelled_between_stages(self, tmp_path, job_store):
        calls = []

        def first(structure, ctx):
            calls.append("first")
            ctx.cancellation.cancel("user")
            return structure.copy()

        def second(structure, ctx):
            calls.append("second")
            return structure.copy()

        orchestrator = PipelineOrchestrator(job_store, stages=[
            (ConversionStep.CLASSIFICATION, first),
            (ConversionStep.TEXT_EXTRACTION, second),
        ])
        job = orchestrator.run(make_context(tmp_path), start_log(job_store))

        assert job.status == JobStatus.CANCELLED
        assert calls == ["first"]
        assert job.current_step == ConversionStep.CLASSIFICATION

    def test_unexpected_error_fails_job(self, tmp_path, job_store):
        def broken(structure, ctx):
            raise KeyError("missing")

        orchestrator = PipelineOrchestrator(job_store, stages=[(ConversionStep.CLASSIFICATION, broken)])
        job = orchestrator.run(make_context(tmp_path), start_log(job_store))
        assert job.status == JobStatus.FAILED
        assert job.error_message.startswith("KeyError")


class TestStages:
    """Tests for individual stages."""

    def test_stage_leaves_input_unchanged(self, tmp_path):
        ctx = make_context(tmp_path)
        original = DocumentStructure(metadata={"note": "input"})
        before = original.to_dict()
        result = classification_stage(original, ctx)
        assert original.to_dict() == before
        assert result is not original
        assert len(result.pages) == 2

    def test_stage_is_repeatable(self, tmp_path):
        ctx = make_context(tmp_path)
        first = classification_stage(DocumentStructure(), ctx)
        second = classification_stage(DocumentStructure(), ctx)
        assert first.to_dict() == second.to_dict()

    def test_scanned_page_flagged(self, tmp_path):
        ctx = make_context(tmp_path, FakeDecoder([[], horses_pages()[0]]))
        structure = classification_stage(DocumentStructure(), ctx)
        assert [p.is_scanned for p in structure.pages] == [True, False]
        assert ctx.metrics["scanned_pages"] == 1

    def test_title_override(self, tmp_path):
        ctx = make_context(tmp_path, title="Horse Facts")
        structure = classification_stage(DocumentStructure(), ctx)
        assert structure.metadata["title"] == "Horse Facts"

    def test_confidence_default_without_values(self):
        assert document_confidence(DocumentStructure(), 0.8) == 0.8


class TestJobDispatcher:
    """Tests for JobDispatcher."""

    def test_submit_runs_job(self, tmp_path, job_store):
        dispatcher = JobDispatcher(job_store, max_workers=1)
        try:
            future = dispatcher.submit(make_context(tmp_path), start_log(job_store))
            job = future.result(timeout=30)
            assert job.status == JobStatus.COMPLETED, job.error_message
            assert not dispatcher.is_active("job-1")
        finally:
            dispatcher.shutdown()

    def test_cancel_unknown_job(self, job_store):
        dispatcher = JobDispatcher(job_store)
        try:
            assert dispatcher.cancel("nope") is False
        finally:
            dispatcher.shutdown()

    def test_cancel_pending_job(self, tmp_path, job_store):
        started = threading.Event()
        release = threading.Event()

        def blocking(structure, ctx):
            started.set()
            release.wait(timeout=30)
            return structure.copy()

        orchestrator = PipelineOrchestrator(job_store, stages=[(ConversionStep.CLASSIFICATION, blocking)])
        dispatcher = JobDispatcher(job_store, max_workers=1, orchestrator=orchestrator)
        try:
            running = dispatcher.submit(make_context(tmp_path, job_id="first"), start_log(job_store, "first"))
            assert started.wait(timeout=30)
            pending_log = start_log(job_store, "second")
            dispatcher.submit(make_context(tmp_path, job_id="second"), pending_log)

            assert dispatcher.cancel("second")
            assert pending_log.job.status == JobStatus.CANCELLED
            assert job_store.load("second").status == JobStatus.CANCELLED
            assert not dispatcher.is_active("second")
        finally:
            release.set()
            dispatcher.shutdown()
        assert running.result(timeout=30).status == JobStatus.COMPLETED

    def test_cancel_running_job_stops_at_boundary(self, tmp_path, job_store):
        started = threading.Event()
        release = threading.Event()
        calls = []

        def blocking(structure, ctx):
            started.set()
            release.wait(timeout=30)
            calls.append("blocking")
            return structure.copy()

        def after(structure, ctx):
            calls.append("after")
            return structure.copy()

        orchestrator = PipelineOrchestrator(job_store, stages=[
            (ConversionStep.CLASSIFICATION, blocking),
            (ConversionStep.TEXT_EXTRACTION, after),
        ])
        dispatcher = JobDispatcher(job_store, max_workers=1, orchestrator=orchestrator)
        try:
            future = dispatcher.submit(make_context(tmp_path), start_log(job_store))
            assert started.wait(timeout=30)
            assert dispatcher.cancel("job-1")
            release.set()
            job = future.result(timeout=30)
        finally:
            release.set()
            dispatcher.shutdown()

        assert job.status == JobStatus.CANCELLED
        assert calls == ["blocking"]
