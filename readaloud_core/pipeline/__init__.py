"""
Conversion Pipeline
===================

Nine-stage PDF to EPUB conversion with an event-sourced job state.

Components:
- ConversionStep: stage markers and their progress percentages
- ConversionJob / ProgressLog: job state reduced from progress events
- OcrFallbackPolicy: OCR for scanned pages with a failure cut-off
- ConversionContext / STAGES: the stage functions and their inputs
- PipelineOrchestrator: runs one job through every stage
- JobDispatcher: bounded worker pool with cooperative cancellation
"""

from readaloud_core.pipeline.steps import (
    ConversionStep,
    STEP_ORDER,
    STEP_PROGRESS,
)

from readaloud_core.pipeline.events import (
    ConversionJob,
    EventType,
    JobStatus,
    ProgressEvent,
    ProgressLog,
    apply_event,
    reduce_events,
)

from readaloud_core.pipeline.cancellation import CancellationToken

from readaloud_core.pipeline.ocr_policy import (
    OcrFallbackPolicy,
    OcrReport,
)

from readaloud_core.pipeline.stages import (
    ConversionContext,
    STAGES,
    build_table_of_contents,
    document_confidence,
)

from readaloud_core.pipeline.orchestrator import PipelineOrchestrator

from readaloud_core.pipeline.dispatcher import JobDispatcher

__all__ = [
    "ConversionStep",
    "STEP_ORDER",
    "STEP_PROGRESS",
    "ConversionJob",
    "EventType",
    "JobStatus",
    "ProgressEvent",
    "ProgressLog",
    "apply_event",
    "reduce_events",
    "CancellationToken",
    "OcrFallbackPolicy",
    "OcrReport",
    "ConversionContext",
    "STAGES",
    "build_table_of_contents",
    "document_confidence",
    "PipelineOrchestrator",
    "JobDispatcher",
]
