"""
ReadAloud Core Library
======================

A library for turning PDF books into accessible fixed-layout EPUB 3
publications with read-aloud media overlays:

- Text block reconstruction from positioned PDF text runs
- Reading-order resolution, including two-page spreads
- Block classification (headings, lists, margins) with an optional AI classifier
- OCR fallback for scanned pages
- EPUB 3 packaging with SMIL media overlays
- A nine-stage conversion pipeline with event-sourced job progress

Architecture
------------

    readaloud_core/
    ├── models.py      - Document structure types
    ├── errors.py      - Conversion error hierarchy
    ├── results.py     - Ok / Soft / Fatal outcomes for guarded calls
    ├── text_layer.py  - Block ids, anchors and readable-block rules
    ├── config/        - Pipeline settings
    ├── adapters/      - PDF decoder, OCR and AI text services, call guards
    ├── layout/        - Geometry clustering and reading order
    ├── classify/      - Heuristic and external block classification
    ├── text/          - Sanitizing, segmentation, TOC/index page filters
    ├── sync/          - Word timings and SMIL media overlays
    ├── packaging/     - EPUB 3 packager and archive verification
    └── pipeline/      - Stages, orchestrator, job events and dispatcher

Usage
-----

    from readaloud_core import ConversionContext, PipelineOrchestrator
    from readaloud_core.pipeline import ConversionJob, ProgressLog

    job = ConversionJob(id="job-1", filename="book.pdf")
    context = ConversionContext(job_id=job.id, source_path="book.pdf", output_dir="output")
    job = PipelineOrchestrator().run(context, ProgressLog(job))
    print(job.status, job.epub_path)
"""

__version__ = "1.0.0"
__author__ = "RittDocConverter Team"

from readaloud_core.models import (
    AudioSync,
    BlockType,
    BoundingBox,
    DocumentStructure,
    ImageBlock,
    PageStructure,
    PositionedRun,
    TextBlock,
)

from readaloud_core.errors import (
    ClassificationError,
    ConversionError,
    DecodeError,
    ExtractionError,
    OcrError,
    PackagingError,
    PersistenceError,
)

from readaloud_core.results import (
    Fatal,
    Ok,
    Soft,
)

from readaloud_core.config.settings import (
    PipelineSettings,
    get_default_config,
)

from readaloud_core.packaging import (
    BasePackager,
    EpubPackager,
    PackageResult,
)

from readaloud_core.pipeline import (
    ConversionContext,
    ConversionJob,
    ConversionStep,
    JobDispatcher,
    JobStatus,
    PipelineOrchestrator,
    ProgressLog,
)

__all__ = [
    # Version
    "__version__",
    # Models
    "AudioSync",
    "BlockType",
    "BoundingBox",
    "DocumentStructure",
    "ImageBlock",
    "PageStructure",
    "PositionedRun",
    "TextBlock",
    # Errors
    "ClassificationError",
    "ConversionError",
    "DecodeError",
    "ExtractionError",
    "OcrError",
    "PackagingError",
    "PersistenceError",
    # Results
    "Fatal",
    "Ok",
    "Soft",
    # Config
    "PipelineSettings",
    "get_default_config",
    # Packaging
    "BasePackager",
    "EpubPackager",
    "PackageResult",
    # Pipeline
    "ConversionContext",
    "ConversionJob",
    "ConversionStep",
    "JobDispatcher",
    "JobStatus",
    "PipelineOrchestrator",
    "ProgressLog",
]
