#!/usr/bin/env python3
"""
PDF to EPUB Read-Aloud Conversion REST API

This module provides a FastAPI-based REST API for running the conversion
pipeline from external user interfaces. It supports:

- Uploading PDFs (with optional narration audio and timings) for conversion
- Tracking conversion progress stage by stage
- Cancelling pending or running jobs
- Inspecting the progress event log and per-stage structure snapshots
- Downloading the finished EPUB

API Flow:
1. POST /api/v1/convert - Upload PDF and start conversion
2. GET /api/v1/jobs/{job_id} - Poll until status is "completed"
   - progress_percent and current_step report the running stage
3. GET /api/v1/jobs/{job_id}/epub - Download the EPUB
   - requires_review is set when confidence is low or QA found problems

Usage:
    # Start the API server
    uvicorn api:app --host 0.0.0.0 --port 8000

    # Or programmatically
    from api import create_app
    app = create_app()
"""

from __future__ import annotations

import json
import logging
import shutil
import threading
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

import requests
from fastapi import FastAPI, File, Form, HTTPException, UploadFile
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import FileResponse
from pydantic import BaseModel, Field

from config import AppConfig, get_config
from readaloud_core import __version__
from readaloud_core.adapters.base import DecoderFactory, OcrEngine, TextService
from readaloud_core.adapters.circuit_breaker import CircuitBreaker
from readaloud_core.adapters.guard import ServiceGuard
from readaloud_core.adapters.rate_limit import get_rate_limiter
from readaloud_core.config.settings import apply_language
from readaloud_core.errors import PersistenceError
from readaloud_core.pipeline import (
    ConversionContext,
    ConversionJob,
    ConversionStep,
    EventType,
    JobDispatcher,
    JobStatus,
    ProgressEvent,
    ProgressLog,
)
from readaloud_core.sync.timings import parse_timings
from storage import JobStore, LocalJobStore, MongoJobStore

logger = logging.getLogger(__name__)

INTERRUPTED_MESSAGE = "Job interrupted by server restart"

AUDIO_EXTENSIONS = (".mp3", ".m4a", ".mp4", ".ogg", ".wav")


# ============================================================================
# MODELS
# ============================================================================

class ConversionOptions(BaseModel):
    """Options for a conversion job."""
    dpi: int = Field(default=150, ge=72, le=600, description="DPI for page images")
    language: str = Field(default="eng", description="OCR language (Tesseract code) or BCP 47 tag")
    enable_ocr: bool = Field(default=True, description="OCR scanned pages")
    enable_ai: bool = Field(default=False, description="AI text correction and block classification")
    title: Optional[str] = Field(default=None, description="Publication title (defaults to PDF metadata)")


class JobInfo(BaseModel):
    """Information about a conversion job."""
    job_id: str
    status: JobStatus
    current_step: Optional[str] = None
    progress: float = Field(ge=0, le=100)
    filename: str
    created_at: str
    updated_at: str
    completed_at: Optional[str] = None
    error: Optional[str] = None
    epub_available: bool = False
    confidence_score: Optional[float] = None
    requires_review: bool = False
    metrics: Dict[str, Any] = Field(default_factory=dict)


class EventInfo(BaseModel):
    """One progress event."""
    sequence: int
    event_type: str
    timestamp: str
    step: Optional[str] = None
    data: Dict[str, Any] = Field(default_factory=dict)


def job_to_info(job: ConversionJob) -> JobInfo:
    return JobInfo(
        job_id=job.id,
        status=job.status,
        current_step=job.current_step.value if job.current_step else None,
        progress=job.progress_percent,
        filename=job.filename,
        created_at=job.created_at.isoformat(),
        updated_at=job.updated_at.isoformat(),
        completed_at=job.completed_at.isoformat() if job.completed_at else None,
        error=job.error_message,
        epub_available=job.status == JobStatus.COMPLETED and bool(job.epub_path),
        confidence_score=job.confidence_score,
        requires_review=job.requires_review,
        metrics=job.metrics,
    )


def event_to_info(event: ProgressEvent) -> EventInfo:
    return EventInfo(
        sequence=event.sequence,
        event_type=event.event_type.value,
        timestamp=event.timestamp.isoformat(),
        step=event.step.value if event.step else None,
        data=event.data,
    )


# ============================================================================
# WEBHOOK
# ============================================================================

def send_completion_webhook(job: ConversionJob, config: AppConfig):
    """
    Notify the configured URL that a job reached a terminal state.

    Non-critical: failures are logged and otherwise ignored.
    """
    url = config.webhook.url
    if not url:
        return

    payload = {
        "jobId": job.id,
        "status": job.status.value,
        "filename": job.filename,
        "confidenceScore": job.confidence_score,
        "requiresReview": job.requires_review,
        "links": {
            "job": f"/api/v1/jobs/{job.id}",
            "epub": f"/api/v1/jobs/{job.id}/epub",
        },
    }
    if job.error_message:
        payload["error"] = job.error_message

    try:
        response = requests.post(url, json=payload, timeout=config.webhook.timeout)
        response.raise_for_status()
        logger.info(f"Webhook sent for job {job.id}: {job.status.value}")
    except requests.RequestException as e:
        logger.warning(f"Webhook for job {job.id} failed: {e}")


# ============================================================================
# JOB MANAGER
# ============================================================================

def build_job_store(config: AppConfig) -> JobStore:
    """Job store selected by configuration. Falls back to local files."""
    if config.storage.backend == "mongodb":
        store = MongoJobStore(config.storage.mongodb_uri, config.storage.mongodb_database)
        if store.connect():
            return store
        logger.warning("MongoDB job store unavailable - falling back to local files")
    store = LocalJobStore(config.storage.base_dir)
    store.connect()
    return store


class JobManager:
    """
    Creates, tracks and cancels conversion jobs.

    Running jobs are served from their in-memory progress log; finished
    ones from the job store.
    """

    def __init__(self,
                 config: Optional[AppConfig] = None,
                 store: Optional[JobStore] = None,
                 decoder_factory: Optional[DecoderFactory] = None,
                 ocr_engine: Optional[OcrEngine] = None,
                 text_service_factory: Optional[Callable[[AppConfig], Optional[TextService]]] = None):
        self.config = config or get_config()
        self.store = store or build_job_store(self.config)
        self.decoder_factory = decoder_factory
        self._ocr_engine = ocr_engine
        self.text_service_factory = text_service_factory or default_text_service
        self.dispatcher = JobDispatcher(self.store, max_workers=self.config.api.max_concurrent_jobs)
        self._logs: Dict[str, ProgressLog] = {}
        self._lock = threading.Lock()

        limits = self.config.rate_limits
        self.ocr_guard = ServiceGuard(
            "ocr",
            get_rate_limiter("ocr", limits.ocr_per_minute, limits.ocr_per_hour, limits.ocr_min_interval),
            CircuitBreaker("ocr", limits.failure_threshold, limits.success_threshold, limits.reset_timeout),
        )
        self.ai_guard = ServiceGuard(
            "claude",
            get_rate_limiter("claude", limits.ai_per_minute, limits.ai_per_hour, limits.ai_min_interval),
            CircuitBreaker("claude", limits.failure_threshold, limits.success_threshold, limits.reset_timeout),
        )

        self._recover_interrupted()

    @property
    def ocr_engine(self) -> OcrEngine:
        if self._ocr_engine is None:
            from readaloud_core.adapters.tesseract_ocr import TesseractOcrEngine
            self._ocr_engine = TesseractOcrEngine(timeout=self.config.ocr.timeout)
        return self._ocr_engine

    def _recover_interrupted(self):
        """Jobs left running by a previous process can never finish: fail them."""
        try:
            jobs = self.store.list_jobs(limit=10000)
        except PersistenceError as e:
            logger.warning(f"Could not scan jobs for recovery: {e}")
            return
        for job in jobs:
            if job.status.is_terminal:
                continue
            try:
                events = self.store.load_events(job.id)
            except PersistenceError:
                events = []
            log = ProgressLog(job, self.store, events=events)
            log.record(EventType.FAILED, error_message=INTERRUPTED_MESSAGE)
            logger.info(f"Marked interrupted job {job.id} as failed")

    def create_job(self,
                   filename: str,
                   pdf_path: Path,
                   options: ConversionOptions,
                   audio_path: Optional[Path] = None,
                   timings: Optional[Any] = None,
                   job_id: Optional[str] = None) -> ConversionJob:
        """
        Register a job and queue it.

        Raises:
            ValueError: If the timings document cannot be used
        """
        job_id = job_id or uuid.uuid4().hex
        audio = str(audio_path) if audio_path else None
        syncs, word_timings = parse_timings(timings, audio) if timings is not None else ([], {})
        if word_timings and not audio:
            raise ValueError("Word timings need an audio file")

        settings = self.config.pipeline_settings()
        settings.packaging.dpi = options.dpi
        settings.ocr.enabled = options.enable_ocr
        apply_language(settings, options.language)

        text_service = None
        if options.enable_ai:
            settings.cleanup.use_ai_correction = True
            settings.classification.use_external_classifier = True
            text_service = self.text_service_factory(self.config)

        job = ConversionJob(id=job_id, filename=filename)
        log = ProgressLog(job, self.store, listeners=[self._on_event])
        job = log.record(EventType.CREATED, metrics={"options": options.model_dump()})

        ctx = ConversionContext(
            job_id=job_id,
            source_path=pdf_path,
            output_dir=self.config.api.output_dir,
            settings=settings,
            decoder_factory=self.decoder_factory,
            ocr_engine=self.ocr_engine if options.enable_ocr else None,
            text_service=text_service,
            ocr_guard=self.ocr_guard,
            ai_guard=self.ai_guard if text_service else None,
            audio_syncs=syncs,
            word_timings=word_timings,
            audio_path=audio,
            title=options.title,
            created_at=job.created_at,
        )

        with self._lock:
            self._logs[job_id] = log
        self.dispatcher.submit(ctx, log)
        logger.info(f"Created job {job_id} for {filename}")
        return job

    def _on_event(self, job: ConversionJob, event: ProgressEvent):
        if not job.status.is_terminal:
            return
        with self._lock:
            self._logs.pop(job.id, None)
        send_completion_webhook(job, self.config)

    def get_job(self, job_id: str) -> Optional[ConversionJob]:
        with self._lock:
            log = self._logs.get(job_id)
        if log is not None:
            return log.job
        return self.store.load(job_id)

    def list_jobs(self, status: Optional[JobStatus] = None, limit: int = 50) -> List[ConversionJob]:
        jobs = {job.id: job for job in self.store.list_jobs(status=status, limit=limit)}
        with self._lock:
            live = [log.job for log in self._logs.values()]
        for job in live:
            if status is None or job.status == status:
                jobs[job.id] = job
        ordered = sorted(jobs.values(), key=lambda j: j.created_at, reverse=True)
        return ordered[:limit]

    def get_events(self, job_id: str) -> List[ProgressEvent]:
        with self._lock:
            log = self._logs.get(job_id)
        if log is not None:
            return log.events
        return self.store.load_events(job_id)

    def cancel_job(self, job_id: str) -> bool:
        return self.dispatcher.cancel(job_id)

    def shutdown(self, wait: bool = False):
        self.dispatcher.shutdown(wait=wait)


def default_text_service(config: AppConfig) -> Optional[TextService]:
    """Claude text service, or None when it cannot be created (e.g. no API key)."""
    from readaloud_core.adapters.claude_text import ClaudeTextConfig, ClaudeTextService
    try:
        return ClaudeTextService(ClaudeTextConfig(
            model=config.ai.model,
            temperature=config.ai.temperature,
            max_tokens=config.ai.max_tokens,
            timeout=config.ai.timeout,
            max_retries=config.ai.max_retries,
        ))
    except Exception as e:
        logger.warning(f"AI text service unavailable, continuing without it: {e}")
        return None


# ============================================================================
# APPLICATION
# ============================================================================

def create_app(config: Optional[AppConfig] = None, job_manager: Optional[JobManager] = None) -> FastAPI:
    """Create and configure the FastAPI application."""
    config = config or get_config()
    job_manager = job_manager or JobManager(config)

    app = FastAPI(
        title="PDF to EPUB Read-Aloud Conversion API",
        description="""
REST API for converting PDF books into accessible fixed-layout EPUB 3 with
read-aloud media overlays.

## Workflow

1. **Upload & Convert**: `POST /api/v1/convert` - Upload PDF (and optional audio/timings), returns job_id
2. **Poll Status**: `GET /api/v1/jobs/{job_id}` - Wait for `completed`
3. **Download**: `GET /api/v1/jobs/{job_id}/epub`

Jobs flagged `requires_review` converted successfully but have low
confidence or QA findings.
        """,
        version=__version__,
        docs_url="/docs",
        redoc_url="/redoc",
    )
    app.state.job_manager = job_manager

    # CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.api.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.on_event("startup")
    async def startup_event():
        config.api.upload_dir.mkdir(parents=True, exist_ok=True)
        config.api.output_dir.mkdir(parents=True, exist_ok=True)

    @app.on_event("shutdown")
    async def shutdown_event():
        job_manager.shutdown(wait=False)

    def require_job(job_id: str) -> ConversionJob:
        try:
            job = job_manager.get_job(job_id)
        except PersistenceError as e:
            logger.error(f"Job store read failed: {e}", exc_info=True)
            raise HTTPException(status_code=503, detail="Job store unavailable")
        if not job:
            raise HTTPException(status_code=404, detail="Job not found")
        return job

    # ========================================================================
    # CONVERSION ENDPOINTS
    # ========================================================================

    @app.post("/api/v1/convert", response_model=JobInfo, tags=["Conversion"])
    async def start_conversion(
        file: UploadFile = File(..., description="PDF file to convert"),
        audio: Optional[UploadFile] = File(default=None, description="Narration audio"),
        timings: Optional[UploadFile] = File(default=None, description="Timings JSON"),
        dpi: int = Form(default=150),
        language: str = Form(default="eng"),
        enable_ocr: bool = Form(default=True),
        enable_ai: bool = Form(default=False),
        title: Optional[str] = Form(default=None),
    ):
        """
        Upload a PDF file and start conversion.

        The conversion runs in the background. Poll the job status until it
        reaches `completed`, `failed` or `cancelled`.
        """
        if not file.filename or not file.filename.lower().endswith(".pdf"):
            raise HTTPException(status_code=400, detail="File must be a PDF")
        if audio is not None and audio.filename and not audio.filename.lower().endswith(AUDIO_EXTENSIONS):
            raise HTTPException(status_code=400, detail="Unsupported audio format")

        try:
            options = ConversionOptions(
                dpi=dpi, language=language, enable_ocr=enable_ocr, enable_ai=enable_ai, title=title,
            )
        except ValueError as e:
            raise HTTPException(status_code=400, detail=str(e))

        timings_data = None
        if timings is not None and timings.filename:
            try:
                timings_data = json.loads(await timings.read())
            except ValueError:
                raise HTTPException(status_code=400, detail="Timings must be valid JSON")

        job_id = uuid.uuid4().hex
        job_dir = config.api.upload_dir / job_id
        job_dir.mkdir(parents=True, exist_ok=True)

        pdf_path = job_dir / Path(file.filename).name
        pdf_path.write_bytes(await file.read())

        audio_path = None
        if audio is not None and audio.filename:
            audio_path = job_dir / Path(audio.filename).name
            audio_path.write_bytes(await audio.read())

        try:
            job = job_manager.create_job(
                filename=file.filename,
                pdf_path=pdf_path,
                options=options,
                audio_path=audio_path,
                timings=timings_data,
                job_id=job_id,
            )
        except ValueError as e:
            shutil.rmtree(job_dir, ignore_errors=True)
            raise HTTPException(status_code=400, detail=str(e))

        return job_to_info(job)

    @app.get("/api/v1/jobs/{job_id}", response_model=JobInfo, tags=["Conversion"])
    async def get_job_status(job_id: str):
        """
        Get the status of a conversion job.

        `current_step` and `progress` report the stage most recently started.
        """
        return job_to_info(require_job(job_id))

    @app.get("/api/v1/jobs", response_model=List[JobInfo], tags=["Conversion"])
    async def list_jobs(
        status: Optional[str] = None,
        limit: int = 50,
    ):
        """List conversion jobs, newest first."""
        status_filter = None
        if status:
            try:
                status_filter = JobStatus(status)
            except ValueError:
                raise HTTPException(status_code=400, detail=f"Invalid status: {status}")

        try:
            jobs = job_manager.list_jobs(status=status_filter, limit=limit)
        except PersistenceError as e:
            logger.error(f"Job store read failed: {e}", exc_info=True)
            raise HTTPException(status_code=503, detail="Job store unavailable")
        return [job_to_info(j) for j in jobs]

    @app.delete("/api/v1/jobs/{job_id}", tags=["Conversion"])
    async def cancel_job(job_id: str):
        """Cancel a pending or in-progress job."""
        job = require_job(job_id)
        if job.status.is_terminal:
            raise HTTPException(status_code=400, detail="Job already finished")
        if not job_manager.cancel_job(job_id):
            raise HTTPException(status_code=400, detail="Job is not running")
        return {"message": "Cancellation requested", "job_id": job_id}

    @app.get("/api/v1/jobs/{job_id}/events", response_model=List[EventInfo], tags=["Conversion"])
    async def get_job_events(job_id: str):
        """The job's progress event log, in order."""
        require_job(job_id)
        try:
            events = job_manager.get_events(job_id)
        except PersistenceError as e:
            logger.error(f"Job store read failed: {e}", exc_info=True)
            raise HTTPException(status_code=503, detail="Job store unavailable")
        return [event_to_info(e) for e in events]

    @app.get("/api/v1/jobs/{job_id}/structure", tags=["Conversion"])
    async def get_job_structure(job_id: str, step: Optional[str] = None):
        """Document structure after a named stage, or after the latest one."""
        require_job(job_id)
        stage = None
        if step:
            try:
                stage = ConversionStep(step)
            except ValueError:
                raise HTTPException(status_code=400, detail=f"Invalid step: {step}")
        try:
            structure = job_manager.store.load_snapshot(job_id, stage)
        except PersistenceError as e:
            logger.error(f"Snapshot read failed: {e}", exc_info=True)
            raise HTTPException(status_code=503, detail="Job store unavailable")
        if structure is None:
            raise HTTPException(status_code=404, detail="No structure snapshot available")
        return structure.to_dict()

    @app.get("/api/v1/jobs/{job_id}/epub", tags=["Files"])
    async def download_epub(job_id: str):
        """Download the finished EPUB."""
        job = require_job(job_id)
        if job.status != JobStatus.COMPLETED or not job.epub_path:
            raise HTTPException(status_code=409, detail=f"Job is {job.status.value}, EPUB not available")
        path = Path(job.epub_path)
        if not path.exists():
            raise HTTPException(status_code=404, detail="EPUB file missing")
        return FileResponse(
            path,
            media_type="application/epub+zip",
            filename=f"{Path(job.filename).stem}.epub",
        )

    # ========================================================================
    # SYSTEM ENDPOINTS
    # ========================================================================

    @app.get("/api/v1/health", tags=["System"])
    async def health_check():
        """Health check endpoint."""
        store_connected = job_manager.store.is_connected()
        return {
            "status": "healthy" if store_connected else "degraded",
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "store_backend": type(job_manager.store).__name__,
            "store_status": "connected" if store_connected else "disconnected",
            "ocr_circuit": job_manager.ocr_guard.breaker.state.value,
            "ai_circuit": job_manager.ai_guard.breaker.state.value,
        }

    @app.get("/api/v1/info", tags=["System"])
    async def get_info():
        """Get API configuration and capabilities."""
        return {
            "name": "pdf-to-epub-readaloud",
            "version": __version__,
            "config": {
                "default_dpi": config.rendering.dpi,
                "ocr_language": config.ocr.language,
                "max_concurrent_jobs": config.api.max_concurrent_jobs,
                "ai_model": config.ai.model,
            },
            "capabilities": {
                "ocr": config.ocr.enabled,
                "ai_correction": True,
                "media_overlays": True,
                "output_format": "EPUB 3 fixed layout",
            },
            "steps": [
                {"step": step.value, "label": step.label, "progress": step.progress}
                for step in ConversionStep
            ],
        }

    @app.get("/api/v1/config/options", tags=["Configuration"])
    async def get_config_options():
        """
        Get conversion options for UI dropdowns and forms.

        Returns dropdown options with labels and default values.
        """
        return {
            "options": {
                "dpi": {
                    "label": "Page image resolution (DPI)",
                    "type": "dropdown",
                    "default": 150,
                    "options": [
                        {"value": 96, "label": "96 DPI (Small)"},
                        {"value": 150, "label": "150 DPI (Recommended)", "default": True},
                        {"value": 200, "label": "200 DPI (Sharp)"},
                        {"value": 300, "label": "300 DPI (Print)"},
                    ],
                },
                "language": {
                    "label": "Language",
                    "type": "dropdown",
                    "default": "eng",
                    "options": [
                        {"value": "eng", "label": "English", "default": True},
                        {"value": "deu", "label": "German"},
                        {"value": "fra", "label": "French"},
                        {"value": "spa", "label": "Spanish"},
                        {"value": "ita", "label": "Italian"},
                    ],
                },
                "enable_ocr": {
                    "label": "OCR scanned pages",
                    "type": "checkbox",
                    "default": True,
                },
                "enable_ai": {
                    "label": "AI text correction",
                    "type": "checkbox",
                    "default": False,
                },
            },
            "defaults": ConversionOptions().model_dump(),
        }

    return app


# Create default app instance
app = create_app()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host=get_config().api.host, port=get_config().api.port)
