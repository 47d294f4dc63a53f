#!/usr/bin/env python3
"""
Job Store for the PDF to EPUB Conversion Service

This module provides a pluggable persistence layer for conversion jobs:
- Job state (the materialized view of the progress log)
- The append-only progress event log
- Per-stage document structure snapshots

Backends:
- Local filesystem (default, development and CLI)
- MongoDB (service deployments)

All backends implement the same interface, so they can be switched by
configuration. Every I/O failure surfaces as PersistenceError; callers on
the conversion path log it and keep going.

Configuration:
    PDFTOEPUB_STORE_BACKEND: "local" | "mongodb" (default: "local")

    For Local:
        PDFTOEPUB_STORE_DIR (default: ./jobs)

    For MongoDB:
        MONGODB_URI, MONGODB_DATABASE

Layout of the local backend:
    <base>/<job_id>/job.json
    <base>/<job_id>/events.jsonl
    <base>/<job_id>/snapshots/03_layout_analysis.json

Usage:
    from storage import get_job_store

    store = get_job_store()
    store.save(job)
    store.append_event(event)
    job = store.load(job_id)
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from pymongo import ASCENDING, DESCENDING, MongoClient
from pymongo.errors import PyMongoError

from readaloud_core.errors import PersistenceError
from readaloud_core.models import DocumentStructure
from readaloud_core.pipeline.events import ConversionJob, JobStatus, ProgressEvent
from readaloud_core.pipeline.steps import ConversionStep

logger = logging.getLogger(__name__)


def _step_of(step: Union[ConversionStep, str]) -> ConversionStep:
    return step if isinstance(step, ConversionStep) else ConversionStep(step)


def snapshot_name(step: Union[ConversionStep, str]) -> str:
    """File name of a stage snapshot, numbered so names sort in stage order."""
    step = _step_of(step)
    return f"{step.index:02d}_{step.value}.json"


# ============================================================================
# ABSTRACT JOB STORE INTERFACE
# ============================================================================

class JobStore(ABC):
    """
    Abstract base class for job stores.

    The job record and the event log are written independently: a reader
    may see an event whose effect is not yet in the job record, never the
    other way round.
    """

    @abstractmethod
    def connect(self) -> bool:
        """Establish connection to the backend."""
        pass

    @abstractmethod
    def is_connected(self) -> bool:
        """Check if connected."""
        pass

    @abstractmethod
    def load(self, job_id: str) -> Optional[ConversionJob]:
        """Load a job, or None if unknown."""
        pass

    @abstractmethod
    def save(self, job: ConversionJob) -> None:
        """Create or replace the job record."""
        pass

    @abstractmethod
    def list_jobs(self, status: Optional[JobStatus] = None, limit: int = 50) -> List[ConversionJob]:
        """Jobs, newest first, optionally filtered by status."""
        pass

    @abstractmethod
    def append_event(self, event: ProgressEvent) -> None:
        """Append one progress event."""
        pass

    @abstractmethod
    def load_events(self, job_id: str) -> List[ProgressEvent]:
        """A job's events in sequence order."""
        pass

    @abstractmethod
    def save_snapshot(self,
                      job_id: str,
                      step: Union[ConversionStep, str],
                      structure: DocumentStructure) -> None:
        """Store the structure produced by one stage."""
        pass

    @abstractmethod
    def load_snapshot(self,
                      job_id: str,
                      step: Optional[Union[ConversionStep, str]] = None) -> Optional[DocumentStructure]:
        """The named stage's structure, or the latest one when step is None."""
        pass


# ============================================================================
# LOCAL FILESYSTEM STORE
# ============================================================================

class LocalJobStore(JobStore):
    """Local filesystem job store for development and the CLI."""

    JOB_FILE = "job.json"
    EVENTS_FILE = "events.jsonl"
    SNAPSHOT_DIR = "snapshots"

    def __init__(self, base_path: Union[str, Path, None] = None):
        self.base_path = Path(base_path or os.environ.get("PDFTOEPUB_STORE_DIR", "./jobs"))
        self._connected = False

    def connect(self) -> bool:
        try:
            self.base_path.mkdir(parents=True, exist_ok=True)
            self._connected = True
            logger.info(f"Local job store initialized at: {self.base_path}")
            return True
        except OSError as e:
            logger.error(f"Failed to initialize local job store: {e}")
            return False

    def is_connected(self) -> bool:
        return self._connected

    def _job_dir(self, job_id: str) -> Path:
        if not job_id or "/" in job_id or "\\" in job_id or job_id.startswith("."):
            raise PersistenceError(f"Invalid job id: {job_id!r}")
        return self.base_path / job_id

    @staticmethod
    def _write_atomic(path: Path, payload: str) -> None:
        """Write via a temporary file in the same directory, then rename."""
        path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", dir=str(path.parent))
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(payload)
            os.replace(tmp_name, path)
        except BaseException:
            if os.path.exists(tmp_name):
                os.unlink(tmp_name)
            raise

    def load(self, job_id: str) -> Optional[ConversionJob]:
        path = self._job_dir(job_id) / self.JOB_FILE
        if not path.exists():
            return None
        try:
            with open(path, "r", encoding="utf-8") as f:
                return ConversionJob.from_dict(json.load(f))
        except (OSError, ValueError, KeyError) as e:
            raise PersistenceError(f"Cannot read job {job_id}: {e}") from e

    def save(self, job: ConversionJob) -> None:
        try:
            self._write_atomic(self._job_dir(job.id) / self.JOB_FILE, json.dumps(job.to_dict(), indent=2))
        except OSError as e:
            raise PersistenceError(f"Cannot write job {job.id}: {e}") from e

    def list_jobs(self, status: Optional[JobStatus] = None, limit: int = 50) -> List[ConversionJob]:
        if not self.base_path.exists():
            return []
        jobs = []
        for job_dir in self.base_path.iterdir():
            if not (job_dir / self.JOB_FILE).is_file():
                continue
            try:
                job = self.load(job_dir.name)
            except PersistenceError as e:
                logger.warning(f"Skipping unreadable job record: {e}")
                continue
            if job is not None and (status is None or job.status == status):
                jobs.append(job)
        jobs.sort(key=lambda j: j.created_at, reverse=True)
        return jobs[:limit]

    def append_event(self, event: ProgressEvent) -> None:
        path = self._job_dir(event.job_id) / self.EVENTS_FILE
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            with open(path, "a", encoding="utf-8") as f:
                f.write(json.dumps(event.to_dict()) + "\n")
        except OSError as e:
            raise PersistenceError(f"Cannot append event for job {event.job_id}: {e}") from e

    def load_events(self, job_id: str) -> List[ProgressEvent]:
        path = self._job_dir(job_id) / self.EVENTS_FILE
        if not path.exists():
            return []
        events = []
        try:
            with open(path, "r", encoding="utf-8") as f:
                for line in f:
                    line = line.strip()
                    if not line:
                        continue
                    try:
                        events.append(ProgressEvent.from_dict(json.loads(line)))
                    except (ValueError, KeyError) as e:
                        # a torn final line from an interrupted append
                        logger.warning(f"Job {job_id}: skipping unreadable event line: {e}")
        except OSError as e:
            raise PersistenceError(f"Cannot read events for job {job_id}: {e}") from e
        return sorted(events, key=lambda e: e.sequence)

    def save_snapshot(self,
                      job_id: str,
                      step: Union[ConversionStep, str],
                      structure: DocumentStructure) -> None:
        path = self._job_dir(job_id) / self.SNAPSHOT_DIR / snapshot_name(step)
        try:
            self._write_atomic(path, json.dumps(structure.to_dict()))
        except (OSError, TypeError, ValueError) as e:
            raise PersistenceError(f"Cannot write snapshot {path.name} for job {job_id}: {e}") from e

    def load_snapshot(self,
                      job_id: str,
                      step: Optional[Union[ConversionStep, str]] = None) -> Optional[DocumentStructure]:
        snapshot_dir = self._job_dir(job_id) / self.SNAPSHOT_DIR
        if step is not None:
            path = snapshot_dir / snapshot_name(step)
        else:
            candidates = sorted(snapshot_dir.glob("*.json")) if snapshot_dir.exists() else []
            if not candidates:
                return None
            path = candidates[-1]
        if not path.exists():
            return None
        try:
            with open(path, "r", encoding="utf-8") as f:
                return DocumentStructure.from_dict(json.load(f))
        except (OSError, ValueError, KeyError, TypeError) as e:
            raise PersistenceError(f"Cannot read snapshot {path.name} for job {job_id}: {e}") from e


# ============================================================================
# MONGODB STORE
# ============================================================================

class MongoJobStore(JobStore):
    """
    MongoDB job store.

    Collections:
        jobs           - one document per job, keyed by ``id``
        job_events     - one document per progress event
        job_snapshots  - one document per (job_id, step)
    """

    def __init__(self,
                 uri: Optional[str] = None,
                 database: Optional[str] = None,
                 timeout_ms: int = 5000):
        self.uri = uri or os.environ.get("MONGODB_URI", "mongodb://localhost:27017")
        self.database = database or os.environ.get("MONGODB_DATABASE", "pdftoepub")
        self.timeout_ms = timeout_ms
        self._client: Optional[MongoClient] = None
        self._db = None
        self._connected = False

    def connect(self) -> bool:
        """
        Establish connection to MongoDB.

        Returns:
            True if connected successfully, False otherwise.
        """
        try:
            self._client = MongoClient(self.uri, serverSelectionTimeoutMS=self.timeout_ms)
            # Test connection
            self._client.admin.command("ping")
            self._db = self._client[self.database]
            self._create_indexes()
            self._connected = True
            logger.info(f"Connected to MongoDB job store: {self.database}")
            return True
        except PyMongoError as e:
            logger.error(f"Failed to connect to MongoDB: {e}")
            self._connected = False
            return False

    def _create_indexes(self):
        self._db.jobs.create_index("id", unique=True)
        self._db.jobs.create_index([("created_at", DESCENDING)])
        self._db.jobs.create_index("status")
        self._db.job_events.create_index([("job_id", ASCENDING), ("sequence", ASCENDING)], unique=True)
        self._db.job_snapshots.create_index([("job_id", ASCENDING), ("index", ASCENDING)], unique=True)

    def is_connected(self) -> bool:
        return self._connected

    def _ensure_connected(self):
        if not self._connected and not self.connect():
            raise PersistenceError("MongoDB job store is not connected")

    def load(self, job_id: str) -> Optional[ConversionJob]:
        self._ensure_connected()
        try:
            doc = self._db.jobs.find_one({"id": job_id}, {"_id": 0})
        except PyMongoError as e:
            raise PersistenceError(f"Cannot read job {job_id}: {e}") from e
        return ConversionJob.from_dict(doc) if doc else None

    def save(self, job: ConversionJob) -> None:
        self._ensure_connected()
        try:
            self._db.jobs.replace_one({"id": job.id}, job.to_dict(), upsert=True)
        except PyMongoError as e:
            raise PersistenceError(f"Cannot write job {job.id}: {e}") from e

    def list_jobs(self, status: Optional[JobStatus] = None, limit: int = 50) -> List[ConversionJob]:
        self._ensure_connected()
        query: Dict[str, Any] = {}
        if status is not None:
            query["status"] = status.value
        try:
            cursor = self._db.jobs.find(query, {"_id": 0}).sort("created_at", DESCENDING).limit(limit)
            return [ConversionJob.from_dict(doc) for doc in cursor]
        except PyMongoError as e:
            raise PersistenceError(f"Cannot list jobs: {e}") from e

    def append_event(self, event: ProgressEvent) -> None:
        self._ensure_connected()
        try:
            self._db.job_events.insert_one(event.to_dict())
        except PyMongoError as e:
            raise PersistenceError(f"Cannot append event for job {event.job_id}: {e}") from e

    def load_events(self, job_id: str) -> List[ProgressEvent]:
        self._ensure_connected()
        try:
            cursor = self._db.job_events.find({"job_id": job_id}, {"_id": 0}).sort("sequence", ASCENDING)
            return [ProgressEvent.from_dict(doc) for doc in cursor]
        except PyMongoError as e:
            raise PersistenceError(f"Cannot read events for job {job_id}: {e}") from e

    def save_snapshot(self,
                      job_id: str,
                      step: Union[ConversionStep, str],
                      structure: DocumentStructure) -> None:
        self._ensure_connected()
        step = _step_of(step)
        doc = {
            "job_id": job_id,
            "step": step.value,
            "index": step.index,
            # stored as JSON text: page/block keys are not all valid field names
            "structure": json.dumps(structure.to_dict()),
        }
        try:
            self._db.job_snapshots.replace_one({"job_id": job_id, "index": step.index}, doc, upsert=True)
        except PyMongoError as e:
            raise PersistenceError(f"Cannot write snapshot {step.value} for job {job_id}: {e}") from e

    def load_snapshot(self,
                      job_id: str,
                      step: Optional[Union[ConversionStep, str]] = None) -> Optional[DocumentStructure]:
        self._ensure_connected()
        try:
            if step is not None:
                doc = self._db.job_snapshots.find_one({"job_id": job_id, "index": _step_of(step).index})
            else:
                doc = self._db.job_snapshots.find_one({"job_id": job_id}, sort=[("index", DESCENDING)])
        except PyMongoError as e:
            raise PersistenceError(f"Cannot read snapshot for job {job_id}: {e}") from e
        return DocumentStructure.from_dict(json.loads(doc["structure"])) if doc else None


# ============================================================================
# FACTORY & SINGLETON
# ============================================================================

_store_instance: Optional[JobStore] = None


def get_job_store() -> JobStore:
    """
    Get the configured job store instance.

    Uses PDFTOEPUB_STORE_BACKEND env var to select backend:
    - "local" (default): JSON files on disk
    - "mongodb": MongoDB collections
    """
    global _store_instance

    if _store_instance is None:
        backend = os.environ.get("PDFTOEPUB_STORE_BACKEND", "local").lower()

        if backend == "mongodb":
            _store_instance = MongoJobStore()
        else:
            _store_instance = LocalJobStore()

        # Auto-connect
        _store_instance.connect()

    return _store_instance


def init_job_store(backend: Optional[str] = None) -> bool:
    """
    Initialize the job store with the specified backend.

    Args:
        backend: "local" or "mongodb". Uses env var if not specified.

    Returns:
        True if connected successfully
    """
    global _store_instance

    if backend:
        os.environ["PDFTOEPUB_STORE_BACKEND"] = backend

    _store_instance = None  # Reset
    store = get_job_store()
    return store.is_connected()
