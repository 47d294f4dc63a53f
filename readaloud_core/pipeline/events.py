"""
Job State and Progress Events
=============================

A conversion job's state is a materialized view over an append-only log of
progress events. ``apply_event`` is a pure reducer; ``ProgressLog`` appends,
reduces and persists each event as it happens so status readers see progress
immediately, independent of the job's final outcome.

Event flow for a successful job:
    created -> started -> (step_started, step_completed) x 9 -> completed
"""

from __future__ import annotations

import dataclasses
import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Dict, Iterable, List, Optional

from readaloud_core.errors import PersistenceError, truncate_error
from readaloud_core.pipeline.steps import ConversionStep

logger = logging.getLogger(__name__)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _parse_time(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None


# ============================================================================
# JOB
# ============================================================================

class JobStatus(str, Enum):
    """Conversion job status."""
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES = frozenset({JobStatus.COMPLETED, JobStatus.FAILED, JobStatus.CANCELLED})


@dataclass
class ConversionJob:
    """Materialized state of one conversion job."""
    id: str
    filename: str = ""
    status: JobStatus = JobStatus.PENDING
    current_step: Optional[ConversionStep] = None
    progress_percent: float = 0.0
    error_message: Optional[str] = None
    epub_path: Optional[str] = None
    confidence_score: Optional[float] = None
    requires_review: bool = False
    created_at: datetime = field(default_factory=utc_now)
    updated_at: datetime = field(default_factory=utc_now)
    completed_at: Optional[datetime] = None
    metrics: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "filename": self.filename,
            "status": self.status.value,
            "current_step": self.current_step.value if self.current_step else None,
            "progress_percent": self.progress_percent,
            "error_message": self.error_message,
            "epub_path": self.epub_path,
            "confidence_score": self.confidence_score,
            "requires_review": self.requires_review,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "metrics": dict(self.metrics),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ConversionJob":
        return cls(
            id=data["id"],
            filename=data.get("filename", ""),
            status=JobStatus(data.get("status", JobStatus.PENDING.value)),
            current_step=ConversionStep(data["current_step"]) if data.get("current_step") else None,
            progress_percent=float(data.get("progress_percent", 0.0)),
            error_message=data.get("error_message"),
            epub_path=data.get("epub_path"),
            confidence_score=data.get("confidence_score"),
            requires_review=bool(data.get("requires_review", False)),
            created_at=_parse_time(data.get("created_at")) or utc_now(),
            updated_at=_parse_time(data.get("updated_at")) or utc_now(),
            completed_at=_parse_time(data.get("completed_at")),
            metrics=dict(data.get("metrics") or {}),
        )


# ============================================================================
# EVENTS
# ============================================================================

class EventType(str, Enum):
    CREATED = "created"
    STARTED = "started"
    STEP_STARTED = "step_started"
    STEP_COMPLETED = "step_completed"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


@dataclass(frozen=True)
class ProgressEvent:
    """One immutable entry of a job's progress log."""
    job_id: str
    sequence: int
    event_type: EventType
    timestamp: datetime
    step: Optional[ConversionStep] = None
    data: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "job_id": self.job_id,
            "sequence": self.sequence,
            "event_type": self.event_type.value,
            "timestamp": self.timestamp.isoformat(),
            "step": self.step.value if self.step else None,
            "data": dict(self.data),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ProgressEvent":
        return cls(
            job_id=data["job_id"],
            sequence=int(data["sequence"]),
            event_type=EventType(data["event_type"]),
            timestamp=datetime.fromisoformat(data["timestamp"]),
            step=ConversionStep(data["step"]) if data.get("step") else None,
            data=dict(data.get("data") or {}),
        )


def apply_event(job: ConversionJob, event: ProgressEvent) -> ConversionJob:
    """
    Reduce one event into a new job state.

    Terminal states are final: events arriving after one are ignored.
    """
    if job.status.is_terminal:
        return job

    changes: Dict[str, Any] = {"updated_at": event.timestamp}
    metrics = dict(job.metrics)
    metrics.update(event.data.get("metrics") or {})
    changes["metrics"] = metrics

    kind = event.event_type
    if kind == EventType.CREATED:
        changes["status"] = JobStatus.PENDING
    elif kind == EventType.STARTED:
        changes["status"] = JobStatus.IN_PROGRESS
    elif kind == EventType.STEP_STARTED:
        changes["status"] = JobStatus.IN_PROGRESS
        changes["current_step"] = event.step
        changes["progress_percent"] = float(event.step.progress)
    elif kind == EventType.STEP_COMPLETED:
        pass
    elif kind == EventType.COMPLETED:
        changes.update(
            status=JobStatus.COMPLETED,
            progress_percent=100.0,
            epub_path=event.data.get("epub_path"),
            confidence_score=event.data.get("confidence_score"),
            requires_review=bool(event.data.get("requires_review", False)),
            completed_at=event.timestamp,
        )
    elif kind == EventType.FAILED:
        changes.update(
            status=JobStatus.FAILED,
            error_message=truncate_error(event.data.get("error_message") or "Unknown error"),
            epub_path=None,
            completed_at=event.timestamp,
        )
    elif kind == EventType.CANCELLED:
        changes.update(
            status=JobStatus.CANCELLED,
            epub_path=None,
            completed_at=event.timestamp,
        )

    return dataclasses.replace(job, **changes)


def reduce_events(job: ConversionJob, events: Iterable[ProgressEvent]) -> ConversionJob:
    """Replay events, in sequence order, onto a job."""
    for event in sorted(events, key=lambda e: e.sequence):
        job = apply_event(job, event)
    return job


# ============================================================================
# PROGRESS LOG
# ============================================================================

class ProgressLog:
    """
    Append-only progress log for one job.

    Every ``record()`` appends the event, reduces it into the job state, then
    persists the event and the job as two independent writes. A failed write
    is logged and never interrupts the conversion.

    Example:
        log = ProgressLog(job, store)
        log.record(EventType.STARTED)
        log.record(EventType.STEP_STARTED, step=ConversionStep.TEXT_EXTRACTION)
    """

    def __init__(self,
                 job: ConversionJob,
                 store: Optional[Any] = None,
                 clock: Callable[[], datetime] = utc_now,
                 listeners: Optional[List[Callable[[ConversionJob, ProgressEvent], None]]] = None,
                 events: Optional[Iterable[ProgressEvent]] = None):
        self._job = job
        self.store = store
        self._clock = clock
        self._lock = threading.Lock()
        # resuming an existing log continues its sequence numbers
        self._events: List[ProgressEvent] = sorted(events or [], key=lambda e: e.sequence)
        self.listeners = list(listeners or [])

    @property
    def job(self) -> ConversionJob:
        with self._lock:
            return self._job

    @property
    def events(self) -> List[ProgressEvent]:
        with self._lock:
            return list(self._events)

    def record(self,
               event_type: EventType,
               step: Optional[ConversionStep] = None,
               **data) -> ConversionJob:
        with self._lock:
            if self._job.status.is_terminal:
                logger.debug(f"Job {self._job.id}: ignoring {event_type.value} after {self._job.status.value}")
                return self._job
            event = ProgressEvent(
                job_id=self._job.id,
                sequence=(self._events[-1].sequence + 1) if self._events else 1,
                event_type=event_type,
                timestamp=self._clock(),
                step=step,
                data=data,
            )
            self._events.append(event)
            self._job = apply_event(self._job, event)
            job = self._job

        self._persist(event, job)
        for listener in self.listeners:
            try:
                listener(job, event)
            except Exception as e:
                logger.warning(f"Progress listener failed for job {job.id}: {e}")
        return job

    def _persist(self, event: ProgressEvent, job: ConversionJob) -> None:
        if self.store is None:
            return
        try:
            self.store.append_event(event)
        except PersistenceError as e:
            logger.warning(f"Job {job.id}: progress event not persisted: {e}")
        try:
            self.store.save(job)
        except PersistenceError as e:
            logger.warning(f"Job {job.id}: job state not persisted: {e}")
