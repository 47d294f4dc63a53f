"""
Job Dispatcher
==============

Runs conversion jobs on a bounded worker pool. Each submitted job gets its
own CancellationToken; ``cancel()`` sets it. A job that has not started yet
is recorded as cancelled immediately, a running one stops at its next stage
boundary.
"""

from __future__ import annotations

import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Dict, Optional

from readaloud_core.pipeline.events import ConversionJob, EventType, JobStatus, ProgressLog
from readaloud_core.pipeline.orchestrator import PipelineOrchestrator
from readaloud_core.pipeline.stages import ConversionContext

logger = logging.getLogger(__name__)


class JobDispatcher:
    """
    Example:
        dispatcher = JobDispatcher(store, max_workers=2)
        future = dispatcher.submit(context, log)
        dispatcher.cancel(context.job_id)
    """

    def __init__(self,
                 store=None,
                 max_workers: int = 2,
                 orchestrator: Optional[PipelineOrchestrator] = None):
        self.store = store
        self.orchestrator = orchestrator or PipelineOrchestrator(store)
        self.executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="conversion")
        self._lock = threading.Lock()
        self._contexts: Dict[str, ConversionContext] = {}
        self._logs: Dict[str, ProgressLog] = {}
        self._futures: Dict[str, Future] = {}

    def submit(self, ctx: ConversionContext, log: ProgressLog) -> Future:
        with self._lock:
            self._contexts[ctx.job_id] = ctx
            self._logs[ctx.job_id] = log
            future = self.executor.submit(self._run, ctx, log)
            self._futures[ctx.job_id] = future
        logger.info(f"Job {ctx.job_id} queued")
        return future

    def _run(self, ctx: ConversionContext, log: ProgressLog) -> ConversionJob:
        try:
            return self.orchestrator.run(ctx, log)
        finally:
            with self._lock:
                self._contexts.pop(ctx.job_id, None)
                self._logs.pop(ctx.job_id, None)
                self._futures.pop(ctx.job_id, None)

    def is_active(self, job_id: str) -> bool:
        with self._lock:
            return job_id in self._contexts

    def cancel(self, job_id: str, reason: str = "Cancelled by user") -> bool:
        """Request cancellation. Returns False when the job is not active."""
        with self._lock:
            ctx = self._contexts.get(job_id)
            log = self._logs.get(job_id)
            future = self._futures.get(job_id)
        if ctx is None:
            return False

        ctx.cancellation.cancel(reason)
        if future is not None and future.cancel():
            # never started: the orchestrator will not run, record it here
            with self._lock:
                self._contexts.pop(job_id, None)
                self._logs.pop(job_id, None)
                self._futures.pop(job_id, None)
            if log is not None and log.job.status == JobStatus.PENDING:
                log.record(EventType.CANCELLED, reason=reason)
            ctx.close()
        logger.info(f"Job {job_id}: cancellation requested")
        return True

    def shutdown(self, wait: bool = True) -> None:
        with self._lock:
            pending = list(self._contexts.values())
        for ctx in pending:
            ctx.cancellation.cancel("Dispatcher shutting down")
        self.executor.shutdown(wait=wait)
