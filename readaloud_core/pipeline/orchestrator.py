"""
Pipeline Orchestrator
=====================

Runs the nine conversion stages in order for one job.

Flow:
    started
      -> for each stage: step_started, stage(structure), snapshot, step_completed
      -> confidence + review flag
      -> completed | failed | cancelled

Progress is recorded at the start of each stage so a reader polling the
job sees which stage is running. Cancellation is checked between stages;
a running stage is never interrupted. On failure or cancellation the EPUB
written so far, if any, is removed.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, List, Optional, Tuple

from readaloud_core.errors import ConversionError, PersistenceError, truncate_error
from readaloud_core.models import DocumentStructure
from readaloud_core.pipeline.events import ConversionJob, EventType, ProgressLog
from readaloud_core.pipeline.stages import STAGES, ConversionContext, Stage, document_confidence
from readaloud_core.pipeline.steps import ConversionStep

logger = logging.getLogger(__name__)


class PipelineOrchestrator:
    """
    Drives a conversion job through every stage.

    Example:
        orchestrator = PipelineOrchestrator(store)
        job = orchestrator.run(context, ProgressLog(job, store))
        print(job.status, job.epub_path)
    """

    def __init__(self,
                 store: Optional[Any] = None,
                 stages: Optional[List[Tuple[ConversionStep, Stage]]] = None):
        self.store = store
        self.stages = list(stages or STAGES)

    def run(self, ctx: ConversionContext, log: ProgressLog) -> ConversionJob:
        """Run the job to a terminal state and return it. Never raises."""
        job_id = ctx.job_id
        structure = DocumentStructure()

        if ctx.cancellation.is_cancelled:
            return self._cancel(ctx, log)

        log.record(EventType.STARTED)
        logger.info(f"Job {job_id}: converting {ctx.source_path.name}")

        try:
            for step, stage in self.stages:
                if ctx.cancellation.is_cancelled:
                    return self._cancel(ctx, log)

                log.record(EventType.STEP_STARTED, step=step)
                logger.info(f"Job {job_id}: {step.label} ({step.progress}%)")
                structure = stage(structure, ctx)
                self._snapshot(job_id, step, structure)
                log.record(EventType.STEP_COMPLETED, step=step, metrics=dict(ctx.metrics))

            qa = ctx.settings.qa
            confidence = round(document_confidence(structure, qa.default_confidence), 4)
            requires_review = confidence < qa.review_threshold or bool(ctx.qa_problems)
            if ctx.qa_problems:
                logger.warning(f"Job {job_id}: QA found {len(ctx.qa_problems)} problem(s)")

            job = log.record(
                EventType.COMPLETED,
                epub_path=str(ctx.epub_path) if ctx.epub_path else None,
                confidence_score=confidence,
                requires_review=requires_review,
                metrics=dict(ctx.metrics),
            )
            logger.info(
                f"Job {job_id}: completed (confidence {confidence:.2f}, "
                f"review {'required' if requires_review else 'not required'})"
            )
            return job

        except ConversionError as e:
            logger.error(f"Job {job_id}: conversion failed: {e}", exc_info=True)
            return self._fail(ctx, log, str(e))
        except Exception as e:
            logger.error(f"Job {job_id}: unexpected error: {e}", exc_info=True)
            return self._fail(ctx, log, f"{type(e).__name__}: {e}")
        finally:
            ctx.close()

    def _snapshot(self, job_id: str, step: ConversionStep, structure: DocumentStructure) -> None:
        if self.store is None:
            return
        try:
            self.store.save_snapshot(job_id, step, structure)
        except PersistenceError as e:
            logger.warning(f"Job {job_id}: snapshot for {step.value} not saved: {e}")

    def _fail(self, ctx: ConversionContext, log: ProgressLog, message: str) -> ConversionJob:
        self._remove_output(ctx)
        return log.record(EventType.FAILED, error_message=truncate_error(message))

    def _cancel(self, ctx: ConversionContext, log: ProgressLog) -> ConversionJob:
        logger.info(f"Job {ctx.job_id}: cancelled ({ctx.cancellation.reason})")
        self._remove_output(ctx)
        ctx.close()
        return log.record(EventType.CANCELLED, reason=ctx.cancellation.reason)

    @staticmethod
    def _remove_output(ctx: ConversionContext) -> None:
        for path in {ctx.epub_path, ctx.epub_target}:
            if path is None:
                continue
            path = Path(path)
            if path.exists():
                try:
                    path.unlink()
                    logger.info(f"Removed partial output {path.name}")
                except OSError as e:
                    logger.warning(f"Could not remove {path}: {e}")
        ctx.epub_path = None
