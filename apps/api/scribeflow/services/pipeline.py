"""Automated pipeline driver: submit, poll and bounded retry of PROCESSING jobs."""

from __future__ import annotations

import logging

from scribeflow.adapters.transcription import (
    PipelineFatalError,
    PipelineResult,
    PipelineState,
    PipelineTransientError,
    TranscriptionPipeline,
)
from scribeflow.core.logging_safety import CORRELATION_PREFIX, JOB_PREFIX, safe_log_identifier
from scribeflow.domain.job_router import next_status_after_pipeline, pipeline_failure_decision
from scribeflow.domain.records import JobRecord
from scribeflow.repositories.memory import InMemoryStore
from scribeflow.schemas.internal import PipelineTickResponse
from scribeflow.schemas.job import JobStatus
from scribeflow.schemas.pricing import AddOn
from scribeflow.services.jobs import JobService

logger = logging.getLogger(__name__)


class PipelineService:
    def __init__(
        self,
        store: InMemoryStore,
        *,
        pipeline: TranscriptionPipeline,
        jobs: JobService,
        max_retries: int = 3,
        backoff_base_seconds: float = 30.0,
    ) -> None:
        self._store = store
        self._pipeline = pipeline
        self._jobs = jobs
        self._max_retries = max_retries
        self._backoff_base_seconds = backoff_base_seconds

    def tick(self) -> PipelineTickResponse:
        """Advance every due PROCESSING job by one step."""
        counts = {"examined": 0, "submitted": 0, "completed": 0, "retried": 0, "failed": 0}
        now = self._store.clock()
        for job in self._store.list_due_pipeline_jobs(now):
            counts["examined"] += 1
            outcome = self._advance(job)
            if outcome is not None:
                counts[outcome] += 1

        logger.info(
            "pipeline.tick examined=%s submitted=%s completed=%s retried=%s failed=%s",
            counts["examined"],
            counts["submitted"],
            counts["completed"],
            counts["retried"],
            counts["failed"],
        )
        return PipelineTickResponse(**counts)

    def _advance(self, job: JobRecord) -> str | None:
        try:
            if job.external_job_id is None:
                external_job_id = self._pipeline.submit(
                    file_reference=job.file_reference,
                    language=job.language,
                    diarization=AddOn.MULTIPLE_SPEAKERS in job.add_ons,
                )
                with self._store.job_mutation():
                    if job.status is not JobStatus.PROCESSING:
                        return None
                    job.external_job_id = external_job_id
                    job.next_attempt_at = None
                logger.info(
                    "pipeline.submitted job_id=%s correlation_id=%s",
                    safe_log_identifier(job.id, prefix=JOB_PREFIX),
                    safe_log_identifier(job.correlation_id, prefix=CORRELATION_PREFIX),
                )
                return "submitted"
            result = self._pipeline.poll(job.external_job_id)
        except PipelineTransientError as exc:
            return self._handle_transient(job, exc)
        except PipelineFatalError as exc:
            return self._fail(job, code="PIPELINE_FATAL", message=str(exc))

        return self._apply_result(job, result)

    def _apply_result(self, job: JobRecord, result: PipelineResult) -> str | None:
        if result.state is PipelineState.RUNNING:
            return None
        if result.state is PipelineState.FAILED:
            return self._fail(job, code="PIPELINE_FAILED", message=result.error or "pipeline reported failure")

        with self._store.job_mutation():
            if job.status is not JobStatus.PROCESSING:
                return None
            job.transcript = result.transcript
            self._store.transition_job_status(
                job=job,
                new_status=next_status_after_pipeline(job.tier),
                actor_type="pipeline",
            )
        logger.info(
            "pipeline.completed job_id=%s new_status=%s",
            safe_log_identifier(job.id, prefix=JOB_PREFIX),
            job.status.value,
        )
        # Hybrid jobs continue to human review.
        self._jobs.route_or_queue(job, correlation_id=job.correlation_id)
        return "completed"

    def _handle_transient(self, job: JobRecord, exc: PipelineTransientError) -> str | None:
        with self._store.job_mutation():
            if job.status is not JobStatus.PROCESSING:
                return None
            decision = pipeline_failure_decision(
                attempts=job.pipeline_attempts + 1,
                max_retries=self._max_retries,
                backoff_base_seconds=self._backoff_base_seconds,
                now=self._store.clock(),
            )
            job.pipeline_attempts = decision.attempts
            if decision.retry:
                self._store.transition_job_status(job=job, new_status=JobStatus.PROCESSING, actor_type="pipeline")
                job.next_attempt_at = decision.next_attempt_at
                job.failure_message = str(exc)

        if not decision.retry:
            return self._fail(job, code="PIPELINE_RETRIES_EXHAUSTED", message=str(exc))

        logger.warning(
            "pipeline.retry_scheduled job_id=%s attempts=%s next_attempt_at=%s",
            safe_log_identifier(job.id, prefix=JOB_PREFIX),
            decision.attempts,
            decision.next_attempt_at.isoformat(),
        )
        return "retried"

    def _fail(self, job: JobRecord, *, code: str, message: str) -> str | None:
        with self._store.job_mutation():
            if job.status is not JobStatus.PROCESSING:
                return None
            self._store.transition_job_status(job=job, new_status=JobStatus.ERROR, actor_type="pipeline")
            job.failure_code = code
            job.failure_message = message
            job.next_attempt_at = None

        logger.error(
            "pipeline.failed job_id=%s code=%s attempts=%s correlation_id=%s",
            safe_log_identifier(job.id, prefix=JOB_PREFIX),
            code,
            job.pipeline_attempts,
            safe_log_identifier(job.correlation_id, prefix=CORRELATION_PREFIX),
        )
        return "failed"
