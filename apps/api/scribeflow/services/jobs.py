"""Job service layer."""

from __future__ import annotations

from collections.abc import Iterable
from decimal import Decimal
import logging
from uuid import uuid4

from scribeflow.core.logging_safety import (
    ACCOUNT_PREFIX,
    CORRELATION_PREFIX,
    ENTRY_PREFIX,
    JOB_PREFIX,
    safe_log_identifier,
)
from scribeflow.domain.job_fsm import ensure_transition
from scribeflow.domain.job_router import HUMAN_WORK_STATES, initial_route, uses_pipeline
from scribeflow.domain.records import JobRecord
from scribeflow.errors import ApiError, not_found
from scribeflow.repositories.memory import InMemoryStore
from scribeflow.schemas.internal import QueueDrainResponse
from scribeflow.schemas.job import Job, JobStatus
from scribeflow.schemas.pricing import AddOn, ServiceTier
from scribeflow.services.assignments import AssignmentService
from scribeflow.services.ledger import LedgerService, breakdown_to_schema

logger = logging.getLogger(__name__)


class JobService:
    def __init__(
        self,
        store: InMemoryStore,
        *,
        ledger: LedgerService,
        assignments: AssignmentService,
    ) -> None:
        self._store = store
        self._ledger = ledger
        self._assignments = assignments
        assignments.add_capacity_listener(self.assign_queued_jobs)

    def submit_job(
        self,
        *,
        account_id: str,
        file_reference: str,
        requested_units: Decimal,
        tier: ServiceTier,
        add_ons: Iterable[AddOn] = (),
        language: str = "en",
        correlation_id: str | None = None,
    ) -> Job:
        """Debit first, then record and route the job.

        Funding failures leave nothing behind. Routing failures never undo the
        debit; the job stays queued for the next availability check.
        """
        correlation_id = correlation_id or f"req-{uuid4()}"
        job_id = f"job-{uuid4()}"
        add_ons = tuple(dict.fromkeys(add_ons))

        debit = self._ledger.debit(
            account_id,
            tier=tier,
            requested_units=requested_units,
            add_ons=add_ons,
            related_job_id=job_id,
            idempotency_key=job_id,
            correlation_id=correlation_id,
        )
        record = self._store.create_job(
            job_id=job_id,
            account_id=account_id,
            tier=tier,
            quantity_requested=requested_units,
            file_reference=file_reference,
            add_ons=add_ons,
            language=language,
            funding=debit.entry.breakdown,
            debit_entry_id=debit.entry.id,
            correlation_id=correlation_id,
        )
        logger.info(
            "job.created job_id=%s account_id=%s tier=%s debit_entry_id=%s correlation_id=%s",
            safe_log_identifier(record.id, prefix=JOB_PREFIX),
            safe_log_identifier(account_id, prefix=ACCOUNT_PREFIX),
            tier.value,
            safe_log_identifier(debit.entry.id, prefix=ENTRY_PREFIX),
            safe_log_identifier(correlation_id, prefix=CORRELATION_PREFIX),
        )

        self.route_or_queue(record, correlation_id=correlation_id)
        return self._to_job(record)

    def get_job(self, *, account_id: str, job_id: str) -> Job:
        record = self._store.get_job_for_account(account_id=account_id, job_id=job_id)
        if record is None:
            raise not_found()

        return self._to_job(record)

    def list_jobs(self, *, account_id: str | None = None, status: JobStatus | None = None) -> list[Job]:
        return [self._to_job(record) for record in self._store.list_jobs(account_id=account_id, status=status)]

    def cancel_job(self, *, account_id: str, job_id: str, correlation_id: str | None = None) -> Job:
        """Cancel before human work starts and refund through the ledger."""
        record = self._store.get_job_for_account(account_id=account_id, job_id=job_id)
        if record is None:
            raise not_found()

        with self._store.job_mutation():
            assignment = self._store.get_assignment(record.assignment_id) if record.assignment_id else None
            if assignment is not None and assignment.is_open:
                raise ApiError(
                    status_code=409,
                    code="JOB_HAS_ACTIVE_ASSIGNMENT",
                    message="Job has active human work and cannot be cancelled.",
                    details={"current_status": record.status, "assignment_id": assignment.id},
                )
            ensure_transition(record.tier, record.status, JobStatus.CANCELLED)

            refund = self._ledger.refund(
                account_id,
                record.debit_entry_id,
                reason="job cancelled",
                correlation_id=correlation_id,
            )
            self._store.transition_job_status(
                job=record,
                new_status=JobStatus.CANCELLED,
                actor_type="customer",
                correlation_id=correlation_id,
            )
            record.refund_entry_id = refund.entry.id
            record.queued = False

        logger.info(
            "job.cancelled job_id=%s account_id=%s refund_entry_id=%s",
            safe_log_identifier(record.id, prefix=JOB_PREFIX),
            safe_log_identifier(account_id, prefix=ACCOUNT_PREFIX),
            safe_log_identifier(refund.entry.id, prefix=ENTRY_PREFIX),
        )
        return self._to_job(record)

    def refund_failed_job(self, *, job_id: str, reason: str, correlation_id: str | None = None) -> Job:
        """Administrative refund for a job that ended in ERROR. Refunds at most once."""
        record = self._store.get_job(job_id)
        if record is None:
            raise not_found()
        if record.status is not JobStatus.ERROR:
            raise ApiError(
                status_code=409,
                code="JOB_NOT_REFUNDABLE",
                message="Only failed jobs can be refunded.",
                details={"current_status": record.status},
            )

        refund = self._ledger.refund(
            record.account_id,
            record.debit_entry_id,
            reason=reason,
            correlation_id=correlation_id,
        )
        with self._store.job_mutation():
            record.refund_entry_id = refund.entry.id

        logger.info(
            "job.refunded job_id=%s refund_entry_id=%s replayed=%s",
            safe_log_identifier(record.id, prefix=JOB_PREFIX),
            safe_log_identifier(refund.entry.id, prefix=ENTRY_PREFIX),
            refund.replayed,
        )
        return self._to_job(record)

    def route_job(self, record: JobRecord, *, correlation_id: str | None = None) -> None:
        """Advance a funded job as far as routing allows without waiting on anyone."""
        if record.status is JobStatus.PENDING and uses_pipeline(record.tier):
            with self._store.job_mutation():
                self._store.transition_job_status(
                    job=record,
                    new_status=initial_route(record.tier),
                    actor_type="system",
                    correlation_id=correlation_id,
                )
                record.queued = False
                record.next_attempt_at = None
            return

        if record.status is HUMAN_WORK_STATES.get(record.tier):
            self._assignments.try_assign(record, correlation_id=correlation_id)
        else:
            with self._store.job_mutation():
                record.queued = False

    def assign_queued_jobs(self) -> QueueDrainResponse:
        """Worker-availability check: oldest queued jobs first."""
        assigned = 0
        for record in self._store.list_queued_jobs():
            self.route_or_queue(record, correlation_id=record.correlation_id)
            if not record.queued:
                assigned += 1

        still_queued = len(self._store.list_queued_jobs())
        logger.info("queue.drained assigned=%s still_queued=%s", assigned, still_queued)
        return QueueDrainResponse(assigned=assigned, still_queued=still_queued)

    def route_or_queue(self, record: JobRecord, *, correlation_id: str) -> None:
        try:
            self.route_job(record, correlation_id=correlation_id)
        except Exception:
            with self._store.job_mutation():
                record.queued = self._needs_routing(record)
            logger.exception(
                "job.routing_failed job_id=%s status=%s correlation_id=%s",
                safe_log_identifier(record.id, prefix=JOB_PREFIX),
                record.status.value,
                safe_log_identifier(correlation_id, prefix=CORRELATION_PREFIX),
            )

    def _needs_routing(self, record: JobRecord) -> bool:
        if record.status is JobStatus.PENDING and uses_pipeline(record.tier):
            return True
        return self._assignments.awaiting_worker(record)

    def _to_job(self, record: JobRecord) -> Job:
        return Job(
            id=record.id,
            tier=record.tier,
            status=record.status,
            queued=record.queued,
            quantity_requested=record.quantity_requested,
            add_ons=list(record.add_ons),
            file_reference=record.file_reference,
            funding=breakdown_to_schema(record.funding),
            debit_entry_id=record.debit_entry_id,
            refund_entry_id=record.refund_entry_id,
            assignment_id=record.assignment_id,
            pipeline_attempts=record.pipeline_attempts,
            failure_code=record.failure_code,
            transcript=record.transcript,
            created_at=record.created_at,
            updated_at=record.updated_at,
            status_timestamps=dict(record.status_timestamps),
        )
