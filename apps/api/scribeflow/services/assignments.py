"""Human worker pool and assignment lifecycle."""

from __future__ import annotations

from collections.abc import Callable
from decimal import Decimal
import logging

from scribeflow.core.logging_safety import (
    ASSIGNMENT_PREFIX,
    CORRELATION_PREFIX,
    JOB_PREFIX,
    WORKER_PREFIX,
    format_amount,
    safe_log_identifier,
)
from scribeflow.domain.job_router import HUMAN_WORK_STATES, next_status_after_review, status_on_assignment
from scribeflow.domain.records import AssignmentRecord, HumanWorkerRecord, JobRecord
from scribeflow.domain.workload import estimate_effort
from scribeflow.errors import ApiError, not_found
from scribeflow.repositories.memory import InMemoryStore
from scribeflow.schemas.assignment import Assignment, AssignmentStatus, HumanWorker, WorkerStatus
from scribeflow.schemas.job import JobStatus
from scribeflow.services.workload import WorkloadBalancer

logger = logging.getLogger(__name__)

CapacityListener = Callable[[], object]


class AssignmentService:
    def __init__(
        self,
        store: InMemoryStore,
        *,
        balancer: WorkloadBalancer,
        effort_multiplier: Decimal = Decimal("4"),
    ) -> None:
        self._store = store
        self._balancer = balancer
        self._effort_multiplier = effort_multiplier
        self._capacity_listeners: list[CapacityListener] = []

    def add_capacity_listener(self, listener: CapacityListener) -> None:
        """Register a callback run whenever worker capacity may have been freed."""
        self._capacity_listeners.append(listener)

    def _notify_capacity(self) -> None:
        for listener in self._capacity_listeners:
            listener()

    # -- workers ------------------------------------------------------------

    def register_worker(
        self,
        *,
        name: str,
        quality_rating: Decimal,
        worker_id: str | None = None,
    ) -> HumanWorker:
        if worker_id is not None and self._store.get_worker(worker_id) is not None:
            raise ApiError(
                status_code=409,
                code="WORKER_ALREADY_REGISTERED",
                message="A worker with this id is already registered.",
            )
        worker = self._store.register_worker(name=name, quality_rating=quality_rating, worker_id=worker_id)
        logger.info(
            "worker.registered worker_id=%s registration_seq=%s",
            safe_log_identifier(worker.id, prefix=WORKER_PREFIX),
            worker.registration_seq,
        )
        self._notify_capacity()
        return self._to_worker(worker)

    def set_worker_status(self, worker_id: str, status: WorkerStatus) -> HumanWorker:
        worker = self._store.get_worker(worker_id)
        if worker is None:
            raise not_found()

        previous = worker.status
        self._store.set_worker_status(worker, status)
        logger.info(
            "worker.status_changed worker_id=%s prev_status=%s new_status=%s",
            safe_log_identifier(worker.id, prefix=WORKER_PREFIX),
            previous.value,
            status.value,
        )
        if status is WorkerStatus.ACTIVE and previous is not WorkerStatus.ACTIVE:
            self._notify_capacity()
        return self._to_worker(worker)

    def list_assignments(self, worker_id: str, *, open_only: bool = True) -> list[Assignment]:
        records = self._store.list_assignments_for_worker(worker_id, open_only=open_only)
        return [self._to_assignment(record) for record in records]

    # -- assignment lifecycle -----------------------------------------------

    def awaiting_worker(self, job: JobRecord) -> bool:
        """True while ``job`` sits in its human stage without an open assignment."""
        with self._store.job_mutation():
            if job.status is not HUMAN_WORK_STATES.get(job.tier):
                return False
            current = self._store.get_assignment(job.assignment_id) if job.assignment_id else None
            return current is None or not current.is_open

    def try_assign(self, job: JobRecord, *, correlation_id: str | None = None) -> AssignmentRecord | None:
        """Assign ``job`` to the least-loaded worker, or leave it queued when nobody is active.

        A job that another caller assigned in the meantime keeps that assignment.
        """
        worker_id = self._balancer.select_worker(job.tier)
        with self._store.job_mutation():
            if not self.awaiting_worker(job):
                job.queued = False
                return self._store.get_assignment(job.assignment_id) if job.assignment_id else None
            if worker_id is None:
                job.queued = True
                logger.info(
                    "assignment.queued job_id=%s tier=%s status=%s",
                    safe_log_identifier(job.id, prefix=JOB_PREFIX),
                    job.tier.value,
                    job.status.value,
                )
                return None
            return self.create(job_id=job.id, worker_id=worker_id, correlation_id=correlation_id)

    def create(
        self,
        *,
        job_id: str,
        worker_id: str,
        estimated_units: Decimal | None = None,
        correlation_id: str | None = None,
    ) -> AssignmentRecord:
        job = self._store.get_job(job_id)
        if job is None:
            raise not_found()
        worker = self._store.get_worker(worker_id)
        if worker is None:
            raise not_found()
        if worker.status is not WorkerStatus.ACTIVE:
            raise ApiError(
                status_code=409,
                code="WORKER_INACTIVE",
                message="Assignments can only go to active workers.",
            )

        with self._store.job_mutation():
            waiting_status = HUMAN_WORK_STATES.get(job.tier)
            if waiting_status is None or job.status is not waiting_status:
                raise ApiError(
                    status_code=409,
                    code="JOB_NOT_ASSIGNABLE",
                    message="Job is not waiting for a human worker.",
                    details={"tier": job.tier, "current_status": job.status},
                )
            current = self._store.get_assignment(job.assignment_id) if job.assignment_id else None
            if current is not None and current.is_open:
                raise ApiError(
                    status_code=409,
                    code="JOB_HAS_ACTIVE_ASSIGNMENT",
                    message="Job already has an active assignment.",
                    details={"current_status": job.status, "assignment_id": current.id},
                )

            units = estimated_units
            if units is None:
                units = estimate_effort(job.quantity_requested, self._effort_multiplier)
            assignment = self._store.create_assignment_for_job(
                job=job,
                worker_id=worker_id,
                estimated_units=units,
                new_status=status_on_assignment(job.tier),
                correlation_id=correlation_id,
            )

        logger.info(
            "assignment.created assignment_id=%s job_id=%s worker_id=%s estimated_units=%s correlation_id=%s",
            safe_log_identifier(assignment.id, prefix=ASSIGNMENT_PREFIX),
            safe_log_identifier(job.id, prefix=JOB_PREFIX),
            safe_log_identifier(worker_id, prefix=WORKER_PREFIX),
            format_amount(units),
            safe_log_identifier(correlation_id or job.correlation_id, prefix=CORRELATION_PREFIX),
        )
        return assignment

    def start(self, *, assignment_id: str, worker_id: str, correlation_id: str | None = None) -> Assignment:
        assignment = self._owned_assignment(assignment_id, worker_id)
        job = self._store.get_job(assignment.job_id)
        if job is None:
            raise not_found()

        with self._store.job_mutation():
            self._ensure_assignment_status(assignment, AssignmentStatus.ASSIGNED)
            if job.status is JobStatus.ASSIGNED:
                self._store.transition_job_status(
                    job=job,
                    new_status=JobStatus.IN_PROGRESS,
                    actor_type="transcriber",
                    correlation_id=correlation_id,
                )
            self._store.update_assignment(
                assignment,
                status=AssignmentStatus.IN_PROGRESS,
                started_at=self._store.clock(),
            )

        logger.info(
            "assignment.started assignment_id=%s job_id=%s",
            safe_log_identifier(assignment.id, prefix=ASSIGNMENT_PREFIX),
            safe_log_identifier(job.id, prefix=JOB_PREFIX),
        )
        return self._to_assignment(assignment)

    def submit(
        self,
        *,
        assignment_id: str,
        worker_id: str,
        result: str,
        notes: str | None = None,
        correlation_id: str | None = None,
    ) -> Assignment:
        """Deliver the transcript, complete the job, then offer freed capacity to queued jobs."""
        assignment = self._owned_assignment(assignment_id, worker_id)
        job = self._store.get_job(assignment.job_id)
        if job is None:
            raise not_found()

        with self._store.job_mutation():
            self._ensure_assignment_status(assignment, AssignmentStatus.IN_PROGRESS)
            self._store.transition_job_status(
                job=job,
                new_status=next_status_after_review(job.tier),
                actor_type="transcriber",
                correlation_id=correlation_id,
            )
            job.transcript = result
            self._store.update_assignment(
                assignment,
                status=AssignmentStatus.COMPLETED,
                completed_at=self._store.clock(),
                result=result,
                notes=notes,
            )

        logger.info(
            "assignment.completed assignment_id=%s job_id=%s worker_id=%s",
            safe_log_identifier(assignment.id, prefix=ASSIGNMENT_PREFIX),
            safe_log_identifier(job.id, prefix=JOB_PREFIX),
            safe_log_identifier(worker_id, prefix=WORKER_PREFIX),
        )
        self._notify_capacity()
        return self._to_assignment(assignment)

    # -- helpers ------------------------------------------------------------

    def _owned_assignment(self, assignment_id: str, worker_id: str) -> AssignmentRecord:
        assignment = self._store.get_assignment(assignment_id)
        # Foreign assignments are indistinguishable from missing ones.
        if assignment is None or assignment.worker_id != worker_id:
            raise not_found()
        return assignment

    @staticmethod
    def _ensure_assignment_status(assignment: AssignmentRecord, expected: AssignmentStatus) -> None:
        if assignment.status is not expected:
            raise ApiError(
                status_code=409,
                code="ASSIGNMENT_STATE_INVALID",
                message="Assignment is not in a state that allows this action.",
                details={"current_status": assignment.status, "expected_status": expected},
            )

    @staticmethod
    def _to_worker(worker: HumanWorkerRecord) -> HumanWorker:
        return HumanWorker(
            id=worker.id,
            name=worker.name,
            status=worker.status,
            quality_rating=worker.quality_rating,
            registered_at=worker.registered_at,
        )

    @staticmethod
    def _to_assignment(assignment: AssignmentRecord) -> Assignment:
        return Assignment(
            id=assignment.id,
            job_id=assignment.job_id,
            worker_id=assignment.worker_id,
            status=assignment.status,
            estimated_units=assignment.estimated_units,
            assigned_at=assignment.assigned_at,
            started_at=assignment.started_at,
            completed_at=assignment.completed_at,
        )
