"""Job submission, routing, assignment and pipeline driver tests."""

from __future__ import annotations

from datetime import timedelta
from decimal import Decimal
import unittest

from scribeflow.adapters.transcription import (
    MockTranscriptionPipeline,
    PipelineFatalError,
    PipelineResult,
    PipelineState,
    PipelineTransientError,
)
from scribeflow.core.clock import ManualClock
from scribeflow.domain.pricing import PricingTable, TierPrice
from scribeflow.errors import ApiError, InsufficientFundsError
from scribeflow.repositories.memory import InMemoryStore
from scribeflow.schemas.assignment import AssignmentStatus, WorkerStatus
from scribeflow.schemas.internal import PackageSpec, PurchaseConfirmedRequest
from scribeflow.schemas.job import JobStatus
from scribeflow.schemas.pricing import AddOn, ServiceTier
from scribeflow.services.assignments import AssignmentService
from scribeflow.services.jobs import JobService
from scribeflow.services.ledger import LedgerService
from scribeflow.services.pipeline import PipelineService
from scribeflow.services.workload import WorkloadBalancer

FLAT_PRICING = PricingTable(tiers={tier: TierPrice(standard_rate=Decimal("1.00")) for tier in ServiceTier})
ACCOUNT = "acct-routing"


class _RoutingCase(unittest.TestCase):
    def setUp(self) -> None:
        self.clock = ManualClock()
        self.store = InMemoryStore(clock=self.clock)
        self.ledger = LedgerService(self.store, pricing=FLAT_PRICING)
        self.assignments = AssignmentService(
            self.store,
            balancer=WorkloadBalancer(self.store),
            effort_multiplier=Decimal("4"),
        )
        self.jobs = JobService(self.store, ledger=self.ledger, assignments=self.assignments)
        self.pipeline = MockTranscriptionPipeline()
        self.pipeline_service = PipelineService(
            self.store,
            pipeline=self.pipeline,
            jobs=self.jobs,
            max_retries=3,
            backoff_base_seconds=30,
        )
        self.ledger.credit_purchase(
            PurchaseConfirmedRequest(
                account_id=ACCOUNT,
                payment_reference="pay-routing-1",
                kind="wallet_topup",
                amount_confirmed=Decimal("100.00"),
            )
        )

    def _submit(self, tier: ServiceTier, units: str = "5", **kwargs: object):
        return self.jobs.submit_job(
            account_id=ACCOUNT,
            file_reference="s3://bucket/interview.wav",
            requested_units=Decimal(units),
            tier=tier,
            **kwargs,
        )

    def _wallet(self) -> Decimal:
        return self.ledger.get_balance(ACCOUNT).wallet_balance


class HumanRoutingTests(_RoutingCase):
    def test_human_job_without_workers_stays_pending_and_queued(self) -> None:
        job = self._submit(ServiceTier.HUMAN)

        self.assertEqual(job.status, JobStatus.PENDING)
        self.assertTrue(job.queued)
        self.assertIsNone(job.assignment_id)
        self.assertEqual(self._wallet(), Decimal("95.00"))
        self.assertEqual(self.store.get_ledger_entry(job.debit_entry_id).related_job_id, job.id)

    def test_worker_registration_drains_the_queue_oldest_first(self) -> None:
        older = self._submit(ServiceTier.HUMAN, units="2")
        self.clock.advance(seconds=1)
        newer = self._submit(ServiceTier.HUMAN, units="3")

        worker = self.assignments.register_worker(name="Ana", quality_rating=Decimal("4.8"))

        older_record = self.store.get_job(older.id)
        newer_record = self.store.get_job(newer.id)
        self.assertEqual(older_record.status, JobStatus.ASSIGNED)
        self.assertEqual(newer_record.status, JobStatus.ASSIGNED)
        self.assertFalse(older_record.queued)
        assignment = self.store.get_assignment(older_record.assignment_id)
        self.assertEqual(assignment.worker_id, worker.id)
        self.assertEqual(assignment.estimated_units, Decimal("8"))

    def test_new_job_goes_to_least_loaded_worker(self) -> None:
        first = self.assignments.register_worker(name="First", quality_rating=Decimal("5"), worker_id="worker-1")
        second = self.assignments.register_worker(name="Second", quality_rating=Decimal("5"), worker_id="worker-2")

        big = self._submit(ServiceTier.HUMAN, units="10")
        small = self._submit(ServiceTier.HUMAN, units="1")
        third = self._submit(ServiceTier.HUMAN, units="1")

        self.assertEqual(self.store.get_assignment(big.assignment_id).worker_id, first.id)
        self.assertEqual(self.store.get_assignment(small.assignment_id).worker_id, second.id)
        self.assertEqual(self.store.get_assignment(third.assignment_id).worker_id, second.id)

    def test_human_lifecycle_start_and_submit(self) -> None:
        worker = self.assignments.register_worker(name="Ana", quality_rating=Decimal("5"), worker_id="worker-ana")
        job = self._submit(ServiceTier.HUMAN)

        started = self.assignments.start(assignment_id=job.assignment_id, worker_id=worker.id)
        self.assertEqual(started.status, AssignmentStatus.IN_PROGRESS)
        self.assertEqual(self.store.get_job(job.id).status, JobStatus.IN_PROGRESS)

        submitted = self.assignments.submit(
            assignment_id=job.assignment_id,
            worker_id=worker.id,
            result="Hello world.",
            notes="clean audio",
        )

        record = self.store.get_job(job.id)
        self.assertEqual(submitted.status, AssignmentStatus.COMPLETED)
        self.assertIsNotNone(submitted.completed_at)
        self.assertEqual(record.status, JobStatus.COMPLETED)
        self.assertEqual(record.transcript, "Hello world.")

    def test_reactivated_worker_picks_up_queued_jobs(self) -> None:
        worker = self.assignments.register_worker(name="Solo", quality_rating=Decimal("5"), worker_id="worker-solo")
        first = self._submit(ServiceTier.HUMAN)
        self.assignments.set_worker_status(worker.id, WorkerStatus.INACTIVE)
        queued = self._submit(ServiceTier.HUMAN)
        self.assertTrue(queued.queued)

        self.assignments.start(assignment_id=first.assignment_id, worker_id=worker.id)
        self.assignments.set_worker_status(worker.id, WorkerStatus.ACTIVE)

        self.assertEqual(self.store.get_job(queued.id).status, JobStatus.ASSIGNED)

    def test_only_the_assigned_worker_may_act(self) -> None:
        self.assignments.register_worker(name="Ana", quality_rating=Decimal("5"), worker_id="worker-ana")
        job = self._submit(ServiceTier.HUMAN)

        with self.assertRaises(ApiError) as started:
            self.assignments.start(assignment_id=job.assignment_id, worker_id="worker-intruder")
        with self.assertRaises(ApiError) as submitted:
            self.assignments.submit(assignment_id=job.assignment_id, worker_id="worker-intruder", result="stolen")

        for context in (started, submitted):
            self.assertEqual(context.exception.status_code, 404)
            self.assertEqual(context.exception.payload.code, "RESOURCE_NOT_FOUND")

    def test_submit_before_start_is_rejected(self) -> None:
        self.assignments.register_worker(name="Ana", quality_rating=Decimal("5"), worker_id="worker-ana")
        job = self._submit(ServiceTier.HUMAN)

        with self.assertRaises(ApiError) as context:
            self.assignments.submit(assignment_id=job.assignment_id, worker_id="worker-ana", result="early")

        self.assertEqual(context.exception.payload.code, "ASSIGNMENT_STATE_INVALID")
        self.assertEqual(self.store.get_job(job.id).status, JobStatus.ASSIGNED)

    def test_assignment_write_failure_keeps_debit_and_queues_job(self) -> None:
        job = self._submit(ServiceTier.HUMAN)
        self.store.assignment_failpoint_message = "Injected assignment failure"

        with self.assertLogs("scribeflow.services.jobs", level="ERROR"):
            self.assignments.register_worker(name="Ana", quality_rating=Decimal("5"))

        record = self.store.get_job(job.id)
        self.assertEqual(record.status, JobStatus.PENDING)
        self.assertTrue(record.queued)
        self.assertIsNone(record.assignment_id)
        self.assertEqual(self.store.assignments, {})
        self.assertEqual(self.store.transition_audit_events, [])
        self.assertEqual(self._wallet(), Decimal("95.00"))

        drained = self.jobs.assign_queued_jobs()
        self.assertEqual(drained.assigned, 1)
        self.assertEqual(drained.still_queued, 0)

    def test_job_assigned_by_a_competing_drain_is_not_left_queued(self) -> None:
        balancer = _InterleavingBalancer(self.store)
        assignments = AssignmentService(self.store, balancer=balancer)
        jobs = JobService(self.store, ledger=self.ledger, assignments=assignments)
        job = jobs.submit_job(
            account_id=ACCOUNT,
            file_reference="s3://bucket/race.wav",
            requested_units=Decimal("2"),
            tier=ServiceTier.HUMAN,
        )
        self.assertTrue(job.queued)

        balancer.between_selection_and_create = jobs.assign_queued_jobs
        assignments.register_worker(name="Ana", quality_rating=Decimal("5"))

        record = self.store.get_job(job.id)
        self.assertEqual(record.status, JobStatus.ASSIGNED)
        self.assertTrue(self.store.get_assignment(record.assignment_id).is_open)
        self.assertFalse(record.queued)
        self.assertEqual(len(self.store.assignments), 1)
        self.assertFalse(jobs.get_job(account_id=ACCOUNT, job_id=job.id).queued)

        drained = jobs.assign_queued_jobs()
        self.assertEqual((drained.assigned, drained.still_queued), (0, 0))


class _InterleavingBalancer(WorkloadBalancer):
    """Runs one extra callback after choosing a worker, as a concurrent caller would."""

    def __init__(self, store: InMemoryStore) -> None:
        super().__init__(store)
        self.between_selection_and_create = None

    def select_worker(self, tier: ServiceTier) -> str | None:
        worker_id = super().select_worker(tier)
        callback, self.between_selection_and_create = self.between_selection_and_create, None
        if callback is not None:
            callback()
        return worker_id


class SubmissionTests(_RoutingCase):
    def test_insufficient_funds_creates_no_job(self) -> None:
        with self.assertRaises(InsufficientFundsError) as context:
            self._submit(ServiceTier.AI, units="150")

        self.assertEqual(context.exception.shortfall, Decimal("50.00"))
        self.assertEqual(self.store.jobs, {})
        self.assertEqual(self._wallet(), Decimal("100.00"))

    def test_job_records_funding_breakdown(self) -> None:
        job = self._submit(ServiceTier.HYBRID, units="4", add_ons=[AddOn.RUSH_DELIVERY])

        self.assertEqual(job.funding.wallet_amount, Decimal("-4.00"))
        self.assertEqual(job.add_ons, [AddOn.RUSH_DELIVERY])
        self.assertEqual(job.status, JobStatus.PROCESSING)


class CancellationTests(_RoutingCase):
    def _buy_ai_package(self, units: str) -> str:
        result = self.ledger.credit_purchase(
            PurchaseConfirmedRequest(
                account_id=ACCOUNT,
                payment_reference="pay-package",
                kind="package",
                amount_confirmed=Decimal("6.00"),
                package=PackageSpec(name="ai-10", tier=ServiceTier.AI, units=Decimal(units), unit_rate=Decimal("0.60")),
            )
        )
        return result.package_id

    def test_cancel_processing_job_restores_package_units(self) -> None:
        package_id = self._buy_ai_package("10")
        job = self._submit(ServiceTier.AI, units="4")
        self.assertEqual(job.status, JobStatus.PROCESSING)
        self.assertEqual(self.ledger.get_balance(ACCOUNT).packages[0].units_remaining, Decimal("6"))

        cancelled = self.jobs.cancel_job(account_id=ACCOUNT, job_id=job.id)

        package = self.ledger.get_balance(ACCOUNT).packages[0]
        self.assertEqual(package.id, package_id)
        self.assertEqual(package.units_remaining, Decimal("10"))
        self.assertEqual(cancelled.status, JobStatus.CANCELLED)
        self.assertIsNotNone(cancelled.refund_entry_id)
        self.assertEqual(self._wallet(), Decimal("100.00"))

    def test_cancel_queued_human_job_refunds_wallet(self) -> None:
        job = self._submit(ServiceTier.HUMAN)

        cancelled = self.jobs.cancel_job(account_id=ACCOUNT, job_id=job.id)

        self.assertEqual(cancelled.status, JobStatus.CANCELLED)
        self.assertFalse(cancelled.queued)
        self.assertEqual(self._wallet(), Decimal("100.00"))

    def test_cancel_with_active_assignment_is_rejected(self) -> None:
        self.assignments.register_worker(name="Ana", quality_rating=Decimal("5"))
        job = self._submit(ServiceTier.HUMAN)

        with self.assertRaises(ApiError) as context:
            self.jobs.cancel_job(account_id=ACCOUNT, job_id=job.id)

        self.assertEqual(context.exception.status_code, 409)
        self.assertEqual(context.exception.payload.code, "JOB_HAS_ACTIVE_ASSIGNMENT")
        self.assertEqual(self._wallet(), Decimal("95.00"))

    def test_cancel_completed_job_is_terminal(self) -> None:
        job = self._submit(ServiceTier.AI)
        self.pipeline_service.tick()
        self.pipeline_service.tick()

        with self.assertRaises(ApiError) as context:
            self.jobs.cancel_job(account_id=ACCOUNT, job_id=job.id)

        self.assertEqual(context.exception.payload.code, "FSM_TERMINAL_IMMUTABLE")
        self.assertEqual(self._wallet(), Decimal("95.00"))

    def test_cancel_foreign_job_is_not_found(self) -> None:
        job = self._submit(ServiceTier.AI)

        with self.assertRaises(ApiError) as context:
            self.jobs.cancel_job(account_id="acct-intruder", job_id=job.id)

        self.assertEqual(context.exception.status_code, 404)


class PipelineDriverTests(_RoutingCase):
    def test_ai_job_completes_after_submit_and_poll(self) -> None:
        job = self._submit(ServiceTier.AI)

        first = self.pipeline_service.tick()
        second = self.pipeline_service.tick()

        record = self.store.get_job(job.id)
        self.assertEqual((first.submitted, second.completed), (1, 1))
        self.assertEqual(record.status, JobStatus.COMPLETED)
        self.assertEqual(record.transcript, "transcript of s3://bucket/interview.wav")

    def test_hybrid_job_moves_to_review_and_waits_for_a_worker(self) -> None:
        job = self._submit(ServiceTier.HYBRID)
        self.pipeline_service.tick()
        self.pipeline_service.tick()

        record = self.store.get_job(job.id)
        self.assertEqual(record.status, JobStatus.HUMAN_REVIEW)
        self.assertTrue(record.queued)

        worker = self.assignments.register_worker(name="Reviewer", quality_rating=Decimal("5"))
        self.assertEqual(record.status, JobStatus.HUMAN_REVIEW)
        self.assertIsNotNone(record.assignment_id)

        self.assignments.start(assignment_id=record.assignment_id, worker_id=worker.id)
        self.assignments.submit(assignment_id=record.assignment_id, worker_id=worker.id, result="Reviewed text.")

        self.assertEqual(record.status, JobStatus.COMPLETED)
        self.assertEqual(record.transcript, "Reviewed text.")

    def test_running_poll_leaves_job_processing(self) -> None:
        job = self._submit(ServiceTier.AI)
        self.pipeline.poll_results.append(PipelineResult(state=PipelineState.RUNNING))

        self.pipeline_service.tick()
        self.pipeline_service.tick()

        self.assertEqual(self.store.get_job(job.id).status, JobStatus.PROCESSING)

    def test_transient_failures_back_off_then_fail_without_refund(self) -> None:
        job = self._submit(ServiceTier.AI)
        for _ in range(4):
            self.pipeline.submit_failures.append(PipelineTransientError("provider busy"))

        self.assertEqual(self.pipeline_service.tick().retried, 1)
        record = self.store.get_job(job.id)
        self.assertEqual(record.pipeline_attempts, 1)
        self.assertEqual(record.next_attempt_at, self.clock() + timedelta(seconds=30))

        self.assertEqual(self.pipeline_service.tick().examined, 0)

        self.clock.advance(seconds=30)
        self.assertEqual(self.pipeline_service.tick().retried, 1)
        self.clock.advance(seconds=59)
        self.assertEqual(self.pipeline_service.tick().examined, 0)
        self.clock.advance(seconds=1)
        self.assertEqual(self.pipeline_service.tick().retried, 1)
        self.assertEqual(record.next_attempt_at, self.clock() + timedelta(seconds=120))
        self.clock.advance(seconds=120)

        with self.assertLogs("scribeflow.services.pipeline", level="ERROR"):
            self.assertEqual(self.pipeline_service.tick().failed, 1)

        # One first attempt plus three retries.
        self.assertEqual(record.pipeline_attempts, 4)
        self.assertEqual(len(self.pipeline.submit_failures), 0)
        self.assertEqual(record.status, JobStatus.ERROR)
        self.assertEqual(record.failure_code, "PIPELINE_RETRIES_EXHAUSTED")
        self.assertIsNone(record.refund_entry_id)
        self.assertEqual(self._wallet(), Decimal("95.00"))

        refunded = self.jobs.refund_failed_job(job_id=job.id, reason="provider outage")
        again = self.jobs.refund_failed_job(job_id=job.id, reason="provider outage")
        self.assertEqual(refunded.refund_entry_id, again.refund_entry_id)
        self.assertEqual(self._wallet(), Decimal("100.00"))

    def test_fatal_failure_moves_job_to_error_immediately(self) -> None:
        job = self._submit(ServiceTier.HYBRID)
        self.pipeline.poll_failures.append(PipelineFatalError("unsupported codec"))

        self.pipeline_service.tick()
        with self.assertLogs("scribeflow.services.pipeline", level="ERROR"):
            result = self.pipeline_service.tick()

        record = self.store.get_job(job.id)
        self.assertEqual(result.failed, 1)
        self.assertEqual(record.status, JobStatus.ERROR)
        self.assertEqual(record.failure_code, "PIPELINE_FATAL")
        self.assertEqual(record.pipeline_attempts, 0)

    def test_refund_requires_error_state(self) -> None:
        job = self._submit(ServiceTier.AI)

        with self.assertRaises(ApiError) as context:
            self.jobs.refund_failed_job(job_id=job.id, reason="not failed")

        self.assertEqual(context.exception.payload.code, "JOB_NOT_REFUNDABLE")

    def test_cancelled_job_is_skipped_by_the_driver(self) -> None:
        job = self._submit(ServiceTier.AI)
        self.pipeline_service.tick()
        self.jobs.cancel_job(account_id=ACCOUNT, job_id=job.id)

        result = self.pipeline_service.tick()

        self.assertEqual(result.examined, 0)
        self.assertEqual(self.store.get_job(job.id).status, JobStatus.CANCELLED)


if __name__ == "__main__":
    unittest.main()
