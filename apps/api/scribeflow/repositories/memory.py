"""In-memory repositories used by the API scaffold and tests."""

from __future__ import annotations

import copy
import dataclasses
import threading
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from itertools import count
from typing import Literal
from uuid import uuid4

from scribeflow.core.clock import Clock, utcnow
from scribeflow.domain.funding import SourceBreakdown
from scribeflow.domain.job_fsm import ensure_transition
from scribeflow.domain.records import (
    AccountBalanceRecord,
    ActorType,
    AssignmentRecord,
    HumanWorkerRecord,
    JobRecord,
    LedgerEntryRecord,
    TransitionAuditRecord,
)
from scribeflow.schemas.assignment import AssignmentStatus, WorkerStatus
from scribeflow.schemas.balance import LedgerEntryKind
from scribeflow.schemas.job import JobStatus
from scribeflow.schemas.pricing import AddOn, ServiceTier

_TRANSITION_AUDIT_EVENT_TYPE = "JOB_STATUS_TRANSITION_APPLIED"
_LEDGER_FAILPOINT_STAGES = ("after_stage", "before_publish")


@dataclass(slots=True)
class AccountTransaction:
    """Scope of one atomic account mutation; entries publish only on commit."""

    account: AccountBalanceRecord
    now: datetime
    pending_entries: list[LedgerEntryRecord] = field(default_factory=list)


@dataclass(slots=True)
class InMemoryStore:
    """Simple, deterministic persistence layer for scaffolding and tests.

    Balance mutations serialize per account; the ledger publishes a
    transaction's entries in the same critical section that commits the
    balance change. Worker and assignment reads are deliberately unlocked.
    """

    clock: Clock = utcnow
    accounts: dict[str, AccountBalanceRecord] = field(default_factory=dict)
    ledger_entries: list[LedgerEntryRecord] = field(default_factory=list)
    jobs: dict[str, JobRecord] = field(default_factory=dict)
    workers: dict[str, HumanWorkerRecord] = field(default_factory=dict)
    assignments: dict[str, AssignmentRecord] = field(default_factory=dict)
    transition_audit_events: list[TransitionAuditRecord] = field(default_factory=list)
    account_write_count: int = 0
    job_write_count: int = 0
    assignment_write_count: int = 0
    ledger_failpoint_stage: Literal["after_stage", "before_publish"] | None = None
    ledger_failpoint_message: str = "Injected ledger persistence failure"
    assignment_failpoint_message: str | None = None
    _entries_by_id: dict[int, LedgerEntryRecord] = field(default_factory=dict)
    _entry_by_idempotency: dict[tuple[str, str], int] = field(default_factory=dict)
    _refund_by_debit: dict[int, int] = field(default_factory=dict)
    _entry_by_payment_reference: dict[str, int] = field(default_factory=dict)
    _entry_ids: Iterator[int] = field(default_factory=lambda: count(1))
    _worker_seq: Iterator[int] = field(default_factory=lambda: count(1))
    _account_locks: dict[str, threading.Lock] = field(default_factory=dict)
    _registry_lock: threading.Lock = field(default_factory=threading.Lock)
    _ledger_lock: threading.Lock = field(default_factory=threading.Lock)
    _payments_lock: threading.Lock = field(default_factory=threading.Lock)
    _jobs_lock: threading.RLock = field(default_factory=threading.RLock)

    # -- accounts -----------------------------------------------------------

    def _account_lock(self, account_id: str) -> threading.Lock:
        with self._registry_lock:
            lock = self._account_locks.get(account_id)
            if lock is None:
                lock = threading.Lock()
                self._account_locks[account_id] = lock
            return lock

    def _get_or_create_account_locked(self, account_id: str) -> AccountBalanceRecord:
        account = self.accounts.get(account_id)
        if account is None:
            now = self.clock()
            account = AccountBalanceRecord(account_id=account_id, created_at=now, updated_at=now)
            self.accounts[account_id] = account
        return account

    def snapshot_account(self, account_id: str) -> AccountBalanceRecord:
        """Consistent detached copy of an account, created lazily on first access."""
        with self._account_lock(account_id):
            return copy.deepcopy(self._get_or_create_account_locked(account_id))

    @contextmanager
    def account_transaction(self, account_id: str) -> Iterator[AccountTransaction]:
        """Serialize one account's read-modify-write; roll back everything on failure."""
        with self._account_lock(account_id):
            account = self._get_or_create_account_locked(account_id)
            before = copy.deepcopy(account)
            txn = AccountTransaction(account=account, now=self.clock())
            try:
                yield txn
                if txn.pending_entries:
                    self._maybe_raise_ledger_failpoint("before_publish")
                    account.version += 1
                    account.updated_at = txn.now
                    self._publish_entries(txn.pending_entries)
                    self.account_write_count += 1
            except BaseException:
                self._restore_account(account, before)
                raise

    @staticmethod
    def _restore_account(account: AccountBalanceRecord, before: AccountBalanceRecord) -> None:
        for item in dataclasses.fields(AccountBalanceRecord):
            setattr(account, item.name, getattr(before, item.name))

    # -- ledger -------------------------------------------------------------

    def stage_ledger_entry(
        self,
        txn: AccountTransaction,
        *,
        kind: LedgerEntryKind,
        amount: Decimal,
        breakdown: SourceBreakdown,
        description: str,
        related_job_id: str | None = None,
        refund_of_entry_id: int | None = None,
        idempotency_key: str | None = None,
        payment_reference: str | None = None,
    ) -> LedgerEntryRecord:
        with self._ledger_lock:
            entry_id = next(self._entry_ids)
        entry = LedgerEntryRecord(
            id=entry_id,
            account_id=txn.account.account_id,
            kind=kind,
            amount=amount,
            breakdown=breakdown,
            created_at=txn.now,
            description=description,
            related_job_id=related_job_id,
            refund_of_entry_id=refund_of_entry_id,
            idempotency_key=idempotency_key,
            payment_reference=payment_reference,
        )
        txn.pending_entries.append(entry)
        self._maybe_raise_ledger_failpoint("after_stage")
        return entry

    def _publish_entries(self, entries: list[LedgerEntryRecord]) -> None:
        with self._ledger_lock:
            for entry in entries:
                self.ledger_entries.append(entry)
                self._entries_by_id[entry.id] = entry
                if entry.idempotency_key is not None:
                    self._entry_by_idempotency[(entry.account_id, entry.idempotency_key)] = entry.id
                if entry.refund_of_entry_id is not None:
                    self._refund_by_debit[entry.refund_of_entry_id] = entry.id
                if entry.payment_reference is not None:
                    self._entry_by_payment_reference[entry.payment_reference] = entry.id

    def get_ledger_entry(self, entry_id: int) -> LedgerEntryRecord | None:
        return self._entries_by_id.get(entry_id)

    def find_entry_by_idempotency(self, account_id: str, idempotency_key: str) -> LedgerEntryRecord | None:
        entry_id = self._entry_by_idempotency.get((account_id, idempotency_key))
        return self._entries_by_id.get(entry_id) if entry_id is not None else None

    def find_refund_for(self, debit_entry_id: int) -> LedgerEntryRecord | None:
        entry_id = self._refund_by_debit.get(debit_entry_id)
        return self._entries_by_id.get(entry_id) if entry_id is not None else None

    @contextmanager
    def payment_reference_guard(self) -> Iterator[None]:
        """Serialize purchase credits across accounts so a payment reference applies once.

        Taken before any account lock.
        """
        with self._payments_lock:
            yield

    def find_entry_by_payment_reference(self, payment_reference: str) -> LedgerEntryRecord | None:
        entry_id = self._entry_by_payment_reference.get(payment_reference)
        return self._entries_by_id.get(entry_id) if entry_id is not None else None

    def list_ledger_entries(self, account_id: str) -> list[LedgerEntryRecord]:
        with self._ledger_lock:
            entries = [entry for entry in self.ledger_entries if entry.account_id == account_id]
        entries.sort(key=lambda entry: entry.id)
        return entries

    def _maybe_raise_ledger_failpoint(self, stage: Literal["after_stage", "before_publish"]) -> None:
        if stage not in _LEDGER_FAILPOINT_STAGES:
            return
        if self.ledger_failpoint_stage != stage:
            return

        self.ledger_failpoint_stage = None
        raise RuntimeError(self.ledger_failpoint_message)

    # -- jobs ---------------------------------------------------------------

    def create_job(
        self,
        *,
        job_id: str,
        account_id: str,
        tier: ServiceTier,
        quantity_requested: Decimal,
        file_reference: str,
        add_ons: tuple[AddOn, ...],
        language: str,
        funding: SourceBreakdown,
        debit_entry_id: int,
        correlation_id: str,
    ) -> JobRecord:
        now = self.clock()
        job = JobRecord(
            id=job_id,
            account_id=account_id,
            tier=tier,
            quantity_requested=quantity_requested,
            file_reference=file_reference,
            add_ons=add_ons,
            language=language,
            funding=funding,
            debit_entry_id=debit_entry_id,
            status=JobStatus.PENDING,
            created_at=now,
            updated_at=now,
            correlation_id=correlation_id,
            status_timestamps={JobStatus.PENDING: now},
        )
        with self._jobs_lock:
            self.jobs[job.id] = job
            self.job_write_count += 1
        return job

    def get_job(self, job_id: str) -> JobRecord | None:
        return self.jobs.get(job_id)

    def get_job_for_account(self, account_id: str, job_id: str) -> JobRecord | None:
        job = self.jobs.get(job_id)
        if job is None or job.account_id != account_id:
            return None
        return job

    def list_jobs(self, *, account_id: str | None = None, status: JobStatus | None = None) -> list[JobRecord]:
        jobs = [
            job
            for job in list(self.jobs.values())
            if (account_id is None or job.account_id == account_id) and (status is None or job.status is status)
        ]
        jobs.sort(key=lambda job: job.created_at)
        return jobs

    def list_queued_jobs(self) -> list[JobRecord]:
        return [job for job in self.list_jobs() if job.queued]

    def list_due_pipeline_jobs(self, now: datetime) -> list[JobRecord]:
        return [
            job
            for job in self.list_jobs(status=JobStatus.PROCESSING)
            if job.next_attempt_at is None or job.next_attempt_at <= now
        ]

    @contextmanager
    def job_mutation(self) -> Iterator[None]:
        """Serialize multi-field job updates (status + links) against each other."""
        with self._jobs_lock:
            yield

    def transition_job_status(
        self,
        *,
        job: JobRecord,
        new_status: JobStatus,
        actor_type: ActorType = "system",
        correlation_id: str | None = None,
    ) -> None:
        """Apply an FSM-validated status mutation with consistent write bookkeeping."""
        with self._jobs_lock:
            ensure_transition(job.tier, job.status, new_status)
            now = self.clock()
            previous_status = job.status
            job.status = new_status
            job.updated_at = now
            job.status_timestamps[new_status] = now
            self.transition_audit_events.append(
                TransitionAuditRecord(
                    event_type=_TRANSITION_AUDIT_EVENT_TYPE,
                    job_id=job.id,
                    account_id=job.account_id,
                    actor_type=actor_type,
                    prev_status=previous_status,
                    new_status=new_status,
                    occurred_at=now,
                    correlation_id=correlation_id or job.correlation_id,
                )
            )
            self.job_write_count += 1

    # -- workers ------------------------------------------------------------

    def register_worker(
        self,
        *,
        name: str,
        quality_rating: Decimal,
        worker_id: str | None = None,
    ) -> HumanWorkerRecord:
        with self._registry_lock:
            worker = HumanWorkerRecord(
                id=worker_id or f"worker-{uuid4()}",
                name=name,
                status=WorkerStatus.ACTIVE,
                quality_rating=quality_rating,
                registered_at=self.clock(),
                registration_seq=next(self._worker_seq),
            )
            self.workers[worker.id] = worker
        return worker

    def get_worker(self, worker_id: str) -> HumanWorkerRecord | None:
        return self.workers.get(worker_id)

    def list_workers(self, *, status: WorkerStatus | None = None) -> list[HumanWorkerRecord]:
        workers = [w for w in list(self.workers.values()) if status is None or w.status is status]
        workers.sort(key=lambda worker: worker.registration_seq)
        return workers

    def set_worker_status(self, worker: HumanWorkerRecord, status: WorkerStatus) -> None:
        worker.status = status

    # -- assignments --------------------------------------------------------

    def get_assignment(self, assignment_id: str) -> AssignmentRecord | None:
        return self.assignments.get(assignment_id)

    def list_open_assignments(self) -> list[AssignmentRecord]:
        return [assignment for assignment in list(self.assignments.values()) if assignment.is_open]

    def list_assignments_for_worker(self, worker_id: str, *, open_only: bool = False) -> list[AssignmentRecord]:
        assignments = [
            assignment
            for assignment in list(self.assignments.values())
            if assignment.worker_id == worker_id and (not open_only or assignment.is_open)
        ]
        assignments.sort(key=lambda assignment: assignment.assigned_at)
        return assignments

    def create_assignment_for_job(
        self,
        *,
        job: JobRecord,
        worker_id: str,
        estimated_units: Decimal,
        new_status: JobStatus | None,
        correlation_id: str | None = None,
    ) -> AssignmentRecord:
        """Atomically write the assignment and the job's link/status; rollback everything on failure."""
        with self._jobs_lock:
            previous_status = job.status
            previous_updated_at = job.updated_at
            previous_timestamps = dict(job.status_timestamps)
            previous_assignment_id = job.assignment_id
            previous_queued = job.queued
            previous_job_write_count = self.job_write_count
            previous_audit_count = len(self.transition_audit_events)

            assignment = AssignmentRecord(
                id=f"asg-{uuid4()}",
                job_id=job.id,
                worker_id=worker_id,
                status=AssignmentStatus.ASSIGNED,
                estimated_units=estimated_units,
                assigned_at=self.clock(),
            )
            try:
                self.assignments[assignment.id] = assignment
                job.assignment_id = assignment.id
                job.queued = False
                if new_status is not None:
                    self.transition_job_status(
                        job=job,
                        new_status=new_status,
                        actor_type="system",
                        correlation_id=correlation_id,
                    )
                if self.assignment_failpoint_message is not None:
                    message = self.assignment_failpoint_message
                    self.assignment_failpoint_message = None
                    raise RuntimeError(message)
            except Exception:
                self.assignments.pop(assignment.id, None)
                job.status = previous_status
                job.updated_at = previous_updated_at
                job.status_timestamps = previous_timestamps
                job.assignment_id = previous_assignment_id
                job.queued = previous_queued
                self.job_write_count = previous_job_write_count
                if len(self.transition_audit_events) > previous_audit_count:
                    del self.transition_audit_events[previous_audit_count:]
                raise

            self.assignment_write_count += 1
            return assignment

    def update_assignment(self, assignment: AssignmentRecord, **changes: object) -> None:
        with self._jobs_lock:
            for name, value in changes.items():
                setattr(assignment, name, value)
            self.assignment_write_count += 1
