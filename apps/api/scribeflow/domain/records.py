"""Entity records shared by the domain rules, the services and the store."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Literal

from scribeflow.domain.funding import SourceBreakdown
from scribeflow.schemas.assignment import AssignmentStatus, WorkerStatus
from scribeflow.schemas.balance import LedgerEntryKind
from scribeflow.schemas.job import JobStatus
from scribeflow.schemas.pricing import AddOn, ServiceTier

_OPEN_ASSIGNMENT_STATUSES = frozenset({AssignmentStatus.ASSIGNED, AssignmentStatus.IN_PROGRESS})

ActorType = Literal["customer", "transcriber", "admin", "pipeline", "system"]


@dataclass(slots=True)
class PackageRecord:
    id: str
    name: str
    tier: ServiceTier
    units_total: Decimal
    unit_rate: Decimal
    purchased_at: datetime
    expires_at: datetime
    units_used: Decimal = Decimal("0")

    @property
    def units_remaining(self) -> Decimal:
        return self.units_total - self.units_used

    def is_active(self, now: datetime) -> bool:
        return self.units_remaining > 0 and now < self.expires_at


@dataclass(slots=True)
class AccountBalanceRecord:
    account_id: str
    created_at: datetime
    updated_at: datetime
    trial_units_remaining: Decimal = Decimal("0")
    trial_units_used: Decimal = Decimal("0")
    trial_expires_at: datetime | None = None
    wallet_balance: Decimal = Decimal("0.00")
    packages: list[PackageRecord] = field(default_factory=list)
    version: int = 0

    def trial_available(self, now: datetime) -> bool:
        if self.trial_expires_at is None:
            return False
        return self.trial_units_remaining > 0 and now < self.trial_expires_at

    def get_package(self, package_id: str) -> PackageRecord | None:
        for package in self.packages:
            if package.id == package_id:
                return package
        return None


@dataclass(frozen=True, slots=True)
class LedgerEntryRecord:
    id: int
    account_id: str
    kind: LedgerEntryKind
    amount: Decimal
    breakdown: SourceBreakdown
    created_at: datetime
    description: str = ""
    related_job_id: str | None = None
    refund_of_entry_id: int | None = None
    idempotency_key: str | None = None
    payment_reference: str | None = None


@dataclass(slots=True)
class JobRecord:
    id: str
    account_id: str
    tier: ServiceTier
    quantity_requested: Decimal
    file_reference: str
    add_ons: tuple[AddOn, ...]
    language: str
    funding: SourceBreakdown
    debit_entry_id: int
    status: JobStatus
    created_at: datetime
    correlation_id: str
    updated_at: datetime | None = None
    queued: bool = False
    assignment_id: str | None = None
    refund_entry_id: int | None = None
    external_job_id: str | None = None
    pipeline_attempts: int = 0
    next_attempt_at: datetime | None = None
    failure_code: str | None = None
    failure_message: str | None = None
    transcript: str | None = None
    status_timestamps: dict[JobStatus, datetime] = field(default_factory=dict)


@dataclass(slots=True)
class HumanWorkerRecord:
    id: str
    name: str
    status: WorkerStatus
    quality_rating: Decimal
    registered_at: datetime
    registration_seq: int


@dataclass(slots=True)
class AssignmentRecord:
    id: str
    job_id: str
    worker_id: str
    status: AssignmentStatus
    estimated_units: Decimal
    assigned_at: datetime
    started_at: datetime | None = None
    completed_at: datetime | None = None
    result: str | None = None
    notes: str | None = None

    @property
    def is_open(self) -> bool:
        return self.status in _OPEN_ASSIGNMENT_STATUSES


@dataclass(slots=True)
class TransitionAuditRecord:
    event_type: str
    job_id: str
    account_id: str
    actor_type: ActorType
    prev_status: JobStatus
    new_status: JobStatus
    occurred_at: datetime
    correlation_id: str
