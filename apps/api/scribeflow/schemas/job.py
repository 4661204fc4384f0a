"""Job API schemas."""

from datetime import datetime
from decimal import Decimal
from enum import Enum

from pydantic import BaseModel, Field

from scribeflow.schemas.balance import SourceBreakdown
from scribeflow.schemas.pricing import AddOn, ServiceTier


class JobStatus(str, Enum):
    PENDING = "PENDING"
    PROCESSING = "PROCESSING"
    HUMAN_REVIEW = "HUMAN_REVIEW"
    ASSIGNED = "ASSIGNED"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"
    ERROR = "ERROR"
    CANCELLED = "CANCELLED"


class SubmitJobRequest(BaseModel):
    file_reference: str = Field(min_length=1)
    requested_units: Decimal = Field(gt=0)
    tier: ServiceTier
    add_ons: list[AddOn] = Field(default_factory=list)
    language: str = Field(default="en", min_length=2)


class Job(BaseModel):
    id: str
    tier: ServiceTier
    status: JobStatus
    queued: bool
    quantity_requested: Decimal
    add_ons: list[AddOn]
    file_reference: str
    funding: SourceBreakdown
    debit_entry_id: int
    refund_entry_id: int | None = None
    assignment_id: str | None = None
    pipeline_attempts: int
    failure_code: str | None = None
    transcript: str | None = None
    created_at: datetime
    updated_at: datetime | None = None
    status_timestamps: dict[JobStatus, datetime]
