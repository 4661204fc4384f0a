"""Human worker and assignment API schemas."""

from datetime import datetime
from decimal import Decimal
from enum import Enum

from pydantic import BaseModel, Field


class WorkerStatus(str, Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"


class AssignmentStatus(str, Enum):
    ASSIGNED = "assigned"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"


class HumanWorker(BaseModel):
    id: str
    name: str
    status: WorkerStatus
    quality_rating: Decimal
    registered_at: datetime


class RegisterWorkerRequest(BaseModel):
    worker_id: str | None = Field(default=None, min_length=1)
    name: str = Field(min_length=1)
    quality_rating: Decimal = Field(default=Decimal("5.0"), ge=0, le=5)


class UpdateWorkerStatusRequest(BaseModel):
    status: WorkerStatus


class Assignment(BaseModel):
    id: str
    job_id: str
    worker_id: str
    status: AssignmentStatus
    estimated_units: Decimal
    assigned_at: datetime
    started_at: datetime | None = None
    completed_at: datetime | None = None


class SubmitAssignmentRequest(BaseModel):
    result: str = Field(min_length=1)
    notes: str | None = None
