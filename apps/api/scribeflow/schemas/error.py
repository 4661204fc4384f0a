"""API error response schemas."""

from decimal import Decimal
from typing import Any
from typing import Literal

from pydantic import BaseModel

from scribeflow.schemas.job import JobStatus
from scribeflow.schemas.pricing import ServiceTier


class ErrorResponse(BaseModel):
    code: str
    message: str
    details: dict[str, Any] | None = None


class TransitionErrorDetails(BaseModel):
    tier: ServiceTier
    current_status: JobStatus
    attempted_status: JobStatus
    allowed_next_statuses: list[JobStatus] | None = None


class FsmTransitionError(BaseModel):
    code: Literal["FSM_TRANSITION_INVALID", "FSM_TERMINAL_IMMUTABLE"]
    message: str
    details: TransitionErrorDetails


class ActiveAssignmentErrorDetails(BaseModel):
    current_status: JobStatus
    assignment_id: str


class ActiveAssignmentError(BaseModel):
    code: Literal["JOB_HAS_ACTIVE_ASSIGNMENT"]
    message: str
    details: ActiveAssignmentErrorDetails


class InsufficientFundsErrorDetails(BaseModel):
    shortfall: Decimal
    wallet_cost: Decimal
    wallet_balance: Decimal


class InsufficientFundsErrorPayload(BaseModel):
    code: Literal["INSUFFICIENT_FUNDS"]
    message: str
    details: InsufficientFundsErrorDetails


class ProcessingDelayedErrorDetails(BaseModel):
    correlation_id: str


class ProcessingDelayedErrorPayload(BaseModel):
    code: Literal["PROCESSING_DELAYED"]
    message: str
    details: ProcessingDelayedErrorDetails


class NoLeakNotFoundError(BaseModel):
    code: Literal["RESOURCE_NOT_FOUND"]
    message: str
