"""Job routes."""

from typing import Annotated

from fastapi import APIRouter, Depends, Path, status

from scribeflow.routes.dependencies import get_job_service, get_request_correlation_id, require_customer
from scribeflow.schemas.auth import AuthPrincipal
from scribeflow.schemas.error import (
    ActiveAssignmentError,
    ErrorResponse,
    FsmTransitionError,
    InsufficientFundsErrorPayload,
    NoLeakNotFoundError,
    ProcessingDelayedErrorPayload,
)
from scribeflow.schemas.job import Job, JobStatus, SubmitJobRequest
from scribeflow.services.jobs import JobService

router = APIRouter(prefix="/jobs", tags=["Jobs"])


@router.post(
    "",
    response_model=Job,
    status_code=status.HTTP_201_CREATED,
    responses={
        401: {"model": ErrorResponse},
        402: {"model": InsufficientFundsErrorPayload},
        503: {"model": ProcessingDelayedErrorPayload},
    },
)
async def submit_job(
    payload: SubmitJobRequest,
    principal: Annotated[AuthPrincipal, Depends(require_customer)],
    service: Annotated[JobService, Depends(get_job_service)],
    correlation_id: Annotated[str, Depends(get_request_correlation_id)],
) -> Job:
    return service.submit_job(
        account_id=principal.user_id,
        file_reference=payload.file_reference,
        requested_units=payload.requested_units,
        tier=payload.tier,
        add_ons=payload.add_ons,
        language=payload.language,
        correlation_id=correlation_id,
    )


@router.get("", response_model=list[Job])
async def list_jobs(
    principal: Annotated[AuthPrincipal, Depends(require_customer)],
    service: Annotated[JobService, Depends(get_job_service)],
    status: JobStatus | None = None,
) -> list[Job]:
    return service.list_jobs(account_id=principal.user_id, status=status)


@router.get(
    "/{jobId}",
    response_model=Job,
    responses={404: {"model": NoLeakNotFoundError}},
)
async def get_job(
    job_id: Annotated[str, Path(alias="jobId")],
    principal: Annotated[AuthPrincipal, Depends(require_customer)],
    service: Annotated[JobService, Depends(get_job_service)],
) -> Job:
    return service.get_job(account_id=principal.user_id, job_id=job_id)


@router.post(
    "/{jobId}/cancel",
    response_model=Job,
    responses={
        404: {"model": NoLeakNotFoundError},
        409: {"model": FsmTransitionError | ActiveAssignmentError},
    },
)
async def cancel_job(
    job_id: Annotated[str, Path(alias="jobId")],
    principal: Annotated[AuthPrincipal, Depends(require_customer)],
    service: Annotated[JobService, Depends(get_job_service)],
    correlation_id: Annotated[str, Depends(get_request_correlation_id)],
) -> Job:
    return service.cancel_job(account_id=principal.user_id, job_id=job_id, correlation_id=correlation_id)
