"""Administrative routes: ledger inspection, adjustments, refunds and the worker pool."""

from typing import Annotated

from fastapi import APIRouter, Depends, Path, status

from scribeflow.routes.dependencies import (
    get_assignment_service,
    get_job_service,
    get_ledger_service,
    get_request_correlation_id,
    require_admin,
)
from scribeflow.schemas.admin import AdjustmentRequest, RefundJobRequest
from scribeflow.schemas.assignment import HumanWorker, RegisterWorkerRequest, UpdateWorkerStatusRequest
from scribeflow.schemas.auth import AuthPrincipal
from scribeflow.schemas.balance import LedgerEntry, ReconciliationReport
from scribeflow.schemas.error import ErrorResponse, NoLeakNotFoundError, ProcessingDelayedErrorPayload
from scribeflow.schemas.job import Job, JobStatus
from scribeflow.services.assignments import AssignmentService
from scribeflow.services.jobs import JobService
from scribeflow.services.ledger import LedgerService, entry_to_schema

router = APIRouter(prefix="/admin", tags=["Admin"])

AdminPrincipal = Annotated[AuthPrincipal, Depends(require_admin)]


@router.get("/accounts/{accountId}/ledger", response_model=list[LedgerEntry])
async def get_account_ledger(
    account_id: Annotated[str, Path(alias="accountId")],
    _: AdminPrincipal,
    service: Annotated[LedgerService, Depends(get_ledger_service)],
) -> list[LedgerEntry]:
    return service.list_entries(account_id)


@router.get(
    "/accounts/{accountId}/reconciliation",
    response_model=ReconciliationReport,
    responses={500: {"model": ProcessingDelayedErrorPayload}},
)
async def reconcile_account(
    account_id: Annotated[str, Path(alias="accountId")],
    _: AdminPrincipal,
    service: Annotated[LedgerService, Depends(get_ledger_service)],
    correlation_id: Annotated[str, Depends(get_request_correlation_id)],
) -> ReconciliationReport:
    return service.verify_account(account_id, correlation_id=correlation_id)


@router.post(
    "/accounts/{accountId}/adjustments",
    response_model=LedgerEntry,
    status_code=status.HTTP_201_CREATED,
    responses={409: {"model": ErrorResponse}},
)
async def adjust_account(
    account_id: Annotated[str, Path(alias="accountId")],
    payload: AdjustmentRequest,
    _: AdminPrincipal,
    service: Annotated[LedgerService, Depends(get_ledger_service)],
) -> LedgerEntry:
    entry = service.adjust(
        account_id,
        wallet_delta=payload.wallet_delta,
        trial_units_delta=payload.trial_units_delta,
        trial_expires_at=payload.trial_expires_at,
        reason=payload.reason,
    )
    return entry_to_schema(entry)


@router.get("/jobs", response_model=list[Job])
async def list_jobs(
    _: AdminPrincipal,
    service: Annotated[JobService, Depends(get_job_service)],
    status: JobStatus | None = None,
) -> list[Job]:
    return service.list_jobs(status=status)


@router.post(
    "/jobs/{jobId}/refund",
    response_model=Job,
    responses={404: {"model": NoLeakNotFoundError}, 409: {"model": ErrorResponse}},
)
async def refund_job(
    job_id: Annotated[str, Path(alias="jobId")],
    payload: RefundJobRequest,
    _: AdminPrincipal,
    service: Annotated[JobService, Depends(get_job_service)],
    correlation_id: Annotated[str, Depends(get_request_correlation_id)],
) -> Job:
    return service.refund_failed_job(job_id=job_id, reason=payload.reason, correlation_id=correlation_id)


@router.post(
    "/workers",
    response_model=HumanWorker,
    status_code=status.HTTP_201_CREATED,
    responses={409: {"model": ErrorResponse}},
)
async def register_worker(
    payload: RegisterWorkerRequest,
    _: AdminPrincipal,
    service: Annotated[AssignmentService, Depends(get_assignment_service)],
) -> HumanWorker:
    return service.register_worker(
        name=payload.name,
        quality_rating=payload.quality_rating,
        worker_id=payload.worker_id,
    )


@router.post(
    "/workers/{workerId}/status",
    response_model=HumanWorker,
    responses={404: {"model": NoLeakNotFoundError}},
)
async def update_worker_status(
    worker_id: Annotated[str, Path(alias="workerId")],
    payload: UpdateWorkerStatusRequest,
    _: AdminPrincipal,
    service: Annotated[AssignmentService, Depends(get_assignment_service)],
) -> HumanWorker:
    return service.set_worker_status(worker_id, payload.status)
