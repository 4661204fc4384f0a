"""Internal (service-to-service) routes guarded by the callback secret."""

from typing import Annotated

from fastapi import APIRouter, Depends, Response, status

from scribeflow.routes.dependencies import (
    get_job_service,
    get_ledger_service,
    get_pipeline_service,
    require_callback_secret,
)
from scribeflow.schemas.error import ErrorResponse
from scribeflow.schemas.internal import (
    PipelineTickResponse,
    PurchaseConfirmedRequest,
    PurchaseConfirmedResponse,
    QueueDrainResponse,
)
from scribeflow.services.jobs import JobService
from scribeflow.services.ledger import LedgerService
from scribeflow.services.pipeline import PipelineService

router = APIRouter(
    prefix="/internal",
    tags=["Internal"],
    dependencies=[Depends(require_callback_secret)],
    responses={401: {"model": ErrorResponse}},
)


@router.post(
    "/payments/confirmed",
    response_model=PurchaseConfirmedResponse,
    status_code=status.HTTP_201_CREATED,
    responses={200: {"model": PurchaseConfirmedResponse}, 409: {"model": ErrorResponse}},
)
async def confirm_payment(
    payload: PurchaseConfirmedRequest,
    response: Response,
    service: Annotated[LedgerService, Depends(get_ledger_service)],
) -> PurchaseConfirmedResponse:
    result = service.credit_purchase(payload)
    if result.replayed:
        response.status_code = status.HTTP_200_OK
    return PurchaseConfirmedResponse(
        account_id=result.entry.account_id,
        ledger_entry_id=result.entry.id,
        package_id=result.package_id,
        replayed=result.replayed,
    )


@router.post("/pipeline/tick", response_model=PipelineTickResponse)
def pipeline_tick(
    service: Annotated[PipelineService, Depends(get_pipeline_service)],
) -> PipelineTickResponse:
    # Provider calls block; a sync route keeps them on the threadpool.
    return service.tick()


@router.post("/queue/drain", response_model=QueueDrainResponse)
async def drain_queue(
    service: Annotated[JobService, Depends(get_job_service)],
) -> QueueDrainResponse:
    return service.assign_queued_jobs()
