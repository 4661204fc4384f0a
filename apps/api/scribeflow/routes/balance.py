"""Balance and ledger routes for the signed-in account."""

from typing import Annotated

from fastapi import APIRouter, Depends

from scribeflow.routes.dependencies import get_ledger_service, require_customer
from scribeflow.schemas.auth import AuthPrincipal
from scribeflow.schemas.balance import AccountBalance, LedgerEntry, Quote, QuoteRequest
from scribeflow.schemas.error import ErrorResponse
from scribeflow.services.ledger import LedgerService

router = APIRouter(prefix="/balance", tags=["Balance"])


@router.get("", response_model=AccountBalance, responses={401: {"model": ErrorResponse}})
async def get_balance(
    principal: Annotated[AuthPrincipal, Depends(require_customer)],
    service: Annotated[LedgerService, Depends(get_ledger_service)],
) -> AccountBalance:
    return service.get_balance(principal.user_id)


@router.post("/quote", response_model=Quote, responses={401: {"model": ErrorResponse}})
async def quote(
    payload: QuoteRequest,
    principal: Annotated[AuthPrincipal, Depends(require_customer)],
    service: Annotated[LedgerService, Depends(get_ledger_service)],
) -> Quote:
    return service.quote(
        principal.user_id,
        tier=payload.tier,
        requested_units=payload.requested_units,
        add_ons=payload.add_ons,
    )


@router.get("/ledger", response_model=list[LedgerEntry], responses={401: {"model": ErrorResponse}})
async def list_ledger(
    principal: Annotated[AuthPrincipal, Depends(require_customer)],
    service: Annotated[LedgerService, Depends(get_ledger_service)],
) -> list[LedgerEntry]:
    return service.list_entries(principal.user_id)
