"""Transcriber assignment routes."""

from typing import Annotated

from fastapi import APIRouter, Depends, Path

from scribeflow.routes.dependencies import (
    get_assignment_service,
    get_request_correlation_id,
    require_transcriber,
)
from scribeflow.schemas.assignment import Assignment, SubmitAssignmentRequest
from scribeflow.schemas.auth import AuthPrincipal
from scribeflow.schemas.error import ErrorResponse, NoLeakNotFoundError
from scribeflow.services.assignments import AssignmentService

router = APIRouter(prefix="/assignments", tags=["Assignments"])


@router.get("", response_model=list[Assignment])
async def list_my_assignments(
    principal: Annotated[AuthPrincipal, Depends(require_transcriber)],
    service: Annotated[AssignmentService, Depends(get_assignment_service)],
) -> list[Assignment]:
    return service.list_assignments(principal.user_id)


@router.post(
    "/{assignmentId}/start",
    response_model=Assignment,
    responses={404: {"model": NoLeakNotFoundError}, 409: {"model": ErrorResponse}},
)
async def start_assignment(
    assignment_id: Annotated[str, Path(alias="assignmentId")],
    principal: Annotated[AuthPrincipal, Depends(require_transcriber)],
    service: Annotated[AssignmentService, Depends(get_assignment_service)],
    correlation_id: Annotated[str, Depends(get_request_correlation_id)],
) -> Assignment:
    return service.start(assignment_id=assignment_id, worker_id=principal.user_id, correlation_id=correlation_id)


@router.post(
    "/{assignmentId}/submit",
    response_model=Assignment,
    responses={404: {"model": NoLeakNotFoundError}, 409: {"model": ErrorResponse}},
)
async def submit_assignment(
    assignment_id: Annotated[str, Path(alias="assignmentId")],
    payload: SubmitAssignmentRequest,
    principal: Annotated[AuthPrincipal, Depends(require_transcriber)],
    service: Annotated[AssignmentService, Depends(get_assignment_service)],
    correlation_id: Annotated[str, Depends(get_request_correlation_id)],
) -> Assignment:
    return service.submit(
        assignment_id=assignment_id,
        worker_id=principal.user_id,
        result=payload.result,
        notes=payload.notes,
        correlation_id=correlation_id,
    )
