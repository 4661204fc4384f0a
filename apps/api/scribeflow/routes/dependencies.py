"""Dependency wiring for routes."""

from __future__ import annotations

from collections.abc import Callable, Coroutine
import logging
from secrets import compare_digest
from typing import Annotated, Any
from uuid import uuid4

from fastapi import Depends, Request, Security
from fastapi.security import APIKeyHeader, HTTPAuthorizationCredentials, HTTPBearer

from scribeflow.adapters.auth import (
    AuthVerificationError,
    FirebaseTokenVerifier,
    MockTokenVerifier,
    TokenVerifier,
)
from scribeflow.adapters.transcription import (
    MockTranscriptionPipeline,
    SpeechmaticsPipeline,
    TranscriptionPipeline,
)
from scribeflow.core.config import Settings, get_settings
from scribeflow.core.logging_safety import CORRELATION_PREFIX, safe_log_identifier
from scribeflow.errors import ApiError
from scribeflow.repositories.memory import InMemoryStore
from scribeflow.schemas.auth import AuthPrincipal, Role
from scribeflow.services.assignments import AssignmentService
from scribeflow.services.jobs import JobService
from scribeflow.services.ledger import LedgerService
from scribeflow.services.pipeline import PipelineService
from scribeflow.services.workload import WorkloadBalancer

bearer_scheme = HTTPBearer(auto_error=False, scheme_name="bearerAuth")
callback_secret_scheme = APIKeyHeader(
    name="X-Callback-Secret",
    auto_error=False,
    scheme_name="internalCallbackSecret",
)
logger = logging.getLogger(__name__)


def _auth_error(message: str) -> ApiError:
    return ApiError(status_code=401, code="UNAUTHORIZED", message=message)


def _request_correlation_id(request: Request) -> str:
    existing = getattr(request.state, "correlation_id", None)
    if isinstance(existing, str) and existing:
        return existing

    correlation_id = request.headers.get("X-Correlation-Id")
    if correlation_id:
        request.state.correlation_id = correlation_id
        return correlation_id

    generated = f"req-{uuid4()}"
    request.state.correlation_id = generated
    return generated


def get_request_correlation_id(request: Request) -> str:
    return _request_correlation_id(request)


def get_token_verifier(settings: Annotated[Settings, Depends(get_settings)]) -> TokenVerifier:
    """Resolve provider adapter from configuration."""
    if settings.auth_provider == "firebase":
        return FirebaseTokenVerifier(
            project_id=settings.firebase_project_id,
            audience=settings.firebase_audience,
        )
    return MockTokenVerifier()


async def get_authenticated_principal(
    request: Request,
    credentials: Annotated[HTTPAuthorizationCredentials | None, Security(bearer_scheme)],
    verifier: Annotated[TokenVerifier, Depends(get_token_verifier)],
) -> AuthPrincipal:
    """Validate bearer token and attach normalized principal to request context."""
    correlation_id = _request_correlation_id(request)
    safe_correlation_id = safe_log_identifier(correlation_id, prefix=CORRELATION_PREFIX)
    if credentials is None or credentials.scheme.lower() != "bearer" or not credentials.credentials:
        logger.warning(
            "auth.rejected correlation_id=%s method=%s path=%s reason=invalid_or_missing_bearer",
            safe_correlation_id,
            request.method,
            request.url.path,
        )
        raise _auth_error("Invalid or missing bearer token")

    try:
        principal = verifier.verify_token(credentials.credentials)
    except AuthVerificationError as exc:
        logger.warning(
            "auth.rejected correlation_id=%s method=%s path=%s reason=token_verification_failed",
            safe_correlation_id,
            request.method,
            request.url.path,
        )
        raise _auth_error(str(exc) or "Invalid bearer token") from exc

    logger.info(
        "auth.accepted correlation_id=%s method=%s path=%s principal_id=%s role=%s",
        safe_correlation_id,
        request.method,
        request.url.path,
        safe_log_identifier(principal.user_id, prefix="pid"),
        principal.role,
    )
    request.state.auth_principal = principal
    return principal


def require_role(*roles: Role) -> Callable[..., Coroutine[Any, Any, AuthPrincipal]]:
    """Dependency factory that admits only principals holding one of ``roles``."""

    async def dependency(
        request: Request,
        principal: Annotated[AuthPrincipal, Depends(get_authenticated_principal)],
    ) -> AuthPrincipal:
        if principal.role not in roles:
            logger.warning(
                "auth.forbidden correlation_id=%s method=%s path=%s role=%s",
                safe_log_identifier(_request_correlation_id(request), prefix=CORRELATION_PREFIX),
                request.method,
                request.url.path,
                principal.role,
            )
            raise ApiError(status_code=403, code="FORBIDDEN", message="Insufficient role for this operation")
        return principal

    return dependency


require_customer = require_role("customer", "admin")
require_transcriber = require_role("transcriber")
require_admin = require_role("admin")


async def require_callback_secret(
    request: Request,
    callback_secret: Annotated[str | None, Security(callback_secret_scheme)],
    settings: Annotated[Settings, Depends(get_settings)],
) -> None:
    """Validate callback secret for internal endpoints."""
    correlation_id = _request_correlation_id(request)
    safe_correlation_id = safe_log_identifier(correlation_id, prefix=CORRELATION_PREFIX)
    if callback_secret is None or not compare_digest(callback_secret, settings.callback_secret):
        logger.warning(
            "callback.auth_rejected correlation_id=%s method=%s path=%s reason=invalid_callback_secret",
            safe_correlation_id,
            request.method,
            request.url.path,
        )
        raise _auth_error("Invalid callback authentication")


def get_store(request: Request) -> InMemoryStore:
    return request.app.state.store


def get_transcription_pipeline(
    request: Request,
    settings: Annotated[Settings, Depends(get_settings)],
) -> TranscriptionPipeline:
    """Resolve the pipeline adapter once per application; it may hold provider state."""
    pipeline = getattr(request.app.state, "pipeline", None)
    if pipeline is not None:
        return pipeline

    if settings.pipeline_provider == "speechmatics":
        if not settings.speechmatics_api_key:
            raise ApiError(
                status_code=503,
                code="PIPELINE_NOT_CONFIGURED",
                message="Automated transcription provider is not configured.",
            )
        pipeline = SpeechmaticsPipeline(
            api_key=settings.speechmatics_api_key,
            base_url=settings.speechmatics_base_url,
            timeout_seconds=settings.pipeline_timeout_seconds,
        )
    else:
        pipeline = MockTranscriptionPipeline()
    request.app.state.pipeline = pipeline
    return pipeline


def get_ledger_service(
    store: Annotated[InMemoryStore, Depends(get_store)],
    settings: Annotated[Settings, Depends(get_settings)],
) -> LedgerService:
    return LedgerService(store, max_retries=settings.ledger_max_retries)


def _build_assignment_service(
    store: Annotated[InMemoryStore, Depends(get_store)],
    settings: Annotated[Settings, Depends(get_settings)],
) -> AssignmentService:
    return AssignmentService(
        store,
        balancer=WorkloadBalancer(store),
        effort_multiplier=settings.human_effort_multiplier,
    )


def get_job_service(
    store: Annotated[InMemoryStore, Depends(get_store)],
    ledger: Annotated[LedgerService, Depends(get_ledger_service)],
    assignments: Annotated[AssignmentService, Depends(_build_assignment_service)],
) -> JobService:
    return JobService(store, ledger=ledger, assignments=assignments)


def get_assignment_service(
    assignments: Annotated[AssignmentService, Depends(_build_assignment_service)],
    _jobs: Annotated[JobService, Depends(get_job_service)],
) -> AssignmentService:
    """Assignment service whose capacity changes drain the job queue."""
    return assignments


def get_pipeline_service(
    store: Annotated[InMemoryStore, Depends(get_store)],
    pipeline: Annotated[TranscriptionPipeline, Depends(get_transcription_pipeline)],
    jobs: Annotated[JobService, Depends(get_job_service)],
    settings: Annotated[Settings, Depends(get_settings)],
) -> PipelineService:
    return PipelineService(
        store,
        pipeline=pipeline,
        jobs=jobs,
        max_retries=settings.pipeline_max_retries,
        backoff_base_seconds=settings.pipeline_backoff_base_seconds,
    )
