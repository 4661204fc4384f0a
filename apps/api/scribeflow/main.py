"""FastAPI application entrypoint."""

from __future__ import annotations

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from scribeflow.adapters.transcription import TranscriptionPipeline
from scribeflow.core.clock import Clock, utcnow
from scribeflow.errors import ApiError
from scribeflow.repositories.memory import InMemoryStore
from scribeflow.routes import (
    admin_router,
    assignments_router,
    balance_router,
    internal_router,
    jobs_router,
)
from scribeflow.schemas.error import ErrorResponse


def create_app(
    *,
    clock: Clock = utcnow,
    pipeline: TranscriptionPipeline | None = None,
) -> FastAPI:
    app = FastAPI(title="Scribeflow API", version="1.0.0")
    app.state.store = InMemoryStore(clock=clock)
    # None defers to the configured provider on first use.
    app.state.pipeline = pipeline

    @app.exception_handler(ApiError)
    async def handle_api_error(_, exc: ApiError) -> JSONResponse:
        return JSONResponse(
            status_code=exc.status_code,
            content=exc.payload.model_dump(mode="json", exclude_none=True),
        )

    @app.exception_handler(RequestValidationError)
    async def handle_validation_error(_: Request, exc: RequestValidationError) -> JSONResponse:
        payload = ErrorResponse(
            code="VALIDATION_ERROR",
            message="Invalid request payload",
            details={
                "errors": [
                    {"loc": [str(part) for part in error["loc"]], "msg": error["msg"], "type": error["type"]}
                    for error in exc.errors()
                ]
            },
        )
        return JSONResponse(status_code=422, content=payload.model_dump(mode="json"))

    api_prefix = "/api/v1"
    app.include_router(balance_router, prefix=api_prefix)
    app.include_router(jobs_router, prefix=api_prefix)
    app.include_router(assignments_router, prefix=api_prefix)
    app.include_router(admin_router, prefix=api_prefix)
    app.include_router(internal_router, prefix=api_prefix)

    return app


app = create_app()
