"""Map the service exception taxonomy onto HTTP responses."""

import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from scenarioflow.core.exceptions import (
    ActionExecutionError,
    ConcurrencyError,
    NotFoundError,
    StateConflictError,
    ValidationError,
)

logger = logging.getLogger(__name__)


def register_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(NotFoundError)
    async def _not_found(request: Request, exc: NotFoundError):
        return JSONResponse(
            status_code=404,
            content={"detail": str(exc), "resource": exc.resource},
        )

    @app.exception_handler(ValidationError)
    async def _invalid(request: Request, exc: ValidationError):
        logger.info(f"Rejected {request.method} {request.url.path}: {exc}")
        return JSONResponse(
            status_code=422,
            content={"detail": str(exc), "errors": exc.details},
        )

    @app.exception_handler(StateConflictError)
    async def _conflict(request: Request, exc: StateConflictError):
        logger.info(f"Conflict on {request.method} {request.url.path}: {exc}")
        return JSONResponse(
            status_code=409,
            content={
                "detail": str(exc),
                "error": type(exc).__name__,
                "current_status": exc.current_status,
            },
        )

    @app.exception_handler(ConcurrencyError)
    async def _stale(request: Request, exc: ConcurrencyError):
        return JSONResponse(
            status_code=409,
            content={
                "detail": str(exc),
                "error": "ConcurrencyError",
                "expected_version": exc.expected,
                "current_version": exc.actual,
            },
        )

    @app.exception_handler(ActionExecutionError)
    async def _dispatch_failed(request: Request, exc: ActionExecutionError):
        logger.warning(f"Action execution failed: {exc}")
        return JSONResponse(
            status_code=502,
            content={"detail": str(exc), "action_type": exc.action_type},
        )
