"""Global exception handlers for FastAPI application.

Every error leaves as an RFC 7807 Problem Details body. Repository errors
are translated here so routers can let them propagate.
"""

from __future__ import annotations

import logging
from typing import Any

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from cloud_outbox.core.database.exceptions import InvalidTransitionError, NotFoundError, RepositoryError
from cloud_outbox.core.exceptions import AppException, ConflictException, NotFoundException

logger = logging.getLogger(__name__)

PROBLEM_MEDIA_TYPE = "application/problem+json"


def _problem(
    status_code: int,
    detail: str,
    type_: str = "about:blank",
    title: str | None = None,
    instance: str | None = None,
    extra: dict[str, Any] | None = None,
) -> dict[str, Any]:
    problem: dict[str, Any] = {
        "type": type_,
        "title": title or AppException._default_title(status_code),
        "status": status_code,
        "detail": detail,
    }
    if instance:
        problem["instance"] = instance
    if extra:
        problem.update(extra)
    return problem


async def app_exception_handler(request: Request, exc: AppException) -> JSONResponse:
    """Convert AppException into a Problem Details response."""
    logger.warning(
        "Application exception occurred",
        extra={
            "path": request.url.path,
            "method": request.method,
            "exception_type": exc.type,
            "status_code": exc.status_code,
            "detail": exc.detail,
        },
    )
    return JSONResponse(
        status_code=exc.status_code,
        content=_problem(
            exc.status_code,
            exc.detail,
            type_=exc.type,
            title=exc.title,
            instance=exc.instance or request.url.path,
            extra=exc.extra,
        ),
        media_type=PROBLEM_MEDIA_TYPE,
    )


async def repository_exception_handler(request: Request, exc: RepositoryError) -> JSONResponse:
    """Map repository errors onto HTTP semantics.

    NotFoundError -> 404, InvalidTransitionError -> 409, anything else -> 500.
    """
    app_exc: AppException
    if isinstance(exc, NotFoundError):
        app_exc = NotFoundException(
            detail=str(exc.message),
            type=f"{exc.model_name.lower()}-not-found",
            extra={k: str(v) for k, v in exc.identifier.items()},
        )
    elif isinstance(exc, InvalidTransitionError):
        app_exc = ConflictException(
            detail=exc.message,
            type="invalid-status-transition",
            extra={"id": str(exc.entity_id), "expected": exc.expected, "target": exc.target},
        )
    else:
        logger.error("Unhandled repository error", extra={"error": str(exc)}, exc_info=exc)
        app_exc = AppException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="A storage error occurred while processing your request",
            type="repository-error",
        )
    return await app_exception_handler(request, app_exc)


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = [
        {
            "field": ".".join(str(loc) for loc in error["loc"]),
            "message": error["msg"],
            "type": error["type"],
        }
        for error in exc.errors()
    ]
    logger.warning(
        "Request validation failed",
        extra={"path": request.url.path, "method": request.method, "error_count": len(errors)},
    )
    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content=_problem(
            status.HTTP_422_UNPROCESSABLE_ENTITY,
            f"Request validation failed for {len(errors)} field(s)",
            type_="validation-error",
            title="Validation Error",
            instance=request.url.path,
            extra={"errors": errors},
        ),
        media_type=PROBLEM_MEDIA_TYPE,
    )


async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all: log the traceback, hide internals from the client."""
    logger.error(
        "Unexpected exception occurred",
        extra={
            "path": request.url.path,
            "method": request.method,
            "exception_type": type(exc).__name__,
        },
        exc_info=exc,
    )
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content=_problem(
            status.HTTP_500_INTERNAL_SERVER_ERROR,
            "An unexpected error occurred while processing your request",
            type_="internal-error",
            instance=request.url.path,
        ),
        media_type=PROBLEM_MEDIA_TYPE,
    )


def configure_exception_handlers(app: FastAPI) -> None:
    """Register all exception handlers on ``app``."""
    app.add_exception_handler(AppException, app_exception_handler)  # type: ignore[arg-type]
    app.add_exception_handler(RepositoryError, repository_exception_handler)  # type: ignore[arg-type]
    app.add_exception_handler(RequestValidationError, validation_exception_handler)  # type: ignore[arg-type]
    app.add_exception_handler(Exception, generic_exception_handler)


__all__ = ["configure_exception_handlers"]
