"""
FastAPI exception handlers for BacklinkHubError and uncaught exceptions.

Every error response carries an ``error`` field with a readable message,
so scheduled callers can log it without parsing nested structures.
"""

import logging

from fastapi import Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from backlinkhub.core.errors import BacklinkHubError, ValidationError
from backlinkhub.core.errors.registry import error_registry

logger = logging.getLogger(__name__)


async def backlinkhub_error_handler(request: Request, exc: BacklinkHubError) -> JSONResponse:
    """Convert BacklinkHubError into a JSON error response."""
    entry = error_registry.get(exc.code)

    if entry is None:
        logger.error("unregistered_error_code code=%s detail=%s", exc.code, exc.detail)
        return JSONResponse(
            status_code=500,
            content={"error": exc.detail or "An unexpected error occurred.", "code": exc.code, "retryable": False},
        )

    log_fn = _severity_to_log_fn(entry.severity)
    log_fn(
        "%s: %s",
        entry.title,
        exc.detail,
        extra={"error.code": exc.code, **{f"error.ctx.{k}": v for k, v in exc.context.items()}},
    )

    return JSONResponse(
        status_code=entry.http_status,
        content={
            "error": exc.detail or entry.safe_message,
            "code": entry.code,
            "retryable": entry.retryable,
        },
    )


async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Missing or malformed body fields are rejected before any external call."""
    fields = [".".join(str(p) for p in err.get("loc", ())[1:]) for err in exc.errors()]
    message = f"Invalid request body: {', '.join(f for f in fields if f) or 'malformed JSON'}"
    return await backlinkhub_error_handler(request, ValidationError(detail=message, context={"path": request.url.path}))


async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unhandled error on %s: %s", request.url.path, exc)
    return JSONResponse(status_code=500, content={"error": str(exc)})


def _severity_to_log_fn(severity: str):
    """Map registry severity to logger method."""
    return {
        "DEBUG": logger.debug,
        "INFO": logger.info,
        "WARN": logger.warning,
        "ERROR": logger.error,
        "CRITICAL": logger.critical,
    }.get(severity, logger.error)
