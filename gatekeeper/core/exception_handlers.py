"""Global exception handlers for consistent error responses.

Design:
- AdmissionDeniedError -> 429 with rate-limit headers (expected outcome,
  logged at info)
- Other AppError subclasses -> appropriate HTTP status (400, 500, 503)
- Unexpected Exception -> generic 500 (safety net)
- All responses include request_id for tracing
"""

import logging

from fastapi import Request
from fastapi.responses import JSONResponse

from gatekeeper.core.errors import (
    AdmissionDeniedError,
    AppError,
    PolicyConfigurationError,
    StoreUnavailableError,
)
from gatekeeper.core.logging import get_request_id

logger = logging.getLogger(__name__)


async def admission_denied_handler(request: Request, exc: AdmissionDeniedError) -> JSONResponse:
    """Render a throttled request as 429 with a machine-readable reason."""
    logger.info(
        "admission.denied",
        extra={
            "error_code": exc.code,
            "retry_after_s": exc.retry_after_seconds,
            "request_path": request.url.path,
        },
    )
    return JSONResponse(
        status_code=429,
        content={
            "success": False,
            "error": exc.message,
            "code": exc.code,
            "retryAfter": exc.retry_after_seconds,
            "request_id": get_request_id(),
        },
        headers=exc.headers or {"Retry-After": str(exc.retry_after_seconds)},
    )


async def app_error_handler(request: Request, exc: AppError) -> JSONResponse:
    """Handle domain application errors with consistent JSON format.

    - PolicyConfigurationError -> 500 (deployment fault)
    - StoreUnavailableError -> 503 (only reached if a caller did not fail open)
    - anything else -> 400
    """
    status_code = 400
    if isinstance(exc, PolicyConfigurationError):
        status_code = 500
    elif isinstance(exc, StoreUnavailableError):
        status_code = 503

    logger.warning(
        "app_error_handled",
        extra={
            "error_code": exc.code,
            "error_message": exc.message,
            "status_code": status_code,
            "has_details": bool(exc.details),
        },
    )

    error_content = {
        "code": exc.code,
        "message": exc.message,
        "request_id": get_request_id(),
    }
    if exc.details:
        error_content["details"] = exc.details

    return JSONResponse(status_code=status_code, content={"error": error_content})


async def general_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Fallback handler for unexpected errors; never leaks internals."""
    logger.error(
        "unhandled_exception",
        extra={
            "error_type": type(exc).__name__,
            "error_msg": str(exc),
            "request_path": request.url.path,
            "request_method": request.method,
        },
    )
    return JSONResponse(
        status_code=500,
        content={
            "error": {
                "code": "internal_server_error",
                "message": "An unexpected error occurred. Please try again later.",
                "request_id": get_request_id(),
            }
        },
    )


def setup_exception_handlers(app) -> None:
    """Register all exception handlers with the FastAPI app.

    Most specific handlers first; Starlette resolves by exception MRO.
    """
    app.exception_handler(AdmissionDeniedError)(admission_denied_handler)
    app.exception_handler(AppError)(app_error_handler)
    app.exception_handler(Exception)(general_exception_handler)
