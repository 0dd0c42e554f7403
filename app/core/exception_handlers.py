"""Error envelope for admission control failures.

Every error response has the shape
``{"error": {"code", "message", "request_id", "details"?}}``.

Status mapping:
- AuthenticationAppError → 403
- RateLimitExceededError → 429, with Retry-After and X-RateLimit-* headers
- ConfigurationAppError (unknown policy, broken key function) → 500, logged
  as ``rate_limit.configuration_defect``
- StoreUnavailableError (fail-closed deployments) → 500
- any other AppError → 400
- unexpected exceptions → generic 500 with nothing leaked
"""

import logging

from fastapi import Request
from fastapi.responses import JSONResponse

from app.core.errors import (
    AppError,
    AuthenticationAppError,
    ConfigurationAppError,
    RateLimitExceededError,
    StoreUnavailableError,
)
from app.core.logging import get_request_id

logger = logging.getLogger(__name__)

_STATUS_BY_ERROR: tuple[tuple[type[AppError], int], ...] = (
    (AuthenticationAppError, 403),
    (RateLimitExceededError, 429),
    (ConfigurationAppError, 500),
    (StoreUnavailableError, 500),
)


def status_code_for(exc: AppError) -> int:
    for error_type, status_code in _STATUS_BY_ERROR:
        if isinstance(exc, error_type):
            return status_code
    return 400


def _log_app_error(exc: AppError, status_code: int) -> None:
    if isinstance(exc, RateLimitExceededError):
        # Already logged as rate_limit.exceeded by the admission service
        return

    log_extra = {
        "error_code": exc.code,
        "error_message": exc.message,
        "request_id": get_request_id(),
    }
    if isinstance(exc, ConfigurationAppError):
        logger.error("rate_limit.configuration_defect", extra=log_extra)
    else:
        logger.warning(
            "app_error_handled",
            extra={**log_extra, "status_code": status_code, "has_details": bool(exc.details)},
        )


def build_error_response(exc: AppError) -> JSONResponse:
    """Log a domain error and render it in the error envelope.

    Used by the exception handler and by HTTP middleware, which exception
    handlers do not cover.
    """
    status_code = status_code_for(exc)
    _log_app_error(exc, status_code)

    error_content = {
        "code": exc.code,
        "message": exc.message,
        "request_id": get_request_id(),
    }
    # Policy names and backends stay in the logs for server errors
    if exc.details and status_code < 500:
        error_content["details"] = exc.details

    headers = exc.headers if isinstance(exc, RateLimitExceededError) else None
    return JSONResponse(
        status_code=status_code,
        content={"error": error_content},
        headers=headers or None,
    )


async def app_error_handler(request: Request, exc: AppError) -> JSONResponse:
    return build_error_response(exc)


async def general_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Fallback for unexpected errors: log the cause, return a generic 500."""
    logger.error(
        "unhandled_exception",
        extra={
            "error_type": type(exc).__name__,
            "error_msg": str(exc),
            "request_path": request.url.path,
            "request_method": request.method,
            "request_id": get_request_id(),
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
    """Register the AppError handler and the catch-all fallback on ``app``."""
    app.exception_handler(AppError)(app_error_handler)
    app.exception_handler(Exception)(general_exception_handler)
