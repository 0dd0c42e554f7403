"""HTTP middleware: request correlation and the app-wide admission policy.

Registration order matters; the last one registered runs first::

    app.middleware("http")(global_rate_limit_middleware)
    app.middleware("http")(request_id_middleware)

so a global rejection is still logged and answered with its request id.
"""

from __future__ import annotations

import time
import uuid

from fastapi import Request, Response

from app.core.errors import AppError
from app.core.exception_handlers import build_error_response
from app.core.logging import clear_request_id, set_request_id
from app.core.rate_limit import (
    enforce_rate_limit,
    get_admission_service,
    get_app_settings,
    rate_limit_headers,
)

# Probes from load balancers must never be throttled.
EXEMPT_PATH_SUFFIXES = ("/health", "/health/ready")


async def request_id_middleware(request: Request, call_next) -> Response:
    """Bind a request id to the logging context for the request's lifetime.

    The id comes from the ``LOG_REQUEST_ID_HEADER`` header when the caller
    sends one, else a fresh UUID4. It is echoed back along with
    ``X-Request-Duration-ms``.
    """

    header_name = get_app_settings(request).log.request_id_header
    request_id = request.headers.get(header_name) or str(uuid.uuid4())
    started = time.perf_counter()
    set_request_id(request_id)
    try:
        response: Response = await call_next(request)
    finally:
        clear_request_id()

    response.headers[header_name] = request_id
    elapsed_ms = (time.perf_counter() - started) * 1000
    response.headers.setdefault("X-Request-Duration-ms", f"{elapsed_ms:.2f}")
    return response


async def global_rate_limit_middleware(request: Request, call_next) -> Response:
    """Admit every request against the app-wide policy.

    Rejections and configuration errors are rendered here because exception
    handlers do not cover middleware. Route-level policies attach their own
    headers, which take precedence over the global ones.
    """

    cfg = get_app_settings(request).app
    policy_name = cfg.rate_limit_global_policy
    if (
        not policy_name
        or not cfg.rate_limit_enabled
        or request.url.path.endswith(EXEMPT_PATH_SUFFIXES)
    ):
        return await call_next(request)

    try:
        decision = await enforce_rate_limit(
            get_admission_service(request), policy_name, request
        )
    except AppError as exc:
        return build_error_response(exc)

    response = await call_next(request)
    if decision is not None and cfg.rate_limit_include_headers:
        for name, value in rate_limit_headers(decision.outcome).items():
            response.headers.setdefault(name, value)
    return response
