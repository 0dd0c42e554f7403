"""Rate limiting dependency for FastAPI routes.

This module binds admission decisions to HTTP semantics.

Design goals:
- Minimal coupling: API routes depend on a dependency factory only.
- One failure policy: a counter store outage is handled the same way on every
  route and in the global middleware, according to
  ``APP_RATE_LIMIT_FAILURE_MODE`` (``open`` lets requests through, ``closed``
  fails them with a server error). Read from the settings the serving app
  was built with (``app.state.settings``).
- Actionable rejections: 429 responses carry ``Retry-After`` plus the
  ``X-RateLimit-*`` advisory headers.

Usage:
    @router.post("/auth/login", dependencies=[Depends(rate_limit("login"))])
    @router.get("/me", dependencies=[Depends(rate_limit("api", include_user_id=True))])
"""

from __future__ import annotations

import logging
import time
from typing import Awaitable, Callable

from fastapi import Request, Response

from app.core.config import Settings, settings as default_settings
from app.core.errors import RateLimitExceededError, StoreUnavailableError
from app.core.logging import hash_identifier
from app.services.admission_service import AdmissionDecision, AdmissionService, PolicyRef
from app.services.key_strategy import KeyFunc
from app.services.limiter import ConsumptionOutcome

logger = logging.getLogger(__name__)


def get_admission_service(request: Request) -> AdmissionService:
    """Return the admission service wired into the application."""
    return request.app.state.admission_service


def get_app_settings(request: Request) -> Settings:
    """Settings the application was built with.

    Apps not built by ``create_app`` fall back to the process settings.
    """
    return getattr(request.app.state, "settings", default_settings)


def rate_limit_headers(outcome: ConsumptionOutcome, *, now: float | None = None) -> dict[str, str]:
    """Advisory headers describing the caller's budget."""
    now = time.time() if now is None else now
    headers = {
        "X-RateLimit-Limit": str(outcome.limit),
        "X-RateLimit-Remaining": str(0 if not outcome.allowed else outcome.remaining_points),
        "X-RateLimit-Reset": str(outcome.reset_at(now)),
    }
    if not outcome.allowed:
        headers["Retry-After"] = str(outcome.retry_after_seconds)
    return headers


def _policy_label(policy: PolicyRef) -> str:
    if isinstance(policy, str):
        return policy
    return getattr(policy, "name", None) or f"custom:{policy.key_namespace}"


async def _apply_failure_mode(
    admission: Awaitable[AdmissionDecision],
    *,
    policy: PolicyRef,
    failure_mode: str,
    request_path: str | None = None,
) -> AdmissionDecision | None:
    """Await an admission, translating store outages per the failure mode."""
    try:
        return await admission
    except StoreUnavailableError:
        log_extra = {
            "policy": _policy_label(policy),
            "failure_mode": failure_mode,
            "request_path": request_path,
        }
        if failure_mode == "open":
            logger.warning("rate_limit.store_unavailable", extra=log_extra)
            return None
        logger.error("rate_limit.store_unavailable", extra=log_extra)
        raise


async def enforce_rate_limit(
    service: AdmissionService,
    policy: PolicyRef,
    request: Request,
    *,
    include_user_id: bool = False,
    key_func: KeyFunc | None = None,
) -> AdmissionDecision | None:
    """Admit the request or raise.

    Switches and the failure mode come from ``get_app_settings(request)``.

    Returns:
        The decision when the request is allowed, or None when admission was
        skipped (rate limiting disabled, or the store is down and the
        deployment fails open).

    Raises:
        RateLimitExceededError: When the caller is over budget or blocked.
        StoreUnavailableError: When the store is down and the deployment
            fails closed.
        ConfigurationAppError: On unknown policies or broken key functions.
    """
    cfg = get_app_settings(request).app
    if not cfg.rate_limit_enabled:
        return None

    decision = await _apply_failure_mode(
        service.admit(
            policy,
            request,
            include_user_id=include_user_id,
            key_func=key_func,
        ),
        policy=policy,
        failure_mode=cfg.rate_limit_failure_mode,
        request_path=request.url.path,
    )
    if decision is None or decision.allowed:
        return decision

    outcome = decision.outcome
    now = time.time()
    headers = rate_limit_headers(outcome, now=now)
    if not cfg.rate_limit_include_headers:
        headers = {"Retry-After": headers["Retry-After"]}

    raise RateLimitExceededError(
        code="rate_limit_exceeded",
        message="Rate limit exceeded. Try again later.",
        details={
            "policy": decision.policy.name,
            "limit": outcome.limit,
            "remaining": 0,
            "retry_after": outcome.retry_after_seconds,
            "reset_at": outcome.reset_at(now),
        },
        headers=headers,
    )


def rate_limit(
    policy: PolicyRef,
    *,
    include_user_id: bool = False,
    key_func: KeyFunc | None = None,
) -> Callable[[Request, Response], Awaitable[None]]:
    """Build a FastAPI dependency enforcing ``policy``.

    Args:
        policy: Registered policy name, or an ad hoc ``PolicyConfig`` with an
            explicit ``key_namespace``.
        include_user_id: Key by ``{address}:{user_id}`` for authenticated callers.
        key_func: Custom synchronous key function; overrides the above.

    Returns:
        Dependency that consumes one point per request and attaches the
        advisory headers to successful responses.
    """

    async def dependency(request: Request, response: Response) -> None:
        decision = await enforce_rate_limit(
            get_admission_service(request),
            policy,
            request,
            include_user_id=include_user_id,
            key_func=key_func,
        )
        if decision is not None and get_app_settings(request).app.rate_limit_include_headers:
            response.headers.update(rate_limit_headers(decision.outcome))

    dependency.__name__ = f"rate_limit_{_policy_label(policy).replace(':', '_')}"
    return dependency


async def consume_key_budget(request: Request, policy: PolicyRef, key: str) -> bool:
    """Consume budget for a key the handler already derived.

    Meant for budgets not tied to the HTTP caller, such as the ``email``
    policy keyed by recipient address so one address cannot be flooded from
    many IPs. Uses the admission service and failure mode of the app serving
    ``request``.

    Returns:
        True if the action may proceed.

    Raises:
        StoreUnavailableError: When the store is down and the deployment
            fails closed.
    """
    cfg = get_app_settings(request).app
    if not cfg.rate_limit_enabled:
        return True

    decision = await _apply_failure_mode(
        get_admission_service(request).admit_key(policy, key),
        policy=policy,
        failure_mode=cfg.rate_limit_failure_mode,
        request_path=request.url.path,
    )
    if decision is None:
        return True
    if not decision.allowed:
        logger.info(
            "rate_limit.key_budget_exhausted",
            extra={
                "policy": decision.policy.name,
                "key_hash": hash_identifier(key),
                "retry_after_s": decision.outcome.retry_after_seconds,
            },
        )
    return decision.allowed
