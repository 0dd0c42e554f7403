"""Operator endpoints to inspect, reset and block rate limit keys."""

from __future__ import annotations

from dataclasses import asdict

from fastapi import APIRouter, Depends, HTTPException, Query, Request

from app.core.auth import verify_admin_api_key
from app.core.errors import UnknownPolicyError
from app.core.rate_limit import rate_limit
from app.schemas.rate_limit import (
    BlockRequest,
    CounterRecordResponse,
    CounterStatusResponse,
    PolicyListResponse,
    PolicyResponse,
    ResetRequest,
    ResetResponse,
)
from app.services.limiter import CounterRecord
from app.services.rate_limit_admin import RateLimitAdminService

router = APIRouter(
    prefix="/admin/rate-limits",
    tags=["Rate Limit Admin"],
    dependencies=[Depends(verify_admin_api_key), Depends(rate_limit("admin"))],
)


def get_rate_limit_admin(request: Request) -> RateLimitAdminService:
    return request.app.state.rate_limit_admin


def _unknown_policy(exc: UnknownPolicyError) -> HTTPException:
    return HTTPException(status_code=404, detail=exc.message)


def _to_response(record: CounterRecord | None) -> CounterRecordResponse | None:
    if record is None:
        return None
    return CounterRecordResponse(**asdict(record))


@router.get("", response_model=PolicyListResponse)
async def list_policies(
    admin: RateLimitAdminService = Depends(get_rate_limit_admin),
) -> PolicyListResponse:
    """List the registered policies with their effective parameters."""
    return PolicyListResponse(
        policies=[
            PolicyResponse(
                name=policy.name,
                budget=policy.budget,
                window_seconds=policy.window_seconds,
                block_seconds=policy.effective_block_seconds,
                key_namespace=policy.key_namespace,
                smooth=policy.smooth,
            )
            for policy in admin.policies()
        ]
    )


@router.get("/{policy_name}", response_model=CounterStatusResponse)
async def get_status(
    policy_name: str,
    key: str = Query(..., min_length=1, description="Derived key (IP, IP:user, email...)"),
    admin: RateLimitAdminService = Depends(get_rate_limit_admin),
) -> CounterStatusResponse:
    """Show a key's counter state without consuming budget.

    Raises:
        HTTPException: 404 if the policy is not registered.
    """
    try:
        record = await admin.status(key, policy_name)
    except UnknownPolicyError as exc:
        raise _unknown_policy(exc) from exc
    return CounterStatusResponse(policy=policy_name, key=key, record=_to_response(record))


@router.post("/{policy_name}/reset", response_model=ResetResponse)
async def reset_key(
    policy_name: str,
    body: ResetRequest,
    admin: RateLimitAdminService = Depends(get_rate_limit_admin),
) -> ResetResponse:
    """Clear a key's counter and block, e.g. for a shared corporate IP.

    Resetting a key without activity succeeds with ``deleted=false``.
    """
    try:
        deleted = await admin.reset(body.key, policy_name)
    except UnknownPolicyError as exc:
        raise _unknown_policy(exc) from exc
    return ResetResponse(policy=policy_name, key=body.key, deleted=deleted)


@router.post("/{policy_name}/block", response_model=CounterStatusResponse)
async def block_key(
    policy_name: str,
    body: BlockRequest,
    admin: RateLimitAdminService = Depends(get_rate_limit_admin),
) -> CounterStatusResponse:
    """Block a key for ``seconds`` (default: the policy block duration)."""
    try:
        record = await admin.block(body.key, policy_name, seconds=body.seconds)
    except UnknownPolicyError as exc:
        raise _unknown_policy(exc) from exc
    return CounterStatusResponse(policy=policy_name, key=body.key, record=_to_response(record))
