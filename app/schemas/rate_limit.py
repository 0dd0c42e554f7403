"""Pydantic schemas for the rate limit admin API."""

from __future__ import annotations

from typing import List

from pydantic import BaseModel, Field


class PolicyResponse(BaseModel):
    """A registered rate limit policy."""

    name: str = Field(..., description="Policy name used by routes and operators.")
    budget: int = Field(..., description="Points allowed per window.")
    window_seconds: int = Field(..., description="Window length in seconds.")
    block_seconds: int = Field(
        ..., description="Effective block duration once the budget is exceeded."
    )
    key_namespace: str = Field(..., description="Namespace of the counter keys.")
    smooth: bool = Field(..., description="Whether consumption is spread evenly.")


class PolicyListResponse(BaseModel):
    policies: List[PolicyResponse] = Field(default_factory=list)


class CounterRecordResponse(BaseModel):
    """Current counter state of one key under one policy."""

    key: str = Field(..., description="Namespaced counter key.")
    points_consumed: int = Field(..., description="Points consumed in the current window.")
    remaining_points: int = Field(..., description="Points left in the current window.")
    ms_before_reset: int = Field(..., description="Milliseconds until the window expires.")
    window_expires_at: int | None = Field(
        None, description="UNIX epoch milliseconds when the window expires."
    )
    blocked: bool = Field(..., description="Whether the key is currently blocked.")
    ms_before_unblock: int = Field(0, description="Milliseconds until the block ends.")
    blocked_until: int | None = Field(
        None, description="UNIX epoch milliseconds when the block ends."
    )


class CounterStatusResponse(BaseModel):
    policy: str
    key: str
    record: CounterRecordResponse | None = Field(
        None, description="Counter state, or null when the key has no activity."
    )


class ResetRequest(BaseModel):
    key: str = Field(..., min_length=1, description="Derived key to clear (IP, IP:user, email...).")


class ResetResponse(BaseModel):
    policy: str
    key: str
    deleted: bool = Field(..., description="False when there was nothing to clear.")


class BlockRequest(BaseModel):
    key: str = Field(..., min_length=1, description="Derived key to block.")
    seconds: int | None = Field(
        None,
        ge=1,
        description="Block duration in seconds (defaults to the policy block duration).",
    )
