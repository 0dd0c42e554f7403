"""Pydantic schemas for rate limit policy configuration."""

from __future__ import annotations

import re

from pydantic import BaseModel, ConfigDict, Field, field_validator

RESERVED_NAMESPACES = {"blocked"}

_NAMESPACE_PATTERN = re.compile(r"^[A-Za-z0-9_.-]+$")


class PolicyConfig(BaseModel):
    """Typed rate limit parameters, validated once at startup.

    Used both for entries of ``APP_RATE_LIMIT_POLICIES`` and for ad hoc
    policies passed directly to ``rate_limit(...)``.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    budget: int = Field(..., ge=1, description="Points allowed per window")
    window_seconds: int = Field(..., ge=1, description="Window length in seconds")
    block_seconds: int = Field(
        0,
        ge=0,
        description="Block duration once the budget is exceeded (0 = one window)",
    )
    key_namespace: str | None = Field(
        None,
        description="Counter key namespace (defaults to the policy name)",
    )
    smooth: bool = Field(
        False,
        description="Spread the budget evenly across the window instead of allowing bursts",
    )

    @field_validator("key_namespace")
    @classmethod
    def _validate_namespace(cls, value: str | None) -> str | None:
        if value is None:
            return value
        if not _NAMESPACE_PATTERN.match(value):
            raise ValueError(
                "key_namespace may only contain letters, digits, '_', '-' and '.'"
            )
        if value in RESERVED_NAMESPACES:
            raise ValueError(f"key_namespace '{value}' is reserved")
        return value
