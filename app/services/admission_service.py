"""Admission service: the entry point routing code calls per guarded request.

Resolves the policy, derives the caller key and debits the policy's limiter.
The service never decides what a store outage means for the caller: it lets
``StoreUnavailableError`` propagate and the HTTP binding applies the
deployment's failure mode.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from starlette.requests import Request

from app.core.config import Settings, settings as default_settings
from app.core.logging import hash_identifier
from app.schemas.policy import PolicyConfig
from app.services.key_strategy import KeyFunc, derive_key
from app.services.limiter import ConsumptionOutcome
from app.services.limiter_cache import LimiterCache
from app.services.policies import Policy, PolicyRegistry

logger = logging.getLogger(__name__)

PolicyRef = str | PolicyConfig | Policy


@dataclass(frozen=True)
class AdmissionDecision:
    """Outcome of admitting one request under one policy."""

    policy: Policy
    key: str
    outcome: ConsumptionOutcome

    @property
    def allowed(self) -> bool:
        return self.outcome.allowed


class AdmissionService:
    """Admits or rejects requests against named or ad hoc policies.

    Args:
        registry: Named policies.
        limiters: Limiter cache bound to the shared counter store.
        trust_forwarded_for: Derive addresses from ``X-Forwarded-For``.
    """

    def __init__(
        self,
        registry: PolicyRegistry,
        limiters: LimiterCache,
        *,
        trust_forwarded_for: bool = False,
    ) -> None:
        self.registry = registry
        self.limiters = limiters
        self._trust_forwarded_for = trust_forwarded_for

    @classmethod
    def from_settings(cls, limiters: LimiterCache, cfg: Settings | None = None) -> "AdmissionService":
        cfg = cfg or default_settings
        return cls(
            PolicyRegistry.with_defaults(cfg.app.rate_limit_policies),
            limiters,
            trust_forwarded_for=cfg.app.trust_forwarded_for,
        )

    async def admit(
        self,
        policy: PolicyRef,
        request: Request,
        *,
        include_user_id: bool = False,
        key_func: KeyFunc | None = None,
        points: int = 1,
    ) -> AdmissionDecision:
        """Consume budget for the caller of ``request``.

        Raises:
            UnknownPolicyError: If a policy name is not registered.
            InvalidKeyDerivationError: If ``key_func`` misbehaves.
            StoreUnavailableError: If the counter store cannot be reached.
        """
        resolved = self.registry.coerce(policy)
        key = derive_key(
            request,
            include_user_id=include_user_id,
            key_func=key_func,
            trust_forwarded_for=self._trust_forwarded_for,
        )
        return await self._consume(resolved, key, points)

    async def admit_key(self, policy: PolicyRef, key: str, *, points: int = 1) -> AdmissionDecision:
        """Consume budget for an already derived key (e.g. an email address)."""
        return await self._consume(self.registry.coerce(policy), key, points)

    async def _consume(self, policy: Policy, key: str, points: int) -> AdmissionDecision:
        limiter = self.limiters.get_or_create(policy)
        outcome = await limiter.consume(key, points=points)

        log_extra = {
            "policy": policy.name,
            "key_hash": hash_identifier(key),
            "limit": outcome.limit,
            "remaining": outcome.remaining_points,
            "window_s": policy.window_seconds,
        }
        if outcome.allowed:
            logger.info("rate_limit.allowed", extra=log_extra)
        else:
            logger.warning(
                "rate_limit.exceeded",
                extra={
                    **log_extra,
                    "blocked": outcome.blocked,
                    "retry_after_s": outcome.retry_after_seconds,
                },
            )
        return AdmissionDecision(policy=policy, key=key, outcome=outcome)
