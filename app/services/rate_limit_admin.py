"""Operator controls over counter state: inspect, reset and block keys.

Used to unblock callers limited in error (e.g. many users behind one
corporate NAT address) or to shut out an abusive caller by hand. Access
control is the HTTP layer's job (``verify_admin_api_key``).
"""

from __future__ import annotations

import logging

from app.core.logging import hash_identifier
from app.services.limiter import CounterRecord
from app.services.limiter_cache import LimiterCache
from app.services.policies import Policy, PolicyRegistry

logger = logging.getLogger(__name__)


class RateLimitAdminService:
    def __init__(self, registry: PolicyRegistry, limiters: LimiterCache) -> None:
        self.registry = registry
        self.limiters = limiters

    def policies(self) -> list[Policy]:
        return list(self.registry)

    async def status(self, key: str, policy_name: str) -> CounterRecord | None:
        """Read a key's counter state; never consumes budget.

        Raises:
            UnknownPolicyError: If the policy is not registered.
        """
        policy = self.registry.resolve(policy_name)
        return await self.limiters.get_or_create(policy).get(key)

    async def reset(self, key: str, policy_name: str) -> bool:
        """Delete a key's counter and block. Resetting an unknown key is a no-op.

        Returns:
            True if a counter or block existed.
        """
        policy = self.registry.resolve(policy_name)
        deleted = await self.limiters.get_or_create(policy).delete(key)
        logger.info(
            "rate_limit.reset",
            extra={
                "policy": policy.name,
                "key_hash": hash_identifier(key),
                "deleted": deleted,
            },
        )
        return deleted

    async def block(
        self, key: str, policy_name: str, *, seconds: int | None = None
    ) -> CounterRecord | None:
        """Block a key by hand, replacing any existing block."""
        policy = self.registry.resolve(policy_name)
        limiter = self.limiters.get_or_create(policy)
        await limiter.block(key, seconds=seconds)
        logger.warning(
            "rate_limit.manual_block",
            extra={
                "policy": policy.name,
                "key_hash": hash_identifier(key),
                "block_s": seconds or policy.effective_block_seconds,
            },
        )
        return await limiter.get(key)
