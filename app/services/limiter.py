"""Admission engine: windowed counters with block escalation.

A ``Limiter`` serves one policy shape. It keeps no per-caller state; every
decision is made from two records in the shared counter store:

- ``{namespace}:{key}``: points consumed in the current window, with the
  window length as TTL.
- ``blocked:{namespace}:{key}``: present while the key is blocked, with the
  block duration as TTL.

The increment is atomic in the store, so for a single key concurrent
consumers are totally ordered and only one of them is the first to exceed the
budget. The block check and block creation are separate round trips; near
the boundary this can let at most one extra request through, which is an
accepted tolerance.
"""

from __future__ import annotations

import logging
import math
import time
from dataclasses import dataclass
from typing import Callable

from app.adapters.rate_limit.base import AbstractCounterStore
from app.services.policies import Policy

logger = logging.getLogger(__name__)

BLOCK_KEY_PREFIX = "blocked"


@dataclass(frozen=True)
class ConsumptionOutcome:
    """Result of one consume call.

    Attributes:
        allowed: Whether the request may proceed.
        limit: Budget of the policy.
        remaining_points: Points left in the current window (0 when blocked).
        ms_before_reset: Milliseconds until the current window expires.
        ms_before_retry: Milliseconds the caller should wait when rejected.
        consumed_points: Points counted in the current window.
        blocked: Whether the rejection comes from a block record.
    """

    allowed: bool
    limit: int
    remaining_points: int
    ms_before_reset: int
    ms_before_retry: int | None = None
    consumed_points: int = 0
    blocked: bool = False

    @property
    def retry_after_seconds(self) -> int | None:
        """Retry-After value: seconds rounded up, at least 1."""
        if self.allowed or self.ms_before_retry is None:
            return None
        return max(1, math.ceil(self.ms_before_retry / 1000))

    def reset_at(self, now: float) -> int:
        """UNIX epoch seconds when the window (or block) ends."""
        wait_ms = self.ms_before_reset
        if not self.allowed and self.ms_before_retry is not None:
            wait_ms = max(wait_ms, self.ms_before_retry)
        return int(math.ceil(now + wait_ms / 1000))


@dataclass(frozen=True)
class CounterRecord:
    """Operator view of a key's counter and block state."""

    key: str
    points_consumed: int
    remaining_points: int
    ms_before_reset: int
    window_expires_at: int | None
    blocked: bool
    ms_before_unblock: int
    blocked_until: int | None


class Limiter:
    """Consumes budget for keys of one policy shape.

    Args:
        policy: Policy whose parameters this limiter enforces.
        store: Shared counter store.
        clock: Time source returning UNIX time in seconds.
    """

    def __init__(
        self,
        policy: Policy,
        store: AbstractCounterStore,
        *,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.policy = policy
        self._store = store
        self._clock = clock
        self._window_ms = policy.window_seconds * 1000
        self._block_ms = policy.effective_block_seconds * 1000

    def counter_key(self, key: str) -> str:
        return f"{self.policy.key_namespace}:{key}"

    def block_key(self, key: str) -> str:
        return f"{BLOCK_KEY_PREFIX}:{self.policy.key_namespace}:{key}"

    async def consume(self, key: str, *, points: int = 1) -> ConsumptionOutcome:
        """Debit ``points`` from the key's budget.

        Args:
            key: Derived key of the caller.
            points: Units to consume (default 1).

        Returns:
            ConsumptionOutcome with the allowance decision and timing metadata.

        Raises:
            ValueError: If key is empty or points is invalid.
            StoreUnavailableError: If the counter store cannot be reached.
        """
        if points < 1:
            raise ValueError("points must be >= 1")
        if not key:
            raise ValueError("key must be a non-empty string")

        budget = self.policy.budget
        consumed, window_ttl = await self._store.increment(
            self.counter_key(key), amount=points, ttl_ms=self._window_ms
        )
        if window_ttl < 0:
            window_ttl = self._window_ms

        block_ttl = await self._store.pttl(self.block_key(key))
        if block_ttl:
            return self._rejected(consumed, window_ttl, block_ttl, blocked=True)

        if consumed <= budget:
            if self.policy.smooth:
                wait_ms = self._smoothing_wait_ms(consumed, window_ttl)
                if wait_ms > 0:
                    # Not charged: the caller is only early, not over budget.
                    consumed = await self._store.decrement(
                        self.counter_key(key), amount=points
                    )
                    return self._rejected(consumed, window_ttl, wait_ms, blocked=False)
            return ConsumptionOutcome(
                allowed=True,
                limit=budget,
                remaining_points=budget - consumed,
                ms_before_reset=window_ttl,
                consumed_points=consumed,
            )

        if await self._store.set_if_absent(self.block_key(key), ttl_ms=self._block_ms):
            logger.debug(
                "rate_limit.block_started",
                extra={
                    "key_namespace": self.policy.key_namespace,
                    "block_ms": self._block_ms,
                },
            )
            return self._rejected(consumed, window_ttl, self._block_ms, blocked=True)

        # Another consumer created the block between our check and our write.
        block_ttl = await self._store.pttl(self.block_key(key))
        return self._rejected(consumed, window_ttl, block_ttl or window_ttl, blocked=True)

    def _smoothing_wait_ms(self, consumed: int, window_ttl: int) -> int:
        """Milliseconds until ``consumed`` points fit the evenly spread budget."""
        interval = self._window_ms / self.policy.budget
        elapsed = max(0, self._window_ms - window_ttl)
        allowance = math.floor(elapsed / interval) + 1
        if consumed <= allowance:
            return 0
        return max(1, math.ceil((consumed - 1) * interval - elapsed))

    def _rejected(
        self, consumed: int, window_ttl: int, retry_ms: int, *, blocked: bool
    ) -> ConsumptionOutcome:
        return ConsumptionOutcome(
            allowed=False,
            limit=self.policy.budget,
            remaining_points=0 if blocked else max(0, self.policy.budget - consumed),
            ms_before_reset=window_ttl,
            ms_before_retry=retry_ms,
            consumed_points=consumed,
            blocked=blocked,
        )

    async def get(self, key: str) -> CounterRecord | None:
        """Read the key's state without consuming. None when the key is unknown."""
        consumed = await self._store.get(self.counter_key(key))
        window_ttl = (
            await self._store.pttl(self.counter_key(key)) if consumed is not None else None
        )
        block_ttl = await self._store.pttl(self.block_key(key))
        if consumed is None and block_ttl is None:
            return None

        now_ms = int(self._clock() * 1000)
        points = consumed or 0
        blocked = bool(block_ttl)
        return CounterRecord(
            key=self.counter_key(key),
            points_consumed=points,
            remaining_points=0 if blocked else max(0, self.policy.budget - points),
            ms_before_reset=window_ttl or 0,
            window_expires_at=now_ms + window_ttl if window_ttl else None,
            blocked=blocked,
            ms_before_unblock=block_ttl or 0,
            blocked_until=now_ms + block_ttl if block_ttl else None,
        )

    async def delete(self, key: str) -> bool:
        """Clear the key's counter and block. True if anything existed."""
        deleted = await self._store.delete(self.counter_key(key), self.block_key(key))
        return deleted > 0

    async def block(self, key: str, *, seconds: int | None = None) -> None:
        """Block the key for ``seconds`` (default: the policy block duration)."""
        ttl_ms = (seconds or self.policy.effective_block_seconds) * 1000
        await self._store.set(self.block_key(key), ttl_ms=ttl_ms)
