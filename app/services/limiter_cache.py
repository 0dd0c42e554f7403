"""Memoizes one limiter per policy shape.

The cache key is the full shape ``(namespace, budget, window, block, smooth)``
so that two policies differing only in block duration never share a
limiter. Creation is double-checked under a lock: concurrent first uses from
several threads converge on a single instance. Reads after warm-up take no
lock.
"""

from __future__ import annotations

import logging
import threading
import time
from typing import Callable

from app.adapters.rate_limit.base import AbstractCounterStore
from app.services.limiter import Limiter
from app.services.policies import Policy

logger = logging.getLogger(__name__)


class LimiterCache:
    def __init__(
        self,
        store: AbstractCounterStore,
        *,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._store = store
        self._clock = clock
        self._lock = threading.Lock()
        self._limiters: dict[tuple[str, int, int, int, bool], Limiter] = {}

    @property
    def store(self) -> AbstractCounterStore:
        return self._store

    def get_or_create(self, policy: Policy) -> Limiter:
        """Return the limiter serving ``policy``, creating it on first use."""
        limiter = self._limiters.get(policy.shape)
        if limiter is not None:
            return limiter

        with self._lock:
            limiter = self._limiters.get(policy.shape)
            if limiter is None:
                limiter = Limiter(policy, self._store, clock=self._clock)
                self._limiters[policy.shape] = limiter
                logger.debug(
                    "rate_limit.limiter_created",
                    extra={
                        "policy": policy.name,
                        "key_namespace": policy.key_namespace,
                        "budget": policy.budget,
                        "window_s": policy.window_seconds,
                        "block_s": policy.block_seconds,
                    },
                )
        return limiter

    def __len__(self) -> int:
        return len(self._limiters)
