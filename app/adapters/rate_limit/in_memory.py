"""In-process counter store.

Notes:
- Per-process only: running multiple workers multiplies the effective limit.
- Thread-safe: uses a lock around shared state, so every operation is atomic
  with respect to other threads and coroutines.
"""

from __future__ import annotations

import math
import threading
import time
from dataclasses import dataclass
from typing import Callable

from app.adapters.rate_limit.base import AbstractCounterStore


@dataclass
class _Entry:
    value: int
    expires_at: float | None


class InMemoryCounterStore(AbstractCounterStore):
    """Counter store keeping TTL counters in a dict.

    Expired entries are dropped lazily when they are touched and swept on
    writes, which keeps memory bounded by the number of active keys.

    Important:
        This store is per-process only. If the API runs with multiple workers
        (e.g., multiple Uvicorn/Gunicorn workers), each worker will enforce its
        own independent limits. Use the Redis store for shared limits.
    """

    backend = "memory"

    def __init__(self, *, clock: Callable[[], float] = time.time) -> None:
        """Initialize the store.

        Args:
            clock: Time source function returning UNIX time in seconds.
        """
        self._clock = clock
        self._lock = threading.RLock()
        self._entries: dict[str, _Entry] = {}
        self._writes_since_sweep = 0

    def _now_ms(self) -> float:
        return self._clock() * 1000

    def _live_entry_locked(self, key: str, now_ms: float) -> _Entry | None:
        entry = self._entries.get(key)
        if entry is None:
            return None
        if entry.expires_at is not None and entry.expires_at <= now_ms:
            del self._entries[key]
            return None
        return entry

    def _ttl_locked(self, entry: _Entry, now_ms: float) -> int | None:
        if entry.expires_at is None:
            return None
        return max(0, int(math.ceil(entry.expires_at - now_ms)))

    def _sweep_locked(self, now_ms: float) -> None:
        self._writes_since_sweep += 1
        if self._writes_since_sweep < 1000:
            return
        self._writes_since_sweep = 0
        expired = [
            k
            for k, entry in self._entries.items()
            if entry.expires_at is not None and entry.expires_at <= now_ms
        ]
        for key in expired:
            del self._entries[key]

    async def increment(self, key: str, *, amount: int, ttl_ms: int) -> tuple[int, int]:
        now_ms = self._now_ms()
        with self._lock:
            self._sweep_locked(now_ms)
            entry = self._live_entry_locked(key, now_ms)
            if entry is None:
                entry = _Entry(value=0, expires_at=now_ms + ttl_ms)
                self._entries[key] = entry
            entry.value += amount
            ttl = self._ttl_locked(entry, now_ms)
            return entry.value, ttl if ttl is not None else -1

    async def decrement(self, key: str, *, amount: int) -> int:
        now_ms = self._now_ms()
        with self._lock:
            entry = self._live_entry_locked(key, now_ms)
            if entry is None:
                return 0
            entry.value -= amount
            return entry.value

    async def get(self, key: str) -> int | None:
        now_ms = self._now_ms()
        with self._lock:
            entry = self._live_entry_locked(key, now_ms)
            return entry.value if entry is not None else None

    async def pttl(self, key: str) -> int | None:
        now_ms = self._now_ms()
        with self._lock:
            entry = self._live_entry_locked(key, now_ms)
            if entry is None:
                return None
            return self._ttl_locked(entry, now_ms)

    async def set_if_absent(self, key: str, *, ttl_ms: int) -> bool:
        now_ms = self._now_ms()
        with self._lock:
            if self._live_entry_locked(key, now_ms) is not None:
                return False
            self._entries[key] = _Entry(value=1, expires_at=now_ms + ttl_ms)
            return True

    async def set(self, key: str, *, ttl_ms: int) -> None:
        now_ms = self._now_ms()
        with self._lock:
            self._entries[key] = _Entry(value=1, expires_at=now_ms + ttl_ms)

    async def delete(self, *keys: str) -> int:
        now_ms = self._now_ms()
        deleted = 0
        with self._lock:
            for key in keys:
                if self._live_entry_locked(key, now_ms) is not None:
                    del self._entries[key]
                    deleted += 1
        return deleted

    async def ping(self) -> bool:
        return True
