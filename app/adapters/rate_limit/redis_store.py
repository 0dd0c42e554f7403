"""Redis counter store shared by every service instance.

Counter updates run as Lua scripts so that create-with-TTL and increment
happen in one atomic step on the Redis server. Redis executes scripts one at
a time, which totally orders concurrent consumers of the same key.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, TypeVar

import redis.asyncio as redis
from redis.exceptions import RedisError

from app.adapters.rate_limit.base import AbstractCounterStore
from app.core.errors import StoreUnavailableError

logger = logging.getLogger(__name__)

T = TypeVar("T")

# KEYS[1] counter key; ARGV[1] amount; ARGV[2] window TTL in ms
INCREMENT_SCRIPT = """
redis.call('SET', KEYS[1], 0, 'PX', ARGV[2], 'NX')
local consumed = redis.call('INCRBY', KEYS[1], ARGV[1])
local ttl = redis.call('PTTL', KEYS[1])
return {consumed, ttl}
"""

# KEYS[1] counter key; ARGV[1] amount
DECREMENT_SCRIPT = """
if redis.call('EXISTS', KEYS[1]) == 1 then
    return redis.call('DECRBY', KEYS[1], ARGV[1])
end
return 0
"""


class RedisCounterStore(AbstractCounterStore):
    """Counter store backed by ``redis.asyncio``.

    Args:
        client: Async Redis client (connections are opened lazily).
        key_prefix: Prefix prepended to every key, separated by ``:``.
    """

    backend = "redis"

    def __init__(self, client: redis.Redis, *, key_prefix: str = "") -> None:
        self._client = client
        self._key_prefix = key_prefix
        self._increment_script = client.register_script(INCREMENT_SCRIPT)
        self._decrement_script = client.register_script(DECREMENT_SCRIPT)

    def _key(self, key: str) -> str:
        return f"{self._key_prefix}:{key}" if self._key_prefix else key

    async def _call(self, operation: str, func: Callable[[], Awaitable[T]]) -> T:
        try:
            return await func()
        except (RedisError, OSError, asyncio.TimeoutError) as exc:
            logger.error(
                "counter_store.operation_failed",
                extra={
                    "backend": self.backend,
                    "operation": operation,
                    "error_type": type(exc).__name__,
                    "error_msg": str(exc),
                },
            )
            raise StoreUnavailableError(
                code="rate_limit_store_unavailable",
                message="Rate limit counter store is unavailable",
                details={"backend": self.backend, "operation": operation},
            ) from exc

    async def increment(self, key: str, *, amount: int, ttl_ms: int) -> tuple[int, int]:
        result: Any = await self._call(
            "increment",
            lambda: self._increment_script(keys=[self._key(key)], args=[amount, ttl_ms]),
        )
        consumed, ttl = result
        return int(consumed), int(ttl)

    async def decrement(self, key: str, *, amount: int) -> int:
        result = await self._call(
            "decrement",
            lambda: self._decrement_script(keys=[self._key(key)], args=[amount]),
        )
        return int(result)

    async def get(self, key: str) -> int | None:
        value = await self._call("get", lambda: self._client.get(self._key(key)))
        if value is None:
            return None
        return int(value)

    async def pttl(self, key: str) -> int | None:
        ttl = await self._call("pttl", lambda: self._client.pttl(self._key(key)))
        # -2: missing key, -1: key without expiry
        if ttl is None or int(ttl) < 0:
            return None
        return int(ttl)

    async def set_if_absent(self, key: str, *, ttl_ms: int) -> bool:
        created = await self._call(
            "set_if_absent",
            lambda: self._client.set(self._key(key), 1, px=ttl_ms, nx=True),
        )
        return bool(created)

    async def set(self, key: str, *, ttl_ms: int) -> None:
        await self._call("set", lambda: self._client.set(self._key(key), 1, px=ttl_ms))

    async def delete(self, *keys: str) -> int:
        if not keys:
            return 0
        deleted = await self._call(
            "delete",
            lambda: self._client.delete(*(self._key(k) for k in keys)),
        )
        return int(deleted)

    async def ping(self) -> bool:
        return bool(await self._call("ping", lambda: self._client.ping()))

    async def close(self) -> None:
        await self._client.aclose()
