"""Factory for the counter store selected by configuration."""

from __future__ import annotations

import logging

import redis.asyncio as redis

from app.adapters.rate_limit.base import AbstractCounterStore
from app.adapters.rate_limit.in_memory import InMemoryCounterStore
from app.adapters.rate_limit.redis_store import RedisCounterStore
from app.core.config import Settings, settings as default_settings
from app.core.errors import ValidationAppError

logger = logging.getLogger(__name__)


def _create_redis_client(cfg: Settings) -> redis.Redis:
    redis_cfg = cfg.redis
    options = {
        "socket_timeout": redis_cfg.socket_timeout_seconds,
        "socket_connect_timeout": redis_cfg.socket_timeout_seconds,
        "decode_responses": True,
    }
    if redis_cfg.url:
        return redis.from_url(redis_cfg.url, **options)
    return redis.Redis(
        host=redis_cfg.host,
        port=redis_cfg.port,
        password=redis_cfg.password,
        db=redis_cfg.db,
        **options,
    )


def create_counter_store(cfg: Settings | None = None) -> AbstractCounterStore:
    """Instantiate the counter store for ``APP_RATE_LIMIT_BACKEND``.

    The Redis client connects lazily, so building the store never blocks on
    the network; reachability is reported by ``ping()`` and the readiness
    endpoint.

    Raises:
        ValidationAppError: If the backend name is not supported.
    """
    cfg = cfg or default_settings
    backend = cfg.app.rate_limit_backend

    if backend == "redis":
        logger.info(
            "counter_store.created",
            extra={"backend": backend, "key_prefix": cfg.redis.key_prefix},
        )
        return RedisCounterStore(_create_redis_client(cfg), key_prefix=cfg.redis.key_prefix)

    if backend == "memory":
        logger.warning(
            "counter_store.created",
            extra={"backend": backend, "hint": "limits are enforced per process only"},
        )
        return InMemoryCounterStore()

    raise ValidationAppError(
        code="rate_limit_unknown_backend",
        message=f"Unknown rate limit backend: '{backend}'. Supported backends: redis, memory",
    )
