"""Counter store adapters.

This package hides the shared counter store behind a small interface so the
admission engine runs unchanged against Redis or the in-process store.
"""

from app.adapters.rate_limit.base import AbstractCounterStore
from app.adapters.rate_limit.factory import create_counter_store
from app.adapters.rate_limit.in_memory import InMemoryCounterStore
from app.adapters.rate_limit.redis_store import RedisCounterStore

__all__ = [
    "AbstractCounterStore",
    "InMemoryCounterStore",
    "RedisCounterStore",
    "create_counter_store",
]
