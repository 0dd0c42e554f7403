"""Unit tests for the in-memory counter store."""

from unittest.mock import Mock

import pytest

from app.adapters.rate_limit.in_memory import InMemoryCounterStore


@pytest.mark.asyncio
async def test_increment_creates_counter_with_ttl() -> None:
    clock = Mock(return_value=1000.0)
    store = InMemoryCounterStore(clock=clock)

    assert await store.increment("k", amount=1, ttl_ms=60_000) == (1, 60_000)
    assert await store.increment("k", amount=2, ttl_ms=60_000) == (3, 60_000)


@pytest.mark.asyncio
async def test_increment_keeps_original_expiry() -> None:
    clock = Mock(return_value=1000.0)
    store = InMemoryCounterStore(clock=clock)

    await store.increment("k", amount=1, ttl_ms=10_000)
    clock.return_value = 1004.0

    consumed, ttl = await store.increment("k", amount=1, ttl_ms=10_000)
    assert consumed == 2
    assert ttl == 6_000


@pytest.mark.asyncio
async def test_counter_expires_after_ttl() -> None:
    clock = Mock(return_value=1000.0)
    store = InMemoryCounterStore(clock=clock)

    await store.increment("k", amount=5, ttl_ms=10_000)
    clock.return_value = 1010.0

    assert await store.get("k") is None
    assert await store.pttl("k") is None
    assert await store.increment("k", amount=1, ttl_ms=10_000) == (1, 10_000)


@pytest.mark.asyncio
async def test_isolated_by_key() -> None:
    store = InMemoryCounterStore(clock=Mock(return_value=1000.0))

    await store.increment("k1", amount=3, ttl_ms=60_000)

    assert await store.get("k1") == 3
    assert await store.get("k2") is None


@pytest.mark.asyncio
async def test_decrement_only_touches_existing_counters() -> None:
    store = InMemoryCounterStore(clock=Mock(return_value=1000.0))

    assert await store.decrement("missing", amount=1) == 0
    assert await store.get("missing") is None

    await store.increment("k", amount=3, ttl_ms=60_000)
    assert await store.decrement("k", amount=1) == 2


@pytest.mark.asyncio
async def test_set_if_absent_does_not_overwrite() -> None:
    clock = Mock(return_value=1000.0)
    store = InMemoryCounterStore(clock=clock)

    assert await store.set_if_absent("b", ttl_ms=5_000) is True
    clock.return_value = 1002.0
    assert await store.set_if_absent("b", ttl_ms=60_000) is False
    assert await store.pttl("b") == 3_000


@pytest.mark.asyncio
async def test_set_replaces_ttl() -> None:
    store = InMemoryCounterStore(clock=Mock(return_value=1000.0))

    await store.set_if_absent("b", ttl_ms=5_000)
    await store.set("b", ttl_ms=90_000)

    assert await store.pttl("b") == 90_000


@pytest.mark.asyncio
async def test_delete_counts_live_keys_only() -> None:
    clock = Mock(return_value=1000.0)
    store = InMemoryCounterStore(clock=clock)

    await store.increment("a", amount=1, ttl_ms=60_000)
    await store.increment("expired", amount=1, ttl_ms=1_000)
    clock.return_value = 1001.0

    assert await store.delete("a", "expired", "never-existed") == 1
    assert await store.delete("a") == 0
    assert await store.delete() == 0


@pytest.mark.asyncio
async def test_expired_entries_are_swept_on_writes() -> None:
    clock = Mock(return_value=1000.0)
    store = InMemoryCounterStore(clock=clock)

    for i in range(10):
        await store.increment(f"old-{i}", amount=1, ttl_ms=1_000)
    clock.return_value = 1002.0
    for i in range(1000):
        await store.increment(f"new-{i}", amount=1, ttl_ms=60_000)

    assert not any(key.startswith("old-") for key in store._entries)


@pytest.mark.asyncio
async def test_ping_and_backend_name() -> None:
    store = InMemoryCounterStore()

    assert await store.ping() is True
    assert store.backend == "memory"
    await store.close()
