"""Counter store interface.

Limiters depend on this abstraction, not on Redis, so the same consumption
protocol runs against the shared Redis store in production and against the
in-process store in development and tests.

Every method that talks to a backing service raises
``StoreUnavailableError`` when the service errors or times out.
"""

from __future__ import annotations

from abc import ABC, abstractmethod


class AbstractCounterStore(ABC):
    """Atomic TTL counters shared by every process of the deployment."""

    backend: str = "abstract"

    @abstractmethod
    async def increment(self, key: str, *, amount: int, ttl_ms: int) -> tuple[int, int]:
        """Atomically add ``amount`` to a counter, creating it when missing.

        A missing counter starts at zero with a TTL of ``ttl_ms``; an existing
        counter keeps its TTL. Concurrent callers are totally ordered, so only
        one of them can ever observe the freshly created window.

        Returns:
            Tuple of (value after increment, remaining TTL in milliseconds).
        """
        raise NotImplementedError

    @abstractmethod
    async def decrement(self, key: str, *, amount: int) -> int:
        """Subtract ``amount`` from an existing counter (no-op when missing).

        Returns:
            The counter value afterwards, or 0 when the key did not exist.
        """
        raise NotImplementedError

    @abstractmethod
    async def get(self, key: str) -> int | None:
        """Return the counter value or None when the key does not exist."""
        raise NotImplementedError

    @abstractmethod
    async def pttl(self, key: str) -> int | None:
        """Return remaining TTL in milliseconds, None when missing or persistent."""
        raise NotImplementedError

    @abstractmethod
    async def set_if_absent(self, key: str, *, ttl_ms: int) -> bool:
        """Create a marker key with a TTL unless it already exists.

        Returns:
            True if this call created the key.
        """
        raise NotImplementedError

    @abstractmethod
    async def set(self, key: str, *, ttl_ms: int) -> None:
        """Create or overwrite a marker key with a TTL."""
        raise NotImplementedError

    @abstractmethod
    async def delete(self, *keys: str) -> int:
        """Delete keys, returning how many existed."""
        raise NotImplementedError

    @abstractmethod
    async def ping(self) -> bool:
        """Check the backing service is reachable."""
        raise NotImplementedError

    async def close(self) -> None:
        """Release connections held by the store."""
        return None
