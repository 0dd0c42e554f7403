"""Pytest configuration and fixtures shared across all test modules.

This file is automatically loaded by pytest before running any tests.
It sets the environment before any module imports ``app.core.config`` so the
global settings resolve to an in-memory, fail-closed test configuration.
"""

import os

# CRITICAL: Set these before any imports that might load settings
os.environ["APP_ENV"] = "testing"
os.environ.setdefault("APP_RATE_LIMIT_BACKEND", "memory")
os.environ.setdefault("APP_RATE_LIMIT_FAILURE_MODE", "closed")
os.environ.setdefault("APP_ADMIN_AUTH_REQUIRED", "true")
os.environ.setdefault("APP_ADMIN_API_KEYS", "test-admin-key,test-admin-key-2")
# The global middleware is exercised explicitly by the tests that need it
os.environ.setdefault("APP_RATE_LIMIT_GLOBAL_POLICY", "")
os.environ.setdefault("LOG_LEVEL", "WARNING")

import pytest  # noqa: E402

from app.adapters.rate_limit.in_memory import InMemoryCounterStore  # noqa: E402
from app.services.admission_service import AdmissionService  # noqa: E402
from app.services.limiter_cache import LimiterCache  # noqa: E402
from app.services.policies import PolicyRegistry  # noqa: E402

ADMIN_HEADERS = {"X-Admin-Key": "test-admin-key"}


class FakeClock:
    """Manually advanced wall clock returning UNIX seconds."""

    def __init__(self, start: float = 1_700_000_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def store(clock: FakeClock) -> InMemoryCounterStore:
    return InMemoryCounterStore(clock=clock)


@pytest.fixture
def limiters(store: InMemoryCounterStore, clock: FakeClock) -> LimiterCache:
    return LimiterCache(store, clock=clock)


@pytest.fixture
def admission(limiters: LimiterCache) -> AdmissionService:
    return AdmissionService(PolicyRegistry.with_defaults(), limiters)
