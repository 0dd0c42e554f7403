"""Builds the gateway app around one shared counter store.

Everything a request touches hangs off ``app.state``: the store, the
limiter cache and the admission and admin services. Tests pass their own
in-memory store and a fake clock.
"""

from __future__ import annotations

import logging
import time
from contextlib import asynccontextmanager
from typing import AsyncIterator, Callable

from fastapi import FastAPI

from app.adapters.rate_limit import AbstractCounterStore, create_counter_store
from app.api.routes import admin_router, health_router
from app.core.config import Settings, settings as default_settings
from app.core.exception_handlers import setup_exception_handlers
from app.core.logging import configure_logging
from app.core.middleware import global_rate_limit_middleware, request_id_middleware
from app.core.openapi import apply_openapi_customizations
from app.services.admission_service import AdmissionService
from app.services.limiter_cache import LimiterCache
from app.services.rate_limit_admin import RateLimitAdminService

logger = logging.getLogger(__name__)


def create_app(
    *,
    store: AbstractCounterStore | None = None,
    clock: Callable[[], float] = time.time,
    cfg: Settings | None = None,
) -> FastAPI:
    """Wire settings, counter store and services into a FastAPI app.

    Args:
        store: Counter store to share across all policies. Built from settings
            when omitted.
        clock: Wall clock in epoch seconds, used for smoothing and record
            timestamps.
        cfg: Settings override (defaults to the process settings).

    Returns:
        The app, ready to serve; its lifespan closes the store on shutdown.
    """
    cfg = cfg or default_settings

    # Before the store factory, which logs the chosen backend
    configure_logging(cfg.log, debug=cfg.app.debug)

    counter_store = store or create_counter_store(cfg)
    limiters = LimiterCache(counter_store, clock=clock)
    admission = AdmissionService.from_settings(limiters, cfg)

    @asynccontextmanager
    async def lifespan(_: FastAPI) -> AsyncIterator[None]:
        logger.info(
            "rate_limit.ready",
            extra={
                "backend": counter_store.backend,
                "failure_mode": cfg.app.rate_limit_failure_mode,
                "policies": admission.registry.names(),
            },
        )
        try:
            yield
        finally:
            await counter_store.close()

    app = FastAPI(
        title="Rate Limit Gateway",
        description=(
            "Request admission control for HTTP services. Named policies debit "
            "per-caller budgets in a shared counter store and reject excess "
            "requests with 429 plus Retry-After. Operators can inspect, reset and "
            "block keys through the admin endpoints (X-Admin-Key)."
        ),
        version="0.1.0",
        license_info={
            "name": "MIT License",
            "url": "https://opensource.org/licenses/MIT",
        },
        lifespan=lifespan,
    )

    app.state.settings = cfg
    app.state.counter_store = counter_store
    app.state.limiters = limiters
    app.state.admission_service = admission
    app.state.rate_limit_admin = RateLimitAdminService(admission.registry, limiters)

    # Middleware (registered last runs first)
    app.middleware("http")(global_rate_limit_middleware)
    app.middleware("http")(request_id_middleware)

    # Exception handlers
    setup_exception_handlers(app)

    # Routers
    app.include_router(admin_router, prefix="/v1")
    app.include_router(health_router)

    # X-Admin-Key scheme on admin paths
    apply_openapi_customizations(app)

    return app
