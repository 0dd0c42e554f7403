from __future__ import annotations

import logging

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from app.core.errors import StoreUnavailableError

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Health"])


@router.get("/health")
def health_check() -> dict:
    """Liveness check.

    Returns a simple status response to verify the API process is up. Used by
    load balancers; never touches the counter store.
    """

    return {"status": "ok"}


@router.get("/health/ready")
async def readiness_check(request: Request) -> JSONResponse:
    """Readiness check including a counter store ping.

    Returns 503 while the store is unreachable, so orchestrators can hold
    traffic back from an instance that could only fail open or closed.
    """

    store = request.app.state.counter_store
    try:
        reachable = await store.ping()
    except StoreUnavailableError:
        reachable = False

    status_code = 200 if reachable else 503
    if not reachable:
        logger.warning("health.store_unreachable", extra={"backend": store.backend})
    return JSONResponse(
        status_code=status_code,
        content={
            "status": "ok" if reachable else "unavailable",
            "counter_store": {"backend": store.backend, "reachable": reachable},
        },
    )
