"""Operator authentication and caller identity access.

Two concerns live here:
- ``verify_admin_api_key``: gates the rate limit admin API behind operator
  keys configured via ``APP_ADMIN_API_KEYS``.
- ``get_request_user_id``: read-only accessor for the authenticated user of
  the current request. The identity layer (session/JWT middleware) owns
  authentication and stores the user id on ``request.state.user_id``.
"""

from __future__ import annotations

import hmac
import logging
from typing import Annotated

from fastapi import Header, HTTPException, status
from starlette.requests import Request

from app.core.config import AppSettings, settings
from app.core.errors import AuthenticationAppError
from app.core.logging import hash_identifier

logger = logging.getLogger(__name__)


def parse_api_keys(keys_string: str | None) -> set[str]:
    """Parse comma-separated keys into a set.

    Examples:
        >>> parse_api_keys("key1, key2 , key3 ")
        {'key1', 'key2', 'key3'}
        >>> parse_api_keys(None)
        set()
    """
    if not keys_string:
        return set()

    return {key.strip() for key in keys_string.split(",") if key.strip()}


def validate_admin_api_key(provided_key: str, cfg: AppSettings | None = None) -> None:
    """Validate that the provided operator key matches configured keys.

    Checks against ``cfg`` when given, else the process settings.

    Raises:
        AuthenticationAppError: If the key is invalid or no keys are configured.
    """
    cfg = cfg or settings.app
    if not cfg.admin_auth_required:
        return

    valid_keys = parse_api_keys(cfg.admin_api_keys)

    if not valid_keys:
        logger.error(
            "admin_key_validation_failed",
            extra={"reason": "admin_keys_not_configured"},
        )
        raise AuthenticationAppError(
            code="admin_keys_not_configured",
            message="Admin authentication is enabled but no admin keys are configured",
            details={
                "hint": "Set APP_ADMIN_API_KEYS or disable auth with APP_ADMIN_AUTH_REQUIRED=false"
            },
        )

    if not any(hmac.compare_digest(provided_key.encode(), key.encode()) for key in valid_keys):
        logger.warning(
            "admin_key_validation_failed",
            extra={
                "reason": "invalid_admin_key",
                "admin_key_hash": hash_identifier(provided_key),
            },
        )
        raise AuthenticationAppError(
            code="invalid_admin_key",
            message="Invalid or missing admin key",
        )


async def verify_admin_api_key(
    request: Request,
    x_admin_key: Annotated[str | None, Header(alias="X-Admin-Key")] = None,
) -> None:
    """FastAPI dependency guarding operator endpoints.

    Uses the settings the serving app was built with (``app.state.settings``),
    falling back to the process settings.

    Usage:
        @router.post("/admin/...", dependencies=[Depends(verify_admin_api_key)])

    Raises:
        HTTPException: 403 Forbidden if authentication fails.
    """
    cfg = getattr(request.app.state, "settings", settings).app
    if not cfg.admin_auth_required:
        logger.debug("admin_auth.skipped", extra={"reason": "admin_auth_required_false"})
        return

    if not x_admin_key:
        logger.warning("admin_auth.missing_key", extra={"admin_key_present": False})
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Missing admin key. Provide X-Admin-Key header.",
        )

    try:
        validate_admin_api_key(x_admin_key, cfg)
    except AuthenticationAppError as exc:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail=exc.message,
        ) from exc

    logger.info(
        "admin_auth.success",
        extra={"admin_key_hash": hash_identifier(x_admin_key)},
    )


def get_request_user_id(request: Request) -> str | None:
    """Return the authenticated user id of ``request``, if any."""
    user_id = getattr(request.state, "user_id", None)
    if user_id is None or user_id == "":
        return None
    return str(user_id)
