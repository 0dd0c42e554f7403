"""Derives the counter key identifying who is being rate limited.

Key functions are plain synchronous callables ``Request -> str``. They must
not perform I/O or mutate the request; the derived key is only used to
address counters in the store.
"""

from __future__ import annotations

from typing import Callable

from starlette.requests import Request

from app.core.auth import get_request_user_id
from app.core.errors import InvalidKeyDerivationError

KeyFunc = Callable[[Request], str]

UNKNOWN_CLIENT = "unknown"


def client_address(request: Request, *, trust_forwarded_for: bool = False) -> str:
    """Return the caller's network address.

    Args:
        request: Incoming request.
        trust_forwarded_for: Use the first ``X-Forwarded-For`` hop, for
            deployments behind a reverse proxy that sets the header.
    """
    if trust_forwarded_for:
        forwarded = request.headers.get("x-forwarded-for", "")
        first_hop = forwarded.split(",")[0].strip()
        if first_hop:
            return first_hop
    if request.client and request.client.host:
        return request.client.host
    return UNKNOWN_CLIENT


def derive_key(
    request: Request,
    *,
    include_user_id: bool = False,
    key_func: KeyFunc | None = None,
    trust_forwarded_for: bool = False,
) -> str:
    """Derive the rate limit key for ``request``.

    Precedence: ``key_func`` when given, then ``{address}:{user_id}`` when
    ``include_user_id`` is set and the request is authenticated, then the
    bare address.

    Raises:
        InvalidKeyDerivationError: If ``key_func`` raises or does not return a
            non-empty string.
    """
    if key_func is not None:
        func_name = getattr(key_func, "__name__", type(key_func).__name__)
        try:
            key = key_func(request)
        except Exception as exc:
            raise InvalidKeyDerivationError(
                code="rate_limit_key_func_failed",
                message=f"Rate limit key function '{func_name}' raised {type(exc).__name__}",
                details={"hint": "Key functions must be pure and must not raise"},
            ) from exc
        if not isinstance(key, str) or not key:
            raise InvalidKeyDerivationError(
                code="rate_limit_key_func_invalid",
                message=f"Rate limit key function '{func_name}' must return a non-empty string",
                details={"context": {"returned_type": type(key).__name__}},
            )
        return key

    address = client_address(request, trust_forwarded_for=trust_forwarded_for)
    if include_user_id:
        user_id = get_request_user_id(request)
        if user_id is not None:
            return f"{address}:{user_id}"
    return address
