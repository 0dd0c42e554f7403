"""OpenAPI additions for the gateway.

Admin operations are documented as requiring ``X-Admin-Key`` and as able to
answer 429; health probes are documented as open.
"""

from __future__ import annotations

from typing import Any, Dict

from fastapi import FastAPI

ADMIN_PATH_PREFIX = "/v1/admin/"

ADMIN_KEY_SCHEME: Dict[str, Any] = {
    "type": "apiKey",
    "in": "header",
    "name": "X-Admin-Key",
    "description": "Operator key for the rate limit admin endpoints.",
}

TAGS_METADATA = (
    {"name": "Rate Limit Admin", "description": "Inspect, reset and block rate limit keys."},
    {"name": "Health", "description": "Liveness and readiness checks."},
)

RATE_LIMITED_RESPONSE: Dict[str, Any] = {
    "description": "Rate limit exceeded; see the Retry-After header.",
    "headers": {
        "Retry-After": {"schema": {"type": "integer"}},
        "X-RateLimit-Limit": {"schema": {"type": "integer"}},
        "X-RateLimit-Remaining": {"schema": {"type": "integer"}},
        "X-RateLimit-Reset": {"schema": {"type": "integer"}},
    },
}


def _merge_tags(schema: Dict[str, Any]) -> None:
    tags = schema.setdefault("tags", [])
    known = {t.get("name") for t in tags}
    tags.extend(dict(tag) for tag in TAGS_METADATA if tag["name"] not in known)


def _secure_operations(schema: Dict[str, Any]) -> None:
    for path, operations in schema.get("paths", {}).items():
        is_admin = path.startswith(ADMIN_PATH_PREFIX)
        for operation in operations.values():
            if not isinstance(operation, dict):
                continue
            operation["security"] = [{"AdminKeyAuth": []}] if is_admin else []
            if is_admin:
                operation.setdefault("responses", {}).setdefault("429", RATE_LIMITED_RESPONSE)


def apply_openapi_customizations(app: FastAPI) -> None:
    """Wrap ``app.openapi`` so the generated schema carries the additions above."""

    generate = app.openapi

    def custom_openapi() -> Dict[str, Any]:
        schema = generate()
        schemes = schema.setdefault("components", {}).setdefault("securitySchemes", {})
        schemes.setdefault("AdminKeyAuth", ADMIN_KEY_SCHEME)
        _merge_tags(schema)
        _secure_operations(schema)
        return schema

    app.openapi = custom_openapi  # type: ignore[assignment]
