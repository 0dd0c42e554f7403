"""Tests for the rate limit admin endpoints and health checks."""

from unittest.mock import AsyncMock

import pytest
from fastapi import Depends, FastAPI
from fastapi.testclient import TestClient

from app.core.app_factory import create_app
from app.core.errors import StoreUnavailableError
from app.core.rate_limit import rate_limit

ADMIN_HEADERS = {"X-Admin-Key": "test-admin-key"}


@pytest.fixture
def app(store, clock) -> FastAPI:
    app = create_app(store=store, clock=clock)

    @app.post("/auth/login", dependencies=[Depends(rate_limit("login"))])
    async def login():
        return {"ok": True}

    return app


@pytest.fixture
def client(app: FastAPI) -> TestClient:
    return TestClient(app)


def _exhaust_login(client: TestClient) -> None:
    for _ in range(6):
        client.post("/auth/login")


class TestAdminAuth:
    def test_missing_admin_key_is_forbidden(self, client: TestClient) -> None:
        response = client.get("/v1/admin/rate-limits")

        assert response.status_code == 403
        assert response.json()["detail"] == "Missing admin key. Provide X-Admin-Key header."

    def test_invalid_admin_key_is_forbidden(self, client: TestClient) -> None:
        response = client.get("/v1/admin/rate-limits", headers={"X-Admin-Key": "wrong"})

        assert response.status_code == 403

    def test_admin_endpoints_are_rate_limited(self, client: TestClient) -> None:
        statuses = [
            client.get("/v1/admin/rate-limits", headers=ADMIN_HEADERS).status_code
            for _ in range(31)
        ]

        assert statuses[:30] == [200] * 30
        assert statuses[30] == 429


class TestAdminOperations:
    def test_lists_policies(self, client: TestClient) -> None:
        response = client.get("/v1/admin/rate-limits", headers=ADMIN_HEADERS)

        assert response.status_code == 200
        policies = {p["name"]: p for p in response.json()["policies"]}
        assert set(policies) == {
            "admin", "api", "email", "global", "login", "register", "strict", "upload"
        }
        assert policies["login"] == {
            "name": "login",
            "budget": 5,
            "window_seconds": 60,
            "block_seconds": 300,
            "key_namespace": "login",
            "smooth": False,
        }
        assert policies["api"]["block_seconds"] == 60

    def test_status_of_blocked_key(self, client: TestClient) -> None:
        _exhaust_login(client)

        response = client.get(
            "/v1/admin/rate-limits/login",
            params={"key": "testclient"},
            headers=ADMIN_HEADERS,
        )

        assert response.status_code == 200
        body = response.json()
        assert body["policy"] == "login"
        assert body["record"]["key"] == "login:testclient"
        assert body["record"]["points_consumed"] == 6
        assert body["record"]["blocked"] is True
        assert body["record"]["ms_before_unblock"] == 300_000

    def test_status_of_quiet_key_has_no_record(self, client: TestClient) -> None:
        response = client.get(
            "/v1/admin/rate-limits/login",
            params={"key": "198.51.100.9"},
            headers=ADMIN_HEADERS,
        )

        assert response.status_code == 200
        assert response.json()["record"] is None

    def test_status_requires_key(self, client: TestClient) -> None:
        response = client.get("/v1/admin/rate-limits/login", headers=ADMIN_HEADERS)

        assert response.status_code == 422

    def test_reset_unblocks_caller(self, client: TestClient) -> None:
        _exhaust_login(client)
        assert client.post("/auth/login").status_code == 429

        response = client.post(
            "/v1/admin/rate-limits/login/reset",
            json={"key": "testclient"},
            headers=ADMIN_HEADERS,
        )

        assert response.status_code == 200
        assert response.json() == {"policy": "login", "key": "testclient", "deleted": True}
        assert client.post("/auth/login").status_code == 200

    def test_reset_of_quiet_key_succeeds(self, client: TestClient) -> None:
        response = client.post(
            "/v1/admin/rate-limits/login/reset",
            json={"key": "198.51.100.9"},
            headers=ADMIN_HEADERS,
        )

        assert response.status_code == 200
        assert response.json()["deleted"] is False

    def test_manual_block(self, client: TestClient) -> None:
        response = client.post(
            "/v1/admin/rate-limits/login/block",
            json={"key": "testclient", "seconds": 120},
            headers=ADMIN_HEADERS,
        )

        assert response.status_code == 200
        assert response.json()["record"]["ms_before_unblock"] == 120_000
        assert client.post("/auth/login").status_code == 429

    def test_block_rejects_non_positive_seconds(self, client: TestClient) -> None:
        response = client.post(
            "/v1/admin/rate-limits/login/block",
            json={"key": "testclient", "seconds": 0},
            headers=ADMIN_HEADERS,
        )

        assert response.status_code == 422

    @pytest.mark.parametrize(
        "method, path, kwargs",
        [
            ("get", "/v1/admin/rate-limits/nope", {"params": {"key": "k"}}),
            ("post", "/v1/admin/rate-limits/nope/reset", {"json": {"key": "k"}}),
            ("post", "/v1/admin/rate-limits/nope/block", {"json": {"key": "k"}}),
        ],
    )
    def test_unknown_policy_is_not_found(self, client, method, path, kwargs) -> None:
        response = getattr(client, method)(path, headers=ADMIN_HEADERS, **kwargs)

        assert response.status_code == 404
        assert "nope" in response.json()["detail"]


class TestHealth:
    def test_liveness(self, client: TestClient) -> None:
        assert client.get("/health").json() == {"status": "ok"}

    def test_readiness_reports_store(self, client: TestClient) -> None:
        response = client.get("/health/ready")

        assert response.status_code == 200
        assert response.json() == {
            "status": "ok",
            "counter_store": {"backend": "memory", "reachable": True},
        }

    def test_readiness_fails_when_store_unreachable(self, client, store) -> None:
        store.ping = AsyncMock(
            side_effect=StoreUnavailableError(
                code="rate_limit_store_unavailable",
                message="Rate limit counter store is unavailable",
            )
        )

        response = client.get("/health/ready")

        assert response.status_code == 503
        assert response.json()["counter_store"]["reachable"] is False


class TestOpenApi:
    def test_admin_operations_require_admin_key(self, client: TestClient) -> None:
        schema = client.get("/openapi.json").json()

        assert schema["components"]["securitySchemes"]["AdminKeyAuth"]["name"] == "X-Admin-Key"
        listing = schema["paths"]["/v1/admin/rate-limits"]["get"]
        assert listing["security"] == [{"AdminKeyAuth": []}]
        assert "429" in listing["responses"]

    def test_health_is_documented_as_open(self, client: TestClient) -> None:
        schema = client.get("/openapi.json").json()

        assert schema["paths"]["/health"]["get"]["security"] == []
        assert {"Rate Limit Admin", "Health"} <= {t["name"] for t in schema["tags"]}
