from __future__ import annotations

import uuid

import pytest
from fastapi.testclient import TestClient

from app.core.app_factory import create_app
from app.core.config import settings


@pytest.fixture
def client(store, clock) -> TestClient:
    return TestClient(create_app(store=store, clock=clock))


def test_echoes_caller_request_id(client: TestClient):
    resp = client.get("/health", headers={"X-Request-ID": "lb-7f3a"})

    assert resp.status_code == 200
    assert resp.headers["X-Request-ID"] == "lb-7f3a"
    assert float(resp.headers["X-Request-Duration-ms"]) >= 0


def test_generates_uuid_request_id(client: TestClient):
    generated = client.get("/health").headers["X-Request-ID"]

    assert uuid.UUID(generated).version == 4


def test_request_id_on_rejected_admin_call(client: TestClient):
    resp = client.get(
        "/v1/admin/rate-limits",
        headers={"X-Request-ID": "req-denied", "X-Admin-Key": "wrong"},
    )

    assert resp.status_code == 403
    assert resp.headers["X-Request-ID"] == "req-denied"


def test_global_rejection_carries_request_id(client: TestClient, monkeypatch):
    monkeypatch.setattr(settings.app, "rate_limit_global_policy", "global")
    headers = {"X-Request-ID": "req-burst", "X-Admin-Key": "test-admin-key"}
    for _ in range(10):
        client.get("/v1/admin/rate-limits/login?key=203.0.113.7", headers=headers)

    resp = client.get("/v1/admin/rate-limits/login?key=203.0.113.7", headers=headers)

    assert resp.status_code == 429
    assert resp.headers["X-Request-ID"] == "req-burst"
    assert resp.json()["error"]["request_id"] == "req-burst"
