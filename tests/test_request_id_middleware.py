from __future__ import annotations

import pytest
from fastapi.testclient import TestClient

from gatekeeper.core.app_factory import create_app
from gatekeeper.core.config import LogSettings, RateLimitSettings, Settings


@pytest.fixture
def client() -> TestClient:
    return TestClient(create_app(Settings(log=LogSettings(level="WARNING", format="plain"))))


def test_preserves_incoming_request_id_header(client: TestClient):
    incoming_id = "test-request-id-123"
    resp = client.get("/health", headers={"X-Request-ID": incoming_id})

    assert resp.status_code == 200
    assert resp.headers.get("X-Request-ID") == incoming_id


def test_generates_request_id_when_missing(client: TestClient):
    resp = client.get("/health")

    assert resp.status_code == 200
    generated = resp.headers.get("X-Request-ID")
    assert generated
    assert isinstance(generated, str)

    duration = resp.headers.get("X-Request-Duration-ms")
    assert duration is not None


def test_request_id_is_echoed_on_throttled_responses():
    settings = Settings(
        log=LogSettings(level="WARNING", format="plain"),
        rate_limit=RateLimitSettings(flood_max_requests=1),
    )
    client = TestClient(create_app(settings))

    client.get("/v1/limits")
    resp = client.get("/v1/limits", headers={"X-Request-ID": "throttled-1"})

    assert resp.status_code == 429
    assert resp.headers["X-Request-ID"] == "throttled-1"
    assert resp.json()["request_id"] == "throttled-1"
