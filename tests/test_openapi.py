from __future__ import annotations

from fastapi.testclient import TestClient

from gatekeeper.core.app_factory import create_app
from gatekeeper.core.config import LogSettings, Settings
from gatekeeper.core.openapi import TOO_MANY_REQUESTS_REF


def _schema() -> dict:
    client = TestClient(create_app(Settings(log=LogSettings(level="WARNING", format="plain"))))
    resp = client.get("/openapi.json")
    assert resp.status_code == 200
    return resp.json()


def test_limited_operations_document_429():
    schema = _schema()

    limits = schema["paths"]["/v1/limits"]["get"]

    assert limits["responses"]["429"] == {"$ref": TOO_MANY_REQUESTS_REF}
    component = schema["components"]["responses"]["TooManyRequests"]
    assert set(component["headers"]) == {
        "X-RateLimit-Limit",
        "X-RateLimit-Remaining",
        "X-RateLimit-Reset",
        "Retry-After",
    }
    header_names = {p["name"] for p in limits["parameters"] if p["in"] == "header"}
    assert {"X-User-ID", "X-Subscription-Tier"} <= header_names


def test_health_is_left_undecorated():
    health = _schema()["paths"]["/health"]["get"]

    assert "429" not in health["responses"]
    assert "parameters" not in health


def test_tags_metadata_present():
    names = {t["name"] for t in _schema()["tags"]}

    assert {"Limits", "Health"} <= names
