"""
Tests for the FastAPI error mapping and the health endpoints.
"""

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from planhub.app import create_app
from planhub.exceptions import (
    ConflictError,
    ForbiddenError,
    NotFoundError,
    QuotaExceededError,
    StoreError,
    ValidationError,
)
from planhub.web.errors import register_error_handlers


@pytest.fixture
def client():
    """App whose routes raise each domain error."""
    app = FastAPI()
    register_error_handlers(app)

    errors = {
        "not-found": NotFoundError("section", "s1"),
        "forbidden": ForbiddenError("Missing capability can_edit", {"required": "can_edit"}),
        "validation": ValidationError("Cannot delete the last section of a planner"),
        "quota": QuotaExceededError("planners", 3, "free"),
        "conflict": ConflictError("Activity was modified by another request"),
        "store": StoreError("activities", "update", "connection reset by peer at 10.0.0.5"),
    }

    @app.get("/raise/{name}")
    async def raise_error(name: str):
        if name == "crash":
            raise RuntimeError("boom")
        raise errors[name]

    return TestClient(app, raise_server_exceptions=False)


class TestErrorMapping:
    """Each error kind maps to its own status and code."""

    @pytest.mark.parametrize("name,status,code", [
        ("not-found", 404, "NOT_FOUND"),
        ("forbidden", 403, "FORBIDDEN"),
        ("validation", 400, "VALIDATION_ERROR"),
        ("quota", 403, "QUOTA_EXCEEDED"),
        ("conflict", 409, "CONFLICT"),
        ("store", 503, "STORE_ERROR"),
    ])
    def test_status_and_code(self, client, name, status, code):
        response = client.get(f"/raise/{name}")

        assert response.status_code == status
        assert response.json()["error"]["code"] == code

    def test_details_are_passed_through(self, client):
        body = client.get("/raise/quota").json()

        assert body["error"]["details"] == {"resource": "planners", "limit": 3, "plan": "free"}

    def test_store_error_hides_internals(self, client):
        body = client.get("/raise/store").json()

        assert "10.0.0.5" not in body["error"]["message"]
        assert body["error"]["details"] == {}

    def test_unhandled_error_is_internal(self, client):
        response = client.get("/raise/crash")

        assert response.status_code == 500
        assert response.json() == {
            "error": {"code": "INTERNAL_ERROR", "message": "Internal server error", "details": {}}
        }


class TestHealthEndpoints:
    def test_root_and_health(self, test_settings):
        app = create_app(test_settings, use_redis=False)

        with TestClient(app) as client:
            root = client.get("/")
            health = client.get("/health")

        assert root.json()["status"] == "healthy"
        body = health.json()
        assert body["database"]["status"] == "healthy"
        assert body["cache"]["redis_available"] is False
