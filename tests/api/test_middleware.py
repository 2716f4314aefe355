"""Tests for RequestIDMiddleware and TenantMiddleware."""

import pytest
from uuid import UUID
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from starlette.testclient import TestClient

from api.middleware import RequestIDMiddleware, TenantMiddleware
from builders import ACTOR_ID, COMPANY_ID
from utils.tenant_context import get_current_actor_id, get_current_company_id


@pytest.fixture
def mini_app():
    """Minimal FastAPI app with both middlewares, ordered as in the real app."""
    app = FastAPI()
    app.add_middleware(TenantMiddleware)
    app.add_middleware(RequestIDMiddleware)

    @app.get("/test")
    async def test_endpoint(request: Request):
        actor = get_current_actor_id()
        return JSONResponse({
            "request_id": request.state.request_id,
            "company_id": str(get_current_company_id()),
            "actor_id": str(actor) if actor else None,
        })

    @app.get("/health")
    async def health():
        return JSONResponse({"status": "ok"})

    return app


@pytest.fixture
def client(mini_app):
    return TestClient(mini_app, headers={"X-Company-ID": str(COMPANY_ID)})


@pytest.fixture
def bare_client(mini_app):
    return TestClient(mini_app)


class TestRequestIDMiddleware:
    """Tests for RequestIDMiddleware."""

    def test_response_has_request_id_header(self, client):
        """Response includes X-Request-ID header."""
        response = client.get("/test")

        assert "X-Request-ID" in response.headers
        # Should be a valid UUID
        UUID(response.headers["X-Request-ID"])

    def test_request_state_has_request_id(self, client):
        """request.state.request_id is set and matches header."""
        response = client.get("/test")

        header_id = response.headers["X-Request-ID"]
        body_id = response.json()["request_id"]
        assert header_id == body_id

    def test_each_request_gets_unique_id(self, client):
        """Different requests get different IDs."""
        r1 = client.get("/test")
        r2 = client.get("/test")

        assert r1.headers["X-Request-ID"] != r2.headers["X-Request-ID"]

    def test_caller_request_id_honoured(self, client):
        response = client.get("/test", headers={"X-Request-ID": "trace-42"})

        assert response.headers["X-Request-ID"] == "trace-42"
        assert response.json()["request_id"] == "trace-42"


class TestTenantMiddleware:
    """Company and actor resolution from gateway headers."""

    def test_sets_tenant_context(self, client):
        body = client.get("/test", headers={"X-User-ID": str(ACTOR_ID)}).json()

        assert body["company_id"] == str(COMPANY_ID)
        assert body["actor_id"] == str(ACTOR_ID)

    def test_actor_optional(self, client):
        assert client.get("/test").json()["actor_id"] is None

    def test_missing_company_rejected(self, bare_client):
        response = bare_client.get("/test")

        assert response.status_code == 400
        body = response.json()
        assert body["success"] is False
        assert body["error"]["code"] == "MISSING_TENANT"

    def test_rejection_carries_request_id(self, bare_client):
        response = bare_client.get("/test", headers={"X-Request-ID": "trace-7"})
        assert response.json()["meta"]["request_id"] == "trace-7"

    def test_malformed_company_rejected(self, bare_client):
        response = bare_client.get("/test", headers={"X-Company-ID": "acme"})

        assert response.status_code == 400
        assert response.json()["error"]["code"] == "MISSING_TENANT"

    def test_malformed_actor_rejected(self, client):
        assert client.get("/test", headers={"X-User-ID": "nobody"}).status_code == 400

    def test_public_path_needs_no_tenant(self, bare_client):
        assert bare_client.get("/health").status_code == 200


class TestLedgerApp:
    """The assembled app enforces tenancy on every ledger route."""

    def test_data_requires_tenant(self, anonymous_client):
        response = anonymous_client.get("/api/data", params={"type": "invoices"})

        assert response.status_code == 400
        assert response.json()["error"]["code"] == "MISSING_TENANT"

    def test_health_is_public(self, anonymous_client):
        response = anonymous_client.get("/health")

        assert response.status_code == 200
        assert response.json()["data"] == {"status": "ok"}
