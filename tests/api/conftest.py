"""API test fixtures: TestClient over the real app wired to an in-memory store."""

from datetime import timedelta

import pytest
from starlette.testclient import TestClient

from api.app import create_app
from builders import ACTOR_ID, BRANCH_ID, CLIENT_ID, COMPANY_ID
from utils.timezone import now_utc


# =============================================================================
# APP & CLIENT FIXTURES
# =============================================================================


@pytest.fixture
def app(store, config, event_bus):
    """Full ledger app: middleware, error handlers, data/actions routes."""
    return create_app(store=store, config=config, event_bus=event_bus)


@pytest.fixture
def client(app):
    """Client acting for COMPANY_ID as ACTOR_ID."""
    return TestClient(
        app,
        raise_server_exceptions=False,
        headers={"X-Company-ID": str(COMPANY_ID), "X-User-ID": str(ACTOR_ID)},
    )


@pytest.fixture
def anonymous_client(app):
    """Client without tenant headers."""
    return TestClient(app, raise_server_exceptions=False)


@pytest.fixture
def act(client):
    """POST an action and return the response."""
    def _act(domain, action, **data):
        return client.post("/api/actions", json={"domain": domain, "action": action, "data": data})
    return _act


@pytest.fixture
def invoice_payload():
    def _payload(total="100", due_in_days=14, **kwargs):
        payload = {
            "branch_id": str(BRANCH_ID),
            "client_id": str(CLIENT_ID),
            "due_date": (now_utc() + timedelta(days=due_in_days)).isoformat(),
            "items": [{"description": "Haircut", "quantity": "1", "unit_price": total}],
        }
        payload.update(kwargs)
        return payload
    return _payload


@pytest.fixture
def sent_invoice(act, invoice_payload):
    """A sent invoice of 100.00, as returned by the API."""
    created = act("invoice", "create", **invoice_payload()).json()["data"]
    return act("invoice", "send", id=created["id"]).json()["data"]
