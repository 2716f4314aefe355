"""Shared test fixtures for the ledger test suite."""

import os
import pytest
from uuid import UUID
from pathlib import Path

from dotenv import load_dotenv

# Load .env file BEFORE any other imports that might use env vars
# override=True ensures .env takes precedence over shell env vars
load_dotenv(Path(__file__).parent.parent / ".env", override=True)

# Reset vault client singleton to pick up env vars
import clients.vault_client as vault_module
vault_module._vault_client_instance = None
vault_module._secret_cache.clear()

from core.audit import AuditLogger
from core.config import LedgerConfig
from core.event_bus import EventBus
from core.services.invoice_service import InvoiceService
from core.services.payment_service import PaymentService
from core.store.memory import InMemoryLedgerStore
from utils.tenant_context import clear_tenant, tenant_context
from builders import ACTOR_ID, COMPANY_B_ID, COMPANY_ID, invoice_data


EVENT_NAMES = (
    "InvoiceCreated", "InvoiceSent", "InvoicePaid", "InvoiceCancelled",
    "PaymentRecorded", "PaymentRefunded",
)


# =============================================================================
# CONTEXT FIXTURES
# =============================================================================


@pytest.fixture(autouse=True)
def reset_tenant_context():
    """Ensure clean tenant context before and after each test."""
    clear_tenant()
    yield
    clear_tenant()


@pytest.fixture
def company_id() -> UUID:
    return COMPANY_ID


@pytest.fixture
def company_b_id() -> UUID:
    return COMPANY_B_ID


@pytest.fixture
def as_actor(company_id):
    """Run the test as ACTOR_ID acting for the primary company."""
    with tenant_context(company_id, ACTOR_ID):
        yield ACTOR_ID


# =============================================================================
# LEDGER FIXTURES (in-memory store)
# =============================================================================


@pytest.fixture
def store():
    return InMemoryLedgerStore()


@pytest.fixture
def config():
    return LedgerConfig()


@pytest.fixture
def audit(store):
    return AuditLogger(store)


@pytest.fixture
def event_bus():
    return EventBus()


@pytest.fixture
def published(event_bus):
    """Every event published on the bus, in order."""
    events = []
    for name in EVENT_NAMES:
        event_bus.subscribe(name, events.append)
    return events


@pytest.fixture
def invoice_service(store, audit, event_bus, config):
    return InvoiceService(store, audit, event_bus, config)


@pytest.fixture
def payment_service(store, audit, event_bus, config):
    return PaymentService(store, audit, event_bus, config)


@pytest.fixture
def make_invoice(invoice_service, company_id):
    """Create an invoice, optionally sent. Total defaults to 100.00."""
    def _make(send=True, **kwargs):
        invoice = invoice_service.create_invoice(company_id, invoice_data(**kwargs))
        if send:
            invoice = invoice_service.send_invoice(invoice.id, company_id)
        return invoice
    return _make


# =============================================================================
# DATABASE FIXTURES (skipped without DATABASE_URL)
# =============================================================================


@pytest.fixture(scope="session")
def db_url():
    """Database URL from the environment; PostgreSQL tests skip without one."""
    url = os.getenv("DATABASE_URL")
    if not url:
        pytest.skip("DATABASE_URL not set")
    return url


@pytest.fixture(scope="session")
def db(db_url):
    """Session-scoped PostgresClient with the ledger schema applied."""
    from clients.postgres_client import PostgresClient

    client = PostgresClient(db_url)
    schema = (Path(__file__).parent.parent / "schema.sql").read_text()
    with client.transaction() as tx:
        tx.execute(schema)
    yield client
    client.close()


@pytest.fixture
def pg_store(db):
    """PostgresLedgerStore over a clean database."""
    from core.store.postgres import PostgresLedgerStore

    for company in (COMPANY_ID, COMPANY_B_ID):
        with tenant_context(company):
            db.execute("DELETE FROM payments WHERE company_id = %s", (company,))
            db.execute("DELETE FROM invoices WHERE company_id = %s", (company,))
            db.execute("DELETE FROM company_settings WHERE company_id = %s", (company,))
    db.execute("DELETE FROM audit_log WHERE company_id IN (%s, %s)", (COMPANY_ID, COMPANY_B_ID))

    return PostgresLedgerStore(db)
