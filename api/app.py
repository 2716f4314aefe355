"""FastAPI application wiring for the ledger."""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from api.actions import create_actions_router
from api.base import success_response
from api.data import create_data_router
from api.errors import register_error_handlers
from api.middleware import RequestIDMiddleware, TenantMiddleware
from clients.postgres_client import PostgresClient
from clients.vault_client import get_database_url, get_ledger_settings
from core.audit import AuditLogger
from core.config import LedgerConfig
from core.event_bus import EventBus
from core.services.invoice_service import InvoiceService
from core.services.payment_service import PaymentService
from core.store.base import LedgerStore
from core.store.postgres import PostgresLedgerStore

logger = logging.getLogger(__name__)


def build_services(
    store: LedgerStore,
    config: LedgerConfig | None = None,
    event_bus: EventBus | None = None,
) -> dict:
    """Construct the ledger services over one store and one event bus."""
    config = config or LedgerConfig()
    audit = AuditLogger(store)
    event_bus = event_bus or EventBus()
    return {
        "invoice": InvoiceService(store, audit, event_bus, config),
        "payment": PaymentService(store, audit, event_bus, config),
        "audit": audit,
        "event_bus": event_bus,
    }


def create_app(
    store: LedgerStore | None = None,
    config: LedgerConfig | None = None,
    event_bus: EventBus | None = None,
) -> FastAPI:
    """
    Build the API app.

    Without an explicit store, connects to PostgreSQL using the URL from
    DATABASE_URL or Vault, and reads optional overrides from ledger/settings.
    """
    if store is None:
        store = PostgresLedgerStore(PostgresClient(get_database_url()))
        if config is None:
            config = LedgerConfig(**get_ledger_settings())

    services = build_services(store, config, event_bus)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        yield
        store.close()

    app = FastAPI(title="Invoice Ledger", lifespan=lifespan)
    # Added last runs first: request ids exist before tenant rejection responses
    app.add_middleware(TenantMiddleware)
    app.add_middleware(RequestIDMiddleware)
    register_error_handlers(app)

    app.include_router(create_data_router(services), prefix="/api")
    app.include_router(create_actions_router(services), prefix="/api")

    @app.get("/health")
    async def health():
        return success_response({"status": "ok"}).model_dump(mode="json")

    app.state.services = services
    logger.info("Ledger API initialised")
    return app
