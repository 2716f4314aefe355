"""Propagate tenant (company) and actor identity through the call stack using contextvars."""

from contextlib import contextmanager
from contextvars import ContextVar
from uuid import UUID

_current_company_id: ContextVar[UUID | None] = ContextVar("current_company_id", default=None)
_current_actor_id: ContextVar[UUID | None] = ContextVar("current_actor_id", default=None)


def get_current_company_id() -> UUID:
    """
    Get current company ID from context.

    Raises RuntimeError if no tenant context is set. Ledger operations take
    company_id explicitly; this is for the request layer that resolves it.
    """
    company_id = _current_company_id.get()
    if company_id is None:
        raise RuntimeError(
            "No tenant context set. This usually means you're calling "
            "tenant-scoped code outside of a request."
        )
    return company_id


def get_current_actor_id() -> UUID | None:
    """Get the acting user's ID, or None for system-initiated changes."""
    return _current_actor_id.get()


def set_tenant(company_id: UUID, actor_id: UUID | None = None) -> None:
    """
    Set current company and actor in context.

    Called by the tenant middleware once the request headers are resolved.
    """
    _current_company_id.set(company_id)
    _current_actor_id.set(actor_id)


def clear_tenant() -> None:
    """
    Clear tenant context.

    Must be called in finally block to prevent context leakage.
    """
    _current_company_id.set(None)
    _current_actor_id.set(None)


@contextmanager
def tenant_context(company_id: UUID, actor_id: UUID | None = None):
    """
    Context manager for temporarily setting tenant context.

    Example:
        with tenant_context(company_id, user_id):
            invoice = invoice_service.create_invoice(company_id, data)
    """
    previous_company = _current_company_id.get()
    previous_actor = _current_actor_id.get()
    set_tenant(company_id, actor_id)
    try:
        yield
    finally:
        _current_company_id.set(previous_company)
        _current_actor_id.set(previous_actor)
