"""GET /api/data - unified read endpoint."""

from uuid import UUID

from fastapi import APIRouter, Query, Request

from api.base import success_response
from core.models import (
    InvoiceFilters, InvoiceStatus,
    PaymentFilters, PaymentMethod, PaymentStatus, UtcDatetime,
)
from utils.tenant_context import get_current_company_id


VALID_TYPES = {"invoices", "payments", "invoice_summary", "payment_summary", "payment_analytics"}


def _envelope(request: Request, data):
    return success_response(
        data, request_id=getattr(request.state, "request_id", None)
    ).model_dump(mode="json")


def create_data_router(services: dict) -> APIRouter:
    router = APIRouter()

    invoice_svc = services["invoice"]
    payment_svc = services["payment"]

    # -------------------------------------------------------------------------
    # Convenience routes (must be registered before the generic /data route)
    # -------------------------------------------------------------------------

    @router.get("/data/payments/recent")
    async def payments_recent(request: Request, limit: int = Query(10, ge=1, le=100)):
        payments = payment_svc.recent_payments(get_current_company_id(), limit)
        return _envelope(request, [p.model_dump(mode="json") for p in payments])

    @router.get("/data/invoices/{invoice_id}/payments")
    async def invoice_payments(request: Request, invoice_id: UUID):
        payments = payment_svc.list_invoice_payments(invoice_id, get_current_company_id())
        return _envelope(request, [p.model_dump(mode="json") for p in payments])

    # -------------------------------------------------------------------------
    # Generic data endpoint
    # -------------------------------------------------------------------------

    @router.get("/data")
    async def get_data(
        request: Request,
        type: str | None = Query(None),
        id: UUID | None = Query(None),
        filter: str | None = Query(None),
        search: str | None = Query(None, max_length=100),
        branch_id: UUID | None = Query(None),
        client_id: UUID | None = Query(None),
        invoice_id: UUID | None = Query(None),
        status: str | None = Query(None),
        method: PaymentMethod | None = Query(None),
        start_date: UtcDatetime | None = Query(None),
        end_date: UtcDatetime | None = Query(None),
        days: int = Query(30, ge=1, le=366),
        page: int = Query(1, ge=1),
        limit: int | None = Query(None, ge=1, le=500),
    ):
        if type is None:
            raise ValueError("'type' query parameter is required")

        if type not in VALID_TYPES:
            raise ValueError(f"Unknown type '{type}'. Valid types: {', '.join(sorted(VALID_TYPES))}")

        company_id = get_current_company_id()

        if type == "invoices":
            data = _handle_invoices(
                invoice_svc, company_id, id, filter, search, branch_id, client_id,
                status, start_date, end_date, page, limit,
            )
        elif type == "payments":
            data = _handle_payments(
                payment_svc, company_id, id, search, invoice_id, client_id,
                status, method, start_date, end_date, page, limit,
            )
        elif type == "invoice_summary":
            data = invoice_svc.invoice_summary(company_id, start_date, end_date).model_dump(mode="json")
        elif type == "payment_summary":
            data = payment_svc.payment_summary(company_id, start_date, end_date).model_dump(mode="json")
        else:
            data = payment_svc.payment_analytics(company_id, days).model_dump(mode="json")

        return _envelope(request, data)

    return router


def _handle_invoices(
    invoice_svc, company_id, id, filter, search, branch_id, client_id,
    status, start_date, end_date, page, limit,
):
    if id:
        return invoice_svc.get_invoice(id, company_id).model_dump(mode="json")

    if filter == "overdue":
        return [i.model_dump(mode="json") for i in invoice_svc.overdue_invoices(company_id, branch_id)]
    if filter == "outstanding":
        return [i.model_dump(mode="json") for i in invoice_svc.outstanding_invoices(company_id, branch_id)]
    if filter is not None:
        raise ValueError("Unknown invoice filter. Valid filters: outstanding, overdue")

    filters = InvoiceFilters(
        branch_id=branch_id,
        client_id=client_id,
        status=InvoiceStatus(status) if status else None,
        start_date=start_date,
        end_date=end_date,
        search=search,
    )
    return invoice_svc.list_invoices(company_id, filters, page, limit).model_dump(mode="json")


def _handle_payments(
    payment_svc, company_id, id, search, invoice_id, client_id,
    status, method, start_date, end_date, page, limit,
):
    if id:
        return payment_svc.get_payment(id, company_id).model_dump(mode="json")

    filters = PaymentFilters(
        invoice_id=invoice_id,
        client_id=client_id,
        statuses=[PaymentStatus(s) for s in status.split(",")] if status else None,
        payment_method=method,
        start_date=start_date,
        end_date=end_date,
        search=search,
    )
    return payment_svc.list_payments(company_id, filters, page, limit).model_dump(mode="json")
