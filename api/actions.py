"""POST /api/actions - unified mutation endpoint."""

from uuid import UUID

from fastapi import APIRouter, Request
from pydantic import BaseModel

from api.base import success_response
from core.models import (
    InvoiceCreate, InvoiceUpdate,
    PaymentCreate, PaymentUpdate, RefundRequest,
)
from utils.tenant_context import get_current_company_id


class ActionRequest(BaseModel):
    domain: str
    action: str
    data: dict


def create_actions_router(services: dict) -> APIRouter:
    router = APIRouter()

    handlers = {
        "invoice": InvoiceHandler(services["invoice"]),
        "payment": PaymentHandler(services["payment"]),
    }

    @router.post("/actions")
    async def perform_action(request: Request, body: ActionRequest):
        handler = handlers.get(body.domain)
        if handler is None:
            raise ValueError(
                f"Unknown domain '{body.domain}'. "
                f"Valid domains: {', '.join(sorted(handlers.keys()))}"
            )

        if body.action not in handler.ALLOWED_ACTIONS:
            raise ValueError(
                f"Action '{body.action}' not allowed on '{body.domain}'. "
                f"Allowed: {', '.join(sorted(handler.ALLOWED_ACTIONS))}"
            )

        method = getattr(handler, f"_handle_{body.action}")
        result = method(get_current_company_id(), dict(body.data))
        return success_response(
            result, request_id=getattr(request.state, "request_id", None)
        ).model_dump(mode="json")

    return router


def _require_id(data: dict, key: str = "id") -> UUID:
    if key not in data:
        raise ValueError(f"'{key}' is required")
    return UUID(str(data.pop(key)))


# =============================================================================
# HANDLER CLASSES
# =============================================================================


class InvoiceHandler:
    ALLOWED_ACTIONS = {
        "create", "update", "send", "mark_as_paid", "cancel",
        "duplicate", "delete", "refresh_overdue", "configure_numbering",
    }

    def __init__(self, service):
        self.service = service

    def _handle_create(self, company_id: UUID, data: dict):
        invoice = self.service.create_invoice(company_id, InvoiceCreate(**data))
        return invoice.model_dump(mode="json")

    def _handle_update(self, company_id: UUID, data: dict):
        invoice_id = _require_id(data)
        invoice = self.service.update_invoice(invoice_id, company_id, InvoiceUpdate(**data))
        return invoice.model_dump(mode="json")

    def _handle_send(self, company_id: UUID, data: dict):
        invoice = self.service.send_invoice(_require_id(data), company_id)
        return invoice.model_dump(mode="json")

    def _handle_mark_as_paid(self, company_id: UUID, data: dict):
        invoice = self.service.mark_as_paid(_require_id(data), company_id)
        return invoice.model_dump(mode="json")

    def _handle_cancel(self, company_id: UUID, data: dict):
        invoice = self.service.cancel_invoice(_require_id(data), company_id, data.get("reason"))
        return invoice.model_dump(mode="json")

    def _handle_duplicate(self, company_id: UUID, data: dict):
        invoice = self.service.duplicate_invoice(_require_id(data), company_id)
        return invoice.model_dump(mode="json")

    def _handle_delete(self, company_id: UUID, data: dict):
        invoice = self.service.delete_invoice(_require_id(data), company_id)
        return {"deleted": True, "invoice_number": invoice.invoice_number}

    def _handle_refresh_overdue(self, company_id: UUID, data: dict):
        changed = self.service.refresh_overdue(company_id)
        return {"updated": [i.model_dump(mode="json") for i in changed]}

    def _handle_configure_numbering(self, company_id: UUID, data: dict):
        if "prefix" not in data or "padding" not in data:
            raise ValueError("'prefix' and 'padding' are required")
        settings = self.service.configure_numbering(company_id, data["prefix"], int(data["padding"]))
        return {"prefix": settings["prefix"], "padding": settings["padding"]}


class PaymentHandler:
    ALLOWED_ACTIONS = {"record", "refund", "cancel", "update", "delete", "retry"}

    def __init__(self, service):
        self.service = service

    def _handle_record(self, company_id: UUID, data: dict):
        payment = self.service.record_payment(company_id, PaymentCreate(**data))
        return payment.model_dump(mode="json")

    def _handle_refund(self, company_id: UUID, data: dict):
        payment_id = _require_id(data)
        payment = self.service.process_refund(payment_id, company_id, RefundRequest(**data))
        return payment.model_dump(mode="json")

    def _handle_cancel(self, company_id: UUID, data: dict):
        payment = self.service.cancel_payment(_require_id(data), company_id, data.get("reason"))
        return payment.model_dump(mode="json")

    def _handle_update(self, company_id: UUID, data: dict):
        payment_id = _require_id(data)
        payment = self.service.update_payment(payment_id, company_id, PaymentUpdate(**data))
        return payment.model_dump(mode="json")

    def _handle_delete(self, company_id: UUID, data: dict):
        self.service.delete_payment(_require_id(data), company_id)
        return {"deleted": True}

    def _handle_retry(self, company_id: UUID, data: dict):
        payment = self.service.retry_payment(_require_id(data), company_id)
        return payment.model_dump(mode="json")
