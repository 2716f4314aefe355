"""Aggregate views over invoices and payments."""

from decimal import Decimal

from pydantic import BaseModel

from core.models.invoice import InvoiceStatus
from core.models.payment import PaymentMethod


class StatusCount(BaseModel):
    status: InvoiceStatus
    count: int


class InvoiceSummary(BaseModel):
    """Totals across a company's invoices, optionally within an invoice-date window."""

    total_invoices: int
    total_amount: Decimal
    total_paid: Decimal
    total_outstanding: Decimal
    status_breakdown: list[StatusCount]


class MethodTotal(BaseModel):
    method: PaymentMethod
    count: int
    amount: Decimal


class PaymentSummary(BaseModel):
    """Settled payments (completed or paid) plus what has been refunded since."""

    total_payments: int
    total_amount: Decimal
    total_refunded: Decimal
    method_breakdown: list[MethodTotal]


class DailyTotal(BaseModel):
    date: str  # YYYY-MM-DD, UTC
    count: int
    amount: Decimal


class PaymentAnalytics(BaseModel):
    days: int
    daily_totals: list[DailyTotal]
    method_totals: list[MethodTotal]
    total_amount: Decimal
    total_count: int
