"""Core domain models."""

from core.models.payment import (
    Payment, PaymentCreate, PaymentUpdate, PaymentFilters, RefundRequest,
    PaymentStatus, PaymentMethod, SETTLED_STATUSES, UtcDatetime,
)
from core.models.invoice import (
    Invoice, InvoiceCreate, InvoiceUpdate, InvoiceFilters,
    InvoiceItem, InvoiceItemCreate,
    InvoiceStatus, DiscountType, ItemType,
)
from core.models.pagination import Page
from core.models.reports import (
    InvoiceSummary, StatusCount, PaymentSummary, PaymentAnalytics, MethodTotal, DailyTotal,
)

__all__ = [
    # Payment
    "Payment", "PaymentCreate", "PaymentUpdate", "PaymentFilters", "RefundRequest",
    "PaymentStatus", "PaymentMethod", "SETTLED_STATUSES", "UtcDatetime",
    # Invoice
    "Invoice", "InvoiceCreate", "InvoiceUpdate", "InvoiceFilters",
    "InvoiceItem", "InvoiceItemCreate",
    "InvoiceStatus", "DiscountType", "ItemType",
    # Listing and reports
    "Page",
    "InvoiceSummary", "StatusCount", "PaymentSummary", "PaymentAnalytics", "MethodTotal", "DailyTotal",
]
