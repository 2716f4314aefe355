"""
Invoice reconciliation rule.

Maps (total, paid amount, due date, now) to the invoice's payment status and,
where payment activity dictates one, its invoice status. Used by both the
invoice and payment ledgers so the mapping lives in exactly one place.
"""

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Any, Iterable

from core.models import Invoice, InvoiceStatus, Payment, PaymentStatus, SETTLED_STATUSES
from core.money import ZERO, round_money, total_of


@dataclass(frozen=True)
class Reconciliation:
    """
    Result of reconcile().

    invoice_status is None when payment activity doesn't dictate a status;
    the invoice then keeps its lifecycle status (Draft or Sent).
    """

    payment_status: PaymentStatus
    invoice_status: InvoiceStatus | None


def reconcile(total: Decimal, paid_amount: Decimal, due_date: datetime, now: datetime) -> Reconciliation:
    """
    Derive payment and invoice status from amounts and the clock.

    - paid >= total       -> PAID / PAID
    - 0 < paid < total    -> PARTIAL / PARTIAL
    - paid == 0           -> PENDING / (unchanged)
    - past due, not PAID  -> OVERDUE / OVERDUE, overriding the above
    """
    invoice_status: InvoiceStatus | None = None

    if paid_amount >= total:
        payment_status = PaymentStatus.PAID
        invoice_status = InvoiceStatus.PAID
    elif paid_amount > ZERO:
        payment_status = PaymentStatus.PARTIAL
        invoice_status = InvoiceStatus.PARTIAL
    else:
        payment_status = PaymentStatus.PENDING

    if now > due_date and payment_status != PaymentStatus.PAID:
        payment_status = PaymentStatus.OVERDUE
        invoice_status = InvoiceStatus.OVERDUE

    return Reconciliation(payment_status=payment_status, invoice_status=invoice_status)


def counts_towards_paid(payment: Payment) -> bool:
    """Settled payments count, and so do negative partial-refund rows."""
    return payment.status in SETTLED_STATUSES or payment.is_refund_entry


def paid_total(payments: Iterable[Payment]) -> Decimal:
    """Net amount received on an invoice."""
    return round_money(total_of(p.amount for p in payments if counts_towards_paid(p)))


def settlement_fields(invoice: Invoice, paid_amount: Decimal, now: datetime) -> dict[str, Any]:
    """
    Invoice column values implied by a freshly summed paid amount.

    Cancelled invoices keep their statuses; only the amounts move.
    paid_at is stamped on the transition into PAID and cleared when a
    refund takes the invoice back out of it.
    """
    fields: dict[str, Any] = {
        "paid_amount": paid_amount,
        "balance_amount": round_money(invoice.total - paid_amount),
    }

    if invoice.status == InvoiceStatus.CANCELLED:
        return fields

    result = reconcile(invoice.total, paid_amount, invoice.due_date, now)
    fields["payment_status"] = result.payment_status
    fields["status"] = result.invoice_status or invoice.lifecycle_status

    if result.payment_status == PaymentStatus.PAID:
        fields["paid_at"] = invoice.paid_at or now
    else:
        fields["paid_at"] = None

    return fields
