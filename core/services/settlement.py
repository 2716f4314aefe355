"""
Settlement step shared by the invoice and payment services.

Re-sums an invoice's payment rows and writes the reconciled amounts and
statuses back, inside the caller's transaction.
"""

import logging
from datetime import datetime

from core.audit import AuditLogger, AuditAction
from core.models import Invoice, InvoiceStatus, Payment
from core.money import ZERO
from core.reconciliation import paid_total, settlement_fields
from core.store.base import LedgerTransaction

logger = logging.getLogger(__name__)


def load_payments(tx: LedgerTransaction, invoice: Invoice) -> list[Payment]:
    rows = tx.list_invoice_payments(invoice.company_id, invoice.id)
    return [Payment.model_validate(row) for row in rows]


def settle_invoice(tx: LedgerTransaction, audit: AuditLogger, invoice: Invoice, now: datetime) -> Invoice:
    """
    Bring an invoice's paid amount, balance and statuses in line with its payments.

    The invoice must already be locked by the caller. Writes and audits only
    the columns that actually change.

    Returns:
        The invoice as stored after settlement (without items or payments)
    """
    fields = settlement_fields(invoice, paid_total(load_payments(tx, invoice)), now)
    changes = {
        key: {"old": getattr(invoice, key), "new": value}
        for key, value in fields.items()
        if getattr(invoice, key) != value
    }
    if not changes:
        return invoice

    row = tx.update_invoice(
        invoice.company_id,
        invoice.id,
        {**{key: change["new"] for key, change in changes.items()}, "updated_at": now},
    )
    settled = Invoice.model_validate(row)

    audit.log_change(
        tx,
        company_id=invoice.company_id,
        entity_type="invoice",
        entity_id=invoice.id,
        action=AuditAction.UPDATE,
        changes=changes,
    )

    if "status" in changes:
        logger.info(
            f"Invoice {invoice.invoice_number} settled: "
            f"{invoice.status.value} -> {settled.status.value}, paid {settled.paid_amount}"
        )

    return settled


def verify_invoice(invoice: Invoice) -> None:
    """
    Check the ledger invariants on an invoice about to be committed.

    A violation is a ledger bug, not bad input. Raising here aborts the
    surrounding transaction so the broken state is never persisted.
    """
    if invoice.balance_amount != invoice.total - invoice.paid_amount:
        raise RuntimeError(
            f"Invoice {invoice.id}: balance {invoice.balance_amount} != "
            f"total {invoice.total} - paid {invoice.paid_amount}"
        )
    if invoice.paid_amount < ZERO or invoice.paid_amount > invoice.total:
        raise RuntimeError(
            f"Invoice {invoice.id}: paid {invoice.paid_amount} outside 0..{invoice.total}"
        )
    if invoice.status == InvoiceStatus.PAID and invoice.balance_amount != ZERO:
        raise RuntimeError(f"Invoice {invoice.id} is paid with balance {invoice.balance_amount}")
