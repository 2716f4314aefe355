"""
Invoice ledger.

Creates invoices with computed totals and a freshly allocated number, and
owns every invoice-level state change: edits, sending, cancelling,
mark-as-paid, duplication and deletion of drafts. Payment-driven status
changes go through the shared settlement step.
"""

import logging
from datetime import datetime
from typing import Any
from uuid import UUID, uuid4

from core.audit import AuditLogger, AuditAction, compute_changes
from core.config import LedgerConfig
from core.errors import (
    CannotCancelPaidError,
    CannotDeleteNonDraftError,
    CannotEditPaidInvoiceError,
    InvalidStateError,
    InvoiceNotFoundError,
    LedgerValidationError,
)
from core.event_bus import EventBus
from core.events import InvoiceCancelled, InvoiceCreated, InvoicePaid, InvoiceSent
from core.models import (
    DiscountType,
    Invoice,
    InvoiceCreate,
    InvoiceFilters,
    InvoiceItem,
    InvoiceItemCreate,
    InvoiceStatus,
    InvoiceSummary,
    InvoiceUpdate,
    Page,
    PaymentStatus,
    StatusCount,
)
from core.money import ZERO, round_money
from core.numbering import InvoiceNumberAllocator
from core.services.settlement import load_payments, settle_invoice, verify_invoice
from core.store.base import LedgerStore, LedgerTransaction, Row
from core.totals import InvoiceTotals, calculate_totals
from utils.tenant_context import get_current_actor_id
from utils.timezone import days_from, now_utc

logger = logging.getLogger(__name__)

# Columns an InvoiceUpdate may set directly, without touching totals
_PLAIN_COLUMNS = ("due_date", "notes", "internal_notes", "terms", "terms_conditions")

# Any of these in a patch triggers a totals recompute
_MONETARY_FIELDS = frozenset({"items", "discount_type", "discount_value", "tax_rate"})

_SNAPSHOT_EXCLUDE = {"items", "payments"}


def _snapshot(invoice: Invoice) -> dict[str, Any]:
    return invoice.model_dump(mode="json", exclude=_SNAPSHOT_EXCLUDE)


def _append_note(notes: str | None, line: str) -> str:
    return f"{notes}\n{line}" if notes else line


def _item_rows(invoice_id: UUID, totals: InvoiceTotals) -> list[Row]:
    return [
        {
            "id": uuid4(),
            "invoice_id": invoice_id,
            "type": calculated.item.type,
            "item_id": calculated.item.item_id,
            "description": calculated.item.description,
            "quantity": calculated.item.quantity,
            "unit_price": calculated.item.unit_price,
            "discount": calculated.item.discount,
            "tax_rate": calculated.item.tax_rate,
            "total": calculated.total,
            "order": calculated.order,
        }
        for calculated in totals.items
    ]


def _totals_columns(totals: InvoiceTotals, discount_type: DiscountType, discount_value, tax_rate) -> Row:
    return {
        "subtotal": totals.subtotal,
        "discount_type": discount_type,
        "discount_value": None if discount_type == DiscountType.NONE else discount_value,
        "discount_amount": totals.discount_amount,
        "tax_rate": tax_rate if tax_rate is not None else ZERO,
        "tax_amount": totals.tax_amount,
        "total": totals.total,
    }


class InvoiceService:
    """Service for invoice operations."""

    def __init__(
        self,
        store: LedgerStore,
        audit: AuditLogger,
        event_bus: EventBus,
        config: LedgerConfig | None = None,
        allocator: InvoiceNumberAllocator | None = None,
    ):
        self.store = store
        self.audit = audit
        self.event_bus = event_bus
        self.config = config or LedgerConfig()
        self.allocator = allocator or InvoiceNumberAllocator(self.config)

    # ------------------------------------------------------------------ helpers

    def _load(
        self, tx: LedgerTransaction, company_id: UUID, invoice_id: UUID, for_update: bool = False
    ) -> Invoice:
        row = tx.get_invoice(company_id, invoice_id, for_update=for_update)
        if row is None:
            raise InvoiceNotFoundError(invoice_id)
        return Invoice.model_validate(row)

    def _with_children(self, tx: LedgerTransaction, invoice: Invoice) -> Invoice:
        """Attach items (display order) and payments (newest first)."""
        items = [InvoiceItem.model_validate(row) for row in tx.list_items(invoice.id)]
        return invoice.model_copy(update={"items": items, "payments": load_payments(tx, invoice)})

    def _log_update(self, tx: LedgerTransaction, before: Invoice, after: Invoice, **extra) -> None:
        changes = compute_changes(_snapshot(before), _snapshot(after))
        changes.update(extra)
        if changes:
            self.audit.log_change(
                tx,
                company_id=after.company_id,
                entity_type="invoice",
                entity_id=after.id,
                action=AuditAction.UPDATE,
                changes=changes,
            )

    def _insert(
        self,
        tx: LedgerTransaction,
        company_id: UUID,
        fields: Row,
        item_rows_for: Any,
        created_by: UUID | None,
        now: datetime,
    ) -> Invoice:
        """Allocate a number, insert a DRAFT invoice and its items, audit the creation."""
        invoice_id = uuid4()
        number = self.allocator.allocate(tx, company_id)

        row = tx.insert_invoice({
            "id": invoice_id,
            "company_id": company_id,
            "invoice_number": number,
            "invoice_date": now,
            "paid_amount": ZERO,
            "balance_amount": fields["total"],
            "status": InvoiceStatus.DRAFT,
            "payment_status": PaymentStatus.PENDING,
            "sent_at": None,
            "paid_at": None,
            "cancelled_at": None,
            "created_by": created_by,
            "created_at": now,
            "updated_at": now,
            **fields,
        })
        items = tx.replace_items(invoice_id, item_rows_for(invoice_id))

        invoice = Invoice.model_validate({**row, "items": items})
        verify_invoice(invoice)

        self.audit.log_change(
            tx,
            company_id=company_id,
            entity_type="invoice",
            entity_id=invoice_id,
            action=AuditAction.CREATE,
            changes={"created": _snapshot(invoice), "items": len(items)},
            actor_id=created_by,
        )
        return invoice

    # --------------------------------------------------------------- numbering

    def configure_numbering(self, company_id: UUID, prefix: str, padding: int) -> dict:
        """
        Set the company's invoice number prefix and zero-padding.

        Applies to numbers allocated from now on; the sequence continues.
        """
        with self.store.transaction() as tx:
            settings = self.allocator.configure(tx, company_id, prefix, padding)

        logger.info(f"Invoice numbering for company {company_id} set to {prefix}/{padding}")
        return settings

    # ----------------------------------------------------------------- create

    def create_invoice(
        self, company_id: UUID, data: InvoiceCreate, created_by: UUID | None = None
    ) -> Invoice:
        """
        Create a DRAFT invoice.

        Args:
            company_id: Owning tenant
            data: Header fields and line items
            created_by: Acting user (defaults to current context)

        Returns:
            Created invoice with its items, paid 0, payment status PENDING

        Raises:
            LedgerValidationError: A discount larger than what it discounts
            DuplicateInvoiceNumberError: No free number after max attempts
        """
        totals = calculate_totals(data.items, data.discount_type, data.discount_value, data.tax_rate)
        created_by = created_by or get_current_actor_id()
        now = now_utc()

        fields = {
            "branch_id": data.branch_id,
            "client_id": data.client_id,
            "appointment_id": data.appointment_id,
            "due_date": data.due_date,
            "currency": (data.currency or self.config.default_currency).upper(),
            "notes": data.notes,
            "internal_notes": data.internal_notes,
            "terms": data.terms,
            "terms_conditions": data.terms_conditions,
            **_totals_columns(totals, data.discount_type, data.discount_value, data.tax_rate),
        }

        with self.store.transaction() as tx:
            invoice = self._insert(
                tx, company_id, fields, lambda invoice_id: _item_rows(invoice_id, totals), created_by, now
            )

        logger.info(
            f"Created invoice {invoice.invoice_number} for client {invoice.client_id}: "
            f"total {invoice.total} {invoice.currency}"
        )
        self.event_bus.publish(InvoiceCreated.create(invoice=invoice))

        return invoice

    def duplicate_invoice(
        self, invoice_id: UUID, company_id: UUID, created_by: UUID | None = None
    ) -> Invoice:
        """
        Copy an invoice into a new DRAFT.

        Items and amounts are copied as they are; payments are not. The copy
        gets a new number, today's invoice date and the default payment terms.
        """
        created_by = created_by or get_current_actor_id()
        now = now_utc()

        with self.store.transaction() as tx:
            source = self._load(tx, company_id, invoice_id)
            source_items = tx.list_items(source.id)

            fields = {
                "branch_id": source.branch_id,
                "client_id": source.client_id,
                "appointment_id": source.appointment_id,
                "due_date": days_from(now, self.config.payment_terms_days),
                "currency": source.currency,
                "notes": source.notes,
                "internal_notes": source.internal_notes,
                "terms": source.terms,
                "terms_conditions": source.terms_conditions,
                "subtotal": source.subtotal,
                "discount_type": source.discount_type,
                "discount_value": source.discount_value,
                "discount_amount": source.discount_amount,
                "tax_rate": source.tax_rate,
                "tax_amount": source.tax_amount,
                "total": source.total,
            }

            def copied_items(new_id: UUID) -> list[Row]:
                return [{**item, "id": uuid4(), "invoice_id": new_id} for item in source_items]

            invoice = self._insert(tx, company_id, fields, copied_items, created_by, now)

        logger.info(f"Duplicated invoice {source.invoice_number} as {invoice.invoice_number}")
        self.event_bus.publish(InvoiceCreated.create(invoice=invoice))

        return invoice

    # ------------------------------------------------------------------- read

    def get_invoice(self, invoice_id: UUID, company_id: UUID) -> Invoice:
        """
        Get an invoice with its items and payment history.

        Raises:
            InvoiceNotFoundError: Absent or belongs to another company
        """
        with self.store.transaction() as tx:
            return self._with_children(tx, self._load(tx, company_id, invoice_id))

    def list_invoices(
        self,
        company_id: UUID,
        filters: InvoiceFilters | None = None,
        page: int = 1,
        limit: int | None = None,
    ) -> Page[Invoice]:
        """One page of invoice headers, newest first (or by due date)."""
        limit = min(limit or self.config.default_page_size, self.config.max_page_size)
        page = max(page, 1)

        with self.store.transaction() as tx:
            rows, total = tx.find_invoices(
                company_id, filters or InvoiceFilters(), offset=(page - 1) * limit, limit=limit
            )

        return Page[Invoice](
            items=[Invoice.model_validate(row) for row in rows],
            page=page,
            limit=limit,
            total=total,
        )

    def overdue_invoices(
        self, company_id: UUID, branch_id: UUID | None = None, now: datetime | None = None
    ) -> list[Invoice]:
        """Unpaid, uncancelled invoices past their due date, oldest due first."""
        filters = InvoiceFilters(
            branch_id=branch_id,
            due_before=now or now_utc(),
            exclude_statuses=[InvoiceStatus.PAID, InvoiceStatus.CANCELLED],
            order_by_due=True,
        )
        with self.store.transaction() as tx:
            rows, _ = tx.find_invoices(company_id, filters)
        return [Invoice.model_validate(row) for row in rows]

    def outstanding_invoices(self, company_id: UUID, branch_id: UUID | None = None) -> list[Invoice]:
        """Invoices still awaiting money (pending, partial or overdue), oldest due first."""
        filters = InvoiceFilters(
            branch_id=branch_id,
            payment_statuses=[PaymentStatus.PENDING, PaymentStatus.PARTIAL, PaymentStatus.OVERDUE],
            exclude_statuses=[InvoiceStatus.CANCELLED],
            order_by_due=True,
        )
        with self.store.transaction() as tx:
            rows, _ = tx.find_invoices(company_id, filters)
        return [Invoice.model_validate(row) for row in rows]

    def invoice_summary(
        self,
        company_id: UUID,
        start_date: datetime | None = None,
        end_date: datetime | None = None,
    ) -> InvoiceSummary:
        """Counts and amounts across invoices dated within the window."""
        with self.store.transaction() as tx:
            rows, total = tx.find_invoices(
                company_id, InvoiceFilters(start_date=start_date, end_date=end_date)
            )
        invoices = [Invoice.model_validate(row) for row in rows]

        counts: dict[InvoiceStatus, int] = {}
        for invoice in invoices:
            counts[invoice.status] = counts.get(invoice.status, 0) + 1

        live = [i for i in invoices if i.status != InvoiceStatus.CANCELLED]
        return InvoiceSummary(
            total_invoices=total,
            total_amount=round_money(sum((i.total for i in live), ZERO)),
            total_paid=round_money(sum((i.paid_amount for i in invoices), ZERO)),
            total_outstanding=round_money(sum((i.balance_amount for i in live), ZERO)),
            status_breakdown=[
                StatusCount(status=status, count=count)
                for status, count in sorted(counts.items(), key=lambda kv: kv[0].value)
            ],
        )

    # ----------------------------------------------------------------- update

    def update_invoice(self, invoice_id: UUID, company_id: UUID, data: InvoiceUpdate) -> Invoice:
        """
        Apply a patch to a non-terminal invoice.

        Fields left out of the patch are unchanged; fields explicitly set to
        None are cleared. Changing items, discount or tax recomputes every
        total. Invoices past DRAFT are re-settled so statuses follow the new
        total and due date.

        Raises:
            InvoiceNotFoundError: Absent or belongs to another company
            CannotEditPaidInvoiceError: Invoice is PAID
            InvalidStateError: Invoice is CANCELLED
            LedgerValidationError: Required field cleared, bad discount, or
                the new total is below what has already been paid
        """
        patch = data.model_dump(exclude_unset=True)
        for required in ("due_date", "items"):
            if required in patch and patch[required] is None:
                raise LedgerValidationError(f"{required} cannot be cleared")

        now = now_utc()

        with self.store.transaction() as tx:
            current = self._load(tx, company_id, invoice_id, for_update=True)
            if current.status == InvoiceStatus.PAID:
                raise CannotEditPaidInvoiceError(invoice_id)
            if current.status == InvoiceStatus.CANCELLED:
                raise InvalidStateError(f"Invoice {invoice_id} is cancelled and cannot be edited")

            fields: Row = {column: patch[column] for column in _PLAIN_COLUMNS if column in patch}
            items_replaced = False

            if _MONETARY_FIELDS & patch.keys():
                if "items" in patch:
                    items = data.items
                else:
                    items = [
                        InvoiceItemCreate.model_validate(row)
                        for row in tx.list_items(current.id)
                    ]
                discount_type = (
                    (patch["discount_type"] or DiscountType.NONE)
                    if "discount_type" in patch else current.discount_type
                )
                discount_value = patch["discount_value"] if "discount_value" in patch else current.discount_value
                tax_rate = patch["tax_rate"] if "tax_rate" in patch else current.tax_rate

                totals = calculate_totals(items, discount_type, discount_value, tax_rate)
                if totals.total < current.paid_amount:
                    raise LedgerValidationError(
                        f"New total ({totals.total}) is below the amount already paid ({current.paid_amount})"
                    )

                fields.update(_totals_columns(totals, discount_type, discount_value, tax_rate))
                fields["balance_amount"] = round_money(totals.total - current.paid_amount)

                if "items" in patch:
                    tx.replace_items(current.id, _item_rows(current.id, totals))
                    items_replaced = True

            if not fields:
                return self._with_children(tx, current)

            row = tx.update_invoice(company_id, invoice_id, {**fields, "updated_at": now})
            updated = Invoice.model_validate(row)
            if items_replaced:
                self._log_update(tx, current, updated, items={"old": None, "new": "replaced"})
            else:
                self._log_update(tx, current, updated)

            if updated.status != InvoiceStatus.DRAFT:
                updated = settle_invoice(tx, self.audit, updated, now)
            verify_invoice(updated)

            result = self._with_children(tx, updated)

        logger.info(f"Updated invoice {current.invoice_number}: {sorted(fields)}")
        if updated.status == InvoiceStatus.PAID:
            self.event_bus.publish(InvoicePaid.create(invoice=result))

        return result

    # ------------------------------------------------------------ transitions

    def send_invoice(self, invoice_id: UUID, company_id: UUID) -> Invoice:
        """
        Move a DRAFT invoice to SENT.

        Raises:
            InvoiceNotFoundError: Absent or belongs to another company
            InvalidStateError: Invoice is not a draft
        """
        now = now_utc()

        with self.store.transaction() as tx:
            current = self._load(tx, company_id, invoice_id, for_update=True)
            if current.status != InvoiceStatus.DRAFT:
                raise InvalidStateError(
                    f"Invoice {invoice_id} is {current.status.value}; only drafts can be sent"
                )

            row = tx.update_invoice(company_id, invoice_id, {
                "status": InvoiceStatus.SENT,
                "sent_at": now,
                "updated_at": now,
            })
            updated = Invoice.model_validate(row)
            self._log_update(tx, current, updated)

        logger.info(f"Sent invoice {updated.invoice_number}")
        self.event_bus.publish(InvoiceSent.create(invoice=updated))

        return updated

    def mark_as_paid(self, invoice_id: UUID, company_id: UUID) -> Invoice:
        """
        Settle an invoice in full without recording a payment.

        The paid amount is forced to the total. A later refund of a recorded
        payment re-derives the paid amount from payment rows again.

        Raises:
            InvoiceNotFoundError: Absent or belongs to another company
            InvalidStateError: Invoice is already PAID or CANCELLED
        """
        now = now_utc()

        with self.store.transaction() as tx:
            current = self._load(tx, company_id, invoice_id, for_update=True)
            if current.is_terminal:
                raise InvalidStateError(
                    f"Invoice {invoice_id} is {current.status.value} and cannot be marked as paid"
                )

            row = tx.update_invoice(company_id, invoice_id, {
                "paid_amount": current.total,
                "balance_amount": ZERO,
                "status": InvoiceStatus.PAID,
                "payment_status": PaymentStatus.PAID,
                "paid_at": now,
                "updated_at": now,
            })
            updated = Invoice.model_validate(row)
            verify_invoice(updated)
            self._log_update(tx, current, updated, marked_as_paid=True)

        logger.info(f"Marked invoice {updated.invoice_number} as paid")
        self.event_bus.publish(InvoicePaid.create(invoice=updated))

        return updated

    def cancel_invoice(self, invoice_id: UUID, company_id: UUID, reason: str | None = None) -> Invoice:
        """
        Cancel an unpaid invoice.

        The reason, if given, is appended to the invoice notes. Cancelled
        invoices keep their amounts but take no further payments or edits.

        Raises:
            InvoiceNotFoundError: Absent or belongs to another company
            CannotCancelPaidError: Invoice is PAID
            InvalidStateError: Invoice is already CANCELLED
        """
        now = now_utc()

        with self.store.transaction() as tx:
            current = self._load(tx, company_id, invoice_id, for_update=True)
            if current.status == InvoiceStatus.PAID:
                raise CannotCancelPaidError(invoice_id)
            if current.status == InvoiceStatus.CANCELLED:
                raise InvalidStateError(f"Invoice {invoice_id} is already cancelled")

            fields: Row = {
                "status": InvoiceStatus.CANCELLED,
                "payment_status": PaymentStatus.CANCELLED,
                "cancelled_at": now,
                "updated_at": now,
            }
            if reason:
                fields["notes"] = _append_note(current.notes, f"Cancellation reason: {reason}")

            row = tx.update_invoice(company_id, invoice_id, fields)
            updated = Invoice.model_validate(row)
            self._log_update(tx, current, updated)

        logger.info(f"Cancelled invoice {updated.invoice_number}")
        self.event_bus.publish(InvoiceCancelled.create(invoice=updated, reason=reason))

        return updated

    def delete_invoice(self, invoice_id: UUID, company_id: UUID) -> Invoice:
        """
        Delete a DRAFT invoice with its items.

        The number it held is not reused.

        Returns:
            The invoice as it was before deletion

        Raises:
            InvoiceNotFoundError: Absent or belongs to another company
            CannotDeleteNonDraftError: Invoice has left DRAFT
        """
        with self.store.transaction() as tx:
            current = self._with_children(tx, self._load(tx, company_id, invoice_id, for_update=True))
            if current.status != InvoiceStatus.DRAFT:
                raise CannotDeleteNonDraftError(invoice_id, current.status.value)

            tx.delete_invoice(company_id, invoice_id)
            self.audit.log_change(
                tx,
                company_id=company_id,
                entity_type="invoice",
                entity_id=invoice_id,
                action=AuditAction.DELETE,
                changes={"deleted": _snapshot(current)},
            )

        logger.info(f"Deleted draft invoice {current.invoice_number}")
        return current

    def refresh_overdue(self, company_id: UUID, now: datetime | None = None) -> list[Invoice]:
        """
        Re-settle open invoices against the clock.

        Meant for a periodic job: invoices that have passed their due date
        since their last change move to OVERDUE.

        Returns:
            Invoices whose status changed
        """
        now = now or now_utc()
        filters = InvoiceFilters(
            exclude_statuses=[InvoiceStatus.DRAFT, InvoiceStatus.PAID, InvoiceStatus.CANCELLED],
            order_by_due=True,
        )
        with self.store.transaction() as tx:
            rows, _ = tx.find_invoices(company_id, filters)

        changed = []
        for row in rows:
            with self.store.transaction() as tx:
                # Re-read under lock; the invoice may have moved since the scan
                current = self._load(tx, company_id, row["id"], for_update=True)
                if current.status in (InvoiceStatus.DRAFT, InvoiceStatus.PAID, InvoiceStatus.CANCELLED):
                    continue
                updated = settle_invoice(tx, self.audit, current, now)
                verify_invoice(updated)
            if updated.status != current.status:
                changed.append(updated)

        if changed:
            logger.info(f"Marked {len(changed)} invoice(s) overdue for company {company_id}")
        return changed
