"""
Payment ledger.

Records payments and refunds against invoices and keeps each invoice's paid
amount, balance and statuses reconciled with its payment rows. Every
operation locks the invoice first, then the payment, then writes both
inside one transaction.
"""

import logging
from datetime import datetime
from decimal import Decimal
from uuid import UUID, uuid4

from core.audit import AuditLogger, AuditAction, compute_changes
from core.config import LedgerConfig
from core.errors import (
    AlreadyRefundedError,
    AmountExceedsBalanceError,
    ClientMismatchError,
    InvalidPaymentStateError,
    InvalidStateError,
    InvoiceNotFoundError,
    LedgerValidationError,
    PaymentNotFoundError,
    RefundExceedsPaymentAmountError,
)
from core.event_bus import EventBus
from core.events import InvoicePaid, PaymentRecorded, PaymentRefunded
from core.models import (
    DailyTotal,
    Invoice,
    InvoiceStatus,
    MethodTotal,
    Page,
    Payment,
    PaymentAnalytics,
    PaymentCreate,
    PaymentFilters,
    PaymentStatus,
    PaymentSummary,
    PaymentUpdate,
    RefundRequest,
    SETTLED_STATUSES,
)
from core.money import ZERO, negate, round_money, total_of
from core.services.settlement import load_payments, settle_invoice, verify_invoice
from core.store.base import LedgerStore, LedgerTransaction
from utils.tenant_context import get_current_actor_id
from utils.timezone import days_from, now_utc, utc_date_key

logger = logging.getLogger(__name__)

# Pending payments settle, or fail at the gateway. Completed ones may be confirmed as paid.
_STATUS_TRANSITIONS = {
    PaymentStatus.PENDING: {PaymentStatus.COMPLETED, PaymentStatus.PAID, PaymentStatus.FAILED},
    PaymentStatus.COMPLETED: {PaymentStatus.PAID},
}

# Payments that never moved money can be removed outright
_DELETABLE_STATUSES = {PaymentStatus.PENDING, PaymentStatus.FAILED, PaymentStatus.CANCELLED}


def _append_note(notes: str | None, line: str) -> str:
    return f"{notes}\n{line}" if notes else line


def _method_totals(payments: list[Payment]) -> list[MethodTotal]:
    grouped: dict = {}
    for payment in payments:
        count, amount = grouped.get(payment.payment_method, (0, ZERO))
        grouped[payment.payment_method] = (count + 1, amount + payment.amount)
    return [
        MethodTotal(method=method, count=count, amount=round_money(amount))
        for method, (count, amount) in sorted(grouped.items(), key=lambda kv: kv[0].value)
    ]


class PaymentService:
    """Service for payment operations."""

    def __init__(
        self,
        store: LedgerStore,
        audit: AuditLogger,
        event_bus: EventBus,
        config: LedgerConfig | None = None,
    ):
        self.store = store
        self.audit = audit
        self.event_bus = event_bus
        self.config = config or LedgerConfig()

    # ------------------------------------------------------------------ helpers

    def _lock_invoice(self, tx: LedgerTransaction, company_id: UUID, invoice_id: UUID) -> Invoice:
        row = tx.get_invoice(company_id, invoice_id, for_update=True)
        if row is None:
            raise InvoiceNotFoundError(invoice_id)
        return Invoice.model_validate(row)

    def _lock_payment(
        self, tx: LedgerTransaction, company_id: UUID, payment_id: UUID
    ) -> tuple[Invoice, Payment]:
        """
        Lock a payment and its invoice, invoice first.

        The unlocked read only finds the invoice id; the payment is re-read
        once the invoice lock is held.
        """
        peek = tx.get_payment(company_id, payment_id)
        if peek is None:
            raise PaymentNotFoundError(payment_id)

        invoice = self._lock_invoice(tx, company_id, peek["invoice_id"])
        row = tx.get_payment(company_id, payment_id, for_update=True)
        if row is None:
            raise PaymentNotFoundError(payment_id)
        return invoice, Payment.model_validate(row)

    def _log_payment(
        self, tx: LedgerTransaction, before: Payment | None, after: Payment, **extra
    ) -> None:
        if before is None:
            action = AuditAction.CREATE
            changes = {"created": after.model_dump(mode="json")}
        else:
            action = AuditAction.UPDATE
            changes = compute_changes(before.model_dump(mode="json"), after.model_dump(mode="json"))
        changes.update(extra)

        self.audit.log_change(
            tx,
            company_id=after.company_id,
            entity_type="payment",
            entity_id=after.id,
            action=action,
            changes=changes,
        )

    def _settle(self, tx: LedgerTransaction, invoice: Invoice, now: datetime) -> Invoice:
        """Re-settle unless the invoice is frozen in a terminal status."""
        if invoice.is_terminal:
            return invoice
        settled = settle_invoice(tx, self.audit, invoice, now)
        verify_invoice(settled)
        return settled

    def _publish_paid(self, before: Invoice, after: Invoice) -> None:
        if before.status != InvoiceStatus.PAID and after.status == InvoiceStatus.PAID:
            self.event_bus.publish(InvoicePaid.create(invoice=after))

    # ----------------------------------------------------------------- record

    def record_payment(
        self, company_id: UUID, data: PaymentCreate, created_by: UUID | None = None
    ) -> Payment:
        """
        Record a payment against a sent invoice.

        A COMPLETED payment counts towards the invoice at once; a PENDING one
        only once it is moved to COMPLETED or PAID.

        Args:
            company_id: Owning tenant
            data: Payment details; client_id must match the invoice
            created_by: Acting user (defaults to current context)

        Returns:
            The stored payment

        Raises:
            InvoiceNotFoundError: Invoice absent or belongs to another company
            InvalidStateError: Invoice is DRAFT, PAID or CANCELLED
            ClientMismatchError: Payment client differs from the invoice's
            AmountExceedsBalanceError: Amount is above the outstanding balance
        """
        created_by = created_by or get_current_actor_id()
        amount = round_money(data.amount)
        if amount <= ZERO:
            raise LedgerValidationError(f"Payment amount {data.amount} rounds to zero")

        now = now_utc()

        with self.store.transaction() as tx:
            invoice = self._lock_invoice(tx, company_id, data.invoice_id)

            if invoice.status == InvoiceStatus.DRAFT:
                raise InvalidStateError(f"Invoice {invoice.id} must be sent before taking payments")
            if invoice.is_terminal:
                raise InvalidStateError(
                    f"Invoice {invoice.id} is {invoice.status.value} and takes no further payments"
                )
            if data.client_id != invoice.client_id:
                raise ClientMismatchError(invoice.id, data.client_id)
            if amount > invoice.balance_amount:
                raise AmountExceedsBalanceError(amount, invoice.balance_amount)

            row = tx.insert_payment({
                "id": uuid4(),
                "company_id": company_id,
                "invoice_id": invoice.id,
                "client_id": data.client_id,
                "amount": amount,
                "payment_method": data.payment_method,
                "status": data.status,
                "reference": data.reference,
                "transaction_id": data.transaction_id,
                "payment_gateway": data.payment_gateway,
                "notes": data.notes,
                "payment_date": data.payment_date or now,
                "processed_at": now if data.status == PaymentStatus.COMPLETED else None,
                "refund_of_id": None,
                "created_by": created_by,
                "created_at": now,
                "updated_at": now,
            })
            payment = Payment.model_validate(row)
            self._log_payment(tx, None, payment)

            settled = self._settle(tx, invoice, now)

        logger.info(
            f"Recorded {payment.status.value} payment of {payment.amount} on invoice "
            f"{invoice.invoice_number}; balance now {settled.balance_amount}"
        )
        self.event_bus.publish(PaymentRecorded.create(payment=payment, invoice=settled))
        self._publish_paid(invoice, settled)

        return payment

    # ----------------------------------------------------------------- refund

    def process_refund(
        self,
        payment_id: UUID,
        company_id: UUID,
        refund: RefundRequest,
        processed_by: UUID | None = None,
    ) -> Payment:
        """
        Refund all or part of a settled payment.

        Refunding the whole payment in one go flips it to REFUNDED. Anything
        else adds a negative REFUNDED row pointing at the original, so the
        amounts still sum to what was actually kept.

        Returns:
            The refunded original (full refund) or the new refund row (partial)

        Raises:
            PaymentNotFoundError: Payment absent or belongs to another company
            AlreadyRefundedError: Nothing left to refund on this payment
            InvalidPaymentStateError: Payment was never settled
            RefundExceedsPaymentAmountError: Amount is above what is refundable
        """
        processed_by = processed_by or get_current_actor_id()
        amount = round_money(refund.amount)
        now = now_utc()

        with self.store.transaction() as tx:
            invoice, payment = self._lock_payment(tx, company_id, payment_id)

            if payment.status == PaymentStatus.REFUNDED:
                raise AlreadyRefundedError(payment_id)
            if payment.status not in SETTLED_STATUSES:
                raise InvalidPaymentStateError(payment_id, payment.status.value, "refund")

            already_refunded = total_of(
                negate(p.amount) for p in load_payments(tx, invoice) if p.refund_of_id == payment.id
            )
            refundable = round_money(payment.amount - already_refunded)
            if refundable <= ZERO:
                raise AlreadyRefundedError(payment_id)
            if amount > refundable:
                raise RefundExceedsPaymentAmountError(amount, refundable)

            full = amount == payment.amount
            if full:
                fields = {
                    "status": PaymentStatus.REFUNDED,
                    "processed_at": now,
                    "updated_at": now,
                }
                if refund.reason:
                    fields["notes"] = _append_note(payment.notes, f"Refund reason: {refund.reason}")
                if refund.refund_reference:
                    fields["reference"] = refund.refund_reference

                result = Payment.model_validate(tx.update_payment(company_id, payment_id, fields))
                self._log_payment(tx, payment, result)
            else:
                notes = f"Partial refund for payment {payment.id}."
                if refund.reason:
                    notes = f"{notes} {refund.reason}"

                result = Payment.model_validate(tx.insert_payment({
                    "id": uuid4(),
                    "company_id": company_id,
                    "invoice_id": payment.invoice_id,
                    "client_id": payment.client_id,
                    "amount": negate(amount),
                    "payment_method": payment.payment_method,
                    "status": PaymentStatus.REFUNDED,
                    "reference": refund.refund_reference or f"REFUND-{payment.reference or payment.id}",
                    "transaction_id": payment.transaction_id,
                    "payment_gateway": payment.payment_gateway,
                    "notes": notes,
                    "payment_date": now,
                    "processed_at": now,
                    "refund_of_id": payment.id,
                    "created_by": processed_by,
                    "created_at": now,
                    "updated_at": now,
                }))
                self._log_payment(tx, None, result, refund_of=str(payment.id))

            # Cancelled invoices still get their amounts re-summed
            settled = settle_invoice(tx, self.audit, invoice, now)
            verify_invoice(settled)

        logger.info(
            f"Refunded {amount} of payment {payment_id} ({'full' if full else 'partial'}); "
            f"invoice {invoice.invoice_number} now {settled.status.value}"
        )
        self.event_bus.publish(PaymentRefunded.create(payment=result, invoice=settled, full=full))

        return result

    # ------------------------------------------------------------ maintenance

    def cancel_payment(self, payment_id: UUID, company_id: UUID, reason: str | None = None) -> Payment:
        """
        Cancel a PENDING payment.

        Raises:
            PaymentNotFoundError: Payment absent or belongs to another company
            InvalidPaymentStateError: Payment is not PENDING
        """
        now = now_utc()

        with self.store.transaction() as tx:
            invoice, payment = self._lock_payment(tx, company_id, payment_id)
            if payment.status != PaymentStatus.PENDING:
                raise InvalidPaymentStateError(payment_id, payment.status.value, "cancel")

            fields = {"status": PaymentStatus.CANCELLED, "processed_at": now, "updated_at": now}
            if reason:
                fields["notes"] = _append_note(payment.notes, f"Cancellation reason: {reason}")

            updated = Payment.model_validate(tx.update_payment(company_id, payment_id, fields))
            self._log_payment(tx, payment, updated)
            self._settle(tx, invoice, now)

        logger.info(f"Cancelled pending payment {payment_id} on invoice {invoice.invoice_number}")
        return updated

    def delete_payment(self, payment_id: UUID, company_id: UUID) -> Payment:
        """
        Delete a payment that never moved money (PENDING, FAILED or CANCELLED).

        Returns:
            The payment as it was before deletion
        """
        now = now_utc()

        with self.store.transaction() as tx:
            invoice, payment = self._lock_payment(tx, company_id, payment_id)
            if payment.status not in _DELETABLE_STATUSES:
                raise InvalidPaymentStateError(payment_id, payment.status.value, "delete")

            tx.delete_payment(company_id, payment_id)
            self.audit.log_change(
                tx,
                company_id=company_id,
                entity_type="payment",
                entity_id=payment_id,
                action=AuditAction.DELETE,
                changes={"deleted": payment.model_dump(mode="json")},
            )
            self._settle(tx, invoice, now)

        logger.info(f"Deleted {payment.status.value} payment {payment_id}")
        return payment

    def update_payment(self, payment_id: UUID, company_id: UUID, data: PaymentUpdate) -> Payment:
        """
        Edit payment details or move a payment along its status path.

        PENDING may become COMPLETED, PAID or FAILED; COMPLETED may become
        PAID. Settling a pending payment re-checks the invoice balance.

        Raises:
            PaymentNotFoundError: Payment absent or belongs to another company
            InvalidPaymentStateError: Payment is REFUNDED, or the status move is not allowed
            InvalidStateError: Settling a payment on a CANCELLED invoice
            AmountExceedsBalanceError: Settling would overpay the invoice
        """
        patch = data.model_dump(exclude_unset=True)
        if "payment_method" in patch and patch["payment_method"] is None:
            raise LedgerValidationError("payment_method cannot be cleared")
        new_status = patch.pop("status", None)

        now = now_utc()

        with self.store.transaction() as tx:
            invoice, payment = self._lock_payment(tx, company_id, payment_id)
            if payment.status == PaymentStatus.REFUNDED:
                raise InvalidPaymentStateError(payment_id, payment.status.value, "update")

            fields = dict(patch)
            status_changed = new_status is not None and new_status != payment.status

            if status_changed:
                if new_status not in _STATUS_TRANSITIONS.get(payment.status, set()):
                    raise InvalidPaymentStateError(
                        payment_id, payment.status.value, f"move to {new_status.value}"
                    )

                newly_settled = new_status in SETTLED_STATUSES and payment.status not in SETTLED_STATUSES
                if newly_settled:
                    if invoice.status == InvoiceStatus.CANCELLED:
                        raise InvalidStateError(
                            f"Invoice {invoice.id} is cancelled; payment {payment_id} cannot settle"
                        )
                    if payment.amount > invoice.balance_amount:
                        raise AmountExceedsBalanceError(payment.amount, invoice.balance_amount)
                    fields["processed_at"] = now
                elif new_status == PaymentStatus.FAILED:
                    fields["processed_at"] = now

                fields["status"] = new_status

            if not fields:
                return payment

            updated = Payment.model_validate(
                tx.update_payment(company_id, payment_id, {**fields, "updated_at": now})
            )
            self._log_payment(tx, payment, updated)

            settled = self._settle(tx, invoice, now) if status_changed else invoice

        logger.info(f"Updated payment {payment_id}: {sorted(fields)}")
        if status_changed:
            self._publish_paid(invoice, settled)

        return updated

    def retry_payment(self, payment_id: UUID, company_id: UUID) -> Payment:
        """
        Put a FAILED payment back to PENDING for another gateway attempt.

        Raises:
            InvalidPaymentStateError: Payment is not FAILED
        """
        now = now_utc()

        with self.store.transaction() as tx:
            _, payment = self._lock_payment(tx, company_id, payment_id)
            if payment.status != PaymentStatus.FAILED:
                raise InvalidPaymentStateError(payment_id, payment.status.value, "retry")

            updated = Payment.model_validate(tx.update_payment(company_id, payment_id, {
                "status": PaymentStatus.PENDING,
                "processed_at": None,
                "updated_at": now,
            }))
            self._log_payment(tx, payment, updated)

        logger.info(f"Payment {payment_id} queued for retry")
        return updated

    # ------------------------------------------------------------------- read

    def get_payment(self, payment_id: UUID, company_id: UUID) -> Payment:
        """
        Raises:
            PaymentNotFoundError: Absent or belongs to another company
        """
        with self.store.transaction() as tx:
            row = tx.get_payment(company_id, payment_id)
        if row is None:
            raise PaymentNotFoundError(payment_id)
        return Payment.model_validate(row)

    def list_invoice_payments(self, invoice_id: UUID, company_id: UUID) -> list[Payment]:
        """Every payment row of an invoice, refunds included, newest first."""
        with self.store.transaction() as tx:
            row = tx.get_invoice(company_id, invoice_id)
            if row is None:
                raise InvoiceNotFoundError(invoice_id)
            return load_payments(tx, Invoice.model_validate(row))

    def list_payments(
        self,
        company_id: UUID,
        filters: PaymentFilters | None = None,
        page: int = 1,
        limit: int | None = None,
    ) -> Page[Payment]:
        limit = min(limit or self.config.default_page_size, self.config.max_page_size)
        page = max(page, 1)

        with self.store.transaction() as tx:
            rows, total = tx.find_payments(
                company_id, filters or PaymentFilters(), offset=(page - 1) * limit, limit=limit
            )

        return Page[Payment](
            items=[Payment.model_validate(row) for row in rows],
            page=page,
            limit=limit,
            total=total,
        )

    def recent_payments(self, company_id: UUID, limit: int = 10) -> list[Payment]:
        with self.store.transaction() as tx:
            rows, _ = tx.find_payments(company_id, PaymentFilters(), limit=limit)
        return [Payment.model_validate(row) for row in rows]

    def payment_summary(
        self,
        company_id: UUID,
        start_date: datetime | None = None,
        end_date: datetime | None = None,
    ) -> PaymentSummary:
        """
        Settled takings within the window, broken down by method.

        total_refunded counts fully refunded payments plus partial refund rows.
        """
        with self.store.transaction() as tx:
            rows, _ = tx.find_payments(
                company_id, PaymentFilters(start_date=start_date, end_date=end_date)
            )
        payments = [Payment.model_validate(row) for row in rows]

        settled = [p for p in payments if p.status in SETTLED_STATUSES]
        refunded = total_of(
            abs(p.amount) for p in payments if p.status == PaymentStatus.REFUNDED
        )

        return PaymentSummary(
            total_payments=len(settled),
            total_amount=round_money(total_of(p.amount for p in settled)),
            total_refunded=round_money(refunded),
            method_breakdown=_method_totals(settled),
        )

    def payment_analytics(
        self, company_id: UUID, days: int = 30, now: datetime | None = None
    ) -> PaymentAnalytics:
        """Daily and per-method settled totals over the last `days` days."""
        if days < 1:
            raise LedgerValidationError("days must be at least 1")

        now = now or now_utc()
        with self.store.transaction() as tx:
            rows, _ = tx.find_payments(
                company_id,
                PaymentFilters(
                    statuses=sorted(SETTLED_STATUSES, key=lambda s: s.value),
                    start_date=days_from(now, -days),
                    end_date=now,
                ),
            )
        payments = [Payment.model_validate(row) for row in rows]

        daily: dict[str, tuple[int, Decimal]] = {}
        for payment in payments:
            key = utc_date_key(payment.payment_date)
            count, amount = daily.get(key, (0, ZERO))
            daily[key] = (count + 1, amount + payment.amount)

        return PaymentAnalytics(
            days=days,
            daily_totals=[
                DailyTotal(date=key, count=count, amount=round_money(amount))
                for key, (count, amount) in sorted(daily.items())
            ],
            method_totals=_method_totals(payments),
            total_amount=round_money(total_of(p.amount for p in payments)),
            total_count=len(payments),
        )
