"""
Domain events for the ledger.

Immutable facts published after a ledger transaction commits. The ledger
never calls notification or document collaborators itself; they subscribe
here and read the committed state carried on the event.

Event Categories:
- InvoiceEvent: Invoice lifecycle (create, send, paid, cancel)
- PaymentEvent: Payment activity (recorded, refunded)
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any
from uuid import uuid4

from utils.timezone import now_utc


@dataclass(frozen=True, kw_only=True)
class LedgerEvent:
    """Base class for all ledger domain events."""
    event_id: str = field(default_factory=lambda: str(uuid4()))
    occurred_at: datetime = field(default_factory=now_utc)


# =============================================================================
# INVOICE EVENTS
# =============================================================================


@dataclass(frozen=True)
class InvoiceEvent(LedgerEvent):
    """Events related to invoice lifecycle."""
    invoice: Any = None  # Invoice


@dataclass(frozen=True)
class InvoiceCreated(InvoiceEvent):
    """A new invoice was created in DRAFT status."""

    @classmethod
    def create(cls, invoice: Any) -> "InvoiceCreated":
        return cls(invoice=invoice)


@dataclass(frozen=True)
class InvoiceSent(InvoiceEvent):
    """Invoice moved from DRAFT to SENT."""

    @classmethod
    def create(cls, invoice: Any) -> "InvoiceSent":
        return cls(invoice=invoice)


@dataclass(frozen=True)
class InvoicePaid(InvoiceEvent):
    """Invoice reached PAID, through payments or mark-as-paid."""

    @classmethod
    def create(cls, invoice: Any) -> "InvoicePaid":
        return cls(invoice=invoice)


@dataclass(frozen=True)
class InvoiceCancelled(InvoiceEvent):
    """Invoice was cancelled."""
    reason: str | None = None

    @classmethod
    def create(cls, invoice: Any, reason: str | None = None) -> "InvoiceCancelled":
        return cls(invoice=invoice, reason=reason)


# =============================================================================
# PAYMENT EVENTS
# =============================================================================


@dataclass(frozen=True)
class PaymentEvent(LedgerEvent):
    """Events related to payment activity."""
    payment: Any = None
    invoice: Any = None


@dataclass(frozen=True)
class PaymentRecorded(PaymentEvent):
    """A payment was recorded against an invoice."""

    @classmethod
    def create(cls, payment: Any, invoice: Any) -> "PaymentRecorded":
        return cls(payment=payment, invoice=invoice)


@dataclass(frozen=True)
class PaymentRefunded(PaymentEvent):
    """All or part of a payment was refunded."""
    full: bool = False

    @classmethod
    def create(cls, payment: Any, invoice: Any, full: bool) -> "PaymentRefunded":
        return cls(payment=payment, invoice=invoice, full=full)
