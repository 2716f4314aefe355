"""
Typed ledger errors.

Every public ledger operation either returns the updated aggregate or raises
exactly one LedgerError subclass. The `kind` attribute is the stable,
machine-readable discriminator callers switch on; class names are free to
be more specific than the kind.
"""

from decimal import Decimal
from enum import Enum
from uuid import UUID


class ErrorKind(str, Enum):
    """Discriminator for ledger failures."""

    NOT_FOUND = "not_found"
    INVALID_STATE = "invalid_state"
    CLIENT_MISMATCH = "client_mismatch"
    AMOUNT_EXCEEDS_BALANCE = "amount_exceeds_balance"
    REFUND_EXCEEDS_PAYMENT_AMOUNT = "refund_exceeds_payment_amount"
    ALREADY_REFUNDED = "already_refunded"
    DUPLICATE_INVOICE_NUMBER = "duplicate_invoice_number"
    VALIDATION_ERROR = "validation_error"
    STORAGE_UNAVAILABLE = "storage_unavailable"


class LedgerError(Exception):
    """Base class for ledger failures."""

    kind: ErrorKind = ErrorKind.VALIDATION_ERROR
    retryable: bool = False


# =============================================================================
# NOT FOUND
# =============================================================================


class NotFoundError(LedgerError):
    """Entity absent, or not visible in the caller's tenant."""

    kind = ErrorKind.NOT_FOUND


class InvoiceNotFoundError(NotFoundError):
    def __init__(self, invoice_id: UUID):
        self.invoice_id = invoice_id
        super().__init__(f"Invoice {invoice_id} not found")


class PaymentNotFoundError(NotFoundError):
    def __init__(self, payment_id: UUID):
        self.payment_id = payment_id
        super().__init__(f"Payment {payment_id} not found")


# =============================================================================
# INVALID STATE
# =============================================================================


class InvalidStateError(LedgerError):
    """Operation is illegal for the entity's current status."""

    kind = ErrorKind.INVALID_STATE


class CannotEditPaidInvoiceError(InvalidStateError):
    def __init__(self, invoice_id: UUID):
        self.invoice_id = invoice_id
        super().__init__(f"Invoice {invoice_id} is paid and cannot be edited")


class CannotCancelPaidError(InvalidStateError):
    def __init__(self, invoice_id: UUID):
        self.invoice_id = invoice_id
        super().__init__(f"Invoice {invoice_id} is paid and cannot be cancelled")


class CannotDeleteNonDraftError(InvalidStateError):
    def __init__(self, invoice_id: UUID, status: str):
        self.invoice_id = invoice_id
        self.status = status
        super().__init__(
            f"Invoice {invoice_id} is {status}; only draft invoices can be deleted"
        )


class InvalidPaymentStateError(InvalidStateError):
    def __init__(self, payment_id: UUID, status: str, operation: str):
        self.payment_id = payment_id
        self.status = status
        self.operation = operation
        super().__init__(f"Cannot {operation} payment {payment_id} in status {status}")


# =============================================================================
# MONETARY RULES
# =============================================================================


class ClientMismatchError(LedgerError):
    """Payment client differs from the invoice's client."""

    kind = ErrorKind.CLIENT_MISMATCH

    def __init__(self, invoice_id: UUID, client_id: UUID):
        self.invoice_id = invoice_id
        self.client_id = client_id
        super().__init__(f"Client {client_id} does not match invoice {invoice_id}")


class AmountExceedsBalanceError(LedgerError):
    """Payment would take the invoice past its total. Carries both figures for reporting."""

    kind = ErrorKind.AMOUNT_EXCEEDS_BALANCE

    def __init__(self, amount: Decimal, balance: Decimal):
        self.amount = amount
        self.balance = balance
        super().__init__(
            f"Payment amount ({amount}) exceeds outstanding balance ({balance})"
        )


class RefundExceedsPaymentAmountError(LedgerError):
    kind = ErrorKind.REFUND_EXCEEDS_PAYMENT_AMOUNT

    def __init__(self, amount: Decimal, refundable: Decimal):
        self.amount = amount
        self.refundable = refundable
        super().__init__(
            f"Refund amount ({amount}) cannot exceed refundable payment amount ({refundable})"
        )


class AlreadyRefundedError(LedgerError):
    kind = ErrorKind.ALREADY_REFUNDED

    def __init__(self, payment_id: UUID):
        self.payment_id = payment_id
        super().__init__(f"Payment {payment_id} already refunded")


# =============================================================================
# ALLOCATION, INPUT, INFRASTRUCTURE
# =============================================================================


class DuplicateInvoiceNumberError(LedgerError):
    """Invoice number already taken within the company."""

    kind = ErrorKind.DUPLICATE_INVOICE_NUMBER

    def __init__(self, company_id: UUID, invoice_number: str):
        self.company_id = company_id
        self.invoice_number = invoice_number
        super().__init__(
            f"Invoice number {invoice_number} already exists for company {company_id}"
        )


class LedgerValidationError(LedgerError, ValueError):
    """Malformed input that passed shape validation but breaks a ledger rule."""

    kind = ErrorKind.VALIDATION_ERROR


class StorageUnavailableError(LedgerError):
    """
    Backing store unreachable or failed mid-transaction.

    The transaction was rolled back. Callers may retry; the ledger never
    retries on its own because payment writes must not be replayed silently.
    """

    kind = ErrorKind.STORAGE_UNAVAILABLE
    retryable = True
