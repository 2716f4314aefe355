"""Payment domain models.

Payment amounts are signed: positive for money received, negative for a
partial-refund correction row. Full refunds flip the original row's status
to REFUNDED instead of adding a row.
"""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Annotated
from uuid import UUID

from pydantic import AfterValidator, BaseModel, Field, field_validator

from utils.timezone import to_utc


class PaymentStatus(str, Enum):
    """
    Status of a payment row, and of an invoice's payment progress.

    Payment rows use PENDING/COMPLETED/PAID/FAILED/CANCELLED/REFUNDED.
    Invoices use PENDING/PARTIAL/PAID/OVERDUE/CANCELLED/REFUNDED.
    """

    PENDING = "pending"
    PARTIAL = "partial"
    COMPLETED = "completed"
    PAID = "paid"
    OVERDUE = "overdue"
    FAILED = "failed"
    CANCELLED = "cancelled"
    REFUNDED = "refunded"


class PaymentMethod(str, Enum):
    CASH = "cash"
    CARD = "card"
    BANK_TRANSFER = "bank_transfer"
    WALLET = "wallet"
    CHEQUE = "cheque"
    ONLINE = "online"
    OTHER = "other"


# Statuses whose amounts count towards an invoice's paid amount
SETTLED_STATUSES = frozenset({PaymentStatus.COMPLETED, PaymentStatus.PAID})

# Timezone-aware datetime normalised to UTC; naive input fails validation
UtcDatetime = Annotated[datetime, AfterValidator(to_utc)]


class PaymentCreate(BaseModel):
    """Data required to record a payment against an invoice."""

    invoice_id: UUID
    client_id: UUID
    amount: Decimal = Field(..., gt=0)
    payment_method: PaymentMethod
    reference: str | None = Field(None, max_length=100)
    notes: str | None = Field(None, max_length=2000)
    transaction_id: str | None = Field(None, max_length=200)
    payment_gateway: str | None = Field(None, max_length=100)
    payment_date: UtcDatetime | None = None
    status: PaymentStatus = PaymentStatus.COMPLETED

    @field_validator("status")
    @classmethod
    def check_initial_status(cls, value: PaymentStatus) -> PaymentStatus:
        """New payments start settled, or pending while a gateway settles."""
        if value not in (PaymentStatus.COMPLETED, PaymentStatus.PENDING):
            raise ValueError("status must be 'completed' or 'pending' for a new payment")
        return value


class PaymentUpdate(BaseModel):
    """Editable payment fields. All optional; status only moves out of PENDING."""

    payment_method: PaymentMethod | None = None
    reference: str | None = Field(None, max_length=100)
    notes: str | None = Field(None, max_length=2000)
    transaction_id: str | None = Field(None, max_length=200)
    payment_gateway: str | None = Field(None, max_length=100)
    status: PaymentStatus | None = None


class RefundRequest(BaseModel):
    """Refund of all or part of a settled payment."""

    amount: Decimal = Field(..., gt=0)
    reason: str | None = Field(None, max_length=1000)
    refund_reference: str | None = Field(None, max_length=100)


class Payment(BaseModel):
    """Full payment entity as stored."""

    id: UUID
    company_id: UUID
    invoice_id: UUID
    client_id: UUID
    amount: Decimal
    payment_method: PaymentMethod
    status: PaymentStatus
    reference: str | None
    transaction_id: str | None
    payment_gateway: str | None
    notes: str | None
    payment_date: datetime
    processed_at: datetime | None
    refund_of_id: UUID | None = None
    created_by: UUID | None
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}

    @property
    def is_refund_entry(self) -> bool:
        """Negative correction row created by a partial refund."""
        return self.status == PaymentStatus.REFUNDED and self.amount < 0


class PaymentFilters(BaseModel):
    """Query filters for payment listings. Unset fields don't filter."""

    invoice_id: UUID | None = None
    client_id: UUID | None = None
    statuses: list[PaymentStatus] | None = None
    payment_method: PaymentMethod | None = None
    start_date: UtcDatetime | None = None
    end_date: UtcDatetime | None = None
    search: str | None = Field(None, max_length=100)

