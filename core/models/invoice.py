"""Invoice domain models.

All amounts are Decimal (never float). Percentages (tax_rate, percentage
discounts) are expressed 0-100. Stored amounts are rounded to 2 places.
"""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from uuid import UUID

from pydantic import BaseModel, Field, model_validator

from core.models.payment import Payment, PaymentStatus, UtcDatetime


class InvoiceStatus(str, Enum):
    """Invoice lifecycle status."""

    DRAFT = "draft"
    SENT = "sent"
    PARTIAL = "partial"
    PAID = "paid"
    OVERDUE = "overdue"
    CANCELLED = "cancelled"


class DiscountType(str, Enum):
    """How an invoice-level discount value is interpreted."""

    PERCENTAGE = "percentage"
    FIXED = "fixed"
    NONE = "none"


class ItemType(str, Enum):
    SERVICE = "service"
    PRODUCT = "product"
    CUSTOM = "custom"


class InvoiceItemCreate(BaseModel):
    """A line item as supplied by the caller, before totals are computed."""

    type: ItemType = ItemType.CUSTOM
    item_id: UUID | None = None
    description: str = Field(..., min_length=1, max_length=500)
    quantity: Decimal = Field(..., gt=0)
    unit_price: Decimal = Field(..., ge=0)
    discount: Decimal | None = Field(None, ge=0)  # Fixed amount off this line
    tax_rate: Decimal | None = Field(None, ge=0, le=100)


class InvoiceItem(BaseModel):
    """Line item as stored, with its computed total."""

    id: UUID
    invoice_id: UUID
    type: ItemType
    item_id: UUID | None
    description: str
    quantity: Decimal
    unit_price: Decimal
    discount: Decimal | None
    tax_rate: Decimal | None
    total: Decimal
    order: int

    model_config = {"from_attributes": True}


class InvoiceCreate(BaseModel):
    """Data required to create an invoice."""

    branch_id: UUID
    client_id: UUID
    appointment_id: UUID | None = None
    due_date: UtcDatetime
    currency: str | None = Field(None, min_length=3, max_length=3)
    items: list[InvoiceItemCreate] = Field(..., min_length=1)
    notes: str | None = Field(None, max_length=2000)
    internal_notes: str | None = Field(None, max_length=2000)
    terms: str | None = Field(None, max_length=2000)
    terms_conditions: str | None = Field(None, max_length=5000)
    discount_type: DiscountType = DiscountType.NONE
    discount_value: Decimal | None = Field(None, ge=0)
    tax_rate: Decimal | None = Field(None, ge=0, le=100)

    @model_validator(mode="after")
    def check_percentage_discount(self) -> "InvoiceCreate":
        """Percentage discounts cannot exceed 100%."""
        if (
            self.discount_type == DiscountType.PERCENTAGE
            and self.discount_value is not None
            and self.discount_value > 100
        ):
            raise ValueError("discount_value must be between 0 and 100 for percentage discounts")
        return self


class InvoiceUpdate(BaseModel):
    """
    Patch for an invoice. All fields optional.

    A field left out means "leave unchanged"; a field explicitly set to None
    means "clear it". Use model_dump(exclude_unset=True) to tell them apart.
    """

    due_date: UtcDatetime | None = None
    items: list[InvoiceItemCreate] | None = Field(None, min_length=1)
    notes: str | None = Field(None, max_length=2000)
    internal_notes: str | None = Field(None, max_length=2000)
    terms: str | None = Field(None, max_length=2000)
    terms_conditions: str | None = Field(None, max_length=5000)
    discount_type: DiscountType | None = None
    discount_value: Decimal | None = Field(None, ge=0)
    tax_rate: Decimal | None = Field(None, ge=0, le=100)


class Invoice(BaseModel):
    """Full invoice entity as stored, optionally with items and payment history."""

    id: UUID
    company_id: UUID
    branch_id: UUID
    client_id: UUID
    appointment_id: UUID | None
    invoice_number: str
    invoice_date: datetime
    due_date: datetime
    currency: str
    subtotal: Decimal
    tax_rate: Decimal
    tax_amount: Decimal
    discount_type: DiscountType
    discount_value: Decimal | None
    discount_amount: Decimal
    total: Decimal
    paid_amount: Decimal
    balance_amount: Decimal
    status: InvoiceStatus
    payment_status: PaymentStatus
    notes: str | None
    internal_notes: str | None
    terms: str | None
    terms_conditions: str | None
    sent_at: datetime | None
    paid_at: datetime | None
    cancelled_at: datetime | None
    created_by: UUID | None
    created_at: datetime
    updated_at: datetime
    items: list[InvoiceItem] = Field(default_factory=list)
    payments: list[Payment] = Field(default_factory=list)

    model_config = {"from_attributes": True}

    @property
    def is_terminal(self) -> bool:
        """Paid and Cancelled invoices accept no further invoice-level mutations."""
        return self.status in (InvoiceStatus.PAID, InvoiceStatus.CANCELLED)

    @property
    def lifecycle_status(self) -> InvoiceStatus:
        """Status the invoice falls back to when no payment activity dictates one."""
        return InvoiceStatus.SENT if self.sent_at is not None else InvoiceStatus.DRAFT


class InvoiceFilters(BaseModel):
    """Query filters for invoice listings. Unset fields don't filter."""

    branch_id: UUID | None = None
    client_id: UUID | None = None
    status: InvoiceStatus | None = None
    payment_statuses: list[PaymentStatus] | None = None
    exclude_statuses: list[InvoiceStatus] | None = None
    start_date: UtcDatetime | None = None
    end_date: UtcDatetime | None = None
    due_before: UtcDatetime | None = None
    search: str | None = Field(None, max_length=100)
    order_by_due: bool = False  # Oldest due first instead of newest created first
