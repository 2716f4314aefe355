"""
Invoice totals calculation.

Pure and deterministic: same items and settings in, same figures out.

Order of operations:
    1. Per item: line = unit_price * quantity, minus the item's fixed
       discount, plus item tax on the discounted line.
    2. subtotal = sum of item totals (already tax-inclusive).
    3. Invoice discount on the subtotal (fixed or percentage).
    4. Invoice tax on the discounted subtotal.
    5. total = discounted subtotal + invoice tax.

Item tax and invoice tax compound when both are set. That is the ledger's
established arithmetic and invoices already issued depend on it.
"""

from dataclasses import dataclass
from decimal import Decimal
from typing import Sequence

from core.errors import LedgerValidationError
from core.models import DiscountType, InvoiceItemCreate
from core.money import ZERO, multiply, percent_of, round_money, to_decimal


@dataclass(frozen=True)
class CalculatedItem:
    """A caller-supplied line item paired with its computed total and position."""

    item: InvoiceItemCreate
    total: Decimal
    order: int


@dataclass(frozen=True)
class InvoiceTotals:
    subtotal: Decimal
    discount_amount: Decimal
    tax_amount: Decimal
    total: Decimal
    items: tuple[CalculatedItem, ...]


def calculate_item_total(item: InvoiceItemCreate) -> Decimal:
    """Total for a single line, rounded to the minor unit."""
    line_subtotal = multiply(item.unit_price, item.quantity)
    item_discount = to_decimal(item.discount)
    if item_discount > line_subtotal:
        raise LedgerValidationError(
            f"Item discount ({item_discount}) exceeds line amount ({line_subtotal}) "
            f"for '{item.description}'"
        )

    after_discount = line_subtotal - item_discount
    item_tax = percent_of(after_discount, item.tax_rate)
    return round_money(after_discount + item_tax)


def calculate_discount(
    subtotal: Decimal,
    discount_type: DiscountType | None,
    discount_value: Decimal | None,
) -> Decimal:
    """Invoice-level discount amount for a subtotal."""
    if discount_type is None or discount_type == DiscountType.NONE or not discount_value:
        return ZERO

    if discount_type == DiscountType.PERCENTAGE:
        if discount_value > 100:
            raise LedgerValidationError("Percentage discount cannot exceed 100")
        return round_money(percent_of(subtotal, discount_value))

    # Fixed
    return round_money(discount_value)


def calculate_totals(
    items: Sequence[InvoiceItemCreate],
    discount_type: DiscountType | None = None,
    discount_value: Decimal | None = None,
    tax_rate: Decimal | None = None,
) -> InvoiceTotals:
    """
    Compute subtotal, discount, tax and total for a set of line items.

    Args:
        items: Line items in display order
        discount_type: Invoice-level discount kind (None behaves as NONE)
        discount_value: Fixed amount, or percentage 0-100
        tax_rate: Invoice-level tax percentage 0-100

    Returns:
        InvoiceTotals with every figure rounded to 2 places. subtotal is the
        exact sum of the rounded item totals and total equals
        subtotal - discount_amount + tax_amount exactly.

    Raises:
        LedgerValidationError: No items, or a discount larger than what it discounts
    """
    if not items:
        raise LedgerValidationError("Invoice must have at least one item")

    calculated = tuple(
        CalculatedItem(item=item, total=calculate_item_total(item), order=index)
        for index, item in enumerate(items)
    )

    subtotal = sum((c.total for c in calculated), ZERO)
    discount_amount = calculate_discount(subtotal, discount_type, discount_value)
    if discount_amount > subtotal:
        raise LedgerValidationError(
            f"Discount ({discount_amount}) exceeds invoice subtotal ({subtotal})"
        )

    after_discount = subtotal - discount_amount
    tax_amount = round_money(percent_of(after_discount, tax_rate)) if tax_rate else ZERO
    total = after_discount + tax_amount

    return InvoiceTotals(
        subtotal=round_money(subtotal),
        discount_amount=round_money(discount_amount),
        tax_amount=round_money(tax_amount),
        total=round_money(total),
        items=calculated,
    )
