"""
Company-scoped sequential invoice numbers.

Format: PREFIX-NNNN, e.g. INV-0042. The prefix and padding come from the
company's numbering settings, falling back to LedgerConfig defaults.

Numbers are never reused. Each company keeps a high-water mark
(`last_sequence`) next to its settings, so deleting a draft doesn't free its
number, and the settings row doubles as the lock that serializes concurrent
allocations for one company.
"""

import logging
import re
from uuid import UUID

from core.config import LedgerConfig
from core.errors import DuplicateInvoiceNumberError, LedgerValidationError
from core.store.base import LedgerTransaction

logger = logging.getLogger(__name__)

_TRAILING_DIGITS = re.compile(r"(\d+)$")


def parse_sequence(invoice_number: str | None) -> int:
    """Trailing number of an invoice number, 0 if it has none."""
    if not invoice_number:
        return 0
    match = _TRAILING_DIGITS.search(invoice_number)
    return int(match.group(1)) if match else 0


def format_invoice_number(prefix: str, sequence: int, padding: int) -> str:
    return f"{prefix}-{sequence:0{padding}d}"


class InvoiceNumberAllocator:
    """Allocates the next free invoice number for a company."""

    def __init__(self, config: LedgerConfig | None = None):
        self.config = config or LedgerConfig()

    def allocate(self, tx: LedgerTransaction, company_id: UUID) -> str:
        """
        Reserve the next invoice number inside an open transaction.

        Starts one past the higher of the stored high-water mark and the
        trailing digits of the company's most recent invoice, then bumps
        past any number already taken.

        Raises:
            DuplicateInvoiceNumberError: Every candidate within
                max_number_attempts was already taken
        """
        settings = tx.lock_numbering(company_id)
        prefix = settings.get("prefix") or self.config.invoice_prefix
        padding = settings.get("padding") or self.config.invoice_padding

        latest = tx.latest_invoice_number(company_id)
        sequence = max(int(settings.get("last_sequence") or 0), parse_sequence(latest)) + 1

        for _ in range(self.config.max_number_attempts):
            candidate = format_invoice_number(prefix, sequence, padding)
            if not tx.invoice_number_exists(company_id, candidate):
                tx.save_numbering(company_id, {"last_sequence": sequence})
                return candidate

            logger.warning(
                f"Invoice number {candidate} already taken for company {company_id}, trying next"
            )
            sequence += 1

        raise DuplicateInvoiceNumberError(company_id, candidate)

    def configure(self, tx: LedgerTransaction, company_id: UUID, prefix: str, padding: int) -> dict:
        """Set a company's prefix and padding. Existing numbers are untouched."""
        if not prefix or "-" in prefix:
            raise LedgerValidationError("Invoice prefix must be non-empty and must not contain '-'")
        if not 1 <= padding <= 12:
            raise LedgerValidationError("Invoice padding must be between 1 and 12")

        tx.lock_numbering(company_id)
        return tx.save_numbering(company_id, {"prefix": prefix, "padding": padding})
