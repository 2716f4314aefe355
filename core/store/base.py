"""
Abstract transactional store for the ledger.

Services never talk to a database directly. They open a transaction, read and
write plain row dicts through it, and validate rows into pydantic models
themselves. Everything done through one LedgerTransaction commits together or
not at all.

Row conventions:
- Keys are column names (snake_case), values are Python scalars
  (UUID or str ids, Decimal amounts, aware datetimes, enum values as str).
- Reads return copies; mutating a returned dict never touches the store.
- `for_update=True` locks the row until the transaction ends. Lock invoices
  before their payments so concurrent operations can't deadlock.
"""

from abc import ABC, abstractmethod
from contextlib import AbstractContextManager
from typing import Any
from uuid import UUID

from core.models import InvoiceFilters, PaymentFilters

Row = dict[str, Any]


class LedgerTransaction(ABC):
    """Operations available inside one store transaction."""

    # ------------------------------------------------------------------ invoices

    @abstractmethod
    def get_invoice(self, company_id: UUID, invoice_id: UUID, for_update: bool = False) -> Row | None:
        """Invoice row scoped to the company, or None."""

    @abstractmethod
    def insert_invoice(self, row: Row) -> Row:
        """
        Insert an invoice row.

        Raises:
            DuplicateInvoiceNumberError: (company_id, invoice_number) already taken
        """

    @abstractmethod
    def update_invoice(self, company_id: UUID, invoice_id: UUID, fields: Row) -> Row:
        """Set the given columns and return the updated row."""

    @abstractmethod
    def delete_invoice(self, company_id: UUID, invoice_id: UUID) -> None:
        """Remove the invoice together with its items and payments."""

    @abstractmethod
    def find_invoices(
        self, company_id: UUID, filters: InvoiceFilters, offset: int = 0, limit: int | None = None
    ) -> tuple[list[Row], int]:
        """Matching invoice rows (one page) and the total match count."""

    # --------------------------------------------------------------------- items

    @abstractmethod
    def list_items(self, invoice_id: UUID) -> list[Row]:
        """Items of an invoice in display order."""

    @abstractmethod
    def replace_items(self, invoice_id: UUID, rows: list[Row]) -> list[Row]:
        """Delete every item of the invoice, then insert the given rows."""

    # ----------------------------------------------------------------- numbering

    @abstractmethod
    def lock_numbering(self, company_id: UUID) -> Row:
        """
        Lock the company's numbering row, creating it on first use.

        Returns {"prefix": str | None, "padding": int | None, "last_sequence": int}.
        None prefix/padding means "use ledger defaults".
        """

    @abstractmethod
    def save_numbering(self, company_id: UUID, fields: Row) -> Row:
        """Update the company's numbering row (must already be locked)."""

    @abstractmethod
    def latest_invoice_number(self, company_id: UUID) -> str | None:
        """Number of the company's most recently created invoice."""

    @abstractmethod
    def invoice_number_exists(self, company_id: UUID, invoice_number: str) -> bool:
        ...

    # ------------------------------------------------------------------ payments

    @abstractmethod
    def get_payment(self, company_id: UUID, payment_id: UUID, for_update: bool = False) -> Row | None:
        """Payment row scoped to the company, or None."""

    @abstractmethod
    def insert_payment(self, row: Row) -> Row:
        ...

    @abstractmethod
    def update_payment(self, company_id: UUID, payment_id: UUID, fields: Row) -> Row:
        ...

    @abstractmethod
    def delete_payment(self, company_id: UUID, payment_id: UUID) -> None:
        ...

    @abstractmethod
    def list_invoice_payments(self, company_id: UUID, invoice_id: UUID) -> list[Row]:
        """All payment rows of an invoice, newest first."""

    @abstractmethod
    def find_payments(
        self, company_id: UUID, filters: PaymentFilters, offset: int = 0, limit: int | None = None
    ) -> tuple[list[Row], int]:
        """Matching payment rows (one page, newest first) and the total match count."""

    # --------------------------------------------------------------------- audit

    @abstractmethod
    def insert_audit_entry(self, row: Row) -> None:
        ...

    @abstractmethod
    def audit_entries(self, entity_type: str, entity_id: UUID) -> list[Row]:
        """Audit entries for an entity, newest first."""


class LedgerStore(ABC):
    """A store that hands out transactions."""

    @abstractmethod
    def transaction(self) -> AbstractContextManager[LedgerTransaction]:
        """
        Open a transaction.

        Commits when the block exits normally, rolls back on any exception.

        Raises:
            StorageUnavailableError: Store unreachable or failed mid-transaction
        """

    def close(self) -> None:
        """Release store resources."""
