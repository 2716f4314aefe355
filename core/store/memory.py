"""
In-process LedgerStore.

Used for tests and local runs without PostgreSQL. Transactions are fully
serialized by one re-entrant lock and rolled back by restoring a deep
snapshot, so it honours the same atomicity and uniqueness guarantees as the
database-backed store.
"""

import copy
import logging
import threading
from contextlib import contextmanager
from typing import Any, Iterator
from uuid import UUID

from core.errors import DuplicateInvoiceNumberError
from core.models import InvoiceFilters, PaymentFilters
from core.store.base import LedgerStore, LedgerTransaction, Row

logger = logging.getLogger(__name__)


def _key(value: Any) -> str:
    """Normalize UUID/str ids to one comparable form."""
    return str(value)


def _value(value: Any) -> Any:
    """Enum members compare by their stored value."""
    return getattr(value, "value", value)


class _Tables:
    def __init__(self):
        self.invoices: dict[str, Row] = {}
        self.items: dict[str, list[Row]] = {}
        self.payments: dict[str, Row] = {}
        self.numbering: dict[str, Row] = {}
        self.audit_log: list[Row] = []


class InMemoryLedgerStore(LedgerStore):
    """
    Dict-backed store.

    Usage:
        store = InMemoryLedgerStore()
        with store.transaction() as tx:
            tx.insert_invoice(row)
    """

    def __init__(self):
        self._tables = _Tables()
        self._lock = threading.RLock()
        self._depth = 0

    @contextmanager
    def transaction(self) -> Iterator[LedgerTransaction]:
        with self._lock:
            # Nested blocks join the outer transaction
            if self._depth:
                self._depth += 1
                try:
                    yield _InMemoryTransaction(self)
                finally:
                    self._depth -= 1
                return

            snapshot = copy.deepcopy(self._tables)
            self._depth = 1
            try:
                yield _InMemoryTransaction(self)
            except BaseException:
                self._tables = snapshot
                logger.debug("In-memory transaction rolled back")
                raise
            finally:
                self._depth = 0


class _InMemoryTransaction(LedgerTransaction):

    def __init__(self, store: InMemoryLedgerStore):
        self._store = store

    @property
    def _t(self) -> _Tables:
        return self._store._tables

    # ------------------------------------------------------------------ invoices

    def get_invoice(self, company_id, invoice_id, for_update=False):
        row = self._t.invoices.get(_key(invoice_id))
        if row is None or _key(row["company_id"]) != _key(company_id):
            return None
        return copy.deepcopy(row)

    def insert_invoice(self, row):
        company = _key(row["company_id"])
        for existing in self._t.invoices.values():
            if _key(existing["company_id"]) == company and existing["invoice_number"] == row["invoice_number"]:
                raise DuplicateInvoiceNumberError(row["company_id"], row["invoice_number"])

        stored = {k: _value(v) for k, v in row.items()}
        self._t.invoices[_key(row["id"])] = stored
        self._t.items.setdefault(_key(row["id"]), [])
        return copy.deepcopy(stored)

    def update_invoice(self, company_id, invoice_id, fields):
        row = self._t.invoices.get(_key(invoice_id))
        if row is None or _key(row["company_id"]) != _key(company_id):
            raise LookupError(f"Invoice {invoice_id} not found")
        row.update({k: _value(v) for k, v in fields.items()})
        return copy.deepcopy(row)

    def delete_invoice(self, company_id, invoice_id):
        row = self._t.invoices.get(_key(invoice_id))
        if row is None or _key(row["company_id"]) != _key(company_id):
            return
        del self._t.invoices[_key(invoice_id)]
        self._t.items.pop(_key(invoice_id), None)
        for payment_id in [
            pid for pid, p in self._t.payments.items() if _key(p["invoice_id"]) == _key(invoice_id)
        ]:
            del self._t.payments[payment_id]

    def find_invoices(self, company_id, filters: InvoiceFilters, offset=0, limit=None):
        matches = [
            row for row in self._t.invoices.values()
            if _key(row["company_id"]) == _key(company_id) and _invoice_matches(row, filters)
        ]

        if filters.order_by_due:
            matches.sort(key=lambda r: r["due_date"])
        else:
            # Dicts keep insertion order, newest last
            matches.reverse()

        total = len(matches)
        page = matches[offset:] if limit is None else matches[offset:offset + limit]
        return copy.deepcopy(page), total

    # --------------------------------------------------------------------- items

    def list_items(self, invoice_id):
        rows = self._t.items.get(_key(invoice_id), [])
        return copy.deepcopy(sorted(rows, key=lambda r: r["order"]))

    def replace_items(self, invoice_id, rows):
        self._t.items[_key(invoice_id)] = [{k: _value(v) for k, v in r.items()} for r in rows]
        return self.list_items(invoice_id)

    # ----------------------------------------------------------------- numbering

    def lock_numbering(self, company_id):
        row = self._t.numbering.setdefault(
            _key(company_id), {"prefix": None, "padding": None, "last_sequence": 0}
        )
        return copy.deepcopy(row)

    def save_numbering(self, company_id, fields):
        row = self._t.numbering.setdefault(
            _key(company_id), {"prefix": None, "padding": None, "last_sequence": 0}
        )
        row.update(fields)
        return copy.deepcopy(row)

    def latest_invoice_number(self, company_id):
        latest = None
        for row in self._t.invoices.values():
            if _key(row["company_id"]) == _key(company_id):
                latest = row["invoice_number"]
        return latest

    def invoice_number_exists(self, company_id, invoice_number):
        return any(
            _key(row["company_id"]) == _key(company_id) and row["invoice_number"] == invoice_number
            for row in self._t.invoices.values()
        )

    # ------------------------------------------------------------------ payments

    def get_payment(self, company_id, payment_id, for_update=False):
        row = self._t.payments.get(_key(payment_id))
        if row is None or _key(row["company_id"]) != _key(company_id):
            return None
        return copy.deepcopy(row)

    def insert_payment(self, row):
        stored = {k: _value(v) for k, v in row.items()}
        self._t.payments[_key(row["id"])] = stored
        return copy.deepcopy(stored)

    def update_payment(self, company_id, payment_id, fields):
        row = self._t.payments.get(_key(payment_id))
        if row is None or _key(row["company_id"]) != _key(company_id):
            raise LookupError(f"Payment {payment_id} not found")
        row.update({k: _value(v) for k, v in fields.items()})
        return copy.deepcopy(row)

    def delete_payment(self, company_id, payment_id):
        row = self._t.payments.get(_key(payment_id))
        if row is not None and _key(row["company_id"]) == _key(company_id):
            del self._t.payments[_key(payment_id)]

    def list_invoice_payments(self, company_id, invoice_id):
        rows = [
            row for row in self._t.payments.values()
            if _key(row["company_id"]) == _key(company_id) and _key(row["invoice_id"]) == _key(invoice_id)
        ]
        rows.reverse()
        return copy.deepcopy(rows)

    def find_payments(self, company_id, filters: PaymentFilters, offset=0, limit=None):
        matches = [
            row for row in self._t.payments.values()
            if _key(row["company_id"]) == _key(company_id) and _payment_matches(row, filters)
        ]
        matches.reverse()

        total = len(matches)
        page = matches[offset:] if limit is None else matches[offset:offset + limit]
        return copy.deepcopy(page), total

    # --------------------------------------------------------------------- audit

    def insert_audit_entry(self, row):
        self._t.audit_log.append({k: _value(v) for k, v in row.items()})

    def audit_entries(self, entity_type, entity_id):
        rows = [
            row for row in self._t.audit_log
            if row["entity_type"] == entity_type and _key(row["entity_id"]) == _key(entity_id)
        ]
        rows.reverse()
        return copy.deepcopy(rows)


def _contains(haystack: str | None, needle: str) -> bool:
    return haystack is not None and needle.lower() in haystack.lower()


def _invoice_matches(row: Row, f: InvoiceFilters) -> bool:
    if f.branch_id is not None and _key(row["branch_id"]) != _key(f.branch_id):
        return False
    if f.client_id is not None and _key(row["client_id"]) != _key(f.client_id):
        return False
    if f.status is not None and row["status"] != f.status.value:
        return False
    if f.payment_statuses is not None and row["payment_status"] not in {s.value for s in f.payment_statuses}:
        return False
    if f.exclude_statuses and row["status"] in {s.value for s in f.exclude_statuses}:
        return False
    if f.start_date is not None and row["invoice_date"] < f.start_date:
        return False
    if f.end_date is not None and row["invoice_date"] > f.end_date:
        return False
    if f.due_before is not None and not row["due_date"] < f.due_before:
        return False
    if f.search and not _contains(row["invoice_number"], f.search):
        return False
    return True


def _payment_matches(row: Row, f: PaymentFilters) -> bool:
    if f.invoice_id is not None and _key(row["invoice_id"]) != _key(f.invoice_id):
        return False
    if f.client_id is not None and _key(row["client_id"]) != _key(f.client_id):
        return False
    if f.statuses is not None and row["status"] not in {s.value for s in f.statuses}:
        return False
    if f.payment_method is not None and row["payment_method"] != f.payment_method.value:
        return False
    if f.start_date is not None and row["payment_date"] < f.start_date:
        return False
    if f.end_date is not None and row["payment_date"] > f.end_date:
        return False
    if f.search and not any(
        _contains(row.get(column), f.search) for column in ("reference", "transaction_id", "notes")
    ):
        return False
    return True
