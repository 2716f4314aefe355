"""
PostgreSQL-backed LedgerStore.

One LedgerTransaction maps to one database transaction on one pooled
connection. Row locks (`SELECT ... FOR UPDATE`) serialize concurrent
mutations of the same invoice and of the same company's number sequence.
"""

import logging
from contextlib import contextmanager
from typing import Any, Iterator
from uuid import UUID

import psycopg2
import psycopg2.errors
import psycopg2.extras
import psycopg2.pool

from clients.postgres_client import PostgresClient, TransactionCursor
from core.errors import DuplicateInvoiceNumberError, StorageUnavailableError
from core.models import InvoiceFilters, PaymentFilters
from core.store.base import LedgerStore, LedgerTransaction, Row

logger = logging.getLogger(__name__)

_INVOICE_COLUMNS = (
    "id", "company_id", "branch_id", "client_id", "appointment_id",
    "invoice_number", "invoice_date", "due_date", "currency",
    "subtotal", "tax_rate", "tax_amount", "discount_type", "discount_value",
    "discount_amount", "total", "paid_amount", "balance_amount",
    "status", "payment_status", "notes", "internal_notes", "terms", "terms_conditions",
    "sent_at", "paid_at", "cancelled_at", "created_by", "created_at", "updated_at",
)

_ITEM_COLUMNS = (
    "id", "invoice_id", "type", "item_id", "description",
    "quantity", "unit_price", "discount", "tax_rate", "total", "order",
)

_PAYMENT_COLUMNS = (
    "id", "company_id", "invoice_id", "client_id", "amount", "payment_method",
    "status", "reference", "transaction_id", "payment_gateway", "notes",
    "payment_date", "processed_at", "refund_of_id", "created_by", "created_at", "updated_at",
)

_AUDIT_COLUMNS = (
    "id", "company_id", "actor_id", "entity_type", "entity_id", "action", "changes", "created_at",
)

# Columns services may SET on an existing row
_INVOICE_UPDATABLE = set(_INVOICE_COLUMNS) - {"id", "company_id", "invoice_number", "created_at", "created_by"}
_PAYMENT_UPDATABLE = set(_PAYMENT_COLUMNS) - {"id", "company_id", "invoice_id", "created_at", "created_by"}


def _quote(column: str) -> str:
    return f'"{column}"' if column == "order" else column


def _sql_value(value: Any) -> Any:
    """Enum members are stored by value."""
    return getattr(value, "value", value)


def _insert_sql(table: str, columns: tuple[str, ...]) -> str:
    names = ", ".join(_quote(c) for c in columns)
    placeholders = ", ".join(["%s"] * len(columns))
    return f"INSERT INTO {table} ({names}) VALUES ({placeholders}) RETURNING *"


def _insert_params(row: Row, columns: tuple[str, ...]) -> tuple:
    return tuple(_sql_value(row.get(c)) for c in columns)


class PostgresLedgerStore(LedgerStore):
    """
    LedgerStore over a PostgresClient.

    Usage:
        store = PostgresLedgerStore(PostgresClient(get_database_url()))
        with store.transaction() as tx:
            invoice = tx.get_invoice(company_id, invoice_id, for_update=True)
    """

    def __init__(self, postgres: PostgresClient):
        self.postgres = postgres

    @contextmanager
    def transaction(self) -> Iterator[LedgerTransaction]:
        try:
            with self.postgres.transaction() as cursor:
                yield _PostgresTransaction(cursor)
        except (psycopg2.OperationalError, psycopg2.InterfaceError, psycopg2.pool.PoolError) as e:
            logger.error(f"Ledger store unavailable: {e}")
            raise StorageUnavailableError(f"Ledger store unavailable: {e}") from e

    def close(self) -> None:
        self.postgres.close()


class _PostgresTransaction(LedgerTransaction):

    def __init__(self, cursor: TransactionCursor):
        self.db = cursor

    # ------------------------------------------------------------------ invoices

    def get_invoice(self, company_id, invoice_id, for_update=False):
        lock = " FOR UPDATE" if for_update else ""
        return self.db.execute_single(
            f"SELECT * FROM invoices WHERE id = %s AND company_id = %s{lock}",
            (invoice_id, company_id)
        )

    def insert_invoice(self, row):
        self.db.execute("SAVEPOINT insert_invoice")
        try:
            created = self.db.execute(_insert_sql("invoices", _INVOICE_COLUMNS), _insert_params(row, _INVOICE_COLUMNS))[0]
        except psycopg2.errors.UniqueViolation as e:
            self.db.execute("ROLLBACK TO SAVEPOINT insert_invoice")
            raise DuplicateInvoiceNumberError(row["company_id"], row["invoice_number"]) from e
        self.db.execute("RELEASE SAVEPOINT insert_invoice")
        return created

    def update_invoice(self, company_id, invoice_id, fields):
        return self._update("invoices", _INVOICE_UPDATABLE, company_id, invoice_id, fields)

    def delete_invoice(self, company_id, invoice_id):
        # Items and payments go with it (ON DELETE CASCADE)
        self.db.execute(
            "DELETE FROM invoices WHERE id = %s AND company_id = %s",
            (invoice_id, company_id)
        )

    def find_invoices(self, company_id, filters: InvoiceFilters, offset=0, limit=None):
        where = ["company_id = %s"]
        params: list[Any] = [company_id]

        if filters.branch_id is not None:
            where.append("branch_id = %s")
            params.append(filters.branch_id)
        if filters.client_id is not None:
            where.append("client_id = %s")
            params.append(filters.client_id)
        if filters.status is not None:
            where.append("status = %s")
            params.append(filters.status.value)
        if filters.payment_statuses is not None:
            where.append("payment_status = ANY(%s)")
            params.append([s.value for s in filters.payment_statuses])
        if filters.exclude_statuses:
            where.append("status <> ALL(%s)")
            params.append([s.value for s in filters.exclude_statuses])
        if filters.start_date is not None:
            where.append("invoice_date >= %s")
            params.append(filters.start_date)
        if filters.end_date is not None:
            where.append("invoice_date <= %s")
            params.append(filters.end_date)
        if filters.due_before is not None:
            where.append("due_date < %s")
            params.append(filters.due_before)
        if filters.search:
            where.append("invoice_number ILIKE %s")
            params.append(f"%{filters.search}%")

        clause = " AND ".join(where)
        order = "due_date ASC" if filters.order_by_due else "created_at DESC, invoice_number DESC"

        total = self.db.execute_scalar(f"SELECT COUNT(*) FROM invoices WHERE {clause}", tuple(params))
        page_sql = f"SELECT * FROM invoices WHERE {clause} ORDER BY {order} OFFSET %s"
        page_params = params + [offset]
        if limit is not None:
            page_sql += " LIMIT %s"
            page_params.append(limit)

        return self.db.execute(page_sql, tuple(page_params)), int(total or 0)

    # --------------------------------------------------------------------- items

    def list_items(self, invoice_id):
        return self.db.execute(
            'SELECT * FROM invoice_items WHERE invoice_id = %s ORDER BY "order" ASC',
            (invoice_id,)
        )

    def replace_items(self, invoice_id, rows):
        self.db.execute("DELETE FROM invoice_items WHERE invoice_id = %s", (invoice_id,))
        for row in rows:
            self.db.execute(_insert_sql("invoice_items", _ITEM_COLUMNS), _insert_params(row, _ITEM_COLUMNS))
        return self.list_items(invoice_id)

    # ----------------------------------------------------------------- numbering

    def lock_numbering(self, company_id):
        self.db.execute(
            """
            INSERT INTO company_settings (company_id, last_sequence)
            VALUES (%s, 0)
            ON CONFLICT (company_id) DO NOTHING
            """,
            (company_id,)
        )
        row = self.db.execute_single(
            """
            SELECT invoice_prefix AS prefix, invoice_padding AS padding, last_sequence
            FROM company_settings
            WHERE company_id = %s
            FOR UPDATE
            """,
            (company_id,)
        )
        return row

    def save_numbering(self, company_id, fields):
        columns = {"prefix": "invoice_prefix", "padding": "invoice_padding", "last_sequence": "last_sequence"}
        set_parts = []
        params: list[Any] = []
        for key, value in fields.items():
            set_parts.append(f"{columns[key]} = %s")
            params.append(value)
        params.append(company_id)

        return self.db.execute_single(
            f"""
            UPDATE company_settings
            SET {', '.join(set_parts)}
            WHERE company_id = %s
            RETURNING invoice_prefix AS prefix, invoice_padding AS padding, last_sequence
            """,
            tuple(params)
        )

    def latest_invoice_number(self, company_id):
        return self.db.execute_scalar(
            """
            SELECT invoice_number FROM invoices
            WHERE company_id = %s
            ORDER BY created_at DESC, invoice_number DESC
            LIMIT 1
            """,
            (company_id,)
        )

    def invoice_number_exists(self, company_id, invoice_number):
        return self.db.execute_single(
            "SELECT 1 AS found FROM invoices WHERE company_id = %s AND invoice_number = %s",
            (company_id, invoice_number)
        ) is not None

    # ------------------------------------------------------------------ payments

    def get_payment(self, company_id, payment_id, for_update=False):
        lock = " FOR UPDATE" if for_update else ""
        return self.db.execute_single(
            f"SELECT * FROM payments WHERE id = %s AND company_id = %s{lock}",
            (payment_id, company_id)
        )

    def insert_payment(self, row):
        return self.db.execute(_insert_sql("payments", _PAYMENT_COLUMNS), _insert_params(row, _PAYMENT_COLUMNS))[0]

    def update_payment(self, company_id, payment_id, fields):
        return self._update("payments", _PAYMENT_UPDATABLE, company_id, payment_id, fields)

    def delete_payment(self, company_id, payment_id):
        self.db.execute(
            "DELETE FROM payments WHERE id = %s AND company_id = %s",
            (payment_id, company_id)
        )

    def list_invoice_payments(self, company_id, invoice_id):
        return self.db.execute(
            """
            SELECT * FROM payments
            WHERE invoice_id = %s AND company_id = %s
            ORDER BY created_at DESC
            """,
            (invoice_id, company_id)
        )

    def find_payments(self, company_id, filters: PaymentFilters, offset=0, limit=None):
        where = ["company_id = %s"]
        params: list[Any] = [company_id]

        if filters.invoice_id is not None:
            where.append("invoice_id = %s")
            params.append(filters.invoice_id)
        if filters.client_id is not None:
            where.append("client_id = %s")
            params.append(filters.client_id)
        if filters.statuses is not None:
            where.append("status = ANY(%s)")
            params.append([s.value for s in filters.statuses])
        if filters.payment_method is not None:
            where.append("payment_method = %s")
            params.append(filters.payment_method.value)
        if filters.start_date is not None:
            where.append("payment_date >= %s")
            params.append(filters.start_date)
        if filters.end_date is not None:
            where.append("payment_date <= %s")
            params.append(filters.end_date)
        if filters.search:
            where.append("(reference ILIKE %s OR transaction_id ILIKE %s OR notes ILIKE %s)")
            params.extend([f"%{filters.search}%"] * 3)

        clause = " AND ".join(where)
        total = self.db.execute_scalar(f"SELECT COUNT(*) FROM payments WHERE {clause}", tuple(params))

        page_sql = f"SELECT * FROM payments WHERE {clause} ORDER BY created_at DESC OFFSET %s"
        page_params = params + [offset]
        if limit is not None:
            page_sql += " LIMIT %s"
            page_params.append(limit)

        return self.db.execute(page_sql, tuple(page_params)), int(total or 0)

    # --------------------------------------------------------------------- audit

    def insert_audit_entry(self, row):
        params = tuple(
            psycopg2.extras.Json(row["changes"]) if c == "changes" else _sql_value(row.get(c))
            for c in _AUDIT_COLUMNS
        )
        self.db.execute(
            f"INSERT INTO audit_log ({', '.join(_AUDIT_COLUMNS)}) "
            f"VALUES ({', '.join(['%s'] * len(_AUDIT_COLUMNS))})",
            params
        )

    def audit_entries(self, entity_type, entity_id):
        return self.db.execute(
            """
            SELECT * FROM audit_log
            WHERE entity_type = %s AND entity_id = %s
            ORDER BY created_at DESC
            """,
            (entity_type, entity_id)
        )

    # ------------------------------------------------------------------- helpers

    def _update(self, table: str, allowed: set[str], company_id: UUID, row_id: UUID, fields: Row) -> Row:
        for field in fields:
            if field not in allowed:
                logger.warning(f"Attempted to update unknown field '{field}' on {table} {row_id}")

        valid = {k: v for k, v in fields.items() if k in allowed}
        if not valid:
            return self.db.execute_single(
                f"SELECT * FROM {table} WHERE id = %s AND company_id = %s",
                (row_id, company_id)
            )

        set_parts = []
        params: list[Any] = []
        for field, value in valid.items():
            set_parts.append(f"{_quote(field)} = %s")
            params.append(_sql_value(value))
        params.extend([row_id, company_id])

        return self.db.execute(
            f"""
            UPDATE {table}
            SET {', '.join(set_parts)}
            WHERE id = %s AND company_id = %s
            RETURNING *
            """,
            tuple(params)
        )[0]
