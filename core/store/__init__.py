"""Transactional storage for invoices, items, payments and the audit trail."""

from core.store.base import LedgerStore, LedgerTransaction, Row
from core.store.memory import InMemoryLedgerStore
from core.store.postgres import PostgresLedgerStore
