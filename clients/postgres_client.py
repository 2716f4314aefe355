"""
PostgreSQL client with connection pooling and RLS tenant isolation.

Uses psycopg2 with ThreadedConnectionPool. Tenant isolation is enforced twice:
every ledger query filters on company_id, and PostgreSQL Row Level Security
reads app.current_company_id, which is set on each connection from the tenant
contextvar.

Security: No tenant context = see nothing (RLS blocks all rows).
"""

import logging
import threading
from contextlib import contextmanager
from typing import Any, Dict, Iterator, List, Tuple
from uuid import UUID

import psycopg2
import psycopg2.extras
import psycopg2.pool

from utils.tenant_context import _current_company_id

logger = logging.getLogger(__name__)


def _convert_params(params: Tuple | Dict | None) -> Tuple | Dict | None:
    """Convert UUID objects to strings."""
    if params is None:
        return None

    def convert(value: Any) -> Any:
        if isinstance(value, UUID):
            return str(value)
        if isinstance(value, list):
            return [convert(v) for v in value]
        if isinstance(value, tuple):
            return tuple(convert(v) for v in value)
        if isinstance(value, dict):
            return {k: convert(v) for k, v in value.items()}
        return value

    return convert(params)


class TransactionCursor:
    """
    Query helpers bound to one open transaction.

    Same call shapes as PostgresClient, but nothing is committed until the
    enclosing `PostgresClient.transaction()` block exits.
    """

    def __init__(self, cursor):
        self._cur = cursor

    def execute(self, query: str, params: Tuple | Dict | None = None) -> List[Dict[str, Any]]:
        """Execute query, return list of row dicts. Empty list if no results."""
        self._cur.execute(query, _convert_params(params))
        if self._cur.description:
            return [dict(row) for row in self._cur.fetchall()]
        return []

    def execute_single(self, query: str, params: Tuple | Dict | None = None) -> Dict[str, Any] | None:
        """Execute query, return first row or None."""
        results = self.execute(query, params)
        return results[0] if results else None

    def execute_scalar(self, query: str, params: Tuple | Dict | None = None) -> Any:
        """Execute query, return first value of first row or None."""
        row = self.execute_single(query, params)
        return next(iter(row.values())) if row else None


class PostgresClient:
    """
    PostgreSQL client with automatic RLS context from contextvar.

    Usage:
        db = PostgresClient(database_url)

        # Single statement, autocommitted
        rows = db.execute("SELECT * FROM invoices WHERE company_id = %s", (company_id,))

        # Several statements, all or nothing
        with db.transaction() as tx:
            tx.execute("SELECT * FROM invoices WHERE id = %s FOR UPDATE", (invoice_id,))
            tx.execute("UPDATE invoices SET ... WHERE id = %s", (...))
    """

    # Class-level connection pools shared across instances
    _connection_pools: Dict[str, psycopg2.pool.ThreadedConnectionPool] = {}
    _pools_lock = threading.RLock()

    def __init__(self, database_url: str, minconn: int = 2, maxconn: int = 20):
        self._database_url = database_url
        self._minconn = minconn
        self._maxconn = maxconn
        self._ensure_connection_pool()

    def _ensure_connection_pool(self) -> None:
        """Create connection pool if it doesn't exist."""
        with self._pools_lock:
            if self._database_url not in self._connection_pools:
                pool = psycopg2.pool.ThreadedConnectionPool(
                    minconn=self._minconn,
                    maxconn=self._maxconn,
                    dsn=self._database_url,
                    connect_timeout=30,
                )
                self._connection_pools[self._database_url] = pool
                logger.info("Connection pool created")

    @contextmanager
    def get_connection(self):
        """Get connection with RLS context from contextvar."""
        if self._database_url not in self._connection_pools:
            self._ensure_connection_pool()

        pool = self._connection_pools[self._database_url]
        conn = None

        try:
            conn = pool.getconn()
            if conn is None:
                raise psycopg2.pool.PoolError("Could not get connection from pool")

            company_id = _current_company_id.get()

            with conn.cursor() as cur:
                if company_id is not None:
                    cur.execute("SET app.current_company_id = %s", (str(company_id),))
                else:
                    # RLS policies cast to uuid; empty string matches no rows
                    cur.execute("SET app.current_company_id = ''")
            conn.commit()

            yield conn

        finally:
            if conn:
                pool.putconn(conn)

    @contextmanager
    def transaction(self) -> Iterator[TransactionCursor]:
        """
        Run several statements on one connection as a single transaction.

        Commits when the block exits normally; any exception rolls back and
        propagates.
        """
        with self.get_connection() as conn:
            try:
                with conn.cursor(cursor_factory=psycopg2.extras.RealDictCursor) as cur:
                    yield TransactionCursor(cur)
                conn.commit()
            except BaseException:
                conn.rollback()
                raise

    def execute(self, query: str, params: Tuple | Dict | None = None) -> List[Dict[str, Any]]:
        """Execute query, return list of row dicts. Empty list if no results."""
        with self.transaction() as tx:
            return tx.execute(query, params)

    def execute_single(self, query: str, params: Tuple | Dict | None = None) -> Dict[str, Any] | None:
        """Execute query, return first row or None."""
        results = self.execute(query, params)
        return results[0] if results else None

    def execute_scalar(self, query: str, params: Tuple | Dict | None = None) -> Any:
        """Execute query, return first value of first row or None."""
        with self.transaction() as tx:
            return tx.execute_scalar(query, params)

    def close(self) -> None:
        """Close connection pool."""
        with self._pools_lock:
            if self._database_url in self._connection_pools:
                self._connection_pools[self._database_url].closeall()
                del self._connection_pools[self._database_url]

    @classmethod
    def close_all_pools(cls) -> None:
        """Close all connection pools."""
        with cls._pools_lock:
            for pool in cls._connection_pools.values():
                pool.closeall()
            cls._connection_pools.clear()
