"""Tests for PostgresClient - PostgreSQL with RLS tenant isolation."""

import pytest
from uuid import uuid4

from builders import COMPANY_B_ID, COMPANY_ID
from clients.postgres_client import PostgresClient, _convert_params
from utils.tenant_context import tenant_context


class TestConvertParams:
    """UUIDs are passed to psycopg2 as strings, at any nesting depth."""

    def test_none(self):
        assert _convert_params(None) is None

    def test_nested(self):
        value = uuid4()
        converted = _convert_params((value, [value], {"k": value}, 5))
        assert converted == (str(value), [str(value)], {"k": str(value)}, 5)


class TestPostgresClientInit:
    """Connection pool initialization."""

    def test_creates_pool_with_valid_url(self, db):
        assert db.execute_scalar("SELECT 1") == 1

    def test_pool_shared_per_url(self, db, db_url):
        other = PostgresClient(db_url)
        assert other._connection_pools[db_url] is db._connection_pools[db_url]


class TestTenantSetting:
    """app.current_company_id follows the tenant contextvar."""

    def test_set_from_context(self, db):
        with tenant_context(COMPANY_ID):
            result = db.execute_scalar("SELECT current_setting('app.current_company_id', true)")
        assert result == str(COMPANY_ID)

    def test_cleared_without_context(self, db):
        result = db.execute_scalar("SELECT current_setting('app.current_company_id', true)")
        assert result == ""

    def test_pooled_connection_does_not_leak_tenant(self, db):
        with tenant_context(COMPANY_B_ID):
            db.execute_scalar("SELECT 1")
        assert db.execute_scalar("SELECT current_setting('app.current_company_id', true)") == ""


class TestExecuteMethods:
    """Query execution methods."""

    def test_execute_returns_list_of_dicts(self, db):
        assert db.execute("SELECT 1 as num, 'hello' as word") == [{"num": 1, "word": "hello"}]

    def test_execute_empty_returns_empty_list(self, db):
        assert db.execute("SELECT 1 WHERE false") == []

    def test_execute_single(self, db):
        assert db.execute_single("SELECT 42 as answer") == {"answer": 42}
        assert db.execute_single("SELECT 1 WHERE false") is None

    def test_execute_scalar(self, db):
        assert db.execute_scalar("SELECT 'test'") == "test"
        assert db.execute_scalar("SELECT 1 WHERE false") is None


class TestTransaction:
    """All-or-nothing multi-statement transactions."""

    def test_commits_on_success(self, db):
        entity_id = uuid4()
        with db.transaction() as tx:
            tx.execute(
                "INSERT INTO audit_log (id, company_id, entity_type, entity_id, action, changes, created_at) "
                "VALUES (%s, %s, 'invoice', %s, 'create', '{}', now())",
                (uuid4(), COMPANY_ID, entity_id),
            )

        assert db.execute_scalar("SELECT count(*) FROM audit_log WHERE entity_id = %s", (entity_id,)) == 1

    def test_rolls_back_on_error(self, db):
        entity_id = uuid4()
        with pytest.raises(RuntimeError):
            with db.transaction() as tx:
                tx.execute(
                    "INSERT INTO audit_log (id, company_id, entity_type, entity_id, action, changes, created_at) "
                    "VALUES (%s, %s, 'invoice', %s, 'create', '{}', now())",
                    (uuid4(), COMPANY_ID, entity_id),
                )
                raise RuntimeError("abort")

        assert db.execute_scalar("SELECT count(*) FROM audit_log WHERE entity_id = %s", (entity_id,)) == 0
