"""Tests for the ledger audit trail."""

import pytest
from datetime import datetime, timezone
from decimal import Decimal
from uuid import uuid4

from builders import ACTOR_ID, payment_data
from core.audit import AuditAction, compute_changes
from utils.tenant_context import tenant_context


class TestAuditAction:
    """Tests for AuditAction enum."""

    def test_has_create_update_delete(self):
        assert AuditAction.CREATE.value == "create"
        assert AuditAction.UPDATE.value == "update"
        assert AuditAction.DELETE.value == "delete"


class TestComputeChanges:
    """Tests for compute_changes utility function."""

    def test_detects_changed_fields(self):
        """Different values for same key detected."""
        old = {"status": "sent", "total": "100.00"}
        new = {"status": "partial", "total": "100.00"}

        changes = compute_changes(old, new)

        assert changes == {"status": {"old": "sent", "new": "partial"}}

    def test_detects_added_and_removed_fields(self):
        changes = compute_changes({"notes": "a"}, {"terms": "b"})

        assert changes["notes"] == {"old": "a", "new": None}
        assert changes["terms"] == {"old": None, "new": "b"}

    def test_excludes_updated_at_by_default(self):
        old = {"status": "sent", "updated_at": datetime(2026, 1, 1, tzinfo=timezone.utc)}
        new = {"status": "sent", "updated_at": datetime(2026, 1, 2, tzinfo=timezone.utc)}

        assert compute_changes(old, new) == {}

    def test_custom_exclude_fields(self):
        old = {"status": "sent", "paid_at": None}
        new = {"status": "paid", "paid_at": "2026-01-01"}

        changes = compute_changes(old, new, exclude_fields={"updated_at", "paid_at"})

        assert list(changes) == ["status"]


class TestAuditLogger:
    """Tests for AuditLogger against the in-memory store."""

    def _log(self, store, audit, entity_id, company_id, **kwargs):
        with store.transaction() as tx:
            audit.log_change(
                tx,
                company_id=company_id,
                entity_type="invoice",
                entity_id=entity_id,
                action=kwargs.pop("action", AuditAction.UPDATE),
                changes=kwargs.pop("changes", {"status": {"old": "sent", "new": "paid"}}),
                **kwargs,
            )

    def test_entry_fields(self, store, audit, company_id):
        entity_id = uuid4()
        self._log(store, audit, entity_id, company_id, action=AuditAction.CREATE, changes={"created": {}})

        [entry] = audit.get_entity_history("invoice", entity_id)

        assert entry["company_id"] == company_id
        assert entry["entity_type"] == "invoice"
        assert entry["action"] == "create"
        assert entry["actor_id"] is None
        assert entry["created_at"] is not None

    def test_uses_context_actor(self, store, audit, company_id):
        entity_id = uuid4()
        with tenant_context(company_id, ACTOR_ID):
            self._log(store, audit, entity_id, company_id)

        assert audit.get_entity_history("invoice", entity_id)[0]["actor_id"] == ACTOR_ID

    def test_explicit_actor_overrides_context(self, store, audit, company_id):
        entity_id, other = uuid4(), uuid4()
        with tenant_context(company_id, ACTOR_ID):
            self._log(store, audit, entity_id, company_id, actor_id=other)

        assert audit.get_entity_history("invoice", entity_id)[0]["actor_id"] == other

    def test_changes_made_json_safe(self, store, audit, company_id):
        """Decimals and datetimes are stored in their JSON forms."""
        entity_id = uuid4()
        self._log(store, audit, entity_id, company_id, changes={
            "paid_amount": {"old": Decimal("0.00"), "new": Decimal("40.00")},
            "paid_at": {"old": None, "new": datetime(2026, 3, 1, tzinfo=timezone.utc)},
        })

        changes = audit.get_entity_history("invoice", entity_id)[0]["changes"]

        assert changes["paid_amount"] == {"old": "0.00", "new": "40.00"}
        assert changes["paid_at"]["new"].startswith("2026-03-01T00:00:00")

    def test_history_newest_first(self, store, audit, company_id):
        entity_id = uuid4()
        self._log(store, audit, entity_id, company_id, action=AuditAction.CREATE, changes={"created": {}})
        self._log(store, audit, entity_id, company_id)

        actions = [e["action"] for e in audit.get_entity_history("invoice", entity_id)]

        assert actions == ["update", "create"]

    def test_entry_rolls_back_with_transaction(self, store, audit, company_id):
        entity_id = uuid4()

        with pytest.raises(RuntimeError):
            with store.transaction() as tx:
                audit.log_change(
                    tx, company_id=company_id, entity_type="invoice", entity_id=entity_id,
                    action=AuditAction.CREATE, changes={"created": {}},
                )
                raise RuntimeError("mutation failed")

        assert audit.get_entity_history("invoice", entity_id) == []


class TestServiceAuditTrail:
    """Every ledger mutation leaves an entry."""

    def test_payment_settlement_logged_on_invoice(self, audit, make_invoice, payment_service, company_id):
        invoice = make_invoice()
        payment_service.record_payment(company_id, payment_data(invoice, "40"))

        latest = audit.get_entity_history("invoice", invoice.id)[0]

        assert latest["action"] == "update"
        assert latest["changes"]["paid_amount"]["new"] == "40.00"
        assert latest["changes"]["status"] == {"old": "sent", "new": "partial"}
