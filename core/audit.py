"""
Audit trail for ledger mutations.

Every invoice and payment mutation is logged here, inside the same
transaction as the mutation itself. The audit log is:
- Append-only (entries never modified or deleted)
- Tenant- and actor-attributed (which company, who made the change)
- Detailed (captures old and new values)
"""

from enum import Enum
from typing import Any
from uuid import UUID, uuid4

from pydantic_core import to_jsonable_python

from core.store.base import LedgerStore, LedgerTransaction
from utils.tenant_context import get_current_actor_id
from utils.timezone import now_utc


class AuditAction(Enum):
    """Type of change made to an entity."""

    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"


def compute_changes(
    old: dict[str, Any],
    new: dict[str, Any],
    exclude_fields: set[str] | None = None
) -> dict[str, dict[str, Any]]:
    """
    Compute changes between two entity states.

    Args:
        old: Previous state of entity
        new: New state of entity
        exclude_fields: Fields to ignore (defaults to {"updated_at"})

    Returns:
        Dict of {field: {"old": old_val, "new": new_val}} for changed fields.
        Empty dict if no changes.
    """
    exclude = exclude_fields or {"updated_at"}
    changes = {}

    all_keys = set(old.keys()) | set(new.keys())
    for key in all_keys:
        if key in exclude:
            continue

        old_val = old.get(key)
        new_val = new.get(key)

        if old_val != new_val:
            changes[key] = {"old": old_val, "new": new_val}

    return changes


class AuditLogger:
    """
    Ledger audit trail.

    Usage:
        audit = AuditLogger(store)

        with store.transaction() as tx:
            ...mutate...
            audit.log_change(
                tx,
                company_id=invoice.company_id,
                entity_type="invoice",
                entity_id=invoice.id,
                action=AuditAction.UPDATE,
                changes=compute_changes(
                    old.model_dump(mode="json", exclude={"items", "payments"}),
                    new.model_dump(mode="json", exclude={"items", "payments"}),
                ),
            )

        history = audit.get_entity_history("invoice", invoice.id)
    """

    def __init__(self, store: LedgerStore):
        self.store = store

    def log_change(
        self,
        tx: LedgerTransaction,
        company_id: UUID,
        entity_type: str,
        entity_id: UUID,
        action: AuditAction,
        changes: dict[str, Any],
        actor_id: UUID | None = None
    ) -> None:
        """
        Log an entity change within an open transaction.

        Args:
            tx: Transaction the mutation is running in
            company_id: Tenant the entity belongs to
            entity_type: "invoice" or "payment"
            entity_id: ID of the entity
            action: The action performed (CREATE, UPDATE, DELETE)
            changes: The changes made (format depends on action)
            actor_id: User who made change (defaults to current context, may be None)

        Changes format by action:
        - CREATE: {"created": {entity data}}
        - UPDATE: {"field": {"old": old_val, "new": new_val}, ...}
        - DELETE: {"deleted": {full entity data at deletion}}
        """
        if actor_id is None:
            actor_id = get_current_actor_id()

        tx.insert_audit_entry({
            "id": uuid4(),
            "company_id": company_id,
            "actor_id": actor_id,
            "entity_type": entity_type,
            "entity_id": entity_id,
            "action": action.value,
            "changes": to_jsonable_python(changes),
            "created_at": now_utc(),
        })

    def get_entity_history(self, entity_type: str, entity_id: UUID) -> list[dict[str, Any]]:
        """
        Get full audit history for an entity.

        Returns:
            List of audit entries, newest first.
        """
        with self.store.transaction() as tx:
            return tx.audit_entries(entity_type, entity_id)
