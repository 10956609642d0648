"""
Audit trail for billing mutations.

Two append-only tables:
- audit_log: every invoice, payment, holiday and cancellation mutation,
  with old and new values.
- enrolment_coverage_audits: every accepted paid-through change, with the
  reason that triggered it.

Rows are written on the caller's connection, so they commit or roll back
with the operation they describe.
"""

from datetime import date
from enum import Enum
from typing import Any
from uuid import UUID, uuid4

from psycopg2.extras import Json

from clients.postgres_client import PostgresClient
from core.models.coverage import CoverageAudit, CoverageReason
from utils.actor_context import get_current_actor_id
from utils.timezone import now_utc


class AuditAction(Enum):
    """Type of change made to an entity."""

    CREATE = "create"
    UPDATE = "update"
    REVERSE = "reverse"


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
    Append-only audit writer.

    Pass pydantic models through model_dump(mode="json") so UUIDs, dates
    and datetimes arrive JSON-ready.

    Usage:
        audit.log_change(
            entity_type="invoice",
            entity_id=invoice.id,
            action=AuditAction.CREATE,
            changes={"created": invoice.model_dump(mode="json", exclude={"line_items"})}
        )

        audit.log_coverage_change(
            enrolment_id=enrolment.id,
            reason=CoverageReason.HOLIDAY_ADDED,
            previous=date(2026, 3, 2),
            new=date(2026, 3, 9),
        )
    """

    def __init__(self, postgres: PostgresClient):
        self.postgres = postgres

    def log_change(
        self,
        entity_type: str,
        entity_id: UUID,
        action: AuditAction,
        changes: dict[str, Any],
        actor_id: UUID | None = None
    ) -> None:
        """
        Log an entity change.

        Args:
            entity_type: Type of entity ("invoice", "payment", "holiday", ...)
            entity_id: ID of the entity
            action: The action performed
            changes: The changes made (format depends on action)
            actor_id: Staff member who made the change (defaults to context)

        Changes format by action:
        - CREATE: {"created": {full entity data}}
        - UPDATE: {"field": {"old": old_val, "new": new_val}, ...}
        - REVERSE: {"reversed": {...}, "reason": str | None}
        """
        if actor_id is None:
            actor_id = get_current_actor_id()

        self.postgres.execute(
            """
            INSERT INTO audit_log (id, actor_id, entity_type, entity_id, action, changes, created_at)
            VALUES (%s, %s, %s, %s, %s, %s, %s)
            """,
            (
                uuid4(),
                actor_id,
                entity_type,
                entity_id,
                action.value,
                Json(changes),
                now_utc()
            )
        )

    def log_coverage_change(
        self,
        enrolment_id: UUID,
        reason: CoverageReason,
        previous: date | None,
        new: date | None,
        actor_id: UUID | None = None
    ) -> CoverageAudit:
        """Record one accepted paid-through change."""
        if actor_id is None:
            actor_id = get_current_actor_id()

        row = self.postgres.execute_returning(
            """
            INSERT INTO enrolment_coverage_audits (
                id, enrolment_id, reason,
                previous_paid_through_date, next_paid_through_date,
                actor_id, created_at
            ) VALUES (%s, %s, %s, %s, %s, %s, %s)
            RETURNING *
            """,
            (uuid4(), enrolment_id, reason.value, previous, new, actor_id, now_utc())
        )[0]
        return CoverageAudit.model_validate(row)

    def get_entity_history(
        self,
        entity_type: str,
        entity_id: UUID
    ) -> list[dict[str, Any]]:
        """
        Get full audit history for an entity.

        Returns:
            List of audit entries, newest first.
        """
        return self.postgres.execute(
            """
            SELECT id, actor_id, entity_type, entity_id, action, changes, created_at
            FROM audit_log
            WHERE entity_type = %s AND entity_id = %s
            ORDER BY created_at DESC
            """,
            (entity_type, entity_id)
        )

    def get_coverage_history(self, enrolment_id: UUID) -> list[CoverageAudit]:
        """Coverage changes for an enrolment, newest first."""
        rows = self.postgres.execute(
            """
            SELECT * FROM enrolment_coverage_audits
            WHERE enrolment_id = %s
            ORDER BY created_at DESC
            """,
            (enrolment_id,)
        )
        return [CoverageAudit.model_validate(row) for row in rows]
