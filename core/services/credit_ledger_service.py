"""
Credit ledger service for per-class and block plans.

Appends events and keeps consumption in step with the calendar. The balance
is always summed from the events, never read from a counter.
"""

import logging
from datetime import date
from uuid import UUID, uuid4

from clients.postgres_client import PostgresClient
from core.billing.closures import ClosureCalendar
from core.billing.coverage import Templates
from core.billing.credits import (
    attendance_key,
    credit_balance,
    plan_closure_refunds,
    plan_consumption_backfill,
)
from core.models import CreditEvent, CreditEventCreate, CreditEventType, Enrolment

logger = logging.getLogger(__name__)


class CreditLedgerService:
    """Append-only access to enrolment_credit_events."""

    def __init__(self, postgres: PostgresClient):
        self.postgres = postgres

    def append_event(self, data: CreditEventCreate) -> CreditEvent:
        """Insert one event and return it as stored."""
        row = self.postgres.execute_returning(
            """
            INSERT INTO enrolment_credit_events (
                id, enrolment_id, type, credits_delta, occurred_on,
                invoice_id, attendance_key, adjustment_id, note
            ) VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s)
            RETURNING *
            """,
            (
                uuid4(), data.enrolment_id, data.type.value, data.credits_delta,
                data.occurred_on, data.invoice_id, data.attendance_key,
                data.adjustment_id, data.note
            )
        )[0]
        return CreditEvent.model_validate(row)

    def list_events(self, enrolment_id: UUID, as_of: date | None = None) -> list[CreditEvent]:
        """Events for an enrolment in ledger order, optionally up to ``as_of``."""
        rows = self.postgres.execute(
            """
            SELECT * FROM enrolment_credit_events
            WHERE enrolment_id = %s AND (%s::date IS NULL OR occurred_on <= %s::date)
            ORDER BY occurred_on, created_at, id
            """,
            (enrolment_id, as_of, as_of)
        )
        return [CreditEvent.model_validate(row) for row in rows]

    def balance(self, enrolment_id: UUID, as_of: date | None = None) -> int:
        return credit_balance(self.list_events(enrolment_id, as_of))

    def ensure_consumption_events(
        self,
        enrolment: Enrolment,
        templates: Templates,
        closures: ClosureCalendar,
        as_of: date,
    ) -> list[CreditEvent]:
        """
        Bring the ledger up to date for ``as_of`` and return every event.

        Writes one CONSUME per open occurrence not yet consumed, then
        refunds (or un-refunds) consumed occurrences whose closure state has
        changed since. Consumption after the enrolment end is refunded too, so
        ending an enrolment earlier gives back classes it had already used.
        Safe to repeat: the unique CONSUME index turns a concurrent duplicate
        into a no-op.
        """
        events = self.list_events(enrolment.id)
        existing = {
            event.attendance_key
            for event in events
            if event.type == CreditEventType.CONSUME and event.attendance_key
        }

        backfill = plan_consumption_backfill(
            start=enrolment.start_date,
            end_date=enrolment.end_date,
            as_of=as_of,
            templates=templates,
            closures=closures,
            existing_keys=existing,
        )
        for occurrence in backfill:
            self.postgres.execute(
                """
                INSERT INTO enrolment_credit_events (
                    id, enrolment_id, type, credits_delta, occurred_on, attendance_key
                ) VALUES (%s, %s, %s, %s, %s, %s)
                ON CONFLICT (enrolment_id, attendance_key) WHERE type = 'CONSUME'
                DO NOTHING
                """,
                (
                    uuid4(), enrolment.id, CreditEventType.CONSUME.value, -1,
                    occurrence.day, attendance_key(occurrence.template_id, occurrence.day)
                )
            )
        if backfill:
            events = self.list_events(enrolment.id)

        refunds = plan_closure_refunds(events, closures, templates, end_date=enrolment.end_date)
        for refund in refunds:
            self.append_event(CreditEventCreate(
                enrolment_id=enrolment.id,
                type=refund.event_type,
                credits_delta=refund.credits_delta,
                occurred_on=refund.day,
                attendance_key=refund.attendance_key,
                note=refund.note,
            ))
        if refunds:
            logger.info(
                "Reconciled %d consumed occurrences for enrolment %s", len(refunds), enrolment.id
            )
            events = self.list_events(enrolment.id)

        return events
