"""
Billing snapshot service: the one read path for enrolment coverage.

Every caller that shows or acts on paid-through, next-due or remaining
credits goes through ``get_snapshot``. The result is written into the
enrolment cache columns on the way out.
"""

import logging
from datetime import date
from uuid import UUID

from clients.postgres_client import PostgresClient
from core.billing.closures import count_full_week_closures
from core.billing.snapshot import compute_snapshot
from core.config import BillingConfig
from core.models import BillingSnapshot, BillingStatus, Enrolment
from core.services.credit_ledger_service import CreditLedgerService
from core.services.enrolment_service import EnrolmentService
from utils.timezone import today_key

logger = logging.getLogger(__name__)


class BillingSnapshotService:
    """Derive and cache billing snapshots."""

    def __init__(
        self,
        postgres: PostgresClient,
        enrolments: EnrolmentService,
        ledger: CreditLedgerService,
        config: BillingConfig | None = None,
    ):
        self.postgres = postgres
        self.enrolments = enrolments
        self.ledger = ledger
        self.config = config or BillingConfig()

    def today(self) -> date:
        return today_key(self.config.timezone)

    def compute(self, enrolment: Enrolment, as_of: date) -> BillingSnapshot:
        """
        Snapshot without touching the cache columns.

        Credit plans still backfill consumption, so this must run inside the
        caller's transaction.
        """
        plan = self.enrolments.get_plan(enrolment.plan_id)
        templates = self.enrolments.get_templates(enrolment.template_ids)
        closures = self.enrolments.get_closures(enrolment.template_ids, enrolment.start_date)

        events = []
        if plan is not None and plan.billing_type.is_credit_based:
            events = self.ledger.ensure_consumption_events(enrolment, templates, closures, as_of)

        return compute_snapshot(
            enrolment=enrolment,
            plan=plan,
            templates=templates,
            closures=closures,
            as_of=as_of,
            events=events,
            buffer_weeks=self.config.horizon_buffer_weeks,
        )

    def get_snapshot(self, enrolment_id: UUID, as_of: date | None = None) -> BillingSnapshot:
        """
        Current billing snapshot for an enrolment.

        Args:
            enrolment_id: Enrolment UUID
            as_of: Day key to evaluate at (defaults to today in the civil timezone)

        Raises:
            NotFoundError: If the enrolment does not exist
        """
        as_of = as_of or self.today()
        with self.postgres.transaction():
            enrolment = self.enrolments.require(enrolment_id)
            snapshot = self.compute(enrolment, as_of)
            self.enrolments.write_cache(
                enrolment.id,
                paid_through_computed=snapshot.paid_through_date,
                next_due_computed=snapshot.next_due_date,
                credits_balance=snapshot.remaining_credits,
            )
        logger.debug(
            "Snapshot for %s as of %s: paid through %s, next due %s",
            enrolment_id, as_of, snapshot.paid_through_date, snapshot.next_due_date
        )
        return snapshot

    def get_billing_status(self, enrolment_id: UUID, as_of: date | None = None) -> BillingStatus:
        """Snapshot plus the number of whole weeks closed in the covered window."""
        as_of = as_of or self.today()
        snapshot = self.get_snapshot(enrolment_id, as_of)
        enrolment = self.enrolments.require(enrolment_id)

        window_end = snapshot.paid_through_date or as_of
        closed_weeks = 0
        if window_end >= enrolment.start_date:
            templates = self.enrolments.get_templates(enrolment.template_ids)
            holidays = [
                holiday
                for holiday in self.enrolments.get_holidays(enrolment.start_date, window_end)
                if any(holiday.applies_to(t.id, t.level_id) for t in templates)
            ]
            closed_weeks = count_full_week_closures(enrolment.start_date, window_end, holidays)

        return BillingStatus(
            snapshot=snapshot,
            enrolment_status=enrolment.status.value,
            full_week_closures=closed_weeks,
        )
