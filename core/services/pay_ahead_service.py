"""
Pay-ahead and catch-up invoices for one enrolment.

A quote says what an invoice would cover and cost without writing anything.
Raising the invoice creates it SENT with one ENROLMENT line; coverage only
moves once it is paid, through the usual entitlement path.
"""

import logging
from datetime import date
from uuid import UUID

from clients.postgres_client import PostgresClient
from core.billing.invoice_windows import (
    block_blocks_behind,
    block_coverage_window,
    weekly_blocks_behind,
    weekly_catch_up_window,
    weekly_pay_ahead_window,
)
from core.exceptions import ValidationError
from core.models import (
    CoverageWindow,
    Enrolment,
    EnrolmentPlan,
    Invoice,
    InvoiceCreate,
    InvoiceKind,
    InvoiceQuote,
    InvoiceStatus,
    LineItemCreate,
    LineItemKind,
)
from core.services.billing_snapshot_service import BillingSnapshotService
from core.services.enrolment_service import EnrolmentService
from core.services.invoice_service import InvoiceService

logger = logging.getLogger(__name__)


class PayAheadService:
    """Quote and raise invoices that extend or restore coverage."""

    def __init__(
        self,
        postgres: PostgresClient,
        enrolments: EnrolmentService,
        snapshots: BillingSnapshotService,
        invoices: InvoiceService,
    ):
        self.postgres = postgres
        self.enrolments = enrolments
        self.snapshots = snapshots
        self.invoices = invoices

    def quote_pay_ahead(self, enrolment_id: UUID, periods: int = 1, as_of: date | None = None) -> InvoiceQuote:
        """
        What paying ``periods`` periods ahead would buy.

        Weekly plans buy whole periods of ``duration_weeks`` weeks from the
        first unpaid session not before today. Credit plans buy blocks of
        ``block_class_count`` credits.

        Raises:
            NotFoundError: If the enrolment does not exist
            ValidationError: The enrolment has no plan, or periods < 1
        """
        if periods < 1:
            raise ValidationError("At least one period is required")

        as_of = as_of or self.snapshots.today()
        enrolment = self.enrolments.require(enrolment_id)
        plan = self._require_plan(enrolment)
        templates = self.enrolments.get_templates(enrolment.template_ids)
        closures = self.enrolments.get_closures(enrolment.template_ids, enrolment.start_date)

        if plan.billing_type.is_credit_based:
            snapshot = self.snapshots.get_snapshot(enrolment.id, as_of)
            window = block_coverage_window(
                enrolment.start_date, enrolment.end_date, snapshot.paid_through_date,
                templates, closures, plan.block_class_count, periods,
            )
        else:
            window = weekly_pay_ahead_window(
                enrolment.start_date, enrolment.end_date, enrolment.paid_through_date,
                templates, closures, as_of, periods,
                duration_weeks=plan.duration_weeks,
                sessions_per_week=plan.sessions_per_week,
            )
        return self._quote(enrolment, plan, InvoiceKind.PAY_AHEAD, window)

    def quote_catch_up(self, enrolment_id: UUID, as_of: date | None = None) -> InvoiceQuote:
        """What it would take to pay an enrolment up to today. Zero periods when it is current."""
        as_of = as_of or self.snapshots.today()
        enrolment = self.enrolments.require(enrolment_id)
        plan = self._require_plan(enrolment)
        templates = self.enrolments.get_templates(enrolment.template_ids)
        closures = self.enrolments.get_closures(enrolment.template_ids, enrolment.start_date)

        if plan.billing_type.is_credit_based:
            snapshot = self.snapshots.get_snapshot(enrolment.id, as_of)
            blocks = block_blocks_behind(
                snapshot.remaining_credits, snapshot.paid_through_date, plan.block_class_count, as_of
            )
            window = block_coverage_window(
                enrolment.start_date, enrolment.end_date, snapshot.paid_through_date,
                templates, closures, plan.block_class_count, blocks,
            )
        else:
            blocks = weekly_blocks_behind(
                enrolment.start_date, enrolment.end_date, enrolment.paid_through_date,
                templates, closures, as_of,
                duration_weeks=plan.duration_weeks,
                sessions_per_week=plan.sessions_per_week,
            )
            window = weekly_catch_up_window(
                enrolment.start_date, enrolment.end_date, enrolment.paid_through_date,
                templates, closures, blocks,
                duration_weeks=plan.duration_weeks,
                sessions_per_week=plan.sessions_per_week,
            )
        return self._quote(enrolment, plan, InvoiceKind.CATCH_UP, window)

    def create_pay_ahead_invoice(self, enrolment_id: UUID, periods: int = 1) -> Invoice:
        """
        Raise a SENT invoice for ``periods`` periods ahead.

        Raises:
            ValidationError: No remaining periods before the enrolment ends
        """
        with self.postgres.transaction():
            self.enrolments.require(enrolment_id, for_update=True)
            quote = self.quote_pay_ahead(enrolment_id, periods)
            if quote.window.periods <= 0:
                raise ValidationError("No remaining periods to invoice")
            return self._raise(quote)

    def create_catch_up_invoice(self, enrolment_id: UUID) -> Invoice:
        """
        Raise a SENT invoice that pays the enrolment up to today.

        Raises:
            ValidationError: The enrolment is not behind
        """
        with self.postgres.transaction():
            self.enrolments.require(enrolment_id, for_update=True)
            quote = self.quote_catch_up(enrolment_id)
            if quote.window.periods <= 0:
                raise ValidationError("Enrolment is already paid up to date")
            return self._raise(quote)

    def _require_plan(self, enrolment: Enrolment) -> EnrolmentPlan:
        plan = self.enrolments.get_plan(enrolment.plan_id)
        if plan is None:
            raise ValidationError("Enrolment has no plan to invoice against")
        return plan

    def _quote(
        self,
        enrolment: Enrolment,
        plan: EnrolmentPlan,
        kind: InvoiceKind,
        window: CoverageWindow,
    ) -> InvoiceQuote:
        return InvoiceQuote(
            enrolment_id=enrolment.id,
            kind=kind,
            billing_type=plan.billing_type,
            window=window,
            unit_price_cents=plan.price_cents,
            amount_cents=plan.price_cents * window.periods,
        )

    def _raise(self, quote: InvoiceQuote) -> Invoice:
        enrolment = self.enrolments.require(quote.enrolment_id)
        plan = self._require_plan(enrolment)
        window = quote.window

        label = "Pay ahead" if quote.kind == InvoiceKind.PAY_AHEAD else "Catch up"
        description = f"{label}: {plan.name} x {window.periods}"
        if window.coverage_start and window.coverage_end:
            description += f" ({window.coverage_start.isoformat()} to {window.coverage_end.isoformat()})"

        invoice = self.invoices.create_invoice(InvoiceCreate(
            family_id=enrolment.family_id,
            enrolment_id=enrolment.id,
            status=InvoiceStatus.SENT,
            coverage_start=window.coverage_start,
            coverage_end=window.coverage_end,
            credits_purchased=window.credits_purchased,
            line_items=[LineItemCreate(
                kind=LineItemKind.ENROLMENT,
                description=description,
                quantity=window.periods,
                unit_price_cents=quote.unit_price_cents,
            )],
        ))
        logger.info(
            "Raised %s invoice %s for enrolment %s: %d periods",
            quote.kind.value, invoice.id, enrolment.id, window.periods
        )
        return invoice
