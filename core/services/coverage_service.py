"""
Coverage service: recalculation of paid-through dates behind the guard.

Every mutation of an enrolment's paid-through date goes through here, so the
non-regression guard, the coverage audit and the coverage events are applied
in exactly one place.
"""

import logging
from datetime import date
from uuid import UUID

from clients.postgres_client import PostgresClient
from core.audit import AuditLogger
from core.billing.closures import ClosureCalendar
from core.billing.coverage import propose_weekly_paid_through
from core.billing.guard import GuardDecision, guard_coverage
from core.event_bus import EventBus
from core.events import CoverageChanged, CoverageShortenAbsorbed
from core.exceptions import ValidationError
from core.models import BillingSnapshot, CoverageReason, Enrolment
from core.services.billing_snapshot_service import BillingSnapshotService
from core.services.enrolment_service import EnrolmentService

logger = logging.getLogger(__name__)


class CoverageService:
    """Recalculate and guard enrolment coverage."""

    def __init__(
        self,
        postgres: PostgresClient,
        enrolments: EnrolmentService,
        snapshots: BillingSnapshotService,
        audit: AuditLogger,
        event_bus: EventBus,
    ):
        self.postgres = postgres
        self.enrolments = enrolments
        self.snapshots = snapshots
        self.audit = audit
        self.event_bus = event_bus

    def recalculate(
        self,
        enrolment_id: UUID,
        reason: CoverageReason,
        confirm_shorten: bool = False,
        actor_id: UUID | None = None,
        entitlement_sessions: int | None = None,
        closures_before: ClosureCalendar | None = None,
    ) -> BillingSnapshot:
        """
        Re-derive coverage for one enrolment and persist it if the guard accepts.

        Args:
            enrolment_id: Enrolment UUID
            reason: What triggered the recalculation
            confirm_shorten: Caller has confirmed an earlier paid-through is fine
            actor_id: Staff member responsible (defaults to context)
            entitlement_sessions: Sessions already paid for, when known
            closures_before: Calendar before the triggering change; the paid
                window's entitlement is counted against it

        Returns:
            The snapshot after recalculation

        Raises:
            NotFoundError: If the enrolment does not exist
            CoverageWouldShortenError: Shortening for a non-absorbing reason
                without confirmation
        """
        with self.event_bus.deferred(), self.postgres.transaction():
            enrolment = self.enrolments.require(enrolment_id, for_update=True)
            return self._recalculate_locked(
                enrolment,
                reason,
                base_paid_through=enrolment.paid_through_date,
                confirm_shorten=confirm_shorten,
                actor_id=actor_id,
                entitlement_sessions=entitlement_sessions,
                closures_before=closures_before,
            )

    def apply_paid_through(
        self,
        enrolment_id: UUID,
        base_paid_through: date | None,
        reason: CoverageReason,
        confirm_shorten: bool = False,
        actor_id: UUID | None = None,
    ) -> BillingSnapshot:
        """
        Recalculate from a new base paid-through date.

        Used when money changes what the enrolment has paid for: an invoice
        entitlement or a reversed payment.
        """
        with self.event_bus.deferred(), self.postgres.transaction():
            enrolment = self.enrolments.require(enrolment_id, for_update=True)
            return self._recalculate_locked(
                enrolment,
                reason,
                base_paid_through=base_paid_through,
                confirm_shorten=confirm_shorten,
                actor_id=actor_id,
            )

    def apply_invoice_coverage(
        self,
        enrolment_id: UUID,
        coverage_end: date | None,
        reason: CoverageReason = CoverageReason.INVOICE_APPLIED,
        confirm_shorten: bool = False,
        actor_id: UUID | None = None,
    ) -> BillingSnapshot:
        """
        Set a weekly enrolment's paid-through to an invoice's coverage end.

        The date is stored as the invoice states it, not re-walked onto a
        class day. It still passes the guard, so an earlier date is absorbed
        for INVOICE_APPLIED.
        """
        with self.event_bus.deferred(), self.postgres.transaction():
            enrolment = self.enrolments.require(enrolment_id, for_update=True)
            decision = guard_coverage(enrolment.paid_through_date, coverage_end, reason, confirm_shorten)
            self._persist_decision(enrolment, decision, reason, actor_id)
            return self._refresh_snapshot(enrolment.id)

    def update_paid_through_date(
        self,
        enrolment_id: UUID,
        new_date: date | None,
        actor_id: UUID | None = None,
        confirm_shorten: bool = False,
    ) -> BillingSnapshot:
        """
        Set a weekly enrolment's paid-through date by hand.

        Raises:
            ValidationError: The enrolment is on a credit plan
            CoverageWouldShortenError: Moving earlier without confirmation
        """
        with self.event_bus.deferred(), self.postgres.transaction():
            enrolment = self.enrolments.require(enrolment_id, for_update=True)
            plan = self.enrolments.get_plan(enrolment.plan_id)
            if plan is not None and plan.billing_type.is_credit_based:
                raise ValidationError(
                    "Paid-through is derived from credits for this plan and cannot be edited"
                )

            decision = guard_coverage(
                enrolment.paid_through_date,
                new_date,
                CoverageReason.PAIDTHROUGH_MANUAL_EDIT,
                confirm_shorten,
            )
            self._persist_decision(enrolment, decision, CoverageReason.PAIDTHROUGH_MANUAL_EDIT, actor_id)
            return self._refresh_snapshot(enrolment.id)

    def _recalculate_locked(
        self,
        enrolment: Enrolment,
        reason: CoverageReason,
        base_paid_through: date | None,
        confirm_shorten: bool = False,
        actor_id: UUID | None = None,
        entitlement_sessions: int | None = None,
        closures_before: ClosureCalendar | None = None,
    ) -> BillingSnapshot:
        plan = self.enrolments.get_plan(enrolment.plan_id)
        if not enrolment.is_active or plan is None or not enrolment.template_ids:
            logger.debug("Skipping recalculation for enrolment %s (%s)", enrolment.id, reason.value)
            return self._refresh_snapshot(enrolment.id)

        as_of = self.snapshots.today()

        if plan.billing_type.is_credit_based:
            snapshot = self.snapshots.compute(enrolment, as_of)
            decision = guard_coverage(
                enrolment.paid_through_date_computed,
                snapshot.paid_through_date,
                reason,
                confirm_shorten,
            )
            self._report(enrolment.id, decision, reason, actor_id)
            if decision.absorbed:
                snapshot = snapshot.model_copy(update={"paid_through_date": decision.accepted})
            self.enrolments.write_cache(
                enrolment.id,
                paid_through_computed=snapshot.paid_through_date,
                next_due_computed=snapshot.next_due_date,
                credits_balance=snapshot.remaining_credits,
            )
            return snapshot

        templates = self.enrolments.get_templates(enrolment.template_ids)
        closures = self.enrolments.get_closures(enrolment.template_ids, enrolment.start_date)
        proposed = propose_weekly_paid_through(
            start=enrolment.start_date,
            base_paid_through=base_paid_through,
            templates=templates,
            closures=closures,
            end=enrolment.end_date,
            closures_before=closures_before,
            entitlement_sessions=entitlement_sessions,
        )
        decision = guard_coverage(enrolment.paid_through_date, proposed, reason, confirm_shorten)
        self._persist_decision(enrolment, decision, reason, actor_id)
        return self._refresh_snapshot(enrolment.id)

    def _persist_decision(
        self,
        enrolment: Enrolment,
        decision: GuardDecision,
        reason: CoverageReason,
        actor_id: UUID | None,
    ) -> None:
        if decision.changed:
            self.enrolments.set_paid_through(enrolment.id, decision.accepted)
        self._report(enrolment.id, decision, reason, actor_id)

    def _report(
        self,
        enrolment_id: UUID,
        decision: GuardDecision,
        reason: CoverageReason,
        actor_id: UUID | None,
    ) -> None:
        """Audit an accepted change, or warn about an absorbed shorten."""
        if decision.absorbed:
            logger.warning(
                "Kept paid-through %s for enrolment %s; %s proposed %s",
                decision.previous, enrolment_id, reason.value, decision.proposed
            )
            self.event_bus.publish(CoverageShortenAbsorbed.create(
                enrolment_id=enrolment_id,
                reason=reason.value,
                kept=decision.previous,
                proposed=decision.proposed,
            ))
            return

        if not decision.changed:
            return

        self.audit.log_coverage_change(
            enrolment_id=enrolment_id,
            reason=reason,
            previous=decision.previous,
            new=decision.accepted,
            actor_id=actor_id,
        )
        logger.info(
            "Coverage for enrolment %s moved %s -> %s (%s)",
            enrolment_id, decision.previous, decision.accepted, reason.value
        )
        self.event_bus.publish(CoverageChanged.create(
            enrolment_id=enrolment_id,
            reason=reason.value,
            previous=decision.previous,
            new=decision.accepted,
        ))

    def _refresh_snapshot(self, enrolment_id: UUID) -> BillingSnapshot:
        return self.snapshots.get_snapshot(enrolment_id)
