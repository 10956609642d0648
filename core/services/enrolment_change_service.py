"""
Enrolment change service: move an enrolment onto a new plan and/or class set.

A change never edits the enrolment in place. The old row ends the day before
the changeover with status CHANGEOVER; a successor in the same billing group
starts on the changeover with whatever the old one had paid for carried
across:

- weekly to weekly: the paid sessions left after the changeover are
  replayed on the new classes;
- credit to credit: the ledger balance moves with a pair of MANUAL_ADJUST
  events;
- across billing types: the paid sessions become credits, or the credits
  become paid sessions.

When the plan changes, the price difference of the remaining paid classes is
settled through SettlementService.
"""

import logging
from datetime import date, timedelta
from uuid import UUID, uuid4

from clients.postgres_client import PostgresClient
from core.audit import AuditLogger, AuditAction
from core.billing.changeover import (
    capacity_window_end,
    find_capacity_breach,
    find_duplicate_enrolment,
    validate_change_request,
)
from core.billing.closures import ClosureCalendar
from core.billing.coverage import compute_coverage_end_day, replay_paid_through_on_new_templates
from core.billing.credits import credit_balance, project_credit_coverage
from core.billing.guard import guard_coverage
from core.billing.settlement import chargeable_classes, quote_settlement
from core.config import BillingConfig
from core.event_bus import EventBus
from core.events import EnrolmentChangedOver
from core.exceptions import ValidationError
from core.models import (
    ClassTemplate,
    CoverageReason,
    CreditEventCreate,
    CreditEventType,
    Enrolment,
    EnrolmentChange,
    EnrolmentChangeResult,
    EnrolmentPlan,
)
from core.services.billing_snapshot_service import BillingSnapshotService
from core.services.coverage_service import CoverageService
from core.services.credit_ledger_service import CreditLedgerService
from core.services.enrolment_service import EnrolmentService
from core.services.settlement_service import SettlementService

logger = logging.getLogger(__name__)


class EnrolmentChangeService:
    """Apply plan and class changes to enrolments."""

    def __init__(
        self,
        postgres: PostgresClient,
        audit: AuditLogger,
        event_bus: EventBus,
        enrolments: EnrolmentService,
        ledger: CreditLedgerService,
        snapshots: BillingSnapshotService,
        coverage: CoverageService,
        settlements: SettlementService,
        config: BillingConfig | None = None,
    ):
        self.postgres = postgres
        self.audit = audit
        self.event_bus = event_bus
        self.enrolments = enrolments
        self.ledger = ledger
        self.snapshots = snapshots
        self.coverage = coverage
        self.settlements = settlements
        self.config = config or BillingConfig()

    def change_enrolment(
        self,
        enrolment_id: UUID,
        change: EnrolmentChange,
        actor_id: UUID | None = None,
    ) -> EnrolmentChangeResult:
        """
        Move an enrolment to a new plan and/or class set from a changeover day.

        Args:
            enrolment_id: Enrolment being changed
            change: New plan (optional), new classes and changeover day
            actor_id: Staff member responsible (defaults to context)

        Returns:
            Old and new enrolment ids plus any settlement applied

        Raises:
            NotFoundError: Enrolment, plan or class does not exist
            ValidationError: The change does not fit the plan, or the student
                already attends one of the classes in that window
            CapacityExceededError: A class would be overfilled and overload
                was not allowed
            CoverageWouldShortenError: The carried coverage ends earlier and
                the shorten was not confirmed
        """
        changeover = change.changeover_date

        with self.event_bus.deferred(), self.postgres.transaction():
            enrolment = self.enrolments.require(enrolment_id, for_update=True)
            if enrolment.plan_id is None:
                raise ValidationError(f"Enrolment {enrolment_id} has no plan to change from")

            old_plan = self.enrolments.require_plan(enrolment.plan_id)
            new_plan = self.enrolments.require_plan(change.new_plan_id or old_plan.id)
            new_templates = self.enrolments.require_templates(change.new_template_ids)

            validate_change_request(enrolment, new_plan, new_templates, changeover)
            self._check_duplicates(enrolment, change.new_template_ids, changeover)
            if not change.allow_capacity_overload:
                self._check_capacity(enrolment, new_plan, new_templates, changeover)

            plan_changed = new_plan.id != old_plan.id
            reason = CoverageReason.PLAN_CHANGED if plan_changed else CoverageReason.CLASS_CHANGED

            old_templates = self.enrolments.get_templates(enrolment.template_ids)
            closures = self.enrolments.get_closures(
                list(dict.fromkeys(enrolment.template_ids + change.new_template_ids)),
                enrolment.start_date,
            )
            old_end = changeover - timedelta(days=1)

            old_balance = 0
            if old_plan.billing_type.is_credit_based:
                old_balance = self._settle_old_ledger(enrolment, old_templates, closures, old_end)
            old_paid_through = self._old_paid_through(
                enrolment, old_plan, old_templates, closures, changeover, old_balance
            )

            carried_date = None
            carried_credits = 0

            if old_plan.billing_type.is_credit_based:
                carried_credits = old_balance
                if not new_plan.billing_type.is_credit_based:
                    carried_date = compute_coverage_end_day(
                        changeover, new_templates, closures, carried_credits, enrolment.end_date,
                        fallback_days=self.config.fallback_horizon_days,
                    )
                    if carried_credits > 0:
                        self._move_credits(enrolment.id, None, carried_credits)
            else:
                if new_plan.billing_type.is_credit_based:
                    carried_credits = chargeable_classes(
                        old_templates, changeover, enrolment.paid_through_date, closures
                    )
                else:
                    carried_date = replay_paid_through_on_new_templates(
                        old_start=enrolment.start_date,
                        old_paid_through=enrolment.paid_through_date,
                        old_templates=old_templates,
                        old_closures=closures,
                        new_templates=new_templates,
                        new_closures=closures,
                        changeover=changeover,
                        end=enrolment.end_date,
                    )
                    paid = enrolment.paid_through_date
                    if paid is not None and paid >= changeover:
                        guard_coverage(paid, carried_date, reason, change.confirm_shorten)

            self.enrolments.close_for_changeover(enrolment, old_end)
            successor = self.enrolments.create_successor(
                previous=enrolment,
                plan_id=new_plan.id,
                template_ids=change.new_template_ids,
                start_date=changeover,
                paid_through_date=None,
            )

            if new_plan.billing_type.is_credit_based:
                if carried_credits:
                    self._move_credits(
                        enrolment.id if old_plan.billing_type.is_credit_based else None,
                        successor.id,
                        carried_credits,
                    )
                self.coverage.recalculate(successor.id, reason, actor_id=actor_id)
            else:
                self.coverage.apply_paid_through(
                    successor.id, carried_date, reason,
                    confirm_shorten=change.confirm_shorten, actor_id=actor_id,
                )

            result = EnrolmentChangeResult(
                old_enrolment_id=enrolment.id,
                new_enrolment_id=successor.id,
            )

            if plan_changed:
                chargeable = chargeable_classes(old_templates, changeover, old_paid_through, closures)
                quote = quote_settlement(
                    enrolment_id=enrolment.id,
                    old_plan=old_plan,
                    new_plan=new_plan,
                    changeover=changeover,
                    paid_through=old_paid_through,
                    chargeable=chargeable,
                    new_template_ids=change.new_template_ids,
                )
                application, replayed = self.settlements.apply(
                    quote, enrolment.family_id, invoice_enrolment_id=successor.id
                )
                result = result.model_copy(update={
                    "settlement": quote,
                    "settlement_invoice_id": application.invoice_id if application else None,
                    "settlement_payment_id": application.payment_id if application else None,
                    "settlement_replayed": replayed,
                })

            self.audit.log_change(
                entity_type="enrolment",
                entity_id=enrolment.id,
                action=AuditAction.UPDATE,
                changes={
                    "changed_over_to": str(successor.id),
                    "plan_id": {"old": str(old_plan.id), "new": str(new_plan.id)},
                    "template_ids": {
                        "old": [str(t) for t in enrolment.template_ids],
                        "new": [str(t) for t in change.new_template_ids],
                    },
                    "changeover_date": changeover.isoformat(),
                },
                actor_id=actor_id,
            )
            self.event_bus.publish(EnrolmentChangedOver.create(
                old_enrolment_id=enrolment.id,
                new_enrolment_id=successor.id,
                settlement=result.settlement,
            ))

        logger.info(
            "Enrolment %s changed over to %s from %s (%s)",
            enrolment.id, successor.id, changeover, reason.value
        )
        return result

    def _check_duplicates(self, enrolment: Enrolment, template_ids: list[UUID], changeover: date) -> None:
        clash = find_duplicate_enrolment(
            self.enrolments.list_for_student(enrolment.student_id),
            template_ids,
            changeover,
            enrolment.end_date,
            ignore_ids={enrolment.id},
        )
        if clash is not None:
            raise ValidationError(
                f"Student is already enrolled in one of these classes (enrolment {clash.id})"
            )

    def _check_capacity(
        self,
        enrolment: Enrolment,
        plan: EnrolmentPlan,
        templates: list[ClassTemplate],
        changeover: date,
    ) -> None:
        for template in templates:
            end = capacity_window_end(
                plan, changeover, enrolment.end_date, template.end_date,
                horizon_weeks=self.config.capacity_horizon_weeks,
            )
            roster = [
                other
                for other in self.enrolments.list_active_for_templates([template.id])
                if other.id != enrolment.id
            ]
            breach = find_capacity_breach(template, changeover, end, roster)
            if breach is not None:
                raise breach

    def _old_paid_through(
        self,
        enrolment: Enrolment,
        plan: EnrolmentPlan,
        templates: list[ClassTemplate],
        closures: ClosureCalendar,
        changeover: date,
        balance: int,
    ) -> date | None:
        """
        Paid-through the settlement prices against.

        A credit plan spends its settled balance on the old classes from the
        changeover on. Nothing is written, so a backdated change never
        consumes past the old enrolment's last day.
        """
        if not plan.billing_type.is_credit_based:
            return enrolment.paid_through_date
        projection = project_credit_coverage(
            as_of=changeover - timedelta(days=1),
            enrolment_start=changeover,
            end_date=enrolment.end_date,
            balance=balance,
            templates=templates,
            closures=closures,
            sessions_per_week=plan.sessions_per_week,
            buffer_weeks=self.config.horizon_buffer_weeks,
        )
        return projection.paid_through

    def _settle_old_ledger(
        self,
        enrolment: Enrolment,
        templates: list[ClassTemplate],
        closures: ClosureCalendar,
        old_end: date,
    ) -> int:
        """
        Consume the old enrolment through its last day and return what is left.

        Classes already consumed after that day are refunded, so a backdated
        change hands them back before the balance moves.
        """
        closing = enrolment.model_copy(update={"end_date": old_end})
        events = self.ledger.ensure_consumption_events(closing, templates, closures, old_end)
        return credit_balance(events)

    def _move_credits(
        self,
        from_enrolment_id: UUID | None,
        to_enrolment_id: UUID | None,
        credits: int,
    ) -> None:
        """Post the paired MANUAL_ADJUST events that carry a balance across, dated today."""
        adjustment_id = uuid4()
        today = self.snapshots.today()
        if from_enrolment_id is not None:
            self.ledger.append_event(CreditEventCreate(
                enrolment_id=from_enrolment_id,
                type=CreditEventType.MANUAL_ADJUST,
                credits_delta=-credits,
                occurred_on=today,
                adjustment_id=adjustment_id,
                note="Balance carried to successor enrolment",
            ))
        if to_enrolment_id is not None:
            self.ledger.append_event(CreditEventCreate(
                enrolment_id=to_enrolment_id,
                type=CreditEventType.MANUAL_ADJUST,
                credits_delta=credits,
                occurred_on=today,
                adjustment_id=adjustment_id,
                note="Balance carried from previous enrolment",
            ))
