"""Pure billing snapshot composition for one enrolment."""

from datetime import date
from typing import Iterable

from core.billing.closures import ClosureCalendar
from core.billing.coverage import Templates, compute_weekly_coverage
from core.billing.credits import credit_balance, project_credit_coverage
from core.models.coverage import BillingSnapshot
from core.models.credit_event import CreditEvent
from core.models.enrolment import Enrolment
from core.models.plan import EnrolmentPlan


def compute_snapshot(
    enrolment: Enrolment,
    plan: EnrolmentPlan | None,
    templates: Templates,
    closures: ClosureCalendar,
    as_of: date,
    events: Iterable[CreditEvent] = (),
    buffer_weeks: int = 4,
) -> BillingSnapshot:
    """
    Derive coverage for an enrolment.

    Weekly plans read the explicit paid-through date and walk to the next
    open session. Credit plans project the ledger balance forward. Callers
    backfill consumption before handing over ``events``.

    ``remaining_credits`` is the ledger balance as of ``as_of``: credits
    bought and not yet attended. The forward walk only places those credits
    on future sessions to find paid-through, so whatever it has left over
    (credits past the end date or the walk horizon) is not reported
    separately.
    """
    if plan is None:
        return BillingSnapshot(
            enrolment_id=enrolment.id,
            billing_type=None,
            as_of=as_of,
            paid_through_date=enrolment.paid_through_date,
            next_due_date=None,
        )

    if plan.billing_type.is_credit_based:
        balance = credit_balance(events, as_of)
        walk = project_credit_coverage(
            as_of=as_of,
            enrolment_start=enrolment.start_date,
            end_date=enrolment.end_date,
            balance=balance,
            templates=templates,
            closures=closures,
            sessions_per_week=plan.sessions_per_week,
            buffer_weeks=buffer_weeks,
        )
        return BillingSnapshot(
            enrolment_id=enrolment.id,
            billing_type=plan.billing_type,
            as_of=as_of,
            paid_through_date=walk.paid_through,
            next_due_date=walk.next_due,
            remaining_credits=balance,
            covered_occurrences=walk.covered,
        )

    weekly = compute_weekly_coverage(
        start=enrolment.start_date,
        end=enrolment.end_date,
        paid_through=enrolment.paid_through_date,
        templates=templates,
        closures=closures,
    )
    return BillingSnapshot(
        enrolment_id=enrolment.id,
        billing_type=plan.billing_type,
        as_of=as_of,
        paid_through_date=weekly.paid_through,
        next_due_date=weekly.next_due,
        covered_occurrences=weekly.covered,
    )
