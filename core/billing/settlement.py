"""
Plan change settlement arithmetic.

When an enrolment moves to a different plan mid-period, the classes already
paid for between the changeover and the paid-through date are re-priced at
the new plan's per-class cost. A positive difference is charged, a negative
one is credited back.
"""

import hashlib
from datetime import date
from decimal import Decimal, ROUND_HALF_UP
from typing import Iterable
from uuid import UUID

from core.billing.closures import ClosureCalendar
from core.billing.coverage import Templates, count_scheduled_sessions
from core.models.plan import EnrolmentPlan
from core.models.settlement import SettlementQuote


def cost_per_class(plan: EnrolmentPlan) -> Decimal:
    """Exact per-class cost in cents. Never rounded here."""
    return Decimal(plan.price_cents) / Decimal(plan.sessions_or_block_size)


def round_cents(value: Decimal) -> int:
    """Round half away from zero to whole cents."""
    return int(value.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def chargeable_classes(
    old_templates: Templates,
    changeover: date,
    paid_through: date | None,
    closures: ClosureCalendar,
) -> int:
    """Open occurrences of the old classes in ``[changeover, paid_through]``."""
    if paid_through is None or changeover > paid_through:
        return 0
    return count_scheduled_sessions(changeover, paid_through, old_templates, closures)


def settlement_key(
    enrolment_id: UUID,
    new_plan_id: UUID,
    changeover: date,
    paid_through: date | None,
    template_ids: Iterable[UUID],
) -> str:
    """Content-addressed idempotency key for one settlement."""
    parts = [
        "class-change",
        str(enrolment_id),
        str(new_plan_id),
        changeover.isoformat(),
        paid_through.isoformat() if paid_through else "none",
        ",".join(sorted(str(t) for t in template_ids)),
    ]
    return hashlib.sha256("|".join(parts).encode("utf-8")).hexdigest()


def quote_settlement(
    enrolment_id: UUID,
    old_plan: EnrolmentPlan,
    new_plan: EnrolmentPlan,
    changeover: date,
    paid_through: date | None,
    chargeable: int,
    new_template_ids: Iterable[UUID],
) -> SettlementQuote:
    """Price the remaining paid window on both plans."""
    old_cost = cost_per_class(old_plan)
    new_cost = cost_per_class(new_plan)
    old_value = round_cents(chargeable * old_cost)
    new_value = round_cents(chargeable * new_cost)

    return SettlementQuote(
        idempotency_key=settlement_key(
            enrolment_id, new_plan.id, changeover, paid_through, new_template_ids
        ),
        enrolment_id=enrolment_id,
        new_plan_id=new_plan.id,
        changeover_date=changeover,
        paid_through_date=paid_through,
        chargeable_classes=chargeable,
        old_cost_per_class=str(old_cost),
        new_cost_per_class=str(new_cost),
        old_value_cents=old_value,
        new_value_cents=new_value,
        difference_cents=new_value - old_value,
    )
