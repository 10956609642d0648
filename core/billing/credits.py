"""
Credit ledger arithmetic for per-class and block plans.

The ledger is the only source of truth. Consumption is deterministic: every
open scheduled occurrence up to the as-of day owns exactly one CONSUME event,
keyed by ``attendance_key``. A consumed occurrence that later closes (a
cancellation, a retroactive holiday) is refunded with a CANCELLATION_CREDIT
carrying the same key; if it reopens, the refund is reversed with a
MANUAL_ADJUST of -1. Nothing edits or deletes an event.
"""

from dataclasses import dataclass
from datetime import date, timedelta
from typing import Iterable
from uuid import UUID

from core.billing.closures import ClosureCalendar
from core.billing.coverage import Templates
from core.billing.occurrences import (
    CreditConsumption,
    Occurrence,
    as_occurrence_templates,
    build_occurrence_schedule,
    consume_occurrences_for_credits,
    iter_occurrences,
)
from core.models.credit_event import CreditEvent, CreditEventType


def attendance_key(template_id: UUID, day: date) -> str:
    """Stable identity of one occurrence within an enrolment's ledger."""
    return f"{template_id}:{day.isoformat()}"


def credit_balance(events: Iterable[CreditEvent], as_of: date | None = None) -> int:
    """Signed sum of deltas, optionally bounded to events on or before ``as_of``."""
    return sum(
        event.credits_delta
        for event in events
        if as_of is None or event.occurred_on <= as_of
    )


def consumption_window_end(as_of: date, end_date: date | None) -> date:
    return min(as_of, end_date) if end_date is not None else as_of


def plan_consumption_backfill(
    start: date,
    end_date: date | None,
    as_of: date,
    templates: Templates,
    closures: ClosureCalendar,
    existing_keys: set[str],
) -> list[Occurrence]:
    """
    Occurrences up to ``as_of`` that still need a CONSUME event.

    Running the plan again after its events are written returns nothing.
    """
    window_end = consumption_window_end(as_of, end_date)
    return [
        occurrence
        for occurrence in iter_occurrences(templates, start, window_end, closures.is_closed)
        if attendance_key(occurrence.template_id, occurrence.day) not in existing_keys
    ]


@dataclass(frozen=True)
class RefundAdjustment:
    """A ledger correction for one consumed occurrence."""

    attendance_key: str
    day: date
    credits_delta: int
    outside_window: bool = False

    @property
    def event_type(self) -> CreditEventType:
        if self.credits_delta > 0:
            return CreditEventType.CANCELLATION_CREDIT
        return CreditEventType.MANUAL_ADJUST

    @property
    def note(self) -> str:
        if self.credits_delta < 0:
            return "Class reopened"
        if self.outside_window:
            return "Class after enrolment end"
        return "Class closed after attendance"


def plan_closure_refunds(
    events: Iterable[CreditEvent],
    closures: ClosureCalendar,
    templates: Templates,
    end_date: date | None = None,
) -> list[RefundAdjustment]:
    """
    Corrections that make each consumed occurrence net to the right value.

    A consumed occurrence that is now closed, or falls after ``end_date``
    because the enrolment was ended earlier, should carry a net refund of +1;
    an open one should carry 0. Returns the deltas needed to get there.
    """
    walkers = {t.template_id: t for t in as_occurrence_templates(templates)}
    consumed: dict[str, CreditEvent] = {}
    refunded: dict[str, int] = {}

    for event in events:
        if not event.attendance_key:
            continue
        if event.type == CreditEventType.CONSUME:
            consumed[event.attendance_key] = event
        elif event.type in (CreditEventType.CANCELLATION_CREDIT, CreditEventType.MANUAL_ADJUST):
            refunded[event.attendance_key] = refunded.get(event.attendance_key, 0) + event.credits_delta

    adjustments = []
    for key, event in sorted(consumed.items(), key=lambda item: (item[1].occurred_on, item[0])):
        template_id = UUID(key.split(":", 1)[0])
        template = walkers.get(template_id)
        outside = end_date is not None and event.occurred_on > end_date
        closed = outside or (template is not None and closures.is_closed(template, event.occurred_on))
        target = 1 if closed else 0
        delta = target - refunded.get(key, 0)
        if delta:
            adjustments.append(RefundAdjustment(
                attendance_key=key,
                day=event.occurred_on,
                credits_delta=delta,
                outside_window=outside,
            ))
    return adjustments


def projection_start(as_of: date, enrolment_start: date) -> date:
    """First day the projection may spend credits on. The as-of day is already consumed."""
    return max(as_of + timedelta(days=1), enrolment_start)


def project_credit_coverage(
    as_of: date,
    enrolment_start: date,
    end_date: date | None,
    balance: int,
    templates: Templates,
    closures: ClosureCalendar,
    sessions_per_week: int | None,
    buffer_weeks: int = 4,
) -> CreditConsumption:
    """
    Spend the balance against future open occurrences.

    The walk horizon covers ``balance + sessions_per_week`` occurrences so
    that the first unpaid session is always found when one exists.
    """
    start = projection_start(as_of, enrolment_start)
    if end_date is not None and start > end_date:
        return CreditConsumption(paid_through=None, next_due=None, remaining=balance, covered=0)

    cadence = max(1, sessions_per_week or 1)
    needed = max(balance + cadence, 1)
    occurrences = build_occurrence_schedule(
        templates,
        start,
        end=end_date,
        skip=closures.is_closed,
        occurrences_needed=needed,
        sessions_per_week=cadence,
        buffer_weeks=buffer_weeks,
    )
    return consume_occurrences_for_credits(occurrences, balance)
