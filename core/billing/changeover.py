"""Validation and capacity rules for moving an enrolment to a new plan or class set."""

from datetime import date, timedelta
from typing import Iterable
from uuid import UUID

from core.billing.occurrences import iter_occurrences
from core.exceptions import CapacityExceededError, ValidationError
from core.models.enrolment import Enrolment, EnrolmentStatus
from core.models.plan import BillingType, EnrolmentPlan
from core.models.schedule import ClassTemplate

SATURDAY = 5

BLOCKING_STATUSES = frozenset({EnrolmentStatus.ACTIVE, EnrolmentStatus.PAUSED})


def overlaps(a_start: date, a_end: date | None, b_start: date, b_end: date | None) -> bool:
    """Inclusive window overlap. A missing end is open-ended."""
    a_end = a_end or date.max
    b_end = b_end or date.max
    return a_start <= b_end and b_start <= a_end


def validate_change_request(
    enrolment: Enrolment,
    new_plan: EnrolmentPlan,
    templates: list[ClassTemplate],
    changeover: date,
) -> None:
    """
    Reject a change that cannot be applied.

    Raises:
        ValidationError: Inactive enrolment, changeover outside its window,
            or classes that do not fit the plan.
    """
    if enrolment.status != EnrolmentStatus.ACTIVE:
        raise ValidationError(f"Enrolment {enrolment.id} is {enrolment.status.value}, not ACTIVE")
    if changeover < enrolment.start_date:
        raise ValidationError("Changeover date is before the enrolment start")
    if enrolment.end_date is not None and changeover > enrolment.end_date:
        raise ValidationError("Changeover date is after the enrolment end")
    if not templates:
        raise ValidationError("Select at least one class")

    for template in templates:
        if not template.active:
            raise ValidationError(f"Class {template.id} is not active")
        if template.day_of_week is None:
            raise ValidationError(f"Class {template.id} has no day of week")
        if new_plan.level_id is not None and template.level_id != new_plan.level_id:
            raise ValidationError("Selected classes must match the plan's level")
        if template.end_date is not None and template.end_date < changeover:
            raise ValidationError(f"Class {template.id} has ended")
        if new_plan.is_saturday_only and template.day_of_week != SATURDAY:
            raise ValidationError("Saturday-only plans can only use Saturday classes")

    if new_plan.billing_type == BillingType.PER_WEEK and new_plan.sessions_per_week:
        if len(templates) != new_plan.sessions_per_week:
            raise ValidationError(
                f"Plan expects {new_plan.sessions_per_week} classes per week, "
                f"{len(templates)} selected"
            )


def find_duplicate_enrolment(
    existing: Iterable[Enrolment],
    template_ids: Iterable[UUID],
    start: date,
    end: date | None,
    ignore_ids: set[UUID] = frozenset(),
) -> Enrolment | None:
    """A blocking enrolment already attending one of the classes in the window."""
    wanted = set(template_ids)
    for enrolment in existing:
        if enrolment.id in ignore_ids or enrolment.status not in BLOCKING_STATUSES:
            continue
        if not wanted.intersection(enrolment.template_ids):
            continue
        if overlaps(start, end, enrolment.start_date, enrolment.end_date):
            return enrolment
    return None


def capacity_window_end(
    plan: EnrolmentPlan,
    start: date,
    window_end: date | None,
    template_end: date | None,
    horizon_weeks: int = 8,
) -> date:
    """Last day capacity is checked for: the enrolment end, or a bounded horizon."""
    end = window_end
    if end is None and plan.billing_type == BillingType.PER_WEEK:
        weeks = plan.duration_weeks if plan.duration_weeks and plan.duration_weeks > 0 else horizon_weeks
        end = start + timedelta(weeks=weeks)
    if end is None:
        end = template_end or start + timedelta(weeks=horizon_weeks)
    if template_end is not None and end > template_end:
        end = template_end
    return end


def roster_count(enrolments: Iterable[Enrolment], template_id: UUID, day: date) -> int:
    """Enrolments attending ``template_id`` on ``day``."""
    return sum(
        1
        for enrolment in enrolments
        if template_id in enrolment.template_ids
        and enrolment.start_date <= day
        and (enrolment.end_date is None or day <= enrolment.end_date)
    )


def find_capacity_breach(
    template: ClassTemplate,
    start: date,
    end: date,
    roster: list[Enrolment],
    additional_seats: int = 1,
) -> CapacityExceededError | None:
    """
    First occurrence in ``[start, end]`` that adding seats would overfill.

    Templates without a capacity are unlimited.
    """
    if template.capacity is None:
        return None
    for occurrence in iter_occurrences([template], start, end):
        current = roster_count(roster, template.id, occurrence.day)
        projected = current + additional_seats
        if projected > template.capacity:
            return CapacityExceededError(
                template_id=template.id,
                day=occurrence.day,
                capacity=template.capacity,
                current=current,
                projected=projected,
            )
    return None
