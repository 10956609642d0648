"""
Weekly coverage computation.

A weekly plan buys an entitlement of N sessions. Paid-through is the day of
the Nth open session counted from the enrolment start; next-due is the
(N+1)th. Closed sessions (holidays in scope, cancellations) are skipped, so
every closure pushes coverage one session further out.
"""

from dataclasses import dataclass
from datetime import date, timedelta
from typing import Iterable

from core.billing.closures import ClosureCalendar
from core.billing.occurrences import (
    OccurrenceTemplate,
    as_occurrence_templates,
    iter_occurrences,
    resolve_occurrence_horizon,
)
from core.models.schedule import ClassTemplate

FALLBACK_HORIZON_DAYS = 365

Templates = Iterable[ClassTemplate | OccurrenceTemplate]


def _walk_limit(
    start: date,
    end: date | None,
    sessions: int,
    sessions_per_week: int,
    fallback_days: int,
) -> date:
    if end is not None:
        return end
    projected = resolve_occurrence_horizon(start, None, sessions, sessions_per_week)
    return projected + timedelta(days=fallback_days)


def count_scheduled_sessions(
    start: date,
    end: date | None,
    templates: Templates,
    closures: ClosureCalendar | None = None,
) -> int:
    """Open sessions in ``[start, end]``. Zero for an empty or missing window."""
    if end is None or end < start:
        return 0
    skip = closures.is_closed if closures is not None else None
    return sum(1 for _ in iter_occurrences(templates, start, end, skip))


def compute_coverage_end_day(
    start: date,
    templates: Templates,
    closures: ClosureCalendar | None,
    entitlement_sessions: int,
    end: date | None = None,
    fallback_days: int = FALLBACK_HORIZON_DAYS,
) -> date | None:
    """
    Day of the last session an entitlement pays for.

    Returns None when the entitlement is not positive or no template has a
    day. The walk stops at ``end`` when given; otherwise it is bounded by the
    projected horizon plus ``fallback_days``.
    """
    walkers = as_occurrence_templates(templates)
    if entitlement_sessions <= 0 or not any(t.day_of_week is not None for t in walkers):
        return None

    limit = _walk_limit(start, end, entitlement_sessions, len(walkers), fallback_days)
    skip = closures.is_closed if closures is not None else None

    remaining = entitlement_sessions
    last_covered = None
    for occurrence in iter_occurrences(walkers, start, limit, skip):
        last_covered = occurrence.day
        remaining -= 1
        if remaining <= 0:
            break
    return last_covered


def next_scheduled_day(
    after: date,
    templates: Templates,
    closures: ClosureCalendar | None = None,
    end: date | None = None,
    fallback_days: int = FALLBACK_HORIZON_DAYS,
) -> date | None:
    """First open session strictly after ``after``, or None past ``end``."""
    start = after + timedelta(days=1)
    limit = end if end is not None else start + timedelta(days=fallback_days)
    skip = closures.is_closed if closures is not None else None
    for occurrence in iter_occurrences(templates, start, limit, skip):
        return occurrence.day
    return None


def propose_weekly_paid_through(
    start: date,
    base_paid_through: date | None,
    templates: Templates,
    closures: ClosureCalendar,
    end: date | None = None,
    closures_before: ClosureCalendar | None = None,
    entitlement_sessions: int | None = None,
) -> date | None:
    """
    Re-derive a weekly paid-through date against the current closures.

    The entitlement is what the existing paid window bought: the open
    sessions in ``[start, base_paid_through]`` counted against
    ``closures_before`` (the calendar before the triggering change) or, when
    that is not supplied, the current calendar. An explicit
    ``entitlement_sessions`` wins over both.

    A paid window with no open sessions keeps its base date.
    """
    if base_paid_through is None and not entitlement_sessions:
        return None

    if entitlement_sessions is None:
        entitlement_sessions = count_scheduled_sessions(
            start, base_paid_through, templates, closures_before or closures
        )
    if entitlement_sessions <= 0:
        return base_paid_through

    proposed = compute_coverage_end_day(start, templates, closures, entitlement_sessions, end)
    if proposed is None:
        return base_paid_through
    return proposed


def replay_paid_through_on_new_templates(
    old_start: date,
    old_paid_through: date | None,
    old_templates: Templates,
    old_closures: ClosureCalendar | None,
    new_templates: Templates,
    new_closures: ClosureCalendar | None,
    changeover: date,
    end: date | None = None,
) -> date | None:
    """
    Carry a paid window across a class change.

    Counts the sessions the old payment still covers from the changeover
    (or the old start, if later) through the old paid-through date on the
    old classes, then spends that many sessions on the new classes from the
    changeover.
    """
    if old_paid_through is None:
        return None
    count_from = max(old_start, changeover)
    sessions = count_scheduled_sessions(count_from, old_paid_through, old_templates, old_closures)
    if sessions <= 0:
        return None
    return compute_coverage_end_day(changeover, new_templates, new_closures, sessions, end)


@dataclass(frozen=True)
class WeeklyCoverage:
    paid_through: date | None
    next_due: date | None
    covered: int


def compute_weekly_coverage(
    start: date,
    end: date | None,
    paid_through: date | None,
    templates: Templates,
    closures: ClosureCalendar,
) -> WeeklyCoverage:
    """
    Read-side view of a weekly enrolment.

    With nothing paid, next-due is the first open session on or after the
    start. Next-due is None once it would fall past the end date.
    """
    if end is not None and start > end:
        return WeeklyCoverage(paid_through=None, next_due=None, covered=0)

    if paid_through is None:
        next_due = next_scheduled_day(start - timedelta(days=1), templates, closures, end)
        return WeeklyCoverage(paid_through=None, next_due=next_due, covered=0)

    covered = count_scheduled_sessions(start, paid_through, templates, closures)
    next_due = next_scheduled_day(paid_through, templates, closures, end)
    return WeeklyCoverage(paid_through=paid_through, next_due=next_due, covered=covered)
