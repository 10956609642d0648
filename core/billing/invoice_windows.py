"""
Coverage windows for invoices raised ahead of, or behind, the paid date.

Pay-ahead buys whole periods from the first unpaid session that is not in
the past. Catch-up buys enough periods to reach today. Block plans buy
credits, and their window is where those credits would run out on the
current calendar.

Every window also carries ``coverage_end_base``: the same entitlement walked
with no closures, so a caller can show how far holidays pushed the end.
"""

import math
from datetime import date, timedelta

from core.billing.closures import ClosureCalendar
from core.billing.coverage import (
    Templates,
    compute_coverage_end_day,
    count_scheduled_sessions,
    next_scheduled_day,
)
from core.billing.occurrences import OccurrenceTemplate, as_occurrence_templates
from core.models.coverage import CoverageWindow

NO_CLOSURES = ClosureCalendar()


def limit_weekly_templates(templates: Templates, sessions_per_week: int | None) -> list[OccurrenceTemplate]:
    """
    One template per weekday, at most ``sessions_per_week`` of them.

    Earlier weekdays win when there are more days than the plan pays for.
    """
    by_day: dict[int, OccurrenceTemplate] = {}
    for template in as_occurrence_templates(templates):
        if template.day_of_week is not None:
            by_day.setdefault(template.day_of_week, template)
    limited = [by_day[day] for day in sorted(by_day)]
    if sessions_per_week and sessions_per_week > 0:
        return limited[:sessions_per_week]
    return limited


def period_sessions(duration_weeks: int | None, sessions_per_week: int | None) -> int:
    """Sessions in one weekly billing period. A missing duration is one week."""
    weeks = duration_weeks if duration_weeks and duration_weeks > 0 else 1
    cadence = sessions_per_week if sessions_per_week and sessions_per_week > 0 else 1
    return weeks * cadence


def first_unpaid_day(
    start: date,
    paid_through: date | None,
    templates: Templates,
    closures: ClosureCalendar,
    end: date | None = None,
    not_before: date | None = None,
) -> date | None:
    """First open session after ``paid_through`` (or from ``start``), on or after ``not_before``."""
    base = paid_through + timedelta(days=1) if paid_through is not None else start
    if not_before is not None and not_before > base:
        base = not_before
    return next_scheduled_day(base - timedelta(days=1), templates, closures, end)


def weekly_pay_ahead_window(
    start: date,
    end: date | None,
    paid_through: date | None,
    templates: Templates,
    closures: ClosureCalendar,
    today: date,
    periods: int,
    duration_weeks: int | None = None,
    sessions_per_week: int | None = None,
) -> CoverageWindow:
    """
    Window for ``periods`` consecutive weekly periods paid in advance.

    Each period starts on the next open session after the previous one
    ends. Periods that would start past the enrolment end are dropped, so
    ``periods`` on the result can be smaller than asked for.
    """
    if periods <= 0:
        return CoverageWindow()

    walkers = limit_weekly_templates(templates, sessions_per_week)
    first = first_unpaid_day(start, paid_through, walkers, closures, end, not_before=today)
    if first is None:
        return CoverageWindow()

    sessions = period_sessions(duration_weeks, sessions_per_week)
    period_start = first
    coverage_end = None
    bought = 0
    for _ in range(periods):
        period_end = compute_coverage_end_day(period_start, walkers, closures, sessions, end)
        if period_end is None:
            break
        coverage_end = period_end
        bought += 1
        period_start = next_scheduled_day(period_end, walkers, closures, end)
        if period_start is None:
            break

    if bought == 0:
        return CoverageWindow()

    return CoverageWindow(
        periods=bought,
        coverage_start=first,
        coverage_end=coverage_end,
        coverage_end_base=compute_coverage_end_day(first, walkers, NO_CLOSURES, sessions * bought, end),
    )


def weekly_blocks_behind(
    start: date,
    end: date | None,
    paid_through: date | None,
    templates: Templates,
    closures: ClosureCalendar,
    today: date,
    duration_weeks: int | None = None,
    sessions_per_week: int | None = None,
) -> int:
    """Weekly periods needed to pay up to and including today."""
    walkers = limit_weekly_templates(templates, sessions_per_week)
    first = first_unpaid_day(start, paid_through, walkers, closures, end)
    if first is None or today < first:
        return 0

    until = min(end, today) if end is not None else today
    scheduled = count_scheduled_sessions(first, until, walkers, closures)
    if scheduled <= 0:
        return 0
    return math.ceil(scheduled / period_sessions(duration_weeks, sessions_per_week))


def weekly_catch_up_window(
    start: date,
    end: date | None,
    paid_through: date | None,
    templates: Templates,
    closures: ClosureCalendar,
    blocks: int,
    duration_weeks: int | None = None,
    sessions_per_week: int | None = None,
) -> CoverageWindow:
    """Window for ``blocks`` weekly periods counted from the first unpaid session."""
    if blocks <= 0:
        return CoverageWindow()

    walkers = limit_weekly_templates(templates, sessions_per_week)
    first = first_unpaid_day(start, paid_through, walkers, closures, end)
    if first is None:
        return CoverageWindow()

    sessions = period_sessions(duration_weeks, sessions_per_week) * blocks
    return CoverageWindow(
        periods=blocks,
        coverage_start=first,
        coverage_end=compute_coverage_end_day(first, walkers, closures, sessions, end),
        coverage_end_base=compute_coverage_end_day(first, walkers, NO_CLOSURES, sessions, end),
    )


def block_coverage_window(
    start: date,
    end: date | None,
    paid_through: date | None,
    templates: Templates,
    closures: ClosureCalendar,
    block_class_count: int | None,
    blocks: int = 1,
) -> CoverageWindow:
    """
    Credits for ``blocks`` blocks and where they would run out.

    The window starts at the first open session after the current
    paid-through. Without any open session ahead only the credits are set.
    """
    size = max(block_class_count or 1, 1)
    if blocks <= 0:
        return CoverageWindow(credits_purchased=0)

    credits = size * blocks
    first = first_unpaid_day(start, paid_through, templates, closures, end)
    if first is None:
        return CoverageWindow(periods=blocks, credits_purchased=credits)

    return CoverageWindow(
        periods=blocks,
        coverage_start=first,
        coverage_end=compute_coverage_end_day(first, templates, closures, credits, end),
        coverage_end_base=compute_coverage_end_day(first, templates, NO_CLOSURES, credits, end),
        credits_purchased=credits,
    )


def block_blocks_behind(
    remaining_credits: int | None,
    paid_through: date | None,
    block_class_count: int | None,
    today: date,
) -> int:
    """Blocks needed to bring a credit balance back above zero."""
    if paid_through is not None and paid_through >= today:
        return 0
    remaining = remaining_credits or 0
    if remaining > 0:
        return 0
    needed = max(1 - remaining, 1)
    return math.ceil(needed / max(block_class_count or 1, 1))
