"""
Calendar/occurrence walker.

Enumerates the scheduled occurrences of one or more weekly class templates
within a window of day keys. Every walk is bounded: either by an explicit end
or by a horizon projected from the number of occurrences needed.

An occurrence is one session of one template on one day. Two templates that
meet on the same day are two occurrences (two classes, two credits); the
same template listed twice is still one.
"""

import math
from dataclasses import dataclass
from datetime import date, timedelta
from typing import Callable, Iterable, Iterator
from uuid import UUID

from core.models.schedule import ClassTemplate

DEFAULT_BUFFER_WEEKS = 4

SkipPredicate = Callable[["OccurrenceTemplate", date], bool]


@dataclass(frozen=True)
class OccurrenceTemplate:
    """The parts of a class template a calendar walk needs."""

    template_id: UUID
    day_of_week: int | None
    start_date: date | None = None
    end_date: date | None = None
    level_id: UUID | None = None

    @classmethod
    def from_template(cls, template: ClassTemplate) -> "OccurrenceTemplate":
        return cls(
            template_id=template.id,
            day_of_week=template.day_of_week,
            start_date=template.start_date,
            end_date=template.end_date,
            level_id=template.level_id,
        )


@dataclass(frozen=True, order=True)
class Occurrence:
    """One scheduled session. Orders by day, then template."""

    day: date
    template_id: UUID


def as_occurrence_templates(
    templates: Iterable[ClassTemplate | OccurrenceTemplate],
) -> list[OccurrenceTemplate]:
    """Normalise stored templates to walker templates, dropping duplicates."""
    seen: dict[UUID, OccurrenceTemplate] = {}
    for template in templates:
        if isinstance(template, ClassTemplate):
            template = OccurrenceTemplate.from_template(template)
        seen.setdefault(template.template_id, template)
    return list(seen.values())


def resolve_occurrence_horizon(
    start: date,
    end: date | None,
    occurrences_needed: int,
    sessions_per_week: int | None,
    buffer_weeks: int = DEFAULT_BUFFER_WEEKS,
) -> date:
    """
    Last day a walk needs to visit to find ``occurrences_needed`` sessions.

    Projects ``ceil(needed / sessions_per_week) + buffer_weeks`` weeks past
    ``start``, capped at ``end``. Re-derive whenever the count changes.
    """
    cadence = max(1, sessions_per_week or 1)
    weeks = max(1, math.ceil(max(occurrences_needed, 1) / cadence))
    projected = start + timedelta(days=(weeks + buffer_weeks) * 7)
    if end is not None and projected > end:
        return end
    return projected


def first_weekday_on_or_after(start: date, day_of_week: int) -> date:
    """First date on or after ``start`` falling on ``day_of_week`` (0 = Monday)."""
    offset = (day_of_week % 7 - start.weekday()) % 7
    return start + timedelta(days=offset)


def _template_dates(template: OccurrenceTemplate, start: date, end: date) -> Iterator[date]:
    if template.day_of_week is None:
        return
    window_start = max(start, template.start_date) if template.start_date else start
    window_end = min(end, template.end_date) if template.end_date else end
    day = first_weekday_on_or_after(window_start, template.day_of_week)
    while day <= window_end:
        yield day
        day += timedelta(days=7)


def iter_occurrences(
    templates: Iterable[ClassTemplate | OccurrenceTemplate],
    start: date,
    end: date,
    skip: SkipPredicate | None = None,
) -> Iterator[Occurrence]:
    """
    Lazily yield occurrences in ``[start, end]``, sorted ascending.

    Each template is clamped to its own start/end window. ``skip`` receives
    the template and day and returns True for closed occurrences. The
    generator is finite and restartable: calling again with the same inputs
    yields the same sequence.
    """
    if start > end:
        return
    walkers = as_occurrence_templates(templates)
    if not walkers:
        return

    # One week at a time keeps the merge lazy without materialising the window.
    week_start = start
    while week_start <= end:
        week_end = min(week_start + timedelta(days=6), end)
        batch = []
        for template in walkers:
            for day in _template_dates(template, week_start, week_end):
                if skip is not None and skip(template, day):
                    continue
                batch.append(Occurrence(day=day, template_id=template.template_id))
        batch.sort()
        yield from batch
        week_start = week_end + timedelta(days=1)


def build_occurrence_schedule(
    templates: Iterable[ClassTemplate | OccurrenceTemplate],
    start: date,
    end: date | None = None,
    skip: SkipPredicate | None = None,
    occurrences_needed: int = 0,
    sessions_per_week: int | None = None,
    horizon: date | None = None,
    buffer_weeks: int = DEFAULT_BUFFER_WEEKS,
) -> list[Occurrence]:
    """
    Materialise the occurrences from ``start`` up to a bounded limit.

    The limit is ``horizon`` when given, else the horizon projected from
    ``occurrences_needed`` (capped at ``end``).
    """
    limit = horizon or resolve_occurrence_horizon(
        start, end, occurrences_needed, sessions_per_week, buffer_weeks
    )
    if end is not None and limit > end:
        limit = end
    return list(iter_occurrences(templates, start, limit, skip))


@dataclass(frozen=True)
class CreditConsumption:
    """Result of spending a balance against upcoming occurrences."""

    paid_through: date | None
    next_due: date | None
    remaining: int
    covered: int


def consume_occurrences_for_credits(
    occurrences: Iterable[Occurrence],
    credits: int,
) -> CreditConsumption:
    """
    Spend one credit per occurrence, in order.

    The last occurrence paid for is ``paid_through``; the first one that
    could not be paid for is ``next_due``.
    """
    remaining = credits
    paid_through = None
    next_due = None
    covered = 0

    for occurrence in occurrences:
        if remaining <= 0:
            next_due = occurrence.day
            break
        paid_through = occurrence.day
        covered += 1
        remaining -= 1

    return CreditConsumption(
        paid_through=paid_through,
        next_due=next_due,
        remaining=remaining,
        covered=covered,
    )
