"""
Closed days: holidays (ranges, optionally scoped) and single cancellations.

A ``ClosureCalendar`` answers "is this template closed on this day" and is
handed to the occurrence walker as its skip predicate.
"""

from dataclasses import dataclass, field
from datetime import date, timedelta
from typing import Iterable
from uuid import UUID

from core.billing.occurrences import OccurrenceTemplate
from core.models.schedule import ClassCancellation, Holiday


@dataclass(frozen=True)
class ClosureCalendar:
    """Holidays plus cancelled (template, day) pairs."""

    holidays: tuple[Holiday, ...] = ()
    cancellations: frozenset[tuple[UUID, date]] = field(default_factory=frozenset)

    @classmethod
    def build(
        cls,
        holidays: Iterable[Holiday] = (),
        cancellations: Iterable[ClassCancellation | tuple[UUID, date]] = (),
    ) -> "ClosureCalendar":
        pairs = set()
        for cancellation in cancellations:
            if isinstance(cancellation, ClassCancellation):
                pairs.add((cancellation.template_id, cancellation.date))
            else:
                pairs.add(tuple(cancellation))
        return cls(holidays=tuple(holidays), cancellations=frozenset(pairs))

    def is_cancelled(self, template_id: UUID, day: date) -> bool:
        return (template_id, day) in self.cancellations

    def is_holiday(self, template: OccurrenceTemplate, day: date) -> bool:
        return any(
            holiday.covers(day) and holiday.applies_to(template.template_id, template.level_id)
            for holiday in self.holidays
        )

    def is_closed(self, template: OccurrenceTemplate, day: date) -> bool:
        """Skip predicate for the occurrence walker."""
        return self.is_cancelled(template.template_id, day) or self.is_holiday(template, day)


def holiday_day_keys(holidays: Iterable[Holiday], start: date, end: date) -> set[date]:
    """Every day in ``[start, end]`` covered by at least one holiday."""
    closed = set()
    for holiday in holidays:
        day = max(holiday.start_date, start)
        last = min(holiday.end_date, end)
        while day <= last:
            closed.add(day)
            day += timedelta(days=1)
    return closed


def count_full_week_closures(window_start: date, window_end: date, holidays: Iterable[Holiday]) -> int:
    """
    Number of whole weeks closed inside the window.

    Closed days are grouped into runs of consecutive days; each run
    contributes ``len(run) // 7``. A lone public holiday contributes nothing,
    a closed weekday block joined to its weekends can contribute a week.
    """
    if window_start > window_end:
        return 0

    closed = sorted(holiday_day_keys(holidays, window_start, window_end))
    if not closed:
        return 0

    weeks = 0
    run = 1
    for previous, current in zip(closed, closed[1:]):
        if current - previous == timedelta(days=1):
            run += 1
        else:
            weeks += run // 7
            run = 1
    weeks += run // 7
    return weeks
