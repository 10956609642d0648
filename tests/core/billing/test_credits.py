"""Tests for credit ledger arithmetic: balances, consumption backfill, refunds, projection."""

from datetime import date

import pytest

from core.billing.closures import ClosureCalendar
from core.billing.credits import (
    attendance_key,
    credit_balance,
    plan_closure_refunds,
    plan_consumption_backfill,
    project_credit_coverage,
    projection_start,
)
from core.models import CreditEventType

MONDAY = 0
WEDNESDAY = 2

EMPTY = ClosureCalendar()


@pytest.fixture
def monday(make_template):
    return make_template(MONDAY)


class TestCreditBalance:

    def test_signed_sum(self, make_event):
        events = [
            make_event(10, date(2026, 1, 1)),
            make_event(-1, date(2026, 1, 5), CreditEventType.CONSUME),
            make_event(1, date(2026, 1, 6), CreditEventType.CANCELLATION_CREDIT),
            make_event(-2, date(2026, 1, 7), CreditEventType.MANUAL_ADJUST),
        ]
        assert credit_balance(events) == 8

    def test_bounded_by_as_of(self, make_event):
        events = [make_event(10, date(2026, 1, 1)), make_event(-1, date(2026, 1, 12), CreditEventType.CONSUME)]
        assert credit_balance(events, date(2026, 1, 11)) == 10
        assert credit_balance(events, date(2026, 1, 12)) == 9

    def test_empty_ledger(self):
        assert credit_balance([]) == 0


class TestAttendanceKey:

    def test_stable(self, monday):
        assert attendance_key(monday.id, date(2026, 1, 5)) == f"{monday.id}:2026-01-05"


# =============================================================================
# CONSUMPTION
# =============================================================================


class TestConsumptionBackfill:

    def test_one_per_open_occurrence_through_as_of(self, monday, make_holiday):
        closures = ClosureCalendar.build(holidays=[make_holiday(date(2026, 1, 12))])
        planned = plan_consumption_backfill(
            date(2026, 1, 5), None, date(2026, 1, 26), [monday], closures, set()
        )
        assert [o.day for o in planned] == [date(2026, 1, 5), date(2026, 1, 19), date(2026, 1, 26)]

    def test_rerun_after_write_is_empty(self, monday):
        """Backfill is idempotent once its keys exist."""
        first = plan_consumption_backfill(date(2026, 1, 5), None, date(2026, 1, 26), [monday], EMPTY, set())
        keys = {attendance_key(o.template_id, o.day) for o in first}
        assert plan_consumption_backfill(date(2026, 1, 5), None, date(2026, 1, 26), [monday], EMPTY, keys) == []

    def test_stops_at_end_date(self, monday):
        planned = plan_consumption_backfill(
            date(2026, 1, 5), date(2026, 1, 13), date(2026, 3, 1), [monday], EMPTY, set()
        )
        assert len(planned) == 2

    def test_two_classes_same_day_consume_two(self, make_template):
        templates = [make_template(MONDAY), make_template(MONDAY)]
        planned = plan_consumption_backfill(date(2026, 1, 5), None, date(2026, 1, 5), templates, EMPTY, set())
        assert len(planned) == 2


class TestClosureRefunds:

    def _consumed(self, make_event, template, day):
        return make_event(
            -1, day, CreditEventType.CONSUME, attendance_key=attendance_key(template.id, day)
        )

    def test_cancelled_consumption_is_refunded(self, monday, make_event):
        day = date(2026, 1, 12)
        events = [make_event(10, date(2026, 1, 1)), self._consumed(make_event, monday, day)]
        closures = ClosureCalendar.build(cancellations=[(monday.id, day)])

        refunds = plan_closure_refunds(events, closures, [monday])

        assert len(refunds) == 1
        assert refunds[0].credits_delta == 1
        assert refunds[0].event_type == CreditEventType.CANCELLATION_CREDIT
        assert refunds[0].attendance_key == attendance_key(monday.id, day)

    def test_reopened_occurrence_reverses_refund(self, monday, make_event):
        day = date(2026, 1, 12)
        key = attendance_key(monday.id, day)
        events = [
            self._consumed(make_event, monday, day),
            make_event(1, day, CreditEventType.CANCELLATION_CREDIT, attendance_key=key),
        ]

        refunds = plan_closure_refunds(events, EMPTY, [monday])

        assert [(r.credits_delta, r.event_type) for r in refunds] == [(-1, CreditEventType.MANUAL_ADJUST)]

    def test_settled_ledger_needs_nothing(self, monday, make_event):
        day = date(2026, 1, 12)
        key = attendance_key(monday.id, day)
        events = [
            self._consumed(make_event, monday, day),
            make_event(1, day, CreditEventType.CANCELLATION_CREDIT, attendance_key=key),
        ]
        closures = ClosureCalendar.build(cancellations=[(monday.id, day)])
        assert plan_closure_refunds(events, closures, [monday]) == []

    def test_retroactive_holiday_refunds(self, monday, make_event, make_holiday):
        day = date(2026, 1, 12)
        events = [self._consumed(make_event, monday, day)]
        closures = ClosureCalendar.build(holidays=[make_holiday(day)])
        assert [r.credits_delta for r in plan_closure_refunds(events, closures, [monday])] == [1]

    def test_cancel_reverse_cancel_conserves(self, monday, make_event):
        """Each round trip nets to zero; the balance only tracks the current state."""
        day = date(2026, 1, 12)
        key = attendance_key(monday.id, day)
        closed = ClosureCalendar.build(cancellations=[(monday.id, day)])
        events = [make_event(5, date(2026, 1, 1)), self._consumed(make_event, monday, day)]

        for closures in (closed, EMPTY, closed):
            for refund in plan_closure_refunds(events, closures, [monday]):
                events.append(
                    make_event(refund.credits_delta, refund.day, refund.event_type, attendance_key=key)
                )

        assert credit_balance(events) == 5

    def test_consumption_after_end_is_refunded(self, monday, make_event):
        kept, dropped = date(2026, 1, 12), date(2026, 1, 19)
        events = [self._consumed(make_event, monday, kept), self._consumed(make_event, monday, dropped)]

        refunds = plan_closure_refunds(events, EMPTY, [monday], end_date=date(2026, 1, 13))

        assert [(r.day, r.credits_delta) for r in refunds] == [(dropped, 1)]
        assert refunds[0].attendance_key == attendance_key(monday.id, dropped)
        assert refunds[0].note == "Class after enrolment end"

    def test_refund_after_end_is_not_repeated(self, monday, make_event):
        day = date(2026, 1, 19)
        key = attendance_key(monday.id, day)
        events = [
            self._consumed(make_event, monday, day),
            make_event(1, day, CreditEventType.CANCELLATION_CREDIT, attendance_key=key),
        ]
        assert plan_closure_refunds(events, EMPTY, [monday], end_date=date(2026, 1, 13)) == []


# =============================================================================
# PROJECTION
# =============================================================================


class TestProjectCreditCoverage:

    def test_projection_starts_after_as_of(self):
        assert projection_start(date(2026, 1, 5), date(2026, 1, 1)) == date(2026, 1, 6)
        assert projection_start(date(2026, 1, 5), date(2026, 2, 1)) == date(2026, 2, 1)

    def test_four_credits_skip_closed_mondays(self, monday, make_holiday):
        """Closed on Jan 12, Jan 19 and Feb 2: four credits reach Feb 23."""
        closures = ClosureCalendar.build(holidays=[
            make_holiday(date(2026, 1, 12)),
            make_holiday(date(2026, 1, 19)),
            make_holiday(date(2026, 2, 2)),
        ])
        result = project_credit_coverage(
            as_of=date(2026, 1, 5),
            enrolment_start=date(2026, 1, 5),
            end_date=None,
            balance=4,
            templates=[monday],
            closures=closures,
            sessions_per_week=1,
        )
        assert result.paid_through == date(2026, 2, 23)
        assert result.next_due == date(2026, 3, 2)
        assert result.covered == 4

    def test_zero_balance_due_on_next_occurrence(self, monday):
        result = project_credit_coverage(
            date(2026, 1, 5), date(2026, 1, 5), None, 0, [monday], EMPTY, 1
        )
        assert result.paid_through is None
        assert result.next_due == date(2026, 1, 12)

    def test_before_start_uses_first_class(self, monday):
        result = project_credit_coverage(
            date(2026, 1, 1), date(2026, 1, 12), None, 1, [monday], EMPTY, 1
        )
        assert result.paid_through == date(2026, 1, 12)
        assert result.next_due == date(2026, 1, 19)

    def test_ended_enrolment(self, monday):
        result = project_credit_coverage(
            date(2026, 3, 1), date(2026, 1, 5), date(2026, 2, 1), 3, [monday], EMPTY, 1
        )
        assert result.paid_through is None
        assert result.next_due is None
        assert result.remaining == 3

    def test_large_balance_finds_next_due(self, make_template):
        """The horizon grows with the balance."""
        templates = [make_template(MONDAY), make_template(WEDNESDAY)]
        result = project_credit_coverage(
            date(2026, 1, 4), date(2026, 1, 5), None, 40, templates, EMPTY, 2
        )
        assert result.covered == 40
        assert result.next_due is not None
        assert result.next_due > result.paid_through
