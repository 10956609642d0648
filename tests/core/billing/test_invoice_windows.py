"""Tests for pay-ahead, catch-up and block invoice windows."""

from datetime import date

from core.billing.closures import ClosureCalendar
from core.billing.invoice_windows import (
    block_blocks_behind,
    block_coverage_window,
    limit_weekly_templates,
    weekly_blocks_behind,
    weekly_catch_up_window,
    weekly_pay_ahead_window,
)
from core.models import CoverageWindow

MONDAY = 0
WEDNESDAY = 2
SATURDAY = 5

EMPTY = ClosureCalendar()

START = date(2026, 1, 5)


class TestLimitWeeklyTemplates:

    def test_one_per_weekday_earliest_first(self, make_template):
        first_monday = make_template(MONDAY)
        templates = [make_template(WEDNESDAY), first_monday, make_template(MONDAY), make_template(SATURDAY)]

        limited = limit_weekly_templates(templates, 2)

        assert [t.day_of_week for t in limited] == [MONDAY, WEDNESDAY]
        assert limited[0].template_id == first_monday.id

    def test_no_cadence_keeps_every_day(self, make_template):
        templates = [make_template(SATURDAY), make_template(MONDAY), make_template(None)]

        assert [t.day_of_week for t in limit_weekly_templates(templates, None)] == [MONDAY, SATURDAY]


# =============================================================================
# BLOCK PLANS
# =============================================================================


class TestBlockCoverageWindow:

    def test_eight_credits_from_the_start(self, make_template):
        window = block_coverage_window(date(2026, 1, 12), None, None, [make_template()], EMPTY, 8)

        assert window == CoverageWindow(
            periods=1,
            coverage_start=date(2026, 1, 12),
            coverage_end=date(2026, 3, 2),
            coverage_end_base=date(2026, 3, 2),
            credits_purchased=8,
        )

    def test_holiday_pushes_the_end(self, make_template, make_holiday):
        closures = ClosureCalendar.build(holidays=[make_holiday(date(2026, 1, 26))])

        window = block_coverage_window(date(2026, 1, 12), None, None, [make_template()], closures, 8)

        assert window.coverage_end == date(2026, 3, 9)
        assert window.coverage_end_base == date(2026, 3, 2)

    def test_continues_after_paid_through(self, make_template):
        window = block_coverage_window(
            date(2026, 1, 12), None, date(2026, 3, 2), [make_template()], EMPTY, 4, blocks=2
        )

        assert window.credits_purchased == 8
        assert window.coverage_start == date(2026, 3, 9)
        assert window.coverage_end == date(2026, 4, 27)

    def test_no_blocks(self, make_template):
        window = block_coverage_window(START, None, None, [make_template()], EMPTY, 8, blocks=0)

        assert window.periods == 0
        assert window.credits_purchased == 0


class TestBlockBlocksBehind:

    def test_paid_through_today_is_current(self):
        assert block_blocks_behind(-3, date(2026, 3, 2), 8, date(2026, 3, 2)) == 0

    def test_credits_left_is_current(self):
        assert block_blocks_behind(3, date(2026, 2, 2), 8, date(2026, 3, 2)) == 0

    def test_empty_balance_needs_one_block(self):
        assert block_blocks_behind(0, date(2026, 2, 2), 8, date(2026, 3, 2)) == 1
        assert block_blocks_behind(None, None, 8, date(2026, 3, 2)) == 1

    def test_debt_spills_into_a_second_block(self):
        """Nine classes owed plus one to attend is ten credits: two blocks of eight."""
        assert block_blocks_behind(-9, date(2026, 2, 2), 8, date(2026, 3, 2)) == 2


# =============================================================================
# WEEKLY PAY-AHEAD
# =============================================================================


class TestWeeklyPayAheadWindow:

    def test_consecutive_periods(self, make_template):
        window = weekly_pay_ahead_window(
            START, None, date(2026, 2, 2), [make_template()], EMPTY,
            today=date(2026, 1, 20), periods=2, duration_weeks=4, sessions_per_week=1,
        )

        assert window.periods == 2
        assert window.coverage_start == date(2026, 2, 9)
        assert window.coverage_end == date(2026, 3, 30)
        assert window.coverage_end_base == date(2026, 3, 30)

    def test_starts_no_earlier_than_today(self, make_template):
        window = weekly_pay_ahead_window(
            START, None, date(2026, 1, 12), [make_template()], EMPTY,
            today=date(2026, 2, 4), periods=1, duration_weeks=4, sessions_per_week=1,
        )

        assert window.coverage_start == date(2026, 2, 9)
        assert window.coverage_end == date(2026, 3, 2)

    def test_holiday_extends_the_period(self, make_template, make_holiday):
        closures = ClosureCalendar.build(holidays=[make_holiday(date(2026, 2, 16))])

        window = weekly_pay_ahead_window(
            START, None, date(2026, 2, 2), [make_template()], closures,
            today=date(2026, 1, 20), periods=1, duration_weeks=4, sessions_per_week=1,
        )

        assert window.coverage_end == date(2026, 3, 9)
        assert window.coverage_end_base == date(2026, 3, 2)

    def test_missing_duration_is_one_week(self, make_template):
        window = weekly_pay_ahead_window(
            START, None, date(2026, 2, 2), [make_template()], EMPTY,
            today=date(2026, 1, 20), periods=3,
        )

        assert window.coverage_end == date(2026, 2, 23)

    def test_end_date_cuts_the_sequence(self, make_template):
        window = weekly_pay_ahead_window(
            START, date(2026, 3, 10), date(2026, 2, 2), [make_template()], EMPTY,
            today=date(2026, 1, 20), periods=3, duration_weeks=4, sessions_per_week=1,
        )

        assert window.periods == 2
        assert window.coverage_end == date(2026, 3, 9)

    def test_paid_to_the_end(self, make_template):
        window = weekly_pay_ahead_window(
            START, date(2026, 3, 2), date(2026, 3, 2), [make_template()], EMPTY,
            today=date(2026, 1, 20), periods=1, duration_weeks=4,
        )

        assert window == CoverageWindow()

    def test_cadence_limits_the_days_walked(self, make_template):
        """A once-a-week plan on two classes only pays for the Monday."""
        templates = [make_template(WEDNESDAY), make_template(MONDAY)]

        window = weekly_pay_ahead_window(
            START, None, None, templates, EMPTY,
            today=START, periods=1, duration_weeks=2, sessions_per_week=1,
        )

        assert window.coverage_start == date(2026, 1, 5)
        assert window.coverage_end == date(2026, 1, 12)


# =============================================================================
# WEEKLY CATCH-UP
# =============================================================================


class TestWeeklyCatchUp:

    def test_periods_to_reach_today(self, make_template):
        blocks = weekly_blocks_behind(
            START, None, date(2026, 1, 12), [make_template()], EMPTY,
            today=date(2026, 2, 4), duration_weeks=2, sessions_per_week=1,
        )

        assert blocks == 2

    def test_next_session_still_ahead(self, make_template):
        blocks = weekly_blocks_behind(
            START, None, date(2026, 2, 2), [make_template()], EMPTY,
            today=date(2026, 2, 4), duration_weeks=2,
        )

        assert blocks == 0

    def test_end_date_caps_the_count(self, make_template):
        blocks = weekly_blocks_behind(
            START, date(2026, 1, 26), date(2026, 1, 12), [make_template()], EMPTY,
            today=date(2026, 3, 2), duration_weeks=2, sessions_per_week=1,
        )

        assert blocks == 1

    def test_catch_up_window(self, make_template):
        window = weekly_catch_up_window(
            START, None, date(2026, 1, 12), [make_template()], EMPTY,
            blocks=2, duration_weeks=2, sessions_per_week=1,
        )

        assert window.periods == 2
        assert window.coverage_start == date(2026, 1, 19)
        assert window.coverage_end == date(2026, 2, 9)

    def test_nothing_to_catch_up(self, make_template):
        window = weekly_catch_up_window(START, None, None, [make_template()], EMPTY, blocks=0)

        assert window == CoverageWindow()
