"""Tests for payment allocation planning."""

from datetime import datetime, timezone
from uuid import uuid4

import pytest

from core.billing.allocation import (
    aggregate_allocations,
    oldest_open_first,
    plan_manual_allocations,
    plan_oldest_open_first,
)
from core.exceptions import InvariantViolation, NotFoundError, ValidationError
from core.models import AllocationRequest, InvoiceStatus


@pytest.fixture
def family_id():
    return uuid4()


class TestAggregateAllocations:

    def test_sums_per_invoice(self):
        first, second = uuid4(), uuid4()
        totals = aggregate_allocations([
            AllocationRequest(invoice_id=first, amount_cents=100),
            AllocationRequest(invoice_id=second, amount_cents=50),
            AllocationRequest(invoice_id=first, amount_cents=25),
        ])
        assert totals == {first: 125, second: 50}
        assert list(totals) == [first, second]


class TestManualAllocations:

    def test_valid_plan(self, make_invoice, family_id):
        invoice = make_invoice(amount_cents=5000, family_id=family_id)
        plan = plan_manual_allocations(
            family_id, 3000,
            [AllocationRequest(invoice_id=invoice.id, amount_cents=3000)],
            {invoice.id: invoice},
        )
        assert plan == [(invoice.id, 3000)]

    def test_sum_must_match_payment(self, make_invoice, family_id):
        invoice = make_invoice(family_id=family_id)
        with pytest.raises(ValidationError, match="total 100 cents"):
            plan_manual_allocations(
                family_id, 200,
                [AllocationRequest(invoice_id=invoice.id, amount_cents=100)],
                {invoice.id: invoice},
            )

    def test_unknown_invoice(self, family_id):
        missing = uuid4()
        with pytest.raises(NotFoundError):
            plan_manual_allocations(
                family_id, 100, [AllocationRequest(invoice_id=missing, amount_cents=100)], {}
            )

    def test_cross_family_is_an_invariant_violation(self, make_invoice, family_id):
        invoice = make_invoice()
        with pytest.raises(InvariantViolation, match="another family"):
            plan_manual_allocations(
                family_id, 100,
                [AllocationRequest(invoice_id=invoice.id, amount_cents=100)],
                {invoice.id: invoice},
            )

    def test_void_invoice_rejected(self, make_invoice, family_id):
        invoice = make_invoice(family_id=family_id, status=InvoiceStatus.VOID)
        with pytest.raises(ValidationError, match="void"):
            plan_manual_allocations(
                family_id, 100,
                [AllocationRequest(invoice_id=invoice.id, amount_cents=100)],
                {invoice.id: invoice},
            )

    def test_over_balance_is_never_clamped(self, make_invoice, family_id):
        invoice = make_invoice(amount_cents=1000, paid_cents=600, family_id=family_id)
        with pytest.raises(InvariantViolation, match="exceeds"):
            plan_manual_allocations(
                family_id, 500,
                [AllocationRequest(invoice_id=invoice.id, amount_cents=500)],
                {invoice.id: invoice},
            )

    def test_split_requests_checked_in_aggregate(self, make_invoice, family_id):
        invoice = make_invoice(amount_cents=1000, family_id=family_id)
        with pytest.raises(InvariantViolation):
            plan_manual_allocations(
                family_id, 1200,
                [
                    AllocationRequest(invoice_id=invoice.id, amount_cents=600),
                    AllocationRequest(invoice_id=invoice.id, amount_cents=600),
                ],
                {invoice.id: invoice},
            )


class TestOldestOpenFirst:

    def test_orders_by_due_date_then_issue(self, make_invoice):
        late = make_invoice(due_in_days=30)
        soon = make_invoice(due_in_days=3)
        undated = make_invoice(due_in_days=None)
        assert [i.id for i in oldest_open_first([undated, late, soon])] == [soon.id, late.id, undated.id]

    def test_skips_closed_and_settled(self, make_invoice):
        paid = make_invoice(paid_cents=10000, status=InvoiceStatus.PAID)
        void = make_invoice(status=InvoiceStatus.VOID)
        open_invoice = make_invoice()
        assert [i.id for i in oldest_open_first([paid, void, open_invoice])] == [open_invoice.id]

    def test_issue_date_breaks_ties(self, make_invoice):
        first = make_invoice(issued_at=datetime(2026, 1, 1, tzinfo=timezone.utc))
        second = make_invoice(issued_at=datetime(2026, 1, 2, tzinfo=timezone.utc))
        first = first.model_copy(update={"due_at": second.due_at})
        assert [i.id for i in oldest_open_first([second, first])] == [first.id, second.id]


class TestPlanOldestOpenFirst:

    def test_fills_balances_in_order(self, make_invoice):
        soon = make_invoice(amount_cents=3000, paid_cents=1000, due_in_days=3)
        late = make_invoice(amount_cents=5000, due_in_days=30)
        plan = plan_oldest_open_first([late, soon], 4000)
        assert plan == [(soon.id, 2000), (late.id, 2000)]

    def test_leftover_stays_unallocated(self, make_invoice):
        invoice = make_invoice(amount_cents=1000)
        plan = plan_oldest_open_first([invoice], 2500)
        assert plan == [(invoice.id, 1000)]
        assert sum(cents for _, cents in plan) <= 2500

    def test_nothing_open(self):
        assert plan_oldest_open_first([], 1000) == []
