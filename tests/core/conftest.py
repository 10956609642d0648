"""Model builders for pure core tests. No database needed."""

from datetime import date, datetime, timedelta, timezone
from uuid import UUID, uuid4

import pytest

from core.models import (
    BillingType,
    ClassTemplate,
    CreditEvent,
    CreditEventType,
    Enrolment,
    EnrolmentPlan,
    EnrolmentStatus,
    Holiday,
    Invoice,
    InvoiceStatus,
)

MONDAY = 0
WEDNESDAY = 2
SATURDAY = 5

LEVEL_ID = UUID("00000000-0000-0000-0000-0000000000a1")


@pytest.fixture
def make_template():
    def _make(day_of_week=MONDAY, **overrides) -> ClassTemplate:
        data = {
            "id": uuid4(),
            "name": "Level 1",
            "day_of_week": day_of_week,
            "level_id": LEVEL_ID,
            "capacity": None,
            "active": True,
        }
        data.update(overrides)
        return ClassTemplate(**data)
    return _make


@pytest.fixture
def make_holiday():
    def _make(start: date, end: date | None = None, **overrides) -> Holiday:
        data = {
            "id": uuid4(),
            "name": "Closed",
            "start_date": start,
            "end_date": end or start,
        }
        data.update(overrides)
        return Holiday(**data)
    return _make


@pytest.fixture
def make_plan():
    def _make(billing_type=BillingType.PER_WEEK, **overrides) -> EnrolmentPlan:
        data = {
            "id": uuid4(),
            "name": "Plan",
            "billing_type": billing_type,
            "price_cents": 10000,
            "sessions_per_week": 1 if billing_type == BillingType.PER_WEEK else None,
            "block_class_count": None if billing_type == BillingType.PER_WEEK else 10,
            "level_id": LEVEL_ID,
        }
        data.update(overrides)
        return EnrolmentPlan(**data)
    return _make


@pytest.fixture
def make_enrolment():
    def _make(start: date, template_ids=(), **overrides) -> Enrolment:
        data = {
            "id": uuid4(),
            "student_id": uuid4(),
            "family_id": uuid4(),
            "plan_id": uuid4(),
            "status": EnrolmentStatus.ACTIVE,
            "start_date": start,
            "template_ids": list(template_ids),
        }
        data.update(overrides)
        return Enrolment(**data)
    return _make


@pytest.fixture
def make_event():
    def _make(delta: int, on: date, type=CreditEventType.PURCHASE, **overrides) -> CreditEvent:
        data = {
            "id": uuid4(),
            "enrolment_id": uuid4(),
            "type": type,
            "credits_delta": delta,
            "occurred_on": on,
        }
        data.update(overrides)
        return CreditEvent(**data)
    return _make


@pytest.fixture
def make_invoice():
    base = datetime(2026, 1, 1, tzinfo=timezone.utc)

    def _make(amount_cents=10000, paid_cents=0, status=InvoiceStatus.SENT, due_in_days=7, **overrides) -> Invoice:
        data = {
            "id": uuid4(),
            "family_id": uuid4(),
            "enrolment_id": None,
            "status": status,
            "amount_cents": amount_cents,
            "amount_paid_cents": paid_cents,
            "issued_at": base,
            "due_at": base + timedelta(days=due_in_days) if due_in_days is not None else None,
            "created_at": base,
            "updated_at": base,
        }
        data.update(overrides)
        return Invoice(**data)
    return _make
