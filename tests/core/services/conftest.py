"""Service fixtures. Every test here runs against PostgreSQL."""

from datetime import date, timedelta

import pytest

from api.app import build_services

MONDAY = 0
WEDNESDAY = 2


@pytest.fixture
def services(seed):
    """Every billing service wired on the test database."""
    return build_services(seed.db)


@pytest.fixture
def published(services):
    """Events delivered by the bus during the test, in order."""
    delivered = []
    for name in (
        "CoverageChanged", "CoverageShortenAbsorbed", "InvoicePaid",
        "PaymentRecorded", "PaymentReversed", "EnrolmentChangedOver",
    ):
        services["event_bus"].subscribe(name, delivered.append)
    return delivered


@pytest.fixture
def today(services) -> date:
    return services["snapshot"].today()


@pytest.fixture
def future_monday(today) -> date:
    """A Monday at least a week away, so nothing has been consumed by today."""
    return today + timedelta(days=14 - today.weekday())


@pytest.fixture
def weekly_enrolment(seed):
    """Factory for a one-class-a-week enrolment on a $100 weekly plan."""
    def _make(start=date(2026, 1, 12), day_of_week=MONDAY, paid_through=None, **overrides):
        plan_id = seed.plan()
        template_id = seed.template(day_of_week=day_of_week)
        enrolment_id = seed.enrolment(plan_id, [template_id], start, paid_through_date=paid_through, **overrides)
        return enrolment_id, template_id
    return _make


@pytest.fixture
def credit_enrolment(seed, future_monday):
    """Factory for a Monday PER_CLASS enrolment starting in the future."""
    def _make(start=None, **overrides):
        plan_id = seed.plan(billing_type="PER_CLASS", price_cents=3000, block_class_count=1)
        template_id = seed.template(day_of_week=MONDAY)
        enrolment_id = seed.enrolment(plan_id, [template_id], start or future_monday, **overrides)
        return enrolment_id, template_id
    return _make
