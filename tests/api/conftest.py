"""API test fixtures: the real app wired to mocked services. No database needed."""

from datetime import date, datetime, timezone
from unittest.mock import Mock
from uuid import uuid4

import pytest
from starlette.testclient import TestClient

from api.app import create_app
from core.audit import AuditLogger
from core.models import (
    BillingSnapshot,
    BillingStatus,
    BillingType,
    Invoice,
    InvoiceStatus,
    Payment,
    PaymentResult,
    PaymentStatus,
)
from core.services.billing_snapshot_service import BillingSnapshotService
from core.services.coverage_service import CoverageService
from core.services.credit_ledger_service import CreditLedgerService
from core.services.enrolment_change_service import EnrolmentChangeService
from core.services.family_billing_service import FamilyBillingService
from core.services.invoice_service import InvoiceService
from core.services.pay_ahead_service import PayAheadService
from core.services.payment_service import PaymentService
from core.services.schedule_service import ScheduleService

NOW = datetime(2026, 1, 5, 0, 0, tzinfo=timezone.utc)


# =============================================================================
# SERVICES DICT
# =============================================================================


@pytest.fixture
def services():
    return {
        "audit": Mock(spec=AuditLogger),
        "snapshot": Mock(spec=BillingSnapshotService),
        "ledger": Mock(spec=CreditLedgerService),
        "coverage": Mock(spec=CoverageService),
        "invoice": Mock(spec=InvoiceService),
        "payment": Mock(spec=PaymentService),
        "enrolment_change": Mock(spec=EnrolmentChangeService),
        "schedule": Mock(spec=ScheduleService),
        "pay_ahead": Mock(spec=PayAheadService),
        "family": Mock(spec=FamilyBillingService),
    }


# =============================================================================
# SAMPLE ENTITIES
# =============================================================================


@pytest.fixture
def sample_invoice():
    return Invoice(
        id=uuid4(),
        family_id=uuid4(),
        enrolment_id=None,
        status=InvoiceStatus.SENT,
        amount_cents=10000,
        amount_paid_cents=0,
        issued_at=NOW,
        due_at=NOW,
        created_at=NOW,
        updated_at=NOW,
    )


@pytest.fixture
def sample_payment():
    return Payment(
        id=uuid4(),
        family_id=uuid4(),
        amount_cents=10000,
        paid_at=NOW,
        status=PaymentStatus.ACTIVE,
        created_at=NOW,
        updated_at=NOW,
    )


@pytest.fixture
def sample_payment_result(sample_payment):
    return PaymentResult(
        payment=sample_payment,
        allocations=[],
        allocated_cents=0,
        unallocated_cents=sample_payment.amount_cents,
    )


@pytest.fixture
def sample_snapshot():
    return BillingSnapshot(
        enrolment_id=uuid4(),
        billing_type=BillingType.PER_WEEK,
        as_of=date(2026, 1, 5),
        paid_through_date=date(2026, 3, 9),
        next_due_date=date(2026, 3, 16),
        covered_occurrences=8,
    )


@pytest.fixture
def sample_status(sample_snapshot):
    return BillingStatus(snapshot=sample_snapshot, enrolment_status="ACTIVE", full_week_closures=1)


# =============================================================================
# APP & CLIENT FIXTURES
# =============================================================================


@pytest.fixture
def app(services):
    return create_app(services)


@pytest.fixture
def client(app):
    return TestClient(app, raise_server_exceptions=False)
