"""Family billing position models.

Amounts are in cents. A negative net owing means the family is in credit.
"""

from datetime import date
from enum import Enum
from uuid import UUID

from pydantic import BaseModel, Field

from core.models.coverage import CoverageWindow
from core.models.invoice import Invoice
from core.models.plan import BillingType


class EntitlementStatus(str, Enum):
    """How an enrolment's paid coverage sits against today."""

    AHEAD = "AHEAD"
    DUE_SOON = "DUE_SOON"
    OVERDUE = "OVERDUE"
    UNKNOWN = "UNKNOWN"


class InvoiceKind(str, Enum):
    PAY_AHEAD = "PAY_AHEAD"
    CATCH_UP = "CATCH_UP"


class OwingEntry(BaseModel):
    """Overdue coverage for one enrolment."""

    enrolment_id: UUID
    student_id: UUID
    plan_id: UUID | None
    billing_type: BillingType | None
    paid_through_date: date | None
    overdue_blocks: int = 0
    overdue_owing_cents: int = 0


class FamilyBillingSummary(BaseModel):
    overdue_owing_cents: int = 0
    next_payment_due: date | None = None
    breakdown: list[OwingEntry] = Field(default_factory=list)


class NetOwing(BaseModel):
    """Net owing = overdue + invoice outstanding - unallocated credit."""

    net_owing_cents: int
    invoice_outstanding_cents: int
    unallocated_credit_cents: int
    overdue_owing_cents: int


class EnrolmentPosition(BaseModel):
    enrolment_id: UUID
    student_id: UUID
    plan_id: UUID | None
    billing_type: BillingType | None
    paid_through_date: date | None
    next_due_date: date | None
    remaining_credits: int | None = None
    latest_coverage_end: date | None = None
    entitlement_status: EntitlementStatus


class FamilyBillingPosition(BaseModel):
    """Everything a family account screen shows in one read."""

    family_id: UUID
    as_of: date
    enrolments: list[EnrolmentPosition] = Field(default_factory=list)
    open_invoices: list[Invoice] = Field(default_factory=list)
    summary: FamilyBillingSummary
    net_owing: NetOwing


class InvoiceQuote(BaseModel):
    """A pay-ahead or catch-up invoice as it would be raised."""

    enrolment_id: UUID
    kind: InvoiceKind
    billing_type: BillingType
    window: CoverageWindow
    unit_price_cents: int
    amount_cents: int
