"""Coverage snapshot and audit models."""

from datetime import date, datetime
from enum import Enum
from uuid import UUID

from pydantic import BaseModel

from core.models.plan import BillingType


class CoverageReason(str, Enum):
    """Why a coverage recalculation ran."""

    INVOICE_APPLIED = "INVOICE_APPLIED"
    PAYMENT_REVERSED = "PAYMENT_REVERSED"
    HOLIDAY_ADDED = "HOLIDAY_ADDED"
    HOLIDAY_REMOVED = "HOLIDAY_REMOVED"
    HOLIDAY_UPDATED = "HOLIDAY_UPDATED"
    CLASS_CHANGED = "CLASS_CHANGED"
    PLAN_CHANGED = "PLAN_CHANGED"
    CANCELLATION_CREATED = "CANCELLATION_CREATED"
    CANCELLATION_REVERSED = "CANCELLATION_REVERSED"
    PAIDTHROUGH_MANUAL_EDIT = "PAIDTHROUGH_MANUAL_EDIT"


class BillingSnapshot(BaseModel):
    """Derived coverage for one enrolment as of a day."""

    enrolment_id: UUID
    billing_type: BillingType | None
    as_of: date
    paid_through_date: date | None
    next_due_date: date | None
    remaining_credits: int | None = None
    covered_occurrences: int = 0


class BillingStatus(BaseModel):
    """Snapshot plus context a caller shows alongside it."""

    snapshot: BillingSnapshot
    enrolment_status: str
    full_week_closures: int = 0


class CoverageAudit(BaseModel):
    """Append-only record of one coverage mutation."""

    id: UUID
    enrolment_id: UUID
    reason: CoverageReason
    previous_paid_through_date: date | None
    next_paid_through_date: date | None
    actor_id: UUID | None = None
    created_at: datetime

    model_config = {"from_attributes": True}


class CoverageWindow(BaseModel):
    """
    What an invoice would buy before it is raised.

    coverage_end_base is the same entitlement walked with no closures.
    credits_purchased is only set for credit plans.
    """

    periods: int = 0
    coverage_start: date | None = None
    coverage_end: date | None = None
    coverage_end_base: date | None = None
    credits_purchased: int | None = None
