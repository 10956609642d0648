"""Invoice domain models.

All amounts are stored in cents (integer) to avoid floating point issues.
amount_cents is never set directly: it is the sum of the line items.
"""

from datetime import date, datetime
from enum import Enum
from uuid import UUID

from pydantic import BaseModel, Field

from core.models.line_item import LineItem, LineItemCreate


class InvoiceStatus(str, Enum):
    """Invoice lifecycle status."""

    DRAFT = "DRAFT"
    SENT = "SENT"
    PARTIALLY_PAID = "PARTIALLY_PAID"
    OVERDUE = "OVERDUE"
    PAID = "PAID"
    VOID = "VOID"


OPEN_INVOICE_STATUSES = frozenset({
    InvoiceStatus.DRAFT,
    InvoiceStatus.SENT,
    InvoiceStatus.PARTIALLY_PAID,
    InvoiceStatus.OVERDUE,
})


class InvoiceCreate(BaseModel):
    """Data required to create an invoice."""

    family_id: UUID
    enrolment_id: UUID | None = None
    line_items: list[LineItemCreate] = Field(..., min_length=1)
    status: InvoiceStatus = InvoiceStatus.DRAFT
    issued_at: datetime | None = None
    due_at: datetime | None = None
    coverage_start: date | None = None
    coverage_end: date | None = None
    credits_purchased: int | None = Field(None, ge=0)
    notes: str | None = Field(None, max_length=2000)


class Invoice(BaseModel):
    """Full invoice entity as stored."""

    id: UUID
    family_id: UUID
    enrolment_id: UUID | None
    status: InvoiceStatus
    amount_cents: int
    amount_paid_cents: int
    issued_at: datetime | None
    due_at: datetime | None
    paid_at: datetime | None = None
    coverage_start: date | None = None
    coverage_end: date | None = None
    credits_purchased: int | None = None
    entitlements_applied_at: datetime | None = None
    notes: str | None = None
    created_at: datetime
    updated_at: datetime
    line_items: list[LineItem] = Field(default_factory=list)

    model_config = {"from_attributes": True}

    @property
    def balance_due_cents(self) -> int:
        """Remaining amount to be paid in cents."""
        return max(self.amount_cents - self.amount_paid_cents, 0)

    @property
    def is_open(self) -> bool:
        return self.status in OPEN_INVOICE_STATUSES
