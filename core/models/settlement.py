"""Settlement models for mid-period plan changes."""

from datetime import date, datetime
from uuid import UUID

from pydantic import BaseModel


class SettlementQuote(BaseModel):
    """Money difference between the old and new plan over the remaining paid window."""

    idempotency_key: str
    enrolment_id: UUID
    new_plan_id: UUID
    changeover_date: date
    paid_through_date: date | None
    chargeable_classes: int
    old_cost_per_class: str
    new_cost_per_class: str
    old_value_cents: int
    new_value_cents: int
    difference_cents: int


class SettlementApplication(BaseModel):
    """Record of a settlement that has been applied."""

    idempotency_key: str
    enrolment_id: UUID
    difference_cents: int
    invoice_id: UUID | None = None
    payment_id: UUID | None = None
    created_at: datetime

    model_config = {"from_attributes": True}


class EnrolmentChangeResult(BaseModel):
    """Outcome of a plan or class change."""

    old_enrolment_id: UUID
    new_enrolment_id: UUID
    settlement: SettlementQuote | None = None
    settlement_invoice_id: UUID | None = None
    settlement_payment_id: UUID | None = None
    settlement_replayed: bool = False
