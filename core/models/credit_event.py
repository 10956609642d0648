"""Credit ledger event models.

The ledger is append-only: the balance is always the signed sum of
credits_delta, never a stored counter.
"""

from datetime import date, datetime
from enum import Enum
from uuid import UUID

from pydantic import BaseModel, Field


class CreditEventType(str, Enum):
    """Kind of credit movement."""

    PURCHASE = "PURCHASE"
    CONSUME = "CONSUME"
    CANCELLATION_CREDIT = "CANCELLATION_CREDIT"
    MANUAL_ADJUST = "MANUAL_ADJUST"


class CreditEventCreate(BaseModel):
    """Data required to append a credit event."""

    enrolment_id: UUID
    type: CreditEventType
    credits_delta: int
    occurred_on: date
    invoice_id: UUID | None = None
    attendance_key: str | None = Field(None, max_length=200)
    adjustment_id: UUID | None = None
    note: str | None = Field(None, max_length=500)


class CreditEvent(BaseModel):
    """Full credit event as stored."""

    id: UUID
    enrolment_id: UUID
    type: CreditEventType
    credits_delta: int
    occurred_on: date
    invoice_id: UUID | None = None
    attendance_key: str | None = None
    adjustment_id: UUID | None = None
    note: str | None = None
    created_at: datetime | None = None

    model_config = {"from_attributes": True}
