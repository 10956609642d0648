"""Payment and allocation models.

A payment may be partially or fully unallocated. Allocation rows are
append-only; a reversal is a negative row, never an edit.
"""

from datetime import datetime
from enum import Enum
from uuid import UUID

from pydantic import BaseModel, Field, model_validator


class PaymentStatus(str, Enum):
    ACTIVE = "ACTIVE"
    VOID = "VOID"


class AllocationStrategy(str, Enum):
    """How a payment is spread across invoices."""

    MANUAL = "manual"
    OLDEST_OPEN_FIRST = "oldest_open_first"


class AllocationRequest(BaseModel):
    """One caller-specified allocation."""

    invoice_id: UUID
    amount_cents: int = Field(..., gt=0)


class PaymentCreate(BaseModel):
    """Data required to record a payment."""

    family_id: UUID
    amount_cents: int = Field(..., gt=0)
    paid_at: datetime | None = None
    method: str | None = Field(None, max_length=100)
    note: str | None = Field(None, max_length=2000)
    idempotency_key: str | None = Field(None, min_length=1, max_length=200)
    strategy: AllocationStrategy = AllocationStrategy.OLDEST_OPEN_FIRST
    allocations: list[AllocationRequest] = Field(default_factory=list)

    @model_validator(mode="after")
    def check_strategy(self) -> "PaymentCreate":
        if self.strategy == AllocationStrategy.MANUAL and not self.allocations:
            raise ValueError("Manual strategy requires at least one allocation")
        if self.strategy == AllocationStrategy.OLDEST_OPEN_FIRST and self.allocations:
            raise ValueError("Allocations are only accepted with the manual strategy")
        return self


class PaymentAllocation(BaseModel):
    """One allocation row (negative for reversals)."""

    id: UUID
    payment_id: UUID
    invoice_id: UUID
    amount_cents: int
    created_at: datetime

    model_config = {"from_attributes": True}


class Payment(BaseModel):
    """Full payment entity as stored."""

    id: UUID
    family_id: UUID
    amount_cents: int
    paid_at: datetime
    method: str | None = None
    note: str | None = None
    status: PaymentStatus
    idempotency_key: str | None = None
    reversed_at: datetime | None = None
    reversal_reason: str | None = None
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}


class PaymentResult(BaseModel):
    """Outcome of creating (or replaying) a payment."""

    payment: Payment
    allocations: list[PaymentAllocation] = Field(default_factory=list)
    allocated_cents: int
    unallocated_cents: int
    replayed: bool = False
